"""
Entity Store

In-memory current state of every point entity, keyed by id. Mutated
only by the live sync worker applying one batch at a time.

- SNAPSHOT: the batch becomes the whole state (or the whole state for
  the kinds it declares; other kinds are left alone)
- DELTA: records are upserted, `retracted` ids removed
- Within a batch the last record for an id wins
- Malformed records are dropped; the rest of the batch still applies
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sosmap.errors import MalformedBatch
from sosmap.models.entities import BatchType, EntityBatch, Marker, MarkerKind, marker_from_record

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """What one batch did to the store"""
    batch_id: Optional[str] = None
    upserted: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    unchanged: int = 0
    rejected: List[MalformedBatch] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.upserted or self.removed)

    def to_dict(self):
        return {
            'batchId': self.batch_id,
            'upserted': self.upserted,
            'removed': self.removed,
            'unchanged': self.unchanged,
            'rejected': [
                {'recordId': e.record_id, 'error': str(e)} for e in self.rejected
            ],
        }


def parse_records(records: Iterable[Any]) -> Tuple[Dict[str, Marker], List[MalformedBatch]]:
    """
    Parse raw records into markers, last record per id winning

    Returns:
        (id -> Marker in first-seen order, rejected record errors)
    """
    parsed: Dict[str, Marker] = {}
    rejected: List[MalformedBatch] = []
    for record in records:
        try:
            marker = marker_from_record(record)
        except MalformedBatch as e:
            rejected.append(e)
            continue
        parsed[marker.id] = marker
    return parsed, rejected


class EntityStore:
    """
    Current entity state

    Usage:
        store = EntityStore()
        result = store.apply(batch)
        markers = store.markers()
    """

    def __init__(self):
        self._entities: Dict[str, Marker] = {}
        self.version = 0
        self.applied_batches = 0

    def apply(self, batch: EntityBatch) -> ApplyResult:
        """
        Converge the store on `batch`

        Args:
            batch: Snapshot or delta from the live feed

        Returns:
            ApplyResult listing changed ids and rejected records
        """
        incoming, rejected = parse_records(batch.records)
        result = ApplyResult(batch_id=batch.batch_id, rejected=rejected)

        for error in rejected:
            logger.warning("[EntityStore] Dropped record %s: %s", error.record_id, error)

        if batch.batch_type is BatchType.SNAPSHOT:
            scope = set(batch.kinds) if batch.kinds else None
            for entity_id in sorted(self._entities):
                if entity_id in incoming:
                    continue
                if scope is not None and self._entities[entity_id].kind not in scope:
                    continue
                del self._entities[entity_id]
                result.removed.append(entity_id)
        else:
            for entity_id in batch.retracted:
                if entity_id in incoming:
                    continue
                if self._entities.pop(entity_id, None) is not None:
                    result.removed.append(entity_id)

        for entity_id, marker in incoming.items():
            existing = self._entities.get(entity_id)
            if existing is not None and existing == marker:
                result.unchanged += 1
                continue
            self._entities[entity_id] = marker
            result.upserted.append(entity_id)

        self.applied_batches += 1
        if result.changed:
            self.version += 1
        return result

    def get(self, entity_id: str) -> Optional[Marker]:
        return self._entities.get(entity_id)

    def markers(self) -> List[Marker]:
        """All entities, sorted by id"""
        return [self._entities[i] for i in sorted(self._entities)]

    def by_kind(self, kind: MarkerKind) -> List[Marker]:
        return [m for m in self.markers() if m.kind is kind]

    def clear(self):
        self._entities.clear()
        self.version += 1

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entities
