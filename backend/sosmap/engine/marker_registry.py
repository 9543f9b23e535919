"""
Marker Registry

Owns the mapping rendered id -> render handle and reconciles it against
each frame's clusters + singles.

Per reconcile call:
- ids gone from the frame are released
- new ids get a handle
- ids present in both are updated in place, only when their position or
  content signature changed
- a cluster whose membership changed (so its id changed) inherits the
  handle of the vanished cluster it overlaps most, keeping its symbol

Handles never leave this class.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from sosmap.errors import ReconcileInvariantError
from sosmap.models.map_state import Cluster, RenderableItem
from sosmap.render.renderer import MapRenderer
from sosmap.render.visuals import MarkerVisual, visual_for, with_selection

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Diff applied by one reconcile call"""
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    rekeyed: Dict[str, str] = field(default_factory=dict)  # new id -> old id

    @property
    def is_noop(self) -> bool:
        return not (self.added or self.updated or self.removed or self.rekeyed)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        return {
            'added': self.added,
            'updated': self.updated,
            'removed': self.removed,
            'rekeyed': self.rekeyed,
        }


def selection_style(item: RenderableItem, selected_id: Optional[str]) -> MarkerVisual:
    """Visual for an item given the current selection"""
    return with_selection(visual_for(item), selected_id is not None and item.id == selected_id)


def check_unique_ids(ids: List[str], owner: str):
    """Raise ReconcileInvariantError when a frame repeats an id"""
    if len(ids) != len(set(ids)):
        seen, dupes = set(), set()
        for item_id in ids:
            if item_id in seen:
                dupes.add(item_id)
            seen.add(item_id)
        logger.critical("[%s] Duplicate ids in reconcile input: %s", owner, sorted(dupes))
        raise ReconcileInvariantError(f"Duplicate ids in reconcile input: {sorted(dupes)}")


class MarkerRegistry:
    """
    Reconcile rendered point symbols against the latest frame

    Usage:
        registry = MarkerRegistry(renderer)
        result = registry.reconcile(cluster_result.items())
        registry.set_selected("sos-1")
    """

    def __init__(self, renderer: MapRenderer):
        """
        Args:
            renderer: Render collaborator that creates/updates/removes symbols
        """
        self.renderer = renderer
        self.selected_id: Optional[str] = None

        self._handles: Dict[str, Any] = {}
        self._items: Dict[str, RenderableItem] = {}
        self._signatures: Dict[str, str] = {}

        # Statistics
        self.reconcile_count = 0
        self.total_created = 0
        self.total_released = 0

    # ============================================
    # Reconcile
    # ============================================

    def reconcile(self, next_set: Iterable[RenderableItem]) -> ReconcileResult:
        """
        Bring rendered symbols in line with `next_set`

        Args:
            next_set: Clusters and single markers for this frame

        Returns:
            ReconcileResult with sorted id lists

        Raises:
            ReconcileInvariantError: duplicate ids in the input, or a
                handle map that does not match the frame afterwards
        """
        items = list(next_set)
        check_unique_ids([item.id for item in items], "MarkerRegistry")

        next_items = {item.id: item for item in items}
        current_ids = set(self._handles)
        next_ids = set(next_items)

        removed = current_ids - next_ids
        added = next_ids - current_ids
        result = ReconcileResult()

        rekeys = self._match_rekeyed_clusters(
            [next_items[i] for i in sorted(added)],
            [self._items[i] for i in sorted(removed)],
        )
        for new_id, old_id in rekeys.items():
            added.discard(new_id)
            removed.discard(old_id)

        for item_id in sorted(removed):
            self._release(item_id)
            result.removed.append(item_id)

        for new_id, old_id in sorted(rekeys.items()):
            handle = self._handles.pop(old_id)
            self._items.pop(old_id)
            self._signatures.pop(old_id)
            item = next_items[new_id]
            self.renderer.update_marker(handle, item.lat, item.lng, selection_style(item, self.selected_id))
            self._store(new_id, handle, item)
            result.rekeyed[new_id] = old_id

        for item_id in sorted(added):
            item = next_items[item_id]
            handle = self.renderer.create_marker(item_id, item.lat, item.lng, selection_style(item, self.selected_id))
            self._store(item_id, handle, item)
            self.total_created += 1
            result.added.append(item_id)

        for item_id in sorted(next_ids & current_ids):
            item = next_items[item_id]
            signature = item.content_signature()
            if signature == self._signatures[item_id]:
                continue
            self.renderer.update_marker(
                self._handles[item_id], item.lat, item.lng, selection_style(item, self.selected_id)
            )
            self._store(item_id, self._handles[item_id], item)
            result.updated.append(item_id)

        if set(self._handles) != next_ids:
            logger.critical(
                "[MarkerRegistry] Handle map diverged from frame: %d handles, %d items",
                len(self._handles), len(next_ids),
            )
            raise ReconcileInvariantError("Marker handle map does not match reconciled frame")

        self.reconcile_count += 1
        if not result.is_noop:
            logger.debug(
                "[MarkerRegistry] +%d ~%d -%d rekeyed=%d",
                len(result.added), len(result.updated), len(result.removed), len(result.rekeyed),
            )
        return result

    def _store(self, item_id: str, handle: Any, item: RenderableItem):
        self._handles[item_id] = handle
        self._items[item_id] = item
        self._signatures[item_id] = item.content_signature()

    def _release(self, item_id: str):
        handle = self._handles.pop(item_id)
        self._items.pop(item_id, None)
        self._signatures.pop(item_id, None)
        self.renderer.remove_marker(handle)
        self.total_released += 1

    @staticmethod
    def _match_rekeyed_clusters(
        added: List[RenderableItem],
        removed: List[RenderableItem],
    ) -> Dict[str, str]:
        """
        Pair each new cluster with the vanished cluster sharing most members

        Ties go to the lowest old id; each old cluster is used once.
        """
        old_clusters = [item for item in removed if isinstance(item, Cluster)]
        if not old_clusters:
            return {}

        taken = set()
        pairs: Dict[str, str] = {}
        for new in added:
            if not isinstance(new, Cluster):
                continue
            new_members = set(new.member_ids)
            best_id, best_overlap = None, 0
            for old in old_clusters:
                if old.id in taken:
                    continue
                overlap = len(new_members.intersection(old.member_ids))
                if overlap > best_overlap:
                    best_id, best_overlap = old.id, overlap
            if best_id is not None:
                taken.add(best_id)
                pairs[new.id] = best_id
        return pairs

    # ============================================
    # Selection
    # ============================================

    def set_selected(self, selected_id: Optional[str]) -> bool:
        """
        Move the selection highlight

        Only the previously and newly selected symbols are restyled.

        Returns:
            True if the selected id is currently rendered on its own
        """
        previous = self.selected_id
        self.selected_id = selected_id

        if previous == selected_id:
            return selected_id in self._handles

        for item_id in (previous, selected_id):
            if item_id is not None and item_id in self._handles:
                self.renderer.set_marker_style(
                    self._handles[item_id],
                    selection_style(self._items[item_id], selected_id),
                )
        return selected_id in self._handles

    # ============================================
    # Inspection / teardown
    # ============================================

    def rendered_ids(self) -> FrozenSet[str]:
        """Snapshot of ids currently holding a handle"""
        return frozenset(self._handles)

    def get_item(self, item_id: str) -> Optional[RenderableItem]:
        return self._items.get(item_id)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._handles

    def clear(self) -> List[str]:
        """Release every handle (view teardown)"""
        released = sorted(self._handles)
        for item_id in released:
            self._release(item_id)
        return released

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics"""
        return {
            'rendered': len(self._handles),
            'selectedId': self.selected_id,
            'reconcileCount': self.reconcile_count,
            'totalCreated': self.total_created,
            'totalReleased': self.total_released,
        }
