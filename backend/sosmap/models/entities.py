"""
Entity Models

Typed representations of the point entities shown on the operational
map (SOS cases, helpers, responders, hospitals, user positions) and
of the batches the live feed delivers.

MarkerKind is a closed set: the filter table and the marker visuals
are keyed by it, so adding a kind means adding it to both.
"""

import hashlib
import json
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sosmap.errors import MalformedBatch
from sosmap.models.geo import is_valid_coordinate


class MarkerKind(str, Enum):
    """Kinds of point entity rendered on the map"""
    SOS = "sos"
    HELPER = "helper"
    RESPONDER = "responder"
    HOSPITAL = "hospital"
    USER = "user"


class SOSStatus(str, Enum):
    ACTIVE = "active"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


# ============================================
# Payloads
# ============================================

class SOSPayload(BaseModel):
    """SOS case details carried in a marker payload"""
    model_config = ConfigDict(extra="allow")

    status: SOSStatus = SOSStatus.ACTIVE
    emergency_type: str = "other"
    priority: int = Field(default=1, ge=1, le=5)
    assigned_helper_id: Optional[str] = None
    assigned_responder_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[str] = None
    resolved_at: Optional[str] = None


class HelperPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    is_verified: bool = False


class ResponderPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    organization: str = ""
    status: AvailabilityStatus = AvailabilityStatus.AVAILABLE


class HospitalPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    is_24_hours: bool = False


class UserPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    user_id: Optional[str] = None
    name: str = ""


PAYLOAD_MODELS: Dict[MarkerKind, Type[BaseModel]] = {
    MarkerKind.SOS: SOSPayload,
    MarkerKind.HELPER: HelperPayload,
    MarkerKind.RESPONDER: ResponderPayload,
    MarkerKind.HOSPITAL: HospitalPayload,
    MarkerKind.USER: UserPayload,
}


# ============================================
# Marker
# ============================================

class Marker(BaseModel):
    """
    A single point entity rendered on the map

    `id` is unique across the feed; a record carrying an id already in
    the store replaces it (last write wins).
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: MarkerKind
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    payload: Dict[str, Any] = Field(default_factory=dict)
    clusterable: bool = True

    def typed_payload(self) -> BaseModel:
        """Parse the payload with the model registered for this kind"""
        return PAYLOAD_MODELS[self.kind].model_validate(self.payload)

    def content_signature(self) -> str:
        """
        Fingerprint of everything that affects how the marker is drawn

        Two markers with the same signature render identically, so the
        registry can skip the update call.
        """
        body = json.dumps(
            {
                'kind': self.kind.value,
                'lat': round(self.lat, 7),
                'lng': round(self.lng, 7),
                'payload': self.payload,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha1(body.encode('utf-8')).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'kind': self.kind.value,
            'lat': self.lat,
            'lng': self.lng,
            'clusterable': self.clusterable,
            'payload': self.payload,
        }


def marker_from_record(record: Dict[str, Any]) -> Marker:
    """
    Build a Marker from a raw feed record

    Accepts the backend's column names (`type`, `latitude`, `longitude`,
    `data`) as well as the marker field names.

    Raises:
        MalformedBatch: unknown kind, missing id or invalid coordinate
    """
    if not isinstance(record, dict):
        raise MalformedBatch(f"Record is not an object: {record!r}")

    record_id = record.get('id')
    if record_id is None or str(record_id) == "":
        raise MalformedBatch("Record has no id")
    record_id = str(record_id)

    raw_kind = record.get('kind', record.get('type'))
    try:
        kind = MarkerKind(str(raw_kind).lower())
    except ValueError:
        raise MalformedBatch(f"Unknown kind {raw_kind!r}", record_id=record_id)

    lat = record.get('lat', record.get('latitude'))
    lng = record.get('lng', record.get('lon', record.get('longitude')))
    if not is_valid_coordinate(lat, lng):
        raise MalformedBatch(f"Invalid coordinate ({lat!r}, {lng!r})", record_id=record_id)

    payload = record.get('payload', record.get('data')) or {}
    clusterable = record.get('clusterable', record.get('cluster', True))

    try:
        return Marker(
            id=record_id,
            kind=kind,
            lat=float(lat),
            lng=float(lng),
            payload=dict(payload),
            clusterable=bool(clusterable),
        )
    except (ValidationError, TypeError, ValueError) as e:
        raise MalformedBatch(f"Invalid record: {e}", record_id=record_id)


# ============================================
# Feed batches
# ============================================

class BatchType(str, Enum):
    """Shape of a live feed batch"""
    SNAPSHOT = "SNAPSHOT"
    DELTA = "DELTA"


class EntityBatch(BaseModel):
    """
    One arrival of entity data from the live feed

    A SNAPSHOT replaces the current entity state (only for `kinds` when
    given); a DELTA upserts `records` and drops `retracted` ids.

    `records` is left untyped: each record is checked by
    marker_from_record() when the batch is applied, so one bad record
    is rejected on its own.
    """
    batch_id: Optional[str] = None
    batch_type: BatchType = BatchType.SNAPSHOT
    records: List[Any] = Field(default_factory=list)
    retracted: List[str] = Field(default_factory=list)
    kinds: Optional[List[MarkerKind]] = None
    received_at: float = Field(default_factory=time.time)

    model_config = {
        "json_schema_extra": {
            "example": {
                "batch_type": "SNAPSHOT",
                "records": [
                    {"id": "sos-1", "kind": "sos", "lat": 22.30, "lng": 73.18}
                ],
            }
        }
    }

    @field_validator('batch_id', mode='before')
    @classmethod
    def _coerce_batch_id(cls, value):
        # Backends send numeric batch ids
        return None if value is None else str(value)

    @field_validator('retracted', mode='before')
    @classmethod
    def _coerce_retracted(cls, value):
        if isinstance(value, list):
            return [str(v) for v in value if v is not None]
        return value
