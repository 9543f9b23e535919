"""
Zone Metrics

Computes ZoneStats for a zone from the entities currently on the map.
Used by local/stand-alone backends and tests; the live dashboard gets
its stats from the geospatial backend.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pydantic import ValidationError

from sosmap.models.entities import (
    AvailabilityStatus,
    HelperPayload,
    Marker,
    MarkerKind,
    ResponderPayload,
    SOSPayload,
    SOSStatus,
)
from sosmap.models.map_state import Zone, ZoneStats


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_available(marker: Marker) -> bool:
    model = HelperPayload if marker.kind is MarkerKind.HELPER else ResponderPayload
    try:
        return model.model_validate(marker.payload).status is AvailabilityStatus.AVAILABLE
    except ValidationError:
        return False


def response_minutes(cases: Iterable[SOSPayload]) -> List[float]:
    """Created-to-resolved durations in minutes for resolved cases"""
    durations = []
    for case in cases:
        created = _parse_time(case.created_at)
        resolved = _parse_time(case.resolved_at)
        if created is None or resolved is None or resolved < created:
            continue
        durations.append((resolved - created).total_seconds() / 60.0)
    return durations


def compute_zone_stats(zone: Zone, markers: Iterable[Marker], now: Optional[datetime] = None) -> ZoneStats:
    """
    Aggregate the entities inside a zone

    - active SOS cases: SOS markers with status active
    - available helpers / responders: status available
    - average response time: mean created->resolved minutes over the
      zone's resolved cases, rounded to whole minutes (0 when none)

    Args:
        zone: Zone to aggregate over (boundary counts as inside)
        markers: Candidate entities
        now: Timestamp for `last_updated`

    Returns:
        ZoneStats for the zone
    """
    inside = [m for m in markers if zone.contains(m.lat, m.lng)]

    cases: List[SOSPayload] = []
    for marker in inside:
        if marker.kind is not MarkerKind.SOS:
            continue
        try:
            cases.append(SOSPayload.model_validate(marker.payload))
        except ValidationError:
            continue

    active = sum(1 for case in cases if case.status is SOSStatus.ACTIVE)
    helpers = sum(1 for m in inside if m.kind is MarkerKind.HELPER and _is_available(m))
    responders = sum(1 for m in inside if m.kind is MarkerKind.RESPONDER and _is_available(m))

    durations = response_minutes(c for c in cases if c.status is SOSStatus.RESOLVED)
    average = round(sum(durations) / len(durations)) if durations else 0

    return ZoneStats(
        zone_id=zone.id,
        zone_name=zone.name,
        active_sos_cases=active,
        available_helpers=helpers,
        assigned_responders=responders,
        average_response_time_min=float(average),
        last_updated=now or datetime.now(timezone.utc),
    )
