"""
SOS density heatmap points.

Each visible, unresolved SOS case contributes one point weighted by its
priority (1-5).
"""

from typing import Iterable, List, Tuple

from pydantic import ValidationError

from sosmap.models.entities import Marker, MarkerKind, SOSPayload, SOSStatus


HeatmapPoint = Tuple[float, float, float]

MAX_WEIGHT = 5.0

_CLOSED = {SOSStatus.RESOLVED, SOSStatus.CANCELLED}


def case_weight(marker: Marker) -> float:
    """Priority of an SOS case, 1.0 when the payload has none or is invalid"""
    try:
        payload = SOSPayload.model_validate(marker.payload)
    except ValidationError:
        return 1.0
    if payload.status in _CLOSED:
        return 0.0
    return float(payload.priority)


def build_heatmap(markers: Iterable[Marker]) -> List[HeatmapPoint]:
    """(lat, lng, weight) for every open SOS case, sorted by id"""
    points = []
    for marker in sorted(markers, key=lambda m: m.id):
        if marker.kind is not MarkerKind.SOS:
            continue
        weight = case_weight(marker)
        if weight <= 0:
            continue
        points.append((marker.lat, marker.lng, min(weight, MAX_WEIGHT)))
    return points
