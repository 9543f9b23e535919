"""
Filter Engine

Pure visibility filter: (markers, FilterConfig) -> visible subset.
Order of the input is preserved; unknown kinds are hidden.
"""

from collections import Counter
from typing import Dict, Iterable, List

from sosmap.models.entities import Marker, MarkerKind
from sosmap.models.map_state import FilterConfig


# Every MarkerKind must appear here
KIND_FLAGS: Dict[MarkerKind, str] = {
    MarkerKind.SOS: 'show_sos',
    MarkerKind.HELPER: 'show_helpers',
    MarkerKind.RESPONDER: 'show_responders',
    MarkerKind.HOSPITAL: 'show_hospitals',
    MarkerKind.USER: 'show_users',
}


def show_for(kind, config: FilterConfig) -> bool:
    """Visibility flag for a kind; anything outside MarkerKind fails closed"""
    flag = KIND_FLAGS.get(kind)
    if flag is None:
        return False
    return bool(getattr(config, flag))


def visible(entities: Iterable[Marker], config: FilterConfig) -> List[Marker]:
    """
    Markers whose kind is switched on in the filter config

    Args:
        entities: Markers in any order
        config: Current filter flags

    Returns:
        Visible markers, input order preserved
    """
    return [marker for marker in entities if show_for(marker.kind, config)]


def kind_counts(markers: Iterable[Marker]) -> Dict[str, int]:
    """Marker count per kind value, every kind present"""
    counts = Counter(m.kind.value for m in markers if isinstance(m.kind, MarkerKind))
    return {kind.value: counts.get(kind.value, 0) for kind in MarkerKind}
