"""
Marker Visual Descriptors

Colours, icons and sizes for markers, clusters and route lines. The
renderer receives these descriptors; it never sees entity payloads.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from sosmap.models.entities import Marker, MarkerKind
from sosmap.models.map_state import Cluster, MIXED, RenderableItem


MARKER_COLORS: Dict[MarkerKind, str] = {
    MarkerKind.SOS: '#ff4444',
    MarkerKind.HELPER: '#4444ff',
    MarkerKind.RESPONDER: '#44ff44',
    MarkerKind.HOSPITAL: '#ffff44',
    MarkerKind.USER: '#ff8844',
}

MARKER_ICONS: Dict[MarkerKind, str] = {
    MarkerKind.SOS: '🚨',
    MarkerKind.HELPER: '🆘',
    MarkerKind.RESPONDER: '🚑',
    MarkerKind.HOSPITAL: '🏥',
    MarkerKind.USER: '👤',
}

CLUSTER_COLORS: Dict[str, str] = {
    MarkerKind.SOS.value: '#ff0000',
    MarkerKind.HELPER.value: '#00ff00',
    MarkerKind.RESPONDER.value: '#0000ff',
    MarkerKind.HOSPITAL.value: '#ffff44',
    MarkerKind.USER.value: '#ff8844',
    MIXED: '#ffff00',
}

MARKER_SIZE = 30

SELECTED_SCALE = 1.5
SELECTED_OUTLINE = '#ffffff'


@dataclass(frozen=True)
class MarkerVisual:
    """Visual descriptor passed to the renderer for one point symbol"""
    icon: str
    color: str
    size: int = MARKER_SIZE
    label: Optional[str] = None
    scale: float = 1.0
    outline: Optional[str] = None
    is_cluster: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'icon': self.icon,
            'color': self.color,
            'size': self.size,
            'label': self.label,
            'scale': self.scale,
            'outline': self.outline,
            'isCluster': self.is_cluster,
        }


@dataclass(frozen=True)
class LineStyle:
    """Route line paint"""
    color: str = '#3b82f6'
    width: float = 4.0
    opacity: float = 0.8

    def to_dict(self) -> Dict[str, Any]:
        return {'color': self.color, 'width': self.width, 'opacity': self.opacity}


DEFAULT_ROUTE_STYLE = LineStyle()


def cluster_size(point_count: int) -> int:
    """Cluster circle radius steps: 20px, 30px from 100 points, 40px from 750"""
    if point_count >= 750:
        return 40
    if point_count >= 100:
        return 30
    return 20


def visual_for(item: RenderableItem) -> MarkerVisual:
    """Base (unselected) visual for a marker or cluster"""
    if isinstance(item, Cluster):
        kind = item.dominant_kind.value if isinstance(item.dominant_kind, MarkerKind) else item.dominant_kind
        return MarkerVisual(
            icon='',
            color=CLUSTER_COLORS.get(kind, CLUSTER_COLORS[MIXED]),
            size=cluster_size(item.point_count),
            label=str(item.point_count),
            is_cluster=True,
        )
    if isinstance(item, Marker):
        return MarkerVisual(
            icon=MARKER_ICONS[item.kind],
            color=MARKER_COLORS[item.kind],
        )
    raise TypeError(f"Not a renderable item: {type(item).__name__}")


def with_selection(visual: MarkerVisual, selected: bool) -> MarkerVisual:
    """Apply (or strip) the selected-marker treatment"""
    if selected:
        return replace(visual, scale=SELECTED_SCALE, outline=SELECTED_OUTLINE)
    return replace(visual, scale=1.0, outline=None)
