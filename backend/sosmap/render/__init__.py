"""
Render Package

Render collaborator interface, the Socket.IO-backed renderer, and the
visual descriptors handed to it.
"""

from .renderer import MapRenderer, SocketIORenderer, RenderHandle, EasingFn
from .visuals import (
    MarkerVisual,
    LineStyle,
    DEFAULT_ROUTE_STYLE,
    MARKER_COLORS,
    MARKER_ICONS,
    CLUSTER_COLORS,
    visual_for,
    with_selection,
    cluster_size,
)

__all__ = [
    "MapRenderer",
    "SocketIORenderer",
    "RenderHandle",
    "EasingFn",
    "MarkerVisual",
    "LineStyle",
    "DEFAULT_ROUTE_STYLE",
    "MARKER_COLORS",
    "MARKER_ICONS",
    "CLUSTER_COLORS",
    "visual_for",
    "with_selection",
    "cluster_size",
]
