"""
Map Engine

Synchronous render pipeline (filter -> cluster -> reconcile), route
layers, heatmap points and the camera controller.
"""

from .filter_engine import visible, show_for, kind_counts, KIND_FLAGS
from .clustering import cluster, ClusterResult
from .marker_registry import MarkerRegistry, ReconcileResult, selection_style
from .route_renderer import RouteRenderer
from .route_planner import RoutePlanner, Assignment, derive_assignments, route_id_for
from .camera import CameraController, CameraAnimation, AnimationOutcome, ease_out
from .heatmap import build_heatmap

__all__ = [
    "visible",
    "show_for",
    "kind_counts",
    "KIND_FLAGS",
    "cluster",
    "ClusterResult",
    "MarkerRegistry",
    "ReconcileResult",
    "selection_style",
    "RouteRenderer",
    "RoutePlanner",
    "Assignment",
    "derive_assignments",
    "route_id_for",
    "CameraController",
    "CameraAnimation",
    "AnimationOutcome",
    "ease_out",
    "build_heatmap",
]
