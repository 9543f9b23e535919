"""
Pydantic Models Package

All data models for the live map engine.
Import from here for convenience.
"""

# Geographic primitives
from .geo import (
    GeoPoint,
    MapBounds,
    TILE_SIZE,
    is_valid_coordinate,
    project_to_pixels,
    haversine_km,
)

# Entities and feed batches
from .entities import (
    MarkerKind,
    SOSStatus,
    AvailabilityStatus,
    SOSPayload,
    HelperPayload,
    ResponderPayload,
    HospitalPayload,
    UserPayload,
    PAYLOAD_MODELS,
    Marker,
    marker_from_record,
    BatchType,
    EntityBatch,
)

# Map state
from .map_state import (
    LatLng,
    MIXED,
    FilterConfig,
    MapViewport,
    Cluster,
    cluster_id_for,
    RenderableItem,
    Route,
    Zone,
    ZoneStats,
)

__all__ = [
    "GeoPoint",
    "MapBounds",
    "TILE_SIZE",
    "is_valid_coordinate",
    "project_to_pixels",
    "haversine_km",
    "MarkerKind",
    "SOSStatus",
    "AvailabilityStatus",
    "SOSPayload",
    "HelperPayload",
    "ResponderPayload",
    "HospitalPayload",
    "UserPayload",
    "PAYLOAD_MODELS",
    "Marker",
    "marker_from_record",
    "BatchType",
    "EntityBatch",
    "LatLng",
    "MIXED",
    "FilterConfig",
    "MapViewport",
    "Cluster",
    "cluster_id_for",
    "RenderableItem",
    "Route",
    "Zone",
    "ZoneStats",
]
