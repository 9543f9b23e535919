"""
Map State Models

Filter configuration, clusters, routes, zones and zone statistics.
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from shapely.geometry import Point, shape

from sosmap.models.entities import Marker, MarkerKind
from sosmap.models.geo import haversine_km


LatLng = Tuple[float, float]

MIXED = "mixed"


class FilterConfig(BaseModel):
    """
    Per-kind visibility flags plus layer toggles

    Accepts the dashboard's camelCase names (showSOS, showHelpers, ...).
    """
    model_config = ConfigDict(populate_by_name=True)

    show_sos: bool = Field(default=True, alias="showSOS")
    show_helpers: bool = Field(default=True, alias="showHelpers")
    show_responders: bool = Field(default=True, alias="showResponders")
    show_hospitals: bool = Field(default=True, alias="showHospitals")
    show_users: bool = Field(default=True, alias="showUsers")
    show_routes: bool = Field(default=True, alias="showRoutes")
    show_clusters: bool = Field(default=True, alias="showClusters")
    show_heatmap: bool = Field(default=False, alias="showHeatmap")


class MapViewport(BaseModel):
    """Current camera position as reported by the renderer"""
    lat: float = 22.3072
    lng: float = 73.1812
    zoom: float = Field(default=12.0, ge=0.0, le=24.0)
    pitch: float = 0.0
    bearing: float = 0.0


class Cluster(BaseModel):
    """
    Aggregated group of nearby markers drawn as one symbol

    `id` is derived from the sorted member ids, so the same membership
    yields the same id on every frame.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    centroid: LatLng
    member_ids: List[str]
    dominant_kind: Union[MarkerKind, Literal["mixed"]]

    @property
    def point_count(self) -> int:
        return len(self.member_ids)

    @property
    def lat(self) -> float:
        return self.centroid[0]

    @property
    def lng(self) -> float:
        return self.centroid[1]

    def content_signature(self) -> str:
        kind = self.dominant_kind.value if isinstance(self.dominant_kind, MarkerKind) else self.dominant_kind
        return f"{self.centroid[0]:.7f}:{self.centroid[1]:.7f}:{self.point_count}:{kind}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        kind = self.dominant_kind.value if isinstance(self.dominant_kind, MarkerKind) else self.dominant_kind
        return {
            'id': self.id,
            'lat': self.centroid[0],
            'lng': self.centroid[1],
            'pointCount': self.point_count,
            'memberIds': list(self.member_ids),
            'dominantKind': kind,
        }


def cluster_id_for(member_ids) -> str:
    """Stable cluster id: hash of the sorted member ids"""
    digest = hashlib.sha1("\x1f".join(sorted(member_ids)).encode("utf-8")).hexdigest()
    return f"cluster-{digest[:16]}"


RenderableItem = Union[Marker, Cluster]


class Route(BaseModel):
    """
    Travel route from an assigned helper/responder to a case

    Routes with the same id supersede each other; the renderer updates
    the existing line geometry in place.
    """
    id: str
    origin: LatLng
    destination: LatLng
    distance_km: float = Field(default=0.0, ge=0.0)
    duration_sec: float = Field(default=0.0, ge=0.0)
    polyline: List[LatLng] = Field(default_factory=list)
    owner_helper_id: Optional[str] = None
    owner_user_id: Optional[str] = None
    source: str = "API"

    def geometry_signature(self) -> str:
        body = json.dumps([[round(p[0], 7), round(p[1], 7)] for p in self.polyline])
        return hashlib.sha1(body.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        return {
            'id': self.id,
            'origin': list(self.origin),
            'destination': list(self.destination),
            'distanceKm': round(self.distance_km, 3),
            'durationSec': round(self.duration_sec, 1),
            'pointCount': len(self.polyline),
            'ownerHelperId': self.owner_helper_id,
            'ownerUserId': self.owner_user_id,
            'source': self.source,
        }


class Zone(BaseModel):
    """
    Externally authored zone, read-only to the engine

    `geometry` is a GeoJSON Polygon/MultiPolygon (lng, lat order), or
    `{"type": "Circle", "center": [lng, lat], "radius": meters}`.
    """
    id: str
    name: str
    type: Literal["polygon", "circle", "rectangle"] = "polygon"
    geometry: Dict[str, Any]

    _shape: Any = PrivateAttr(default=None)

    def contains(self, lat: float, lng: float) -> bool:
        """Check if a point lies inside the zone (boundary counts as inside)"""
        if self.geometry.get("type", "").lower() == "circle":
            center_lng, center_lat = self.geometry["center"]
            radius_km = float(self.geometry["radius"]) / 1000.0
            return haversine_km(center_lat, center_lng, lat, lng) <= radius_km

        if self._shape is None:
            self._shape = shape(self.geometry)
        return self._shape.intersects(Point(lng, lat))


class ZoneStats(BaseModel):
    """
    Aggregate health metrics for one zone

    Field aliases match the backend's JSON (activeSOSCases, ...).
    """
    model_config = ConfigDict(populate_by_name=True)

    zone_id: str = Field(..., alias="zoneId")
    zone_name: Optional[str] = Field(default=None, alias="zoneName")
    active_sos_cases: int = Field(default=0, ge=0, alias="activeSOSCases")
    available_helpers: int = Field(default=0, ge=0, alias="availableHelpers")
    assigned_responders: int = Field(default=0, ge=0, alias="assignedResponders")
    average_response_time_min: float = Field(default=0.0, ge=0.0, alias="averageResponseTime")
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="lastUpdated",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        return self.model_dump(by_alias=True, mode="json")
