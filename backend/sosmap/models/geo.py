"""
Geographic Coordinate Models

Models for GPS coordinates and bounding boxes, plus the Web-Mercator
projection used to measure marker spacing in screen pixels at a given
zoom level.
"""

import math
from typing import List, Tuple

import numpy as np
from pydantic import BaseModel, Field


# Mapbox GL renders 512px tiles
TILE_SIZE = 512.0

# Web-Mercator is undefined at the poles
MAX_MERCATOR_LAT = 85.05112878

EARTH_RADIUS_KM = 6371.0


class GeoPoint(BaseModel):
    """GPS coordinate (latitude, longitude)"""
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)

    model_config = {
        "frozen": True,
        "json_schema_extra": {"example": {"lat": 22.3072, "lng": 73.1812}},
    }

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


class MapBounds(BaseModel):
    """
    Geographic bounding box

    Defines the area covered by a map in GPS coordinates.
    """
    north: float
    south: float
    east: float
    west: float

    @property
    def center(self) -> Tuple[float, float]:
        """Get center point (lat, lng)"""
        return (
            (self.north + self.south) / 2,
            (self.east + self.west) / 2
        )

    def contains(self, lat: float, lng: float) -> bool:
        """Check if a point is within bounds"""
        return (
            self.south <= lat <= self.north and
            self.west <= lng <= self.east
        )

    @classmethod
    def from_points(cls, points: List[Tuple[float, float]]) -> "MapBounds":
        """Smallest box containing all (lat, lng) points"""
        if not points:
            raise ValueError("Cannot compute bounds of an empty point list")
        lats = [p[0] for p in points]
        lngs = [p[1] for p in points]
        return cls(north=max(lats), south=min(lats), east=max(lngs), west=min(lngs))


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """True when lat/lng are finite numbers inside WGS84 ranges"""
    try:
        lat = float(lat)
        lng = float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def project_to_pixels(lats, lngs, zoom: float) -> np.ndarray:
    """
    Project coordinates to world pixel space at a zoom level

    Uses spherical Web-Mercator with 512px tiles, matching what the
    map renderer draws, so distances are screen distances.

    Args:
        lats: Sequence of latitudes
        lngs: Sequence of longitudes
        zoom: Map zoom level

    Returns:
        Array of shape (n, 2) with x, y in pixels
    """
    lat = np.clip(np.asarray(lats, dtype=float), -MAX_MERCATOR_LAT, MAX_MERCATOR_LAT)
    lng = np.asarray(lngs, dtype=float)
    world = TILE_SIZE * (2.0 ** zoom)

    x = (lng + 180.0) / 360.0 * world
    lat_rad = np.radians(lat)
    y = (1.0 - np.log(np.tan(lat_rad) + 1.0 / np.cos(lat_rad)) / math.pi) / 2.0 * world

    return np.column_stack((x, y))


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers"""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2 +
        math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
        math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
