"""
WebSocket Event Type Definitions

Event names and payload models exchanged with dashboard clients.

Events are categorized as:
- Server -> Client: render commands, camera moves, feed and zone status
- Client -> Server: selection, filters, viewport reports
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============================================
# Event Name Constants
# ============================================

class ServerEvent(str, Enum):
    """Events emitted from server to client"""

    # Connection
    CONNECTION_SUCCESS = "connection:success"

    # Map
    MAP_STATE = "map:state"
    MAP_RENDER = "map:render"
    CAMERA_ANIMATE = "camera:animate"

    # Status
    FEED_STATUS = "feed:status"
    ZONE_STATS = "zone:stats"

    # Request failures
    REQUEST_ERROR = "request:error"


class ClientEvent(str, Enum):
    """Events received from client"""

    # Connection
    CONNECT = "connect"
    DISCONNECT = "disconnect"

    # Selection
    MARKER_SELECT = "marker:select"
    MARKER_DESELECT = "marker:deselect"

    # Zones
    ZONE_SELECT = "zone:select"
    ZONE_CLEAR = "zone:clear"
    ZONE_REFRESH = "zone:refresh"

    # View
    FILTERS_UPDATE = "filters:update"
    VIEWPORT_UPDATE = "viewport:update"


# ============================================
# Server -> Client Event Data Models
# ============================================

class ConnectionSuccessData(BaseModel):
    """Data for connection:success event"""
    message: str = "Connected to SOS live map"
    timestamp: float
    serverVersion: str = "1.0.0"


class MapRenderData(BaseModel):
    """Data for map:render event: ordered primitive render commands"""
    sequence: int
    commands: List[Dict[str, Any]]
    timestamp: float


class CameraAnimateData(BaseModel):
    """Data for camera:animate event"""
    animation: Dict[str, Any]
    timestamp: float


class FeedStatusData(BaseModel):
    """Data for feed:status event"""
    state: str
    source: str
    degraded: bool = False
    lastError: Optional[str] = None
    timestamp: float


class ZoneStatsData(BaseModel):
    """Data for zone:stats event"""
    state: str
    zoneId: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    previous: Optional[Dict[str, Any]] = None
    trends: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    stale: bool = False
    lastError: Optional[str] = None
    timestamp: float


class RequestErrorData(BaseModel):
    """Data for request:error event"""
    event: str
    message: str
    timestamp: float


# ============================================
# Client -> Server Request Models
# ============================================

class MarkerSelectRequest(BaseModel):
    """Request for marker:select event"""
    markerId: str
    finalZoom: Optional[float] = None
    durationMs: Optional[float] = Field(default=None, ge=0)


class ZoneSelectRequest(BaseModel):
    """Request for zone:select event"""
    zoneId: str


class ViewportUpdateRequest(BaseModel):
    """Request for viewport:update event"""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    zoom: float = Field(..., ge=0, le=24)
    pitch: float = 0.0
    bearing: float = 0.0
