"""
External Services

HTTP clients for the geospatial backend and the directions API.
"""

from .backend_client import (
    APIStatus,
    GeospatialBackendClient,
    get_backend_client,
    set_backend_client,
    close_backend_client,
)
from .directions_service import DirectionsService

__all__ = [
    "APIStatus",
    "GeospatialBackendClient",
    "get_backend_client",
    "set_backend_client",
    "close_backend_client",
    "DirectionsService",
]
