"""
API Routes Package

This module exports all FastAPI routers for the live map engine.
"""

from .map_routes import router as map_router
from .zone_routes import router as zone_router

__all__ = [
    "map_router",
    "zone_router",
]
