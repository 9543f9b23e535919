"""
Zone Routes - Zone selection and statistics endpoints

Endpoints:
- GET /api/zones - Zone catalogue from the backend
- GET /api/zones/stats - Stats and trends for the selected zone
- POST /api/zones/{zone_id}/select - Select a zone
- DELETE /api/zones/selection - Deselect
- POST /api/zones/refresh - Manually refresh the selected zone
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from sosmap.errors import FeedUnavailable
from sosmap.services.backend_client import get_backend_client
from sosmap.view import MapView, get_map_view

router = APIRouter(prefix="/api/zones", tags=["zones"])


def _require_zone_stats() -> MapView:
    view = get_map_view()
    if view is None or view.zone_stats is None:
        raise HTTPException(
            status_code=500,
            detail="Zone statistics not initialized. Server may still be starting."
        )
    return view


def _zone_response(view: MapView) -> Dict[str, Any]:
    return {**view.zone_stats.to_dict(), "timestamp": time.time()}


@router.get("")
async def list_zones():
    """Get the zone catalogue"""
    try:
        zones = await get_backend_client().fetch_zones()
    except FeedUnavailable as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "zones": [zone.model_dump() for zone in zones],
        "count": len(zones),
        "timestamp": time.time(),
    }


@router.get("/stats")
async def get_zone_stats():
    """
    Get statistics for the selected zone

    `state` is one of no_zone, loading, ready, failed. `stale` is set
    when the last refresh failed and the stats shown are older.
    """
    view = _require_zone_stats()
    return _zone_response(view)


@router.post("/{zone_id}/select")
async def select_zone(zone_id: str):
    """Select a zone; responds once the first stats request settles"""
    view = _require_zone_stats()
    await view.select_zone(zone_id)
    return _zone_response(view)


@router.delete("/selection")
async def clear_zone():
    """Deselect the current zone"""
    view = _require_zone_stats()
    await view.clear_zone()
    return _zone_response(view)


@router.post("/refresh")
async def refresh_zone():
    """Refresh the selected zone now"""
    view = _require_zone_stats()
    if view.zone_stats.zone_id is None:
        raise HTTPException(status_code=400, detail="No zone selected")
    await view.refresh_zone()
    return _zone_response(view)
