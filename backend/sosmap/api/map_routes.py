"""
Map Routes - Live map view endpoints

Endpoints:
- GET /api/map/state - Current map view state
- GET /api/map/stats - Engine statistics
- PUT /api/map/filters - Update layer filters (partial)
- PUT /api/map/viewport - Report the camera viewport
- POST /api/map/select/{marker_id} - Select a marker and fly to it
- DELETE /api/map/select - Clear the selection
- POST /api/map/batches - Push an entity batch into live sync
"""

import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, ValidationError

from sosmap.models.entities import EntityBatch
from sosmap.models.map_state import MapViewport
from sosmap.view import MapView, get_map_view

router = APIRouter(prefix="/api/map", tags=["map"])


# ============================================
# Request/Response Models
# ============================================

class SelectRequest(BaseModel):
    """Optional camera overrides for a selection"""
    finalZoom: Optional[float] = None
    durationMs: Optional[float] = Field(default=None, ge=0)


class ReconcileResponse(BaseModel):
    """Render diff produced by a view change"""
    status: str
    reconcile: Optional[Dict[str, Any]] = None
    timestamp: float


class BatchAcceptedResponse(BaseModel):
    """Result of pushing a batch"""
    accepted: bool
    batchId: Optional[str] = None
    queued: int
    timestamp: float


def _require_view() -> MapView:
    view = get_map_view()
    if view is None:
        raise HTTPException(
            status_code=500,
            detail="Map view not initialized. Server may still be starting."
        )
    return view


# ============================================
# Endpoints
# ============================================

@router.get("/state")
async def get_map_state():
    """Get the current filters, viewport, clusters, routes and feed status"""
    view = _require_view()
    return {**view.get_state(), "timestamp": time.time()}


@router.get("/stats")
async def get_map_stats():
    """Get engine statistics (registry, routes, sync, zone stats)"""
    view = _require_view()
    return {**view.get_stats(), "timestamp": time.time()}


@router.put("/filters", response_model=ReconcileResponse)
async def update_filters(changes: Dict[str, Any]):
    """
    Update layer filters

    Accepts any subset of the filter flags, e.g. {"showSOS": false}.
    """
    view = _require_view()
    try:
        result = await view.update_filters(changes)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return ReconcileResponse(
        status="updated",
        reconcile=result.to_dict(),
        timestamp=time.time(),
    )


@router.put("/viewport", response_model=ReconcileResponse)
async def update_viewport(viewport: MapViewport):
    """
    Report the camera viewport

    Markers are re-clustered when the zoom changes.
    """
    view = _require_view()
    result = await view.set_viewport(viewport)
    return ReconcileResponse(
        status="updated" if result is not None else "unchanged",
        reconcile=result.to_dict() if result is not None else None,
        timestamp=time.time(),
    )


@router.post("/select/{marker_id}")
async def select_marker(marker_id: str, request: Optional[SelectRequest] = None):
    """
    Select a marker or cluster and start the two-phase camera flight

    Returns 404 if the id is not on the map.
    """
    view = _require_view()
    request = request or SelectRequest()
    animation = await view.on_marker_select(marker_id, request.finalZoom, request.durationMs)
    if animation is None:
        raise HTTPException(status_code=404, detail=f"Marker {marker_id} not found")

    return {
        "status": "selected",
        "selectedId": marker_id,
        "animation": animation.to_dict(),
        "timestamp": time.time(),
    }


@router.delete("/select")
async def clear_selection():
    """Clear the selection and stop any camera flight"""
    view = _require_view()
    await view.clear_selection()
    return {"status": "cleared", "timestamp": time.time()}


@router.post("/batches", response_model=BatchAcceptedResponse)
async def push_batch(batch: EntityBatch):
    """
    Push an entity batch into the live sync queue

    Used by the push feed mode; batches are applied in arrival order.
    Returns 409 when the feed is not accepting batches.
    """
    view = _require_view()
    if not view.submit(batch):
        raise HTTPException(status_code=409, detail="Live feed is not accepting batches")

    return BatchAcceptedResponse(
        accepted=True,
        batchId=batch.batch_id,
        queued=view.sync.get_stats().get("queued", 0) if view.sync else 0,
        timestamp=time.time(),
    )
