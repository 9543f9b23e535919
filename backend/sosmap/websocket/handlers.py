"""
WebSocket Client Event Handlers

Handles client->server events from dashboards and forwards them to the
map view. Registered with the Socket.IO server in main.py.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from sosmap.models.map_state import MapViewport
from sosmap.view import MapView, get_map_view

from .emitter import MapEventEmitter
from .events import (
    ClientEvent,
    MarkerSelectRequest,
    ViewportUpdateRequest,
    ZoneSelectRequest,
)

logger = logging.getLogger(__name__)


class MapSocketHandlers:
    """
    Centralized WebSocket event handlers

    Usage:
        handlers = MapSocketHandlers(sio, emitter)
    """

    def __init__(
        self,
        sio,
        emitter: MapEventEmitter,
        view_provider: Callable[[], Optional[MapView]] = get_map_view,
    ):
        """
        Args:
            sio: Socket.IO AsyncServer instance
            emitter: Map event emitter
            view_provider: Returns the live MapView (None before startup)
        """
        self.sio = sio
        self.emitter = emitter
        self.view_provider = view_provider

        # Track connected clients
        self._clients: Dict[str, Dict[str, Any]] = {}

        self._register_handlers()

    def _register_handlers(self):
        """Register all Socket.IO event handlers"""

        # Connection events
        self.sio.on(ClientEvent.CONNECT.value, self.handle_connect)
        self.sio.on(ClientEvent.DISCONNECT.value, self.handle_disconnect)

        # Selection
        self.sio.on(ClientEvent.MARKER_SELECT.value, self.handle_marker_select)
        self.sio.on(ClientEvent.MARKER_DESELECT.value, self.handle_marker_deselect)

        # Zones
        self.sio.on(ClientEvent.ZONE_SELECT.value, self.handle_zone_select)
        self.sio.on(ClientEvent.ZONE_CLEAR.value, self.handle_zone_clear)
        self.sio.on(ClientEvent.ZONE_REFRESH.value, self.handle_zone_refresh)

        # View
        self.sio.on(ClientEvent.FILTERS_UPDATE.value, self.handle_filters_update)
        self.sio.on(ClientEvent.VIEWPORT_UPDATE.value, self.handle_viewport_update)

    def _view(self) -> Optional[MapView]:
        return self.view_provider()

    # ============================================
    # Connection Handlers
    # ============================================

    async def handle_connect(self, sid: str, environ: Dict, auth: Any = None):
        """
        Handle client connection

        Sends connection:success and the current map state.
        """
        self._clients[sid] = {
            "sid": sid,
            "connected_at": time.time(),
            "remote_addr": environ.get("REMOTE_ADDR", "unknown"),
        }
        logger.info("[WS] Client connected: %s from %s", sid, self._clients[sid]["remote_addr"])

        await self.emitter.emit_connection_success(sid)

        view = self._view()
        if view is not None:
            await self.emitter.emit_map_state(view.get_state(), room=sid)

    async def handle_disconnect(self, sid: str, *args):
        """Handle client disconnection"""
        client = self._clients.pop(sid, None)
        if client is not None:
            duration = time.time() - client["connected_at"]
            logger.info("[WS] Client disconnected: %s (duration: %.1fs)", sid, duration)

    # ============================================
    # Selection Handlers
    # ============================================

    async def handle_marker_select(self, sid: str, data: Dict):
        """
        Handle marker selection

        Args:
            sid: Session ID
            data: {markerId, finalZoom?, durationMs?}
        """
        view = self._view()
        if view is None:
            return
        try:
            request = MarkerSelectRequest.model_validate(data or {})
        except ValidationError as e:
            await self.emitter.emit_request_error(sid, ClientEvent.MARKER_SELECT.value, str(e))
            return

        animation = await view.on_marker_select(request.markerId, request.finalZoom, request.durationMs)
        if animation is None:
            await self.emitter.emit_request_error(
                sid, ClientEvent.MARKER_SELECT.value, f"Unknown marker: {request.markerId}"
            )

    async def handle_marker_deselect(self, sid: str, data: Dict = None):
        view = self._view()
        if view is not None:
            await view.clear_selection()

    # ============================================
    # Zone Handlers
    # ============================================

    async def handle_zone_select(self, sid: str, data: Dict):
        """
        Handle zone selection

        Args:
            sid: Session ID
            data: {zoneId}
        """
        view = self._view()
        if view is None:
            return
        try:
            request = ZoneSelectRequest.model_validate(data or {})
        except ValidationError as e:
            await self.emitter.emit_request_error(sid, ClientEvent.ZONE_SELECT.value, str(e))
            return
        await view.select_zone(request.zoneId)

    async def handle_zone_clear(self, sid: str, data: Dict = None):
        view = self._view()
        if view is not None:
            await view.clear_zone()

    async def handle_zone_refresh(self, sid: str, data: Dict = None):
        view = self._view()
        if view is not None:
            await view.refresh_zone()

    # ============================================
    # View Handlers
    # ============================================

    async def handle_filters_update(self, sid: str, data: Dict):
        """
        Handle filter changes

        Args:
            sid: Session ID
            data: Partial filter flags, e.g. {showSOS: false}
        """
        view = self._view()
        if view is None:
            return
        try:
            await view.update_filters(data or {})
        except ValidationError as e:
            await self.emitter.emit_request_error(sid, ClientEvent.FILTERS_UPDATE.value, str(e))

    async def handle_viewport_update(self, sid: str, data: Dict):
        """
        Handle camera state reported by a client after user interaction

        Args:
            sid: Session ID
            data: {lat, lng, zoom, pitch?, bearing?}
        """
        view = self._view()
        if view is None:
            return
        try:
            request = ViewportUpdateRequest.model_validate(data or {})
        except ValidationError as e:
            await self.emitter.emit_request_error(sid, ClientEvent.VIEWPORT_UPDATE.value, str(e))
            return
        await view.set_viewport(MapViewport(**request.model_dump()))

    # ============================================
    # Utility Methods
    # ============================================

    def get_connected_clients(self) -> Dict[str, Dict[str, Any]]:
        """Get all connected clients"""
        return self._clients.copy()

    def get_client_count(self) -> int:
        """Get number of connected clients"""
        return len(self._clients)


# Global handlers instance (initialized in main.py)
handlers: Optional[MapSocketHandlers] = None


def get_handlers() -> Optional[MapSocketHandlers]:
    """Get the global WebSocket handlers instance"""
    return handlers


def set_handlers(h: Optional[MapSocketHandlers]):
    """Set the global WebSocket handlers instance"""
    global handlers
    handlers = h
