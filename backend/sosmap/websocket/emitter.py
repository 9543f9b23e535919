"""
WebSocket Event Emitter

Sends live map updates to connected dashboards. All server->client
events go through here.

Features:
- Centralized event emission
- Sequenced render command batches
- Room-based targeting
- Error handling and statistics
"""

import logging
import time
from typing import Any, Dict, List, Optional

from .events import (
    ServerEvent,
    ConnectionSuccessData,
    MapRenderData,
    CameraAnimateData,
    FeedStatusData,
    ZoneStatsData,
    RequestErrorData,
)

logger = logging.getLogger(__name__)


class MapEventEmitter:
    """
    Centralized WebSocket event emitter

    Usage:
        emitter = MapEventEmitter(sio)
        await emitter.emit_render_commands(renderer.drain())
    """

    def __init__(self, sio):
        """
        Args:
            sio: Socket.IO AsyncServer instance
        """
        self.sio = sio

        self._render_sequence = 0

        # Statistics
        self._emit_count = 0
        self._error_count = 0
        self._last_emit_time = 0.0

    # ============================================
    # Connection Events
    # ============================================

    async def emit_connection_success(self, sid: str):
        """Emit connection success to specific client"""
        data = ConnectionSuccessData(timestamp=time.time())
        await self._emit(ServerEvent.CONNECTION_SUCCESS.value, data.model_dump(), room=sid)

    async def emit_map_state(self, state: Dict[str, Any], room: str = None):
        """Emit a full map state snapshot (sent to newly connected clients)"""
        await self._emit(ServerEvent.MAP_STATE.value, {**state, "timestamp": time.time()}, room)

    # ============================================
    # Render Events
    # ============================================

    async def emit_render_commands(
        self,
        commands: List[Dict[str, Any]],
        timestamp: Optional[float] = None,
        room: str = None,
    ):
        """
        Emit one batch of render commands

        Clients apply commands in order; `sequence` lets them detect gaps.

        Args:
            commands: Primitive render operations from SocketIORenderer
            timestamp: Time the batch was produced
            room: Optional room to emit to (default: broadcast)
        """
        self._render_sequence += 1
        data = MapRenderData(
            sequence=self._render_sequence,
            commands=commands,
            timestamp=timestamp or time.time(),
        )
        await self._emit(ServerEvent.MAP_RENDER.value, data.model_dump(), room)

    async def emit_camera_animation(self, animation: Dict[str, Any]):
        """Emit the state of the active camera animation"""
        data = CameraAnimateData(animation=animation, timestamp=time.time())
        await self._emit(ServerEvent.CAMERA_ANIMATE.value, data.model_dump())

    # ============================================
    # Status Events
    # ============================================

    async def emit_feed_status(self, status: Dict[str, Any]):
        """
        Emit live feed status

        Args:
            status: LiveSyncManager.status() output
        """
        data = FeedStatusData(
            state=status.get("state", "idle"),
            source=status.get("source", "feed"),
            degraded=status.get("degraded", False),
            lastError=status.get("lastError"),
            timestamp=time.time(),
        )
        await self._emit(ServerEvent.FEED_STATUS.value, data.model_dump())

    async def emit_zone_stats(self, zone_state: Dict[str, Any]):
        """
        Emit selected-zone statistics with trends

        Args:
            zone_state: ZoneStatsTracker.to_dict() output
        """
        data = ZoneStatsData(**zone_state, timestamp=time.time())
        await self._emit(ServerEvent.ZONE_STATS.value, data.model_dump())

    async def emit_request_error(self, sid: str, event: str, message: str):
        """Tell one client its request could not be handled"""
        data = RequestErrorData(event=event, message=message, timestamp=time.time())
        await self._emit(ServerEvent.REQUEST_ERROR.value, data.model_dump(), room=sid)

    # ============================================
    # Internal Methods
    # ============================================

    async def _emit(self, event: str, data: Any, room: str = None):
        """
        Internal emit with error handling and statistics

        Args:
            event: Event name
            data: Event data
            room: Optional room to emit to
        """
        try:
            if room:
                await self.sio.emit(event, data, room=room)
            else:
                await self.sio.emit(event, data)

            self._emit_count += 1
            self._last_emit_time = time.time()

        except Exception as e:
            self._error_count += 1
            logger.error("[WS] Failed to emit %s: %s", event, e)

    def get_stats(self) -> Dict[str, Any]:
        """Get emitter statistics"""
        return {
            "totalEmits": self._emit_count,
            "errorCount": self._error_count,
            "lastEmitTime": self._last_emit_time,
            "renderSequence": self._render_sequence,
        }


# Global emitter instance (initialized in main.py)
emitter: Optional[MapEventEmitter] = None


def get_emitter() -> Optional[MapEventEmitter]:
    """Get the global WebSocket emitter instance"""
    return emitter


def set_emitter(e: Optional[MapEventEmitter]):
    """Set the global WebSocket emitter instance"""
    global emitter
    emitter = e
