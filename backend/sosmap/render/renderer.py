"""
Map Rendering Collaborator

The primitive operations the engine consumes from the map library:
point markers, line layers, a heatmap layer and camera easing. The
engine never reaches into the renderer beyond this set.

SocketIORenderer is the production implementation. Calls are recorded
synchronously (reconcile must not block) and shipped to connected
dashboards as one `map:render` event per flush.
"""

import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

from sosmap.models.map_state import LatLng, MapViewport
from sosmap.render.visuals import LineStyle, MarkerVisual

if TYPE_CHECKING:
    from sosmap.websocket.emitter import MapEventEmitter

logger = logging.getLogger(__name__)


RenderHandle = Any
EasingFn = Callable[[float], float]


class MapRenderer(ABC):
    """Primitive render operations used by the registry, route renderer and camera"""

    # Point markers
    @abstractmethod
    def create_marker(self, item_id: str, lat: float, lng: float, visual: MarkerVisual) -> RenderHandle:
        """Create a point symbol and return its handle"""

    @abstractmethod
    def update_marker(self, handle: RenderHandle, lat: float, lng: float, visual: MarkerVisual) -> None:
        """Move / restyle an existing symbol in place"""

    @abstractmethod
    def set_marker_style(self, handle: RenderHandle, visual: MarkerVisual) -> None:
        """Restyle without moving"""

    @abstractmethod
    def remove_marker(self, handle: RenderHandle) -> None:
        """Release a symbol"""

    # Line layers
    @abstractmethod
    def add_line(self, layer_id: str, coordinates: Sequence[LatLng], style: LineStyle) -> RenderHandle:
        """Create a line layer from a coordinate sequence"""

    @abstractmethod
    def update_line(self, handle: RenderHandle, coordinates: Sequence[LatLng]) -> None:
        """Replace a line layer's geometry"""

    @abstractmethod
    def remove_line(self, handle: RenderHandle) -> None:
        """Release a line layer"""

    # Heatmap
    @abstractmethod
    def set_heatmap(self, points: Sequence[Tuple[float, float, float]]) -> None:
        """Replace heatmap source with (lat, lng, weight) points"""

    @abstractmethod
    def clear_heatmap(self) -> None:
        """Remove the heatmap layer"""

    # Camera
    @abstractmethod
    def ease_camera(
        self,
        center: LatLng,
        zoom: float,
        pitch: float,
        bearing: float,
        duration_ms: float,
        easing: EasingFn,
    ) -> None:
        """Start an eased camera move"""

    @abstractmethod
    def stop_camera(self) -> None:
        """Abort any in-flight camera easing"""

    @abstractmethod
    def get_zoom(self) -> float:
        """Current zoom"""

    @abstractmethod
    def get_pitch(self) -> float:
        """Current pitch"""


class SocketIORenderer(MapRenderer):
    """
    Renderer that forwards primitive operations to dashboard clients

    Usage:
        renderer = SocketIORenderer(emitter)
        registry = MarkerRegistry(renderer)
        registry.reconcile(items)
        await renderer.flush()
    """

    def __init__(self, emitter: Optional['MapEventEmitter'] = None, viewport: Optional[MapViewport] = None):
        """
        Args:
            emitter: MapEventEmitter used by flush()
            viewport: Initial camera state
        """
        self.emitter = emitter
        self.viewport = viewport or MapViewport()

        self._pending: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

        # handle -> item/layer id, for debugging and client-side lookup
        self._live_markers: Dict[str, str] = {}
        self._live_lines: Dict[str, str] = {}

        self.total_commands = 0
        self.total_flushes = 0

    def set_emitter(self, emitter: 'MapEventEmitter'):
        """Set emitter after initialization"""
        self.emitter = emitter

    def _push(self, op: str, **fields):
        self._pending.append({'op': op, **fields})
        self.total_commands += 1

    # ============================================
    # Point markers
    # ============================================

    def create_marker(self, item_id, lat, lng, visual):
        handle = f"m-{next(self._ids)}"
        self._live_markers[handle] = item_id
        self._push('marker:create', handle=handle, itemId=item_id, lat=lat, lng=lng, visual=visual.to_dict())
        return handle

    def update_marker(self, handle, lat, lng, visual):
        self._push('marker:update', handle=handle, lat=lat, lng=lng, visual=visual.to_dict())

    def set_marker_style(self, handle, visual):
        self._push('marker:style', handle=handle, visual=visual.to_dict())

    def remove_marker(self, handle):
        self._live_markers.pop(handle, None)
        self._push('marker:remove', handle=handle)

    # ============================================
    # Line layers
    # ============================================

    def add_line(self, layer_id, coordinates, style):
        handle = f"l-{next(self._ids)}"
        self._live_lines[handle] = layer_id
        self._push(
            'line:add',
            handle=handle,
            layerId=layer_id,
            coordinates=[[lng, lat] for lat, lng in coordinates],
            style=style.to_dict(),
        )
        return handle

    def update_line(self, handle, coordinates):
        self._push('line:update', handle=handle, coordinates=[[lng, lat] for lat, lng in coordinates])

    def remove_line(self, handle):
        self._live_lines.pop(handle, None)
        self._push('line:remove', handle=handle)

    # ============================================
    # Heatmap
    # ============================================

    def set_heatmap(self, points):
        self._push('heatmap:set', points=[{'lat': lat, 'lng': lng, 'weight': w} for lat, lng, w in points])

    def clear_heatmap(self):
        self._push('heatmap:clear')

    # ============================================
    # Camera
    # ============================================

    def ease_camera(self, center, zoom, pitch, bearing, duration_ms, easing):
        self.viewport = MapViewport(lat=center[0], lng=center[1], zoom=zoom, pitch=pitch, bearing=bearing)
        self._push(
            'camera:ease',
            center=[center[1], center[0]],
            zoom=zoom,
            pitch=pitch,
            bearing=bearing,
            duration=duration_ms,
            easing=getattr(easing, '__name__', 'ease_out'),
        )

    def stop_camera(self):
        self._push('camera:stop')

    def get_zoom(self) -> float:
        return self.viewport.zoom

    def get_pitch(self) -> float:
        return self.viewport.pitch

    def report_viewport(self, viewport: MapViewport):
        """Record the camera state a client reports after user interaction"""
        self.viewport = viewport

    # ============================================
    # Delivery
    # ============================================

    def drain(self) -> List[Dict[str, Any]]:
        """Take all buffered commands"""
        commands, self._pending = self._pending, []
        return commands

    async def flush(self):
        """Send buffered commands to clients as a single render event"""
        commands = self.drain()
        if not commands:
            return
        self.total_flushes += 1
        if self.emitter is None:
            logger.debug("[Renderer] No emitter, dropped %d commands", len(commands))
            return
        await self.emitter.emit_render_commands(commands, timestamp=time.time())

    def get_stats(self) -> Dict[str, Any]:
        """Get renderer statistics"""
        return {
            'liveMarkers': len(self._live_markers),
            'liveLines': len(self._live_lines),
            'pendingCommands': len(self._pending),
            'totalCommands': self.total_commands,
            'totalFlushes': self.total_flushes,
        }
