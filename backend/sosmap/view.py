"""
Map View

Wires the engine together for one live map and owns the lifecycle of
every task it starts.

Control flow:
    LiveSyncManager -> EntityStore -> visible() -> cluster() -> MarkerRegistry
    RoutePlanner -> RouteRenderer
    marker selection -> MarkerRegistry.set_selected + CameraController.fly_to
    ZoneStatsTracker runs on its own, keyed by the selected zone
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from sosmap.engine.camera import CameraAnimation, CameraController
from sosmap.engine.clustering import ClusterResult, cluster
from sosmap.engine.filter_engine import kind_counts, visible
from sosmap.engine.heatmap import build_heatmap
from sosmap.engine.marker_registry import MarkerRegistry, ReconcileResult
from sosmap.engine.route_planner import RoutePlanner
from sosmap.engine.route_renderer import RouteRenderer
from sosmap.models.entities import EntityBatch
from sosmap.models.map_state import FilterConfig, MapViewport
from sosmap.render.renderer import MapRenderer
from sosmap.stats.zone_stats import StatsFetcher, ZoneStatsTracker
from sosmap.services.directions_service import DirectionsService
from sosmap.sync.entity_store import ApplyResult, EntityStore
from sosmap.sync.feeds import FeedSource
from sosmap.sync.live_sync import LiveSyncManager

if TYPE_CHECKING:
    from sosmap.websocket.emitter import MapEventEmitter

logger = logging.getLogger(__name__)


class MapView:
    """
    One live operational map

    Usage:
        view = MapView.from_config(config.get_map_config(), renderer,
                                   emitter=emitter, source=source)
        await view.start()
        await view.on_marker_select("sos-1")
        await view.stop()
    """

    def __init__(
        self,
        renderer: MapRenderer,
        emitter: Optional["MapEventEmitter"] = None,
        source: Optional[FeedSource] = None,
        directions: Optional[DirectionsService] = None,
        stats_fetch: Optional[StatsFetcher] = None,
        filters: Optional[FilterConfig] = None,
        viewport: Optional[MapViewport] = None,
        radius_px: float = 50.0,
        min_points: int = 3,
        max_zoom: float = 14.0,
        overview_zoom: float = 2.0,
        final_zoom: float = 15.0,
        final_pitch: float = 45.0,
        duration_ms: float = 2000.0,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        max_retries: Optional[int] = None,
        zone_refresh_interval: float = 15.0,
    ):
        self.renderer = renderer
        self.emitter = emitter

        self.filters = filters or FilterConfig()
        self.viewport = viewport or MapViewport()
        self.radius_px = radius_px
        self.min_points = min_points
        self.max_zoom = max_zoom

        self.store = EntityStore()
        self.registry = MarkerRegistry(renderer)
        self.routes = RouteRenderer(renderer)
        self.camera = CameraController(
            renderer,
            overview_zoom=overview_zoom,
            final_zoom=final_zoom,
            final_pitch=final_pitch,
            duration_ms=duration_ms,
            on_phase=self._on_camera_phase,
        )

        self.planner: Optional[RoutePlanner] = None
        if directions is not None:
            self.planner = RoutePlanner(directions, on_routes_changed=self.render_routes)

        self.zone_stats: Optional[ZoneStatsTracker] = None
        if stats_fetch is not None:
            self.zone_stats = ZoneStatsTracker(
                stats_fetch,
                refresh_interval=zone_refresh_interval,
                on_update=self._on_zone_update,
            )

        self.sync: Optional[LiveSyncManager] = None
        if source is not None:
            self.sync = LiveSyncManager(
                source,
                self.store,
                on_applied=self.on_batch_applied,
                on_status=self._on_feed_status,
                retry_base_delay=retry_base_delay,
                retry_max_delay=retry_max_delay,
                max_retries=max_retries,
            )

        self.last_frame = ClusterResult()
        self.last_reconcile = ReconcileResult()
        self._heatmap_points: Optional[List] = None
        self._background: Set[asyncio.Task] = set()
        self._started = False
        self._stopped = False

    @classmethod
    def from_config(
        cls,
        map_config: Dict[str, Any],
        renderer: MapRenderer,
        **kwargs,
    ) -> "MapView":
        """
        Build a view from the `map` config section

        Args:
            map_config: ConfigManager.get_map_config() output
            renderer: Render collaborator
            **kwargs: emitter, source, directions, stats_fetch
        """
        clustering = map_config.get('clustering', {})
        camera = map_config.get('camera', {})
        viewport = map_config.get('viewport', {})
        sync = map_config.get('sync', {})
        center = viewport.get('center', [22.3072, 73.1812])

        return cls(
            renderer,
            filters=FilterConfig.model_validate(map_config.get('filters', {})),
            viewport=MapViewport(lat=center[0], lng=center[1], zoom=viewport.get('zoom', 12.0)),
            radius_px=clustering.get('radiusPx', 50.0),
            min_points=clustering.get('minPoints', 3),
            max_zoom=clustering.get('maxZoom', 14.0),
            overview_zoom=camera.get('overviewZoom', 2.0),
            final_zoom=camera.get('finalZoom', 15.0),
            final_pitch=camera.get('finalPitch', 45.0),
            duration_ms=camera.get('durationMs', 2000.0),
            retry_base_delay=sync.get('retryBaseDelay', 1.0),
            retry_max_delay=sync.get('retryMaxDelay', 30.0),
            max_retries=sync.get('maxRetries'),
            zone_refresh_interval=map_config.get('zoneStats', {}).get('refreshInterval', 15.0),
            **kwargs,
        )

    @property
    def zoom(self) -> float:
        return self.viewport.zoom

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self):
        """Open the live feed"""
        if self._started or self._stopped:
            return
        self._started = True
        if self.sync is not None:
            await self.sync.start()
        logger.info("[MapView] Started")

    async def stop(self):
        """
        Tear down every owned task and render resource

        Safe to call more than once.
        """
        if self._stopped:
            return
        self._stopped = True

        if self.sync is not None:
            await self.sync.stop()
        self.camera.cancel()
        if self.zone_stats is not None:
            await self.zone_stats.stop()
        if self.planner is not None:
            await self.planner.stop()

        tasks = [t for t in self._background if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.registry.clear()
        self.routes.clear()
        if self._heatmap_points is not None:
            self.renderer.clear_heatmap()
            self._heatmap_points = None
        await self.flush()
        logger.info("[MapView] Stopped")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ============================================
    # Render pipeline
    # ============================================

    def render(self) -> ReconcileResult:
        """
        Run filter -> cluster -> reconcile for the current state

        Synchronous; render commands are buffered until flush().
        """
        shown = visible(self.store.markers(), self.filters)

        if self.filters.show_clusters:
            frame = cluster(
                shown,
                self.zoom,
                radius_px=self.radius_px,
                min_points=self.min_points,
                max_zoom=self.max_zoom,
            )
        else:
            frame = ClusterResult(clusters=[], singles=sorted(shown, key=lambda m: m.id))

        result = self.registry.reconcile(frame.items())
        self.last_frame = frame
        self.last_reconcile = result

        self._render_heatmap(shown)
        self._reconcile_routes()
        return result

    def _render_heatmap(self, shown):
        if not self.filters.show_heatmap:
            if self._heatmap_points is not None:
                self.renderer.clear_heatmap()
                self._heatmap_points = None
            return

        points = build_heatmap(shown)
        if points != self._heatmap_points:
            self.renderer.set_heatmap(points)
            self._heatmap_points = points

    def _reconcile_routes(self) -> ReconcileResult:
        if self.planner is None or not self.filters.show_routes:
            return self.routes.reconcile([])
        return self.routes.reconcile(self.planner.active_routes())

    async def flush(self):
        """Ship buffered render commands"""
        flush = getattr(self.renderer, 'flush', None)
        if flush is not None:
            await flush()

    async def on_batch_applied(self, result: ApplyResult):
        """Pipeline callback awaited by LiveSyncManager after every batch"""
        if self.planner is not None:
            self.planner.update(self.store.markers())
        self.render()
        await self.flush()

    async def render_routes(self):
        """Route lookups finished; redraw route layers"""
        if self._stopped:
            return
        self._reconcile_routes()
        await self.flush()

    def submit(self, batch: EntityBatch) -> bool:
        """Hand a batch pushed over HTTP to the live sync manager"""
        if self.sync is None:
            return False
        return self.sync.submit(batch)

    # ============================================
    # Selection
    # ============================================

    async def on_marker_select(
        self,
        marker_id: str,
        final_zoom: Optional[float] = None,
        duration_ms: Optional[float] = None,
    ) -> Optional[CameraAnimation]:
        """
        Select a marker (or cluster) and fly the camera to it

        Returns:
            The camera animation, or None if the id is unknown
        """
        item = self.store.get(marker_id) or self.registry.get_item(marker_id)
        if item is None:
            return None

        self.registry.set_selected(marker_id)
        animation = self.camera.fly_to((item.lat, item.lng), final_zoom, duration_ms)
        await self.flush()
        return animation

    async def clear_selection(self):
        self.registry.set_selected(None)
        self.camera.cancel()
        await self.flush()

    def _on_camera_phase(self, animation: CameraAnimation):
        self._spawn(self._publish_camera(animation))

    async def _publish_camera(self, animation: CameraAnimation):
        await self.flush()
        if self.emitter is not None:
            await self.emitter.emit_camera_animation(animation.to_dict())

    # ============================================
    # View settings
    # ============================================

    async def set_filters(self, filters: FilterConfig) -> ReconcileResult:
        self.filters = filters
        result = self.render()
        await self.flush()
        return result

    async def update_filters(self, changes: Dict[str, Any]) -> ReconcileResult:
        """Apply a partial filter update (camelCase or snake_case keys)"""
        fields = FilterConfig.model_fields
        aliased = {
            (fields[key].alias if key in fields else key): value
            for key, value in changes.items()
        }
        merged = {**self.filters.model_dump(by_alias=True), **aliased}
        return await self.set_filters(FilterConfig.model_validate(merged))

    async def set_viewport(self, viewport: MapViewport) -> Optional[ReconcileResult]:
        """
        Record the camera state a client reports

        Re-renders when the zoom changed, since cluster membership
        depends on it.
        """
        zoom_changed = viewport.zoom != self.viewport.zoom
        self.viewport = viewport
        report = getattr(self.renderer, 'report_viewport', None)
        if report is not None:
            report(viewport)

        if not zoom_changed:
            return None
        result = self.render()
        await self.flush()
        return result

    # ============================================
    # Zones
    # ============================================

    async def select_zone(self, zone_id: str):
        """Select a zone and wait for its first stats response"""
        if self.zone_stats is None:
            return None
        task = self.zone_stats.select_zone(zone_id)
        if task is not None:
            await task
        return self.zone_stats

    async def clear_zone(self):
        if self.zone_stats is None:
            return
        self.zone_stats.clear_zone()
        await self._on_zone_update(self.zone_stats)

    async def refresh_zone(self):
        if self.zone_stats is None:
            return None
        task = self.zone_stats.refresh()
        if task is not None:
            await task
        return self.zone_stats

    async def _on_zone_update(self, tracker: ZoneStatsTracker):
        if self.emitter is not None:
            await self.emitter.emit_zone_stats(tracker.to_dict())

    def _on_feed_status(self, sync: LiveSyncManager):
        if self.emitter is not None:
            self._spawn(self.emitter.emit_feed_status(sync.status()))

    # ============================================
    # State
    # ============================================

    def get_state(self) -> Dict[str, Any]:
        """Snapshot of the view for API responses and new clients"""
        return {
            'filters': self.filters.model_dump(by_alias=True),
            'viewport': self.viewport.model_dump(),
            'selectedId': self.registry.selected_id,
            'entityCounts': kind_counts(self.store.markers()),
            'clusters': [c.to_dict() for c in self.last_frame.clusters],
            'singles': [m.id for m in self.last_frame.singles],
            'routes': [r.to_dict() for r in self.routes.active_routes()],
            'heatmapPoints': len(self._heatmap_points or []),
            'feed': self.sync.status() if self.sync else None,
            'zone': self.zone_stats.to_dict() if self.zone_stats else None,
            'camera': self.camera.get_stats(),
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            'entities': len(self.store),
            'registry': self.registry.get_stats(),
            'routes': self.routes.get_stats(),
            'planner': self.planner.get_stats() if self.planner else None,
            'sync': self.sync.get_stats() if self.sync else None,
            'zoneStats': self.zone_stats.get_stats() if self.zone_stats else None,
        }


# Global view instance (initialized in main.py)
_map_view: Optional[MapView] = None


def get_map_view() -> Optional[MapView]:
    """Get the global MapView instance"""
    return _map_view


def set_map_view(view: Optional[MapView]):
    """Set the global MapView instance"""
    global _map_view
    _map_view = view
