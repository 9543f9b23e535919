"""
Route Renderer

One line layer per route id. Reconciled the same way as the marker
registry: vanished routes are released, new routes drawn, and a route
superseded by a same-id route with a new polyline gets its geometry
replaced in place.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sosmap.errors import ReconcileInvariantError
from sosmap.engine.marker_registry import ReconcileResult, check_unique_ids
from sosmap.models.map_state import Route
from sosmap.render.renderer import MapRenderer
from sosmap.render.visuals import DEFAULT_ROUTE_STYLE, LineStyle

logger = logging.getLogger(__name__)


ROUTE_LAYER_PREFIX = "route-line-"


class RouteRenderer:
    """
    Keep exactly one line layer per active route

    Usage:
        routes = RouteRenderer(renderer)
        routes.reconcile(planner.active_routes())
    """

    def __init__(self, renderer: MapRenderer, style: Optional[LineStyle] = None):
        self.renderer = renderer
        self.style = style or DEFAULT_ROUTE_STYLE

        self._handles: Dict[str, Any] = {}
        self._routes: Dict[str, Route] = {}
        self._geometry: Dict[str, str] = {}

        self.reconcile_count = 0

    def reconcile(self, next_routes: Iterable[Route]) -> ReconcileResult:
        """
        Bring line layers in line with `next_routes`

        Routes with an empty polyline are drawn as a straight segment
        from origin to destination.
        """
        routes = list(next_routes)
        check_unique_ids([r.id for r in routes], "RouteRenderer")

        next_map = {r.id: r for r in routes}
        current_ids = set(self._handles)
        next_ids = set(next_map)
        result = ReconcileResult()

        for route_id in sorted(current_ids - next_ids):
            self.renderer.remove_line(self._handles.pop(route_id))
            self._routes.pop(route_id, None)
            self._geometry.pop(route_id, None)
            result.removed.append(route_id)

        for route_id in sorted(next_ids - current_ids):
            route = next_map[route_id]
            handle = self.renderer.add_line(
                f"{ROUTE_LAYER_PREFIX}{route_id}", self._coordinates(route), self.style
            )
            self._handles[route_id] = handle
            self._remember(route)
            result.added.append(route_id)

        for route_id in sorted(next_ids & current_ids):
            route = next_map[route_id]
            if self._geometry_key(route) == self._geometry[route_id]:
                self._routes[route_id] = route
                continue
            self.renderer.update_line(self._handles[route_id], self._coordinates(route))
            self._remember(route)
            result.updated.append(route_id)

        if set(self._handles) != next_ids:
            logger.critical("[RouteRenderer] Line layers diverged from route set")
            raise ReconcileInvariantError("Route layer map does not match reconciled routes")

        self.reconcile_count += 1
        return result

    @staticmethod
    def _coordinates(route: Route) -> List:
        if route.polyline:
            return list(route.polyline)
        return [route.origin, route.destination]

    def _geometry_key(self, route: Route) -> str:
        if route.polyline:
            return route.geometry_signature()
        return f"{route.origin}->{route.destination}"

    def _remember(self, route: Route):
        self._routes[route.id] = route
        self._geometry[route.id] = self._geometry_key(route)

    def active_routes(self) -> List[Route]:
        return [self._routes[i] for i in sorted(self._routes)]

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, route_id: str) -> bool:
        return route_id in self._handles

    def clear(self) -> List[str]:
        """Release every line layer"""
        return self.reconcile([]).removed

    def get_stats(self) -> Dict[str, Any]:
        return {
            'activeRoutes': len(self._handles),
            'reconcileCount': self.reconcile_count,
        }
