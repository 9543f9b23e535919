"""
Route Planner

Derives the set of active assignment routes from the entity store and
resolves their geometry through the directions service.

An open SOS case whose payload names an assigned helper or responder
that is present on the map gets one route, id `route-<case id>`, from
the assignee to the case. Reassignment supersedes the route under the
same id; a resolved, cancelled or unassigned case drops it.

Lookups run as tasks. A lookup that resolves after its assignment has
changed or ended is discarded.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from pydantic import ValidationError

from sosmap.models.entities import Marker, MarkerKind, SOSPayload, SOSStatus
from sosmap.models.map_state import LatLng, Route
from sosmap.services.directions_service import DirectionsService

logger = logging.getLogger(__name__)


ROUTE_ID_PREFIX = "route-"

_CLOSED = {SOSStatus.RESOLVED, SOSStatus.CANCELLED}


@dataclass(frozen=True)
class Assignment:
    """One assignee heading to one case"""
    route_id: str
    case_id: str
    assignee_id: str
    origin: LatLng
    destination: LatLng
    owner_user_id: Optional[str] = None

    @property
    def lookup_key(self):
        """Changes whenever the route geometry needs to be fetched again"""
        return (
            self.assignee_id,
            round(self.origin[0], 4), round(self.origin[1], 4),
            round(self.destination[0], 4), round(self.destination[1], 4),
        )


def route_id_for(case_id: str) -> str:
    return f"{ROUTE_ID_PREFIX}{case_id}"


def derive_assignments(markers: Iterable[Marker]) -> Dict[str, Assignment]:
    """
    Active assignments keyed by route id

    Args:
        markers: Every marker in the store (not only visible ones)

    Returns:
        route id -> Assignment for open cases with a present assignee
    """
    markers = list(markers)
    assignees = {
        m.id: m for m in markers
        if m.kind in (MarkerKind.HELPER, MarkerKind.RESPONDER)
    }

    assignments: Dict[str, Assignment] = {}
    for case in markers:
        if case.kind is not MarkerKind.SOS:
            continue
        try:
            payload = SOSPayload.model_validate(case.payload)
        except ValidationError:
            logger.debug("[RoutePlanner] Unreadable payload on %s", case.id)
            continue
        if payload.status in _CLOSED:
            continue

        assignee_id = payload.assigned_helper_id or payload.assigned_responder_id
        assignee = assignees.get(assignee_id) if assignee_id else None
        if assignee is None:
            continue

        route_id = route_id_for(case.id)
        assignments[route_id] = Assignment(
            route_id=route_id,
            case_id=case.id,
            assignee_id=assignee.id,
            origin=(assignee.lat, assignee.lng),
            destination=(case.lat, case.lng),
            owner_user_id=payload.user_id,
        )
    return assignments


class RoutePlanner:
    """
    Keep one resolved route per active assignment

    Usage:
        planner = RoutePlanner(directions, on_routes_changed=view.render_routes)
        planner.update(store.markers())
        route_renderer.reconcile(planner.active_routes())
    """

    def __init__(
        self,
        directions: DirectionsService,
        on_routes_changed: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.directions = directions
        self.on_routes_changed = on_routes_changed

        self._assignments: Dict[str, Assignment] = {}
        self._routes: Dict[str, Route] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

        # Statistics
        self.lookups_started = 0
        self.lookups_applied = 0
        self.stale_discarded = 0

    def update(self, markers: Iterable[Marker]) -> bool:
        """
        Recompute assignments after the store changed

        Dropped assignments lose their route immediately; new or moved
        ones start a lookup. Must be called from the event loop.

        Returns:
            True if the active route set changed synchronously
        """
        if self._closed:
            return False

        current = derive_assignments(markers)
        changed = False

        for route_id in sorted(set(self._assignments) - set(current)):
            del self._assignments[route_id]
            if self._routes.pop(route_id, None) is not None:
                changed = True

        for route_id in sorted(current):
            assignment = current[route_id]
            previous = self._assignments.get(route_id)
            self._assignments[route_id] = assignment
            if previous is not None and previous.lookup_key == assignment.lookup_key:
                continue
            self._start_lookup(assignment)

        return changed

    def _start_lookup(self, assignment: Assignment):
        self.lookups_started += 1
        task = asyncio.create_task(self._lookup(assignment))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _lookup(self, assignment: Assignment):
        route = await self.directions.get_route(
            assignment.route_id,
            assignment.origin,
            assignment.destination,
            owner_helper_id=assignment.assignee_id,
            owner_user_id=assignment.owner_user_id,
        )

        if self._closed or self._assignments.get(assignment.route_id) != assignment:
            self.stale_discarded += 1
            logger.debug("[RoutePlanner] Discarded stale route %s", assignment.route_id)
            return

        self._routes[assignment.route_id] = route
        self.lookups_applied += 1
        if self.on_routes_changed is not None:
            await self.on_routes_changed()

    async def wait_idle(self):
        """Wait for in-flight lookups (tests, shutdown)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def active_routes(self) -> List[Route]:
        return [self._routes[i] for i in sorted(self._routes)]

    def active_assignments(self) -> List[Assignment]:
        return [self._assignments[i] for i in sorted(self._assignments)]

    async def stop(self):
        """Cancel in-flight lookups; later results are ignored"""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def get_stats(self):
        return {
            'activeAssignments': len(self._assignments),
            'resolvedRoutes': len(self._routes),
            'pendingLookups': len(self._tasks),
            'lookupsStarted': self.lookups_started,
            'lookupsApplied': self.lookups_applied,
            'staleDiscarded': self.stale_discarded,
        }
