"""
Directions Service

Driving routes between an assignee and the case they are heading to.

Features:
- Mapbox Directions API integration (driving profile, GeoJSON geometry)
- Response caching with TTL
- Straight-line fallback (haversine distance at a fixed speed) when the
  token is missing or the API fails
"""

import aiohttp
import asyncio
import logging
import os
import time
from typing import Optional, Dict

from pydantic import BaseModel, Field

from sosmap.models.geo import haversine_km
from sosmap.models.map_state import LatLng, Route
from sosmap.services.backend_client import APIStatus

logger = logging.getLogger(__name__)


MAPBOX_BASE_URL = "https://api.mapbox.com"


class CacheEntry(BaseModel):
    """Cache entry for directions responses"""
    route: Route
    expires_at: float
    cached_at: float = Field(default_factory=time.time)


class DirectionsService:
    """
    Fetch driving routes from the Mapbox Directions API

    Usage:
        service = DirectionsService()
        await service.initialize()

        route = await service.get_route(
            route_id="route-sos-1",
            origin=(22.30, 73.18),
            destination=(22.31, 73.19)
        )
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        cache_ttl: int = 60,
        max_cache_entries: int = 500,
        fallback_speed_kmh: float = 40.0,
        timeout: float = 10.0,
    ):
        """
        Initialize the Directions Service

        Args:
            access_token: Mapbox token (defaults to MAPBOX_ACCESS_TOKEN env var)
            cache_ttl: Cache time-to-live in seconds
            max_cache_entries: Oldest routes are evicted past this size
            fallback_speed_kmh: Speed used for straight-line estimates
            timeout: Total request timeout in seconds
        """
        self.access_token = access_token if access_token is not None else os.getenv("MAPBOX_ACCESS_TOKEN", "")
        self.base_url = f"{MAPBOX_BASE_URL}/directions/v5/mapbox/driving"
        self.cache_ttl = cache_ttl
        self.max_cache_entries = max_cache_entries
        self.fallback_speed_kmh = fallback_speed_kmh
        self.timeout = timeout

        self._cache: Dict[str, CacheEntry] = {}
        self._session: Optional[aiohttp.ClientSession] = None
        self._status = APIStatus(provider="mapbox", is_configured=bool(self.access_token))

    async def initialize(self):
        """Initialize the HTTP session"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout, connect=5)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        """Close the HTTP session"""
        if self._session and not self._session.closed:
            await self._session.close()

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    @property
    def status(self) -> APIStatus:
        return self._status

    # ============================================
    # Cache
    # ============================================

    def _get_cache_key(self, origin: LatLng, destination: LatLng) -> str:
        return "{:.4f},{:.4f};{:.4f},{:.4f}".format(origin[0], origin[1], destination[0], destination[1])

    def _get_cached(self, cache_key: str) -> Optional[Route]:
        entry = self._cache.get(cache_key)
        if entry is not None:
            if time.time() < entry.expires_at:
                self._status.cache_hit_count += 1
                return entry.route
            del self._cache[cache_key]

        self._status.cache_miss_count += 1
        return None

    def _set_cache(self, cache_key: str, route: Route):
        now = time.time()
        expired = [key for key, entry in self._cache.items() if entry.expires_at <= now]
        for key in expired:
            del self._cache[key]

        self._cache.pop(cache_key, None)
        while self._cache and len(self._cache) >= self.max_cache_entries:
            oldest = min(self._cache, key=lambda key: self._cache[key].cached_at)
            del self._cache[oldest]

        self._cache[cache_key] = CacheEntry(route=route, expires_at=now + self.cache_ttl, cached_at=now)

    # ============================================
    # Lookup
    # ============================================

    async def get_route(
        self,
        route_id: str,
        origin: LatLng,
        destination: LatLng,
        owner_helper_id: Optional[str] = None,
        owner_user_id: Optional[str] = None,
    ) -> Route:
        """
        Driving route from origin to destination

        Args:
            route_id: Id to give the route
            origin: (lat, lng) of the assignee
            destination: (lat, lng) of the case
            owner_helper_id: Assigned helper/responder id
            owner_user_id: User who raised the case

        Returns:
            Route from the API, or a straight-line estimate on failure
        """
        owners = {'owner_helper_id': owner_helper_id, 'owner_user_id': owner_user_id}

        cache_key = self._get_cache_key(origin, destination)
        cached = self._get_cached(cache_key)
        if cached:
            return cached.model_copy(update={'id': route_id, **owners})

        if not self.is_configured:
            logger.debug("[Directions] Token not configured, straight-line route for %s", route_id)
            return self.straight_line_route(route_id, origin, destination, **owners)

        await self.initialize()

        # Mapbox wants lng,lat pairs
        url = f"{self.base_url}/{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
        params = {
            'access_token': self.access_token,
            'geometries': 'geojson',
            'overview': 'full',
        }

        start_time = time.time()
        self._status.request_count += 1
        self._status.last_request_time = start_time

        try:
            async with self._session.get(url, params=params) as response:
                if response.status != 200:
                    logger.warning("[Directions] API error %s for %s", response.status, route_id)
                    self._status.error_count += 1
                    return self.straight_line_route(route_id, origin, destination, **owners)

                data = await response.json()
                routes = data.get('routes') or []
                if not routes:
                    logger.warning("[Directions] No route found for %s", route_id)
                    self._status.error_count += 1
                    return self.straight_line_route(route_id, origin, destination, **owners)

                best = routes[0]
                coordinates = best.get('geometry', {}).get('coordinates', [])
                route = Route(
                    id=route_id,
                    origin=origin,
                    destination=destination,
                    distance_km=float(best.get('distance', 0.0)) / 1000.0,
                    duration_sec=float(best.get('duration', 0.0)),
                    polyline=[(float(lat), float(lng)) for lng, lat in coordinates],
                    source="API",
                    **owners,
                )
                self._set_cache(cache_key, route)
                self._status.last_success_time = time.time()
                self._status.record_response_time((time.time() - start_time) * 1000)
                return route

        except asyncio.TimeoutError:
            logger.warning("[Directions] Request timeout for %s", route_id)
        except aiohttp.ClientError as e:
            logger.warning("[Directions] Network error for %s: %s", route_id, e)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("[Directions] Unexpected response for %s: %s", route_id, e)

        self._status.error_count += 1
        return self.straight_line_route(route_id, origin, destination, **owners)

    def straight_line_route(
        self,
        route_id: str,
        origin: LatLng,
        destination: LatLng,
        owner_helper_id: Optional[str] = None,
        owner_user_id: Optional[str] = None,
    ) -> Route:
        """Two-point route with haversine distance and fixed-speed ETA"""
        distance = haversine_km(origin[0], origin[1], destination[0], destination[1])
        speed = max(self.fallback_speed_kmh, 1e-6)
        return Route(
            id=route_id,
            origin=origin,
            destination=destination,
            distance_km=distance,
            duration_sec=distance / speed * 3600.0,
            polyline=[origin, destination],
            owner_helper_id=owner_helper_id,
            owner_user_id=owner_user_id,
            source="FALLBACK",
        )

    def clear_cache(self):
        self._cache.clear()

    def get_cache_stats(self) -> Dict[str, object]:
        """Get cache statistics"""
        hits = self._status.cache_hit_count
        misses = self._status.cache_miss_count
        total = hits + misses
        return {
            "entries": len(self._cache),
            "hits": hits,
            "misses": misses,
            "hit_rate": (hits / total * 100) if total > 0 else 0,
            "ttl_seconds": self.cache_ttl,
            "max_entries": self.max_cache_entries,
        }
