"""
Geospatial Backend Client

HTTP client for the emergency backend that owns entities, zones and
zone statistics.

Features:
- Zone statistics lookup (raises StatsFetchFailed)
- Full entity snapshot pull for the polling feed (raises FeedUnavailable)
- Zone catalogue lookup
- Request/error counters and response timing
"""

import aiohttp
import asyncio
import logging
import os
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, PrivateAttr, ValidationError

from sosmap.errors import FeedUnavailable, StatsFetchFailed
from sosmap.models.entities import BatchType, EntityBatch
from sosmap.models.map_state import Zone, ZoneStats

logger = logging.getLogger(__name__)


DEFAULT_BACKEND_URL = "http://localhost:8001"


class APIStatus(BaseModel):
    """Status of an upstream API connection"""
    provider: str = "backend"
    is_configured: bool = False
    last_request_time: Optional[float] = None
    last_success_time: Optional[float] = None
    request_count: int = 0
    error_count: int = 0
    cache_hit_count: int = 0
    cache_miss_count: int = 0
    avg_response_time: float = 0.0

    _response_times: List[float] = PrivateAttr(default_factory=list)

    def record_response_time(self, elapsed_ms: float, keep: int = 100):
        """Track the last `keep` response times and refresh the average"""
        self._response_times.append(elapsed_ms)
        if len(self._response_times) > keep:
            self._response_times.pop(0)
        self.avg_response_time = sum(self._response_times) / len(self._response_times)


class BackendRequestError(Exception):
    """Non-200 response or transport failure talking to the backend"""


class GeospatialBackendClient:
    """
    Client for the geospatial backend REST API

    Usage:
        client = GeospatialBackendClient("http://localhost:8001")
        await client.initialize()

        stats = await client.fetch_zone_stats("zone-1")
        batch = await client.fetch_entity_snapshot()
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        """
        Args:
            base_url: Backend root (defaults to SOSMAP_BACKEND_URL env var)
            timeout: Total request timeout in seconds
        """
        self.base_url = (base_url or os.getenv("SOSMAP_BACKEND_URL", DEFAULT_BACKEND_URL)).rstrip("/")
        self.timeout = timeout

        self._session: Optional[aiohttp.ClientSession] = None
        self._status = APIStatus(is_configured=bool(self.base_url))

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
    def status(self) -> APIStatus:
        return self._status

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        await self.initialize()

        start_time = time.time()
        self._status.request_count += 1
        self._status.last_request_time = start_time

        try:
            async with self._session.get(f"{self.base_url}{path}", params=params) as response:
                if response.status != 200:
                    raise BackendRequestError(f"HTTP {response.status} for {path}")
                data = await response.json()
        except asyncio.TimeoutError:
            self._status.error_count += 1
            raise BackendRequestError(f"Timeout for {path}")
        except aiohttp.ClientError as e:
            self._status.error_count += 1
            raise BackendRequestError(f"Network error for {path}: {e}")
        except BackendRequestError:
            self._status.error_count += 1
            raise
        except ValueError as e:
            # Body was not JSON
            self._status.error_count += 1
            raise BackendRequestError(f"Invalid JSON for {path}: {e}")

        self._status.last_success_time = time.time()
        self._status.record_response_time((time.time() - start_time) * 1000)
        return data

    # ============================================
    # Zone statistics
    # ============================================

    async def fetch_zone_stats(self, zone_id: str) -> ZoneStats:
        """
        Current statistics for one zone

        Raises:
            StatsFetchFailed: request failed or response was not valid stats
        """
        try:
            data = await self._get_json(f"/api/zones/{zone_id}/stats")
        except BackendRequestError as e:
            logger.warning("[Backend] Zone stats for %s failed: %s", zone_id, e)
            raise StatsFetchFailed(zone_id, str(e))

        if isinstance(data, dict) and data.get('error'):
            raise StatsFetchFailed(zone_id, str(data['error']))

        body = data.get('stats', data) if isinstance(data, dict) else data
        try:
            stats = ZoneStats.model_validate(body)
        except ValidationError as e:
            raise StatsFetchFailed(zone_id, f"invalid stats payload: {e.error_count()} errors")

        if stats.zone_id != zone_id:
            raise StatsFetchFailed(zone_id, f"response is for zone {stats.zone_id}")
        return stats

    # ============================================
    # Entities
    # ============================================

    async def fetch_entity_snapshot(self) -> EntityBatch:
        """
        Full entity state as a SNAPSHOT batch

        Accepts either a bare list of records or `{"records": [...]}`.

        Records are not checked here. The store rejects bad ones one at
        a time when the batch is applied.

        Raises:
            FeedUnavailable: request failed or the body is not a snapshot
        """
        try:
            data = await self._get_json("/api/entities")
        except BackendRequestError as e:
            raise FeedUnavailable(str(e), source=self.base_url)

        if isinstance(data, list):
            records = data
        elif isinstance(data, dict) and isinstance(data.get('records'), list):
            records = data['records']
        else:
            raise FeedUnavailable("Entity snapshot has no records list", source=self.base_url)

        try:
            return EntityBatch(
                batch_id=data.get('batchId') if isinstance(data, dict) else None,
                batch_type=BatchType.SNAPSHOT,
                records=records,
            )
        except ValidationError as e:
            raise FeedUnavailable(
                f"Invalid entity snapshot: {e.error_count()} errors", source=self.base_url
            )

    # ============================================
    # Zones
    # ============================================

    async def fetch_zones(self) -> List[Zone]:
        """
        Zone catalogue; zones that fail validation are skipped

        Raises:
            FeedUnavailable: request failed
        """
        try:
            data = await self._get_json("/api/zones")
        except BackendRequestError as e:
            raise FeedUnavailable(str(e), source=self.base_url)

        raw_zones = data.get('zones', []) if isinstance(data, dict) else data
        zones: List[Zone] = []
        for raw in raw_zones or []:
            try:
                zones.append(Zone.model_validate(raw))
            except ValidationError:
                logger.warning("[Backend] Skipping invalid zone %r", raw.get('id') if isinstance(raw, dict) else raw)
        return zones

    def get_stats(self) -> Dict[str, Any]:
        return {
            'baseUrl': self.base_url,
            **self._status.model_dump(),
        }


# Global client instance
_backend_client: Optional[GeospatialBackendClient] = None


def get_backend_client() -> GeospatialBackendClient:
    """Get the global GeospatialBackendClient instance"""
    global _backend_client
    if _backend_client is None:
        _backend_client = GeospatialBackendClient()
    return _backend_client


def set_backend_client(client: Optional[GeospatialBackendClient]):
    """Replace the global client (app startup, tests)"""
    global _backend_client
    _backend_client = client


async def close_backend_client():
    """Close the global GeospatialBackendClient"""
    global _backend_client
    if _backend_client:
        await _backend_client.close()
        _backend_client = None
