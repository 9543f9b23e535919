"""
Service Tests

Tests for GeospatialBackendClient and DirectionsService with the
aiohttp session mocked out.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from sosmap.errors import FeedUnavailable, StatsFetchFailed
from sosmap.models.entities import BatchType
from sosmap.models.map_state import Route
from sosmap.services.backend_client import (
    DEFAULT_BACKEND_URL,
    GeospatialBackendClient,
    get_backend_client,
    set_backend_client,
)
from sosmap.services.directions_service import DirectionsService
from sosmap.stats.zone_stats import ZoneStatsState, ZoneStatsTracker
from sosmap.sync.entity_store import EntityStore


def mock_response(status=200, payload=None, json_error=None):
    """Async context manager yielding a response with `status` and json()"""
    response = MagicMock()
    response.status = status
    if json_error is not None:
        response.json = AsyncMock(side_effect=json_error)
    else:
        response.json = AsyncMock(return_value=payload)

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


def mock_session(*responses, error=None):
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    if error is not None:
        session.get = MagicMock(side_effect=error)
    else:
        session.get = MagicMock(side_effect=list(responses))
    return session


STATS_JSON = {
    "zoneId": "zone-1",
    "zoneName": "Central",
    "activeSOSCases": 4,
    "availableHelpers": 2,
    "assignedResponders": 1,
    "averageResponseTime": 9,
    "lastUpdated": "2026-01-01T10:00:00Z",
}


# ============================================
# Backend Client Tests
# ============================================

class TestBackendClient:
    """Tests for the geospatial backend client"""

    def test_base_url_from_env(self, monkeypatch):
        monkeypatch.setenv("SOSMAP_BACKEND_URL", "http://backend:9000/")
        client = GeospatialBackendClient()
        assert client.base_url == "http://backend:9000"

    def test_default_base_url(self, monkeypatch):
        monkeypatch.delenv("SOSMAP_BACKEND_URL", raising=False)
        assert GeospatialBackendClient().base_url == DEFAULT_BACKEND_URL

    def test_global_accessors(self):
        client = GeospatialBackendClient("http://x")
        set_backend_client(client)
        assert get_backend_client() is client
        set_backend_client(None)

    @pytest.mark.asyncio
    async def test_fetch_zone_stats_wrapped(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, {"stats": STATS_JSON}))

        stats = await client.fetch_zone_stats("zone-1")

        assert stats.zone_id == "zone-1"
        assert stats.active_sos_cases == 4
        assert stats.average_response_time_min == 9.0
        assert client._session.get.call_args[0][0] == "http://backend/api/zones/zone-1/stats"
        assert client.status.request_count == 1
        assert client.status.last_success_time is not None

    @pytest.mark.asyncio
    async def test_fetch_zone_stats_bare(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, STATS_JSON))

        stats = await client.fetch_zone_stats("zone-1")
        assert stats.available_helpers == 2

    @pytest.mark.asyncio
    async def test_http_error_raises_stats_fetch_failed(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(500, {}))

        with pytest.raises(StatsFetchFailed) as exc:
            await client.fetch_zone_stats("zone-1")

        assert exc.value.zone_id == "zone-1"
        assert "500" in exc.value.reason
        assert client.status.error_count == 1

    @pytest.mark.asyncio
    async def test_network_error_raises_stats_fetch_failed(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(error=aiohttp.ClientError("refused"))

        with pytest.raises(StatsFetchFailed):
            await client.fetch_zone_stats("zone-1")

    @pytest.mark.asyncio
    async def test_timeout_raises_stats_fetch_failed(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(error=asyncio.TimeoutError())

        with pytest.raises(StatsFetchFailed):
            await client.fetch_zone_stats("zone-1")

    @pytest.mark.asyncio
    async def test_wrong_zone_in_response(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, {**STATS_JSON, "zoneId": "zone-2"}))

        with pytest.raises(StatsFetchFailed):
            await client.fetch_zone_stats("zone-1")

    @pytest.mark.asyncio
    async def test_invalid_stats_payload(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, {"zoneId": "zone-1", "activeSOSCases": -3}))

        with pytest.raises(StatsFetchFailed):
            await client.fetch_zone_stats("zone-1")

    @pytest.mark.asyncio
    async def test_error_body(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, {"error": "Zone not found"}))

        with pytest.raises(StatsFetchFailed) as exc:
            await client.fetch_zone_stats("zone-1")
        assert exc.value.reason == "Zone not found"

    @pytest.mark.asyncio
    async def test_fetch_entity_snapshot_list(self):
        client = GeospatialBackendClient("http://backend")
        records = [{"id": "sos-1", "kind": "sos", "lat": 22.3, "lng": 73.1}]
        client._session = mock_session(mock_response(200, records))

        batch = await client.fetch_entity_snapshot()

        assert batch.batch_type is BatchType.SNAPSHOT
        assert batch.records == records

    @pytest.mark.asyncio
    async def test_fetch_entity_snapshot_object(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, {"batchId": "b-7", "records": []}))

        batch = await client.fetch_entity_snapshot()
        assert batch.batch_id == "b-7"
        assert batch.records == []

    @pytest.mark.asyncio
    async def test_fetch_entity_snapshot_failure(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(503, None))

        with pytest.raises(FeedUnavailable):
            await client.fetch_entity_snapshot()

    @pytest.mark.asyncio
    async def test_fetch_entity_snapshot_bad_shape(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, {"unexpected": True}))

        with pytest.raises(FeedUnavailable):
            await client.fetch_entity_snapshot()

    @pytest.mark.asyncio
    async def test_fetch_entity_snapshot_keeps_bad_records_for_the_store(self):
        client = GeospatialBackendClient("http://backend")
        records = [{"id": "sos-1", "kind": "sos", "lat": 22.3, "lng": 73.1}, "garbage"]
        client._session = mock_session(mock_response(200, {"batchId": 7, "records": records}))

        batch = await client.fetch_entity_snapshot()
        assert batch.batch_id == "7"
        assert len(batch.records) == 2

        result = EntityStore().apply(batch)
        assert result.upserted == ["sos-1"]
        assert len(result.rejected) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_raises_feed_unavailable(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, json_error=json.JSONDecodeError("Expecting value", "<html>", 0)))

        with pytest.raises(FeedUnavailable):
            await client.fetch_entity_snapshot()
        assert client.status.error_count == 1

    @pytest.mark.asyncio
    async def test_invalid_json_raises_stats_fetch_failed(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, json_error=json.JSONDecodeError("Expecting value", "", 0)))

        with pytest.raises(StatsFetchFailed):
            await client.fetch_zone_stats("zone-1")

    @pytest.mark.asyncio
    async def test_tracker_fails_on_invalid_json(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, json_error=json.JSONDecodeError("Expecting value", "", 0)))
        tracker = ZoneStatsTracker(client.fetch_zone_stats, refresh_interval=60)

        await tracker.select_zone("zone-1")

        assert tracker.state is ZoneStatsState.FAILED
        assert "Invalid JSON" in tracker.last_error
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_fetch_zones_skips_invalid(self):
        client = GeospatialBackendClient("http://backend")
        client._session = mock_session(mock_response(200, {"zones": [
            {"id": "zone-1", "name": "Central", "geometry": {"type": "Polygon", "coordinates": []}},
            {"id": "zone-2"},
        ]}))

        zones = await client.fetch_zones()
        assert [z.id for z in zones] == ["zone-1"]

    @pytest.mark.asyncio
    async def test_close(self):
        client = GeospatialBackendClient("http://backend")
        session = mock_session()
        client._session = session

        await client.close()
        session.close.assert_awaited_once()


# ============================================
# Directions Service Tests
# ============================================

MAPBOX_JSON = {
    "routes": [{
        "distance": 2500.0,
        "duration": 300.0,
        "geometry": {"coordinates": [[73.16, 22.28], [73.17, 22.29], [73.18, 22.30]]},
    }]
}

ORIGIN = (22.28, 73.16)
DESTINATION = (22.30, 73.18)


class TestDirectionsService:
    """Tests for the Mapbox directions client"""

    def test_configuration(self):
        assert DirectionsService(access_token="tok").is_configured is True
        assert DirectionsService(access_token="").is_configured is False

    @pytest.mark.asyncio
    async def test_unconfigured_uses_straight_line(self):
        service = DirectionsService(access_token="")
        service._session = mock_session()

        route = await service.get_route("route-sos-1", ORIGIN, DESTINATION, owner_helper_id="helper-1")

        assert route.source == "FALLBACK"
        assert route.polyline == [ORIGIN, DESTINATION]
        assert route.distance_km > 0
        assert route.owner_helper_id == "helper-1"
        service._session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_route(self):
        service = DirectionsService(access_token="tok")
        service._session = mock_session(mock_response(200, MAPBOX_JSON))

        route = await service.get_route("route-sos-1", ORIGIN, DESTINATION)

        assert route.source == "API"
        assert route.distance_km == pytest.approx(2.5)
        assert route.duration_sec == 300.0
        assert route.polyline[0] == (22.28, 73.16)
        assert route.polyline[-1] == (22.30, 73.18)

        url = service._session.get.call_args[0][0]
        assert url.endswith("/73.16,22.28;73.18,22.3")

    @pytest.mark.asyncio
    async def test_cached_route_reused(self):
        service = DirectionsService(access_token="tok")
        service._session = mock_session(mock_response(200, MAPBOX_JSON))

        await service.get_route("route-sos-1", ORIGIN, DESTINATION)
        again = await service.get_route("route-sos-2", ORIGIN, DESTINATION, owner_helper_id="helper-3")

        assert service._session.get.call_count == 1
        assert again.id == "route-sos-2"
        assert again.owner_helper_id == "helper-3"
        assert service.status.cache_hit_count == 1

    @pytest.mark.asyncio
    async def test_http_error_falls_back(self):
        service = DirectionsService(access_token="tok")
        service._session = mock_session(mock_response(401, {}))

        route = await service.get_route("route-sos-1", ORIGIN, DESTINATION)
        assert route.source == "FALLBACK"
        assert service.status.error_count == 1

    @pytest.mark.asyncio
    async def test_no_routes_falls_back(self):
        service = DirectionsService(access_token="tok")
        service._session = mock_session(mock_response(200, {"routes": []}))

        route = await service.get_route("route-sos-1", ORIGIN, DESTINATION)
        assert route.source == "FALLBACK"

    @pytest.mark.asyncio
    async def test_network_error_falls_back(self):
        service = DirectionsService(access_token="tok")
        service._session = mock_session(error=aiohttp.ClientError("dns"))

        route = await service.get_route("route-sos-1", ORIGIN, DESTINATION)
        assert route.source == "FALLBACK"

    def test_straight_line_eta(self):
        service = DirectionsService(access_token="", fallback_speed_kmh=60.0)
        route = service.straight_line_route("r", ORIGIN, DESTINATION)

        assert route.duration_sec == pytest.approx(route.distance_km / 60.0 * 3600.0)

    def test_cache_is_bounded(self):
        service = DirectionsService(access_token="tok", max_cache_entries=3)
        for i in range(5):
            route = Route(id=f"route-{i}", origin=ORIGIN, destination=(22.3 + i / 100, 73.18))
            service._set_cache(f"key-{i}", route)

        assert set(service._cache) == {"key-2", "key-3", "key-4"}
        assert service.get_cache_stats()["entries"] == 3

    def test_expired_entries_swept_on_insert(self):
        service = DirectionsService(access_token="tok", cache_ttl=0)
        route = Route(id="route-a", origin=ORIGIN, destination=DESTINATION)
        service._set_cache("key-a", route)
        service._set_cache("key-b", route)

        assert list(service._cache) == ["key-b"]
