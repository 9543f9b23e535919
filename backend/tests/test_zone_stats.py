"""
Zone Stats Tests

Tests for the selected-zone tracker, trend computation and local
zone metric aggregation.
"""

import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from sosmap.errors import StatsFetchFailed
from sosmap.models.entities import MarkerKind
from sosmap.models.map_state import Zone, ZoneStats
from sosmap.stats.zone_metrics import compute_zone_stats
from sosmap.stats.zone_stats import (
    TrendDirection,
    TrendPolarity,
    ZoneStatsState,
    ZoneStatsTracker,
    compute_trend,
    compute_trends,
)

from conftest import make_marker


def stats(zone_id="zone-1", active=0, helpers=0, responders=0, avg=0.0):
    return ZoneStats(
        zone_id=zone_id,
        active_sos_cases=active,
        available_helpers=helpers,
        assigned_responders=responders,
        average_response_time_min=avg,
    )


class ScriptedFetcher:
    """Returns queued results per zone; each call can be held by a gate"""

    def __init__(self):
        self.results = {}
        self.gates = {}
        self.calls = []

    def queue(self, zone_id, *results):
        self.results.setdefault(zone_id, []).extend(results)

    async def __call__(self, zone_id):
        self.calls.append(zone_id)
        result = self.results[zone_id].pop(0)
        gate = self.gates.get(len(self.calls))
        if gate is not None:
            await gate.wait()
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fetcher():
    return ScriptedFetcher()


@pytest_asyncio.fixture
async def tracker(fetcher):
    tracker = ZoneStatsTracker(fetcher, refresh_interval=60)
    yield tracker
    await tracker.stop()


# ============================================
# Trends
# ============================================

class TestTrends:
    """Test compute_trend()"""

    def test_increase(self):
        trend = compute_trend('active_sos_cases', 3, 5)
        assert trend.direction is TrendDirection.INCREASE
        assert trend.delta == 2

    def test_decrease(self):
        trend = compute_trend('active_sos_cases', 5, 3)
        assert trend.direction is TrendDirection.DECREASE

    def test_flat(self):
        trend = compute_trend('available_helpers', 4, 4)
        assert trend.direction is TrendDirection.FLAT
        assert trend.assessment is TrendPolarity.NEUTRAL

    def test_more_sos_cases_is_bad_news(self):
        trend = compute_trend('active_sos_cases', 1, 2)
        assert trend.polarity is TrendPolarity.ADVERSE
        assert trend.assessment is TrendPolarity.ADVERSE

    def test_more_helpers_is_good_news(self):
        trend = compute_trend('available_helpers', 1, 2)
        assert trend.assessment is TrendPolarity.FAVOURABLE

    def test_faster_response_is_good_news(self):
        trend = compute_trend('average_response_time_min', 12, 8)
        assert trend.assessment is TrendPolarity.FAVOURABLE

    def test_unknown_metric_is_neutral(self):
        trend = compute_trend('something_else', 1, 2)
        assert trend.polarity is TrendPolarity.NEUTRAL

    def test_all_metrics(self):
        trends = compute_trends(stats(active=1, helpers=5), stats(active=3, helpers=2))
        assert set(trends) == {
            'active_sos_cases',
            'available_helpers',
            'assigned_responders',
            'average_response_time_min',
        }
        assert trends['available_helpers'].direction is TrendDirection.DECREASE


# ============================================
# Tracker
# ============================================

class TestZoneSelection:
    """Test select / clear"""

    @pytest.mark.asyncio
    async def test_initial_state(self, tracker):
        assert tracker.state is ZoneStatsState.NO_ZONE
        assert tracker.refresh() is None

    @pytest.mark.asyncio
    async def test_select_loads_stats(self, tracker, fetcher):
        fetcher.queue("zone-1", stats(active=2))
        task = tracker.select_zone("zone-1")
        assert tracker.state is ZoneStatsState.LOADING

        await task
        assert tracker.state is ZoneStatsState.READY
        assert tracker.current.active_sos_cases == 2
        assert tracker.previous is None
        assert tracker.trends() == {}

    @pytest.mark.asyncio
    async def test_refresh_produces_trends(self, tracker, fetcher):
        fetcher.queue("zone-1", stats(active=2), stats(active=4))
        await tracker.select_zone("zone-1")
        await tracker.refresh()

        trends = tracker.trends()
        assert trends['active_sos_cases'].direction is TrendDirection.INCREASE
        assert tracker.previous.active_sos_cases == 2

    @pytest.mark.asyncio
    async def test_changing_zone_discards_previous(self, tracker, fetcher):
        fetcher.queue("zone-1", stats("zone-1", active=2))
        fetcher.queue("zone-2", stats("zone-2", active=7))
        await tracker.select_zone("zone-1")
        await tracker.select_zone("zone-2")

        assert tracker.current.zone_id == "zone-2"
        assert tracker.previous is None
        assert tracker.trends() == {}

    @pytest.mark.asyncio
    async def test_clear_zone(self, tracker, fetcher):
        fetcher.queue("zone-1", stats())
        await tracker.select_zone("zone-1")
        tracker.clear_zone()

        assert tracker.state is ZoneStatsState.NO_ZONE
        assert tracker.current is None
        assert tracker.zone_id is None

    @pytest.mark.asyncio
    async def test_reselecting_same_zone_refreshes(self, tracker, fetcher):
        fetcher.queue("zone-1", stats(active=1), stats(active=3))
        await tracker.select_zone("zone-1")
        await tracker.select_zone("zone-1")

        assert tracker.previous.active_sos_cases == 1
        assert tracker.current.active_sos_cases == 3


class TestStaleResponses:
    """Out-of-order and superseded responses are dropped"""

    @pytest.mark.asyncio
    async def test_response_for_old_zone_discarded(self, tracker, fetcher):
        gate = asyncio.Event()
        fetcher.gates[1] = gate
        fetcher.queue("zone-1", stats("zone-1", active=9))
        fetcher.queue("zone-2", stats("zone-2", active=1))

        slow = tracker.select_zone("zone-1")
        await asyncio.sleep(0)
        await tracker.select_zone("zone-2")

        gate.set()
        await slow

        assert tracker.zone_id == "zone-2"
        assert tracker.current.zone_id == "zone-2"
        assert tracker.current.active_sos_cases == 1
        assert tracker.stale_discarded == 1

    @pytest.mark.asyncio
    async def test_older_request_loses_to_newer(self, tracker, fetcher):
        fetcher.queue("zone-1", stats(active=1))
        await tracker.select_zone("zone-1")

        gate = asyncio.Event()
        fetcher.gates[2] = gate
        fetcher.queue("zone-1", stats(active=5), stats(active=8))

        older = tracker.refresh()
        await asyncio.sleep(0)
        newer = tracker.refresh()
        await newer

        gate.set()
        await older

        assert tracker.current.active_sos_cases == 8
        assert tracker.previous.active_sos_cases == 1
        assert tracker.stale_discarded == 1

    @pytest.mark.asyncio
    async def test_response_after_clear_discarded(self, tracker, fetcher):
        gate = asyncio.Event()
        fetcher.gates[1] = gate
        fetcher.queue("zone-1", stats())

        task = tracker.select_zone("zone-1")
        await asyncio.sleep(0)
        tracker.clear_zone()
        gate.set()
        await task

        assert tracker.state is ZoneStatsState.NO_ZONE
        assert tracker.current is None


class TestFetchFailures:
    """Failures keep last-known-good stats"""

    @pytest.mark.asyncio
    async def test_first_fetch_failure(self, tracker, fetcher):
        fetcher.queue("zone-1", StatsFetchFailed("zone-1", "HTTP 500"))
        await tracker.select_zone("zone-1")

        assert tracker.state is ZoneStatsState.FAILED
        assert tracker.last_error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_stats_marked_stale(self, tracker, fetcher):
        fetcher.queue("zone-1", stats(active=2), StatsFetchFailed("zone-1", "timeout"))
        await tracker.select_zone("zone-1")
        await tracker.refresh()

        assert tracker.state is ZoneStatsState.READY
        assert tracker.stale is True
        assert tracker.current.active_sos_cases == 2

    @pytest.mark.asyncio
    async def test_success_after_failure_clears_stale(self, tracker, fetcher):
        fetcher.queue("zone-1", stats(active=2), StatsFetchFailed("zone-1", "timeout"), stats(active=3))
        await tracker.select_zone("zone-1")
        await tracker.refresh()
        await tracker.refresh()

        assert tracker.stale is False
        assert tracker.current.active_sos_cases == 3
        assert tracker.previous.active_sos_cases == 2


class TestTimerAndOutput:
    """Test timed refresh and serialisation"""

    @pytest.mark.asyncio
    async def test_timer_refreshes(self, fetcher):
        fetcher.queue("zone-1", *[stats(active=i) for i in range(20)])
        tracker = ZoneStatsTracker(fetcher, refresh_interval=0.02)

        await tracker.select_zone("zone-1")
        await asyncio.sleep(0.1)
        await tracker.wait_idle()

        assert len(fetcher.calls) >= 3
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_timer(self, fetcher):
        fetcher.queue("zone-1", *[stats() for _ in range(20)])
        tracker = ZoneStatsTracker(fetcher, refresh_interval=0.02)

        await tracker.select_zone("zone-1")
        await tracker.stop()
        calls = len(fetcher.calls)
        await asyncio.sleep(0.08)

        assert len(fetcher.calls) == calls
        assert tracker.state is ZoneStatsState.NO_ZONE

    @pytest.mark.asyncio
    async def test_on_update_called(self, fetcher):
        updates = []

        async def on_update(tracker):
            updates.append(tracker.state)

        fetcher.queue("zone-1", stats())
        tracker = ZoneStatsTracker(fetcher, refresh_interval=60, on_update=on_update)
        await tracker.select_zone("zone-1")

        assert updates == [ZoneStatsState.READY]
        await tracker.stop()

    @pytest.mark.asyncio
    async def test_to_dict(self, tracker, fetcher):
        fetcher.queue("zone-1", stats(active=1), stats(active=2))
        await tracker.select_zone("zone-1")
        await tracker.refresh()
        data = tracker.to_dict()

        assert data['state'] == "ready"
        assert data['zoneId'] == "zone-1"
        assert data['stats']['activeSOSCases'] == 2
        assert data['trends']['active_sos_cases']['direction'] == "increase"
        assert data['trends']['active_sos_cases']['assessment'] == "adverse"


# ============================================
# Local zone metrics
# ============================================

SQUARE = {
    "type": "Polygon",
    "coordinates": [[[73.0, 22.0], [73.5, 22.0], [73.5, 22.5], [73.0, 22.5], [73.0, 22.0]]],
}


class TestZoneMetrics:
    """Test compute_zone_stats()"""

    def test_counts_inside_zone_only(self):
        zone = Zone(id="zone-1", name="Central", geometry=SQUARE)
        markers = [
            make_marker("sos-1", lat=22.2, lng=73.2, status="active"),
            make_marker("sos-2", lat=22.2, lng=73.2, status="assigned"),
            make_marker("sos-out", lat=23.5, lng=73.2, status="active"),
            make_marker("h-1", MarkerKind.HELPER, lat=22.1, lng=73.1, status="available"),
            make_marker("h-2", MarkerKind.HELPER, lat=22.1, lng=73.1, status="busy"),
            make_marker("r-1", MarkerKind.RESPONDER, lat=22.3, lng=73.3, status="available"),
        ]
        result = compute_zone_stats(zone, markers)

        assert result.zone_id == "zone-1"
        assert result.zone_name == "Central"
        assert result.active_sos_cases == 1
        assert result.available_helpers == 1
        assert result.assigned_responders == 1

    def test_average_response_time_rounded(self):
        zone = Zone(id="zone-1", name="Central", geometry=SQUARE)
        markers = [
            make_marker("sos-1", lat=22.2, lng=73.2, status="resolved",
                        created_at="2026-01-01T10:00:00Z", resolved_at="2026-01-01T10:10:00Z"),
            make_marker("sos-2", lat=22.2, lng=73.2, status="resolved",
                        created_at="2026-01-01T10:00:00Z", resolved_at="2026-01-01T10:16:00Z"),
        ]
        result = compute_zone_stats(zone, markers)
        assert result.average_response_time_min == 13.0

    def test_no_resolved_cases(self):
        zone = Zone(id="zone-1", name="Central", geometry=SQUARE)
        result = compute_zone_stats(zone, [make_marker("sos-1", lat=22.2, lng=73.2)])
        assert result.average_response_time_min == 0.0

    def test_circle_zone(self):
        zone = Zone(
            id="zone-c",
            name="Circle",
            type="circle",
            geometry={"type": "Circle", "center": [73.18, 22.30], "radius": 1000},
        )
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        markers = [
            make_marker("near", lat=22.301, lng=73.18),
            make_marker("far", lat=22.40, lng=73.18),
        ]
        result = compute_zone_stats(zone, markers, now=now)

        assert result.active_sos_cases == 1
        assert result.last_updated == now

    def test_polygon_boundary_counts_as_inside(self):
        zone = Zone(id="zone-1", name="Central", geometry=SQUARE)
        assert zone.contains(22.0, 73.2) is True
        assert zone.contains(21.9, 73.2) is False
