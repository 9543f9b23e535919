"""
Zone Stats Tracker

Keeps the statistics of the selected zone fresh and computes trends
between the previous and current snapshot.

State machine: NO_ZONE -> LOADING -> READY -> LOADING (refresh) -> ...
plus FAILED when the first fetch for a zone fails.

Features:
- Manual refresh and a fixed-interval refresh timer while a zone is selected
- Stale-response guard keyed by zone id and request sequence: a response
  for a zone that is no longer selected, or older than the last applied
  response, is dropped
- Fetch failures keep the last-known stats and mark them stale
- Trend direction per metric with a static polarity table
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from sosmap.errors import StatsFetchFailed
from sosmap.models.map_state import ZoneStats

logger = logging.getLogger(__name__)


# ============================================
# Trends
# ============================================

class TrendDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    FLAT = "flat"


class TrendPolarity(str, Enum):
    """How an increase in a metric should be read"""
    ADVERSE = "adverse"
    FAVOURABLE = "favourable"
    NEUTRAL = "neutral"


METRIC_POLARITY: Dict[str, TrendPolarity] = {
    'active_sos_cases': TrendPolarity.ADVERSE,
    'available_helpers': TrendPolarity.FAVOURABLE,
    'assigned_responders': TrendPolarity.FAVOURABLE,
    'average_response_time_min': TrendPolarity.ADVERSE,
}

_OPPOSITE = {
    TrendPolarity.ADVERSE: TrendPolarity.FAVOURABLE,
    TrendPolarity.FAVOURABLE: TrendPolarity.ADVERSE,
    TrendPolarity.NEUTRAL: TrendPolarity.NEUTRAL,
}


@dataclass(frozen=True)
class ZoneTrend:
    """Change of one metric between two snapshots"""
    metric: str
    previous: float
    current: float
    delta: float
    direction: TrendDirection
    polarity: TrendPolarity

    @property
    def assessment(self) -> TrendPolarity:
        """Whether this particular change is good or bad news"""
        if self.direction is TrendDirection.INCREASE:
            return self.polarity
        if self.direction is TrendDirection.DECREASE:
            return _OPPOSITE[self.polarity]
        return TrendPolarity.NEUTRAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metric': self.metric,
            'previous': self.previous,
            'current': self.current,
            'delta': self.delta,
            'direction': self.direction.value,
            'polarity': self.polarity.value,
            'assessment': self.assessment.value,
        }


def compute_trend(metric: str, previous: float, current: float) -> ZoneTrend:
    """
    Trend of `metric` from previous to current value

    Args:
        metric: ZoneStats field name (looked up in METRIC_POLARITY)
        previous: Earlier value
        current: Latest value

    Returns:
        ZoneTrend with delta = current - previous
    """
    delta = current - previous
    if delta > 0:
        direction = TrendDirection.INCREASE
    elif delta < 0:
        direction = TrendDirection.DECREASE
    else:
        direction = TrendDirection.FLAT

    return ZoneTrend(
        metric=metric,
        previous=previous,
        current=current,
        delta=delta,
        direction=direction,
        polarity=METRIC_POLARITY.get(metric, TrendPolarity.NEUTRAL),
    )


def compute_trends(previous: ZoneStats, current: ZoneStats) -> Dict[str, ZoneTrend]:
    """Trend for every tracked metric"""
    return {
        metric: compute_trend(metric, getattr(previous, metric), getattr(current, metric))
        for metric in METRIC_POLARITY
    }


# ============================================
# Tracker
# ============================================

class ZoneStatsState(str, Enum):
    NO_ZONE = "no_zone"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


StatsFetcher = Callable[[str], Awaitable[ZoneStats]]
UpdateCallback = Callable[["ZoneStatsTracker"], Awaitable[None]]


class ZoneStatsTracker:
    """
    Track statistics for the currently selected zone

    Usage:
        tracker = ZoneStatsTracker(client.fetch_zone_stats, refresh_interval=15)
        await tracker.select_zone("zone-1")
        trends = tracker.trends()
        tracker.clear_zone()
    """

    def __init__(
        self,
        fetch: StatsFetcher,
        refresh_interval: float = 15.0,
        on_update: Optional[UpdateCallback] = None,
    ):
        """
        Args:
            fetch: Coroutine returning ZoneStats or raising StatsFetchFailed
            refresh_interval: Seconds between timed refreshes
            on_update: Awaited after every applied response or failure
        """
        self.fetch = fetch
        self.refresh_interval = refresh_interval
        self.on_update = on_update

        self.state = ZoneStatsState.NO_ZONE
        self.zone_id: Optional[str] = None
        self.current: Optional[ZoneStats] = None
        self.previous: Optional[ZoneStats] = None
        self.stale = False
        self.last_error: Optional[str] = None

        self._request_seq = 0
        self._applied_seq = 0
        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

        # Statistics
        self.requests = 0
        self.applied = 0
        self.failures = 0
        self.stale_discarded = 0

    # ============================================
    # Selection
    # ============================================

    def select_zone(self, zone_id: str) -> Optional[asyncio.Task]:
        """
        Select a zone and start loading its stats

        Selecting the zone that is already selected only refreshes.

        Returns:
            The initial load task (await it to wait for the first result)
        """
        if zone_id == self.zone_id:
            return self.refresh()

        self._cancel_timer()
        self.zone_id = zone_id
        self._discard_snapshot()
        # Anything still in flight belongs to an older selection
        self._applied_seq = self._request_seq
        self.state = ZoneStatsState.LOADING

        logger.info("[ZoneStats] Selected zone %s", zone_id)
        self._timer_task = asyncio.create_task(self._timer_loop(zone_id))
        return self.refresh()

    def clear_zone(self):
        """Deselect: back to NO_ZONE, previous snapshot discarded, timer stopped"""
        self._cancel_timer()
        self.zone_id = None
        self._discard_snapshot()
        self._applied_seq = self._request_seq
        self.state = ZoneStatsState.NO_ZONE

    def _discard_snapshot(self):
        self.current = None
        self.previous = None
        self.stale = False
        self.last_error = None

    # ============================================
    # Refresh
    # ============================================

    def refresh(self) -> Optional[asyncio.Task]:
        """
        Request fresh stats for the selected zone

        Returns:
            The request task, or None when no zone is selected
        """
        if self.zone_id is None:
            return None

        self._request_seq += 1
        self.requests += 1
        if self.state is ZoneStatsState.READY:
            self.state = ZoneStatsState.LOADING

        task = asyncio.create_task(self._load(self.zone_id, self._request_seq))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def _accepts(self, zone_id: str, seq: int) -> bool:
        return zone_id == self.zone_id and seq > self._applied_seq

    async def _load(self, zone_id: str, seq: int):
        try:
            stats = await self.fetch(zone_id)
        except StatsFetchFailed as e:
            if not self._accepts(zone_id, seq):
                self.stale_discarded += 1
                return
            self._applied_seq = seq
            self.failures += 1
            self.last_error = e.reason or str(e)
            if self.current is not None:
                self.state = ZoneStatsState.READY
                self.stale = True
            else:
                self.state = ZoneStatsState.FAILED
            logger.warning("[ZoneStats] %s", e)
            await self._notify()
            return

        if not self._accepts(zone_id, seq):
            self.stale_discarded += 1
            logger.debug("[ZoneStats] Discarded stale response for %s (seq %d)", zone_id, seq)
            return

        self._applied_seq = seq
        self.previous = self.current
        self.current = stats
        self.stale = False
        self.last_error = None
        self.state = ZoneStatsState.READY
        self.applied += 1
        await self._notify()

    async def _timer_loop(self, zone_id: str):
        while True:
            await asyncio.sleep(self.refresh_interval)
            if self.zone_id != zone_id:
                return
            self.refresh()

    def _cancel_timer(self):
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None

    async def _notify(self):
        if self.on_update is not None:
            await self.on_update(self)

    async def wait_idle(self):
        """Wait for in-flight requests"""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def stop(self):
        """Deselect and cancel timer and in-flight requests"""
        timer = self._timer_task
        self.clear_zone()
        tasks = [t for t in (timer, *self._inflight) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ============================================
    # Output
    # ============================================

    def trends(self) -> Dict[str, ZoneTrend]:
        """Trends between previous and current stats ({} until two snapshots exist)"""
        if self.previous is None or self.current is None:
            return {}
        return compute_trends(self.previous, self.current)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        return {
            'state': self.state.value,
            'zoneId': self.zone_id,
            'stats': self.current.to_dict() if self.current else None,
            'previous': self.previous.to_dict() if self.previous else None,
            'trends': {metric: trend.to_dict() for metric, trend in self.trends().items()},
            'stale': self.stale,
            'lastError': self.last_error,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'zoneId': self.zone_id,
            'requests': self.requests,
            'applied': self.applied,
            'failures': self.failures,
            'staleDiscarded': self.stale_discarded,
        }
