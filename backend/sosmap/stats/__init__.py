"""
Zone Statistics Package

Selected-zone stats tracking with trends, and local zone aggregation.
"""

from .zone_stats import (
    ZoneStatsTracker,
    ZoneStatsState,
    ZoneTrend,
    TrendDirection,
    TrendPolarity,
    METRIC_POLARITY,
    compute_trend,
    compute_trends,
)
from .zone_metrics import compute_zone_stats

__all__ = [
    "ZoneStatsTracker",
    "ZoneStatsState",
    "ZoneTrend",
    "TrendDirection",
    "TrendPolarity",
    "METRIC_POLARITY",
    "compute_trend",
    "compute_trends",
    "compute_zone_stats",
]
