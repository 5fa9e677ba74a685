"""
Metrics snapshots and trends.

Main components:
- writer.py: capture org, domain and team snapshots after a sync
- trends.py: week and month trends over captured snapshots
"""

from flowpulse.core.snapshots.trends import (
    MetricTrends,
    Trend,
    TrendDirection,
    calculate_trend,
    find_comparison,
    metric_trends,
    trends_for_level,
)
from flowpulse.core.snapshots.writer import CaptureResult, SnapshotWriter

__all__ = [
    "CaptureResult",
    "MetricTrends",
    "SnapshotWriter",
    "Trend",
    "TrendDirection",
    "calculate_trend",
    "find_comparison",
    "metric_trends",
    "trends_for_level",
]
