"""
Trends over metrics snapshots.

A trend compares a current pillar value with the average of the snapshots
taken around a point in the past: one week back for the week trend, one
month back for the month trend. When no snapshot falls in that window the
oldest snapshot is used instead and the trend reports how many days it
actually spans.

Changes are absolute percentage points, not relative: 20 -> 30 is +10.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel

from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import MetricsSnapshot, SnapshotLevel
from flowpulse.core.store.queries import get_snapshots

TREND_THRESHOLD = 2.0
WEEK_DAYS_AGO = 7
WEEK_WINDOW_DAYS = 2
MONTH_DAYS_AGO = 30
MONTH_WINDOW_DAYS = 3
# Month trends need this much history to differ meaningfully from week trends
MONTH_MIN_HISTORY_DAYS = 14


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class Trend(BaseModel):
    """Direction and size of a change between two values."""

    direction: TrendDirection = TrendDirection.STABLE
    change: float = 0.0
    has_enough_data: bool = False
    actual_days: int | None = None


class MetricTrends(BaseModel):
    week: Trend = Trend()
    month: Trend = Trend()


class Comparison(BaseModel):
    """Snapshots chosen as the historical side of a trend."""

    snapshots: list[MetricsSnapshot]
    actual_days: int


MetricExtractor = Callable[[dict[str, Any]], float | None]


def _dig(payload: dict[str, Any], *keys: str) -> float | None:
    value: Any = payload
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return float(value) if isinstance(value, (int, float)) else None


METRIC_EXTRACTORS: dict[str, MetricExtractor] = {
    "wip_health": lambda p: _dig(p, "team_health", "healthy_workload_percent"),
    "project_health": lambda p: _dig(p, "velocity_health", "on_track_percent"),
    "quality": lambda p: _dig(p, "quality", "composite_score"),
}


def _days_ago(moment: datetime, now: datetime) -> int:
    return max(1, round((now - moment).total_seconds() / 86400))


def find_comparison(
    snapshots: Sequence[MetricsSnapshot],
    days_ago: int,
    window_days: int,
    now: datetime,
) -> Comparison:
    """
    Pick the snapshots to compare against.

    Args:
        snapshots: Historical snapshots, oldest first
        days_ago: How far back the comparison point is
        window_days: Width of the window ending at ``days_ago``
        now: Reference time

    Returns:
        The snapshots captured in the window, or the oldest snapshot when
        the window is empty. ``actual_days`` is ``days_ago`` for a window
        hit and the age of the oldest snapshot otherwise.
    """
    if not snapshots:
        return Comparison(snapshots=[], actual_days=0)

    window_start = now - timedelta(days=days_ago + window_days)
    window_end = now - timedelta(days=days_ago)
    in_window = [s for s in snapshots if window_start <= s.captured_at <= window_end]
    if in_window:
        return Comparison(snapshots=in_window, actual_days=days_ago)

    oldest = snapshots[0]
    return Comparison(snapshots=[oldest], actual_days=_days_ago(oldest.captured_at, now))


def calculate_trend(current: float, historical: float, threshold: float = TREND_THRESHOLD) -> Trend:
    """
    Compare two values.

    A change smaller than ``threshold`` points is stable.

    Example:
        >>> calculate_trend(30, 20).direction
        <TrendDirection.UP: 'up'>
    """
    change = current - historical
    if abs(change) < threshold:
        direction = TrendDirection.STABLE
    elif change > 0:
        direction = TrendDirection.UP
    else:
        direction = TrendDirection.DOWN
    return Trend(direction=direction, change=round(abs(change), 1), has_enough_data=True)


def _average(snapshots: Sequence[MetricsSnapshot], extractor: MetricExtractor) -> float | None:
    values = [v for v in (extractor(s.payload) for s in snapshots) if v is not None]
    if not values:
        return None
    return sum(values) / len(values)


def metric_trends(
    snapshots: Sequence[MetricsSnapshot],
    extractor: MetricExtractor,
    now: datetime,
    current: float | None = None,
) -> MetricTrends:
    """
    Week and month trends for one metric.

    Args:
        snapshots: Snapshots of one level, oldest first
        extractor: Pulls the metric out of a snapshot payload
        now: Reference time
        current: Current value; the latest snapshot is used (and excluded
            from the history) when omitted

    Returns:
        MetricTrends; a trend without data has ``has_enough_data`` False
    """
    if not snapshots:
        return MetricTrends()

    history = list(snapshots)
    if current is None:
        current = extractor(history[-1].payload)
        history = history[:-1]
    if current is None or not history:
        return MetricTrends()

    total_days = _days_ago(history[0].captured_at, now)

    week = Trend()
    week_cmp = find_comparison(history, WEEK_DAYS_AGO, WEEK_WINDOW_DAYS, now)
    week_avg = _average(week_cmp.snapshots, extractor)
    if week_avg is not None:
        week = calculate_trend(current, week_avg).model_copy(
            update={"actual_days": week_cmp.actual_days or total_days}
        )

    month = Trend()
    if total_days >= MONTH_MIN_HISTORY_DAYS:
        month_cmp = find_comparison(history, MONTH_DAYS_AGO, MONTH_WINDOW_DAYS, now)
        month_avg = _average(month_cmp.snapshots, extractor)
        if month_avg is not None:
            month = calculate_trend(current, month_avg).model_copy(
                update={"actual_days": month_cmp.actual_days}
            )

    return MetricTrends(week=week, month=month)


def trends_for_level(
    store: Store,
    level: SnapshotLevel,
    level_id: str | None,
    now: datetime,
    history_days: int = 60,
) -> dict[str, MetricTrends]:
    """Trends of every tracked pillar metric for one level."""
    snapshots = get_snapshots(store, level, level_id, since=now - timedelta(days=history_days))
    return {
        name: metric_trends(snapshots, extractor, now)
        for name, extractor in METRIC_EXTRACTORS.items()
    }
