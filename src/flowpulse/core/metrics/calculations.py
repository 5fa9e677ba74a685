"""
Time and throughput calculations over issues.

All functions are pure: they take records and a reference ``now`` and never
touch the store. Missing optional data yields ``None`` ("metric undefined")
rather than an exception.
"""

import calendar
import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from flowpulse.core.metrics.thresholds import (
    DATE_DISCREPANCY_DAYS,
    ESTIMATE_FULL_CREDIT_BAND,
    ESTIMATE_HALF_CREDIT_BAND,
    NO_VELOCITY_HORIZON_MONTHS,
)
from flowpulse.core.store.models import IssueRecord, StateType

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0

# Keeps extrapolated dates inside datetime's range
MAX_ESTIMATE_DAYS = 3650.0


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from ``start`` to ``end`` (negative if reversed)."""
    return (end - start).total_seconds() / SECONDS_PER_DAY


def wip_age_days(issue: IssueRecord, now: datetime) -> float | None:
    """
    Days an issue has been (or was) in progress.

    Started issues age from started_at, falling back to created_at.
    Completed issues need a recorded start; creation time is never used for
    them since that would measure lead time instead. Any other state has no
    WIP age.
    """
    if issue.state_type == StateType.STARTED:
        return days_between(issue.started_at or issue.created_at, now)
    if issue.state_type == StateType.COMPLETED:
        if issue.started_at is None:
            return None
        if issue.completed_at is None:
            logger.warning(f"Completed issue {issue.identifier} has no completed_at, no WIP age")
            return None
        return days_between(issue.started_at, issue.completed_at)
    return None


def cycle_time_days(issue: IssueRecord) -> float | None:
    """Start to completion, for completed issues with both timestamps."""
    if issue.state_type != StateType.COMPLETED:
        return None
    if issue.started_at is None or issue.completed_at is None:
        return None
    return days_between(issue.started_at, issue.completed_at)


def lead_time_days(issue: IssueRecord) -> float | None:
    """Creation to completion, for completed issues."""
    if issue.state_type != StateType.COMPLETED or issue.completed_at is None:
        return None
    return days_between(issue.created_at, issue.completed_at)


def _mean(values: Iterable[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def average_cycle_time(issues: Iterable[IssueRecord]) -> float | None:
    return _mean(cycle_time_days(i) for i in issues)


def average_lead_time(issues: Iterable[IssueRecord]) -> float | None:
    return _mean(lead_time_days(i) for i in issues)


def total_points(issues: Iterable[IssueRecord]) -> float:
    """Sum of estimates; unestimated issues contribute nothing."""
    return float(sum(i.estimate for i in issues if i.estimate is not None))


def linear_progress(issues: Sequence[IssueRecord]) -> float:
    """Fraction of non-canceled issues that are completed (0.0 to 1.0)."""
    relevant = [i for i in issues if i.state_type != StateType.CANCELED]
    if not relevant:
        return 0.0
    done = sum(1 for i in relevant if i.state_type == StateType.COMPLETED)
    return done / len(relevant)


def _weeks_since(start: datetime, now: datetime) -> float:
    return max(1.0, days_between(start, now) / 7.0)


def velocity(issues: Iterable[IssueRecord], start: datetime | None, now: datetime) -> float:
    """
    Completed issues per week since ``start``.

    Elapsed time is floored at one week so a young project is not credited
    with an inflated rate. Zero when nothing is completed or start is unknown.
    """
    completed = sum(1 for i in issues if i.state_type == StateType.COMPLETED)
    if completed == 0 or start is None:
        return 0.0
    return completed / _weeks_since(start, now)


def velocity_by_team(
    issues: Iterable[IssueRecord], start: datetime | None, now: datetime
) -> dict[str, float]:
    """Velocity split by issue team key; teams without completions are omitted."""
    if start is None:
        return {}
    completed: dict[str, int] = defaultdict(int)
    for issue in issues:
        if issue.state_type == StateType.COMPLETED:
            completed[issue.team_key] += 1
    weeks = _weeks_since(start, now)
    return {team: count / weeks for team, count in sorted(completed.items())}


def _calibration_set(issues: Iterable[IssueRecord]) -> list[tuple[float, float]]:
    """(points, actual days) for completed, estimated issues with a positive cycle time."""
    pairs = []
    for issue in issues:
        if issue.estimate is None or issue.estimate <= 0:
            continue
        actual = cycle_time_days(issue)
        if actual is None or actual <= 0:
            continue
        pairs.append((float(issue.estimate), actual))
    return pairs


def days_per_story_point(issues: Iterable[IssueRecord]) -> float | None:
    """Observed days per point over the calibration set, or None without data."""
    pairs = _calibration_set(issues)
    points = sum(p for p, _ in pairs)
    if not pairs or points <= 0:
        return None
    return sum(d for _, d in pairs) / points


def estimate_accuracy(issues: Iterable[IssueRecord]) -> float | None:
    """
    Percentage score of how well estimates predicted actual cycle time.

    A days-per-point factor is calibrated over the calibration set; each
    issue then scores 1.0 when its actual time is within 20% of the
    predicted time, 0.5 within 70%, and 0 beyond. The mean score is
    returned as a percentage. None when no issue qualifies.
    """
    pairs = _calibration_set(issues)
    points = sum(p for p, _ in pairs)
    if not pairs or points <= 0:
        return None
    factor = sum(d for _, d in pairs) / points

    score = 0.0
    for estimate, actual in pairs:
        expected = estimate * factor
        error = abs(actual - expected) / expected
        if error <= ESTIMATE_FULL_CREDIT_BAND:
            score += 1.0
        elif error <= ESTIMATE_HALF_CREDIT_BAND:
            score += 0.5
    return round(score / len(pairs) * 100, 1)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def end_of_month(moment: datetime) -> datetime:
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return moment.replace(day=last_day, hour=23, minute=59, second=59, microsecond=999999)


def estimated_end_date(
    total_issues: int,
    completed_issues: int,
    earliest_created: datetime | None,
    now: datetime,
) -> datetime | None:
    """
    Project completion date extrapolated from the completion rate so far.

    Remaining issues are divided by completions per elapsed day (at least
    one day), then the result is rounded up to the end of its month. With
    no completions yet the estimate is the end of the month six months out.
    """
    if earliest_created is None:
        return None
    elapsed = max(1.0, days_between(earliest_created, now))
    per_day = completed_issues / elapsed
    if per_day <= 0:
        return end_of_month(add_months(now, NO_VELOCITY_HORIZON_MONTHS))
    remaining = max(0, total_issues - completed_issues)
    days = min(remaining / per_day, MAX_ESTIMATE_DAYS)
    return end_of_month(now + timedelta(days=days))


def has_date_discrepancy(target: datetime | None, estimated: datetime | None) -> bool:
    """True when target and estimated end differ by more than 30 days."""
    if target is None or estimated is None:
        return False
    return abs(days_between(target, estimated)) > DATE_DISCREPANCY_DAYS
