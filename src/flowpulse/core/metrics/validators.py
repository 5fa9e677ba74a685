"""
Per-issue hygiene checks.

Each check answers one yes/no question about a single issue at a reference
time ``now``. Counts over many issues are always recomputed from these
checks, never patched incrementally.

Policy:
- Subissues (issues with a parent) are never counted as missing an
  estimate or a priority.
- An estimate of 0 is a real estimate; only a missing estimate counts.
- Comment recency is only checked for started issues, and never for
  states named like canceled or duplicate. The cutoff is the start of the
  last business day, so weekends do not make an issue stale.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from flowpulse.core.metrics.thresholds import WIP_AGE_DAYS
from flowpulse.core.store.models import IssueRecord, StateType

logger = logging.getLogger(__name__)

SUPPRESSED_COMMENT_STATES = ("cancel", "duplicate")


def last_business_day_start(now: datetime) -> datetime:
    """
    Midnight at the start of the most recent weekday before ``now``'s date.

    Monday looks back to Friday, Sunday and Saturday look back to Friday,
    every other day looks back one day.
    """
    day = now.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=1)
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    return day


def invariant_problems(issue: IssueRecord) -> list[str]:
    """
    Describe timestamp/state contradictions on an issue.

    Returns an empty list for a consistent issue.
    """
    problems = []
    if issue.completed_at is not None and issue.state_type != StateType.COMPLETED:
        problems.append(f"completed_at set but state type is {issue.state_type.value}")
    if issue.canceled_at is not None and issue.state_type != StateType.CANCELED:
        problems.append(f"canceled_at set but state type is {issue.state_type.value}")
    if issue.state_type == StateType.COMPLETED and issue.completed_at is None:
        problems.append("completed issue has no completed_at")
    return problems


def has_valid_timestamps(issue: IssueRecord) -> bool:
    """True when the issue's time metrics can be trusted; logs otherwise."""
    problems = invariant_problems(issue)
    if problems:
        logger.warning(f"Skipping time metrics for {issue.identifier}: {'; '.join(problems)}")
        return False
    return True


def has_missing_estimate(issue: IssueRecord) -> bool:
    if issue.is_subissue:
        return False
    return issue.estimate is None


def has_missing_priority(issue: IssueRecord) -> bool:
    if issue.is_subissue:
        return False
    return issue.priority == 0


def has_missing_description(issue: IssueRecord) -> bool:
    return not (issue.description or "").strip()


def has_no_recent_comment(issue: IssueRecord, now: datetime) -> bool:
    """
    Check whether a started issue has gone quiet since the last business day.

    Without any comment, the start time (or creation time) is the reference.
    """
    if issue.state_type != StateType.STARTED:
        return False
    state_name = issue.state_name.lower()
    if any(marker in state_name for marker in SUPPRESSED_COMMENT_STATES):
        return False
    reference = issue.last_comment_at or issue.started_at or issue.created_at
    return reference < last_business_day_start(now)


def has_wip_age_violation(issue: IssueRecord, now: datetime) -> bool:
    if issue.state_type != StateType.STARTED:
        return False
    started = issue.started_at or issue.created_at
    return (now - started) > timedelta(days=WIP_AGE_DAYS)


@dataclass
class ViolationCounts:
    """Hygiene violations over a set of issues."""

    missing_estimate: int = 0
    missing_priority: int = 0
    no_recent_comment: int = 0
    wip_age: int = 0
    missing_description: int = 0

    @property
    def total(self) -> int:
        return (
            self.missing_estimate
            + self.missing_priority
            + self.no_recent_comment
            + self.wip_age
        )


def count_violations(issues: Iterable[IssueRecord], now: datetime) -> ViolationCounts:
    """Count every violation kind from scratch."""
    counts = ViolationCounts()
    for issue in issues:
        counts.missing_estimate += has_missing_estimate(issue)
        counts.missing_priority += has_missing_priority(issue)
        counts.no_recent_comment += has_no_recent_comment(issue, now)
        counts.wip_age += has_wip_age_violation(issue, now)
        counts.missing_description += has_missing_description(issue)
    return counts
