"""
Project and engineer status checks.

Project lifecycle states are free-form in Linear ("started", "In Progress",
"backlog", "planned", ...), so the checks here match on lowercase
substrings rather than exact values.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta

from flowpulse.core.metrics.calculations import add_months
from flowpulse.core.metrics.thresholds import (
    MULTI_PROJECT_CAUTION,
    MULTI_PROJECT_CRITICAL,
    MULTI_PROJECT_WARNING,
    RECENT_ACTIVITY_DAYS,
    STALE_UPDATE_DAYS,
    WIP_CRITICAL,
    WIP_OK,
    WIP_WARNING,
)
from flowpulse.core.store.models import IssueRecord, StateType, StatusUpdate

TERMINAL_MARKERS = ("completed", "done", "canceled", "cancelled")


def _state(project_state: str | None) -> str:
    return (project_state or "").strip().lower()


def is_started_project(project_state: str | None) -> bool:
    state = _state(project_state)
    return "progress" in state or "started" in state


def is_planned_project(project_state: str | None) -> bool:
    return "planned" in _state(project_state)


def is_terminal_project(project_state: str | None) -> bool:
    state = _state(project_state)
    return any(marker in state for marker in TERMINAL_MARKERS)


def is_completed_project(
    project_state: str | None,
    completed_at: datetime | None,
    updated_at: datetime | None,
    now: datetime,
    months: int = 6,
) -> bool:
    """Completed or canceled within the last ``months`` months."""
    if not is_terminal_project(project_state):
        return False
    closed = completed_at or updated_at
    if closed is None:
        return False
    return closed >= add_months(now, -months)


def has_status_mismatch(project_state: str | None, issues: Sequence[IssueRecord]) -> bool:
    """
    Project state disagrees with the state of its issues.

    Either the project is not marked started while some issue is in
    progress, or the project is marked started while every one of its
    issues is already completed or canceled.
    """
    if not issues:
        return False
    has_started = any(i.state_type == StateType.STARTED for i in issues)
    project_started = is_started_project(project_state)
    if has_started and not project_started:
        return True
    all_closed = all(i.state_type in (StateType.COMPLETED, StateType.CANCELED) for i in issues)
    return project_started and all_closed


def latest_update_at(updates: Sequence[StatusUpdate]) -> datetime | None:
    if not updates:
        return None
    return max(update.created_at for update in updates)


def is_stale_update(
    project_state: str | None, updates: Sequence[StatusUpdate], now: datetime
) -> bool:
    """No status update posted within 7 days; closed projects are never stale."""
    if is_terminal_project(project_state):
        return False
    last = latest_update_at(updates)
    if last is None:
        return True
    return last < now - timedelta(days=STALE_UPDATE_DAYS)


def is_missing_lead(
    project_state: str | None, lead_name: str | None, issues: Sequence[IssueRecord]
) -> bool:
    """Active work (or an active state) without a project lead."""
    has_active_work = any(i.state_type == StateType.STARTED for i in issues)
    return (has_active_work or is_started_project(project_state)) and not lead_name


def is_missing_health(
    health: object | None, project_state: str | None, started_count: int
) -> bool:
    """Health is required except for planned projects with nothing started."""
    if health:
        return False
    if is_terminal_project(project_state):
        return False
    return not (is_planned_project(project_state) and started_count == 0)


def is_project_active(issues: Sequence[IssueRecord], now: datetime) -> bool:
    """Started issues, or any issue updated in the recent activity window."""
    cutoff = now - timedelta(days=RECENT_ACTIVITY_DAYS)
    return any(
        i.state_type == StateType.STARTED or i.updated_at > cutoff for i in issues
    )


def wip_status(count: int) -> str:
    """Badge label for an engineer's in-progress issue count."""
    if count >= WIP_CRITICAL:
        return "critical"
    if count >= WIP_WARNING:
        return "warning"
    if count >= WIP_OK:
        return "ok"
    return "good"


def multi_project_status(count: int) -> str:
    """Badge label for the number of projects an engineer is active on."""
    if count >= MULTI_PROJECT_CRITICAL:
        return "critical"
    if count >= MULTI_PROJECT_WARNING:
        return "warning"
    if count == MULTI_PROJECT_CAUTION:
        return "caution"
    return "focused"
