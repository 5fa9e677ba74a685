"""
Project metrics computation.

``compute_project`` rebuilds a ProjectRecord from the full current issue set
of one project. Nothing is carried over from the previous computation
except remote attributes (labels, content, updates) when the project's
details were not fetched in this run, so repeated passes over the same data
always converge to the same record.
"""

import logging
from collections import Counter
from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Any

from flowpulse.core.linear.models import ProjectDetails
from flowpulse.core.metrics import calculations
from flowpulse.core.metrics.status import (
    has_status_mismatch,
    is_missing_health,
    is_missing_lead,
    is_planned_project,
    is_stale_update,
    latest_update_at,
)
from flowpulse.core.metrics.validators import count_violations, has_valid_timestamps
from flowpulse.core.store.models import IssueRecord, ProjectRecord, StateType

logger = logging.getLogger(__name__)


def _earliest(values: list[datetime | None]) -> datetime | None:
    present = [v for v in values if v is not None]
    return min(present) if present else None


def _first(values: list[Any]) -> Any:
    return next((v for v in values if v is not None), None)


def _in_scope_teams(team_keys: list[str], whitelist: Collection[str] | None) -> list[str]:
    keys = sorted(set(team_keys))
    if whitelist:
        keys = [k for k in keys if k.upper() in whitelist]
    return keys


def compute_project(
    project_id: str,
    issues: Sequence[IssueRecord],
    now: datetime,
    *,
    details: ProjectDetails | None = None,
    existing: ProjectRecord | None = None,
    allowed_engineers: Collection[str] | None = None,
    whitelist: Collection[str] | None = None,
    synced: bool = False,
) -> ProjectRecord:
    """
    Compute a project's aggregates, violations, quality metrics and flags.

    Args:
        project_id: Linear project id
        issues: Every stored issue of the project (must not be empty)
        now: Reference time for every age and recency check
        details: Project details fetched in this run, if any
        existing: The stored record, used for remote attributes when
            details were not fetched
        allowed_engineers: Lowercased engineer names to count; None counts all
        whitelist: Uppercased team keys in scope; None or empty keeps all
        synced: Whether the project was fetched in this run

    Returns:
        The recomputed ProjectRecord
    """
    if not issues:
        raise ValueError(f"compute_project needs issues for {project_id}")

    # Issues carry the project's attributes as of their own fetch
    from_issues = sorted(issues, key=lambda i: i.updated_at, reverse=True)
    state = details.state if details else _first([i.project_state for i in from_issues])
    health = details.health if details else _first([i.project_health for i in from_issues])
    lead_id = details.lead_id if details else _first([i.project_lead_id for i in from_issues])
    lead_name = details.lead_name if details else _first([i.project_lead_name for i in from_issues])

    target_date = (details.target_date if details else None) or _first(
        [i.project_target_date for i in from_issues]
    )
    remote_start = (details.start_date if details else None) or _first(
        [i.project_start_date for i in from_issues]
    )
    completed_at = (details.completed_at if details else None) or _first(
        [i.project_completed_at for i in from_issues]
    )
    earliest_created = _earliest([i.created_at for i in issues])
    earliest_started = _earliest([i.started_at for i in issues])
    start_date = remote_start or earliest_started or earliest_created

    issues_by_state = dict(sorted(Counter(i.state_name for i in issues).items()))
    completed_count = sum(1 for i in issues if i.state_type == StateType.COMPLETED)
    started_count = sum(1 for i in issues if i.state_type == StateType.STARTED)

    engineers = sorted(
        {
            i.assignee_name
            for i in issues
            if i.assignee_name
            and (allowed_engineers is None or i.assignee_name.lower() in allowed_engineers)
        }
    )
    teams = _in_scope_teams([i.team_key for i in issues], whitelist)
    if not teams and details:
        teams = _in_scope_teams(details.team_keys, whitelist)

    if details:
        labels, description, content, updates = (
            details.labels, details.description, details.content, details.updates
        )
    elif existing:
        labels, description, content, updates = (
            existing.labels, existing.description, existing.content, existing.updates
        )
    else:
        labels, description, content, updates = [], None, None, []

    violations = count_violations(issues, now)
    # Records with contradictory timestamps are left out of time metrics
    timed = [i for i in issues if has_valid_timestamps(i)]
    estimated_end = calculations.estimated_end_date(
        len(issues), completed_count, earliest_created, now
    )
    last_update = latest_update_at(updates)
    last_issue_activity = max(i.updated_at for i in issues)
    last_activity = max(d for d in (last_update, last_issue_activity) if d is not None)

    return ProjectRecord(
        id=project_id,
        name=(details.name if details else None)
        or _first([i.project_name for i in from_issues])
        or (existing.name if existing else "Unknown Project"),
        state=state,
        status=details.status if details else (existing.status if existing else None),
        health=health,
        lead_id=lead_id,
        lead_name=lead_name,
        lead_avatar_url=details.lead_avatar_url if details else (
            existing.lead_avatar_url if existing else None
        ),
        description=description,
        content=content,
        target_date=target_date,
        start_date=start_date,
        completed_at=completed_at,
        updated_at=(details.updated_at if details else None)
        or _first([i.project_updated_at for i in from_issues]),
        labels=labels,
        updates=updates,
        total_issues=len(issues),
        completed_issues=completed_count,
        in_progress_issues=started_count,
        engineer_count=len(engineers),
        engineers=engineers,
        teams=teams,
        issues_by_state=issues_by_state,
        velocity_by_team=calculations.velocity_by_team(issues, start_date, now),
        missing_estimate_count=violations.missing_estimate,
        missing_priority_count=violations.missing_priority,
        no_recent_comment_count=violations.no_recent_comment,
        wip_age_violation_count=violations.wip_age,
        missing_description_count=violations.missing_description,
        total_points=calculations.total_points(issues),
        velocity=calculations.velocity(issues, start_date, now),
        average_cycle_time=calculations.average_cycle_time(timed),
        average_lead_time=calculations.average_lead_time(timed),
        estimate_accuracy=calculations.estimate_accuracy(timed),
        days_per_story_point=calculations.days_per_story_point(timed),
        linear_progress=calculations.linear_progress(issues),
        has_status_mismatch=has_status_mismatch(state, issues),
        is_stale_update=is_stale_update(state, updates, now),
        missing_lead=is_missing_lead(state, lead_name, issues),
        missing_health=is_missing_health(health, state, started_count),
        has_date_discrepancy=calculations.has_date_discrepancy(target_date, estimated_end),
        has_violations=violations.total > 0,
        estimated_end_date=estimated_end,
        last_activity_at=last_activity,
        last_synced_at=now if synced else (existing.last_synced_at if existing else None),
    )


def compute_empty_project(
    details: ProjectDetails,
    now: datetime,
    *,
    whitelist: Collection[str] | None = None,
    synced: bool = True,
) -> ProjectRecord | None:
    """
    Build the record of a project that has no issues yet.

    Returns None when none of the project's teams is in scope.
    """
    teams = _in_scope_teams(details.team_keys, whitelist)
    if not teams:
        logger.info(
            f"Skipping empty project '{details.name}' ({details.id}): no in-scope teams "
            f"(had: {', '.join(details.team_keys) or 'none'})"
        )
        return None

    planned = is_planned_project(details.state)
    return ProjectRecord(
        id=details.id,
        name=details.name,
        state=details.state,
        status=details.status,
        health=details.health,
        lead_id=details.lead_id,
        lead_name=details.lead_name,
        lead_avatar_url=details.lead_avatar_url,
        description=details.description,
        content=details.content,
        target_date=details.target_date,
        start_date=details.start_date,
        completed_at=details.completed_at,
        updated_at=details.updated_at,
        labels=details.labels,
        updates=details.updates,
        teams=teams,
        is_stale_update=is_stale_update(details.state, details.updates, now),
        missing_lead=planned and not details.lead_name,
        missing_health=is_missing_health(details.health, details.state, 0),
        last_activity_at=latest_update_at(details.updates) or details.updated_at,
        last_synced_at=now if synced else None,
    )
