"""
Engineer WIP metrics.

Engineers are derived wholesale from the current set of started issues:
every pass produces the complete list, and anyone without started work
simply drops out.
"""

from collections.abc import Collection, Iterable, Mapping
from datetime import datetime

from flowpulse.core.metrics.calculations import wip_age_days
from flowpulse.core.metrics.thresholds import WIP_LIMIT
from flowpulse.core.metrics.validators import count_violations
from flowpulse.core.store.models import (
    ActiveIssueSummary,
    EngineerRecord,
    IssueRecord,
    StateType,
    TeamRef,
)


def allowed_engineer_names(engineer_team_mapping: Mapping[str, str]) -> set[str] | None:
    """
    Lowercased engineer names from the engineer-to-team mapping.

    Returns None when no mapping is configured, meaning "no filtering".
    """
    names = {name.strip().lower() for name in engineer_team_mapping if name.strip()}
    return names or None


def _summary(issue: IssueRecord, now: datetime) -> ActiveIssueSummary:
    return ActiveIssueSummary(
        id=issue.id,
        identifier=issue.identifier,
        title=issue.title,
        url=issue.url,
        state_name=issue.state_name,
        team_key=issue.team_key,
        project_id=issue.project_id,
        project_name=issue.project_name,
        estimate=issue.estimate,
        priority=issue.priority,
        started_at=issue.started_at,
        wip_age_days=wip_age_days(issue, now),
    )


def compute_engineer(
    assignee_id: str, issues: list[IssueRecord], now: datetime
) -> EngineerRecord:
    """Build one engineer's record from their started issues."""
    first = issues[0]
    teams: dict[str, TeamRef] = {}
    for issue in issues:
        teams.setdefault(
            issue.team_key, TeamRef(id=issue.team_id, key=issue.team_key, name=issue.team_name)
        )
    project_ids = {i.project_id for i in issues if i.project_id}
    ages = [i for i in (wip_age_days(issue, now) for issue in issues) if i is not None]
    violations = count_violations(issues, now)
    ordered = sorted(issues, key=lambda i: (i.started_at or i.created_at, i.identifier))

    return EngineerRecord(
        assignee_id=assignee_id,
        assignee_name=first.assignee_name or "Unknown",
        avatar_url=first.assignee_avatar_url,
        teams=[teams[key] for key in sorted(teams)],
        active_issues=[_summary(issue, now) for issue in ordered],
        wip_issue_count=len(issues),
        wip_total_points=float(sum(i.estimate for i in issues if i.estimate is not None)),
        wip_limit_violation=len(issues) > WIP_LIMIT,
        oldest_wip_age_days=max(ages) if ages else None,
        last_activity_at=max(i.updated_at for i in issues),
        active_project_count=len(project_ids),
        multi_project_violation=len(project_ids) > 1,
        missing_estimate_count=violations.missing_estimate,
        missing_priority_count=violations.missing_priority,
        no_recent_comment_count=violations.no_recent_comment,
        wip_age_violation_count=violations.wip_age,
    )


def compute_engineers(
    issues: Iterable[IssueRecord],
    now: datetime,
    *,
    allowed_engineers: Collection[str] | None = None,
    ignored_assignees: Collection[str] = (),
) -> list[EngineerRecord]:
    """
    Compute every engineer's record from started issues.

    Args:
        issues: Issues to consider; only started, assigned ones count
        now: Reference time
        allowed_engineers: Lowercased names to keep; None keeps everyone
        ignored_assignees: Names whose work is never counted

    Returns:
        Engineer records sorted by name
    """
    ignored = {name.strip().lower() for name in ignored_assignees}
    groups: dict[str, list[IssueRecord]] = {}
    for issue in issues:
        if issue.state_type != StateType.STARTED:
            continue
        if not issue.assignee_id or not issue.assignee_name:
            continue
        name = issue.assignee_name.lower()
        if name in ignored:
            continue
        if allowed_engineers is not None and name not in allowed_engineers:
            continue
        groups.setdefault(issue.assignee_id, []).append(issue)

    engineers = [compute_engineer(aid, group, now) for aid, group in groups.items()]
    return sorted(engineers, key=lambda e: (e.assignee_name.lower(), e.assignee_id))
