"""
Health pillars aggregated for snapshots.

Three pillars are computed at org, domain or team scope:
- team health: share of engineers with a healthy workload (at most the WIP
  limit and a single project)
- velocity health: share of in-progress projects on track, combining the
  project's own health with how far the estimated end slips past target
- quality health: open bug load, bug churn and bug age folded into one
  composite score

Each pillar reports a status band derived from a "violation percentage".
"""

from collections.abc import Collection, Mapping, Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from flowpulse.core.metrics.calculations import days_between
from flowpulse.core.metrics.status import is_started_project
from flowpulse.core.metrics.thresholds import (
    AT_RISK_DAYS_OFF_TARGET,
    BUG_AGE_PENALTY_PER_DAY,
    BUG_PENALTY_PER_ENGINEER,
    NET_BUG_PENALTY_PER_ENGINEER,
    OFF_TRACK_DAYS_OFF_TARGET,
    PILLAR_STATUS_BANDS,
    PILLAR_STATUS_FLOOR,
    QUALITY_PERIOD_DAYS,
)
from flowpulse.core.store.models import (
    EngineerRecord,
    IssueRecord,
    ProjectHealth,
    ProjectRecord,
    StateType,
)


def pillar_status(violation_percent: float) -> str:
    """Status band for a violation percentage (lower is healthier)."""
    for upper, status in PILLAR_STATUS_BANDS:
        if violation_percent < upper:
            return status
    return PILLAR_STATUS_FLOOR


def _pct(part: int, whole: int, empty: float = 0.0) -> float:
    if whole == 0:
        return empty
    return round(part / whole * 100, 1)


class TeamHealth(BaseModel):
    """Workload health of engineers in scope."""

    healthy_workload_percent: float
    healthy_ic_count: int
    total_ic_count: int
    wip_violation_count: int
    multi_project_violation_count: int
    impacted_project_count: int
    total_project_count: int
    status: str


class ProjectVelocityStatus(BaseModel):
    project_id: str
    project_name: str
    linear_health: ProjectHealth | None = None
    calculated_health: ProjectHealth
    effective_health: ProjectHealth
    health_source: str
    days_off_target: int | None = None


class VelocityHealth(BaseModel):
    """On-track share of in-progress projects."""

    on_track_percent: float
    at_risk_percent: float
    off_track_percent: float
    project_statuses: list[ProjectVelocityStatus] = Field(default_factory=list)
    status: str


class QualityHealth(BaseModel):
    """Bug load and churn over the measurement period."""

    open_bug_count: int
    bugs_opened_in_period: int
    bugs_closed_in_period: int
    net_bug_change: int
    average_bug_age_days: float
    max_bug_age_days: float
    composite_score: int
    status: str


# ----------------------------------------------------------------------
# Scoping
# ----------------------------------------------------------------------


def projects_for_teams(
    projects: Sequence[ProjectRecord], team_keys: Collection[str]
) -> list[ProjectRecord]:
    keys = {k.upper() for k in team_keys}
    return [p for p in projects if any(t.upper() in keys for t in p.teams)]


def engineers_for_teams(
    engineers: Sequence[EngineerRecord],
    team_keys: Collection[str],
    engineer_team_mapping: Mapping[str, str] | None = None,
) -> list[EngineerRecord]:
    """
    Engineers belonging to any of ``team_keys``.

    With an engineer-to-team mapping, the mapping decides membership;
    otherwise the teams the engineer has started work in do.
    """
    keys = {k.upper() for k in team_keys}
    if engineer_team_mapping:
        members = {name for name, team in engineer_team_mapping.items() if team.upper() in keys}
        return [e for e in engineers if e.assignee_name in members]
    return [e for e in engineers if any(t.key.upper() in keys for t in e.teams)]


def issues_for_teams(issues: Sequence[IssueRecord], team_keys: Collection[str]) -> list[IssueRecord]:
    keys = {k.upper() for k in team_keys}
    return [i for i in issues if i.team_key.upper() in keys]


# ----------------------------------------------------------------------
# Team health
# ----------------------------------------------------------------------


def is_healthy_workload(engineer: EngineerRecord) -> bool:
    return not engineer.wip_limit_violation and not engineer.multi_project_violation


def team_health(
    engineers: Sequence[EngineerRecord],
    projects: Sequence[ProjectRecord],
    engineer_team_mapping: Mapping[str, str] | None = None,
) -> TeamHealth:
    """Compute the team health pillar over already-scoped inputs."""
    active_projects = [p for p in projects if p.in_progress_issues > 0]
    by_name = {e.assignee_name: e for e in engineers}

    if engineer_team_mapping:
        analyzed = [
            e for e in engineers
            if e.wip_issue_count > 0 and e.assignee_name in engineer_team_mapping
        ]
    else:
        names = {name for p in active_projects for name in p.engineers}
        analyzed = [e for e in engineers if e.assignee_name in names]
        if not analyzed:
            analyzed = [e for e in engineers if e.wip_issue_count > 0]

    healthy = sum(1 for e in analyzed if is_healthy_workload(e))
    impacted = sum(
        1
        for p in active_projects
        if any(name in by_name and not is_healthy_workload(by_name[name]) for name in p.engineers)
    )
    healthy_percent = _pct(healthy, len(analyzed))

    return TeamHealth(
        healthy_workload_percent=healthy_percent,
        healthy_ic_count=healthy,
        total_ic_count=len(analyzed),
        wip_violation_count=sum(1 for e in analyzed if e.wip_limit_violation),
        multi_project_violation_count=sum(1 for e in analyzed if e.multi_project_violation),
        impacted_project_count=impacted,
        total_project_count=len(active_projects),
        status=pillar_status(100 - healthy_percent),
    )


# ----------------------------------------------------------------------
# Velocity health
# ----------------------------------------------------------------------


def days_off_target(project: ProjectRecord) -> int | None:
    """Days the estimated end falls after the target date (negative if before)."""
    if project.target_date is None or project.estimated_end_date is None:
        return None
    return round(days_between(project.target_date, project.estimated_end_date))


def velocity_based_health(days_off: int | None) -> ProjectHealth:
    if days_off is None or days_off <= AT_RISK_DAYS_OFF_TARGET:
        return ProjectHealth.ON_TRACK
    if days_off > OFF_TRACK_DAYS_OFF_TARGET:
        return ProjectHealth.OFF_TRACK
    return ProjectHealth.AT_RISK


def effective_health(project: ProjectRecord) -> ProjectVelocityStatus:
    """
    Combine the project's reported health with its velocity.

    A pessimistic reported health always stands. An optimistic one is
    overridden when velocity says the project is slipping.
    """
    days_off = days_off_target(project)
    calculated = velocity_based_health(days_off)
    reported = project.health

    if reported in (ProjectHealth.AT_RISK, ProjectHealth.OFF_TRACK):
        effective, source = reported, "human"
    elif calculated != ProjectHealth.ON_TRACK:
        effective, source = calculated, "velocity"
    else:
        effective, source = reported or ProjectHealth.ON_TRACK, "human"

    return ProjectVelocityStatus(
        project_id=project.id,
        project_name=project.name,
        linear_health=reported,
        calculated_health=calculated,
        effective_health=effective,
        health_source=source,
        days_off_target=days_off,
    )


def velocity_health(projects: Sequence[ProjectRecord]) -> VelocityHealth:
    """Compute the velocity pillar over in-progress projects."""
    statuses = [effective_health(p) for p in projects if is_started_project(p.state)]
    total = len(statuses)
    on_track = sum(1 for s in statuses if s.effective_health == ProjectHealth.ON_TRACK)
    at_risk = sum(1 for s in statuses if s.effective_health == ProjectHealth.AT_RISK)
    off_track = sum(1 for s in statuses if s.effective_health == ProjectHealth.OFF_TRACK)
    on_track_percent = _pct(on_track, total, empty=100.0)

    return VelocityHealth(
        on_track_percent=on_track_percent,
        at_risk_percent=_pct(at_risk, total),
        off_track_percent=_pct(off_track, total),
        project_statuses=statuses,
        status=pillar_status(100 - on_track_percent),
    )


# ----------------------------------------------------------------------
# Quality health
# ----------------------------------------------------------------------


def is_bug(issue: IssueRecord) -> bool:
    return any("bug" in label.lower() for label in issue.labels)


def composite_quality_score(
    open_count: int, net_change: int, average_age: float, engineer_count: int = 1
) -> int:
    """
    Score from 0 to 100, higher is healthier.

    Weighted 30% bugs per engineer, 40% net new bugs per engineer, 30%
    average open bug age.
    """
    engineers = max(1, engineer_count)
    bug_score = max(0.0, 100 - open_count / engineers * BUG_PENALTY_PER_ENGINEER)
    net_score = max(0.0, 100 - net_change / engineers * NET_BUG_PENALTY_PER_ENGINEER)
    age_score = max(0.0, 100 - average_age * BUG_AGE_PENALTY_PER_DAY)
    return round(bug_score * 0.3 + min(net_score, 100.0) * 0.4 + age_score * 0.3)


def quality_health(
    issues: Sequence[IssueRecord],
    now: datetime,
    engineer_count: int = 1,
    period_days: int = QUALITY_PERIOD_DAYS,
) -> QualityHealth:
    """Compute the quality pillar from bug-labelled issues."""
    period_start = now - timedelta(days=period_days)
    bugs = [i for i in issues if is_bug(i)]
    open_bugs = [b for b in bugs if b.state_type not in (StateType.COMPLETED, StateType.CANCELED)]
    opened = sum(1 for b in bugs if b.created_at >= period_start)
    closed = sum(1 for b in bugs if b.completed_at is not None and b.completed_at >= period_start)
    ages = [days_between(b.created_at, now) for b in open_bugs]
    average_age = sum(ages) / len(ages) if ages else 0.0
    score = composite_quality_score(len(open_bugs), opened - closed, average_age, engineer_count)

    return QualityHealth(
        open_bug_count=len(open_bugs),
        bugs_opened_in_period=opened,
        bugs_closed_in_period=closed,
        net_bug_change=opened - closed,
        average_bug_age_days=round(average_age, 1),
        max_bug_age_days=round(max(ages), 1) if ages else 0.0,
        composite_score=score,
        status=pillar_status(100 - score),
    )
