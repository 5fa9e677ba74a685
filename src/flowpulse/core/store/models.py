"""
Pydantic models for the records held in the flowpulse store.

These models provide type-safe data structures for:
- IssueRecord: an issue as fetched from Linear, denormalized with its project
- ProjectRecord: a project with its computed aggregates, violations and flags
- EngineerRecord: per-assignee WIP and hygiene metrics
- InitiativeRecord: an initiative with its health history and member projects
- SyncMetadata: the singleton sync status row
- MetricsSnapshot: an immutable, timestamped metrics payload

Every record knows how to turn itself into a SQLite row (``to_row``) and how
to come back from one (``from_row``). Nested collections are kept in JSON
columns but only ever pass through these models, so callers never handle
serialized strings. Team membership lives in child tables and is attached
by the query layer.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StateType(str, Enum):
    """Coarse workflow state types reported by Linear."""

    TRIAGE = "triage"
    BACKLOG = "backlog"
    UNSTARTED = "unstarted"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELED = "canceled"


class ProjectHealth(str, Enum):
    """Project and initiative health values as Linear spells them."""

    ON_TRACK = "onTrack"
    AT_RISK = "atRisk"
    OFF_TRACK = "offTrack"


class SyncStatus(str, Enum):
    """Status of the sync engine as shown to operators."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncPhase(str, Enum):
    """Sync phases in execution order."""

    INITIAL_ISSUES = "initial_issues"
    RECENTLY_UPDATED_ISSUES = "recently_updated_issues"
    ACTIVE_PROJECTS = "active_projects"
    PLANNED_PROJECTS = "planned_projects"
    COMPLETED_PROJECTS = "completed_projects"
    INITIATIVE_PROJECTS = "initiative_projects"
    INITIATIVES = "initiatives"
    COMPUTING_METRICS = "computing_metrics"
    COMPLETE = "complete"


class SnapshotLevel(str, Enum):
    """Aggregation level of a metrics snapshot."""

    ORG = "org"
    DOMAIN = "domain"
    TEAM = "team"


class UTCModel(BaseModel):
    """
    Base class whose datetime fields are always timezone-aware.

    Naive values are taken as UTC. That covers rows read back from SQLite
    and the date-only fields Linear sends (``targetDate: "2026-06-30"``).
    """

    @field_validator("*", mode="after")
    @classmethod
    def _assume_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class StoredRecord(UTCModel):
    """Base class for models persisted as a single SQLite row."""

    model_config = ConfigDict(populate_by_name=True)

    json_fields: ClassVar[tuple[str, ...]] = ()
    child_fields: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def column_names(cls) -> list[str]:
        """Names of the columns this record occupies in its table."""
        return [name for name in cls.model_fields if name not in cls.child_fields]

    def to_row(self) -> dict[str, Any]:
        """Serialize to a column -> value mapping ready for sqlite3."""
        data = self.model_dump(mode="json", exclude=set(self.child_fields))
        for name in self.json_fields:
            if data.get(name) is not None:
                data[name] = json.dumps(data[name], sort_keys=True)
        return data

    @classmethod
    def from_row(cls, row: dict[str, Any], **children: Any) -> Any:
        """Build a record from a dict row, decoding JSON columns."""
        data = dict(row)
        for name in cls.json_fields:
            if data.get(name) is None:
                # NULL column falls back to the field default
                data.pop(name, None)
            elif isinstance(data[name], str):
                data[name] = json.loads(data[name])
        data.update(children)
        return cls.model_validate(data)


class StatusUpdate(UTCModel):
    """A project or initiative status post."""

    id: str
    created_at: datetime
    updated_at: datetime | None = None
    body: str | None = None
    health: ProjectHealth | None = None


class TeamRef(UTCModel):
    """A team an engineer works in."""

    id: str | None = None
    key: str
    name: str


class ActiveIssueSummary(UTCModel):
    """Compact view of a started issue for the engineer page."""

    id: str
    identifier: str
    title: str
    url: str | None = None
    state_name: str
    team_key: str
    project_id: str | None = None
    project_name: str | None = None
    estimate: float | None = None
    priority: int = 0
    started_at: datetime | None = None
    wip_age_days: float | None = None


class IssueRecord(StoredRecord):
    """
    An issue fetched from Linear.

    The project attributes are whatever the issue node carried for its
    project at fetch time, which lets metrics be recomputed for a project
    whose own details were not fetched in the current run.
    """

    json_fields: ClassVar[tuple[str, ...]] = ("labels",)

    id: str = Field(..., description="Linear issue UUID")
    identifier: str = Field(..., description="Human-readable key, e.g. ENG-123")
    title: str
    description: str | None = None
    url: str | None = None

    team_id: str
    team_key: str
    team_name: str

    state_id: str | None = None
    state_name: str
    state_type: StateType

    assignee_id: str | None = None
    assignee_name: str | None = None
    assignee_avatar_url: str | None = None
    creator_id: str | None = None
    creator_name: str | None = None

    estimate: float | None = Field(default=None, description="Story points; 0 is a real value")
    priority: int = Field(default=0, ge=0, description="0 means no priority")

    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    canceled_at: datetime | None = None

    parent_id: str | None = None
    last_comment_at: datetime | None = None
    comment_count: int | None = None

    project_id: str | None = None
    project_name: str | None = None
    project_state: str | None = None
    project_health: ProjectHealth | None = None
    project_lead_id: str | None = None
    project_lead_name: str | None = None
    project_updated_at: datetime | None = None
    project_target_date: datetime | None = None
    project_start_date: datetime | None = None
    project_completed_at: datetime | None = None

    labels: list[str] = Field(default_factory=list)

    @property
    def is_subissue(self) -> bool:
        return self.parent_id is not None


class ProjectRecord(StoredRecord):
    """A project with remote attributes and computed metrics."""

    json_fields: ClassVar[tuple[str, ...]] = (
        "labels",
        "updates",
        "engineers",
        "issues_by_state",
        "velocity_by_team",
    )
    child_fields: ClassVar[tuple[str, ...]] = ("teams",)

    id: str
    name: str = "Unknown Project"
    state: str | None = Field(default=None, description="Lifecycle state category")
    status: str | None = Field(default=None, description="Fine-grained status name")
    health: ProjectHealth | None = None
    lead_id: str | None = None
    lead_name: str | None = None
    lead_avatar_url: str | None = None
    description: str | None = None
    content: str | None = None
    target_date: datetime | None = None
    start_date: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None
    labels: list[str] = Field(default_factory=list)
    updates: list[StatusUpdate] = Field(default_factory=list)

    total_issues: int = 0
    completed_issues: int = 0
    in_progress_issues: int = 0
    engineer_count: int = 0
    engineers: list[str] = Field(default_factory=list)
    teams: list[str] = Field(default_factory=list)
    issues_by_state: dict[str, int] = Field(default_factory=dict)
    velocity_by_team: dict[str, float] = Field(default_factory=dict)

    missing_estimate_count: int = 0
    missing_priority_count: int = 0
    no_recent_comment_count: int = 0
    wip_age_violation_count: int = 0
    missing_description_count: int = 0

    total_points: float = 0.0
    velocity: float = 0.0
    average_cycle_time: float | None = None
    average_lead_time: float | None = None
    estimate_accuracy: float | None = None
    days_per_story_point: float | None = None
    linear_progress: float = 0.0

    has_status_mismatch: bool = False
    is_stale_update: bool = False
    missing_lead: bool = False
    missing_health: bool = False
    has_date_discrepancy: bool = False
    has_violations: bool = False

    estimated_end_date: datetime | None = None
    last_activity_at: datetime | None = None
    last_synced_at: datetime | None = None


class EngineerRecord(StoredRecord):
    """Per-assignee WIP metrics, recomputed wholesale every pass."""

    json_fields: ClassVar[tuple[str, ...]] = ("active_issues",)
    child_fields: ClassVar[tuple[str, ...]] = ("teams",)

    assignee_id: str
    assignee_name: str
    avatar_url: str | None = None
    teams: list[TeamRef] = Field(default_factory=list)
    active_issues: list[ActiveIssueSummary] = Field(default_factory=list)

    wip_issue_count: int = 0
    wip_total_points: float = 0.0
    wip_limit_violation: bool = False
    oldest_wip_age_days: float | None = None
    last_activity_at: datetime | None = None
    active_project_count: int = 0
    multi_project_violation: bool = False

    missing_estimate_count: int = 0
    missing_priority_count: int = 0
    no_recent_comment_count: int = 0
    wip_age_violation_count: int = 0


class InitiativeRecord(StoredRecord):
    """An initiative and the projects it groups."""

    json_fields: ClassVar[tuple[str, ...]] = ("health_updates", "project_ids")

    id: str
    name: str
    description: str | None = None
    content: str | None = None
    status: str | None = None
    target_date: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    archived_at: datetime | None = None
    health: ProjectHealth | None = None
    health_updated_at: datetime | None = None
    health_updates: list[StatusUpdate] = Field(default_factory=list)
    owner_id: str | None = None
    owner_name: str | None = None
    project_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SyncMetadata(StoredRecord):
    """
    The singleton sync status row.

    ``partial_state`` is the serialized resume document; the progress
    tracker owns its shape.
    """

    json_fields: ClassVar[tuple[str, ...]] = ("query_counts", "partial_state")

    id: int = 1
    status: SyncStatus = SyncStatus.IDLE
    current_phase: SyncPhase | None = None
    last_sync_time: datetime | None = None
    error_message: str | None = None
    progress_percent: int | None = None
    query_counts: dict[str, int] = Field(default_factory=dict)
    partial_state: dict[str, Any] | None = None
    updated_at: datetime | None = None

    @property
    def query_count(self) -> int:
        return sum(self.query_counts.values())


class MetricsSnapshot(StoredRecord):
    """An append-only metrics snapshot row."""

    json_fields: ClassVar[tuple[str, ...]] = ("payload",)

    id: int | None = None
    captured_at: datetime
    schema_version: int
    level: SnapshotLevel
    level_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        row = super().to_row()
        if row.get("id") is None:
            row.pop("id", None)
        return row
