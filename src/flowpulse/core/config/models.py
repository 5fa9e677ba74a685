"""
Configuration data models for flowpulse.

These models define the structure of .flowpulse.yaml and
~/.config/flowpulse/config.yaml files, with validation and type safety via
Pydantic.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _normalize_keys(values: list[str]) -> list[str]:
    return [v.strip().upper() for v in values if v and v.strip()]


class LinearConfig(BaseModel):
    """
    Connection settings for the Linear GraphQL API.
    """

    api_key: str | None = Field(
        default=None,
        description="Linear personal API key (usually provided via LINEAR_API_KEY)",
    )
    api_url: str = Field(
        default="https://api.linear.app/graphql",
        description="GraphQL endpoint",
    )
    timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Per-request timeout in seconds",
    )
    page_size: int = Field(
        default=100,
        ge=1,
        le=250,
        description="Nodes requested per page",
    )
    max_pages: int = Field(
        default=100,
        ge=1,
        description="Safety break for a single paginated listing",
    )


class BackoffConfig(BaseModel):
    """
    Retry behaviour for transient API failures.

    Delays grow as initial_delay * multiplier ^ (failures - 1), capped at
    max_delay. After max_retries consecutive failures the sync stops.
    """

    initial_delay: float = Field(default=2.0, gt=0.0, description="First retry delay in seconds")
    multiplier: float = Field(default=2.0, ge=1.0, description="Growth factor per failure")
    max_delay: float = Field(default=30.0, gt=0.0, description="Maximum delay in seconds")
    max_retries: int = Field(default=5, ge=0, description="Consecutive transient failures tolerated")

    @model_validator(mode="after")
    def _check_cap(self) -> "BackoffConfig":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class ScopeConfig(BaseModel):
    """
    Which teams and assignees are in scope.

    A non-empty whitelist wins over the ignore list: only whitelisted teams
    are synced. Team keys are compared case-insensitively.
    """

    whitelist_team_keys: list[str] = Field(
        default_factory=list,
        description="If set, only these team keys are synced",
    )
    ignored_team_keys: list[str] = Field(
        default_factory=list,
        description="Team keys excluded from sync (ignored when a whitelist is set)",
    )
    ignored_assignee_names: list[str] = Field(
        default_factory=list,
        description="Assignee names whose issues are dropped",
    )

    @field_validator("whitelist_team_keys", "ignored_team_keys")
    @classmethod
    def _upper(cls, v: list[str]) -> list[str]:
        return _normalize_keys(v)


class SyncConfig(BaseModel):
    """
    Sync engine settings.
    """

    db_path: Path = Field(
        default=Path(".flowpulse/flowpulse.db"),
        description="SQLite store location",
    )
    limit_sync: bool = Field(
        default=False,
        description="Development mode: cap projects and initiatives per phase",
    )
    limit_count: int = Field(
        default=10,
        ge=1,
        description="Per-phase cap applied when limit_sync is on",
    )
    recent_activity_days: float = Field(
        default=14,
        gt=0,
        description="Window for the recently updated issues phase",
    )
    limited_recent_activity_days: float = Field(
        default=0.5,
        gt=0,
        description="Recent window used when limit_sync is on",
    )
    completed_project_months: int = Field(
        default=6,
        ge=0,
        description="How far back completed and canceled projects are fetched",
    )
    interval_minutes: int = Field(
        default=10,
        ge=1,
        description="Scheduler interval",
    )
    capture_snapshots: bool = Field(
        default=True,
        description="Capture metrics snapshots after a successful sync",
    )


class MappingConfig(BaseModel):
    """
    Organizational mappings used by metrics and snapshots.
    """

    engineer_team_mapping: dict[str, str] = Field(
        default_factory=dict,
        description="Engineer name -> team key; when set, only mapped engineers are tracked",
    )
    team_domain_mapping: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Domain name -> team keys, used for domain-level snapshots",
    )

    @field_validator("team_domain_mapping")
    @classmethod
    def _upper_domain_keys(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        return {domain: _normalize_keys(keys) for domain, keys in v.items()}


class FlowPulseConfig(BaseModel):
    """
    Root configuration for flowpulse.

    Precedence: defaults < user config < project config < env vars.
    """

    model_config = ConfigDict(extra="ignore")

    linear: LinearConfig = Field(default_factory=LinearConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    scope: ScopeConfig = Field(default_factory=ScopeConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    mapping: MappingConfig = Field(default_factory=MappingConfig)
