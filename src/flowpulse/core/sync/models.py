"""
Pydantic models for sync requests and results.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from flowpulse.core.store.models import SyncPhase, SyncStatus


class SyncOptions(BaseModel):
    """Options for one sync invocation.

    Example:
        >>> SyncOptions(full_project_sync=False)  # quick sync: issues + metrics
    """

    full_project_sync: bool = Field(
        default=True,
        description="Run project and initiative phases; False runs issues and metrics only",
    )
    phases: list[SyncPhase] | None = Field(
        default=None,
        description="Restrict the run to these data phases (metrics always run)",
    )


class SyncResult(BaseModel):
    """Result of a sync operation.

    Returned by the orchestrator to report what was synced and any error
    encountered.

    Example:
        >>> result = SyncResult(success=True, new_count=12, updated_count=5)
    """

    success: bool = Field(..., description="Whether sync completed successfully")
    new_count: int = Field(default=0, ge=0, description="Issues inserted")
    updated_count: int = Field(default=0, ge=0, description="Issues updated")
    issue_count: int = Field(default=0, ge=0, description="Issues in the store after sync")
    project_count: int = Field(default=0, ge=0, description="Projects in the store after sync")
    engineer_count: int = Field(default=0, ge=0, description="Engineers computed")
    initiative_count: int = Field(default=0, ge=0, description="Initiatives in the store after sync")
    query_count: int = Field(default=0, ge=0, description="API queries made")
    query_counts: dict[str, int] = Field(default_factory=dict, description="API queries per phase")
    error: str | None = Field(default=None, description="Human-readable error message")
    stopped: bool = Field(default=False, description="Whether a stop request ended the run")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Sync duration")
    phases_run: list[SyncPhase] = Field(default_factory=list, description="Phases completed")

    model_config = ConfigDict(
        populate_by_name=True,
    )

    @property
    def total_changes(self) -> int:
        """Total issue rows written (inserts + updates)."""
        return self.new_count + self.updated_count


class SyncStatusReport(BaseModel):
    """Status surface exposed to operators and the HTTP API."""

    status: SyncStatus
    current_phase: SyncPhase | None = None
    last_sync_time: datetime | None = None
    progress_percent: int | None = None
    error_message: str | None = None
    query_counts: dict[str, int] = Field(default_factory=dict)
    resumable: bool = Field(default=False, description="Whether a partial sync is saved")
    schema_ok: bool = True
    schema_problem: str | None = None
