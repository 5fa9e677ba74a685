"""
Sync orchestrator.

Drives one sync from the Linear API into the local store and then
recomputes every derived metric.

Sync Flow:
1. Refuse to start while another sync holds the store
2. Validate the store schema (a mismatch is an error, never auto-repaired)
3. Test the API connection
4. Remove records that fell out of the configured team scope
5. Run the phases in order, skipping those a saved checkpoint marks done:
   initial_issues → recently_updated_issues → active_projects →
   planned_projects → completed_projects → initiative_projects →
   initiatives → computing_metrics → complete
6. On success clear the checkpoint, stamp the sync time, capture snapshots

Resumption:
- Full runs save a checkpoint after every phase boundary and after every
  project or initiative, so a run that dies is resumed at the first
  incomplete unit by the next full run
- Quick and phase-restricted runs neither read nor write the checkpoint

Partial Failure Handling:
- Transient API errors are retried inside the client; exhaustion or a fatal
  error ends the run with status ``error`` and the checkpoint intact
- Every batch write is its own transaction, so a failure never leaves a
  half-written batch behind

Usage:
    from flowpulse.core.sync import SyncOrchestrator, SyncOptions

    orchestrator = SyncOrchestrator(store, client, config)
    result = orchestrator.run(SyncOptions())
    print(f"Synced {result.issue_count} issues in {result.duration_seconds:.1f}s")
"""

import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from flowpulse.core.config.models import FlowPulseConfig
from flowpulse.core.exceptions import (
    APIError,
    AuthenticationError,
    FatalAPIError,
    FlowPulseError,
    RateLimitError,
    RetriesExhaustedError,
    SchemaMismatchError,
    SyncInProgressError,
    SyncStopped,
)
from flowpulse.core.linear.client import LinearClient
from flowpulse.core.linear.models import InitiativeData, ProjectDetails
from flowpulse.core.metrics.calculations import add_months
from flowpulse.core.metrics.engineers import allowed_engineer_names, compute_engineers
from flowpulse.core.metrics.projects import compute_empty_project, compute_project
from flowpulse.core.snapshots.writer import SnapshotWriter
from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import (
    InitiativeRecord,
    IssueRecord,
    ProjectRecord,
    StateType,
    SyncPhase,
    SyncStatus,
)
from flowpulse.core.store.queries import (
    count_rows,
    get_all_issues,
    get_all_projects,
    get_issues_by_project,
    get_project,
    get_project_ids,
    get_started_issues,
    get_sync_metadata,
)
from flowpulse.core.store.writer import RecordWriter
from flowpulse.core.sync.events import EventKind, EventStream, SyncEvent
from flowpulse.core.sync.models import SyncOptions, SyncResult
from flowpulse.core.sync.progress import (
    SYNC_PHASES,
    EntityBatchProgress,
    PartialSyncState,
    ProgressTracker,
    RecentlyUpdatedProgress,
    is_phase_done,
    state_for_phase,
    state_phase,
)
from flowpulse.core.sync.project_data import ProjectDataCache
from flowpulse.core.sync.scope import TeamScope

logger = logging.getLogger(__name__)

# Phases that fetch data, in execution order
DATA_PHASES: tuple[SyncPhase, ...] = SYNC_PHASES[: SYNC_PHASES.index(SyncPhase.COMPUTING_METRICS)]
QUICK_PHASES: tuple[SyncPhase, ...] = (
    SyncPhase.INITIAL_ISSUES,
    SyncPhase.RECENTLY_UPDATED_ISSUES,
)

# Share of the progress bar owned by each phase
PHASE_PROGRESS: dict[SyncPhase, tuple[int, int]] = {
    SyncPhase.INITIAL_ISSUES: (0, 10),
    SyncPhase.RECENTLY_UPDATED_ISSUES: (10, 20),
    SyncPhase.ACTIVE_PROJECTS: (20, 45),
    SyncPhase.PLANNED_PROJECTS: (45, 60),
    SyncPhase.COMPLETED_PROJECTS: (60, 75),
    SyncPhase.INITIATIVE_PROJECTS: (75, 85),
    SyncPhase.INITIATIVES: (85, 92),
    SyncPhase.COMPUTING_METRICS: (92, 100),
}

PLANNED_PROJECT_STATES = ("planned",)
CLOSED_PROJECT_STATES = ("completed", "canceled")

RESET_TIP = "Run 'flowpulse reset' to rebuild the store, then sync again."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _details_from_record(project: ProjectRecord) -> ProjectDetails:
    """Stored remote attributes of a project, for recomputing it without issues."""
    return ProjectDetails(
        id=project.id,
        name=project.name,
        state=project.state,
        status=project.status,
        health=project.health,
        lead_id=project.lead_id,
        lead_name=project.lead_name,
        lead_avatar_url=project.lead_avatar_url,
        description=project.description,
        content=project.content,
        target_date=project.target_date,
        start_date=project.start_date,
        completed_at=project.completed_at,
        updated_at=project.updated_at,
        labels=project.labels,
        team_keys=project.teams,
        updates=project.updates,
    )


def _is_rate_limit(error: BaseException) -> bool:
    if isinstance(error, RateLimitError):
        return True
    return isinstance(error, RetriesExhaustedError) and bool(error.context.get("rate_limited"))


class _RunStats:
    """Counters accumulated over one run."""

    def __init__(self) -> None:
        self.new_count = 0
        self.updated_count = 0
        self.phases_run: list[SyncPhase] = []


class SyncOrchestrator:
    """
    Runs syncs against one store with one API client.

    Only one sync runs at a time: a second ``run`` while the store reports
    ``syncing`` raises SyncInProgressError.

    Example:
        >>> orchestrator = SyncOrchestrator(store, client, config)
        >>> result = orchestrator.run(SyncOptions(full_project_sync=False))
        >>> result.success
        True
    """

    def __init__(
        self,
        store: Store,
        client: LinearClient,
        config: FlowPulseConfig | None = None,
        *,
        events: EventStream | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Open store
            client: Linear API client
            config: Loaded configuration; defaults apply when omitted
            events: Stream to publish progress on; a private one is created
                when omitted
            clock: Source of the reference time for every metric
        """
        self.store = store
        self.client = client
        self.config = config or FlowPulseConfig()
        self.events = events or EventStream()
        self.clock = clock or _utcnow
        self.scope = TeamScope.from_config(self.config.scope)
        self.tracker = ProgressTracker(store)
        self.writer = RecordWriter(store)
        self.project_cache = ProjectDataCache()
        self.allowed_engineers = allowed_engineer_names(self.config.mapping.engineer_team_mapping)

        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._resumable = False
        self._phase: SyncPhase | None = None
        self._initiatives: dict[str, InitiativeData] | None = None
        self._started_ids: set[str] = set()
        self.client.on_retry = self._on_retry

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Ask a running sync to stop at its next checkpoint."""
        logger.info("Stop requested; the sync will halt after the current unit")
        self._stop.set()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _check_stop(self) -> None:
        if self._stop.is_set():
            raise SyncStopped("Sync stopped by request", phase=self._phase)

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError("A sync is already running in this process")
        try:
            meta = get_sync_metadata(self.store)
            if meta.status == SyncStatus.SYNCING:
                phase = meta.current_phase.value if meta.current_phase else "unknown"
                raise SyncInProgressError(
                    f"A sync is already in progress (phase: {phase})", phase=phase
                )
            yield
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Events and status
    # ------------------------------------------------------------------

    def _publish(self, kind: EventKind, **fields: object) -> None:
        self.events.publish(SyncEvent(kind=kind, phase=self._phase, **fields))  # type: ignore[arg-type]

    def _on_retry(self, attempt: int, delay: float, error: APIError) -> None:
        self._publish(
            EventKind.RETRY,
            message=f"Retry {attempt} in {delay:.1f}s: {error}",
            counts={"attempt": attempt},
        )

    def _set_progress(self, phase: SyncPhase, fraction: float = 0.0) -> int:
        low, high = PHASE_PROGRESS[phase]
        percent = int(low + (high - low) * min(max(fraction, 0.0), 1.0))
        self.writer.update_sync_metadata(
            progress_percent=percent, query_counts=dict(self.client.query_counts)
        )
        return percent

    def _checkpoint(self, state: PartialSyncState) -> None:
        if self._resumable:
            self.tracker.save(state)
        else:
            self.writer.update_sync_metadata(current_phase=state.phase)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def planned_phases(self, options: SyncOptions) -> list[SyncPhase]:
        """Data phases this run executes, followed by metrics."""
        if options.phases:
            phases = [p for p in DATA_PHASES if p in options.phases]
        elif options.full_project_sync:
            phases = list(DATA_PHASES)
        else:
            phases = list(QUICK_PHASES)
        return phases + [SyncPhase.COMPUTING_METRICS]

    def run(self, options: SyncOptions | None = None) -> SyncResult:
        """
        Run a sync.

        Args:
            options: Which phases to run; a full sync when omitted

        Returns:
            SyncResult describing the run. Failures are reported in the
            result, not raised.

        Raises:
            SyncInProgressError: If another sync is running
        """
        options = options or SyncOptions()
        with self._exclusive():
            return self._run(options)

    def sync_project(self, project_id: str) -> SyncResult:
        """
        Refresh a single project and recompute engineers.

        Does not touch the saved checkpoint or the last sync time.

        Raises:
            SyncInProgressError: If another sync is running
        """
        with self._exclusive():
            started = time.monotonic()
            stats = _RunStats()
            self._phase = SyncPhase.ACTIVE_PROJECTS
            self.client.reset_query_counts()
            self.client.set_phase(self._phase.value)
            self.writer.update_sync_metadata(status=SyncStatus.SYNCING, error_message=None)
            try:
                now = self.clock()
                self._sync_project_unit(project_id, now, stats)
                self._compute_engineers(self.clock())
            except FlowPulseError as e:
                message = f"Project sync failed: {e}"
                logger.error(message)
                self.writer.update_sync_metadata(status=SyncStatus.ERROR, error_message=message)
                return self._result(False, stats, started, error=message)
            finally:
                self._phase = None
                self.project_cache.clear()
            self.writer.update_sync_metadata(status=SyncStatus.IDLE)
            return self._result(True, stats, started)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _result(
        self,
        success: bool,
        stats: _RunStats,
        started: float,
        *,
        error: str | None = None,
        stopped: bool = False,
    ) -> SyncResult:
        return SyncResult(
            success=success,
            new_count=stats.new_count,
            updated_count=stats.updated_count,
            issue_count=count_rows(self.store, "issues"),
            project_count=count_rows(self.store, "projects"),
            engineer_count=count_rows(self.store, "engineers"),
            initiative_count=count_rows(self.store, "initiatives"),
            query_count=self.client.query_count,
            query_counts=dict(self.client.query_counts),
            error=error,
            stopped=stopped,
            duration_seconds=time.monotonic() - started,
            phases_run=list(stats.phases_run),
        )

    def _fail(self, message: str, stats: _RunStats, started: float) -> SyncResult:
        self.writer.update_sync_metadata(
            status=SyncStatus.ERROR,
            error_message=message,
            progress_percent=None,
            query_counts=dict(self.client.query_counts),
        )
        self._publish(EventKind.SYNC_FAILED, message=message)
        return self._result(False, stats, started, error=message)

    def _run(self, options: SyncOptions) -> SyncResult:
        started = time.monotonic()
        stats = _RunStats()
        self._stop.clear()
        self._phase = None
        self._initiatives = None
        self._started_ids = set()
        self.project_cache.clear()
        self.client.reset_query_counts()

        phases = self.planned_phases(options)
        self._resumable = phases == list(DATA_PHASES) + [SyncPhase.COMPUTING_METRICS]
        logger.info(f"Starting sync: {', '.join(p.value for p in phases)}")
        self._publish(EventKind.SYNC_STARTED, message=f"{len(phases)} phase(s)")

        check = self.store.revalidate()
        if not check.ok:
            error = SchemaMismatchError(
                f"Database schema mismatch: {check.describe()}",
                missing=check.missing,
                unexpected=check.unexpected,
            )
            message = f"{error}. {RESET_TIP}"
            logger.error(message)
            try:
                self.writer.update_sync_metadata(
                    status=SyncStatus.ERROR, error_message=message, progress_percent=None
                )
            except sqlite3.Error as e:
                logger.error(f"Could not record the schema error in sync metadata: {e}")
            self._publish(EventKind.SYNC_FAILED, message=message)
            return SyncResult(
                success=False, error=message, duration_seconds=time.monotonic() - started
            )

        self.writer.update_sync_metadata(
            status=SyncStatus.SYNCING,
            error_message=None,
            progress_percent=0,
            updated_at=self.clock(),
        )

        try:
            self.client.set_phase("connection")
            if not self.client.test_connection():
                raise FatalAPIError(
                    "Could not connect to the Linear API. Check LINEAR_API_KEY and network access."
                )
            self.scope.apply_cleanup(self.store)

            state = self.tracker.load() if self._resumable else None
            if state is not None:
                logger.info(f"Resuming sync at phase {state.phase}")

            for phase in phases:
                if is_phase_done(state, phase):
                    logger.debug(f"Skipping {phase.value}: already complete")
                    continue
                resume = state if state is not None and state_phase(state) == phase else None
                self._run_phase(phase, resume, stats)
                stats.phases_run.append(phase)
                next_index = phases.index(phase) + 1
                if next_index < len(phases):
                    state = state_for_phase(phases[next_index])
                    if isinstance(state, RecentlyUpdatedProgress):
                        state = state.model_copy(update={"started_ids": sorted(self._started_ids)})
                    self._checkpoint(state)
                else:
                    state = None
        except SyncStopped:
            logger.info(f"Sync stopped during {self._phase.value if self._phase else 'setup'}")
            self.writer.update_sync_metadata(
                status=SyncStatus.IDLE,
                error_message="Sync stopped; progress saved",
                progress_percent=None,
                query_counts=dict(self.client.query_counts),
            )
            self._publish(EventKind.SYNC_STOPPED, message="Sync stopped")
            return self._result(False, stats, started, error="Sync stopped", stopped=True)
        except KeyboardInterrupt:
            logger.warning("Sync interrupted; progress saved")
            self.writer.update_sync_metadata(
                status=SyncStatus.IDLE,
                error_message="Sync interrupted; progress saved",
                progress_percent=None,
            )
            self._publish(EventKind.SYNC_STOPPED, message="Sync interrupted")
            raise
        except FlowPulseError as e:
            return self._fail(self._describe_error(e), stats, started)
        except Exception as e:
            logger.exception(f"Unexpected error during {self._phase.value if self._phase else 'setup'}")
            return self._fail(f"Unexpected sync error: {e}", stats, started)
        finally:
            self.client.set_phase("unscoped")

        if self._resumable:
            self.tracker.clear()
        self._phase = SyncPhase.COMPLETE
        self.writer.update_sync_metadata(
            status=SyncStatus.IDLE,
            current_phase=SyncPhase.COMPLETE,
            last_sync_time=self.clock(),
            error_message=None,
            progress_percent=100,
            query_counts=dict(self.client.query_counts),
        )
        result = self._result(True, stats, started)
        logger.info(
            f"Sync complete: {result.new_count} new, {result.updated_count} updated issues, "
            f"{result.query_count} queries in {result.duration_seconds:.1f}s"
        )
        self._publish(
            EventKind.SYNC_COMPLETED,
            percent=100,
            counts={"new": result.new_count, "updated": result.updated_count},
        )
        return result

    def _describe_error(self, error: FlowPulseError) -> str:
        phase = self._phase.value if self._phase else "setup"
        if _is_rate_limit(error):
            message = (
                f"Linear API rate limit exceeded during {phase}. "
                "Progress was saved; wait a few minutes and sync again to resume."
            )
        elif isinstance(error, AuthenticationError):
            message = f"Linear API rejected the credentials: {error}. Check LINEAR_API_KEY."
        else:
            message = f"Sync failed during {phase}: {error}"
        logger.error(message)
        return message

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_phase(
        self, phase: SyncPhase, state: PartialSyncState | None, stats: _RunStats
    ) -> None:
        self._phase = phase
        self.client.set_phase(phase.value)
        self._checkpoint(state or state_for_phase(phase))
        percent = self._set_progress(phase)
        logger.info(f"Phase {phase.value} started")
        self._publish(EventKind.PHASE_STARTED, percent=percent)
        self._check_stop()

        now = self.clock()
        if phase == SyncPhase.INITIAL_ISSUES:
            self._initial_issues(stats)
        elif phase == SyncPhase.RECENTLY_UPDATED_ISSUES:
            self._recently_updated_issues(now, stats, state)
        elif phase == SyncPhase.INITIATIVES:
            self._run_entity_phase(phase, state, self._discover_initiatives, self._sync_initiative)
        elif phase == SyncPhase.COMPUTING_METRICS:
            self._computing_metrics()
        else:
            discover = {
                SyncPhase.ACTIVE_PROJECTS: lambda: self._discover_active_projects(now),
                SyncPhase.PLANNED_PROJECTS: self._discover_planned_projects,
                SyncPhase.COMPLETED_PROJECTS: lambda: self._discover_completed_projects(now),
                SyncPhase.INITIATIVE_PROJECTS: self._discover_initiative_projects,
            }[phase]
            self._run_entity_phase(
                phase, state, discover, lambda pid: self._sync_project_unit(pid, now, stats)
            )

        percent = self._set_progress(phase, 1.0)
        logger.info(f"Phase {phase.value} complete ({self.client.query_counts.get(phase.value, 0)} queries)")
        self._publish(EventKind.PHASE_COMPLETED, percent=percent)

    def _run_entity_phase(
        self,
        phase: SyncPhase,
        state: PartialSyncState | None,
        discover: Callable[[], list[str]],
        process: Callable[[str], None],
    ) -> None:
        batch = state if isinstance(state, EntityBatchProgress) else None
        if batch is None or not batch.discovered:
            entity_ids = list(dict.fromkeys(discover()))
            limit = self._limit()
            if limit is not None and len(entity_ids) > limit:
                logger.info(
                    f"Limiting {phase.value} to {limit} of {len(entity_ids)}. "
                    "Set LIMIT_SYNC=false to sync everything."
                )
                entity_ids = entity_ids[:limit]
            batch = (batch or EntityBatchProgress(phase=phase.value)).with_entities(entity_ids)
            self._checkpoint(batch)
            logger.info(f"{phase.value}: {len(entity_ids)} to sync")
        else:
            logger.info(
                f"{phase.value}: resuming with {len(batch.pending())} of "
                f"{len(batch.entities or [])} remaining"
            )

        total = len(batch.entities or [])
        for entity_id in batch.pending():
            self._check_stop()
            process(entity_id)
            batch = batch.mark_complete(entity_id)
            self._checkpoint(batch)
            done = len(batch.completed_ids())
            percent = self._set_progress(phase, done / total if total else 1.0)
            self._publish(
                EventKind.PROGRESS,
                percent=percent,
                counts={"done": done, "total": total},
                message=entity_id,
            )

    def _limit(self) -> int | None:
        return self.config.sync.limit_count if self.config.sync.limit_sync else None

    def _recent_since(self, now: datetime) -> datetime:
        sync = self.config.sync
        days = sync.limited_recent_activity_days if sync.limit_sync else sync.recent_activity_days
        return now - timedelta(days=days)

    def _write_issues(self, batch: Iterable[IssueRecord], stats: _RunStats) -> int:
        issues = self.scope.filter_issues(batch)
        if not issues:
            return 0
        written = self.writer.upsert_issues(issues)
        stats.new_count += written.inserted
        stats.updated_count += written.updated
        return len(issues)

    def _initial_issues(self, stats: _RunStats) -> None:
        total = 0
        for batch in self.client.fetch_started_issues():
            self._check_stop()
            self._started_ids.update(issue.id for issue in batch)
            total += self._write_issues(batch, stats)
            self._publish(EventKind.PROGRESS, counts={"issues": total})
        logger.info(f"Synced {total} started issue(s)")

    def _recently_updated_issues(
        self, now: datetime, stats: _RunStats, state: PartialSyncState | None
    ) -> None:
        since = self._recent_since(now)
        # Only issues re-fetched as started in this run are duplicates; a stored
        # started issue that has since moved on must be overwritten
        started_ids = set(self._started_ids)
        if isinstance(state, RecentlyUpdatedProgress):
            started_ids.update(state.started_ids)
        total = 0
        skipped = 0
        for batch in self.client.fetch_recently_updated_issues(since):
            self._check_stop()
            fresh = [issue for issue in batch if issue.id not in started_ids]
            skipped += len(batch) - len(fresh)
            total += self._write_issues(fresh, stats)
            self._publish(EventKind.PROGRESS, counts={"issues": total})
        logger.info(
            f"Synced {total} recently updated issue(s) since {since.isoformat()} "
            f"({skipped} already fetched as started)"
        )

    def _discover_active_projects(self, now: datetime) -> list[str]:
        since = self._recent_since(now)
        return [
            issue.project_id
            for issue in get_all_issues(self.store)
            if issue.project_id
            and (issue.state_type == StateType.STARTED or issue.updated_at >= since)
        ]

    def _discover_planned_projects(self) -> list[str]:
        return self.client.fetch_project_ids(PLANNED_PROJECT_STATES)

    def _discover_completed_projects(self, now: datetime) -> list[str]:
        closed_since = add_months(now, -self.config.sync.completed_project_months)
        return self.client.fetch_project_ids(CLOSED_PROJECT_STATES, closed_since=closed_since)

    def _load_initiatives(self) -> dict[str, InitiativeData]:
        if self._initiatives is None:
            self._initiatives = {i.id: i for i in self.client.fetch_initiatives()}
        return self._initiatives

    def _discover_initiative_projects(self) -> list[str]:
        known = get_project_ids(self.store)
        return [
            project_id
            for initiative in self._load_initiatives().values()
            for project_id in initiative.project_ids
            if project_id not in known
        ]

    def _discover_initiatives(self) -> list[str]:
        return list(self._load_initiatives())

    def _compute_project_record(
        self, project_id: str, details: ProjectDetails | None, now: datetime, *, synced: bool
    ) -> ProjectRecord | None:
        issues = get_issues_by_project(self.store, project_id)
        existing = get_project(self.store, project_id)
        if issues:
            return compute_project(
                project_id,
                issues,
                now,
                details=details,
                existing=existing,
                allowed_engineers=self.allowed_engineers,
                whitelist=self.scope.team_whitelist(),
                synced=synced,
            )
        if details is not None:
            return compute_empty_project(
                details, now, whitelist=self.scope.team_whitelist(), synced=synced
            )
        return None

    def _sync_project_unit(self, project_id: str, now: datetime, stats: _RunStats) -> None:
        """Fetch one project's issues and details, then store its metrics."""
        count = 0
        for batch in self.client.fetch_project_issues(project_id):
            count += self._write_issues(batch, stats)
        details = self.project_cache.get_or_fetch(self.client, project_id)
        record = self._compute_project_record(project_id, details, now, synced=True)
        if record is None:
            logger.debug(f"Project {project_id} has nothing in scope; not stored")
            return
        self.writer.upsert_projects([record])
        logger.debug(f"Synced project '{record.name}' with {count} issue(s)")

    def _sync_initiative(self, initiative_id: str) -> None:
        data = self._load_initiatives().get(initiative_id)
        if data is None:
            logger.warning(f"Initiative {initiative_id} no longer listed by Linear; skipping")
            return
        try:
            updates = self.client.fetch_initiative_updates(initiative_id)
        except APIError as e:
            if _is_rate_limit(e):
                raise
            logger.warning(f"Failed to fetch health updates for initiative {data.name}: {e}")
            updates = []
        record = InitiativeRecord(
            **data.model_dump(),
            health_updates=updates,
        )
        self.writer.upsert_initiatives([record])

    def _computing_metrics(self) -> None:
        now = self.clock()
        issues = get_all_issues(self.store)
        by_project: dict[str, list[IssueRecord]] = {}
        for issue in issues:
            if issue.project_id:
                by_project.setdefault(issue.project_id, []).append(issue)

        existing = {project.id: project for project in get_all_projects(self.store)}
        whitelist = self.scope.team_whitelist()
        records: list[ProjectRecord] = []

        for project_id, project_issues in by_project.items():
            self._check_stop()
            details = self.project_cache.get(project_id)
            records.append(
                compute_project(
                    project_id,
                    project_issues,
                    now,
                    details=details,
                    existing=existing.get(project_id),
                    allowed_engineers=self.allowed_engineers,
                    whitelist=whitelist,
                    synced=details is not None,
                )
            )

        for project_id, project in existing.items():
            if project_id in by_project:
                continue
            details = self.project_cache.get(project_id)
            record = compute_empty_project(
                details or _details_from_record(project),
                now,
                whitelist=whitelist,
                synced=details is not None,
            )
            if record is None:
                continue
            if details is None:
                record = record.model_copy(update={"last_synced_at": project.last_synced_at})
            records.append(record)

        self.writer.upsert_projects(records)
        engineer_count = self._compute_engineers(now)
        logger.info(f"Computed metrics for {len(records)} project(s) and {engineer_count} engineer(s)")

        if self.config.sync.capture_snapshots:
            captured = SnapshotWriter(self.store, self.config.mapping).capture_all(now)
            logger.info(f"Captured {captured.total} metrics snapshot(s)")

    def _compute_engineers(self, now: datetime) -> int:
        engineers = compute_engineers(
            get_started_issues(self.store),
            now,
            allowed_engineers=self.allowed_engineers,
            ignored_assignees=self.scope.ignored_assignees,
        )
        self.writer.replace_engineers(engineers)
        return len(engineers)


__all__ = ["SyncOrchestrator", "DATA_PHASES", "QUICK_PHASES", "PHASE_PROGRESS"]
