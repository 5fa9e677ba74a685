"""
Tests for the sync orchestrator.

Every test runs real syncs against the fake Linear API from conftest and a
temporary SQLite store.
"""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import NOW

from flowpulse.core.config.models import FlowPulseConfig
from flowpulse.core.exceptions import SyncInProgressError
from flowpulse.core.store.models import SnapshotLevel, SyncPhase, SyncStatus
from flowpulse.core.store.queries import (
    get_all_issues,
    get_all_projects,
    get_engineers,
    get_initiatives,
    get_project,
    get_snapshots,
    get_sync_metadata,
)
from flowpulse.core.store.writer import RecordWriter
from flowpulse.core.sync.events import EventKind, EventRecorder
from flowpulse.core.sync.models import SyncOptions
from flowpulse.core.sync.orchestrator import DATA_PHASES, SyncOrchestrator
from flowpulse.core.sync.progress import (
    EntityBatchProgress,
    ProgressTracker,
    RecentlyUpdatedProgress,
    state_for_phase,
)

# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def make_orchestrator(store, make_client, config):
    """Factory for orchestrators on the shared store with a fixed clock."""

    def factory(cfg: FlowPulseConfig | None = None, **client_kwargs) -> SyncOrchestrator:
        return SyncOrchestrator(store, make_client(**client_kwargs), cfg or config, clock=lambda: NOW)

    return factory


@pytest.fixture
def workspace(fake_linear):
    """
    A small workspace touching every phase.

    - proj-1: started, one started and one recently completed issue
    - proj-plan: planned, no issues
    - proj-done: completed ten days ago, one old completed issue
    - proj-extra: only reachable through init-1
    """
    fake_linear.project("proj-1", name="Checkout")
    fake_linear.project("proj-plan", state="planned")
    fake_linear.project("proj-done", state="completed", completed_at=NOW - timedelta(days=10))
    fake_linear.project("proj-extra")
    fake_linear.issue("a1", created_at=NOW - timedelta(days=10))
    fake_linear.issue("a2", state="completed")
    fake_linear.issue(
        "d1",
        state="completed",
        project="proj-done",
        completed_at=NOW - timedelta(days=20),
        updated_at=NOW - timedelta(days=20),
    )
    fake_linear.issue(
        "x1", state="backlog", project="proj-extra", updated_at=NOW - timedelta(days=30)
    )
    fake_linear.initiative("init-1", ["proj-1", "proj-extra"])
    return fake_linear


@pytest.fixture
def two_active(fake_linear):
    """Two active projects, discovered in the order proj-a, proj-b."""
    fake_linear.project("proj-a")
    fake_linear.project("proj-b")
    fake_linear.issue("a-1", project="proj-a", created_at=NOW - timedelta(days=10))
    fake_linear.issue("b-1", project="proj-b", created_at=NOW - timedelta(days=5))
    return fake_linear


def project_issue_requests(fake_linear) -> list[str]:
    return [v["projectId"] for op, v in fake_linear.requests if op == "ProjectIssues"]


# ==============================================================================
# Full sync
# ==============================================================================


class TestFullSync:
    """Tests for a complete run through every phase."""

    def test_populates_store(self, workspace, make_orchestrator, store) -> None:
        """A full sync stores issues, projects, initiatives and engineers."""
        result = make_orchestrator().run()

        assert result.success
        assert result.error is None
        assert result.phases_run == list(DATA_PHASES) + [SyncPhase.COMPUTING_METRICS]
        assert result.issue_count == 4
        assert result.new_count == 4
        assert result.project_count == 4
        assert result.initiative_count == 1
        assert result.engineer_count == 1
        assert {p.id for p in get_all_projects(store)} == {
            "proj-1",
            "proj-plan",
            "proj-done",
            "proj-extra",
        }

    def test_project_metrics_computed(self, workspace, make_orchestrator, store) -> None:
        """Project rows carry metrics over their stored issues."""
        make_orchestrator().run()

        project = get_project(store, "proj-1")
        assert project is not None
        assert project.name == "Checkout"
        assert project.total_issues == 2
        assert project.completed_issues == 1
        assert project.in_progress_issues == 1
        assert project.last_synced_at == NOW

        planned = get_project(store, "proj-plan")
        assert planned is not None
        assert planned.total_issues == 0
        assert planned.teams == ["ENG"]

    def test_initiatives_stored_with_updates(self, workspace, make_orchestrator, store) -> None:
        """Initiatives keep their project ids and health updates."""
        make_orchestrator().run()

        (initiative,) = get_initiatives(store)
        assert initiative.project_ids == ["proj-1", "proj-extra"]
        assert [u.body for u in initiative.health_updates] == ["Slipping"]

    def test_metadata_after_success(self, workspace, make_orchestrator, store) -> None:
        """Success leaves the store idle at 100% with no checkpoint."""
        result = make_orchestrator().run()

        meta = get_sync_metadata(store)
        assert meta.status == SyncStatus.IDLE
        assert meta.current_phase == SyncPhase.COMPLETE
        assert meta.last_sync_time == NOW
        assert meta.progress_percent == 100
        assert meta.error_message is None
        assert meta.partial_state is None
        assert sum(meta.query_counts.values()) == result.query_count

    def test_snapshots_captured(self, workspace, make_orchestrator, store) -> None:
        """Org and team snapshots are captured after metrics."""
        make_orchestrator().run()

        assert len(get_snapshots(store, SnapshotLevel.ORG, None)) == 1
        assert len(get_snapshots(store, SnapshotLevel.TEAM, "ENG")) == 1

    def test_snapshots_can_be_disabled(self, workspace, make_orchestrator, store, tmp_path) -> None:
        """capture_snapshots=False skips snapshots."""
        cfg = FlowPulseConfig(sync={"db_path": tmp_path / "x.db", "capture_snapshots": False})

        make_orchestrator(cfg).run()

        assert get_snapshots(store, SnapshotLevel.ORG, None) == []

    def test_second_sync_converges(self, workspace, make_orchestrator, store) -> None:
        """Syncing unchanged data twice yields identical derived rows."""
        make_orchestrator().run()
        projects = [p.model_dump() for p in get_all_projects(store)]
        engineers = [e.model_dump() for e in get_engineers(store)]

        second = make_orchestrator().run()

        assert second.success
        assert second.new_count == 0
        assert [p.model_dump() for p in get_all_projects(store)] == projects
        assert [e.model_dump() for e in get_engineers(store)] == engineers

    def test_engineers_replaced_wholesale(self, workspace, make_orchestrator, store) -> None:
        """An engineer with no started issue left disappears."""
        make_orchestrator().run()
        assert [e.assignee_name for e in get_engineers(store)] == ["Alice"]

        node = workspace.issues[0]
        node["state"] = {"id": "state-completed", "name": "Done", "type": "completed"}
        node["completedAt"] = (NOW - timedelta(minutes=5)).isoformat()
        make_orchestrator().run()

        assert get_engineers(store) == []

    def test_date_only_project_dates(self, fake_linear, make_orchestrator, store) -> None:
        """Date-only targetDate and startDate values are read as UTC midnight."""
        node = fake_linear.project("proj-1")
        node["targetDate"] = "2026-06-30"
        node["startDate"] = "2026-01-15"
        fake_linear.issue("a1")

        result = make_orchestrator().run()

        assert result.success, result.error
        project = get_project(store, "proj-1")
        assert project is not None
        assert project.target_date == datetime(2026, 6, 30, tzinfo=timezone.utc)
        assert project.start_date == datetime(2026, 1, 15, tzinfo=timezone.utc)

    def test_issue_leaving_started_is_overwritten(
        self, fake_linear, make_orchestrator, store
    ) -> None:
        """An issue stored as started picks up its new state on the next quick sync."""
        node = fake_linear.issue("i1", project=None)
        make_orchestrator().run(SyncOptions(full_project_sync=False))

        node["state"] = {"id": "state-completed", "name": "Done", "type": "completed"}
        node["completedAt"] = (NOW - timedelta(minutes=5)).isoformat()
        node["updatedAt"] = (NOW - timedelta(minutes=5)).isoformat()
        result = make_orchestrator().run(SyncOptions(full_project_sync=False))

        assert result.success
        assert {i.id: i.state_type.value for i in get_all_issues(store)} == {"i1": "completed"}
        assert get_engineers(store) == []

    def test_events_published(self, workspace, make_orchestrator) -> None:
        """Start, per-phase and completion events reach subscribers."""
        orchestrator = make_orchestrator()
        recorder = EventRecorder()
        orchestrator.events.subscribe(recorder)

        orchestrator.run()

        assert recorder.events[0].kind == EventKind.SYNC_STARTED
        assert recorder.events[-1].kind == EventKind.SYNC_COMPLETED
        started = [e.phase for e in recorder.of_kind(EventKind.PHASE_STARTED)]
        assert started == list(DATA_PHASES) + [SyncPhase.COMPUTING_METRICS]
        percents = [e.percent for e in recorder.events if e.percent is not None]
        assert percents == sorted(percents)


# ==============================================================================
# Restricted runs
# ==============================================================================


class TestRestrictedRuns:
    """Tests for quick, phase-restricted and limited syncs."""

    def test_quick_sync_skips_project_phases(self, workspace, make_orchestrator) -> None:
        """A quick sync fetches issues and recomputes metrics only."""
        result = make_orchestrator().run(SyncOptions(full_project_sync=False))

        assert result.success
        assert result.phases_run == [
            SyncPhase.INITIAL_ISSUES,
            SyncPhase.RECENTLY_UPDATED_ISSUES,
            SyncPhase.COMPUTING_METRICS,
        ]
        assert "ProjectsByState" not in workspace.operations()
        assert "Initiatives" not in workspace.operations()

    def test_quick_sync_leaves_checkpoint_alone(self, workspace, make_orchestrator, store) -> None:
        """A saved full-sync checkpoint survives a quick sync."""
        tracker = ProgressTracker(store)
        tracker.save(state_for_phase(SyncPhase.PLANNED_PROJECTS))

        make_orchestrator().run(SyncOptions(full_project_sync=False))

        saved = tracker.load()
        assert saved is not None
        assert saved.phase == SyncPhase.PLANNED_PROJECTS.value

    def test_explicit_phases(self, workspace, make_orchestrator) -> None:
        """Only the requested data phases run, followed by metrics."""
        result = make_orchestrator().run(SyncOptions(phases=[SyncPhase.INITIATIVES]))

        assert result.phases_run == [SyncPhase.INITIATIVES, SyncPhase.COMPUTING_METRICS]
        assert "StartedIssues" not in workspace.operations()

    def test_limit_sync_caps_projects(self, two_active, make_orchestrator, tmp_path) -> None:
        """Development mode caps the entities synced per phase."""
        cfg = FlowPulseConfig(
            sync={"db_path": tmp_path / "x.db", "limit_sync": True, "limit_count": 1}
        )

        result = make_orchestrator(cfg).run()

        assert result.success
        assert project_issue_requests(two_active) == ["proj-a"]

    def test_sync_project(self, workspace, make_orchestrator, store) -> None:
        """A single project is refreshed without touching the sync time."""
        result = make_orchestrator().sync_project("proj-1")

        assert result.success
        assert get_project(store, "proj-1") is not None
        assert get_sync_metadata(store).last_sync_time is None
        assert [e.assignee_name for e in get_engineers(store)] == ["Alice"]


# ==============================================================================
# Resumption
# ==============================================================================


class TestResumption:
    """Tests for checkpoints and resuming interrupted syncs."""

    def test_failure_keeps_checkpoint(self, two_active, make_orchestrator, store) -> None:
        """A failing project leaves the projects before it marked complete."""
        two_active.fail_on("ProjectIssues", projectId="proj-b")

        result = make_orchestrator().run()

        assert not result.success
        assert "active_projects" in (result.error or "")
        meta = get_sync_metadata(store)
        assert meta.status == SyncStatus.ERROR
        saved = ProgressTracker(store).load()
        assert isinstance(saved, EntityBatchProgress)
        assert saved.completed_ids() == ["proj-a"]
        assert saved.pending() == ["proj-b"]

    def test_resumes_at_next_project(self, two_active, make_orchestrator, store) -> None:
        """The next full sync skips finished phases and finished projects."""
        two_active.fail_on("ProjectIssues", projectId="proj-b")
        make_orchestrator().run()
        two_active.clear_failures()
        two_active.requests.clear()

        result = make_orchestrator().run()

        assert result.success
        assert project_issue_requests(two_active) == ["proj-b"]
        assert "StartedIssues" not in two_active.operations()
        assert ProgressTracker(store).load() is None
        assert {p.id for p in get_all_projects(store)} == {"proj-a", "proj-b"}

    def test_checkpoint_carries_started_ids(self, two_active, make_orchestrator, store) -> None:
        """Started ids fetched before a failure are kept for the resumed phase."""
        two_active.fail_on("RecentlyUpdatedIssues")

        result = make_orchestrator().run()

        assert not result.success
        saved = ProgressTracker(store).load()
        assert isinstance(saved, RecentlyUpdatedProgress)
        assert saved.started_ids == ["a-1", "b-1"]

    def test_page_failure_then_resume_stores_every_issue(
        self, fake_linear, make_orchestrator, store
    ) -> None:
        """A listing that dies on its second page is completed on resume."""
        for n in range(250):
            fake_linear.issue(f"i-{n:03d}", project=None)
        fake_linear.fail_on("StartedIssues", status_code=500, after="100")

        first = make_orchestrator(page_size=100, max_retries=1).run()

        assert not first.success
        assert len(get_all_issues(store)) == 100

        fake_linear.clear_failures()
        second = make_orchestrator(page_size=100).run()

        assert second.success
        assert len(get_all_issues(store)) == 250
        assert second.issue_count == 250

    def test_stop_request(self, two_active, make_orchestrator, store) -> None:
        """A stop request halts after the current project and keeps progress."""
        orchestrator = make_orchestrator()

        def stop_after_first(event) -> None:
            if event.kind == EventKind.PROGRESS and event.counts.get("done") == 1:
                orchestrator.request_stop()

        orchestrator.events.subscribe(stop_after_first)
        result = orchestrator.run()

        assert result.stopped
        assert not result.success
        meta = get_sync_metadata(store)
        assert meta.status == SyncStatus.IDLE
        assert meta.error_message == "Sync stopped; progress saved"
        saved = ProgressTracker(store).load()
        assert isinstance(saved, EntityBatchProgress)
        assert saved.completed_ids() == ["proj-a"]

    def test_stopped_sync_resumes(self, two_active, make_orchestrator) -> None:
        """The run after a stop picks up the remaining project."""
        orchestrator = make_orchestrator()
        unsubscribe = orchestrator.events.subscribe(
            lambda e: orchestrator.request_stop() if e.counts.get("done") == 1 else None
        )
        orchestrator.run()
        unsubscribe()
        two_active.requests.clear()

        result = orchestrator.run()

        assert result.success
        assert project_issue_requests(two_active) == ["proj-b"]


# ==============================================================================
# Refusals and failures
# ==============================================================================


class TestFailures:
    """Tests for runs that cannot start or cannot finish."""

    def test_refuses_while_syncing(self, make_orchestrator, store) -> None:
        """A store marked syncing rejects a second sync."""
        RecordWriter(store).update_sync_metadata(
            status=SyncStatus.SYNCING, current_phase=SyncPhase.ACTIVE_PROJECTS
        )

        with pytest.raises(SyncInProgressError, match="active_projects"):
            make_orchestrator().run()

    def test_schema_mismatch(self, fake_linear, make_orchestrator, store) -> None:
        """A drifted schema ends the run before any API call."""
        store.conn.execute("ALTER TABLE issues ADD COLUMN legacy TEXT")

        result = make_orchestrator().run()

        assert not result.success
        assert "flowpulse reset" in (result.error or "")
        assert fake_linear.requests == []
        assert get_sync_metadata(store).status == SyncStatus.ERROR

    def test_connection_failure(self, fake_linear, make_orchestrator, store) -> None:
        """An API that does not answer the viewer query fails the run."""
        fake_linear.connected = False

        result = make_orchestrator().run()

        assert not result.success
        assert "Could not connect" in (result.error or "")
        assert get_sync_metadata(store).status == SyncStatus.ERROR

    def test_rejected_key(self, fake_linear, make_orchestrator, store) -> None:
        """A rejected API key reports the credentials problem."""
        fake_linear.fail_next(401)

        result = make_orchestrator().run()

        assert not result.success
        assert "rejected the credentials" in (result.error or "")
        assert "LINEAR_API_KEY" in (result.error or "")
        assert get_sync_metadata(store).status == SyncStatus.ERROR

    def test_rate_limit_message(self, workspace, make_orchestrator) -> None:
        """Exhausted rate-limit retries produce a resume hint."""
        workspace.fail_on("StartedIssues", status_code=429)

        result = make_orchestrator(max_retries=1).run()

        assert not result.success
        assert "rate limit" in (result.error or "")
        assert "initial_issues" in (result.error or "")

    def test_initiative_updates_failure_is_not_fatal(
        self, workspace, make_orchestrator, store
    ) -> None:
        """Initiatives are stored without updates when those cannot be fetched."""
        workspace.fail_on("InitiativeUpdates")

        result = make_orchestrator().run()

        assert result.success
        (initiative,) = get_initiatives(store)
        assert initiative.health_updates == []


# ==============================================================================
# Scope
# ==============================================================================


class TestScope:
    """Tests for scope changes between syncs."""

    def test_narrowed_whitelist_removes_other_teams(
        self, fake_linear, make_orchestrator, store, tmp_path
    ) -> None:
        """Whitelisting ENG deletes a project owned by OPS and its issues."""
        fake_linear.project("proj-1")
        fake_linear.project("ops-proj", teams=["OPS"])
        fake_linear.issue("eng-1")
        fake_linear.issue("ops-1", team="OPS", project="ops-proj")
        make_orchestrator().run()
        assert get_project(store, "ops-proj") is not None

        cfg = FlowPulseConfig(
            sync={"db_path": tmp_path / "x.db"}, scope={"whitelist_team_keys": ["eng"]}
        )
        result = make_orchestrator(cfg).run()

        assert result.success
        assert get_project(store, "ops-proj") is None
        assert {i.team_key for i in get_all_issues(store)} == {"ENG"}

    def test_ignored_assignee_not_stored(self, fake_linear, make_orchestrator, store, tmp_path) -> None:
        """Issues of ignored assignees never reach the store."""
        fake_linear.project("proj-1")
        fake_linear.issue("human", assignee="Alice")
        fake_linear.issue("bot", assignee="Deploy Bot")
        cfg = FlowPulseConfig(
            sync={"db_path": tmp_path / "x.db"}, scope={"ignored_assignee_names": ["deploy bot"]}
        )

        make_orchestrator(cfg).run()

        assert [i.id for i in get_all_issues(store)] == ["human"]
