"""Tests for durable sync progress."""

from flowpulse.core.store.models import SyncPhase
from flowpulse.core.store.queries import get_sync_metadata
from flowpulse.core.store.writer import RecordWriter
from flowpulse.core.sync.progress import (
    ComputingMetricsProgress,
    EntityBatchProgress,
    InitialIssuesProgress,
    ProgressTracker,
    is_phase_done,
    state_for_phase,
)


class TestEntityBatchProgress:
    """Tests for the entity phase payload."""

    def test_undiscovered(self) -> None:
        state = EntityBatchProgress(phase="active_projects")
        assert not state.discovered
        assert state.pending() == []

    def test_discovery_dedupes_in_order(self) -> None:
        state = EntityBatchProgress(phase="planned_projects").with_entities(["b", "a", "b"])
        assert state.pending() == ["b", "a"]

    def test_mark_complete(self) -> None:
        state = EntityBatchProgress(phase="initiatives").with_entities(["a", "b", "c"])
        state = state.mark_complete("a").mark_complete("c")
        assert state.pending() == ["b"]
        assert state.completed_ids() == ["a", "c"]


class TestPhaseOrdering:
    """Tests for is_phase_done()."""

    def test_no_state_means_nothing_done(self) -> None:
        assert not is_phase_done(None, SyncPhase.INITIAL_ISSUES)

    def test_earlier_phases_are_done(self) -> None:
        state = state_for_phase(SyncPhase.PLANNED_PROJECTS)
        assert is_phase_done(state, SyncPhase.INITIAL_ISSUES)
        assert is_phase_done(state, SyncPhase.ACTIVE_PROJECTS)
        assert not is_phase_done(state, SyncPhase.PLANNED_PROJECTS)
        assert not is_phase_done(state, SyncPhase.COMPUTING_METRICS)

    def test_state_for_each_phase(self) -> None:
        assert isinstance(state_for_phase(SyncPhase.INITIAL_ISSUES), InitialIssuesProgress)
        assert isinstance(state_for_phase(SyncPhase.INITIATIVES), EntityBatchProgress)
        assert isinstance(state_for_phase(SyncPhase.COMPUTING_METRICS), ComputingMetricsProgress)


class TestProgressTracker:
    """Tests for saving and loading the partial state."""

    def test_empty_store_has_no_state(self, store) -> None:
        assert ProgressTracker(store).load() is None

    def test_round_trip(self, store) -> None:
        """Test a saved entity state loads back with its completion flags."""
        tracker = ProgressTracker(store)
        state = EntityBatchProgress(phase="active_projects").with_entities(["p1", "p2", "p3"])
        tracker.save(state.mark_complete("p1"))

        loaded = tracker.load()
        assert isinstance(loaded, EntityBatchProgress)
        assert loaded.pending() == ["p2", "p3"]
        assert get_sync_metadata(store).current_phase == SyncPhase.ACTIVE_PROJECTS

    def test_clear(self, store) -> None:
        tracker = ProgressTracker(store)
        tracker.save(InitialIssuesProgress())
        tracker.clear()
        assert tracker.load() is None

    def test_unreadable_state_is_discarded(self, store) -> None:
        """Test a state that no longer validates restarts the sync."""
        RecordWriter(store).update_sync_metadata(partial_state={"phase": "no_such_phase"})
        assert ProgressTracker(store).load() is None
