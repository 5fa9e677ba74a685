"""
Tests for project metrics computation.

Tests validate:
- Aggregates and violation counts (end-to-end scenario 1)
- Status mismatch in both directions (end-to-end scenario 3)
- Stale updates, missing lead and missing health
- Convergence: recomputing the same inputs gives the same record
- Remote attributes kept from the stored record
- Projects without issues
"""

from datetime import timedelta

import pytest

from flowpulse.core.linear.models import ProjectDetails
from flowpulse.core.metrics.projects import compute_empty_project, compute_project
from flowpulse.core.metrics.status import (
    has_status_mismatch,
    is_completed_project,
    is_missing_health,
    is_stale_update,
    multi_project_status,
    wip_status,
)
from flowpulse.core.store.models import ProjectHealth, StateType, StatusUpdate

from conftest import NOW


def _details(**overrides) -> ProjectDetails:
    data = {
        "id": "proj-1",
        "name": "Project One",
        "state": "started",
        "health": ProjectHealth.ON_TRACK,
        "lead_name": "Lead",
        "labels": ["Platform"],
        "team_keys": ["ENG"],
        "updates": [StatusUpdate(id="u1", created_at=NOW - timedelta(days=2))],
    }
    data.update(overrides)
    return ProjectDetails(**data)


class TestComputeProject:
    """Tests for compute_project()."""

    def test_scenario_points_and_missing_estimates(self, make_issue) -> None:
        """Test a done issue with 3 points and an unestimated in-progress issue."""
        issues = [
            make_issue(
                state_type=StateType.COMPLETED,
                estimate=3.0,
                started_at=NOW - timedelta(days=4),
                completed_at=NOW - timedelta(days=1),
            ),
            make_issue(estimate=None),
        ]
        project = compute_project("proj-1", issues, NOW)
        assert project.missing_estimate_count == 1
        assert project.total_points == 3.0
        assert project.completed_issues == 1
        assert project.in_progress_issues == 1
        assert project.total_issues == 2
        assert project.issues_by_state == {"Done": 1, "In Progress": 1}
        assert project.has_violations is True

    def test_scenario_backlog_project_with_started_issue(self, make_issue) -> None:
        """Test a Backlog project with an In Progress issue is a status mismatch."""
        project = compute_project("proj-1", [make_issue(project_state="Backlog")], NOW)
        assert project.has_status_mismatch is True

    def test_started_project_with_all_issues_closed(self, make_issue) -> None:
        issues = [
            make_issue(
                state_type=StateType.COMPLETED,
                started_at=NOW - timedelta(days=3),
                completed_at=NOW - timedelta(days=1),
            )
        ]
        assert compute_project("proj-1", issues, NOW).has_status_mismatch is True

    def test_engineers_and_teams(self, make_issue) -> None:
        issues = [
            make_issue(assignee_name="Bob", team_key="OPS"),
            make_issue(assignee_name="Alice"),
            make_issue(assignee_name=None, assignee_id=None),
        ]
        project = compute_project("proj-1", issues, NOW)
        assert project.engineers == ["Alice", "Bob"]
        assert project.engineer_count == 2
        assert project.teams == ["ENG", "OPS"]

    def test_engineer_mapping_filters(self, make_issue) -> None:
        issues = [make_issue(assignee_name="Bob"), make_issue(assignee_name="Alice")]
        project = compute_project("proj-1", issues, NOW, allowed_engineers={"alice"})
        assert project.engineers == ["Alice"]

    def test_whitelist_limits_teams(self, make_issue) -> None:
        issues = [make_issue(team_key="OPS"), make_issue(team_key="ENG")]
        project = compute_project("proj-1", issues, NOW, whitelist={"ENG"})
        assert project.teams == ["ENG"]

    def test_details_win_over_issue_attributes(self, make_issue) -> None:
        issue = make_issue(project_state="Backlog", project_name="Old name")
        project = compute_project("proj-1", [issue], NOW, details=_details(), synced=True)
        assert project.name == "Project One"
        assert project.state == "started"
        assert project.labels == ["Platform"]
        assert project.is_stale_update is False
        assert project.last_synced_at == NOW

    def test_remote_attributes_kept_without_details(self, make_issue) -> None:
        """Test labels and updates of the stored record survive a recompute."""
        existing = compute_project(
            "proj-1", [make_issue()], NOW, details=_details(), synced=True
        )
        recomputed = compute_project(
            "proj-1", [make_issue(id="other")], NOW + timedelta(hours=1), existing=existing
        )
        assert recomputed.labels == ["Platform"]
        assert recomputed.updates == existing.updates
        assert recomputed.last_synced_at == NOW

    def test_recompute_converges(self, make_issue) -> None:
        """Test the same inputs always produce the same record."""
        issues = [make_issue(), make_issue(estimate=None, priority=0)]
        first = compute_project("proj-1", issues, NOW, details=_details(), synced=True)
        second = compute_project("proj-1", issues, NOW, details=_details(), existing=first, synced=True)
        assert first == second

    def test_invalid_timestamps_excluded_from_time_metrics(self, make_issue) -> None:
        broken = make_issue(
            state_type=StateType.STARTED,
            started_at=NOW - timedelta(days=10),
            completed_at=NOW - timedelta(days=1),
        )
        project = compute_project("proj-1", [broken], NOW)
        assert project.average_cycle_time is None
        assert project.total_issues == 1

    def test_start_date_fallbacks(self, make_issue) -> None:
        """Test the start date falls back to the earliest start, then creation."""
        started = make_issue(started_at=NOW - timedelta(days=5), created_at=NOW - timedelta(days=9))
        project = compute_project("proj-1", [started], NOW)
        assert project.start_date == NOW - timedelta(days=5)

        backlog = make_issue(
            state_type=StateType.BACKLOG, started_at=None, created_at=NOW - timedelta(days=9)
        )
        assert compute_project("proj-1", [backlog], NOW).start_date == NOW - timedelta(days=9)

    def test_empty_issue_list_rejected(self) -> None:
        with pytest.raises(ValueError):
            compute_project("proj-1", [], NOW)


class TestComputeEmptyProject:
    """Tests for compute_empty_project()."""

    def test_in_scope(self) -> None:
        project = compute_empty_project(_details(state="planned"), NOW, whitelist={"ENG"})
        assert project is not None
        assert project.total_issues == 0
        assert project.teams == ["ENG"]
        assert project.missing_health is False

    def test_out_of_scope(self) -> None:
        assert compute_empty_project(_details(team_keys=["OPS"]), NOW, whitelist={"ENG"}) is None

    def test_planned_without_lead(self) -> None:
        project = compute_empty_project(_details(state="planned", lead_name=None), NOW)
        assert project is not None
        assert project.missing_lead is True


class TestStatusChecks:
    """Tests for project status flags."""

    def test_no_mismatch_without_issues(self) -> None:
        assert not has_status_mismatch("backlog", [])

    def test_stale_update(self) -> None:
        old = [StatusUpdate(id="u", created_at=NOW - timedelta(days=8))]
        fresh = [StatusUpdate(id="u", created_at=NOW - timedelta(days=6))]
        assert is_stale_update("started", old, NOW)
        assert not is_stale_update("started", fresh, NOW)
        assert is_stale_update("started", [], NOW)
        assert not is_stale_update("completed", [], NOW)

    def test_missing_health(self) -> None:
        assert is_missing_health(None, "started", 1)
        assert not is_missing_health(None, "planned", 0)
        assert is_missing_health(None, "planned", 2)
        assert not is_missing_health(ProjectHealth.AT_RISK, "started", 1)
        assert not is_missing_health(None, "completed", 0)

    def test_completed_project_window(self) -> None:
        assert is_completed_project("completed", NOW - timedelta(days=30), None, NOW)
        assert not is_completed_project("completed", NOW - timedelta(days=365), None, NOW)
        assert not is_completed_project("started", NOW, None, NOW)

    @pytest.mark.parametrize(("count", "label"), [(3, "good"), (4, "ok"), (6, "warning"), (9, "critical")])
    def test_wip_status(self, count, label) -> None:
        assert wip_status(count) == label

    @pytest.mark.parametrize(
        ("count", "label"), [(1, "focused"), (2, "caution"), (3, "warning"), (4, "critical")]
    )
    def test_multi_project_status(self, count, label) -> None:
        assert multi_project_status(count) == label
