"""
Tests for time and throughput calculations.

Tests validate:
- WIP age for started and completed issues
- Cycle and lead time
- Velocity with a one-week floor
- Estimate accuracy bands
- Estimated end date and date discrepancy
"""

from datetime import datetime, timedelta, timezone

import pytest

from flowpulse.core.metrics import calculations
from flowpulse.core.store.models import StateType

from conftest import NOW


def _completed(make_issue, started_days_ago, completed_days_ago, **kwargs):
    return make_issue(
        state_type=StateType.COMPLETED,
        started_at=NOW - timedelta(days=started_days_ago) if started_days_ago is not None else None,
        completed_at=NOW - timedelta(days=completed_days_ago),
        **kwargs,
    )


class TestWipAge:
    """Tests for wip_age_days()."""

    def test_started_issue_uses_started_at(self, make_issue) -> None:
        issue = make_issue(started_at=NOW - timedelta(days=4))
        assert calculations.wip_age_days(issue, NOW) == pytest.approx(4.0)

    def test_started_issue_falls_back_to_created_at(self, make_issue) -> None:
        issue = make_issue(started_at=None, created_at=NOW - timedelta(days=6))
        assert calculations.wip_age_days(issue, NOW) == pytest.approx(6.0)

    def test_completed_issue_needs_start(self, make_issue) -> None:
        """Test completed issues never fall back to created_at."""
        assert calculations.wip_age_days(_completed(make_issue, None, 1), NOW) is None

    def test_completed_issue(self, make_issue) -> None:
        assert calculations.wip_age_days(_completed(make_issue, 5, 1), NOW) == pytest.approx(4.0)

    def test_other_states_have_no_age(self, make_issue) -> None:
        issue = make_issue(state_type=StateType.BACKLOG, started_at=None)
        assert calculations.wip_age_days(issue, NOW) is None


class TestCycleAndLeadTime:
    """Tests for cycle and lead time averages."""

    def test_cycle_time(self, make_issue) -> None:
        issues = [_completed(make_issue, 5, 1), _completed(make_issue, 3, 1), make_issue()]
        assert calculations.average_cycle_time(issues) == pytest.approx(3.0)

    def test_lead_time(self, make_issue) -> None:
        issue = _completed(make_issue, 5, 2, created_at=NOW - timedelta(days=10))
        assert calculations.average_lead_time([issue]) == pytest.approx(8.0)

    def test_no_data(self, make_issue) -> None:
        assert calculations.average_cycle_time([make_issue()]) is None


class TestVelocity:
    """Tests for velocity()."""

    def test_weekly_rate(self, make_issue) -> None:
        issues = [_completed(make_issue, 5, 1) for _ in range(4)]
        assert calculations.velocity(issues, NOW - timedelta(days=14), NOW) == pytest.approx(2.0)

    def test_young_project_floored_at_one_week(self, make_issue) -> None:
        issues = [_completed(make_issue, 2, 1) for _ in range(3)]
        assert calculations.velocity(issues, NOW - timedelta(days=2), NOW) == pytest.approx(3.0)

    def test_no_start(self, make_issue) -> None:
        assert calculations.velocity([_completed(make_issue, 2, 1)], None, NOW) == 0.0

    def test_by_team(self, make_issue) -> None:
        issues = [
            _completed(make_issue, 5, 1, team_key="ENG"),
            _completed(make_issue, 5, 1, team_key="OPS"),
            _completed(make_issue, 5, 1, team_key="OPS"),
        ]
        by_team = calculations.velocity_by_team(issues, NOW - timedelta(days=14), NOW)
        assert by_team == {"ENG": pytest.approx(0.5), "OPS": pytest.approx(1.0)}


class TestEstimateAccuracy:
    """Tests for estimate_accuracy() and days_per_story_point()."""

    def test_perfect_estimates(self, make_issue) -> None:
        issues = [
            _completed(make_issue, 3, 1, estimate=1.0),
            _completed(make_issue, 5, 1, estimate=2.0),
        ]
        assert calculations.days_per_story_point(issues) == pytest.approx(2.0)
        assert calculations.estimate_accuracy(issues) == 100.0

    def test_bands(self, make_issue) -> None:
        """Test full, half and no credit bands."""
        issues = [
            # factor = 12 days / 3 points = 4 days per point
            _completed(make_issue, 5, 1, estimate=1.0),   # 4 vs 4: full credit
            _completed(make_issue, 3.5, 1, estimate=1.0),  # 2.5 vs 4: 37.5% off, half
            _completed(make_issue, 6.5, 1, estimate=1.0),  # 5.5 vs 4: 37.5% off, half
        ]
        assert calculations.estimate_accuracy(issues) == pytest.approx(66.7)

    def test_no_qualifying_issues(self, make_issue) -> None:
        """Test zero estimates and unstarted issues leave accuracy undefined."""
        issues = [_completed(make_issue, 3, 1, estimate=0.0), make_issue()]
        assert calculations.estimate_accuracy(issues) is None
        assert calculations.days_per_story_point(issues) is None


class TestProgressAndPoints:
    def test_linear_progress_ignores_canceled(self, make_issue) -> None:
        issues = [
            _completed(make_issue, 3, 1),
            make_issue(),
            make_issue(state_type=StateType.CANCELED, started_at=None, canceled_at=NOW),
        ]
        assert calculations.linear_progress(issues) == pytest.approx(0.5)

    def test_total_points(self, make_issue) -> None:
        assert calculations.total_points([make_issue(estimate=3), make_issue(estimate=None)]) == 3.0


class TestEstimatedEndDate:
    """Tests for estimated_end_date()."""

    def test_extrapolates_to_end_of_month(self) -> None:
        # 10 issues, 5 done in 10 days: 0.5/day, 5 remaining -> 10 days
        end = calculations.estimated_end_date(10, 5, NOW - timedelta(days=10), NOW)
        assert end == datetime(2026, 3, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)

    def test_no_completions_uses_six_month_horizon(self) -> None:
        end = calculations.estimated_end_date(10, 0, NOW - timedelta(days=10), NOW)
        assert end is not None
        assert (end.year, end.month, end.day) == (2026, 9, 30)

    def test_slow_project_is_capped(self) -> None:
        """Test a near-zero rate stays inside datetime's range."""
        end = calculations.estimated_end_date(10**9, 1, NOW - timedelta(days=3000), NOW)
        assert end is not None
        assert end.year <= NOW.year + 11

    def test_unknown_start(self) -> None:
        assert calculations.estimated_end_date(3, 1, None, NOW) is None

    def test_add_months_clamps_day(self) -> None:
        moment = datetime(2026, 1, 31, tzinfo=timezone.utc)
        assert calculations.add_months(moment, 1).day == 28


class TestDateDiscrepancy:
    def test_within_30_days(self) -> None:
        assert not calculations.has_date_discrepancy(NOW, NOW + timedelta(days=30))

    def test_beyond_30_days(self) -> None:
        assert calculations.has_date_discrepancy(NOW, NOW - timedelta(days=31))

    def test_missing_dates(self) -> None:
        assert not calculations.has_date_discrepancy(None, NOW)
