"""
Read queries for the flowpulse store.

Every function returns models from ``flowpulse.core.store.models``; rows
never leave this module as raw dicts. Team child rows are attached to the
projects and engineers they belong to.
"""

from collections import defaultdict
from datetime import datetime

from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import (
    EngineerRecord,
    InitiativeRecord,
    IssueRecord,
    MetricsSnapshot,
    ProjectRecord,
    SnapshotLevel,
    StateType,
    SyncMetadata,
    TeamRef,
)


def get_all_issues(store: Store) -> list[IssueRecord]:
    """All stored issues, oldest first."""
    rows = store.query("SELECT * FROM issues ORDER BY created_at, id")
    return [IssueRecord.from_row(row) for row in rows]


def get_started_issues(store: Store) -> list[IssueRecord]:
    """Issues whose workflow state type is started (WIP)."""
    rows = store.query(
        "SELECT * FROM issues WHERE state_type = ? ORDER BY created_at, id",
        (StateType.STARTED.value,),
    )
    return [IssueRecord.from_row(row) for row in rows]


def get_issues_by_project(store: Store, project_id: str) -> list[IssueRecord]:
    """Issues belonging to one project."""
    rows = store.query(
        "SELECT * FROM issues WHERE project_id = ? ORDER BY created_at, id", (project_id,)
    )
    return [IssueRecord.from_row(row) for row in rows]


def get_issue_ids(store: Store) -> set[str]:
    """Ids of every stored issue."""
    return {row["id"] for row in store.query("SELECT id FROM issues")}


def get_issue_project_ids(store: Store, state_type: StateType | None = None) -> list[str]:
    """
    Distinct project ids referenced by issues, in first-seen order.

    Args:
        store: Open store
        state_type: Only consider issues in this state type

    Returns:
        Project ids ordered by the earliest issue that references them
    """
    sql = "SELECT project_id, MIN(rowid) AS first_seen FROM issues WHERE project_id IS NOT NULL"
    params: tuple[str, ...] = ()
    if state_type is not None:
        sql += " AND state_type = ?"
        params = (state_type.value,)
    sql += " GROUP BY project_id ORDER BY first_seen"
    return [row["project_id"] for row in store.query(sql, params)]


def _project_teams(store: Store) -> dict[str, list[str]]:
    teams: dict[str, list[str]] = defaultdict(list)
    for row in store.query("SELECT project_id, team_key FROM project_teams ORDER BY team_key"):
        teams[row["project_id"]].append(row["team_key"])
    return teams


def get_project(store: Store, project_id: str) -> ProjectRecord | None:
    """A single project with its team keys, or None."""
    row = store.query_one("SELECT * FROM projects WHERE id = ?", (project_id,))
    if row is None:
        return None
    teams = [
        r["team_key"]
        for r in store.query(
            "SELECT team_key FROM project_teams WHERE project_id = ? ORDER BY team_key",
            (project_id,),
        )
    ]
    return ProjectRecord.from_row(row, teams=teams)


def get_all_projects(store: Store) -> list[ProjectRecord]:
    """All stored projects with their team keys."""
    teams = _project_teams(store)
    rows = store.query("SELECT * FROM projects ORDER BY name, id")
    return [ProjectRecord.from_row(row, teams=teams.get(row["id"], [])) for row in rows]


def get_project_ids(store: Store) -> set[str]:
    """Ids of every stored project."""
    return {row["id"] for row in store.query("SELECT id FROM projects")}


def get_engineers(store: Store) -> list[EngineerRecord]:
    """All engineers with their teams."""
    teams: dict[str, list[TeamRef]] = defaultdict(list)
    for row in store.query("SELECT * FROM engineer_teams ORDER BY team_key"):
        teams[row["assignee_id"]].append(
            TeamRef(id=row["team_id"], key=row["team_key"], name=row["team_name"])
        )
    rows = store.query("SELECT * FROM engineers ORDER BY assignee_name")
    return [
        EngineerRecord.from_row(row, teams=teams.get(row["assignee_id"], [])) for row in rows
    ]


def get_initiatives(store: Store) -> list[InitiativeRecord]:
    """All stored initiatives."""
    rows = store.query("SELECT * FROM initiatives ORDER BY name, id")
    return [InitiativeRecord.from_row(row) for row in rows]


def get_sync_metadata(store: Store) -> SyncMetadata:
    """The singleton sync metadata row (defaults if it is missing)."""
    row = store.query_one("SELECT * FROM sync_metadata WHERE id = 1")
    if row is None:
        return SyncMetadata()
    return SyncMetadata.from_row(row)


def get_snapshots(
    store: Store,
    level: SnapshotLevel,
    level_id: str | None = None,
    since: datetime | None = None,
) -> list[MetricsSnapshot]:
    """
    Snapshots for one level/key, oldest first.

    Args:
        store: Open store
        level: Aggregation level
        level_id: Domain or team key (None for org)
        since: Only snapshots captured at or after this time

    Returns:
        Snapshots in chronological order
    """
    sql = "SELECT * FROM metrics_snapshots WHERE level = ?"
    params: list[str] = [level.value]
    if level_id is None:
        sql += " AND level_id IS NULL"
    else:
        sql += " AND level_id = ?"
        params.append(level_id)
    rows = [MetricsSnapshot.from_row(row) for row in store.query(sql, tuple(params))]
    # Filter and sort on parsed datetimes; stored ISO strings may differ in format
    if since is not None:
        rows = [snapshot for snapshot in rows if snapshot.captured_at >= since]
    return sorted(rows, key=lambda snapshot: (snapshot.captured_at, snapshot.id or 0))


def count_rows(store: Store, table: str) -> int:
    """Row count of a store table."""
    row = store.query_one(f"SELECT COUNT(*) AS n FROM {table}")
    return int(row["n"]) if row else 0
