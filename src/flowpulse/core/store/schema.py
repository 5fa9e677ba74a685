"""
SQLite schema for the flowpulse store.

The schema is built by an explicit, ordered list of migrations. Each
migration runs inside its own transaction and is recorded in
``schema_info``; applying the list twice is a no-op. A failing migration
raises ``MigrationError`` instead of being skipped.

Tables:
- issues: Linear issues, denormalized with their project attributes
- projects: projects with computed aggregates and flags
- project_teams: team keys a project spans (rewritten with its project)
- engineers: per-assignee WIP metrics
- engineer_teams: teams an engineer works in (rewritten with its engineer)
- initiatives: initiatives with health history and member project ids
- sync_metadata: singleton status row (id = 1) holding the resume document
- metrics_snapshots: append-only metrics payloads for trend queries
- schema_info: applied migration versions

``validate_schema`` compares the live column set against the models in
``flowpulse.core.store.models``. On mismatch the store refuses to sync and
the operator must reset explicitly.
"""

import logging
import sqlite3
from dataclasses import dataclass, field

from flowpulse.core.exceptions import MigrationError
from flowpulse.core.store.models import (
    EngineerRecord,
    InitiativeRecord,
    IssueRecord,
    MetricsSnapshot,
    ProjectRecord,
    SyncMetadata,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """One ordered schema change."""

    version: int
    description: str
    statements: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="Issues, projects, engineers, initiatives and sync metadata",
        statements=(
            """
            CREATE TABLE issues (
                id TEXT PRIMARY KEY,
                identifier TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                url TEXT,
                team_id TEXT NOT NULL,
                team_key TEXT NOT NULL,
                team_name TEXT NOT NULL,
                state_id TEXT,
                state_name TEXT NOT NULL,
                state_type TEXT NOT NULL,
                assignee_id TEXT,
                assignee_name TEXT,
                assignee_avatar_url TEXT,
                creator_id TEXT,
                creator_name TEXT,
                estimate REAL,
                priority INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                canceled_at TEXT,
                parent_id TEXT,
                last_comment_at TEXT,
                project_id TEXT,
                project_name TEXT,
                project_state TEXT,
                project_health TEXT,
                project_lead_id TEXT,
                project_lead_name TEXT,
                project_updated_at TEXT,
                project_target_date TEXT,
                project_start_date TEXT,
                project_completed_at TEXT,
                labels JSON
            )
            """,
            "CREATE INDEX idx_issues_team_id ON issues(team_id)",
            "CREATE INDEX idx_issues_team_key ON issues(team_key)",
            "CREATE INDEX idx_issues_state_type ON issues(state_type)",
            "CREATE INDEX idx_issues_assignee_id ON issues(assignee_id)",
            "CREATE INDEX idx_issues_project_id ON issues(project_id)",
            """
            CREATE TABLE projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                state TEXT,
                status TEXT,
                health TEXT,
                lead_id TEXT,
                lead_name TEXT,
                lead_avatar_url TEXT,
                description TEXT,
                content TEXT,
                target_date TEXT,
                start_date TEXT,
                completed_at TEXT,
                updated_at TEXT,
                labels JSON,
                updates JSON,
                total_issues INTEGER NOT NULL DEFAULT 0,
                completed_issues INTEGER NOT NULL DEFAULT 0,
                in_progress_issues INTEGER NOT NULL DEFAULT 0,
                engineer_count INTEGER NOT NULL DEFAULT 0,
                engineers JSON,
                issues_by_state JSON,
                velocity_by_team JSON,
                missing_estimate_count INTEGER NOT NULL DEFAULT 0,
                missing_priority_count INTEGER NOT NULL DEFAULT 0,
                no_recent_comment_count INTEGER NOT NULL DEFAULT 0,
                wip_age_violation_count INTEGER NOT NULL DEFAULT 0,
                missing_description_count INTEGER NOT NULL DEFAULT 0,
                total_points REAL NOT NULL DEFAULT 0,
                velocity REAL NOT NULL DEFAULT 0,
                average_cycle_time REAL,
                average_lead_time REAL,
                estimate_accuracy REAL,
                days_per_story_point REAL,
                linear_progress REAL NOT NULL DEFAULT 0,
                has_status_mismatch INTEGER NOT NULL DEFAULT 0,
                is_stale_update INTEGER NOT NULL DEFAULT 0,
                missing_lead INTEGER NOT NULL DEFAULT 0,
                missing_health INTEGER NOT NULL DEFAULT 0,
                has_date_discrepancy INTEGER NOT NULL DEFAULT 0,
                has_violations INTEGER NOT NULL DEFAULT 0,
                estimated_end_date TEXT,
                last_activity_at TEXT,
                last_synced_at TEXT
            )
            """,
            """
            CREATE TABLE project_teams (
                project_id TEXT NOT NULL,
                team_key TEXT NOT NULL,
                PRIMARY KEY (project_id, team_key),
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX idx_project_teams_team_key ON project_teams(team_key)",
            """
            CREATE TABLE engineers (
                assignee_id TEXT PRIMARY KEY,
                assignee_name TEXT NOT NULL,
                avatar_url TEXT,
                active_issues JSON,
                wip_issue_count INTEGER NOT NULL DEFAULT 0,
                wip_total_points REAL NOT NULL DEFAULT 0,
                wip_limit_violation INTEGER NOT NULL DEFAULT 0,
                oldest_wip_age_days REAL,
                last_activity_at TEXT,
                active_project_count INTEGER NOT NULL DEFAULT 0,
                multi_project_violation INTEGER NOT NULL DEFAULT 0,
                missing_estimate_count INTEGER NOT NULL DEFAULT 0,
                missing_priority_count INTEGER NOT NULL DEFAULT 0,
                no_recent_comment_count INTEGER NOT NULL DEFAULT 0,
                wip_age_violation_count INTEGER NOT NULL DEFAULT 0
            )
            """,
            """
            CREATE TABLE engineer_teams (
                assignee_id TEXT NOT NULL,
                team_key TEXT NOT NULL,
                team_id TEXT,
                team_name TEXT NOT NULL,
                PRIMARY KEY (assignee_id, team_key),
                FOREIGN KEY (assignee_id) REFERENCES engineers(assignee_id) ON DELETE CASCADE
            )
            """,
            """
            CREATE TABLE initiatives (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                content TEXT,
                status TEXT,
                target_date TEXT,
                started_at TEXT,
                completed_at TEXT,
                archived_at TEXT,
                health TEXT,
                health_updated_at TEXT,
                health_updates JSON,
                owner_id TEXT,
                owner_name TEXT,
                project_ids JSON,
                created_at TEXT,
                updated_at TEXT
            )
            """,
            """
            CREATE TABLE sync_metadata (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                status TEXT NOT NULL DEFAULT 'idle'
                    CHECK (status IN ('idle', 'syncing', 'error')),
                current_phase TEXT,
                last_sync_time TEXT,
                error_message TEXT,
                progress_percent INTEGER,
                query_counts JSON,
                partial_state JSON,
                updated_at TEXT
            )
            """,
            "INSERT INTO sync_metadata (id, status, query_counts) VALUES (1, 'idle', '{}')",
        ),
    ),
    Migration(
        version=2,
        description="Append-only metrics snapshots",
        statements=(
            """
            CREATE TABLE metrics_snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                captured_at TEXT NOT NULL,
                schema_version INTEGER NOT NULL,
                level TEXT NOT NULL CHECK (level IN ('org', 'domain', 'team')),
                level_id TEXT,
                payload JSON NOT NULL
            )
            """,
            """
            CREATE INDEX idx_snapshots_level
                ON metrics_snapshots(level, level_id, captured_at)
            """,
        ),
    ),
    Migration(
        version=3,
        description="Track total comment count separately from comment recency",
        statements=("ALTER TABLE issues ADD COLUMN comment_count INTEGER",),
    ),
)

SCHEMA_VERSION = MIGRATIONS[-1].version

# Tables in drop order (children before parents)
TABLES = (
    "metrics_snapshots",
    "project_teams",
    "engineer_teams",
    "issues",
    "projects",
    "engineers",
    "initiatives",
    "sync_metadata",
)

EXPECTED_COLUMNS: dict[str, set[str]] = {
    "issues": set(IssueRecord.column_names()),
    "projects": set(ProjectRecord.column_names()),
    "project_teams": {"project_id", "team_key"},
    "engineers": set(EngineerRecord.column_names()),
    "engineer_teams": {"assignee_id", "team_key", "team_id", "team_name"},
    "initiatives": set(InitiativeRecord.column_names()),
    "sync_metadata": set(SyncMetadata.column_names()),
    "metrics_snapshots": set(MetricsSnapshot.column_names()),
}


@dataclass
class SchemaCheck:
    """Outcome of comparing the live schema against the expected one."""

    missing: dict[str, list[str]] = field(default_factory=dict)
    unexpected: dict[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.unexpected

    def describe(self) -> str:
        """Human-readable summary of the differences."""
        if self.ok:
            return "schema matches"
        parts = []
        for table, columns in sorted(self.missing.items()):
            parts.append(f"{table} is missing {', '.join(columns)}")
        for table, columns in sorted(self.unexpected.items()):
            parts.append(f"{table} has unexpected {', '.join(columns)}")
        return "; ".join(parts)


def _ensure_schema_info(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_info (
            version INTEGER PRIMARY KEY,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            description TEXT
        )
        """
    )


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """
    Get the highest applied migration version.

    Args:
        conn: SQLite database connection

    Returns:
        Current schema version, or None if schema_info doesn't exist
    """
    try:
        row = conn.execute("SELECT MAX(version) AS version FROM schema_info").fetchone()
    except sqlite3.OperationalError:
        # schema_info table doesn't exist
        return None
    if row is None:
        return None
    value = row["version"] if isinstance(row, dict) else row[0]
    return int(value) if value is not None else None


def needs_migration(conn: sqlite3.Connection) -> bool:
    """Check whether any migration in MIGRATIONS is still pending."""
    current_version = get_schema_version(conn)
    return current_version is None or current_version < SCHEMA_VERSION


def apply_migrations(conn: sqlite3.Connection) -> list[int]:
    """
    Apply every pending migration in order.

    The connection must be in autocommit mode (``isolation_level=None``) so
    each migration can own an explicit transaction.

    Args:
        conn: SQLite database connection

    Returns:
        Versions applied by this call (empty when already current)

    Raises:
        MigrationError: If a migration statement fails; that migration is
            rolled back and later ones are not attempted
    """
    _ensure_schema_info(conn)
    current = get_schema_version(conn) or 0
    applied: list[int] = []

    for migration in MIGRATIONS:
        if migration.version <= current:
            continue
        conn.execute("BEGIN IMMEDIATE")
        try:
            for statement in migration.statements:
                conn.execute(statement)
            conn.execute(
                "INSERT INTO schema_info (version, description) VALUES (?, ?)",
                (migration.version, migration.description),
            )
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            raise MigrationError(
                migration.version,
                f"Migration {migration.version} ({migration.description}) failed: {e}",
            ) from e
        conn.execute("COMMIT")
        logger.info(f"Applied schema migration {migration.version}: {migration.description}")
        applied.append(migration.version)

    return applied


def get_live_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    """Column names of a table as SQLite reports them (empty if absent)."""
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] if isinstance(row, dict) else row[1] for row in rows}


def validate_schema(conn: sqlite3.Connection) -> SchemaCheck:
    """
    Compare the live column set of every table against the expected set.

    Args:
        conn: SQLite database connection

    Returns:
        SchemaCheck listing missing and unexpected columns per table
    """
    check = SchemaCheck()
    for table, expected in EXPECTED_COLUMNS.items():
        live = get_live_columns(conn, table)
        missing = sorted(expected - live)
        unexpected = sorted(live - expected)
        if missing:
            check.missing[table] = missing
        if unexpected:
            check.unexpected[table] = unexpected
    return check


def drop_all(conn: sqlite3.Connection) -> None:
    """Drop every flowpulse table including schema_info."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        for table in (*TABLES, "schema_info"):
            conn.execute(f"DROP TABLE IF EXISTS {table}")
    except sqlite3.Error:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
