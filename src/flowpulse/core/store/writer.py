"""
Record writer for the flowpulse store.

Handles writing issue, project, engineer and initiative records to SQLite.
Every public method writes one logical batch inside one transaction: a crash
or error mid-batch leaves the store exactly as it was before the batch.

Key features:
- Upsert keyed by external id; every non-key column is overwritten by the
  incoming value (last write wins, no partial-field merge)
- Hard deletes for records that leave the configured team scope
- Team child tables rewritten wholesale alongside their parent row
- Sync metadata updates for the progress tracker and status surface

Usage:
    from flowpulse.core.store.writer import RecordWriter

    writer = RecordWriter(store)
    result = writer.upsert_issues(issues)
    print(f"{result.inserted} new, {result.updated} updated")
"""

import json
import logging
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import (
    EngineerRecord,
    InitiativeRecord,
    IssueRecord,
    MetricsSnapshot,
    ProjectRecord,
    StoredRecord,
)

logger = logging.getLogger(__name__)

# SQLite's default host parameter limit is 999 on older builds
_CHUNK_SIZE = 500


def _chunks(items: Sequence[str], size: int = _CHUNK_SIZE) -> Iterable[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class WriteResult:
    """Counts from one upsert batch."""

    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated

    def __add__(self, other: "WriteResult") -> "WriteResult":
        return WriteResult(self.inserted + other.inserted, self.updated + other.updated)


class RecordWriter:
    """
    Writer for store records.

    Example:
        >>> writer = RecordWriter(store)
        >>> writer.upsert_issues([issue])
        WriteResult(inserted=1, updated=0)
        >>> writer.upsert_issues([issue])
        WriteResult(inserted=0, updated=1)
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _existing_ids(
        self, conn: sqlite3.Connection, table: str, key: str, ids: Sequence[str]
    ) -> set[str]:
        found: set[str] = set()
        for chunk in _chunks(ids):
            placeholders = ",".join("?" * len(chunk))
            rows = conn.execute(
                f"SELECT {key} FROM {table} WHERE {key} IN ({placeholders})",
                tuple(chunk),
            ).fetchall()
            found.update(row[key] for row in rows)
        return found

    def _upsert_rows(
        self,
        conn: sqlite3.Connection,
        table: str,
        key: str,
        records: Sequence[StoredRecord],
    ) -> WriteResult:
        if not records:
            return WriteResult()

        rows = [record.to_row() for record in records]
        ids = [row[key] for row in rows]
        existing = self._existing_ids(conn, table, key, ids)

        columns = list(rows[0].keys())
        placeholders = ",".join("?" * len(columns))
        assignments = ", ".join(f"{col} = excluded.{col}" for col in columns if col != key)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({key}) DO UPDATE SET {assignments}"
        )
        conn.executemany(sql, [tuple(row[col] for col in columns) for row in rows])

        # A batch may repeat an id; count each id once
        unique_ids = set(ids)
        return WriteResult(
            inserted=len(unique_ids - existing),
            updated=len(unique_ids & existing),
        )

    def _delete_where_in(
        self, conn: sqlite3.Connection, table: str, key: str, ids: Sequence[str]
    ) -> int:
        deleted = 0
        for chunk in _chunks(list(ids)):
            placeholders = ",".join("?" * len(chunk))
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE {key} IN ({placeholders})", tuple(chunk)
            )
            deleted += cursor.rowcount
        return deleted

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    def upsert_issues(self, issues: Sequence[IssueRecord]) -> WriteResult:
        """
        Insert or overwrite a batch of issues.

        Args:
            issues: Issues to write (one transaction)

        Returns:
            WriteResult with inserted/updated counts
        """
        with self.store.transaction() as conn:
            return self._upsert_rows(conn, "issues", "id", issues)

    def upsert_projects(self, projects: Sequence[ProjectRecord]) -> WriteResult:
        """
        Insert or overwrite projects and rewrite their team rows.

        Args:
            projects: Projects to write (one transaction)

        Returns:
            WriteResult with inserted/updated counts
        """
        with self.store.transaction() as conn:
            result = self._upsert_rows(conn, "projects", "id", projects)
            for project in projects:
                conn.execute("DELETE FROM project_teams WHERE project_id = ?", (project.id,))
                conn.executemany(
                    "INSERT INTO project_teams (project_id, team_key) VALUES (?, ?)",
                    [(project.id, key) for key in sorted(set(project.teams))],
                )
            return result

    def replace_engineers(self, engineers: Sequence[EngineerRecord]) -> WriteResult:
        """
        Replace the engineer table with a freshly computed set.

        Engineers missing from ``engineers`` are deleted in the same
        transaction, so the table always reflects exactly one computation.

        Args:
            engineers: The complete engineer set

        Returns:
            WriteResult with inserted/updated counts
        """
        with self.store.transaction() as conn:
            keep = {engineer.assignee_id for engineer in engineers}
            if keep:
                stale = [
                    row["assignee_id"]
                    for row in conn.execute("SELECT assignee_id FROM engineers").fetchall()
                    if row["assignee_id"] not in keep
                ]
                self._delete_where_in(conn, "engineers", "assignee_id", stale)
            else:
                conn.execute("DELETE FROM engineers")

            result = self._upsert_rows(conn, "engineers", "assignee_id", engineers)
            for engineer in engineers:
                conn.execute(
                    "DELETE FROM engineer_teams WHERE assignee_id = ?", (engineer.assignee_id,)
                )
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO engineer_teams (assignee_id, team_key, team_id, team_name)
                    VALUES (?, ?, ?, ?)
                    """,
                    [(engineer.assignee_id, t.key, t.id, t.name) for t in engineer.teams],
                )
            return result

    def upsert_initiatives(self, initiatives: Sequence[InitiativeRecord]) -> WriteResult:
        """Insert or overwrite a batch of initiatives."""
        with self.store.transaction() as conn:
            return self._upsert_rows(conn, "initiatives", "id", initiatives)

    def insert_snapshot(self, snapshot: MetricsSnapshot) -> int:
        """
        Append one metrics snapshot.

        Snapshots are never updated; this is a plain INSERT.

        Returns:
            The new row id
        """
        row = snapshot.to_row()
        columns = list(row.keys())
        with self.store.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO metrics_snapshots ({', '.join(columns)}) "
                f"VALUES ({','.join('?' * len(columns))})",
                tuple(row[col] for col in columns),
            )
            return int(cursor.lastrowid or 0)

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    def delete_issues(self, ids: Sequence[str]) -> int:
        """Hard-delete issues by id."""
        with self.store.transaction() as conn:
            return self._delete_where_in(conn, "issues", "id", ids)

    def delete_projects(self, ids: Sequence[str]) -> int:
        """Hard-delete projects (and their team rows) by id."""
        with self.store.transaction() as conn:
            return self._delete_where_in(conn, "projects", "id", ids)

    def delete_engineers(self, ids: Sequence[str]) -> int:
        """Hard-delete engineers (and their team rows) by assignee id."""
        with self.store.transaction() as conn:
            return self._delete_where_in(conn, "engineers", "assignee_id", ids)

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    def update_sync_metadata(self, **fields: Any) -> None:
        """
        Update columns of the singleton sync metadata row.

        Values are written as given except datetimes (ISO strings) and
        dict/list values (JSON).
        """
        if not fields:
            return
        values: list[Any] = []
        for value in fields.values():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, (dict, list)):
                value = json.dumps(value, sort_keys=True)
            elif hasattr(value, "value"):
                value = value.value
            values.append(value)
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self.store.transaction() as conn:
            conn.execute(f"UPDATE sync_metadata SET {assignments} WHERE id = 1", tuple(values))
