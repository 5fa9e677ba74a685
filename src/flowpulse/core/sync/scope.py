"""
Team and assignee scope.

Decides which teams and assignees belong in the store and removes what no
longer does. The cleanup runs at the start of every sync, before anything is
fetched, so a narrowed scope takes effect even when the sync later fails.

Team filtering has two modes:
- Whitelist: only the listed teams are kept
- Ignore list: every team except the listed ones is kept

A non-empty whitelist wins; the ignore list is then not consulted.
"""

import logging
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field

from flowpulse.core.config.models import ScopeConfig
from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import IssueRecord
from flowpulse.core.store.writer import RecordWriter

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """Counts of rows removed by a scope cleanup."""

    deleted_team_issues: int = 0
    deleted_assignee_issues: int = 0
    deleted_engineers: int = 0
    cleaned_project_teams: int = 0
    deleted_projects: int = 0

    @property
    def total(self) -> int:
        return (
            self.deleted_team_issues
            + self.deleted_assignee_issues
            + self.deleted_engineers
            + self.cleaned_project_teams
            + self.deleted_projects
        )


@dataclass
class TeamScope:
    """
    The configured sync scope.

    Team keys are held uppercased and assignee names lowercased so both
    compare case-insensitively.

    Example:
        >>> scope = TeamScope(whitelist={"ENG"})
        >>> scope.includes_team("eng"), scope.includes_team("OPS")
        (True, False)
    """

    whitelist: set[str] = field(default_factory=set)
    ignored: set[str] = field(default_factory=set)
    ignored_assignees: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.whitelist = {key.strip().upper() for key in self.whitelist if key.strip()}
        self.ignored = {key.strip().upper() for key in self.ignored if key.strip()}
        self.ignored_assignees = {
            name.strip().lower() for name in self.ignored_assignees if name.strip()
        }

    @classmethod
    def from_config(cls, config: ScopeConfig) -> "TeamScope":
        return cls(
            whitelist=set(config.whitelist_team_keys),
            ignored=set(config.ignored_team_keys),
            ignored_assignees=set(config.ignored_assignee_names),
        )

    @property
    def is_restricted(self) -> bool:
        return bool(self.whitelist or self.ignored)

    def includes_team(self, team_key: str | None) -> bool:
        """Whether issues of ``team_key`` belong in the store."""
        if not team_key:
            return not self.whitelist
        key = team_key.upper()
        if self.whitelist:
            return key in self.whitelist
        return key not in self.ignored

    def is_ignored_assignee(self, name: str | None) -> bool:
        if not name or not self.ignored_assignees:
            return False
        return name.strip().lower() in self.ignored_assignees

    def includes_issue(self, issue: IssueRecord) -> bool:
        return self.includes_team(issue.team_key) and not self.is_ignored_assignee(
            issue.assignee_name
        )

    def filter_issues(self, issues: Iterable[IssueRecord]) -> list[IssueRecord]:
        """Keep only in-scope issues, preserving order."""
        return [issue for issue in issues if self.includes_issue(issue)]

    def team_whitelist(self) -> Collection[str] | None:
        """Uppercased whitelist for the metrics layer, or None when unset."""
        return self.whitelist or None

    def apply_cleanup(self, store: Store) -> CleanupResult:
        """
        Remove stored records that are out of scope.

        Deletes issues of out-of-scope teams, strips out-of-scope team rows
        from projects and deletes projects left with none of their teams in
        scope, then deletes issues and engineers of ignored assignees. Each
        step is its own transaction.

        Args:
            store: Open store

        Returns:
            CleanupResult with the number of rows removed per step
        """
        result = CleanupResult()
        writer = RecordWriter(store)

        if self.is_restricted:
            if self.whitelist:
                logger.info(f"Whitelist mode: only keeping teams {', '.join(sorted(self.whitelist))}")
            else:
                logger.info(f"Removing issues of ignored teams {', '.join(sorted(self.ignored))}")

            stale_issues = [
                row["id"]
                for row in store.query("SELECT id, team_key FROM issues")
                if not self.includes_team(row["team_key"])
            ]
            result.deleted_team_issues = writer.delete_issues(stale_issues)

            result.cleaned_project_teams, result.deleted_projects = self._clean_project_teams(
                store, writer
            )

        if self.ignored_assignees:
            stale_assigned = [
                row["id"]
                for row in store.query(
                    "SELECT id, assignee_name FROM issues WHERE assignee_name IS NOT NULL"
                )
                if self.is_ignored_assignee(row["assignee_name"])
            ]
            result.deleted_assignee_issues = writer.delete_issues(stale_assigned)

            stale_engineers = [
                row["assignee_id"]
                for row in store.query("SELECT assignee_id, assignee_name FROM engineers")
                if self.is_ignored_assignee(row["assignee_name"])
            ]
            result.deleted_engineers = writer.delete_engineers(stale_engineers)

        if result.total:
            logger.info(
                f"Scope cleanup removed {result.deleted_team_issues} team issue(s), "
                f"{result.deleted_assignee_issues} assignee issue(s), "
                f"{result.deleted_engineers} engineer(s), "
                f"{result.cleaned_project_teams} project team row(s), "
                f"{result.deleted_projects} project(s)"
            )
        return result

    def _clean_project_teams(self, store: Store, writer: RecordWriter) -> tuple[int, int]:
        teams_by_project: dict[str, list[str]] = {}
        for row in store.query("SELECT project_id, team_key FROM project_teams"):
            teams_by_project.setdefault(row["project_id"], []).append(row["team_key"])

        removed = 0
        orphaned: list[str] = []
        with store.transaction() as conn:
            for project_id, keys in teams_by_project.items():
                out_of_scope = [key for key in keys if not self.includes_team(key)]
                if not out_of_scope:
                    continue
                placeholders = ",".join("?" * len(out_of_scope))
                cursor = conn.execute(
                    f"DELETE FROM project_teams WHERE project_id = ? AND team_key IN ({placeholders})",
                    (project_id, *out_of_scope),
                )
                removed += cursor.rowcount
                if len(out_of_scope) == len(keys):
                    orphaned.append(project_id)

        deleted = writer.delete_projects(orphaned) if orphaned else 0
        return removed, deleted


__all__ = ["CleanupResult", "TeamScope"]
