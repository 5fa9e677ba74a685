"""
Metrics snapshot capture.

After a successful sync the health pillars are computed at three levels
and appended to the ``metrics_snapshots`` table:

- org: everything in the store
- domain: the teams a configured domain maps to
- team: each team key referenced by a stored project

Snapshots are immutable; history is only ever appended to.

Usage:
    from flowpulse.core.snapshots.writer import SnapshotWriter

    result = SnapshotWriter(store, config.mapping).capture_all(now)
    print(f"Captured {result.total} snapshots")
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flowpulse.core.config.models import MappingConfig
from flowpulse.core.metrics.health import (
    engineers_for_teams,
    issues_for_teams,
    projects_for_teams,
    quality_health,
    team_health,
    velocity_health,
)
from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import (
    EngineerRecord,
    IssueRecord,
    MetricsSnapshot,
    ProjectRecord,
    SnapshotLevel,
)
from flowpulse.core.store.queries import (
    get_all_issues,
    get_all_projects,
    get_engineers,
    get_sync_metadata,
)
from flowpulse.core.store.writer import RecordWriter

logger = logging.getLogger(__name__)

# Version of the snapshot payload layout, stored on every row
SNAPSHOT_SCHEMA_VERSION = 1


@dataclass
class CaptureResult:
    """What one capture pass wrote."""

    org: bool = False
    domains: list[str] = field(default_factory=list)
    teams: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return int(self.org) + len(self.domains) + len(self.teams)


def build_payload(
    engineers: Sequence[EngineerRecord],
    projects: Sequence[ProjectRecord],
    issues: Sequence[IssueRecord],
    now: datetime,
    *,
    level: SnapshotLevel,
    level_id: str | None = None,
    synced_at: datetime | None = None,
    engineer_team_mapping: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Compute the pillar payload over already-scoped records.

    Returns:
        JSON-ready dict with ``team_health``, ``velocity_health``,
        ``quality`` and ``metadata`` sections
    """
    team = team_health(engineers, projects, engineer_team_mapping)
    velocity = velocity_health(projects)
    quality = quality_health(issues, now, engineer_count=max(1, team.total_ic_count))
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "team_health": team.model_dump(mode="json"),
        "velocity_health": velocity.model_dump(mode="json"),
        "quality": quality.model_dump(mode="json"),
        "metadata": {
            "captured_at": now.isoformat(),
            "synced_at": synced_at.isoformat() if synced_at else None,
            "level": level.value,
            "level_id": level_id,
        },
    }


class SnapshotWriter:
    """
    Appends metrics snapshots to the store.

    Example:
        >>> writer = SnapshotWriter(store)
        >>> writer.capture(SnapshotLevel.ORG, None, {"quality": {}}, now)
        1
    """

    def __init__(self, store: Store, mapping: MappingConfig | None = None) -> None:
        self.store = store
        self.mapping = mapping or MappingConfig()
        self._writer = RecordWriter(store)

    def capture(
        self,
        level: SnapshotLevel,
        level_id: str | None,
        payload: dict[str, Any],
        captured_at: datetime,
    ) -> int:
        """
        Append one snapshot row.

        Returns:
            The new row id
        """
        snapshot = MetricsSnapshot(
            captured_at=captured_at,
            schema_version=SNAPSHOT_SCHEMA_VERSION,
            level=level,
            level_id=level_id,
            payload=payload,
        )
        return self._writer.insert_snapshot(snapshot)

    def capture_all(self, now: datetime) -> CaptureResult:
        """
        Capture org, domain and team snapshots from the current store.

        Domain snapshots are only taken when a team-to-domain mapping is
        configured.

        Args:
            now: Capture time, also the reference time for the pillars

        Returns:
            CaptureResult listing the levels captured
        """
        engineers = get_engineers(self.store)
        projects = get_all_projects(self.store)
        issues = get_all_issues(self.store)
        synced_at = get_sync_metadata(self.store).last_sync_time
        engineer_mapping = self.mapping.engineer_team_mapping or None
        result = CaptureResult()

        payload = build_payload(
            engineers,
            projects,
            issues,
            now,
            level=SnapshotLevel.ORG,
            synced_at=synced_at,
            engineer_team_mapping=engineer_mapping,
        )
        self.capture(SnapshotLevel.ORG, None, payload, now)
        result.org = True

        domains = self.mapping.team_domain_mapping
        if domains:
            for domain, team_keys in sorted(domains.items()):
                self._capture_scoped(
                    SnapshotLevel.DOMAIN, domain, team_keys,
                    engineers, projects, issues, now, synced_at,
                )
                result.domains.append(domain)
        else:
            logger.debug("No domain mapping configured, skipping domain snapshots")

        team_keys = sorted({key for project in projects for key in project.teams})
        for key in team_keys:
            self._capture_scoped(
                SnapshotLevel.TEAM, key, [key],
                engineers, projects, issues, now, synced_at,
            )
            result.teams.append(key)

        logger.info(
            f"Captured snapshots: org, {len(result.domains)} domain(s), {len(result.teams)} team(s)"
        )
        return result

    def _capture_scoped(
        self,
        level: SnapshotLevel,
        level_id: str,
        team_keys: Sequence[str],
        engineers: Sequence[EngineerRecord],
        projects: Sequence[ProjectRecord],
        issues: Sequence[IssueRecord],
        now: datetime,
        synced_at: datetime | None,
    ) -> None:
        engineer_mapping = self.mapping.engineer_team_mapping or None
        payload = build_payload(
            engineers_for_teams(engineers, team_keys, engineer_mapping),
            projects_for_teams(projects, team_keys),
            issues_for_teams(issues, team_keys),
            now,
            level=level,
            level_id=level_id,
            synced_at=synced_at,
            engineer_team_mapping=engineer_mapping,
        )
        self.capture(level, level_id, payload, now)
