"""
Models for data returned by the Linear API.

GraphQL nodes are mapped here into flowpulse types: issues become
``IssueRecord`` rows directly, project and initiative payloads become the
intermediate models below which the sync phases turn into store records.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import Field

from flowpulse.core.store.models import IssueRecord, ProjectHealth, StatusUpdate, UTCModel

logger = logging.getLogger(__name__)


def _names(connection: dict[str, Any] | None, field: str = "name") -> list[str]:
    if not connection:
        return []
    return [node[field] for node in connection.get("nodes") or [] if node.get(field)]


def _health(value: Any) -> ProjectHealth | None:
    if not value:
        return None
    try:
        return ProjectHealth(value)
    except ValueError:
        logger.debug(f"Unknown health value {value!r}, treating as unset")
        return None


def _updates(connection: dict[str, Any] | None) -> list[StatusUpdate]:
    if not connection:
        return []
    updates = [
        StatusUpdate(
            id=node["id"],
            created_at=node["createdAt"],
            updated_at=node.get("updatedAt"),
            body=node.get("body"),
            health=_health(node.get("health")),
        )
        for node in connection.get("nodes") or []
    ]
    return sorted(updates, key=lambda update: update.created_at, reverse=True)


def issue_from_node(node: dict[str, Any]) -> IssueRecord | None:
    """
    Map a GraphQL issue node to an IssueRecord.

    Nodes without a team or a workflow state are skipped (returns None).
    An estimate of 0 stays 0; only a missing estimate becomes None.
    """
    team = node.get("team")
    state = node.get("state")
    if not team or not state:
        logger.debug(f"Skipping issue {node.get('identifier')}: missing team or state")
        return None

    comments = node.get("comments") or {}
    comment_times = [c["createdAt"] for c in comments.get("nodes") or [] if c.get("createdAt")]
    has_more_comments = bool((comments.get("pageInfo") or {}).get("hasNextPage"))

    assignee = node.get("assignee") or {}
    creator = node.get("creator") or {}
    parent = node.get("parent") or {}
    project = node.get("project") or {}
    lead = project.get("lead") or {}

    return IssueRecord(
        id=node["id"],
        identifier=node["identifier"],
        title=node.get("title") or "",
        description=node.get("description") or None,
        url=node.get("url"),
        team_id=team["id"],
        team_key=team["key"],
        team_name=team["name"],
        state_id=state.get("id"),
        state_name=state["name"],
        state_type=state["type"],
        assignee_id=assignee.get("id"),
        assignee_name=assignee.get("name"),
        assignee_avatar_url=assignee.get("avatarUrl"),
        creator_id=creator.get("id"),
        creator_name=creator.get("name"),
        estimate=node.get("estimate"),
        priority=node.get("priority") or 0,
        created_at=node["createdAt"],
        updated_at=node["updatedAt"],
        started_at=node.get("startedAt"),
        completed_at=node.get("completedAt"),
        canceled_at=node.get("canceledAt"),
        parent_id=parent.get("id"),
        last_comment_at=max(comment_times) if comment_times else None,
        comment_count=None if has_more_comments else len(comment_times),
        project_id=project.get("id"),
        project_name=project.get("name"),
        project_state=project.get("state"),
        project_health=_health(project.get("health")),
        project_lead_id=lead.get("id"),
        project_lead_name=lead.get("name"),
        project_updated_at=project.get("updatedAt"),
        project_target_date=project.get("targetDate"),
        project_start_date=project.get("startDate"),
        project_completed_at=project.get("completedAt"),
        labels=_names(node.get("labels")),
    )


class ProjectSummary(UTCModel):
    """A project as listed by state, used for phase discovery."""

    id: str
    name: str | None = None
    state: str | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    canceled_at: datetime | None = None

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> ProjectSummary:
        return cls(
            id=node["id"],
            name=node.get("name"),
            state=node.get("state"),
            updated_at=node.get("updatedAt"),
            completed_at=node.get("completedAt"),
            canceled_at=node.get("canceledAt"),
        )


class ProjectDetails(UTCModel):
    """Everything fetched for one project beyond what its issues carry."""

    id: str
    name: str
    state: str | None = None
    status: str | None = None
    health: ProjectHealth | None = None
    lead_id: str | None = None
    lead_name: str | None = None
    lead_avatar_url: str | None = None
    description: str | None = None
    content: str | None = None
    target_date: datetime | None = None
    start_date: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None
    labels: list[str] = Field(default_factory=list)
    team_keys: list[str] = Field(default_factory=list)
    updates: list[StatusUpdate] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> ProjectDetails:
        lead = node.get("lead") or {}
        status = node.get("status") or {}
        return cls(
            id=node["id"],
            name=node.get("name") or "Unknown Project",
            state=node.get("state"),
            status=status.get("name"),
            health=_health(node.get("health")),
            lead_id=lead.get("id"),
            lead_name=lead.get("name"),
            lead_avatar_url=lead.get("avatarUrl"),
            description=node.get("description") or None,
            content=node.get("content") or None,
            target_date=node.get("targetDate"),
            start_date=node.get("startDate"),
            completed_at=node.get("completedAt"),
            updated_at=node.get("updatedAt"),
            labels=_names(node.get("labels")),
            team_keys=_names(node.get("teams"), field="key"),
            updates=_updates(node.get("projectUpdates")),
        )


class InitiativeData(UTCModel):
    """An initiative as listed by the API, before its updates are fetched."""

    id: str
    name: str
    description: str | None = None
    content: str | None = None
    status: str | None = None
    target_date: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    archived_at: datetime | None = None
    health: ProjectHealth | None = None
    health_updated_at: datetime | None = None
    owner_id: str | None = None
    owner_name: str | None = None
    project_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> InitiativeData:
        owner = node.get("owner") or {}
        return cls(
            id=node["id"],
            name=node.get("name") or "Unnamed Initiative",
            description=node.get("description") or None,
            content=node.get("content") or None,
            status=node.get("status"),
            target_date=node.get("targetDate"),
            started_at=node.get("startedAt"),
            completed_at=node.get("completedAt"),
            archived_at=node.get("archivedAt"),
            health=_health(node.get("health")),
            health_updated_at=node.get("healthUpdatedAt"),
            owner_id=owner.get("id"),
            owner_name=owner.get("name"),
            project_ids=_names(node.get("projects"), field="id"),
            created_at=node.get("createdAt"),
            updated_at=node.get("updatedAt"),
        )


def updates_from_connection(connection: dict[str, Any] | None) -> list[StatusUpdate]:
    """Map a ``nodes`` connection of status posts, newest first."""
    return _updates(connection)
