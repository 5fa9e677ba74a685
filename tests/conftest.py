"""
Pytest configuration and shared fixtures.

Provides a temporary store, a fixed reference time, issue factories and a
fake Linear GraphQL API served through ``httpx.MockTransport``.
"""

import json
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from flowpulse.core.config import clear_cache
from flowpulse.core.config.models import FlowPulseConfig
from flowpulse.core.linear.backoff import ExponentialBackoff
from flowpulse.core.linear.client import LinearClient
from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import IssueRecord, StateType

# Wednesday; the last business day starts Tuesday 2026-03-10 00:00 UTC
NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)

STATE_NAMES = {
    "triage": "Triage",
    "backlog": "Backlog",
    "unstarted": "Todo",
    "started": "In Progress",
    "completed": "Done",
    "canceled": "Canceled",
}


def iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment else None


def day(moment: datetime | None) -> str | None:
    """Date-only form Linear uses for targetDate and startDate."""
    return moment.date().isoformat() if moment else None


# ==============================================================================
# Environment
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep tests away from real config, .env files and Linear settings."""
    for name in (
        "LINEAR_API_KEY",
        "WHITELIST_TEAM_KEYS",
        "IGNORED_TEAM_KEYS",
        "IGNORED_ASSIGNEE_NAMES",
        "ENGINEER_TEAM_MAPPING",
        "TEAM_DOMAIN_MAPPINGS",
        "LIMIT_SYNC",
        "FLOWPULSE_DB_PATH",
        "FLOWPULSE_SYNC_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for metrics."""
    return NOW


# ==============================================================================
# Store Fixtures
# ==============================================================================


@pytest.fixture
def store(tmp_path) -> Iterator[Store]:
    """Provide an open, migrated store in a temp directory."""
    with Store(tmp_path / "flowpulse.db") as opened:
        yield opened


# ==============================================================================
# Record Factories
# ==============================================================================


@pytest.fixture
def make_issue() -> Callable[..., IssueRecord]:
    """
    Factory for IssueRecord instances.

    Defaults to a started, estimated, prioritized ENG issue with a fresh
    comment, created a week before NOW.
    """
    counter = {"n": 0}

    def factory(**overrides: Any) -> IssueRecord:
        counter["n"] += 1
        n = counter["n"]
        state_type = StateType(overrides.pop("state_type", StateType.STARTED))
        data: dict[str, Any] = {
            "id": f"issue-{n}",
            "identifier": f"ENG-{n}",
            "title": f"Issue {n}",
            "description": "Something to do",
            "team_id": "team-eng",
            "team_key": "ENG",
            "team_name": "Engineering",
            "state_name": STATE_NAMES[state_type.value],
            "state_type": state_type,
            "assignee_id": "user-alice",
            "assignee_name": "Alice",
            "estimate": 2.0,
            "priority": 2,
            "created_at": NOW - timedelta(days=7),
            "updated_at": NOW - timedelta(hours=1),
            "started_at": NOW - timedelta(days=3) if state_type == StateType.STARTED else None,
            "last_comment_at": NOW - timedelta(hours=2),
            "project_id": "proj-1",
            "project_name": "Project One",
            "project_state": "started",
        }
        data.update(overrides)
        return IssueRecord(**data)

    return factory


# ==============================================================================
# Fake Linear API
# ==============================================================================


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _connection(nodes: list[dict[str, Any]], variables: dict[str, Any]) -> dict[str, Any]:
    start = int(variables.get("after") or 0)
    size = int(variables.get("first") or 50)
    page = nodes[start : start + size]
    end = start + len(page)
    has_more = end < len(nodes)
    return {
        "nodes": page,
        "pageInfo": {"hasNextPage": has_more, "endCursor": str(end) if has_more else None},
    }


class FakeLinear:
    """
    In-memory Linear GraphQL API.

    Requests are dispatched on the operation name. Queued failures are
    returned before any normal response; ``fail_on`` rules fail every
    matching request of one operation until cleared.
    """

    def __init__(self) -> None:
        self.issues: list[dict[str, Any]] = []
        self.projects: dict[str, dict[str, Any]] = {}
        self.initiatives: list[dict[str, Any]] = []
        self.initiative_updates: dict[str, list[dict[str, Any]]] = {}
        self.failures: list[httpx.Response] = []
        self.rules: list[tuple[str, dict[str, Any], httpx.Response]] = []
        self.requests: list[tuple[str, dict[str, Any]]] = []
        self.connected = True

    # -- data helpers ----------------------------------------------------

    def issue(
        self,
        issue_id: str,
        *,
        state: str = "started",
        team: str = "ENG",
        project: str | None = "proj-1",
        assignee: str | None = "Alice",
        estimate: float | None = 2,
        priority: int = 2,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        started_at: datetime | None = None,
        completed_at: datetime | None = None,
        parent: str | None = None,
        comments: list[datetime] | None = None,
        labels: list[str] | None = None,
        description: str | None = "Details",
    ) -> dict[str, Any]:
        """Add a GraphQL issue node and return it."""
        created_at = created_at or NOW - timedelta(days=7)
        if state == "started" and started_at is None:
            started_at = NOW - timedelta(days=2)
        if state == "completed" and completed_at is None:
            completed_at = NOW - timedelta(days=1)
        project_node = self.projects.get(project or "", {})
        node = {
            "id": issue_id,
            "identifier": f"{team}-{len(self.issues) + 1}",
            "title": f"Issue {issue_id}",
            "description": description,
            "priority": priority,
            "estimate": estimate,
            "url": f"https://linear.app/acme/issue/{issue_id}",
            "createdAt": iso(created_at),
            "updatedAt": iso(updated_at or NOW - timedelta(hours=1)),
            "startedAt": iso(started_at),
            "completedAt": iso(completed_at),
            "canceledAt": None,
            "parent": {"id": parent} if parent else None,
            "comments": {
                "nodes": [{"createdAt": iso(c)} for c in comments or [NOW - timedelta(hours=3)]],
                "pageInfo": {"hasNextPage": False},
            },
            "labels": {"nodes": [{"name": name} for name in labels or []]},
            "team": {"id": f"team-{team.lower()}", "name": f"Team {team}", "key": team},
            "state": {"id": f"state-{state}", "name": STATE_NAMES[state], "type": state},
            "assignee": {"id": f"user-{assignee.lower()}", "name": assignee, "avatarUrl": None}
            if assignee
            else None,
            "creator": {"id": "user-creator", "name": "Creator"},
            "project": {
                "id": project,
                "name": project_node.get("name", f"Project {project}"),
                "state": project_node.get("state", "started"),
                "health": project_node.get("health"),
                "updatedAt": iso(NOW - timedelta(days=1)),
                "targetDate": project_node.get("targetDate"),
                "startDate": project_node.get("startDate"),
                "completedAt": project_node.get("completedAt"),
                "lead": project_node.get("lead"),
            }
            if project
            else None,
        }
        self.issues.append(node)
        return node

    def project(
        self,
        project_id: str,
        *,
        name: str | None = None,
        state: str = "started",
        teams: list[str] | None = None,
        health: str | None = "onTrack",
        lead: str | None = "Lead",
        updates: list[datetime] | None = None,
        completed_at: datetime | None = None,
        target_date: datetime | None = None,
        start_date: datetime | None = None,
    ) -> dict[str, Any]:
        """Add a GraphQL project node and return it."""
        node = {
            "id": project_id,
            "name": name or f"Project {project_id}",
            "state": state,
            "status": {"name": state.title()},
            "health": health,
            "description": "Project description",
            "content": "Project content",
            "targetDate": day(target_date),
            "startDate": day(start_date or NOW - timedelta(days=30)),
            "completedAt": iso(completed_at),
            "canceledAt": None,
            "updatedAt": iso(NOW - timedelta(days=1)),
            "lead": {"id": f"user-{lead.lower()}", "name": lead, "avatarUrl": None} if lead else None,
            "labels": {"nodes": [{"name": "Platform"}]},
            "teams": {"nodes": [{"key": key} for key in teams or ["ENG"]]},
            "projectUpdates": {
                "nodes": [
                    {
                        "id": f"{project_id}-update-{i}",
                        "createdAt": iso(at),
                        "updatedAt": iso(at),
                        "body": "On track",
                        "health": "onTrack",
                    }
                    for i, at in enumerate(updates or [NOW - timedelta(days=2)])
                ]
            },
        }
        self.projects[project_id] = node
        return node

    def initiative(
        self, initiative_id: str, project_ids: list[str], *, name: str | None = None
    ) -> dict[str, Any]:
        """Add a GraphQL initiative node and return it."""
        node = {
            "id": initiative_id,
            "name": name or f"Initiative {initiative_id}",
            "description": None,
            "content": None,
            "status": "Active",
            "targetDate": None,
            "startedAt": iso(NOW - timedelta(days=60)),
            "completedAt": None,
            "archivedAt": None,
            "health": "atRisk",
            "healthUpdatedAt": iso(NOW - timedelta(days=3)),
            "createdAt": iso(NOW - timedelta(days=90)),
            "updatedAt": iso(NOW - timedelta(days=3)),
            "owner": {"id": "user-owner", "name": "Owner"},
            "projects": {"nodes": [{"id": pid} for pid in project_ids]},
        }
        self.initiatives.append(node)
        self.initiative_updates[initiative_id] = [
            {
                "id": f"{initiative_id}-update",
                "createdAt": iso(NOW - timedelta(days=3)),
                "updatedAt": None,
                "body": "Slipping",
                "health": "atRisk",
            }
        ]
        return node

    # -- failure helpers -------------------------------------------------

    def fail_next(self, status_code: int = 500, payload: dict[str, Any] | None = None, times: int = 1) -> None:
        for _ in range(times):
            self.failures.append(httpx.Response(status_code, json=payload or {"errors": []}))

    def fail_on(
        self,
        operation: str,
        status_code: int = 400,
        payload: dict[str, Any] | None = None,
        **match: Any,
    ) -> None:
        """Fail every request of ``operation`` whose variables include ``match``."""
        response = httpx.Response(status_code, json=payload or {"errors": [{"message": "boom"}]})
        self.rules.append((operation, match, response))

    def clear_failures(self) -> None:
        self.failures.clear()
        self.rules.clear()

    def operations(self) -> list[str]:
        return [name for name, _ in self.requests]

    # -- transport -------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        query: str = payload["query"]
        variables: dict[str, Any] = payload.get("variables") or {}
        operation = query.split("query", 1)[1].strip().split("(")[0].split("{")[0].strip()
        self.requests.append((operation, variables))

        if self.failures:
            return self.failures.pop(0)
        for name, match, response in self.rules:
            if name == operation and all(variables.get(k) == v for k, v in match.items()):
                return response
        return httpx.Response(200, json={"data": self._data(operation, variables)})

    def _data(self, operation: str, variables: dict[str, Any]) -> dict[str, Any]:
        if operation == "Viewer":
            return {"viewer": {"id": "user-me", "name": "Me"} if self.connected else None}
        if operation == "StartedIssues":
            nodes = [n for n in self.issues if n["state"]["type"] == "started"]
            return {"issues": _connection(nodes, variables)}
        if operation == "RecentlyUpdatedIssues":
            since = _parse(variables["since"])
            nodes = [n for n in self.issues if _parse(n["updatedAt"]) >= since]
            return {"issues": _connection(nodes, variables)}
        if operation == "ProjectIssues":
            nodes = [
                n for n in self.issues
                if n["project"] and n["project"]["id"] == variables["projectId"]
            ]
            return {"issues": _connection(nodes, variables)}
        if operation == "ProjectsByState":
            nodes = [p for p in self.projects.values() if p["state"] in variables["states"]]
            return {"projects": _connection(nodes, variables)}
        if operation == "ProjectDetails":
            return {"project": self.projects.get(variables["projectId"])}
        if operation == "Initiatives":
            return {"initiatives": _connection(self.initiatives, variables)}
        if operation == "InitiativeUpdates":
            updates = self.initiative_updates.get(variables["initiativeId"], [])
            return {
                "initiative": {
                    "id": variables["initiativeId"],
                    "initiativeUpdates": {"nodes": updates},
                }
            }
        raise AssertionError(f"Unexpected operation {operation}")


@pytest.fixture
def fake_linear() -> FakeLinear:
    """Provide an empty fake Linear API."""
    return FakeLinear()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays the client would have slept for."""
    return []


@pytest.fixture
def make_client(fake_linear, sleeps) -> Iterator[Callable[..., LinearClient]]:
    """Factory for LinearClient instances wired to the fake API."""
    clients: list[LinearClient] = []

    def factory(**kwargs: Any) -> LinearClient:
        kwargs.setdefault("backoff", ExponentialBackoff(initial_delay=0.01, max_delay=0.1))
        kwargs.setdefault("max_retries", 3)
        client = LinearClient(
            "lin_api_test",
            transport=httpx.MockTransport(fake_linear.handler),
            sleep=sleeps.append,
            **kwargs,
        )
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture
def client(make_client) -> LinearClient:
    """LinearClient on the fake API with default settings."""
    return make_client()


@pytest.fixture
def config(tmp_path) -> FlowPulseConfig:
    """Default configuration with the store in a temp directory."""
    return FlowPulseConfig(sync={"db_path": tmp_path / "flowpulse.db"})
