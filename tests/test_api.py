"""
Tests for the HTTP API.

Tests validate:
- GET /health
- Sync control routes under /api/sync
- Metrics routes under /api/metrics
- The standard error response format
"""

import pytest
from conftest import NOW
from fastapi.testclient import TestClient

from flowpulse.api.app import app
from flowpulse.api.deps import get_service
from flowpulse.core.snapshots.writer import SnapshotWriter
from flowpulse.core.store.models import SnapshotLevel, SyncStatus
from flowpulse.core.store.writer import RecordWriter
from flowpulse.core.sync.service import SyncService


@pytest.fixture
def service(store, client, config, fake_linear) -> SyncService:
    fake_linear.project("proj-1")
    fake_linear.issue("a1")
    return SyncService(store, client, config, clock=lambda: NOW)


@pytest.fixture
def api(service):
    """TestClient wired to the test service."""
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def mark_syncing(service: SyncService) -> None:
    RecordWriter(service.store).update_sync_metadata(status=SyncStatus.SYNCING)


class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_health_endpoint(self, api):
        """Test GET /health returns healthy status."""
        response = api.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestSyncEndpoints:
    """Tests for the /api/sync routes."""

    def test_status(self, api):
        """Test GET /api/sync/status on a fresh store."""
        response = api.get("/api/sync/status")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "idle"
        assert data["schema_ok"] is True
        assert data["resumable"] is False

    def test_trigger_quick_sync(self, api):
        """Test POST /api/sync runs a sync in the background."""
        response = api.post("/api/sync", params={"quick": True})
        assert response.status_code == 202
        assert response.json() == {"status": "started", "mode": "quick"}

        status = api.get("/api/sync/status").json()
        assert status["status"] == "idle"
        assert status["last_sync_time"] is not None

    def test_trigger_conflict(self, api, service):
        """Test POST /api/sync returns 409 while a sync is running."""
        mark_syncing(service)

        response = api.post("/api/sync")
        assert response.status_code == 409
        data = response.json()
        assert data["error_code"] == "CONFLICT"
        assert "in progress" in data["message"]

    def test_trigger_force(self, api, service):
        """Test POST /api/sync?force=true clears a stale status."""
        mark_syncing(service)

        response = api.post("/api/sync", params={"force": True, "quick": True})
        assert response.status_code == 202
        assert api.get("/api/sync/status").json()["status"] == "idle"

    def test_stop_when_idle(self, api):
        """Test POST /api/sync/stop with nothing running."""
        response = api.post("/api/sync/stop")
        assert response.status_code == 202
        assert response.json() == {"status": "idle"}

    def test_reset(self, api):
        """Test POST /api/sync/reset recreates the store."""
        response = api.post("/api/sync/reset")
        assert response.status_code == 200
        assert response.json() == {"status": "reset"}

    def test_reset_conflict(self, api, service):
        """Test POST /api/sync/reset is refused while syncing."""
        mark_syncing(service)

        response = api.post("/api/sync/reset")
        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

    def test_sync_project(self, api):
        """Test POST /api/sync/projects/{id} refreshes one project."""
        response = api.post("/api/sync/projects/proj-1")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["project_count"] == 1

    def test_sync_project_upstream_failure(self, api, fake_linear):
        """Test a failed project refresh maps to 502."""
        fake_linear.fail_on("ProjectIssues")

        response = api.post("/api/sync/projects/proj-1")
        assert response.status_code == 502
        data = response.json()
        assert data["error_code"] == "UPSTREAM_ERROR"
        assert "Project sync failed" in data["message"]


class TestMetricsEndpoints:
    """Tests for the /api/metrics routes."""

    def test_trends(self, api):
        """Test GET /api/metrics/trends reports every pillar metric."""
        response = api.get("/api/metrics/trends")
        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"wip_health", "project_health", "quality"}
        assert data["quality"]["week"]["has_enough_data"] is False

    def test_trends_requires_level_id(self, api):
        """Test team trends without a team key is rejected."""
        response = api.get("/api/metrics/trends", params={"level": "team"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_REQUEST"

    def test_trends_org_rejects_level_id(self, api):
        """Test org trends with a level id is rejected."""
        response = api.get("/api/metrics/trends", params={"level": "org", "level_id": "ENG"})
        assert response.status_code == 400

    def test_trends_invalid_level(self, api):
        """Test an unknown level fails validation."""
        response = api.get("/api/metrics/trends", params={"level": "galaxy"})
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_latest_without_snapshots(self, api):
        """Test GET /api/metrics/latest before anything was captured."""
        response = api.get("/api/metrics/latest")
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_latest(self, api, service):
        """Test GET /api/metrics/latest returns the newest snapshot."""
        writer = SnapshotWriter(service.store)
        writer.capture(SnapshotLevel.TEAM, "ENG", {"n": 1}, NOW)
        writer.capture(SnapshotLevel.TEAM, "ENG", {"n": 2}, NOW)

        response = api.get("/api/metrics/latest", params={"level": "team", "level_id": "ENG"})
        assert response.status_code == 200
        data = response.json()
        assert data["level"] == "team"
        assert data["payload"] == {"n": 2}
