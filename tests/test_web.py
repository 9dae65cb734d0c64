"""Tests for the FastAPI status API."""

import pytest
from fastapi.testclient import TestClient

from companion_sync import web
from companion_sync.sync.config import SyncConfig
from companion_sync.sync.health_log import IntegrationHealthLog
from companion_sync.sync.registry import UserSyncRegistry


@pytest.fixture
def registry(db, monkeypatch):
    # The lifespan is not run; the test registry is injected directly
    sync_registry = UserSyncRegistry(db, SyncConfig())
    monkeypatch.setattr(web, "registry", sync_registry)
    return sync_registry


@pytest.fixture
def client():
    return TestClient(web.app)


def test_health_without_sync_system(client, monkeypatch):
    monkeypatch.setattr(web, "registry", None)

    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["sync_system"] == "disabled"
    assert data["active_users"] == 0


def test_routes_return_503_without_registry(client, monkeypatch):
    monkeypatch.setattr(web, "registry", None)

    assert client.get("/api/sync/user-1/status").status_code == 503
    assert client.post("/api/sync/user-1/canvas").status_code == 503
    assert client.get("/api/integrations/health").status_code == 503


def test_health_counts_active_users(client, registry):
    registry.get("user-1")

    data = client.get("/health").json()

    assert data["sync_system"] == "enabled"
    assert data["active_users"] == 1
    assert data["version"] == "1.0.0"


def test_sync_status(client, registry, db):
    db.set_user_connection("user-1", "canvas", {"base_url": "https://canvas.example.edu", "token": "t"})

    response = client.get("/api/sync/user-1/status")

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == "user-1"
    assert set(data["integrations"]) == {"canvas", "blackboard", "teams", "tp", "timeedit", "github"}
    assert data["integrations"]["canvas"]["configured"] is True
    assert data["integrations"]["teams"]["configured"] is False
    assert data["integrations"]["canvas"]["auto_healing"]["state"] == "closed"
    assert "timestamp" in data


def test_read_routes_do_not_register_unknown_users(client, registry):
    registry.get("user-1")

    status = client.get("/api/sync/stranger/status")
    recovery = client.get("/api/sync/someone-else/recovery")

    assert status.status_code == 404
    assert status.json()["detail"] == "Unknown user: stranger"
    assert recovery.status_code == 404
    assert registry.users() == ["user-1"]
    assert client.get("/health").json()["active_users"] == 1


def test_status_builds_bundle_for_connected_user(client, registry, db):
    db.set_user_connection("user-2", "tp", {"ical_url": "https://tp.example.edu/ical/abc"})

    assert registry.find("user-2") is None
    assert client.get("/api/sync/user-2/status").status_code == 200
    assert registry.find("user-2") is registry.get("user-2")


def test_trigger_unknown_integration(client, registry):
    response = client.post("/api/sync/user-1/moodle")

    assert response.status_code == 404
    assert "moodle" in response.json()["detail"]


def test_trigger_unconfigured_integration(client, registry, db):
    response = client.post("/api/sync/user-1/teams")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["error"] == "Teams not configured"
    assert db.get_integration_sync_attempts(user_id="user-1") == []


def test_open_circuit_rejects_unforced_trigger(client, registry):
    policy = registry.get("user-1").service("canvas").policy
    for _ in range(SyncConfig().auto_healing_for("canvas").circuit_failure_threshold):
        policy.record_failure("canvas request failed: 503 Service Unavailable")

    rejected = client.post("/api/sync/user-1/canvas", params={"force": "false"})

    assert rejected.status_code == 409
    detail = rejected.json()["detail"]
    assert detail["error_code"] == "circuit_open"
    assert detail["details"]["integration"] == "canvas"

    forced = client.post("/api/sync/user-1/canvas")
    assert forced.status_code == 200
    assert forced.json()["error"] == "Canvas not configured"


def test_recovery_snapshot(client, registry):
    tracker = registry.get("user-1").recovery_tracker
    for _ in range(3):
        tracker.record_failure("teams", "teams request failed: 401 Unauthorized")

    data = client.get("/api/sync/user-1/recovery").json()

    assert [prompt["integration"] for prompt in data["prompts"]] == ["teams"]
    assert data["prompts"][0]["root_cause"] == "auth"
    assert data["prompts"][0]["severity"] == "high"
    assert data["integrations"][0]["consecutive_failures"] == 3


def test_integration_health_summary(client, registry, db):
    log = IntegrationHealthLog(db, "user-1")
    log.record_attempt("canvas", True, 100.0)
    log.record_attempt("canvas", False, 50.0, "Connection timed out")
    IntegrationHealthLog(db, "user-2").record_attempt("tp", True, 20.0)

    everyone = client.get("/api/integrations/health", params={"hours": 1}).json()
    assert everyone["totals"]["attempts"] == 3
    assert [entry["integration"] for entry in everyone["integrations"]] == ["canvas", "tp"]

    one_user = client.get("/api/integrations/health", params={"user_id": "user-1"}).json()
    canvas = one_user["integrations"][0]
    assert canvas["success_rate"] == 0.5
    assert canvas["failures_by_root_cause"]["network"] == 1


def test_integration_health_rejects_bad_window(client, registry):
    assert client.get("/api/integrations/health", params={"hours": 0}).status_code == 422
