"""Tests for the FastAPI layer: routing, actor headers and error mapping."""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from modguard.config import ModerationConfig
from modguard.engine import ModerationEngine
from web.backend.app.main import app
from web.backend.app.middleware.actor import get_engine

from engine_support import make_engine

MOD = {"X-Actor-Id": "mod-1"}
ADMIN = {"X-Actor-Id": "root", "X-Actor-Role": "admin"}


@pytest.fixture
def engine():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir, {"bring the rifle tonight": 0.9, "see you": 0.05})
        app.dependency_overrides[get_engine] = lambda: engine
        yield engine
        app.dependency_overrides.clear()


@pytest.fixture
def client(engine):
    return TestClient(app)


def _seed(client: TestClient):
    client.post(
        "/api/moderation/conversations",
        json={"id": "conv-1", "conversation_type": "secret", "participant_ids": ["alice", "bob"]},
    )
    client.post(
        "/api/moderation/messages",
        json={"id": "m1", "conversation_id": "conv-1", "sender_id": "alice", "content": "bring the rifle tonight"},
    )
    client.post(
        "/api/moderation/messages",
        json={"id": "m2", "conversation_id": "conv-1", "sender_id": "bob", "content": "see you"},
    )


# --- Meta Tests ---


def test_health_and_root(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["name"] == "modguard API"


# --- Error Mapping Tests ---


def test_missing_actor_is_unauthorized(client):
    _seed(client)
    resp = client.post("/api/moderation/content", json={"message_id": "m1"})
    assert resp.status_code == 401


def test_unknown_role_is_bad_request(client):
    resp = client.post(
        "/api/moderation/content",
        json={"message_id": "m1"},
        headers={"X-Actor-Id": "x", "X-Actor-Role": "overlord"},
    )
    assert resp.status_code == 400


def test_not_found_maps_to_404(client):
    resp = client.get("/api/moderation/flags/nope")
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "not_found"
    assert "nope" in body["detail"]


def test_validation_maps_to_400(client):
    _seed(client)
    resp = client.post("/api/moderation/content", json={"message_id": "m1", "analysis_type": "video"}, headers=MOD)
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_conflict_maps_to_409(client):
    _seed(client)
    flag = client.post("/api/moderation/content", json={"message_id": "m1"}, headers=MOD).json()
    client.post(f"/api/moderation/flags/{flag['id']}/review", json={"decision": "confirmed"}, headers=MOD)

    resp = client.post(
        f"/api/moderation/flags/{flag['id']}/review",
        json={"decision": "resolved", "expected_version": flag["version"]},
        headers=MOD,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "conflict"


def test_policy_violation_maps_to_403(client):
    _seed(client)
    outcome = client.post(
        "/api/enforcement/emergency-block", json={"message_id": "m1", "reason": "threat"}, headers=MOD
    ).json()

    resp = client.post(
        f"/api/enforcement/suspensions/{outcome['suspension_id']}/lift", json={}, headers={"X-Actor-Id": "mod-2"}
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "policy_violation"

    resp = client.post(f"/api/enforcement/suspensions/{outcome['suspension_id']}/lift", json={}, headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False


def test_gateway_outage_maps_to_503(client):
    _seed(client)
    flag = client.post("/api/moderation/content", json={"message_id": "m1"}, headers=MOD).json()
    report = client.post("/api/cases/reports", json={"flag_id": flag["id"]}, headers=MOD).json()

    resp = client.post(f"/api/cases/reports/{report['case_id']}/submit", headers=MOD)
    assert resp.status_code == 503
    assert resp.json()["error"] == "gateway_not_configured"


# --- Workflow Tests ---


def test_submit_review_and_list(client, engine):
    _seed(client)
    resp = client.post("/api/moderation/content", json={"message_id": "m1"}, headers=MOD)
    assert resp.status_code == 201
    flag = resp.json()
    assert flag["severity"] == "critical"
    assert flag["escalated"] is True

    resp = client.post(
        f"/api/moderation/flags/{flag['id']}/review",
        json={"decision": "confirmed", "moderation_action": "hide_message", "notes": "clear threat"},
        headers=MOD,
    )
    assert resp.status_code == 200
    assert resp.json()["action"]["message_hidden"] is True
    assert engine.store.messages.get("m1").is_hidden

    page = client.get("/api/moderation/flags", params={"status": "confirmed"}).json()
    assert page["total"] == 1
    assert page["items"][0]["reviewed_by"] == "mod-1"


def test_suspension_and_capability(client):
    resp = client.post(
        "/api/enforcement/suspensions",
        json={"user_id": "alice", "reason": "spam", "severity": "minor", "duration_hours": 2},
        headers=MOD,
    )
    assert resp.status_code == 201
    assert resp.json()["type"] == "temporary_ban"

    cap = client.get("/api/enforcement/users/alice/capabilities/can_send_messages").json()
    assert cap["allowed"] is False
    cap = client.get("/api/enforcement/users/bob/capabilities/can_send_messages").json()
    assert cap["allowed"] is True


def test_screenshot_endpoint(client, engine):
    _seed(client)
    resp = client.post("/api/privacy/screenshots", json={"conversation_id": "conv-1", "user_id": "bob"})
    assert resp.status_code == 200
    assert resp.json()["blocked"] is True
    assert engine.suspensions.list_suspensions("bob") == []

    check = client.post(
        "/api/privacy/secret-actions/validate",
        json={"conversation_id": "conv-1", "action_type": "copy", "user_id": "alice"},
    ).json()
    assert check["allowed"] is False


def test_cleanup_dry_run_endpoint(client, engine):
    _seed(client)
    client.post(
        "/api/moderation/messages",
        json={
            "id": "old",
            "conversation_id": "conv-1",
            "sender_id": "bob",
            "content": "x",
            "auto_delete_at": "2026-01-01T00:00:00+00:00",
        },
    )
    resp = client.post("/api/maintenance/cleanup", json={"cleanup_type": "expired_messages", "dry_run": True}, headers=MOD)
    assert resp.status_code == 200
    assert resp.json()["would_delete"] == 1
    assert not engine.store.messages.get("old").is_deleted

    resp = client.post(
        "/api/maintenance/cleanup",
        json={"cleanup_type": "old_logs", "criteria": {"retention_days": "ninety"}},
        headers=MOD,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_alert_lifecycle_endpoints(client):
    _seed(client)
    client.post("/api/moderation/content", json={"message_id": "m1"}, headers=MOD)
    alert = client.get("/api/security/alerts").json()[0]

    resp = client.post(f"/api/security/alerts/{alert['id']}/acknowledge", headers=MOD)
    assert resp.json()["status"] == "investigating"
    resp = client.post(f"/api/security/alerts/{alert['id']}/dismiss", json={"reason": "drill"}, headers=MOD)
    assert resp.json()["status"] == "dismissed"
    resp = client.post(f"/api/security/alerts/{alert['id']}/acknowledge", headers=MOD)
    assert resp.status_code == 409


def test_audit_endpoints(client):
    _seed(client)
    client.post("/api/moderation/content", json={"message_id": "m2"}, headers=MOD)
    events = client.get("/api/security/audit", params={"action": "analyze_content"}).json()
    assert len(events) == 1
    assert events[0]["actor"] == "mod-1"

    resp = client.get("/api/security/audit/bogus_field/x")
    assert resp.status_code == 400


def test_threat_endpoints(client):
    resp = client.post(
        "/api/moderation/threats",
        json={"threat_type": "weapons_terms", "category": "keyword", "patterns": ["rifle"], "severity": "high"},
        headers=MOD,
    )
    assert resp.status_code == 201
    threat = resp.json()
    assert threat["threat_id"].startswith("threat_")
    assert threat["added_by"] == "mod-1"
    assert threat["patterns"][0]["value"] == "rifle"

    threat_id = threat["threat_id"]
    assert client.get(f"/api/moderation/threats/{threat_id}").json()["severity"] == "high"
    assert client.post(f"/api/moderation/threats/{threat_id}/verify", headers=ADMIN).json()["verified_by"] == "root"
    resp = client.patch(f"/api/moderation/threats/{threat_id}/active", json={"is_active": False}, headers=MOD)
    assert resp.json()["is_active"] is False
    assert client.get("/api/moderation/threats", params={"active_only": True}).json() == []

    events = client.get("/api/security/audit", params={"action": "update_threat_database"}).json()
    assert events[0]["category"] == "configuration_change"
    assert events[0]["target"]["threat_id"] == threat_id

    resp = client.post("/api/moderation/threats", json={"threat_type": "gossip", "patterns": ["x"]}, headers=MOD)
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"
    assert client.get("/api/moderation/threats/threat_missing").status_code == 404

def test_webhooks_disabled_returns_conflict(client):
    resp = client.post(
        "/api/security/webhooks", json={"url": "https://hooks.example/x", "categories": ["security_alert"]}, headers=ADMIN
    )
    assert resp.status_code == 409


def test_webhook_registration_with_real_notifier():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = ModerationEngine(ModerationConfig(base_dir=str(Path(tmpdir) / "modguard")))
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            client = TestClient(app)
            resp = client.post(
                "/api/security/webhooks",
                json={"url": "https://hooks.example/x", "categories": ["security_alert"], "name": "soc"},
                headers=ADMIN,
            )
            assert resp.status_code == 201
            listed = client.get("/api/security/webhooks").json()
            assert [w["name"] for w in listed] == ["soc"]
        finally:
            app.dependency_overrides.clear()
