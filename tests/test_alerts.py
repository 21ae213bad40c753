"""Tests for security alert creation, queries and lifecycle."""

import tempfile
from pathlib import Path

import httpx
import pytest

from modguard.alerts.manager import can_transition
from modguard.config import ModerationConfig
from modguard.engine import ModerationEngine
from modguard.errors import ConflictError, NotFoundError, ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity, AlertStatus
from modguard.notify.webhooks import NullNotifier, WebhookManager
from modguard.policy.engine import AlertSpec

from engine_support import make_engine


def _spec(severity=AlertSeverity.HIGH, category=AlertCategory.TERRORISM) -> AlertSpec:
    return AlertSpec(category=category, severity=severity, title="t", description="d")


# --- Creation Tests ---


def test_raise_alert_audits_and_notifies():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)

        alert = engine.alerts.raise_alert(_spec(), user_id="alice", conversation_id="conv-1", automatic=False, actor="mod")

        assert alert.id.startswith("ALERT_")
        assert alert.status == AlertStatus.ACTIVE
        assert alert.notified
        recipients, _, payload = engine.notifier.of_category("security_alert")[0]
        assert recipients == ["security_team"]
        assert payload["alert_id"] == alert.id

        entry = engine.audit.get_events(action="create_security_alert")[0]
        assert entry.actor == "mod"
        assert entry.severity == "high"
        assert entry.target.alert_id == alert.id


def test_notified_reflects_actual_delivery():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200 if request.url.host == "up.example" else 502)

    with tempfile.TemporaryDirectory() as tmpdir:
        config = ModerationConfig(base_dir=str(Path(tmpdir) / "modguard"))
        dropped = ModerationEngine(config, notifier=NullNotifier()).alerts.raise_alert(_spec())
        assert not dropped.notified

        webhooks = WebhookManager(Path(tmpdir) / "hooks", client=httpx.Client(transport=httpx.MockTransport(handler)))
        engine = ModerationEngine(config, notifier=webhooks)
        down = webhooks.register_webhook("https://down.example/x", ["security_alert"])
        assert not engine.alerts.raise_alert(_spec()).notified

        webhooks.toggle_webhook(down.id, False)
        webhooks.register_webhook("https://up.example/x", ["security_alert"])
        assert engine.alerts.raise_alert(_spec()).notified

def test_list_alerts_filters():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        engine.alerts.raise_alert(_spec(AlertSeverity.LOW), user_id="alice")
        engine.alerts.raise_alert(_spec(AlertSeverity.CRITICAL), user_id="bob")
        engine.alerts.raise_alert(_spec(AlertSeverity.HIGH, AlertCategory.FINANCIAL_CRIMES), user_id="alice")

        assert len(engine.alerts.list_alerts()) == 3
        assert len(engine.alerts.list_alerts(user_id="alice")) == 2
        assert len(engine.alerts.list_alerts(min_severity="high")) == 2
        assert [a.related_user_id for a in engine.alerts.list_alerts(severity="critical")] == ["bob"]
        assert len(engine.alerts.list_alerts(category="financial_crimes")) == 1
        assert len(engine.alerts.list_alerts(limit=1)) == 1
        with pytest.raises(ValidationError):
            engine.alerts.list_alerts(min_severity="dire")
        with pytest.raises(NotFoundError):
            engine.alerts.get_alert("ALERT_missing")


# --- Lifecycle Tests ---


def test_full_lifecycle():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        alert = engine.alerts.raise_alert(_spec())

        alert = engine.alerts.acknowledge(alert.id, "analyst")
        assert alert.status == AlertStatus.INVESTIGATING
        assert alert.acknowledged_by == "analyst"

        alert = engine.alerts.escalate(alert.id, "analyst", "law_enforcement_liaison")
        assert alert.status == AlertStatus.ESCALATED
        assert alert.escalated_to == "law_enforcement_liaison"

        alert = engine.alerts.resolve(alert.id, "lead", "handed over", ["account closed"])
        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolution == "handed over"
        assert alert.actions_taken == ["account closed"]

        actions = [e.action for e in engine.audit.get_events(category="security_alert")]
        assert sorted(actions) == sorted(
            ["create_security_alert", "acknowledge_alert", "escalate_alert", "resolve_alert"]
        )


def test_dismiss_directly_from_active():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        alert = engine.alerts.raise_alert(_spec())
        alert = engine.alerts.dismiss(alert.id, "analyst", "duplicate")
        assert alert.status == AlertStatus.DISMISSED
        assert alert.resolution == "duplicate"


def test_backwards_and_terminal_moves_conflict():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        alert = engine.alerts.raise_alert(_spec())
        engine.alerts.escalate(alert.id, "analyst", "admin")

        with pytest.raises(ConflictError):
            engine.alerts.acknowledge(alert.id, "analyst")

        engine.alerts.resolve(alert.id, "lead", "done")
        with pytest.raises(ConflictError):
            engine.alerts.dismiss(alert.id, "lead")

        failed = engine.audit.get_events(category="security_alert", success=False)
        assert {e.action for e in failed} == {"acknowledge_alert", "dismiss_alert"}
        assert engine.alerts.get_alert(alert.id).status == AlertStatus.RESOLVED


def test_escalate_requires_target():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        alert = engine.alerts.raise_alert(_spec())
        with pytest.raises(ValidationError):
            engine.alerts.escalate(alert.id, "analyst", "")


def test_transition_table():
    assert can_transition(AlertStatus.PENDING_REVIEW, AlertStatus.INVESTIGATING)
    assert can_transition(AlertStatus.ACTIVE, AlertStatus.RESOLVED)
    assert not can_transition(AlertStatus.ACTIVE, AlertStatus.PENDING_REVIEW)
    assert not can_transition(AlertStatus.DISMISSED, AlertStatus.RESOLVED)
