"""Tests for the secret-conversation screenshot guard."""

import tempfile

import pytest

from modguard.errors import NotFoundError, ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity

from engine_support import make_engine, seed_conversation, seed_message


def _engine(tmpdir: str, notify: bool = False):
    engine = make_engine(tmpdir)
    seed_conversation(engine, "secret-1", "secret", ("alice", "bob", "carol"), notify=notify)
    seed_conversation(engine, "direct-1", "direct", ("alice", "bob"))
    return engine


# --- Screenshot Attempt Tests ---


def test_secret_conversation_blocks_without_punishing():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        seed_message(engine, "m1", "our secret", conversation_id="secret-1")

        result = engine.record_screenshot_attempt(
            "secret-1", "bob", message_id="m1", device={"platform": "ios", "app_version": "4.2"}
        )

        assert result.blocked
        assert result.stays_in_chat
        assert result.user_action == "none"
        alert = engine.alerts.get_alert(result.alert_id)
        assert alert.category == AlertCategory.PRIVACY_PROTECTION
        assert alert.severity == AlertSeverity.INFO

        assert engine.suspensions.list_suspensions("bob") == []
        assert engine.suspensions.check_capability("bob", "can_send_messages")
        assert engine.cases.list_reports(user_id="bob") == []
        assert engine.flags.list_flags(user_id="bob").total == 0

        assert engine.store.messages.get("m1").screenshot_attempts == 1
        assert engine.audit.get_events(action="screenshot_blocked")[0].target.user_id == "bob"


def test_direct_conversation_logs_and_allows():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        result = engine.record_screenshot_attempt("direct-1", "alice")

        assert not result.blocked
        assert result.alert_id is None
        assert engine.alerts.list_alerts() == []
        assert len(engine.audit.get_events(action="screenshot_logged")) == 1


def test_participants_are_told_only_when_opted_in():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        engine.record_screenshot_attempt("secret-1", "bob")
        assert engine.notifier.of_category("screenshot_attempt") == []

    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir, notify=True)
        engine.record_screenshot_attempt("secret-1", "bob")
        recipients, _, payload = engine.notifier.of_category("screenshot_attempt")[0]
        assert recipients == ["alice", "carol"]
        assert "attempted_by" not in payload

        engine.record_screenshot_attempt("secret-1", "bob", attribute=True)
        _, _, payload = engine.notifier.of_category("screenshot_attempt")[1]
        assert payload["attempted_by"] == "bob"


def test_attempt_validation():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        seed_message(engine, "d1", "hi", conversation_id="direct-1")
        with pytest.raises(NotFoundError):
            engine.record_screenshot_attempt("nowhere", "bob")
        with pytest.raises(ValidationError):
            engine.record_screenshot_attempt("secret-1", "bob", message_id="d1")
        with pytest.raises(ValidationError):
            engine.record_screenshot_attempt("secret-1", "")
        with pytest.raises(ValidationError):
            engine.record_screenshot_attempt("secret-1", "bob", device={"cpu": "arm"})


# --- Secret Action Tests ---


def test_validate_secret_action():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)

        for action in ("screenshot", "copy", "print", "save", "forward"):
            assert not engine.guard.validate_secret_action("secret-1", action, "alice").allowed
        assert engine.guard.validate_secret_action("secret-1", "reply", "alice").allowed
        assert engine.guard.validate_secret_action("direct-1", "copy", "alice").allowed

        outsider = engine.guard.validate_secret_action("secret-1", "reply", "mallory")
        assert not outsider.allowed
        assert outsider.reason == "User not authorized for this conversation"


def test_screenshot_stats():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine(tmpdir)
        engine.record_screenshot_attempt("secret-1", "bob", device={"platform": "android"})
        engine.record_screenshot_attempt("secret-1", "alice", "screen_recording")
        engine.record_screenshot_attempt("direct-1", "alice")

        stats = engine.guard.screenshot_stats()

        assert stats["total_attempts"] == 3
        assert stats["blocked_attempts"] == 2
        assert stats["allowed_attempts"] == 1
        assert stats["block_rate"] == pytest.approx(66.67)
        assert stats["by_conversation_type"] == {"secret": 2, "direct": 1}
        assert stats["by_method"] == {"screenshot": 2, "screen_recording": 1}

        only_direct = engine.guard.screenshot_stats("direct-1")
        assert only_direct["total_attempts"] == 1
        with pytest.raises(ValidationError):
            engine.guard.screenshot_stats(days=0)
