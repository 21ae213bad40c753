"""Tests for suspicious-activity flags and user behavior analysis."""

import tempfile

import pytest

from modguard.errors import ConflictError, NotFoundError, ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity
from modguard.models.analysis import MonitoringLevel
from modguard.models.flags import ActivityStatus, Priority

from engine_support import ScriptedAnalyzer, make_engine, seed_conversation, seed_message


def _engine_with_messages(tmpdir: str, count: int = 2, score: float = 0.0):
    engine = make_engine(tmpdir, analyzer=ScriptedAnalyzer(default=score))
    seed_conversation(engine)
    for i in range(count):
        seed_message(engine, f"m{i}", f"message {i}")
    return engine


# --- Activity Flag Tests ---


def test_high_risk_activity_raises_alert():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir)

        flag = engine.activity.flag_activity(
            "alice",
            "drug_trafficking",
            "pricing list shared",
            "mod",
            evidence=["m0"],
            conversation_id="conv-1",
        )

        assert flag.risk_score == pytest.approx(1.0)
        assert flag.priority == Priority.URGENT
        assert flag.requires_review
        assert flag.evidence[0].preserved_at

        alert = engine.alerts.get_alert(flag.alert_id)
        assert alert.category == AlertCategory.DRUG_TRAFFICKING
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.related_message_ids == ["m0"]
        assert not alert.automatic_detection


def test_evidence_weight_is_additive():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir)

        plain = engine.activity.flag_activity("alice", "financial_crimes", "odd transfers", "mod")
        assert plain.risk_score == pytest.approx(0.7)
        assert plain.alert_id is None

        backed = engine.activity.flag_activity(
            "alice", "financial_crimes", "odd transfers", "mod", evidence=["m0"]
        )
        assert backed.risk_score == pytest.approx(0.8)
        assert engine.alerts.get_alert(backed.alert_id).severity == AlertSeverity.HIGH

        unknown = engine.activity.flag_activity("alice", "loitering", "hanging around", "mod")
        assert unknown.risk_score == pytest.approx(0.5)
        assert unknown.priority == Priority.NORMAL


def test_activity_validation():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir)
        with pytest.raises(ValidationError):
            engine.activity.flag_activity("alice", "drug_trafficking", "", "mod")
        with pytest.raises(ValidationError):
            engine.activity.flag_activity("alice", "drug_trafficking", "x", "mod", severity="apocalyptic")
        with pytest.raises(NotFoundError):
            engine.activity.flag_activity("alice", "drug_trafficking", "x", "mod", evidence=["ghost"])
        assert engine.activity.list_activity_flags() == []


def test_status_transitions():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir)
        flag = engine.activity.flag_activity("alice", "suspicious_behavior", "odd", "mod")

        flag = engine.activity.update_activity_status(flag.id, "investigating", "mod", note="looking")
        flag = engine.activity.update_activity_status(flag.id, "confirmed", "mod")
        assert flag.status == ActivityStatus.CONFIRMED
        assert [n.note for n in flag.investigation_notes] == ["looking"]

        with pytest.raises(ConflictError):
            engine.activity.update_activity_status(flag.id, "pending", "mod")

        flag = engine.activity.update_activity_status(flag.id, "escalated", "lead")
        with pytest.raises(ConflictError):
            engine.activity.update_activity_status(flag.id, "resolved", "lead")

        with pytest.raises(ValidationError):
            engine.activity.update_activity_status(flag.id, "forgotten", "lead")

        updates = engine.audit.get_events(action="update_activity_flag")
        assert len(updates) == 3


def test_investigation_notes():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir)
        flag = engine.activity.flag_activity("alice", "suspicious_behavior", "odd", "mod")

        flag = engine.activity.add_investigation_note(flag.id, "analyst", "linked to another account")
        assert flag.investigation_notes[0].added_by == "analyst"
        with pytest.raises(ValidationError):
            engine.activity.add_investigation_note(flag.id, "analyst", "")


# --- Behavior Analysis Tests ---


def test_quiet_user_is_low_risk():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir, count=3)

        analysis = engine.activity.analyze_user_behavior("alice")

        assert analysis.risk_score == 0.0
        assert analysis.risk_status == "low_risk"
        assert analysis.message_count == 3
        assert analysis.conversation_count == 1
        assert not analysis.requires_action
        assert analysis.alert_id is None
        assert engine.activity.latest_behavior("alice").id == analysis.id
        assert engine.activity.latest_behavior("bob") is None


def test_repeatedly_flagged_user():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir, count=6, score=0.85)
        for i in range(6):
            engine.submit_content(f"m{i}")

        analysis = engine.activity.analyze_user_behavior("alice", actor="analyst")

        assert analysis.risk_score == pytest.approx(0.7)
        assert {f.factor for f in analysis.risk_factors} == {"multiple_content_flags", "serious_flags"}
        assert analysis.risk_status == "high_risk"
        assert analysis.monitoring_level == MonitoringLevel.ENHANCED
        assert not analysis.requires_action
        assert engine.alerts.list_alerts(category="suspicious_behavior") == []


def test_high_volume_flagged_user_requires_action():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir, count=101, score=0.85)
        for i in range(6):
            engine.submit_content(f"m{i}")

        analysis = engine.activity.analyze_user_behavior("alice")

        assert analysis.risk_score == pytest.approx(1.0)
        assert analysis.requires_action
        assert analysis.monitoring_level == MonitoringLevel.INTENSIVE
        alert = engine.alerts.get_alert(analysis.alert_id)
        assert alert.category == AlertCategory.SUSPICIOUS_BEHAVIOR
        assert alert.severity == AlertSeverity.CRITICAL


def test_behavior_depth_must_be_positive():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _engine_with_messages(tmpdir)
        with pytest.raises(ValidationError):
            engine.activity.analyze_user_behavior("alice", depth_days=0)
