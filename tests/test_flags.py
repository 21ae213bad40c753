"""Tests for content submission, user reports, review and escalation."""

import tempfile

import pytest

from modguard.errors import ConflictError, NotFoundError, ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity
from modguard.models.flags import (
    AnalysisStatus,
    EscalationTarget,
    FlaggedBy,
    FlagStatus,
    ModerationAction,
    Severity,
)

from engine_support import ScriptedAnalyzer, make_engine, seed_conversation, seed_message


def _seeded(tmpdir: str, scores: dict, **kwargs):
    engine = make_engine(tmpdir, scores, **kwargs)
    seed_conversation(engine)
    return engine


# --- Submission Tests ---


def test_high_risk_submission_is_escalated_once():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"meet me with the rifle": 0.85})
        seed_message(engine, "m1", "meet me with the rifle")

        flag = engine.submit_content("m1")

        assert flag.risk_score == 0.85
        assert flag.severity == Severity.CRITICAL
        assert flag.review_required
        assert flag.escalated
        assert flag.escalated_to == EscalationTarget.ADMIN
        assert flag.status == FlagStatus.PENDING
        assert flag.flagged_by == FlaggedBy.AI_DETECTION

        alerts = engine.alerts.list_alerts()
        assert len(alerts) == 1
        assert alerts[0].severity == AlertSeverity.CRITICAL
        assert alerts[0].category == AlertCategory.EMERGENCY_ACTION
        assert alerts[0].related_flag_ids == [flag.id]
        assert alerts[0].notified

        entries = engine.audit.get_events(action="analyze_content")
        assert len(entries) == 1
        assert entries[0].severity == "critical"
        assert entries[0].target.content_flag_id == flag.id

        assert engine.notifier.of_category("content_flagged")


def test_low_risk_submission():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"lunch?": 0.1})
        seed_message(engine, "m1", "lunch?")

        flag = engine.submit_content("m1", "text")

        assert flag.severity == Severity.LOW
        assert not flag.review_required
        assert not flag.escalated
        assert engine.alerts.list_alerts() == []
        assert engine.notifier.of_category("content_flagged") == []


def test_message_must_exist():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {})
        with pytest.raises(NotFoundError):
            engine.submit_content("ghost")


def test_unknown_analysis_type_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {})
        seed_message(engine, "m1", "hi")
        with pytest.raises(ValidationError):
            engine.submit_content("m1", "video")
        assert engine.flags.list_flags().total == 0


def test_analyzer_outage_records_pending_flag():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {}, analyzer=ScriptedAnalyzer(offline=True))
        seed_message(engine, "m1", "anything")

        flag = engine.submit_content("m1")

        assert flag.analysis_status == AnalysisStatus.PENDING
        assert flag.risk_score is None
        assert flag.severity is None
        assert flag.review_required

        failed = engine.audit.get_events(action="analyze_content", success=False)
        assert len(failed) == 1
        assert failed[0].outcome.error_code == "dependency_unavailable"

        page = engine.flags.list_flags()
        assert page.summary.analysis_pending == 1


def test_retry_analysis_completes_pending_flag():
    with tempfile.TemporaryDirectory() as tmpdir:
        analyzer = ScriptedAnalyzer({"ship the weapons": 0.7}, offline=True)
        engine = _seeded(tmpdir, {}, analyzer=analyzer)
        seed_message(engine, "m1", "ship the weapons")
        flag = engine.submit_content("m1")

        analyzer.offline = False
        retried = engine.flags.retry_analysis(flag.id)

        assert retried.analysis_status == AnalysisStatus.COMPLETE
        assert retried.risk_score == 0.7
        assert retried.severity == Severity.HIGH
        with pytest.raises(ConflictError):
            engine.flags.retry_analysis(flag.id)


# --- User Report Tests ---


def test_user_report_always_needs_review():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {})
        seed_message(engine, "m1", "rude words")

        flag = engine.flags.report_message("m1", "bob", "harassment", category="harassment")

        assert flag.flagged_by == FlaggedBy.USER_REPORT
        assert flag.risk_score == 0.5
        assert flag.severity == Severity.MEDIUM
        assert flag.review_required
        assert flag.user_report.reported_by == "bob"
        assert engine.store.messages.get("m1").report_count == 1

        engine.flags.report_message("m1", "carol", "spam")
        assert engine.store.messages.get("m1").report_count == 2


def test_user_report_requires_reason():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {})
        seed_message(engine, "m1", "x")
        with pytest.raises(ValidationError):
            engine.flags.report_message("m1", "bob", "")


# --- Review Tests ---


def test_review_twice_overwrites_and_audits_both():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"borderline": 0.55})
        seed_message(engine, "m1", "borderline")
        flag = engine.submit_content("m1")

        engine.review_flag(flag.id, "mod-a", "confirmed", notes="first look")
        outcome = engine.review_flag(flag.id, "mod-b", "false_positive", notes="context")

        assert outcome.flag.status == FlagStatus.FALSE_POSITIVE
        assert outcome.flag.reviewed_by == "mod-b"
        assert outcome.flag.review_notes == "context"
        reviews = engine.audit.get_events_for_target("content_flag_id", flag.id)
        assert [e.action for e in reviews].count("review_content_flag") == 2


def test_review_with_stale_version_conflicts_and_is_audited():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"borderline": 0.55})
        seed_message(engine, "m1", "borderline")
        flag = engine.submit_content("m1")
        engine.review_flag(flag.id, "mod-a", "confirmed")

        with pytest.raises(ConflictError):
            engine.review_flag(flag.id, "mod-b", "resolved", expected_version=flag.version)

        failed = engine.audit.get_events(action="review_content_flag", success=False)
        assert len(failed) == 1
        assert failed[0].actor == "mod-b"
        assert engine.flags.get_flag(flag.id).status == FlagStatus.CONFIRMED


def test_review_decision_escalated_targets_admin():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"hmm": 0.45})
        seed_message(engine, "m1", "hmm")
        flag = engine.submit_content("m1")

        outcome = engine.review_flag(flag.id, "mod", "escalated")

        assert outcome.flag.status == FlagStatus.ESCALATED
        assert outcome.flag.escalated_to == EscalationTarget.ADMIN
        assert outcome.action is None


def test_review_with_block_user_action():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"threat": 0.7})
        seed_message(engine, "m1", "threat")
        flag = engine.submit_content("m1")

        outcome = engine.review_flag(flag.id, "mod", "confirmed", moderation_action="block_user", notes="threats")

        assert outcome.flag.moderation_action == ModerationAction.BLOCK_USER
        assert outcome.action.success
        suspension = engine.suspensions.get(outcome.action.suspension_id)
        assert suspension.user_id == "alice"
        assert suspension.related_flag_ids == [flag.id]
        assert not engine.suspensions.check_capability("alice", "can_send_messages")
        assert engine.alerts.get_alert(outcome.action.alert_id).severity == AlertSeverity.HIGH


def test_manual_escalation_from_any_status():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"x": 0.2})
        seed_message(engine, "m1", "x")
        flag = engine.submit_content("m1")
        engine.review_flag(flag.id, "mod", "resolved")

        escalated = engine.flags.escalate_flag(flag.id, "legal_team", "lead", "subpoena expected")

        assert escalated.status == FlagStatus.ESCALATED
        assert escalated.escalated_to == EscalationTarget.LEGAL_TEAM
        with pytest.raises(ValidationError):
            engine.flags.escalate_flag(flag.id, "the_press", "lead")


# --- Listing Tests ---


def test_list_flags_filters_and_paginates():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = _seeded(tmpdir, {"a": 0.9, "b": 0.65, "c": 0.1})
        for mid, content in (("m1", "a"), ("m2", "b"), ("m3", "c")):
            seed_message(engine, mid, content)
            engine.submit_content(mid)

        critical = engine.flags.list_flags(severity="critical")
        assert critical.total == 1
        assert critical.items[0].message_id == "m1"

        risky = engine.flags.list_flags(min_risk=0.5)
        assert {f.message_id for f in risky.items} == {"m1", "m2"}

        page = engine.flags.list_flags(page=2, limit=2)
        assert page.total == 3
        assert page.pages == 2
        assert len(page.items) == 1
        assert page.summary.by_severity == {"critical": 1, "high": 1, "low": 1}

        with pytest.raises(ValidationError):
            engine.flags.list_flags(page=0)
