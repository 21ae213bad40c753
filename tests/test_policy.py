"""Tests for the risk classifier and the escalation policy."""

import pytest

from modguard.analysis import classifier
from modguard.analysis.behavior import BehaviorInput, score_behavior
from modguard.config import BehaviorSettings, ModerationConfig, ScanSettings, Thresholds
from modguard.errors import ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity
from modguard.models.analysis import MonitoringLevel
from modguard.models.flags import (
    ContentFlag,
    EscalationTarget,
    FlagStatus,
    ModerationAction,
    Priority,
    Severity,
)
from modguard.models.messaging import Message
from modguard.policy.engine import (
    FlagHistory,
    action_alert_severity,
    evaluate_activity,
    evaluate_behavior,
    evaluate_flag,
    evaluate_review,
    evaluate_scan,
)

# --- Severity Tests ---


def test_severity_boundaries_are_inclusive():
    t = Thresholds()
    assert classifier.classify_severity(0.8, t) == Severity.CRITICAL
    assert classifier.classify_severity(0.7999, t) == Severity.HIGH
    assert classifier.classify_severity(0.6, t) == Severity.HIGH
    assert classifier.classify_severity(0.59, t) == Severity.MEDIUM
    assert classifier.classify_severity(0.4, t) == Severity.MEDIUM
    assert classifier.classify_severity(0.39, t) == Severity.LOW
    assert classifier.classify_severity(0.0, t) == Severity.LOW


def test_severity_clamps_out_of_range_scores():
    t = Thresholds()
    assert classifier.classify_severity(1.7, t) == Severity.CRITICAL
    assert classifier.classify_severity(-0.5, t) == Severity.LOW


def test_severity_follows_configured_thresholds():
    t = Thresholds(critical=0.9, high=0.7, medium=0.5)
    assert classifier.classify_severity(0.85, t) == Severity.HIGH
    assert classifier.classify_severity(0.45, t) == Severity.LOW


def test_review_required_is_strictly_above_half():
    t = Thresholds()
    assert classifier.review_required(0.5, t) is False
    assert classifier.review_required(0.51, t) is True


def test_risk_status_and_priority():
    assert classifier.risk_status(0.8) == "critical_risk"
    assert classifier.risk_status(0.6) == "high_risk"
    assert classifier.risk_status(0.4) == "medium_risk"
    assert classifier.risk_status(0.1) == "low_risk"
    assert classifier.activity_priority(0.81) == Priority.URGENT
    assert classifier.activity_priority(0.8) == Priority.HIGH
    assert classifier.activity_priority(0.6) == Priority.NORMAL


def test_monitoring_level():
    s = BehaviorSettings()
    assert classifier.monitoring_level(0.85, s) == MonitoringLevel.INTENSIVE
    assert classifier.monitoring_level(0.7, s) == MonitoringLevel.ENHANCED
    assert classifier.monitoring_level(0.6, s) == MonitoringLevel.STANDARD


def test_activity_score_is_additive_and_clamped():
    config = ModerationConfig()
    assert classifier.activity_risk_score("financial_crimes", 2, config) == pytest.approx(0.9)
    assert classifier.activity_risk_score("terrorism_planning", 3, config) == 1.0
    # Unknown types fall back to the generic base score
    assert classifier.activity_risk_score("loitering", 0, config) == pytest.approx(0.5)


# --- Flag Decision Tests ---


def test_auto_escalation_above_threshold():
    t = Thresholds()
    decision = evaluate_flag(0.85, Severity.CRITICAL, FlagHistory(), t)
    assert decision.review_required
    assert decision.auto_escalate
    assert decision.escalate_to == EscalationTarget.ADMIN
    assert decision.alert.severity == AlertSeverity.CRITICAL
    assert decision.alert.category == AlertCategory.EMERGENCY_ACTION


def test_no_auto_escalation_at_threshold():
    decision = evaluate_flag(0.8, Severity.CRITICAL, FlagHistory(), Thresholds())
    assert decision.review_required
    assert not decision.auto_escalate
    assert decision.alert is None


def test_already_escalated_flag_is_not_escalated_again():
    decision = evaluate_flag(0.95, Severity.CRITICAL, FlagHistory(already_escalated=True), Thresholds())
    assert not decision.auto_escalate
    assert decision.alert is None


def test_forced_review_for_low_scores():
    decision = evaluate_flag(0.2, Severity.LOW, FlagHistory(forced_review=True), Thresholds())
    assert decision.review_required


# --- Review Decision Tests ---


def test_review_escalated_defaults_to_admin():
    review = evaluate_review("escalated")
    assert review.status == FlagStatus.ESCALATED
    assert review.escalate
    assert review.escalate_to == EscalationTarget.ADMIN
    assert not review.has_action


def test_review_with_action():
    review = evaluate_review("confirmed", "block_user")
    assert review.action == ModerationAction.BLOCK_USER
    assert review.has_action
    assert review.escalate_to is None


def test_review_rejects_unknown_values():
    with pytest.raises(ValidationError):
        evaluate_review("maybe")
    with pytest.raises(ValidationError):
        evaluate_review("confirmed", "ban_forever")
    with pytest.raises(ValidationError):
        evaluate_review("pending")


# --- Scan, Behavior and Activity Tests ---


def test_scan_alert_thresholds():
    s = ScanSettings()
    assert evaluate_scan("c", 5, 3.0, s) is None
    medium = evaluate_scan("c", 6, 2.0, s)
    assert medium.severity == AlertSeverity.MEDIUM
    assert medium.category == AlertCategory.COORDINATED_THREATS
    high = evaluate_scan("c", 2, 5.5, s)
    assert high.severity == AlertSeverity.HIGH


def test_behavior_decision():
    s = BehaviorSettings()
    quiet = evaluate_behavior("u", 0.5, s)
    assert not quiet.requires_action
    assert quiet.alert is None
    loud = evaluate_behavior("u", 0.95, s)
    assert loud.requires_action
    assert loud.alert.severity == AlertSeverity.CRITICAL
    assert loud.risk_status == "critical_risk"


def test_behavior_scoring_factors():
    s = BehaviorSettings()
    messages = [Message(id=f"m{i}", conversation_id="c", sender_id="u", content="hi") for i in range(101)]
    flags = [
        ContentFlag(id=f"f{i}", message_id="m0", conversation_id="c", flagged_user_id="u")
        for i in range(6)
    ]
    flags[0].escalated = True
    scored = score_behavior(BehaviorInput(messages=messages, content_flags=flags), s)
    assert scored.risk_score == 1.0
    assert [f.factor for f in scored.risk_factors] == [
        "high_message_volume",
        "multiple_content_flags",
        "serious_flags",
    ]


def test_activity_decision():
    config = ModerationConfig()
    decision = evaluate_activity("drug_trafficking", 1, "selling", config)
    assert decision.risk_score == pytest.approx(1.0)
    assert decision.priority == Priority.URGENT
    assert decision.alert.category == AlertCategory.DRUG_TRAFFICKING
    assert decision.alert.severity == AlertSeverity.CRITICAL

    mild = evaluate_activity("suspicious_behavior", 0, "odd", config)
    assert mild.alert is None
    assert mild.severity == Severity.MEDIUM


def test_action_alert_severity():
    assert action_alert_severity(ModerationAction.BLOCK_USER) == AlertSeverity.HIGH
    assert action_alert_severity(ModerationAction.REPORT_AUTHORITIES) == AlertSeverity.CRITICAL
    assert action_alert_severity(ModerationAction.EMERGENCY_BLOCK) == AlertSeverity.EMERGENCY
    assert action_alert_severity(ModerationAction.WARN) is None
