"""Escalation policy: pure decision functions.

Given a score and its context, each ``evaluate_*`` function returns a
decision object describing what should happen. Nothing here touches the
store, the audit log or the notifier; the action executor and the managers
carry out the decisions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from modguard.analysis import classifier
from modguard.config import BehaviorSettings, ModerationConfig, ScanSettings, Thresholds
from modguard.errors import ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity
from modguard.models.analysis import MonitoringLevel
from modguard.models.flags import (
    EscalationTarget,
    FlagStatus,
    ModerationAction,
    Priority,
    Severity,
)

REVIEW_DECISIONS = (
    FlagStatus.CONFIRMED,
    FlagStatus.FALSE_POSITIVE,
    FlagStatus.RESOLVED,
    FlagStatus.ESCALATED,
)


@dataclass
class AlertSpec:
    """An alert the caller should raise."""

    category: AlertCategory
    severity: AlertSeverity
    title: str
    description: str
    risk_score: Optional[float] = None


# ---------------------------------------------------------------------------
# Single content flag
# ---------------------------------------------------------------------------


@dataclass
class FlagHistory:
    """What is already known about the flag being (re)evaluated."""

    already_escalated: bool = False
    forced_review: bool = False  # user reports always need a human


@dataclass
class FlagDecision:
    severity: Severity
    review_required: bool
    auto_escalate: bool = False
    escalate_to: Optional[EscalationTarget] = None
    alert: Optional[AlertSpec] = None
    reasons: list[str] = field(default_factory=list)


def evaluate_flag(
    risk_score: float,
    severity: Severity,
    history: FlagHistory,
    thresholds: Thresholds,
) -> FlagDecision:
    decision = FlagDecision(
        severity=severity,
        review_required=history.forced_review or classifier.review_required(risk_score, thresholds),
    )
    if decision.review_required:
        decision.reasons.append(f"risk score {risk_score:.2f} requires review")

    if risk_score > thresholds.auto_escalate and not history.already_escalated:
        decision.auto_escalate = True
        decision.escalate_to = EscalationTarget.ADMIN
        decision.alert = AlertSpec(
            category=AlertCategory.EMERGENCY_ACTION,
            severity=AlertSeverity.CRITICAL,
            title="High-risk content auto-escalated",
            description=f"Content with risk score {risk_score:.2f} auto-escalated for review",
            risk_score=risk_score,
        )
        decision.reasons.append(
            f"risk score {risk_score:.2f} exceeds auto-escalation threshold {thresholds.auto_escalate}"
        )
    return decision


# ---------------------------------------------------------------------------
# Human review
# ---------------------------------------------------------------------------


@dataclass
class ReviewDecision:
    status: FlagStatus
    action: ModerationAction
    escalate: bool = False
    escalate_to: Optional[EscalationTarget] = None

    @property
    def has_action(self) -> bool:
        return self.action != ModerationAction.NONE


def evaluate_review(
    decision: str | FlagStatus,
    moderation_action: str | ModerationAction = ModerationAction.NONE,
    escalate: bool = False,
    escalate_to: str | EscalationTarget | None = None,
) -> ReviewDecision:
    """Validate a reviewer's input and turn it into a review decision.

    Raises ValidationError for unknown decisions, actions or targets.
    """
    try:
        status = FlagStatus(decision)
        action = ModerationAction(moderation_action)
        target = EscalationTarget(escalate_to) if escalate_to else None
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if status not in REVIEW_DECISIONS:
        raise ValidationError(
            f"review decision must be one of {', '.join(s.value for s in REVIEW_DECISIONS)}"
        )

    if status == FlagStatus.ESCALATED:
        escalate = True
    if escalate and target is None:
        target = EscalationTarget.ADMIN
    return ReviewDecision(
        status=status,
        action=action,
        escalate=escalate,
        escalate_to=target if escalate else None,
    )


# ---------------------------------------------------------------------------
# Conversation scan
# ---------------------------------------------------------------------------


def evaluate_scan(
    conversation_id: str,
    flagged_messages: int,
    total_risk: float,
    settings: ScanSettings,
) -> Optional[AlertSpec]:
    """A coordinated-threats alert when a scan flags too much, else None."""
    if flagged_messages <= settings.alert_flagged_messages and total_risk <= settings.alert_total_risk:
        return None
    return AlertSpec(
        category=AlertCategory.COORDINATED_THREATS,
        severity=AlertSeverity.HIGH if total_risk > settings.high_total_risk else AlertSeverity.MEDIUM,
        title="Conversation scan revealed potential threats",
        description=(
            f"Scan of conversation {conversation_id} found {flagged_messages} "
            f"flagged messages (total risk {total_risk:.2f})"
        ),
        risk_score=round(total_risk, 4),
    )


# ---------------------------------------------------------------------------
# User behavior analysis
# ---------------------------------------------------------------------------


@dataclass
class BehaviorDecision:
    risk_status: str
    monitoring_level: MonitoringLevel
    requires_action: bool
    alert: Optional[AlertSpec] = None


def evaluate_behavior(user_id: str, risk_score: float, settings: BehaviorSettings) -> BehaviorDecision:
    decision = BehaviorDecision(
        risk_status=classifier.risk_status(risk_score),
        monitoring_level=classifier.monitoring_level(risk_score, settings),
        requires_action=risk_score > settings.alert,
    )
    if risk_score > settings.alert:
        decision.alert = AlertSpec(
            category=AlertCategory.SUSPICIOUS_BEHAVIOR,
            severity=AlertSeverity.CRITICAL if risk_score > settings.critical else AlertSeverity.HIGH,
            title="High-risk user behavior detected",
            description=f"Behavior analysis of user {user_id} scored {risk_score:.2f}",
            risk_score=risk_score,
        )
    return decision


# ---------------------------------------------------------------------------
# Suspicious activity
# ---------------------------------------------------------------------------


@dataclass
class ActivityDecision:
    risk_score: float
    severity: Severity
    priority: Priority
    requires_review: bool
    alert: Optional[AlertSpec] = None


def evaluate_activity(
    activity_type: str,
    evidence_count: int,
    description: str,
    config: ModerationConfig,
    severity: Severity | None = None,
) -> ActivityDecision:
    score = classifier.activity_risk_score(activity_type, evidence_count, config)
    decision = ActivityDecision(
        risk_score=score,
        severity=severity or classifier.classify_severity(score, config.thresholds),
        priority=classifier.activity_priority(score),
        requires_review=classifier.review_required(score, config.thresholds),
    )
    if score > 0.7:
        decision.alert = AlertSpec(
            category=classifier.map_activity_to_category(activity_type),
            severity=AlertSeverity.CRITICAL if score > 0.9 else AlertSeverity.HIGH,
            title=f"Suspicious activity detected: {activity_type}",
            description=description,
            risk_score=score,
        )
    return decision


# ---------------------------------------------------------------------------
# Action severities
# ---------------------------------------------------------------------------

ACTION_ALERT_SEVERITY: dict[ModerationAction, Optional[AlertSeverity]] = {
    ModerationAction.NONE: None,
    ModerationAction.WARN: None,
    ModerationAction.HIDE_MESSAGE: None,
    ModerationAction.PRESERVE_EVIDENCE: None,
    ModerationAction.BLOCK_USER: AlertSeverity.HIGH,
    ModerationAction.REPORT_AUTHORITIES: AlertSeverity.CRITICAL,
    ModerationAction.EMERGENCY_BLOCK: AlertSeverity.EMERGENCY,
}


def action_alert_severity(action: ModerationAction) -> Optional[AlertSeverity]:
    """Alert severity an executed action raises; None when it raises none."""
    return ACTION_ALERT_SEVERITY[action]
