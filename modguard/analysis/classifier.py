"""Risk classifier: maps continuous risk scores onto the discrete vocabulary
(severity, review requirement, priority, risk status, monitoring level).

All thresholds come from configuration. Every function here is pure.
"""

from __future__ import annotations

from modguard.analysis.analyzer import clamp
from modguard.config import BehaviorSettings, ModerationConfig, Thresholds
from modguard.models.alerts import AlertCategory
from modguard.models.analysis import MonitoringLevel
from modguard.models.flags import Priority, Severity

_ACTIVITY_CATEGORIES = {
    "drug_trafficking": AlertCategory.DRUG_TRAFFICKING,
    "terrorism_planning": AlertCategory.TERRORISM,
    "weapons_dealing": AlertCategory.WEAPONS_TRAFFICKING,
    "human_trafficking": AlertCategory.HUMAN_TRAFFICKING,
    "child_exploitation": AlertCategory.CHILD_EXPLOITATION,
    "financial_crimes": AlertCategory.FINANCIAL_CRIMES,
}


def classify_severity(risk_score: float, thresholds: Thresholds) -> Severity:
    """Severity tier for a score. Boundaries are inclusive: 0.8 is critical."""
    score = clamp(risk_score)
    if score >= thresholds.critical:
        return Severity.CRITICAL
    if score >= thresholds.high:
        return Severity.HIGH
    if score >= thresholds.medium:
        return Severity.MEDIUM
    return Severity.LOW


def review_required(risk_score: float, thresholds: Thresholds) -> bool:
    return clamp(risk_score) > thresholds.review


def activity_risk_score(activity_type: str, evidence_count: int, config: ModerationConfig) -> float:
    """Additive behavior-level score: base per activity type plus a weight
    per evidence item, clamped to [0, 1]."""
    scores = config.activity_base_scores
    base = scores.get(activity_type, scores.get("suspicious_behavior", 0.5))
    return clamp(base + config.evidence_weight * max(0, evidence_count))


def map_activity_to_category(activity_type: str) -> AlertCategory:
    return _ACTIVITY_CATEGORIES.get(activity_type, AlertCategory.SUSPICIOUS_BEHAVIOR)


def activity_priority(risk_score: float) -> Priority:
    if risk_score > 0.8:
        return Priority.URGENT
    if risk_score > 0.6:
        return Priority.HIGH
    return Priority.NORMAL


def risk_status(risk_score: float) -> str:
    if risk_score >= 0.8:
        return "critical_risk"
    if risk_score >= 0.6:
        return "high_risk"
    if risk_score >= 0.4:
        return "medium_risk"
    return "low_risk"


def monitoring_level(risk_score: float, settings: BehaviorSettings) -> MonitoringLevel:
    if risk_score > settings.intensive:
        return MonitoringLevel.INTENSIVE
    if risk_score > settings.enhanced:
        return MonitoringLevel.ENHANCED
    return MonitoringLevel.STANDARD
