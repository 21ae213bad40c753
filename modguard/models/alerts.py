"""Security alerts raised for notification-worthy conditions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from modguard.models.base import coerce_enum
from modguard.utils.timeutil import now_iso


class AlertSeverity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return list(AlertSeverity).index(self)


class AlertCategory(str, Enum):
    TERRORISM = "terrorism"
    DRUG_TRAFFICKING = "drug_trafficking"
    WEAPONS_TRAFFICKING = "weapons_trafficking"
    HUMAN_TRAFFICKING = "human_trafficking"
    CHILD_EXPLOITATION = "child_exploitation"
    FINANCIAL_CRIMES = "financial_crimes"
    COORDINATED_THREATS = "coordinated_threats"
    EMERGENCY_ACTION = "emergency_action"
    SYSTEM_SECURITY = "system_security"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"
    PRIVACY_PROTECTION = "privacy_protection"
    CONTENT_MODERATION = "content_moderation"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    PENDING_REVIEW = "pending_review"
    INVESTIGATING = "investigating"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


@dataclass
class SecurityAlert:
    """A notification-worthy event. Never deleted."""

    id: str
    category: AlertCategory
    severity: AlertSeverity
    title: str
    description: str
    status: AlertStatus = AlertStatus.ACTIVE
    related_user_id: Optional[str] = None
    related_conversation_id: Optional[str] = None
    related_message_ids: list[str] = field(default_factory=list)
    related_flag_ids: list[str] = field(default_factory=list)
    automatic_detection: bool = True
    risk_score: Optional[float] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[str] = None
    escalated_to: Optional[str] = None
    escalated_at: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    resolution: Optional[str] = None
    actions_taken: list[str] = field(default_factory=list)
    notified: bool = False  # a channel accepted it, not merely handed off
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.category = coerce_enum(AlertCategory, self.category)
        self.severity = coerce_enum(AlertSeverity, self.severity)
        self.status = coerce_enum(AlertStatus, self.status)
