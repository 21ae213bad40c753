"""Content flags and behavior-level suspicious-activity flags."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from modguard.models.base import coerce_enum, coerce_list, coerce_obj
from modguard.utils.timeutil import now_iso


class Severity(str, Enum):
    """Coarse risk bucket derived from a continuous risk score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {
            Severity.LOW: 0,
            Severity.MEDIUM: 1,
            Severity.HIGH: 2,
            Severity.CRITICAL: 3,
        }[self]


class FlagStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class ActivityStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    CONFIRMED = "confirmed"
    FALSE_POSITIVE = "false_positive"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class ModerationAction(str, Enum):
    NONE = "none"
    WARN = "warn"
    HIDE_MESSAGE = "hide_message"
    BLOCK_USER = "block_user"
    REPORT_AUTHORITIES = "report_authorities"
    EMERGENCY_BLOCK = "emergency_block"
    PRESERVE_EVIDENCE = "preserve_evidence"


class FlaggedBy(str, Enum):
    SYSTEM = "system"
    USER_REPORT = "user_report"
    MANUAL_REVIEW = "manual_review"
    SYSTEM_SCAN = "system_scan"
    AI_DETECTION = "ai_detection"


class EscalationTarget(str, Enum):
    LAW_ENFORCEMENT = "law_enforcement"
    NCMEC = "ncmec"
    ADMIN = "admin"
    LEGAL_TEAM = "legal_team"


class AnalysisStatus(str, Enum):
    """Whether the analyzer actually produced a score for this flag."""

    COMPLETE = "complete"
    PENDING = "analysis_pending"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    EMERGENCY = "emergency"


@dataclass
class Detection:
    """One detection reported by the Content Analyzer."""

    type: str
    category: str
    severity: str = "medium"
    confidence: float = 0.0


@dataclass
class UserReport:
    """Who reported a message and why (user-report flags only)."""

    reported_by: str
    reason: str = ""
    additional_info: str = ""
    reported_at: str = ""


@dataclass
class ContentFlag:
    """One risk assessment of one content item."""

    id: str
    message_id: str
    conversation_id: str
    flagged_user_id: str
    analysis_type: str = "comprehensive"
    analysis_status: AnalysisStatus = AnalysisStatus.COMPLETE
    risk_score: Optional[float] = None  # None only while analysis is pending
    confidence: Optional[float] = None
    severity: Optional[Severity] = None
    review_required: bool = False
    status: FlagStatus = FlagStatus.PENDING
    detections: list[Detection] = field(default_factory=list)
    analysis_details: dict[str, Any] = field(default_factory=dict)
    flagged_by: FlaggedBy = FlaggedBy.SYSTEM
    scan_id: Optional[str] = None
    user_report: Optional[UserReport] = None

    escalated: bool = False
    escalated_to: Optional[EscalationTarget] = None
    escalated_at: Optional[str] = None

    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    review_notes: Optional[str] = None
    moderation_action: ModerationAction = ModerationAction.NONE

    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.analysis_status = coerce_enum(AnalysisStatus, self.analysis_status)
        self.severity = coerce_enum(Severity, self.severity)
        self.status = coerce_enum(FlagStatus, self.status)
        self.flagged_by = coerce_enum(FlaggedBy, self.flagged_by)
        self.escalated_to = coerce_enum(EscalationTarget, self.escalated_to)
        self.moderation_action = coerce_enum(ModerationAction, self.moderation_action)
        self.detections = coerce_list(Detection, self.detections)
        self.user_report = coerce_obj(UserReport, self.user_report)

    @property
    def categories(self) -> list[str]:
        seen: list[str] = []
        for d in self.detections:
            if d.category not in seen:
                seen.append(d.category)
        return seen


@dataclass
class EvidenceItem:
    """Pointer to a message backing a suspicious-activity flag."""

    message_id: str
    evidence_type: str = "message"
    description: str = ""
    preserved_at: Optional[str] = None


@dataclass
class InvestigationNote:
    note: str
    added_by: str
    added_at: str = ""

    def __post_init__(self) -> None:
        if not self.added_at:
            self.added_at = now_iso()


@dataclass
class SuspiciousActivityFlag:
    """A behavior-level observation about a user, backed by message evidence."""

    id: str
    flagged_user_id: str
    activity_type: str
    description: str
    risk_score: float
    flagged_by: str
    severity: Severity = Severity.MEDIUM
    status: ActivityStatus = ActivityStatus.PENDING
    priority: Priority = Priority.NORMAL
    conversation_id: Optional[str] = None
    evidence: list[EvidenceItem] = field(default_factory=list)
    detection_method: str = "manual"
    requires_review: bool = False
    alert_id: Optional[str] = None
    investigation_notes: list[InvestigationNote] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.severity = coerce_enum(Severity, self.severity)
        self.status = coerce_enum(ActivityStatus, self.status)
        self.priority = coerce_enum(Priority, self.priority)
        self.evidence = coerce_list(EvidenceItem, self.evidence)
        self.investigation_notes = coerce_list(InvestigationNote, self.investigation_notes)
