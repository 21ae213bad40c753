"""Pydantic models for API request/response serialization.

These models mirror the modguard dataclasses and provide proper JSON
serialization for the FastAPI endpoints. Response models list the fields
clients rely on; unknown keys from the dataclasses are ignored.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def plain(obj: Any) -> Any:
    """Dataclass tree to JSON-ready dicts, with enums reduced to their values."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, list):
        return [plain(v) for v in obj]
    if isinstance(obj, dict):
        return {k: plain(v) for k, v in obj.items()}
    return obj


# ---------------------------------------------------------------------------
# Content flags
# ---------------------------------------------------------------------------


class DetectionResponse(BaseModel):
    type: str
    category: str
    severity: str = "medium"
    confidence: float = 0.0


class ContentFlagResponse(BaseModel):
    """Mirrors modguard.models.flags.ContentFlag."""

    id: str
    message_id: str
    conversation_id: str
    flagged_user_id: str
    analysis_type: str = "comprehensive"
    analysis_status: str = "complete"
    risk_score: Optional[float] = None
    confidence: Optional[float] = None
    severity: Optional[str] = None
    review_required: bool = False
    status: str = "pending"
    detections: list[DetectionResponse] = Field(default_factory=list)
    analysis_details: dict[str, Any] = Field(default_factory=dict)
    flagged_by: str = "system"
    scan_id: Optional[str] = None
    user_report: Optional[dict[str, Any]] = None
    escalated: bool = False
    escalated_to: Optional[str] = None
    escalated_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    review_notes: Optional[str] = None
    moderation_action: str = "none"
    created_at: str = ""
    updated_at: str = ""
    version: int = 0


class FlagSummaryResponse(BaseModel):
    total: int = 0
    average_risk: float = 0.0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_status: dict[str, int] = Field(default_factory=dict)
    analysis_pending: int = 0


class FlagPageResponse(BaseModel):
    items: list[ContentFlagResponse]
    page: int
    limit: int
    total: int
    pages: int
    summary: FlagSummaryResponse


class SubmitContentRequest(BaseModel):
    message_id: str
    analysis_type: str = "comprehensive"


class ReportMessageRequest(BaseModel):
    reason: str
    category: str = "other"
    additional_info: str = ""


class ReviewFlagRequest(BaseModel):
    decision: str
    moderation_action: str = "none"
    notes: str = ""
    escalate: bool = False
    escalate_to: Optional[str] = None
    expected_version: Optional[int] = None


class ActionOutcomeResponse(BaseModel):
    """Mirrors modguard.actions.executor.ActionOutcome."""

    action: str
    success: bool = True
    alert_id: Optional[str] = None
    suspension_id: Optional[str] = None
    case_id: Optional[str] = None
    report_id: Optional[str] = None
    hold_ids: list[str] = Field(default_factory=list)
    message_hidden: bool = False
    nested: list[ActionOutcomeResponse] = Field(default_factory=list)


class ReviewFlagResponse(BaseModel):
    flag: ContentFlagResponse
    action: Optional[ActionOutcomeResponse] = None


class EscalateFlagRequest(BaseModel):
    escalated_to: str
    reason: str = ""


# ---------------------------------------------------------------------------
# Scans, activity and behavior
# ---------------------------------------------------------------------------


class ScanRequest(BaseModel):
    conversation_id: str
    lookback_days: int = Field(7, ge=1, le=365)
    analysis_types: Optional[list[str]] = None
    scan_id: Optional[str] = None


class ScanSummaryResponse(BaseModel):
    scan_id: str
    conversation_id: str
    status: str
    total_messages: int
    scanned_messages: int
    flagged_messages: int
    analysis_pending: int
    total_risk: float
    alert_id: Optional[str] = None


class FlagActivityRequest(BaseModel):
    user_id: str
    activity_type: str
    description: str
    evidence: list[dict[str, Any]] = Field(default_factory=list)
    conversation_id: Optional[str] = None
    severity: Optional[str] = None
    detection_method: str = "manual"


class ActivityStatusRequest(BaseModel):
    status: str
    note: str = ""


class InvestigationNoteRequest(BaseModel):
    note: str


class ActivityFlagResponse(BaseModel):
    """Mirrors modguard.models.flags.SuspiciousActivityFlag."""

    id: str
    flagged_user_id: str
    activity_type: str
    description: str
    risk_score: float
    flagged_by: str
    severity: str
    status: str
    priority: str
    conversation_id: Optional[str] = None
    evidence: list[dict[str, Any]] = Field(default_factory=list)
    detection_method: str = "manual"
    requires_review: bool = False
    alert_id: Optional[str] = None
    investigation_notes: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    version: int = 0


class BehaviorRequest(BaseModel):
    depth_days: int = Field(30, ge=1, le=365)
    analysis_type: str = "routine"


class BehaviorAnalysisResponse(BaseModel):
    """Mirrors modguard.models.analysis.UserBehaviorAnalysis."""

    id: str
    user_id: str
    analyzed_by: str
    risk_score: float
    analysis_type: str
    analysis_depth_days: int
    risk_factors: list[dict[str, Any]] = Field(default_factory=list)
    risk_status: str
    requires_action: bool
    monitoring_level: str
    message_count: int = 0
    conversation_count: int = 0
    flag_count: int = 0
    alert_id: Optional[str] = None
    created_at: str = ""


class RuleRequest(BaseModel):
    rule_type: str
    name: str
    description: str = ""
    patterns: list[dict[str, Any]] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 100


class ToggleRequest(BaseModel):
    enabled: bool


class RuleResponse(BaseModel):
    id: str
    rule_type: str
    name: str
    updated_by: str
    description: str = ""
    patterns: list[dict[str, Any]] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 100
    created_at: str = ""
    updated_at: str = ""
    version: int = 0


class ThreatRequest(BaseModel):
    threat_type: str
    category: str = "keyword"
    patterns: list[Any] = Field(default_factory=list)
    severity: str = "medium"
    confidence: float = 0.8
    source: str = "manual"
    description: str = ""
    context: str = ""
    geographic_scope: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=lambda: ["en"])
    expires_at: Optional[str] = None


class ThreatActiveRequest(BaseModel):
    is_active: bool


class ThreatResponse(BaseModel):
    id: str
    threat_id: str
    threat_type: str
    category: str
    added_by: str
    patterns: list[dict[str, Any]] = Field(default_factory=list)
    severity: str = "medium"
    confidence: float = 0.8
    source: str = "manual"
    description: str = ""
    context: str = ""
    verified_by: Optional[str] = None
    verified_at: Optional[str] = None
    is_active: bool = True
    geographic_scope: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    expires_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0


# ---------------------------------------------------------------------------
# Enforcement
# ---------------------------------------------------------------------------


class SuspendRequest(BaseModel):
    user_id: str
    reason: str
    severity: str = "major"
    duration_hours: Optional[float] = Field(None, gt=0)
    restrictions: Optional[dict[str, bool]] = None
    preserve_evidence: bool = True


class LiftRequest(BaseModel):
    reason: str = ""


class WarnRequest(BaseModel):
    reason: str
    flag_id: Optional[str] = None


class EmergencyBlockRequest(BaseModel):
    message_id: str
    reason: str = ""
    notify_authorities: bool = False
    agency: str = "other"


class SuspensionResponse(BaseModel):
    """Mirrors modguard.models.enforcement.UserSuspension."""

    id: str
    user_id: str
    suspended_by: str
    reason: str
    severity: str
    type: str
    restrictions: dict[str, bool] = Field(default_factory=dict)
    is_active: bool = True
    suspended_at: str = ""
    duration_hours: Optional[float] = None
    expires_at: Optional[str] = None
    evidence_preserved: bool = False
    related_flag_ids: list[str] = Field(default_factory=list)
    ended_at: Optional[str] = None
    ended_by: Optional[str] = None
    ended_reason: Optional[str] = None
    replaced_by: Optional[str] = None
    version: int = 0


class CapabilityResponse(BaseModel):
    user_id: str
    capability: str
    allowed: bool


# ---------------------------------------------------------------------------
# Cases and evidence holds
# ---------------------------------------------------------------------------


class FileReportRequest(BaseModel):
    flag_id: str
    agency: str = "other"
    urgency: str = "priority"
    additional_info: str = ""
    preservation_request: bool = True


class AgencyResponseRequest(BaseModel):
    status: str
    external_case_id: str = ""
    investigator_contact: str = ""
    additional_requests: list[str] = Field(default_factory=list)
    message: str = ""


class ReportResponse(BaseModel):
    """Mirrors modguard.models.cases.LawEnforcementReport."""

    id: str
    case_id: str
    content_flag_id: str
    message_id: str
    reported_user_id: str
    conversation_id: str
    reported_by: str
    report_data: dict[str, Any]
    external_agency: str
    urgency: str
    status: str
    threat_categories: list[str] = Field(default_factory=list)
    risk_score: Optional[float] = None
    preservation_notice: Optional[dict[str, Any]] = None
    submitted_at: Optional[str] = None
    submission_result: Optional[dict[str, Any]] = None
    agency_response: Optional[dict[str, Any]] = None
    status_history: list[str] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    version: int = 0


class HoldScopeModel(BaseModel):
    user_ids: list[str] = Field(default_factory=list)
    conversation_ids: list[str] = Field(default_factory=list)
    message_ids: list[str] = Field(default_factory=list)
    start: Optional[str] = None
    end: Optional[str] = None


class CreateHoldRequest(BaseModel):
    legal_basis: str
    retention_class: str = "standard"
    scope: HoldScopeModel
    case_id: Optional[str] = None
    reason: str = ""


class ExtendHoldRequest(BaseModel):
    days: Optional[int] = Field(None, gt=0)


class ReleaseHoldRequest(BaseModel):
    reason: str = ""


class HoldResponse(BaseModel):
    """Mirrors modguard.models.cases.EvidencePreservation."""

    id: str
    requested_by: str
    legal_basis: str
    retention_class: str
    scope: HoldScopeModel
    expires_at: str
    status: str
    case_id: Optional[str] = None
    reason: str = ""
    released_by: Optional[str] = None
    released_at: Optional[str] = None
    extension_count: int = 0
    created_at: str = ""
    version: int = 0


# ---------------------------------------------------------------------------
# Privacy
# ---------------------------------------------------------------------------


class ScreenshotRequest(BaseModel):
    conversation_id: str
    user_id: str
    method: str = "screenshot"
    message_id: Optional[str] = None
    device: Optional[dict[str, str]] = None


class ScreenshotResponse(BaseModel):
    blocked: bool
    log_id: str
    message: str
    user_action: str = "none"
    stays_in_chat: bool = True
    alert_id: Optional[str] = None


class SecretActionRequest(BaseModel):
    conversation_id: str
    action_type: str
    user_id: str


class SecretActionResponse(BaseModel):
    allowed: bool
    conversation_type: str
    action_type: str
    reason: str


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class MaintenanceRequest(BaseModel):
    operations: list[str] = Field(default_factory=lambda: ["all"])


class CleanupRequest(BaseModel):
    cleanup_type: str
    criteria: dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False
    batch_size: Optional[int] = Field(None, gt=0)


class CleanupResponse(BaseModel):
    cleanup_type: str
    dry_run: bool
    matched: int = 0
    deleted: int = 0
    would_delete: int = 0
    skipped_held: int = 0
    errors: int = 0
    details: dict[str, int] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Security: audit, alerts, webhooks
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    """Mirrors modguard.security.audit_log.AuditEntry."""

    id: str
    timestamp: str
    action: str
    category: str
    actor: str
    actor_type: str = "user"
    target: dict[str, Optional[str]] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)
    severity: str = "info"
    outcome: dict[str, Any] = Field(default_factory=dict)


class AuditExportResponse(BaseModel):
    format: str
    content: str
    record_count: int


class AlertResponse(BaseModel):
    """Mirrors modguard.models.alerts.SecurityAlert."""

    id: str
    category: str
    severity: str
    title: str
    description: str
    status: str
    related_user_id: Optional[str] = None
    related_conversation_id: Optional[str] = None
    related_message_ids: list[str] = Field(default_factory=list)
    related_flag_ids: list[str] = Field(default_factory=list)
    automatic_detection: bool = True
    risk_score: Optional[float] = None
    acknowledged_by: Optional[str] = None
    escalated_to: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None
    actions_taken: list[str] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    version: int = 0


class EscalateAlertRequest(BaseModel):
    escalated_to: str


class ResolveAlertRequest(BaseModel):
    resolution: str
    actions_taken: list[str] = Field(default_factory=list)


class DismissAlertRequest(BaseModel):
    reason: str = ""


class CreateWebhookRequest(BaseModel):
    url: str
    categories: list[str]
    secret: str = ""
    name: str = ""


class WebhookResponse(BaseModel):
    id: str
    name: str
    url: str
    categories: list[str] = Field(default_factory=list)
    active: bool = True
    created_at: str = ""
    updated_at: str = ""


class WebhookDeliveryResponse(BaseModel):
    id: str
    webhook_id: str
    category: str
    recipients: list[str] = Field(default_factory=list)
    response_status: int = 0
    success: bool = False
    delivered_at: str = ""
    duration_ms: int = 0
