"""Law-enforcement case reports and evidence preservation holds."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from modguard.models.base import coerce_enum, coerce_list, coerce_obj
from modguard.models.flags import Detection
from modguard.utils.timeutil import now_iso


class CaseStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    INVESTIGATING = "investigating"
    ADDITIONAL_INFO_REQUESTED = "additional_info_requested"
    CLOSED = "closed"
    FAILED = "failed"
    REJECTED = "rejected"


class Urgency(str, Enum):
    ROUTINE = "routine"
    PRIORITY = "priority"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class Agency(str, Enum):
    FBI = "fbi"
    DEA = "dea"
    ATF = "atf"
    ICE = "ice"
    LOCAL_POLICE = "local_police"
    INTERPOL = "interpol"
    NCMEC = "ncmec"
    OTHER = "other"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    RELEASED = "released"
    EXTENDED = "extended"


class LegalBasis(str, Enum):
    LAW_ENFORCEMENT_REQUEST = "law_enforcement_request"
    COURT_ORDER = "court_order"
    EMERGENCY = "emergency"
    INTERNAL_INVESTIGATION = "internal_investigation"


@dataclass
class UserSnapshot:
    """Profile fields of the reported user, frozen at filing time."""

    user_id: str
    username: str = ""
    full_name: str = ""
    email: str = ""
    registration_date: Optional[str] = None
    last_active: Optional[str] = None


@dataclass
class ReportData:
    """Point-in-time legal snapshot of the flagged content and its author."""

    message_content: str
    message_type: str
    sent_at: Optional[str]
    user_info: UserSnapshot
    risk_score: Optional[float] = None
    severity: Optional[str] = None
    detections: list[Detection] = field(default_factory=list)
    analysis_details: dict[str, Any] = field(default_factory=dict)
    additional_info: str = ""
    legal_basis: str = "Threat detection and public safety"
    preservation_request: bool = True

    def __post_init__(self) -> None:
        self.user_info = coerce_obj(UserSnapshot, self.user_info)
        self.detections = coerce_list(Detection, self.detections)


@dataclass
class PreservationNotice:
    issued: bool
    hold_id: str
    issued_at: str
    expires_at: str
    scope: str = "User data and communications related to case"


@dataclass
class SubmissionResult:
    success: bool
    response_code: str = ""
    response_message: str = ""
    confirmation_number: str = ""
    submission_method: str = ""


@dataclass
class AgencyResponse:
    """Latest update received from the external agency."""

    status: str
    received_at: str
    external_case_id: str = ""
    investigator_contact: str = ""
    additional_requests: list[str] = field(default_factory=list)
    message: str = ""


@dataclass
class LawEnforcementReport:
    """A case filed against an external agency."""

    id: str
    case_id: str
    content_flag_id: str
    message_id: str
    reported_user_id: str
    conversation_id: str
    reported_by: str
    report_data: ReportData
    external_agency: Agency = Agency.OTHER
    urgency: Urgency = Urgency.PRIORITY
    status: CaseStatus = CaseStatus.DRAFT
    threat_categories: list[str] = field(default_factory=list)
    risk_score: Optional[float] = None
    preservation_notice: Optional[PreservationNotice] = None
    submitted_at: Optional[str] = None
    submission_result: Optional[SubmissionResult] = None
    agency_response: Optional[AgencyResponse] = None
    status_history: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.external_agency = coerce_enum(Agency, self.external_agency)
        self.urgency = coerce_enum(Urgency, self.urgency)
        self.status = coerce_enum(CaseStatus, self.status)
        self.report_data = coerce_obj(ReportData, self.report_data)
        self.preservation_notice = coerce_obj(PreservationNotice, self.preservation_notice)
        self.submission_result = coerce_obj(SubmissionResult, self.submission_result)
        self.agency_response = coerce_obj(AgencyResponse, self.agency_response)


@dataclass
class HoldScope:
    """What a legal hold covers. A message is in scope when any id matches
    and, if a date range is set, it was sent inside that range."""

    user_ids: list[str] = field(default_factory=list)
    conversation_ids: list[str] = field(default_factory=list)
    message_ids: list[str] = field(default_factory=list)
    start: Optional[str] = None
    end: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.user_ids or self.conversation_ids or self.message_ids)


@dataclass
class EvidencePreservation:
    """A legal hold over a scope of users, conversations and messages."""

    id: str
    requested_by: str
    legal_basis: LegalBasis
    retention_class: str
    scope: HoldScope
    expires_at: str
    status: HoldStatus = HoldStatus.ACTIVE
    case_id: Optional[str] = None
    reason: str = ""
    released_by: Optional[str] = None
    released_at: Optional[str] = None
    extension_count: int = 0
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.legal_basis = coerce_enum(LegalBasis, self.legal_basis)
        self.status = coerce_enum(HoldStatus, self.status)
        self.scope = coerce_obj(HoldScope, self.scope) or HoldScope()
