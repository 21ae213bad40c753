"""Law-enforcement case reports.

A report can only be filed from an existing content flag. It snapshots the
message, the author's profile and the analysis at filing time, so later
edits or deletions never change what was reported. Filing marks the source
flag escalated to law enforcement; the accompanying critical alert is raised
by the action executor, which is the only caller.

Case status only moves forward::

    draft -> submitted -> acknowledged -> investigating <-> additional_info_requested -> closed

``failed`` and ``rejected`` are terminal and reachable from any state
before ``closed``.
"""

from __future__ import annotations

import logging
from typing import Optional

from modguard.errors import ConflictError, DependencyUnavailable, NotFoundError, ValidationError
from modguard.evidence.gateway import AgencyGateway
from modguard.evidence.holds import HoldManager
from modguard.models.cases import (
    Agency,
    AgencyResponse,
    CaseStatus,
    HoldScope,
    LawEnforcementReport,
    LegalBasis,
    PreservationNotice,
    ReportData,
    UserSnapshot,
    Urgency,
)
from modguard.models.flags import ContentFlag, Detection, EscalationTarget
from modguard.notify.webhooks import Notifier, deliver
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import new_id, now_iso, stamped_id

logger = logging.getLogger(__name__)

LEGAL_TEAM = "legal_team"

_RANK = {
    CaseStatus.DRAFT: 0,
    CaseStatus.SUBMITTED: 1,
    CaseStatus.ACKNOWLEDGED: 2,
    CaseStatus.INVESTIGATING: 3,
    CaseStatus.ADDITIONAL_INFO_REQUESTED: 3,
    CaseStatus.CLOSED: 4,
}
_TERMINAL = (CaseStatus.CLOSED, CaseStatus.FAILED, CaseStatus.REJECTED)
AGENCY_STATUSES = (
    CaseStatus.ACKNOWLEDGED,
    CaseStatus.INVESTIGATING,
    CaseStatus.ADDITIONAL_INFO_REQUESTED,
    CaseStatus.CLOSED,
    CaseStatus.REJECTED,
)


def can_transition(current: CaseStatus, target: CaseStatus) -> bool:
    if current in _TERMINAL or current == target:
        return False
    if target in (CaseStatus.FAILED, CaseStatus.REJECTED):
        return True
    return _RANK[target] >= _RANK[current]


def _apply_status(report: LawEnforcementReport, target: CaseStatus) -> None:
    if not can_transition(report.status, target):
        raise ConflictError(
            f"case '{report.case_id}' cannot move from {report.status.value} to {target.value}"
        )
    report.status = target
    report.status_history.append(f"{target.value}@{now_iso()}")


class CaseManager:
    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        holds: HoldManager,
        notifier: Notifier,
        gateway: Optional[AgencyGateway] = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._holds = holds
        self._notifier = notifier
        self._gateway = gateway

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, report_id: str) -> LawEnforcementReport:
        return self._store.reports.require(report_id)

    def get_by_case(self, case_id: str) -> LawEnforcementReport:
        report = self._store.reports.first(lambda r: r.case_id == case_id)
        if report is None:
            raise NotFoundError("LawEnforcementReport", case_id)
        return report

    def list_reports(
        self, status: Optional[str] = None, user_id: Optional[str] = None
    ) -> list[LawEnforcementReport]:
        reports = self._store.reports.find(
            lambda r: (status is None or r.status.value == status)
            and (user_id is None or r.reported_user_id == user_id)
        )
        reports.sort(key=lambda r: r.created_at, reverse=True)
        return reports

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    def _snapshot(self, flag: ContentFlag, additional_info: str, preservation: bool) -> ReportData:
        message = self._store.messages.require(flag.message_id)
        profile = self._store.users.get(flag.flagged_user_id)
        user = UserSnapshot(user_id=flag.flagged_user_id)
        if profile is not None:
            user = UserSnapshot(
                user_id=profile.id,
                username=profile.username,
                full_name=profile.full_name,
                email=profile.email,
                registration_date=profile.registration_date or profile.created_at,
                last_active=profile.last_active_at,
            )
        return ReportData(
            message_content=message.content,
            message_type=message.message_type,
            sent_at=message.sent_at,
            user_info=user,
            risk_score=flag.risk_score,
            severity=flag.severity.value if flag.severity else None,
            detections=[Detection(**vars(d)) for d in flag.detections],
            analysis_details=dict(flag.analysis_details),
            additional_info=additional_info,
            preservation_request=preservation,
        )

    def file_report(
        self,
        flag_id: str,
        reported_by: str,
        agency: str | Agency = Agency.OTHER,
        urgency: str | Urgency = Urgency.PRIORITY,
        *,
        additional_info: str = "",
        preservation_request: bool = True,
        submit: bool = True,
    ) -> LawEnforcementReport:
        try:
            agency_enum = Agency(agency)
            urgency_enum = Urgency(urgency)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        flag = self._store.content_flags.require(flag_id)
        report_data = self._snapshot(flag, additional_info, preservation_request)
        case_id = stamped_id("CASE")

        notice = None
        if preservation_request:
            hold = self._holds.create_hold(
                reported_by,
                LegalBasis.LAW_ENFORCEMENT_REQUEST,
                "law_enforcement",
                HoldScope(
                    user_ids=[flag.flagged_user_id],
                    conversation_ids=[flag.conversation_id],
                    message_ids=[flag.message_id],
                ),
                case_id=case_id,
                reason=f"Preservation for case {case_id}",
            )
            notice = PreservationNotice(
                issued=True,
                hold_id=hold.id,
                issued_at=hold.created_at,
                expires_at=hold.expires_at,
            )

        report = self._store.reports.insert(
            LawEnforcementReport(
                id=new_id(),
                case_id=case_id,
                content_flag_id=flag.id,
                message_id=flag.message_id,
                reported_user_id=flag.flagged_user_id,
                conversation_id=flag.conversation_id,
                reported_by=reported_by,
                report_data=report_data,
                external_agency=agency_enum,
                urgency=urgency_enum,
                threat_categories=flag.categories,
                risk_score=flag.risk_score,
                preservation_notice=notice,
                status_history=[f"{CaseStatus.DRAFT.value}@{now_iso()}"],
            )
        )

        def escalate(f: ContentFlag) -> None:
            f.escalated = True
            f.escalated_to = EscalationTarget.LAW_ENFORCEMENT
            f.escalated_at = now_iso()

        self._store.content_flags.update(flag.id, escalate)

        self._audit.log_event(
            "report_to_authorities",
            "law_enforcement",
            reported_by,
            target={
                "case_id": case_id,
                "content_flag_id": flag.id,
                "message_id": flag.message_id,
                "user_id": flag.flagged_user_id,
                "conversation_id": flag.conversation_id,
                "hold_id": notice.hold_id if notice else None,
            },
            details={"agency": agency_enum.value, "urgency": urgency_enum.value},
            severity="critical",
        )
        deliver(self._notifier, [LEGAL_TEAM], "case_filed", {"case_id": case_id, "agency": agency_enum.value})
        logger.info("Law enforcement report filed", extra={"case_id": case_id, "content_flag_id": flag.id})

        if submit and self._gateway is not None:
            try:
                report = self.submit_report(report.id, reported_by)
            except DependencyUnavailable as exc:
                logger.warning(
                    "Case submission deferred",
                    extra={"case_id": case_id, "error": exc.message},
                )
                report = self.get(report.id)
        return report

    # ------------------------------------------------------------------
    # Submission and agency callbacks
    # ------------------------------------------------------------------

    def submit_report(self, report_id: str, actor: str) -> LawEnforcementReport:
        """Submit a draft through the gateway.

        A gateway outage leaves the case in draft and raises
        DependencyUnavailable; an explicit refusal marks it failed.
        """
        report = self.get(report_id)
        if report.status != CaseStatus.DRAFT:
            raise ConflictError(f"case '{report.case_id}' is {report.status.value}, not draft")
        if self._gateway is None:
            raise DependencyUnavailable("no agency gateway configured", code="gateway_not_configured")

        try:
            result = self._gateway.submit(report)
        except DependencyUnavailable as exc:
            self._audit.log_event(
                "submit_case",
                "law_enforcement",
                actor,
                target={"case_id": report.case_id},
                details={"agency": report.external_agency.value},
                severity="high",
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            raise

        def mutate(r: LawEnforcementReport) -> None:
            _apply_status(r, CaseStatus.SUBMITTED if result.success else CaseStatus.FAILED)
            r.submission_result = result
            if result.success:
                r.submitted_at = now_iso()

        report = self._store.reports.update(report_id, mutate)
        self._audit.log_event(
            "submit_case",
            "law_enforcement",
            actor,
            target={"case_id": report.case_id},
            details={
                "agency": report.external_agency.value,
                "status": report.status.value,
                "confirmation_number": result.confirmation_number,
            },
            severity="high",
            success=result.success,
            error_code=None if result.success else result.response_code,
            error_message=None if result.success else result.response_message,
        )
        return report

    def record_agency_response(
        self,
        case_id: str,
        status: str | CaseStatus,
        *,
        external_case_id: str = "",
        investigator_contact: str = "",
        additional_requests: Optional[list[str]] = None,
        message: str = "",
        actor: str = "agency",
    ) -> LawEnforcementReport:
        """Apply an update received from the external agency."""
        try:
            target = CaseStatus(status)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if target not in AGENCY_STATUSES:
            raise ValidationError(f"agencies cannot set status {target.value}")
        report = self.get_by_case(case_id)

        def mutate(r: LawEnforcementReport) -> None:
            if r.status == CaseStatus.DRAFT:
                raise ConflictError(f"case '{case_id}' has not been submitted")
            _apply_status(r, target)
            r.agency_response = AgencyResponse(
                status=target.value,
                received_at=now_iso(),
                external_case_id=external_case_id,
                investigator_contact=investigator_contact,
                additional_requests=list(additional_requests or []),
                message=message,
            )

        try:
            report = self._store.reports.update(report.id, mutate)
        except ConflictError as exc:
            self._audit.log_event(
                "record_agency_response",
                "law_enforcement",
                actor,
                actor_type="external",
                target={"case_id": case_id},
                details={"status": target.value},
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            raise

        self._audit.log_event(
            "record_agency_response",
            "law_enforcement",
            actor,
            actor_type="external",
            target={"case_id": case_id, "user_id": report.reported_user_id},
            details={"status": target.value, "external_case_id": external_case_id},
        )
        return report
