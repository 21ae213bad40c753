"""Action executor: carries out moderation actions and records outcomes.

Every call writes exactly one ``execute_moderation_action`` audit entry,
including when the action fails; the failure is audited and then re-raised.
Actions whose severity is high or above also raise a security alert.
Suspensions, holds and cases are changed only through their managers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from modguard.alerts.manager import AlertManager
from modguard.config import ModerationConfig
from modguard.enforcement.suspensions import SuspensionManager
from modguard.errors import ModerationError, ValidationError
from modguard.evidence.cases import CaseManager
from modguard.evidence.holds import HoldManager
from modguard.models.alerts import AlertCategory, AlertSeverity
from modguard.models.cases import Agency, HoldScope, LegalBasis, Urgency
from modguard.models.enforcement import ActorRole, SuspensionSeverity, SuspensionType
from modguard.models.flags import ContentFlag, ModerationAction
from modguard.models.messaging import Message, ModerationStatus
from modguard.policy.engine import AlertSpec, action_alert_severity
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import now_iso

logger = logging.getLogger(__name__)


@dataclass
class ActionRequest:
    """One action and everything needed to carry it out."""

    action: ModerationAction
    actor: str
    reason: str = ""
    actor_role: ActorRole = ActorRole.MODERATOR
    flag: Optional[ContentFlag] = None
    message_id: Optional[str] = None
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    preserve_evidence: bool = True
    agency: Agency = Agency.OTHER
    urgency: Urgency = Urgency.PRIORITY
    additional_info: str = ""
    notify_authorities: bool = False
    duration_hours: Optional[float] = None
    severity: Optional[SuspensionSeverity] = None
    permanent: bool = False
    restrictions: Optional[dict[str, bool]] = None

    def __post_init__(self) -> None:
        try:
            self.action = ModerationAction(self.action)
            self.actor_role = ActorRole(self.actor_role)
            self.agency = Agency(self.agency)
            self.urgency = Urgency(self.urgency)
            self.severity = SuspensionSeverity(self.severity) if self.severity else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if self.flag is not None:
            self.message_id = self.message_id or self.flag.message_id
            self.user_id = self.user_id or self.flag.flagged_user_id
            self.conversation_id = self.conversation_id or self.flag.conversation_id


@dataclass
class ActionOutcome:
    action: ModerationAction
    success: bool = True
    alert_id: Optional[str] = None
    suspension_id: Optional[str] = None
    case_id: Optional[str] = None
    report_id: Optional[str] = None
    hold_ids: list[str] = field(default_factory=list)
    message_hidden: bool = False
    nested: list[ActionOutcome] = field(default_factory=list)


class ActionExecutor:
    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        alerts: AlertManager,
        suspensions: SuspensionManager,
        holds: HoldManager,
        cases: CaseManager,
        config: ModerationConfig,
    ) -> None:
        self._store = store
        self._audit = audit
        self._alerts = alerts
        self._suspensions = suspensions
        self._holds = holds
        self._cases = cases
        self._config = config
        self._handlers: dict[ModerationAction, Callable[[ActionRequest, ActionOutcome], None]] = {
            ModerationAction.NONE: lambda req, out: None,
            ModerationAction.HIDE_MESSAGE: self._hide_message,
            ModerationAction.WARN: self._warn,
            ModerationAction.BLOCK_USER: self._block_user,
            ModerationAction.REPORT_AUTHORITIES: self._report_authorities,
            ModerationAction.EMERGENCY_BLOCK: self._emergency_block,
            ModerationAction.PRESERVE_EVIDENCE: self._preserve_evidence,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(self, request: ActionRequest) -> ActionOutcome:
        outcome = ActionOutcome(action=request.action)
        target = {
            "content_flag_id": request.flag.id if request.flag else None,
            "message_id": request.message_id,
            "user_id": request.user_id,
            "conversation_id": request.conversation_id,
        }
        try:
            self._handlers[request.action](request, outcome)
            severity = action_alert_severity(request.action)
            if request.action == ModerationAction.BLOCK_USER and request.severity == SuspensionSeverity.CRITICAL:
                severity = AlertSeverity.CRITICAL
            if severity is not None:
                alert = self._alerts.raise_alert(
                    self._alert_spec(request, outcome, severity),
                    user_id=request.user_id,
                    conversation_id=request.conversation_id,
                    message_ids=[request.message_id] if request.message_id else [],
                    flag_ids=[request.flag.id] if request.flag else [],
                    automatic=request.actor == "system",
                    actor=request.actor,
                )
                outcome.alert_id = alert.id
        except Exception as exc:
            outcome.success = False
            error_code = exc.code if isinstance(exc, ModerationError) else "internal_error"
            self._audit.log_event(
                "execute_moderation_action",
                "content_moderation",
                request.actor,
                target=target,
                details={"action": request.action.value, "reason": request.reason},
                severity="high",
                success=False,
                error_code=error_code,
                error_message=str(exc),
            )
            logger.error(
                "Moderation action failed",
                extra={"action": request.action.value, "error_code": error_code},
            )
            raise

        self._audit.log_event(
            "execute_moderation_action",
            "content_moderation",
            request.actor,
            target={**target, "suspension_id": outcome.suspension_id, "case_id": outcome.case_id},
            details={
                "action": request.action.value,
                "reason": request.reason,
                "alert_id": outcome.alert_id,
                "hold_ids": outcome.hold_ids,
                "message_hidden": outcome.message_hidden,
            },
            severity=severity.value if severity else "info",
        )
        return outcome

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _require(value: Optional[str], name: str, action: ModerationAction) -> str:
        if not value:
            raise ValidationError(f"{action.value} requires {name}")
        return value

    def _hide_message(self, req: ActionRequest, out: ActionOutcome) -> None:
        message_id = self._require(req.message_id, "message_id", req.action)
        reason = req.reason or "Moderation action"

        def hide(m: Message) -> None:
            m.moderation_status = ModerationStatus(
                status="hidden",
                reason=reason,
                reviewed_by=req.actor,
                reviewed_at=now_iso(),
            )

        self._store.messages.update(message_id, hide)
        out.message_hidden = True

    def _warn(self, req: ActionRequest, out: ActionOutcome) -> None:
        user_id = self._require(req.user_id, "user_id", req.action)
        self._suspensions.warn_user(
            user_id, req.actor, req.reason or "Content violation", req.flag.id if req.flag else None
        )

    def _block_user(self, req: ActionRequest, out: ActionOutcome) -> None:
        user_id = self._require(req.user_id, "user_id", req.action)
        suspension = self._suspensions.suspend(
            user_id,
            req.actor,
            req.reason or "Content violation",
            req.severity or SuspensionSeverity.MAJOR,
            duration_hours=None if req.permanent else (req.duration_hours or self._config.block_user_hours),
            suspension_type=SuspensionType.PERMANENT_BAN if req.permanent else SuspensionType.TEMPORARY_BAN,
            restrictions=req.restrictions,
            evidence_preserved=req.preserve_evidence,
            related_flag_ids=[req.flag.id] if req.flag else [],
            actor_role=req.actor_role,
        )
        out.suspension_id = suspension.id
        if req.preserve_evidence:
            self._hold(req, out, "standard", LegalBasis.INTERNAL_INVESTIGATION)

    def _report_authorities(self, req: ActionRequest, out: ActionOutcome) -> None:
        if req.flag is None:
            raise ValidationError("report_authorities requires a content flag")
        report = self._cases.file_report(
            req.flag.id,
            req.actor,
            req.agency,
            req.urgency,
            additional_info=req.additional_info or req.reason,
            preservation_request=req.preserve_evidence,
        )
        out.case_id = report.case_id
        out.report_id = report.id
        if report.preservation_notice:
            out.hold_ids.append(report.preservation_notice.hold_id)

    def _emergency_block(self, req: ActionRequest, out: ActionOutcome) -> None:
        if not req.message_id and not req.user_id:
            raise ValidationError("emergency_block requires message_id or user_id")
        reason = f"Emergency block - {req.reason}" if req.reason else "Emergency block"
        if req.message_id:
            self._hide_message(
                ActionRequest(ModerationAction.HIDE_MESSAGE, req.actor, reason, message_id=req.message_id),
                out,
            )
        if req.user_id:
            suspension = self._suspensions.suspend(
                req.user_id,
                req.actor,
                reason,
                SuspensionSeverity.CRITICAL,
                suspension_type=SuspensionType.EMERGENCY_BLOCK,
                evidence_preserved=req.preserve_evidence,
                related_flag_ids=[req.flag.id] if req.flag else [],
                actor_role=req.actor_role,
            )
            out.suspension_id = suspension.id
        if req.preserve_evidence:
            self._hold(req, out, "emergency", LegalBasis.EMERGENCY)

        if req.notify_authorities and req.message_id:
            flag = req.flag or self._flag_for_message(req.message_id)
            if flag is None:
                logger.warning(
                    "No content flag to report for emergency block",
                    extra={"message_id": req.message_id},
                )
                return
            nested = self.execute(
                ActionRequest(
                    ModerationAction.REPORT_AUTHORITIES,
                    req.actor,
                    reason,
                    actor_role=req.actor_role,
                    flag=flag,
                    urgency=Urgency.EMERGENCY,
                    agency=req.agency,
                    additional_info=reason,
                    preserve_evidence=req.preserve_evidence,
                )
            )
            out.nested.append(nested)
            out.case_id = nested.case_id
            out.report_id = nested.report_id

    def _preserve_evidence(self, req: ActionRequest, out: ActionOutcome) -> None:
        self._hold(req, out, "standard", LegalBasis.INTERNAL_INVESTIGATION)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _hold(self, req: ActionRequest, out: ActionOutcome, retention_class: str, basis: LegalBasis) -> None:
        scope = HoldScope(
            user_ids=[req.user_id] if req.user_id else [],
            conversation_ids=[],
            message_ids=[req.message_id] if req.message_id else [],
        )
        if scope.is_empty:
            raise ValidationError(f"{req.action.value} has nothing to preserve")
        hold = self._holds.create_hold(
            req.actor,
            basis,
            retention_class,
            scope,
            reason=req.reason or req.action.value,
        )
        out.hold_ids.append(hold.id)

    def _flag_for_message(self, message_id: str) -> Optional[ContentFlag]:
        flags = self._store.content_flags.find(lambda f: f.message_id == message_id)
        if not flags:
            return None
        return max(flags, key=lambda f: (f.risk_score or 0.0, f.created_at))

    def _alert_spec(self, req: ActionRequest, out: ActionOutcome, severity: AlertSeverity) -> AlertSpec:
        if req.action == ModerationAction.REPORT_AUTHORITIES:
            title = f"Law enforcement report filed: {out.case_id}"
            description = f"Case reported to {req.agency.value}"
        elif req.action == ModerationAction.EMERGENCY_BLOCK:
            title = "Emergency content block executed"
            description = req.reason or "Emergency block"
        else:
            title = f"User suspended: {req.reason or 'Content violation'}"
            description = req.reason or "Content violation"
        return AlertSpec(
            category=AlertCategory.EMERGENCY_ACTION,
            severity=severity,
            title=title,
            description=description,
            risk_score=req.flag.risk_score if req.flag else None,
        )
