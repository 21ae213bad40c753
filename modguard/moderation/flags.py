"""Content flag lifecycle: submission, review, escalation and user reports.

``pending -> {confirmed, false_positive, resolved, escalated}``. Any status
may later move to ``escalated`` through manual escalation. Reviews are
last-write-wins on the review fields, and every review attempt is audited so
the log keeps the full history even when the flag only shows the latest.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional

from modguard.actions.executor import ActionExecutor, ActionOutcome, ActionRequest
from modguard.alerts.manager import AlertManager
from modguard.analysis import classifier
from modguard.analysis.analyzer import AnalysisResult, ContentAnalyzer, run_analysis
from modguard.config import ModerationConfig
from modguard.errors import ConflictError, DependencyUnavailable, ValidationError
from modguard.models.flags import (
    AnalysisStatus,
    ContentFlag,
    Detection,
    EscalationTarget,
    FlagStatus,
    FlaggedBy,
    Severity,
    UserReport,
)
from modguard.models.messaging import Message
from modguard.notify.webhooks import Notifier, deliver
from modguard.policy.engine import FlagDecision, FlagHistory, evaluate_flag, evaluate_review
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import new_id, now_iso, parse_iso

logger = logging.getLogger(__name__)

MODERATION_TEAM = "moderation_team"
USER_REPORT_SCORE = 0.5


@dataclass
class ReviewOutcome:
    flag: ContentFlag
    action: Optional[ActionOutcome] = None


@dataclass
class FlagSummary:
    total: int = 0
    average_risk: float = 0.0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_status: dict[str, int] = field(default_factory=dict)
    analysis_pending: int = 0


@dataclass
class FlagPage:
    items: list[ContentFlag]
    page: int
    limit: int
    total: int
    summary: FlagSummary

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit)) if self.limit else 1


def summarize(flags: list[ContentFlag]) -> FlagSummary:
    summary = FlagSummary(total=len(flags))
    scored = [f.risk_score for f in flags if f.risk_score is not None]
    if scored:
        summary.average_risk = round(sum(scored) / len(scored), 4)
    for f in flags:
        if f.severity is not None:
            summary.by_severity[f.severity.value] = summary.by_severity.get(f.severity.value, 0) + 1
        summary.by_status[f.status.value] = summary.by_status.get(f.status.value, 0) + 1
        if f.analysis_status == AnalysisStatus.PENDING:
            summary.analysis_pending += 1
    return summary


class FlagService:
    """Creates and mutates content flags.

    *analyzer_source* is called once per analysis so rule edits take effect
    without rebuilding the service.
    """

    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        alerts: AlertManager,
        executor: ActionExecutor,
        notifier: Notifier,
        config: ModerationConfig,
        analyzer_source: Callable[[], ContentAnalyzer],
    ) -> None:
        self._store = store
        self._audit = audit
        self._alerts = alerts
        self._executor = executor
        self._notifier = notifier
        self._config = config
        self._analyzer_source = analyzer_source

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_flag(self, flag_id: str) -> ContentFlag:
        return self._store.content_flags.require(flag_id)

    def list_flags(
        self,
        *,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        flagged_by: Optional[str] = None,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        min_risk: Optional[float] = None,
        max_risk: Optional[float] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> FlagPage:
        """Filtered, paginated flags (newest first) plus a summary of all matches."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        try:
            start = parse_iso(start_date)
            end = parse_iso(end_date)
        except ValueError as exc:
            raise ValidationError(f"invalid date filter: {exc}") from exc

        def match(f: ContentFlag) -> bool:
            if status is not None and f.status.value != status:
                return False
            if severity is not None and (f.severity is None or f.severity.value != severity):
                return False
            if flagged_by is not None and f.flagged_by.value != flagged_by:
                return False
            if user_id is not None and f.flagged_user_id != user_id:
                return False
            if conversation_id is not None and f.conversation_id != conversation_id:
                return False
            if min_risk is not None and (f.risk_score is None or f.risk_score < min_risk):
                return False
            if max_risk is not None and (f.risk_score is None or f.risk_score > max_risk):
                return False
            created = parse_iso(f.created_at)
            if start is not None and created < start:
                return False
            if end is not None and created > end:
                return False
            return True

        flags = self._store.content_flags.find(match)
        flags.sort(key=lambda f: f.created_at, reverse=True)
        offset = (page - 1) * limit
        return FlagPage(
            items=flags[offset : offset + limit],
            page=page,
            limit=limit,
            total=len(flags),
            summary=summarize(flags),
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_content(
        self,
        message_id: str,
        analysis_type: str = "comprehensive",
        *,
        actor: str = "system",
        flagged_by: FlaggedBy = FlaggedBy.AI_DETECTION,
        scan_id: Optional[str] = None,
        min_score: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Optional[ContentFlag]:
        """Score one message and record the result as a content flag.

        An analyzer timeout or failure still records a flag, with
        ``analysis_status=analysis_pending`` and no score, so the message
        cannot pass as low risk. Use :meth:`retry_analysis` to score it later.

        With *min_score* set, a completed analysis scoring at or below it
        records nothing and returns None.
        """
        message = self._store.messages.require(message_id)
        flag = ContentFlag(
            id=new_id(),
            message_id=message.id,
            conversation_id=message.conversation_id,
            flagged_user_id=message.sender_id,
            analysis_type=analysis_type,
            flagged_by=flagged_by,
            scan_id=scan_id,
        )
        try:
            result = self._analyze(message, analysis_type, timeout)
        except DependencyUnavailable as exc:
            flag.analysis_status = AnalysisStatus.PENDING
            flag.review_required = True
            flag.analysis_details = {"error_code": exc.code, "error": exc.message}
            flag = self._store.content_flags.insert(flag)
            self._audit.log_event(
                "analyze_content",
                "content_moderation",
                actor,
                actor_type="system" if actor == "system" else "user",
                target=self._target(flag),
                details={"analysis_type": analysis_type, "analysis_status": flag.analysis_status.value},
                severity="high",
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            logger.warning(
                "Content analysis unavailable",
                extra={"content_flag_id": flag.id, "message_id": message.id, "error_code": exc.code},
            )
            return flag

        if min_score is not None and result.risk_score <= min_score:
            return None
        decision = self._decide(result.risk_score, FlagHistory())
        self._apply_result(flag, result, decision)
        flag = self._store.content_flags.insert(flag)
        self._after_scoring(flag, decision, actor, "analyze_content")
        return flag

    def retry_analysis(
        self, flag_id: str, actor: str = "system", timeout: Optional[float] = None
    ) -> ContentFlag:
        """Score a flag whose earlier analysis did not complete."""
        flag = self.get_flag(flag_id)
        if flag.analysis_status != AnalysisStatus.PENDING:
            raise ConflictError(f"content flag '{flag_id}' has already been analyzed")
        message = self._store.messages.require(flag.message_id)
        try:
            result = self._analyze(message, flag.analysis_type, timeout)
        except DependencyUnavailable as exc:
            self._audit.log_event(
                "retry_content_analysis",
                "content_moderation",
                actor,
                target=self._target(flag),
                severity="high",
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            raise

        decision = self._decide(result.risk_score, FlagHistory(already_escalated=flag.escalated))

        def mutate(f: ContentFlag) -> None:
            if f.analysis_status != AnalysisStatus.PENDING:
                raise ConflictError(f"content flag '{flag_id}' was analyzed concurrently")
            f.analysis_status = AnalysisStatus.COMPLETE
            self._apply_result(f, result, decision)

        flag = self._store.content_flags.update(flag_id, mutate)
        self._after_scoring(flag, decision, actor, "retry_content_analysis")
        return flag

    def report_message(
        self,
        message_id: str,
        reported_by: str,
        reason: str,
        category: str = "other",
        additional_info: str = "",
    ) -> ContentFlag:
        """Record a user report as a flag that always needs human review."""
        if not reason:
            raise ValidationError("reason is required")
        message = self._store.messages.require(message_id)
        score = USER_REPORT_SCORE
        decision = self._decide(score, FlagHistory(forced_review=True))
        flag = ContentFlag(
            id=new_id(),
            message_id=message.id,
            conversation_id=message.conversation_id,
            flagged_user_id=message.sender_id,
            analysis_type="text",
            risk_score=score,
            confidence=1.0,
            detections=[Detection(type="manual_report", category=category, severity="medium", confidence=1.0)],
            flagged_by=FlaggedBy.USER_REPORT,
            user_report=UserReport(
                reported_by=reported_by,
                reason=reason,
                additional_info=additional_info,
                reported_at=now_iso(),
            ),
        )
        self._apply_decision(flag, decision)
        flag.severity = Severity.MEDIUM
        flag = self._store.content_flags.insert(flag)

        def bump(m: Message) -> None:
            m.report_count += 1

        self._store.messages.update(message.id, bump)
        self._after_scoring(flag, decision, reported_by, "report_message", {"reason": reason, "category": category})
        return flag

    # ------------------------------------------------------------------
    # Review and escalation
    # ------------------------------------------------------------------

    def review_flag(
        self,
        flag_id: str,
        reviewer: str,
        decision: str,
        *,
        notes: str = "",
        moderation_action: str = "none",
        escalate: bool = False,
        escalate_to: Optional[str] = None,
        expected_version: Optional[int] = None,
        reviewer_role: str = "moderator",
    ) -> ReviewOutcome:
        """Apply a reviewer's decision and run the chosen moderation action.

        Re-reviewing overwrites the previous review. The action, if any, is
        carried out by the action executor after the review is stored.
        """
        review = evaluate_review(decision, moderation_action, escalate, escalate_to)

        def mutate(f: ContentFlag) -> None:
            f.status = review.status
            f.reviewed_by = reviewer
            f.reviewed_at = now_iso()
            f.review_notes = notes
            f.moderation_action = review.action
            if review.escalate:
                f.escalated = True
                f.escalated_to = review.escalate_to
                f.escalated_at = f.escalated_at or now_iso()

        try:
            flag = self._store.content_flags.update(flag_id, mutate, expected_version=expected_version)
        except ConflictError as exc:
            self._audit.log_event(
                "review_content_flag",
                "content_moderation",
                reviewer,
                target={"content_flag_id": flag_id},
                details={"decision": review.status.value, "moderation_action": review.action.value},
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            raise

        self._audit.log_event(
            "review_content_flag",
            "content_moderation",
            reviewer,
            target=self._target(flag),
            details={
                "decision": review.status.value,
                "moderation_action": review.action.value,
                "escalated": review.escalate,
                "escalated_to": review.escalate_to.value if review.escalate_to else None,
                "notes": notes,
            },
            severity="medium" if review.has_action else "info",
        )
        logger.info(
            "Content flag reviewed",
            extra={"content_flag_id": flag.id, "decision": review.status.value},
        )

        outcome = ReviewOutcome(flag=flag)
        if review.has_action:
            outcome.action = self._executor.execute(
                ActionRequest(review.action, reviewer, notes, actor_role=reviewer_role, flag=flag)
            )
            outcome.flag = self.get_flag(flag_id)
        return outcome

    def escalate_flag(
        self, flag_id: str, escalated_to: str, actor: str, reason: str = ""
    ) -> ContentFlag:
        """Manually escalate a flag from any status."""
        try:
            target = EscalationTarget(escalated_to)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        def mutate(f: ContentFlag) -> None:
            f.status = FlagStatus.ESCALATED
            f.escalated = True
            f.escalated_to = target
            f.escalated_at = now_iso()

        flag = self._store.content_flags.update(flag_id, mutate)
        self._audit.log_event(
            "escalate_content_flag",
            "content_moderation",
            actor,
            target=self._target(flag),
            details={"escalated_to": target.value, "reason": reason},
            severity="high",
        )
        return flag

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _analyze(self, message: Message, analysis_type: str, timeout: Optional[float]) -> AnalysisResult:
        return run_analysis(
            self._analyzer_source(),
            message.content,
            analysis_type,
            timeout or self._config.analyzer_timeout_seconds,
        )

    def _decide(self, score: float, history: FlagHistory) -> FlagDecision:
        thresholds = self._config.thresholds
        return evaluate_flag(score, classifier.classify_severity(score, thresholds), history, thresholds)

    @staticmethod
    def _apply_result(flag: ContentFlag, result: AnalysisResult, decision: FlagDecision) -> None:
        flag.risk_score = result.risk_score
        flag.confidence = result.confidence
        flag.detections = list(result.detections)
        flag.analysis_details = dict(result.details)
        FlagService._apply_decision(flag, decision)

    @staticmethod
    def _apply_decision(flag: ContentFlag, decision: FlagDecision) -> None:
        flag.severity = decision.severity
        flag.review_required = decision.review_required
        if decision.auto_escalate:
            flag.escalated = True
            flag.escalated_to = decision.escalate_to
            flag.escalated_at = now_iso()

    @staticmethod
    def _target(flag: ContentFlag) -> dict[str, Optional[str]]:
        return {
            "content_flag_id": flag.id,
            "message_id": flag.message_id,
            "conversation_id": flag.conversation_id,
            "user_id": flag.flagged_user_id,
        }

    def _after_scoring(
        self,
        flag: ContentFlag,
        decision: FlagDecision,
        actor: str,
        action: str,
        extra: Optional[dict] = None,
    ) -> None:
        self._audit.log_event(
            action,
            "content_moderation",
            actor,
            actor_type="system" if actor == "system" else "user",
            target=self._target(flag),
            details={
                "analysis_type": flag.analysis_type,
                "risk_score": flag.risk_score,
                "severity": flag.severity.value if flag.severity else None,
                "review_required": flag.review_required,
                "auto_escalated": decision.auto_escalate,
                "reasons": decision.reasons,
                **(extra or {}),
            },
            severity="critical" if decision.auto_escalate else "info",
        )
        if decision.alert is not None:
            self._alerts.raise_alert(
                decision.alert,
                user_id=flag.flagged_user_id,
                conversation_id=flag.conversation_id,
                message_ids=[flag.message_id],
                flag_ids=[flag.id],
                automatic=True,
                actor=actor,
            )
            logger.warning(
                "Content flag auto-escalated",
                extra={"content_flag_id": flag.id, "risk_score": flag.risk_score},
            )
        if flag.review_required:
            deliver(
                self._notifier,
                [MODERATION_TEAM],
                "content_flagged",
                {
                    "content_flag_id": flag.id,
                    "severity": flag.severity.value if flag.severity else None,
                    "flagged_by": flag.flagged_by.value,
                },
            )
