"""Engine facade: wires every component over one storage directory.

The surrounding application, the CLI and the web app all talk to a single
:class:`ModerationEngine`. The components are public attributes for callers
that need the full API; the methods below cover the operations the
application calls most.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from modguard.actions.executor import ActionExecutor, ActionOutcome, ActionRequest
from modguard.alerts.manager import AlertManager
from modguard.analysis.analyzer import ContentAnalyzer
from modguard.analysis.llm_analyzer import DEFAULT_MODEL, LLMContentAnalyzer
from modguard.cleanup.scheduler import CleanupResult, CleanupScheduler
from modguard.config import ModerationConfig
from modguard.enforcement.suspensions import SuspensionManager
from modguard.errors import ValidationError
from modguard.evidence.cases import CaseManager
from modguard.evidence.gateway import AgencyGateway, HttpAgencyGateway
from modguard.evidence.holds import HoldManager
from modguard.guard.screenshot import ScreenshotGuard, ScreenshotResult
from modguard.models.base import from_dict
from modguard.models.cases import LawEnforcementReport
from modguard.models.enforcement import SuspensionSeverity, UserSuspension
from modguard.models.flags import ContentFlag, ModerationAction
from modguard.models.messaging import Conversation, Message, UserProfile
from modguard.moderation.activity import ActivityService
from modguard.moderation.flags import FlagService, ReviewOutcome
from modguard.moderation.scanner import ConversationScanner, ScanSummary
from modguard.notify.webhooks import NullNotifier, Notifier, WebhookManager
from modguard.policy.rule_store import RuleStore
from modguard.policy.threats import ThreatDatabase
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore

logger = logging.getLogger(__name__)


class ModerationEngine:
    def __init__(
        self,
        config: Optional[ModerationConfig] = None,
        *,
        analyzer: Optional[ContentAnalyzer] = None,
        notifier: Optional[Notifier] = None,
        gateway: Optional[AgencyGateway] = None,
    ) -> None:
        self.config = config or ModerationConfig()
        base = self.config.storage_path
        self.store = ModerationStore(base / "store")
        self.audit = AuditLogger(base / "audit_logs")

        if notifier is None:
            notifier = WebhookManager(base / "webhooks") if self.config.webhooks_enabled else NullNotifier()
        self.notifier = notifier
        if gateway is None and self.config.agency_endpoints:
            gateway = HttpAgencyGateway(
                self.config.agency_endpoints, timeout=self.config.agency_timeout_seconds
            )

        if analyzer is None and self.config.analyzer == "llm":
            analyzer = LLMContentAnalyzer(model=self.config.llm_model or DEFAULT_MODEL)
        self.rules = RuleStore(self.store, self.audit)
        self.threats = ThreatDatabase(self.store, self.audit)
        self._analyzer = analyzer
        self.alerts = AlertManager(self.store, self.audit, notifier)
        self.suspensions = SuspensionManager(self.store, self.audit, notifier)
        self.holds = HoldManager(self.store, self.audit, self.config)
        self.cases = CaseManager(self.store, self.audit, self.holds, notifier, gateway)
        self.executor = ActionExecutor(
            self.store, self.audit, self.alerts, self.suspensions, self.holds, self.cases, self.config
        )
        self.flags = FlagService(
            self.store, self.audit, self.alerts, self.executor, notifier, self.config, self.analyzer
        )
        self.scanner = ConversationScanner(self.store, self.audit, self.alerts, self.flags, self.config)
        self.activity = ActivityService(self.store, self.audit, self.alerts, self.config)
        self.guard = ScreenshotGuard(self.store, self.audit, self.alerts, notifier)
        self.cleanup = CleanupScheduler(self.store, self.audit, self.holds, self.suspensions, self.config)

    def analyzer(self) -> ContentAnalyzer:
        """The configured analyzer, or a keyword analyzer over the enabled rules
        and active threat indicators."""
        if self._analyzer is not None:
            return self._analyzer
        return self.rules.build_analyzer(self.threats.rule_patterns())

    # ------------------------------------------------------------------
    # Application-owned records
    # ------------------------------------------------------------------

    def record_message(self, data: dict[str, Any] | Message) -> Message:
        """Register a message the application has stored, so it can be scored."""
        message = data if isinstance(data, Message) else self._parse(Message, data)
        self.store.conversations.require(message.conversation_id)
        return self.store.messages.insert(message)

    def record_conversation(self, data: dict[str, Any] | Conversation) -> Conversation:
        conversation = data if isinstance(data, Conversation) else self._parse(Conversation, data)
        return self.store.conversations.insert(conversation)

    def record_user(self, data: dict[str, Any] | UserProfile) -> UserProfile:
        user = data if isinstance(data, UserProfile) else self._parse(UserProfile, data)
        return self.store.users.insert(user)

    @staticmethod
    def _parse(cls: type, data: dict[str, Any]) -> Any:
        if not data.get("id"):
            raise ValidationError(f"{cls.__name__} requires an id")
        try:
            return from_dict(cls, data)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid {cls.__name__}: {exc}") from exc

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def submit_content(
        self, message_id: str, analysis_type: str = "comprehensive", actor: str = "system"
    ) -> ContentFlag:
        return self.flags.submit_content(message_id, analysis_type, actor=actor)

    def review_flag(
        self,
        flag_id: str,
        reviewer: str,
        decision: str,
        moderation_action: str = "none",
        **kwargs: Any,
    ) -> ReviewOutcome:
        return self.flags.review_flag(
            flag_id, reviewer, decision, moderation_action=moderation_action, **kwargs
        )

    def scan_conversation(
        self,
        conversation_id: str,
        lookback_days: int = 7,
        *,
        actor: str = "system",
        scan_id: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
        analysis_types: Optional[list[str]] = None,
    ) -> ScanSummary:
        return self.scanner.scan_conversation(
            conversation_id,
            lookback_days,
            analysis_types=analysis_types,
            actor=actor,
            scan_id=scan_id,
            cancel=cancel,
        )

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def suspend_user(
        self,
        user_id: str,
        reason: str,
        severity: str = "major",
        duration_hours: Optional[float] = None,
        *,
        actor: str,
        actor_role: str = "moderator",
        restrictions: Optional[dict[str, bool]] = None,
        preserve_evidence: bool = True,
    ) -> UserSuspension:
        """Block a user. No duration means a permanent ban."""
        try:
            sev = SuspensionSeverity(severity)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if not reason:
            raise ValidationError("reason is required")
        outcome = self.executor.execute(
            ActionRequest(
                ModerationAction.BLOCK_USER,
                actor,
                reason,
                actor_role=actor_role,
                user_id=user_id,
                severity=sev,
                duration_hours=duration_hours,
                permanent=duration_hours is None,
                restrictions=restrictions,
                preserve_evidence=preserve_evidence,
            )
        )
        return self.suspensions.get(outcome.suspension_id)

    def emergency_block(
        self,
        message_id: str,
        actor: str,
        reason: str = "",
        *,
        notify_authorities: bool = False,
        agency: str = "other",
        actor_role: str = "moderator",
    ) -> ActionOutcome:
        message = self.store.messages.require(message_id)
        return self.executor.execute(
            ActionRequest(
                ModerationAction.EMERGENCY_BLOCK,
                actor,
                reason,
                actor_role=actor_role,
                message_id=message.id,
                user_id=message.sender_id,
                conversation_id=message.conversation_id,
                notify_authorities=notify_authorities,
                agency=agency,
            )
        )

    def report_to_authorities(
        self,
        flag_id: str,
        agency: str = "other",
        urgency: str = "priority",
        *,
        actor: str,
        additional_info: str = "",
        preservation_request: bool = True,
    ) -> LawEnforcementReport:
        flag = self.flags.get_flag(flag_id)
        outcome = self.executor.execute(
            ActionRequest(
                ModerationAction.REPORT_AUTHORITIES,
                actor,
                additional_info,
                flag=flag,
                agency=agency,
                urgency=urgency,
                additional_info=additional_info,
                preserve_evidence=preservation_request,
            )
        )
        return self.cases.get(outcome.report_id)

    def preserve_evidence(
        self,
        actor: str,
        reason: str,
        *,
        user_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> ActionOutcome:
        return self.executor.execute(
            ActionRequest(
                ModerationAction.PRESERVE_EVIDENCE,
                actor,
                reason,
                user_id=user_id,
                message_id=message_id,
            )
        )

    # ------------------------------------------------------------------
    # Privacy and maintenance
    # ------------------------------------------------------------------

    def record_screenshot_attempt(
        self, conversation_id: str, user_id: str, method: str = "screenshot", **kwargs: Any
    ) -> ScreenshotResult:
        return self.guard.record_screenshot_attempt(conversation_id, user_id, method, **kwargs)

    def run_maintenance(self, operations: Optional[list[str]] = None, actor: str = "system") -> dict[str, int]:
        return self.cleanup.run_maintenance(operations, actor)

    def bulk_cleanup(
        self,
        cleanup_type: str,
        criteria: Optional[dict[str, Any]] = None,
        dry_run: bool = False,
        actor: str = "system",
    ) -> CleanupResult:
        return self.cleanup.bulk_cleanup(cleanup_type, criteria, dry_run, actor=actor)
