"""Screenshot guard for secret conversations.

Attempts inside a ``secret`` conversation are blocked and logged; attempts
anywhere else are logged and allowed. The attempting user is never
restricted: this path creates no suspension, files no report and does not
go through risk scoring.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from modguard.alerts.manager import AlertManager
from modguard.errors import ValidationError
from modguard.models.alerts import AlertCategory, AlertSeverity
from modguard.models.messaging import Conversation, DeviceInfo, Message, ScreenshotLog
from modguard.notify.webhooks import Notifier, deliver
from modguard.policy.engine import AlertSpec
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import new_id, parse_iso, utcnow

logger = logging.getLogger(__name__)

BLOCK_REASON = "secret_chat_protection"
SECRET_BLOCKED_ACTIONS = ("screenshot", "copy", "print", "save", "forward")
BLOCKED_NOTICE = "Someone attempted a screenshot but it was blocked for privacy protection"


@dataclass
class ScreenshotResult:
    blocked: bool
    log_id: str
    message: str
    user_action: str = "none"
    stays_in_chat: bool = True
    alert_id: Optional[str] = None


@dataclass
class ActionCheck:
    allowed: bool
    conversation_type: str
    action_type: str
    reason: str


class ScreenshotGuard:
    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        alerts: AlertManager,
        notifier: Notifier,
    ) -> None:
        self._store = store
        self._audit = audit
        self._alerts = alerts
        self._notifier = notifier

    def record_screenshot_attempt(
        self,
        conversation_id: str,
        user_id: str,
        method: str = "screenshot",
        *,
        message_id: Optional[str] = None,
        device: Optional[dict[str, Any]] = None,
        attribute: bool = False,
    ) -> ScreenshotResult:
        """Log one attempt and decide whether it is blocked.

        ``blocked`` is true exactly when the conversation is secret. Other
        participants are told about a blocked attempt only when the
        conversation opts in, and are told who made it only when *attribute*
        is set.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        conversation = self._store.conversations.require(conversation_id)
        if message_id:
            message = self._store.messages.require(message_id)
            if message.conversation_id != conversation_id:
                raise ValidationError(f"message '{message_id}' is not in conversation '{conversation_id}'")
        try:
            device_info = DeviceInfo(**(device or {}))
        except TypeError as exc:
            raise ValidationError(f"invalid device info: {exc}") from exc

        blocked = conversation.is_secret
        log = self._store.screenshot_logs.insert(
            ScreenshotLog(
                id=new_id(),
                conversation_id=conversation_id,
                conversation_type=conversation.conversation_type,
                user_id=user_id,
                method=method,
                message_id=message_id,
                device=device_info,
                is_blocked=blocked,
                block_reason=BLOCK_REASON if blocked else None,
            )
        )
        if message_id:

            def bump(m: Message) -> None:
                m.screenshot_attempts += 1

            self._store.messages.update(message_id, bump)

        self._audit.log_event(
            "screenshot_blocked" if blocked else "screenshot_logged",
            "privacy_protection",
            "system",
            actor_type="system",
            target={"user_id": user_id, "conversation_id": conversation_id, "message_id": message_id},
            details={"method": method, "platform": device_info.platform, "user_stays_in_chat": True},
        )

        if not blocked:
            return ScreenshotResult(blocked=False, log_id=log.id, message="Screenshot logged successfully")

        alert = self._alerts.raise_alert(
            AlertSpec(
                category=AlertCategory.PRIVACY_PROTECTION,
                severity=AlertSeverity.INFO,
                title="Screenshot blocked in secret chat",
                description="Screenshot attempt blocked in secret conversation for privacy protection",
            ),
            user_id=user_id,
            conversation_id=conversation_id,
            message_ids=[message_id] if message_id else [],
        )
        if conversation.notify_screenshot_attempts:
            self._notify_participants(conversation, user_id, attribute)
        logger.info("Screenshot attempt blocked", extra={"conversation_id": conversation_id})
        return ScreenshotResult(
            blocked=True,
            log_id=log.id,
            message="Screenshots are not allowed in secret conversations for privacy protection",
            alert_id=alert.id,
        )

    def validate_secret_action(self, conversation_id: str, action_type: str, user_id: str) -> ActionCheck:
        """Whether *action_type* is allowed for *user_id* in the conversation."""
        conversation = self._store.conversations.require(conversation_id)
        if conversation.participant_ids and user_id not in conversation.participant_ids:
            return ActionCheck(
                allowed=False,
                conversation_type=conversation.conversation_type,
                action_type=action_type,
                reason="User not authorized for this conversation",
            )
        blocked = conversation.is_secret and action_type in SECRET_BLOCKED_ACTIONS
        return ActionCheck(
            allowed=not blocked,
            conversation_type=conversation.conversation_type,
            action_type=action_type,
            reason=(
                f"{action_type} is not allowed in secret conversations for privacy protection"
                if blocked
                else "Action allowed"
            ),
        )

    def screenshot_stats(
        self,
        conversation_id: Optional[str] = None,
        days: int = 30,
    ) -> dict[str, Any]:
        """Attempt counts over the last *days*. Never includes who was punished,
        because nobody is."""
        if days <= 0:
            raise ValidationError("days must be positive")
        end = utcnow()
        start = end - timedelta(days=days)
        logs = self._store.screenshot_logs.find(
            lambda s: (conversation_id is None or s.conversation_id == conversation_id)
            and start <= parse_iso(s.created_at) <= end
        )
        total = len(logs)
        blocked = sum(1 for s in logs if s.is_blocked)
        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "days": days,
            "total_attempts": total,
            "blocked_attempts": blocked,
            "allowed_attempts": total - blocked,
            "block_rate": round(blocked / total * 100, 2) if total else 0.0,
            "by_conversation_type": dict(Counter(s.conversation_type for s in logs)),
            "by_method": dict(Counter(s.method for s in logs)),
            "by_platform": dict(Counter(s.device.platform for s in logs)),
        }

    def _notify_participants(self, conversation: Conversation, user_id: str, attribute: bool) -> None:
        recipients = [p for p in conversation.participant_ids if p != user_id]
        if not recipients:
            return
        payload: dict[str, Any] = {
            "conversation_id": conversation.id,
            "type": "screenshot_blocked",
            "message": BLOCKED_NOTICE,
        }
        if attribute:
            payload["attempted_by"] = user_id
        deliver(self._notifier, recipients, "screenshot_attempt", payload)
