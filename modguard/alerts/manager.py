"""Security alerts: creation, queries and the one-way status lifecycle.

Alerts are never deleted. Status only moves forward::

    active / pending_review -> investigating -> escalated -> resolved / dismissed

Any forward jump is allowed (an active alert may be dismissed directly);
moving backwards, or out of resolved/dismissed, raises ConflictError.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from modguard.errors import ConflictError, ValidationError
from modguard.models.alerts import AlertSeverity, AlertStatus, SecurityAlert
from modguard.notify.webhooks import Notifier, deliver
from modguard.policy.engine import AlertSpec
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import now_iso, stamped_id

logger = logging.getLogger(__name__)

SECURITY_TEAM = "security_team"

_RANK = {
    AlertStatus.ACTIVE: 0,
    AlertStatus.PENDING_REVIEW: 0,
    AlertStatus.INVESTIGATING: 1,
    AlertStatus.ESCALATED: 2,
    AlertStatus.RESOLVED: 3,
    AlertStatus.DISMISSED: 3,
}
_TERMINAL = (AlertStatus.RESOLVED, AlertStatus.DISMISSED)


def can_transition(current: AlertStatus, target: AlertStatus) -> bool:
    return current not in _TERMINAL and _RANK[target] > _RANK[current]


class AlertManager:
    def __init__(self, store: ModerationStore, audit: AuditLogger, notifier: Notifier) -> None:
        self._store = store
        self._audit = audit
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def raise_alert(
        self,
        spec: AlertSpec,
        *,
        user_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        message_ids: Optional[list[str]] = None,
        flag_ids: Optional[list[str]] = None,
        automatic: bool = True,
        actor: str = "system",
    ) -> SecurityAlert:
        alert = self._store.alerts.insert(
            SecurityAlert(
                id=stamped_id("ALERT"),
                category=spec.category,
                severity=spec.severity,
                title=spec.title,
                description=spec.description,
                related_user_id=user_id,
                related_conversation_id=conversation_id,
                related_message_ids=list(message_ids or []),
                related_flag_ids=list(flag_ids or []),
                automatic_detection=automatic,
                risk_score=spec.risk_score,
            )
        )
        self._audit.log_event(
            "create_security_alert",
            "security_alert",
            actor,
            actor_type="system" if automatic else "user",
            target={"alert_id": alert.id, "user_id": user_id, "conversation_id": conversation_id},
            details={"category": alert.category.value, "title": alert.title},
            severity=alert.severity.value,
        )
        logger.info(
            "Security alert raised",
            extra={"alert_id": alert.id, "severity": alert.severity.value, "category": alert.category.value},
        )

        delivered = deliver(
            self._notifier,
            [SECURITY_TEAM],
            "security_alert",
            {
                "alert_id": alert.id,
                "category": alert.category.value,
                "severity": alert.severity.value,
                "title": alert.title,
                "user_id": user_id,
                "conversation_id": conversation_id,
            },
        )
        if delivered:
            alert = self._store.alerts.update(alert.id, lambda a: setattr(a, "notified", True))
        return alert

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_alert(self, alert_id: str) -> SecurityAlert:
        return self._store.alerts.require(alert_id)

    def list_alerts(
        self,
        *,
        status: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        min_severity: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[SecurityAlert]:
        """Alerts matching every given filter, newest first."""
        try:
            floor = AlertSeverity(min_severity).rank if min_severity else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        def match(a: SecurityAlert) -> bool:
            return (
                (status is None or a.status.value == status)
                and (category is None or a.category.value == category)
                and (severity is None or a.severity.value == severity)
                and (floor is None or a.severity.rank >= floor)
                and (user_id is None or a.related_user_id == user_id)
            )

        alerts = self._store.alerts.find(match)
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts[:limit]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(
        self,
        alert_id: str,
        target: AlertStatus,
        actor: str,
        action: str,
        extra: Callable[[SecurityAlert], None],
        details: Optional[dict[str, Any]] = None,
    ) -> SecurityAlert:
        previous: dict[str, AlertStatus] = {}

        def mutate(a: SecurityAlert) -> None:
            if not can_transition(a.status, target):
                raise ConflictError(
                    f"alert '{alert_id}' cannot move from {a.status.value} to {target.value}"
                )
            previous["status"] = a.status
            a.status = target
            extra(a)

        try:
            alert = self._store.alerts.update(alert_id, mutate)
        except ConflictError as exc:
            self._audit.log_event(
                action,
                "security_alert",
                actor,
                target={"alert_id": alert_id},
                details={"to": target.value, **(details or {})},
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            raise

        self._audit.log_event(
            action,
            "security_alert",
            actor,
            target={"alert_id": alert_id, "user_id": alert.related_user_id},
            details={"from": previous["status"].value, "to": target.value, **(details or {})},
            severity=alert.severity.value,
        )
        return alert

    def acknowledge(self, alert_id: str, actor: str) -> SecurityAlert:
        def extra(a: SecurityAlert) -> None:
            a.acknowledged_by = actor
            a.acknowledged_at = now_iso()

        return self._transition(alert_id, AlertStatus.INVESTIGATING, actor, "acknowledge_alert", extra)

    def escalate(self, alert_id: str, actor: str, escalated_to: str) -> SecurityAlert:
        if not escalated_to:
            raise ValidationError("escalated_to is required")

        def extra(a: SecurityAlert) -> None:
            a.escalated_to = escalated_to
            a.escalated_at = now_iso()

        return self._transition(
            alert_id,
            AlertStatus.ESCALATED,
            actor,
            "escalate_alert",
            extra,
            {"escalated_to": escalated_to},
        )

    def resolve(
        self,
        alert_id: str,
        actor: str,
        resolution: str,
        actions_taken: Optional[list[str]] = None,
    ) -> SecurityAlert:
        def extra(a: SecurityAlert) -> None:
            a.resolved_by = actor
            a.resolved_at = now_iso()
            a.resolution = resolution
            a.actions_taken.extend(actions_taken or [])

        return self._transition(
            alert_id, AlertStatus.RESOLVED, actor, "resolve_alert", extra, {"resolution": resolution}
        )

    def dismiss(self, alert_id: str, actor: str, reason: str = "") -> SecurityAlert:
        def extra(a: SecurityAlert) -> None:
            a.resolved_by = actor
            a.resolved_at = now_iso()
            a.resolution = reason or "dismissed"

        return self._transition(
            alert_id, AlertStatus.DISMISSED, actor, "dismiss_alert", extra, {"reason": reason}
        )
