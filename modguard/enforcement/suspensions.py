"""Suspension manager: the only component that changes a user's restrictions.

Per user the state is ``none -> active -> {lifted, expired, replaced}``.
A new suspension replaces the active one rather than stacking on it. Expiry
is the only automatic transition, and it is applied both by the periodic
sweep and synchronously whenever a capability is checked.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from modguard.errors import ConflictError, ModerationError, PolicyViolation, ValidationError
from modguard.models.enforcement import (
    CAPABILITIES,
    ActorRole,
    Restrictions,
    SuspensionEnd,
    SuspensionSeverity,
    SuspensionType,
    UserSuspension,
)
from modguard.notify.webhooks import Notifier, deliver
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import add_hours, is_past, new_id, to_iso, utcnow

logger = logging.getLogger(__name__)


def _parse_restrictions(overrides: Optional[dict[str, bool]]) -> Restrictions:
    overrides = overrides or {}
    unknown = set(overrides) - set(CAPABILITIES)
    if unknown:
        raise ValidationError(f"unknown restrictions: {', '.join(sorted(unknown))}")
    return Restrictions(**{k: bool(v) for k, v in overrides.items()})


def _check_end_authority(s: UserSuspension, actor: str, role: ActorRole, verb: str) -> None:
    """Emergency blocks end only by an admin or by whoever imposed them."""
    if s.type == SuspensionType.EMERGENCY_BLOCK and role != ActorRole.ADMIN and actor != s.suspended_by:
        raise PolicyViolation(f"only an admin or the imposing actor may {verb} an emergency block")


class SuspensionManager:
    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        notifier: Notifier,
    ) -> None:
        self._store = store
        self._audit = audit
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, suspension_id: str) -> UserSuspension:
        return self._store.suspensions.require(suspension_id)

    def list_suspensions(
        self, user_id: Optional[str] = None, active_only: bool = False
    ) -> list[UserSuspension]:
        items = self._store.suspensions.find(
            lambda s: (user_id is None or s.user_id == user_id) and (not active_only or s.is_active)
        )
        items.sort(key=lambda s: s.created_at, reverse=True)
        return items

    def active_suspension(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[UserSuspension]:
        """The user's current suspension, after expiring any that are overdue."""
        self.expire_overdue(now=now, user_id=user_id)
        active = self.list_suspensions(user_id=user_id, active_only=True)
        return active[0] if active else None

    def check_capability(
        self, user_id: str, capability: str, now: Optional[datetime] = None
    ) -> bool:
        """Whether *user_id* may currently use *capability*.

        Never trusts ``is_active`` alone: overdue suspensions are expired
        first, through the same path as the cleanup sweep.
        """
        if capability not in CAPABILITIES:
            raise ValidationError(
                f"capability must be one of {', '.join(CAPABILITIES)}, got {capability!r}"
            )
        suspension = self.active_suspension(user_id, now=now)
        if suspension is None:
            return True
        return getattr(suspension.restrictions, capability)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def suspend(
        self,
        user_id: str,
        suspended_by: str,
        reason: str,
        severity: str | SuspensionSeverity,
        *,
        duration_hours: Optional[float] = None,
        suspension_type: str | SuspensionType | None = None,
        violation_type: Optional[str] = None,
        restrictions: Optional[dict[str, bool]] = None,
        evidence_preserved: bool = True,
        related_flag_ids: Optional[list[str]] = None,
        actor_role: str | ActorRole = ActorRole.MODERATOR,
        now: Optional[datetime] = None,
    ) -> UserSuspension:
        """Create a suspension, replacing the user's active one if any.

        ``duration_hours=None`` means permanent unless an explicit type says
        otherwise; emergency blocks are always open-ended. Replacing an
        active emergency block needs the same authority as lifting it.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if not reason:
            raise ValidationError("reason is required")
        if duration_hours is not None and duration_hours <= 0:
            raise ValidationError("duration_hours must be positive")
        try:
            role = ActorRole(actor_role)
            sev = SuspensionSeverity(severity)
            stype = (
                SuspensionType(suspension_type)
                if suspension_type
                else (SuspensionType.TEMPORARY_BAN if duration_hours else SuspensionType.PERMANENT_BAN)
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if stype == SuspensionType.WARNING:
            raise ValidationError("warnings do not restrict a user; use warn_user")
        if stype in (SuspensionType.TEMPORARY_BAN, SuspensionType.TEMPORARY_RESTRICTION) and not duration_hours:
            raise ValidationError(f"{stype.value} requires duration_hours")
        if stype in (SuspensionType.PERMANENT_BAN, SuspensionType.EMERGENCY_BLOCK):
            duration_hours = None

        now = now or utcnow()
        suspension = UserSuspension(
            id=new_id(),
            user_id=user_id,
            suspended_by=suspended_by,
            reason=reason,
            severity=sev,
            type=stype,
            violation_type=violation_type,
            restrictions=_parse_restrictions(restrictions),
            suspended_at=to_iso(now),
            duration_hours=duration_hours,
            expires_at=add_hours(now, duration_hours) if duration_hours else None,
            evidence_preserved=evidence_preserved,
            related_flag_ids=list(related_flag_ids or []),
        )

        collection = self._store.suspensions
        try:
            with collection.lock:
                replaced = collection.find(lambda s: s.user_id == user_id and s.is_active)
                for old in replaced:
                    _check_end_authority(old, suspended_by, role, "replace")
                collection.insert(suspension)
                for old in replaced:

                    def end(s: UserSuspension) -> None:
                        s.is_active = False
                        s.ended_at = to_iso(now)
                        s.ended_by = suspended_by
                        s.ended_reason = SuspensionEnd.REPLACED
                        s.replaced_by = suspension.id

                    collection.update(old.id, end)
        except PolicyViolation as exc:
            self._audit.log_event(
                "create_user_suspension",
                "user_management",
                suspended_by,
                target={"user_id": user_id},
                details={"type": stype.value, "role": role.value, "reason": reason},
                severity="high",
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            raise

        self._audit.log_event(
            "create_user_suspension",
            "user_management",
            suspended_by,
            target={"user_id": user_id, "suspension_id": suspension.id},
            details={
                "type": stype.value,
                "severity": sev.value,
                "duration_hours": duration_hours,
                "expires_at": suspension.expires_at,
                "replaced": [s.id for s in replaced],
                "reason": reason,
            },
            severity="high" if sev in (SuspensionSeverity.SEVERE, SuspensionSeverity.CRITICAL) else "medium",
        )
        logger.info(
            "User suspended",
            extra={"user_id": user_id, "suspension_id": suspension.id, "type": stype.value},
        )
        self._notify_user(
            user_id,
            "user_suspended",
            {"suspension_id": suspension.id, "type": stype.value, "expires_at": suspension.expires_at},
        )
        return suspension

    def lift(
        self,
        suspension_id: str,
        actor: str,
        actor_role: str | ActorRole,
        reason: str = "",
    ) -> UserSuspension:
        """Lift an active suspension.

        Emergency blocks may only be lifted by an admin or by whoever
        imposed them; anyone else gets PolicyViolation.
        """
        try:
            role = ActorRole(actor_role)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        def mutate(s: UserSuspension) -> None:
            if not s.is_active:
                raise ConflictError(f"suspension '{suspension_id}' is not active")
            _check_end_authority(s, actor, role, "lift")
            s.is_active = False
            s.ended_at = to_iso(utcnow())
            s.ended_by = actor
            s.ended_reason = SuspensionEnd.LIFTED

        try:
            suspension = self._store.suspensions.update(suspension_id, mutate)
        except (ConflictError, PolicyViolation) as exc:
            self._audit.log_event(
                "lift_user_suspension",
                "user_management",
                actor,
                target={"suspension_id": suspension_id},
                details={"role": role.value, "reason": reason},
                severity="high" if isinstance(exc, PolicyViolation) else "medium",
                success=False,
                error_code=exc.code,
                error_message=exc.message,
            )
            raise

        self._audit.log_event(
            "lift_user_suspension",
            "user_management",
            actor,
            target={"user_id": suspension.user_id, "suspension_id": suspension_id},
            details={"role": role.value, "reason": reason, "type": suspension.type.value},
        )
        return suspension

    def expire_overdue(
        self, now: Optional[datetime] = None, user_id: Optional[str] = None
    ) -> list[UserSuspension]:
        """Deactivate every active suspension whose ``expires_at`` has passed.

        Permanent suspensions (``expires_at`` of None) are never touched. A
        record that cannot be updated is logged and skipped.
        """
        now = now or utcnow()
        overdue = self._store.suspensions.find(
            lambda s: s.is_active
            and s.expires_at is not None
            and is_past(s.expires_at, now)
            and (user_id is None or s.user_id == user_id)
        )
        expired: list[UserSuspension] = []
        for candidate in overdue:

            def end(s: UserSuspension) -> None:
                if not s.is_active or not is_past(s.expires_at, now):
                    raise ConflictError(f"suspension '{s.id}' changed before expiry")
                s.is_active = False
                s.ended_at = to_iso(now)
                s.ended_by = "system"
                s.ended_reason = SuspensionEnd.EXPIRED

            try:
                suspension = self._store.suspensions.update(candidate.id, end)
            except ConflictError:
                continue
            except ModerationError as exc:
                logger.error(
                    "Could not expire suspension",
                    extra={"suspension_id": candidate.id, "error": exc.message},
                )
                continue
            self._audit.log_event(
                "expire_user_suspension",
                "user_management",
                "system",
                actor_type="system",
                target={"user_id": suspension.user_id, "suspension_id": suspension.id},
                details={"expires_at": suspension.expires_at},
            )
            expired.append(suspension)
        return expired

    def warn_user(
        self, user_id: str, actor: str, reason: str, flag_id: Optional[str] = None
    ) -> None:
        """Send a warning. Warnings leave the user's restrictions untouched."""
        self._audit.log_event(
            "warn_user",
            "user_management",
            actor,
            target={"user_id": user_id, "content_flag_id": flag_id},
            details={"reason": reason},
        )
        self._notify_user(user_id, "user_warned", {"reason": reason, "content_flag_id": flag_id})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _notify_user(self, user_id: str, category: str, payload: dict[str, Any]) -> None:
        deliver(self._notifier, [user_id], category, {"user_id": user_id, **payload})
