"""Evidence preservation (legal holds).

The hold manager is the only component that changes hold state. A hold's
expiry always comes from a named retention class. :meth:`HoldManager.is_held`
is the guard every purge must call immediately before deleting anything.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Optional

from modguard.config import ModerationConfig
from modguard.errors import ConflictError, ModerationError, ValidationError
from modguard.models.base import coerce_obj
from modguard.models.cases import EvidencePreservation, HoldScope, HoldStatus, LegalBasis
from modguard.models.messaging import Message
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import add_days, is_past, new_id, parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

_LIVE = (HoldStatus.ACTIVE, HoldStatus.EXTENDED)


def normalize_retention_class(name: str) -> str:
    """``lawEnforcement`` and ``law_enforcement`` name the same class."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def scope_covers(scope: HoldScope, message: Message) -> bool:
    """Whether *message* falls inside *scope*."""
    hit = (
        message.id in scope.message_ids
        or message.conversation_id in scope.conversation_ids
        or message.sender_id in scope.user_ids
    )
    if not hit:
        return False
    sent = parse_iso(message.sent_at)
    start = parse_iso(scope.start)
    end = parse_iso(scope.end)
    if sent is not None and start is not None and sent < start:
        return False
    if sent is not None and end is not None and sent > end:
        return False
    return True


class HoldManager:
    def __init__(self, store: ModerationStore, audit: AuditLogger, config: ModerationConfig) -> None:
        self._store = store
        self._audit = audit
        self._config = config

    def _retention_days(self, retention_class: str) -> int:
        key = normalize_retention_class(retention_class)
        try:
            return self._config.retention_days[key]
        except KeyError:
            raise ValidationError(
                f"retention class must be one of {', '.join(self._config.retention_days)}, "
                f"got {retention_class!r}"
            ) from None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, hold_id: str) -> EvidencePreservation:
        return self._store.holds.require(hold_id)

    def list_holds(self, status: Optional[str] = None, case_id: Optional[str] = None) -> list[EvidencePreservation]:
        holds = self._store.holds.find(
            lambda h: (status is None or h.status.value == status)
            and (case_id is None or h.case_id == case_id)
        )
        holds.sort(key=lambda h: h.created_at, reverse=True)
        return holds

    def holds_covering(self, message: Message, now: Optional[datetime] = None) -> list[EvidencePreservation]:
        now = now or utcnow()
        return self._store.holds.find(
            lambda h: h.status in _LIVE and not is_past(h.expires_at, now) and scope_covers(h.scope, message)
        )

    def is_held(self, message: Message, now: Optional[datetime] = None) -> bool:
        """True when any live, unexpired hold covers *message*. Read fresh on
        every call so a hold created after scheduling still wins."""
        return bool(self.holds_covering(message, now))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_hold(
        self,
        requested_by: str,
        legal_basis: str | LegalBasis,
        retention_class: str,
        scope: HoldScope | dict[str, Any],
        *,
        case_id: Optional[str] = None,
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> EvidencePreservation:
        try:
            basis = LegalBasis(legal_basis)
            parsed_scope = coerce_obj(HoldScope, scope)
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc)) from exc
        if parsed_scope is None or parsed_scope.is_empty:
            raise ValidationError("hold scope must name at least one user, conversation or message")
        days = self._retention_days(retention_class)

        now = now or utcnow()
        hold = self._store.holds.insert(
            EvidencePreservation(
                id=new_id(),
                requested_by=requested_by,
                legal_basis=basis,
                retention_class=normalize_retention_class(retention_class),
                scope=parsed_scope,
                expires_at=add_days(now, days),
                case_id=case_id,
                reason=reason,
                created_at=to_iso(now),
            )
        )
        self._audit.log_event(
            "create_evidence_hold",
            "law_enforcement",
            requested_by,
            target={"hold_id": hold.id, "case_id": case_id},
            details={
                "retention_class": hold.retention_class,
                "expires_at": hold.expires_at,
                "legal_basis": basis.value,
                "scope": {
                    "users": len(parsed_scope.user_ids),
                    "conversations": len(parsed_scope.conversation_ids),
                    "messages": len(parsed_scope.message_ids),
                },
            },
            severity="high",
        )
        logger.info("Evidence hold created", extra={"hold_id": hold.id, "case_id": case_id})
        return hold

    def extend_hold(
        self,
        hold_id: str,
        actor: str,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> EvidencePreservation:
        """Push the expiry out by *days* (default: the hold's class length)."""
        if days is not None and days <= 0:
            raise ValidationError("days must be positive")
        now = now or utcnow()

        def mutate(h: EvidencePreservation) -> None:
            if h.status not in _LIVE:
                raise ConflictError(f"hold '{hold_id}' is {h.status.value} and cannot be extended")
            base = max(parse_iso(h.expires_at), now)
            h.expires_at = add_days(base, days or self._retention_days(h.retention_class))
            h.status = HoldStatus.EXTENDED
            h.extension_count += 1

        hold = self._store.holds.update(hold_id, mutate)
        self._audit.log_event(
            "extend_evidence_hold",
            "law_enforcement",
            actor,
            target={"hold_id": hold_id, "case_id": hold.case_id},
            details={"expires_at": hold.expires_at, "extension_count": hold.extension_count},
        )
        return hold

    def release_hold(self, hold_id: str, actor: str, reason: str = "") -> EvidencePreservation:
        def mutate(h: EvidencePreservation) -> None:
            if h.status not in _LIVE:
                raise ConflictError(f"hold '{hold_id}' is {h.status.value} and cannot be released")
            h.status = HoldStatus.RELEASED
            h.released_by = actor
            h.released_at = to_iso(utcnow())

        hold = self._store.holds.update(hold_id, mutate)
        self._audit.log_event(
            "release_evidence_hold",
            "law_enforcement",
            actor,
            target={"hold_id": hold_id, "case_id": hold.case_id},
            details={"reason": reason},
            severity="high",
        )
        return hold

    def expire_holds(self, now: Optional[datetime] = None) -> list[EvidencePreservation]:
        """Mark every live hold past its expiry as expired."""
        now = now or utcnow()
        expired: list[EvidencePreservation] = []
        for candidate in self._store.holds.find(lambda h: h.status in _LIVE and is_past(h.expires_at, now)):

            def mutate(h: EvidencePreservation) -> None:
                if h.status not in _LIVE or not is_past(h.expires_at, now):
                    raise ConflictError(f"hold '{h.id}' changed before expiry")
                h.status = HoldStatus.EXPIRED

            try:
                hold = self._store.holds.update(candidate.id, mutate)
            except ConflictError:
                continue
            except ModerationError as exc:
                logger.error("Could not expire hold", extra={"hold_id": candidate.id, "error": exc.message})
                continue
            self._audit.log_event(
                "expire_evidence_hold",
                "law_enforcement",
                "system",
                actor_type="system",
                target={"hold_id": hold.id, "case_id": hold.case_id},
                details={"expires_at": hold.expires_at},
            )
            expired.append(hold)
        return expired
