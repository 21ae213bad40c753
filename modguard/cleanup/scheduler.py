"""Cleanup scheduler: retention purges and expiry sweeps.

Every purge asks the hold manager whether a message is held immediately
before deleting it, so a hold created after the sweep started still wins.
A dry run counts exactly what a real run would delete and writes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from modguard.config import ModerationConfig
from modguard.enforcement.suspensions import SuspensionManager
from modguard.errors import ConflictError, ModerationError, ValidationError
from modguard.evidence.holds import HoldManager
from modguard.models.cases import HoldStatus
from modguard.models.flags import FlagStatus
from modguard.models.messaging import Message, MessageDeletionLog
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import is_past, new_id, parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

CLEANUP_TYPES = ("expired_messages", "old_logs", "expired_suspensions", "expired_holds")
MAINTENANCE_OPERATIONS = ("all", "expire_suspensions", "expire_holds", "cleanup_messages", "cleanup_logs")
MESSAGE_CRITERIA = ("conversation_id", "sender_id")
LOG_CRITERIA = ("retention_days",)


@dataclass
class CleanupResult:
    cleanup_type: str
    dry_run: bool
    matched: int = 0
    deleted: int = 0
    skipped_held: int = 0
    errors: int = 0
    details: dict[str, int] = field(default_factory=dict)

    @property
    def would_delete(self) -> int:
        return self.matched if self.dry_run else 0


def message_expired(message: Message, now: datetime) -> bool:
    return not message.is_deleted and (
        is_past(message.auto_delete_at, now) or is_past(message.disappear_at, now)
    )


class CleanupScheduler:
    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        holds: HoldManager,
        suspensions: SuspensionManager,
        config: ModerationConfig,
    ) -> None:
        self._store = store
        self._audit = audit
        self._holds = holds
        self._suspensions = suspensions
        self._config = config

    # ------------------------------------------------------------------
    # Bulk cleanup
    # ------------------------------------------------------------------

    def bulk_cleanup(
        self,
        cleanup_type: str,
        criteria: Optional[dict[str, Any]] = None,
        dry_run: bool = False,
        *,
        batch_size: Optional[int] = None,
        actor: str = "system",
        now: Optional[datetime] = None,
    ) -> CleanupResult:
        if cleanup_type not in CLEANUP_TYPES:
            raise ValidationError(
                f"cleanup_type must be one of {', '.join(CLEANUP_TYPES)}, got {cleanup_type!r}"
            )
        criteria = dict(criteria or {})
        size = batch_size or self._config.cleanup_batch_size
        if size <= 0:
            raise ValidationError("batch_size must be positive")
        now = now or utcnow()

        if cleanup_type == "expired_messages":
            result = self._cleanup_messages(criteria, dry_run, size, actor, now)
        elif cleanup_type == "old_logs":
            result = self._cleanup_logs(criteria, dry_run, now)
        elif cleanup_type == "expired_suspensions":
            self._reject_criteria(criteria, ())
            result = CleanupResult(cleanup_type, dry_run)
            if dry_run:
                result.matched = self._store.suspensions.count(
                    lambda s: s.is_active and is_past(s.expires_at, now)
                )
            else:
                result.deleted = len(self._suspensions.expire_overdue(now=now))
                result.matched = result.deleted
        else:
            self._reject_criteria(criteria, ())
            result = CleanupResult(cleanup_type, dry_run)
            if dry_run:
                result.matched = self._store.holds.count(
                    lambda h: h.status in (HoldStatus.ACTIVE, HoldStatus.EXTENDED) and is_past(h.expires_at, now)
                )
            else:
                result.deleted = len(self._holds.expire_holds(now))
                result.matched = result.deleted

        if dry_run:
            logger.info(
                "Cleanup dry run",
                extra={"cleanup_type": cleanup_type, "matched": result.matched},
            )
        else:
            self._audit.log_event(
                "bulk_cleanup",
                "system_maintenance",
                actor,
                actor_type="system" if actor == "system" else "user",
                details={
                    "cleanup_type": cleanup_type,
                    "criteria": criteria,
                    "matched": result.matched,
                    "deleted": result.deleted,
                    "skipped_held": result.skipped_held,
                    "errors": result.errors,
                },
                success=result.errors == 0,
            )
        return result

    def run_maintenance(
        self,
        operations: Optional[list[str]] = None,
        actor: str = "system",
        now: Optional[datetime] = None,
    ) -> dict[str, int]:
        operations = list(operations or ["all"])
        unknown = [op for op in operations if op not in MAINTENANCE_OPERATIONS]
        if unknown:
            raise ValidationError(f"unknown maintenance operations: {', '.join(unknown)}")
        run_all = "all" in operations
        now = now or utcnow()
        results: dict[str, int] = {}

        if run_all or "expire_suspensions" in operations:
            results["expired_suspensions"] = len(self._suspensions.expire_overdue(now=now))
        if run_all or "expire_holds" in operations:
            results["expired_holds"] = len(self._holds.expire_holds(now))
        if run_all or "cleanup_messages" in operations:
            cleaned = self._cleanup_messages({}, False, self._config.cleanup_batch_size, actor, now)
            results["cleaned_messages"] = cleaned.deleted
            results["held_messages"] = cleaned.skipped_held
        if run_all or "cleanup_logs" in operations:
            results["cleaned_logs"] = self._cleanup_logs({}, False, now).deleted

        self._audit.log_event(
            "system_maintenance",
            "system_maintenance",
            actor,
            actor_type="system" if actor == "system" else "user",
            details={"operations": operations, "results": results},
        )
        logger.info("Maintenance finished", extra={"results": results})
        return results

    def cleanup_stats(self, days: int = 30, now: Optional[datetime] = None) -> dict[str, int]:
        now = now or utcnow()
        since = now - timedelta(days=days)
        expired = self._store.messages.find(lambda m: message_expired(m, now))
        held = sum(1 for m in expired if self._holds.is_held(m, now))

        def recent(ts: str) -> bool:
            return parse_iso(ts) >= since

        return {
            "messages_eligible_for_cleanup": len(expired) - held,
            "messages_under_hold": held,
            "overdue_suspensions": self._store.suspensions.count(
                lambda s: s.is_active and is_past(s.expires_at, now)
            ),
            "active_holds": self._store.holds.count(
                lambda h: h.status in (HoldStatus.ACTIVE, HoldStatus.EXTENDED)
            ),
            "recent_deletions": self._store.deletion_logs.count(lambda d: recent(d.created_at)),
            "recent_screenshots": self._store.screenshot_logs.count(lambda s: recent(s.created_at)),
            "pending_reviews": self._store.content_flags.count(
                lambda f: f.status == FlagStatus.PENDING and f.review_required
            ),
            "timeframe_days": days,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _reject_criteria(criteria: dict[str, Any], allowed: tuple[str, ...]) -> None:
        unknown = sorted(set(criteria) - set(allowed))
        if unknown:
            raise ValidationError(f"unsupported cleanup criteria: {', '.join(unknown)}")

    def _cleanup_messages(
        self,
        criteria: dict[str, Any],
        dry_run: bool,
        batch_size: int,
        actor: str,
        now: datetime,
    ) -> CleanupResult:
        self._reject_criteria(criteria, MESSAGE_CRITERIA)

        def match(m: Message) -> bool:
            return message_expired(m, now) and all(getattr(m, k) == v for k, v in criteria.items())

        candidates = self._store.messages.find(match)
        result = CleanupResult("expired_messages", dry_run)
        if dry_run:
            result.matched = sum(1 for m in candidates if not self._holds.is_held(m, now))
            result.skipped_held = len(candidates) - result.matched
            return result

        result.matched = len(candidates)
        for start in range(0, len(candidates), batch_size):
            for message in candidates[start : start + batch_size]:
                # Evaluated per message, right before the delete.
                if self._holds.is_held(message, now):
                    result.skipped_held += 1
                    continue
                try:
                    self._purge(message, actor, now)
                except ConflictError:
                    continue
                except ModerationError as exc:
                    result.errors += 1
                    logger.error(
                        "Could not purge message",
                        extra={"message_id": message.id, "error": exc.message},
                    )
                    continue
                result.deleted += 1
        logger.info(
            "Expired messages purged",
            extra={"deleted": result.deleted, "skipped_held": result.skipped_held},
        )
        return result

    def _purge(self, message: Message, actor: str, now: datetime) -> None:
        deletion_type = "auto_delete" if is_past(message.auto_delete_at, now) else "disappearing"

        def mutate(m: Message) -> None:
            if not message_expired(m, now):
                raise ConflictError(f"message '{m.id}' changed before purge")
            m.is_deleted = True
            m.deleted_at = to_iso(now)
            m.deletion_type = deletion_type
            m.content = ""

        self._store.messages.update(message.id, mutate)
        self._store.deletion_logs.insert(
            MessageDeletionLog(
                id=new_id(),
                message_id=message.id,
                conversation_id=message.conversation_id,
                deletion_type=deletion_type,
                deleted_by=actor,
                reason="retention expired",
            )
        )

    def _cleanup_logs(self, criteria: dict[str, Any], dry_run: bool, now: datetime) -> CleanupResult:
        """Screenshot and deletion logs past retention. The audit log is never purged."""
        self._reject_criteria(criteria, LOG_CRITERIA)
        raw_days = criteria.get("retention_days", self._config.log_retention_days)
        try:
            days = int(raw_days)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"retention_days must be a number of days, got {raw_days!r}") from exc
        if isinstance(raw_days, bool) or days <= 0:
            raise ValidationError("retention_days must be positive")
        cutoff = now - timedelta(days=days)
        result = CleanupResult("old_logs", dry_run)

        for name, collection in (
            ("screenshot_logs", self._store.screenshot_logs),
            ("deletion_logs", self._store.deletion_logs),
        ):
            old = collection.find(lambda r: parse_iso(r.created_at) < cutoff)
            result.details[name] = len(old)
            result.matched += len(old)
            if dry_run:
                continue
            for record in old:
                if collection.delete(record.id):
                    result.deleted += 1
        return result
