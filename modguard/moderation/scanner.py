"""Conversation scans: batch re-analysis of recent messages.

A scan walks a conversation's messages in bounded batches and checkpoints
the processed message ids on its :class:`ScanRecord` after every batch. An
interrupted scan is resumed by passing its ``scan_id`` back in; messages
already processed are skipped, and a message that already has a flag for
this scan never gets a second one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from modguard.alerts.manager import AlertManager
from modguard.analysis.analyzer import ANALYSIS_TYPES
from modguard.config import ModerationConfig
from modguard.errors import ConflictError, ValidationError
from modguard.models.analysis import ScanRecord, ScanStatus
from modguard.models.flags import AnalysisStatus, ContentFlag, FlaggedBy
from modguard.models.messaging import Message
from modguard.moderation.flags import FlagService
from modguard.policy.engine import evaluate_scan
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import new_id, now_iso, parse_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    scan_id: str
    conversation_id: str
    status: ScanStatus
    total_messages: int
    scanned_messages: int
    flagged_messages: int
    analysis_pending: int
    total_risk: float
    alert_id: Optional[str] = None


class ConversationScanner:
    def __init__(
        self,
        store: ModerationStore,
        audit: AuditLogger,
        alerts: AlertManager,
        flags: FlagService,
        config: ModerationConfig,
    ) -> None:
        self._store = store
        self._audit = audit
        self._alerts = alerts
        self._flags = flags
        self._config = config

    def get_scan(self, scan_id: str) -> ScanRecord:
        return self._store.scans.require(scan_id)

    def scan_conversation(
        self,
        conversation_id: str,
        lookback_days: int = 7,
        *,
        analysis_types: Optional[list[str]] = None,
        actor: str = "system",
        scan_id: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ScanSummary:
        """Scan (or resume scanning) one conversation.

        When *cancel* is set between batches the scan stops with status
        ``interrupted`` and can be resumed later with the returned scan id.
        """
        self._store.conversations.require(conversation_id)
        if scan_id:
            record = self._resume(scan_id, conversation_id)
        else:
            record = self._start(conversation_id, lookback_days, analysis_types, actor)

        messages = self._messages_in_window(conversation_id, record)
        pending = [m for m in messages if m.id not in record.processed_message_ids]
        batch_size = max(1, self._config.scan.batch_size)
        logger.info(
            "Conversation scan running",
            extra={"scan_id": record.id, "conversation_id": conversation_id, "remaining": len(pending)},
        )

        for start in range(0, len(pending), batch_size):
            if cancel is not None and cancel.is_set():
                record = self._interrupt(record)
                return self._summarize(record, len(messages))
            batch = pending[start : start + batch_size]
            for message in batch:
                self._scan_message(record, message, actor)

            def checkpoint(r: ScanRecord) -> None:
                r.processed_message_ids.extend(m.id for m in batch if m.id not in r.processed_message_ids)

            record = self._store.scans.update(record.id, checkpoint)

        return self._finish(record, len(messages), actor)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _start(
        self,
        conversation_id: str,
        lookback_days: int,
        analysis_types: Optional[list[str]],
        actor: str,
    ) -> ScanRecord:
        if lookback_days <= 0:
            raise ValidationError("lookback_days must be positive")
        types = list(analysis_types or ["comprehensive"])
        bad = [t for t in types if t not in ANALYSIS_TYPES]
        if bad:
            raise ValidationError(f"unknown analysis types: {', '.join(bad)}")
        return self._store.scans.insert(
            ScanRecord(
                id=new_id(),
                conversation_id=conversation_id,
                lookback_days=lookback_days,
                analysis_types=types,
                started_by=actor,
            )
        )

    def _resume(self, scan_id: str, conversation_id: str) -> ScanRecord:
        record = self.get_scan(scan_id)
        if record.conversation_id != conversation_id:
            raise ValidationError(f"scan '{scan_id}' belongs to another conversation")
        if record.status == ScanStatus.COMPLETED:
            raise ConflictError(f"scan '{scan_id}' has already completed")

        def running(r: ScanRecord) -> None:
            r.status = ScanStatus.RUNNING

        return self._store.scans.update(scan_id, running)

    def _messages_in_window(self, conversation_id: str, record: ScanRecord) -> list[Message]:
        started = parse_iso(record.created_at) or utcnow()
        cutoff = started - timedelta(days=record.lookback_days)
        messages = self._store.messages.find(
            lambda m: m.conversation_id == conversation_id
            and not m.is_deleted
            and parse_iso(m.sent_at) >= cutoff
        )
        messages.sort(key=lambda m: m.sent_at)
        return messages

    def _scan_message(self, record: ScanRecord, message: Message, actor: str) -> None:
        existing = {
            f.analysis_type
            for f in self._store.content_flags.find(
                lambda f: f.scan_id == record.id and f.message_id == message.id
            )
        }
        for analysis_type in record.analysis_types:
            if analysis_type in existing:
                continue
            self._flags.submit_content(
                message.id,
                analysis_type,
                actor=actor,
                flagged_by=FlaggedBy.SYSTEM_SCAN,
                scan_id=record.id,
                min_score=self._config.scan.flag_threshold,
            )

    def _interrupt(self, record: ScanRecord) -> ScanRecord:
        def mutate(r: ScanRecord) -> None:
            r.status = ScanStatus.INTERRUPTED

        record = self._store.scans.update(record.id, mutate)
        self._audit.log_event(
            "scan_conversation",
            "content_moderation",
            record.started_by,
            target={"conversation_id": record.conversation_id},
            details={
                "scan_id": record.id,
                "status": record.status.value,
                "processed": len(record.processed_message_ids),
            },
        )
        logger.info("Conversation scan interrupted", extra={"scan_id": record.id})
        return record

    def _scan_flags(self, scan_id: str) -> list[ContentFlag]:
        return self._store.content_flags.find(lambda f: f.scan_id == scan_id)

    def _summarize(self, record: ScanRecord, total_messages: int) -> ScanSummary:
        flags = self._scan_flags(record.id)
        scored = [f for f in flags if f.risk_score is not None]
        return ScanSummary(
            scan_id=record.id,
            conversation_id=record.conversation_id,
            status=record.status,
            total_messages=total_messages,
            scanned_messages=len(record.processed_message_ids),
            flagged_messages=len({f.message_id for f in scored}),
            analysis_pending=sum(1 for f in flags if f.analysis_status == AnalysisStatus.PENDING),
            total_risk=round(sum(f.risk_score for f in scored), 4),
            alert_id=record.alert_id,
        )

    def _finish(self, record: ScanRecord, total_messages: int, actor: str) -> ScanSummary:
        summary = self._summarize(record, total_messages)
        spec = evaluate_scan(
            record.conversation_id, summary.flagged_messages, summary.total_risk, self._config.scan
        )
        alert_id = record.alert_id
        if spec is not None and alert_id is None:
            alert = self._alerts.raise_alert(
                spec,
                conversation_id=record.conversation_id,
                flag_ids=[f.id for f in self._scan_flags(record.id)],
                automatic=True,
                actor=actor,
            )
            alert_id = alert.id

        def complete(r: ScanRecord) -> None:
            r.status = ScanStatus.COMPLETED
            r.finished_at = now_iso()
            r.alert_id = alert_id

        record = self._store.scans.update(record.id, complete)
        self._audit.log_event(
            "scan_conversation",
            "content_moderation",
            actor,
            actor_type="system" if actor == "system" else "user",
            target={"conversation_id": record.conversation_id, "alert_id": alert_id},
            details={
                "scan_id": record.id,
                "status": record.status.value,
                "lookback_days": record.lookback_days,
                "scanned": summary.scanned_messages,
                "flagged": summary.flagged_messages,
                "total_risk": summary.total_risk,
            },
            severity="high" if alert_id else "info",
        )
        summary.status = record.status
        summary.alert_id = alert_id
        return summary
