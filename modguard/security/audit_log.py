"""Append-only security audit log.

Every state-changing moderation action writes exactly one entry, including
failed attempts. Entries are persisted as newline-delimited JSON in daily
files under ``~/.modguard/audit_logs/`` and are never updated or removed.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from filelock import FileLock

from modguard.models.base import coerce_obj

logger = logging.getLogger(__name__)

TARGET_FIELDS = (
    "user_id",
    "message_id",
    "conversation_id",
    "content_flag_id",
    "activity_flag_id",
    "suspension_id",
    "case_id",
    "hold_id",
    "alert_id",
    "rule_id",
    "threat_id",
)


@dataclass
class AuditTarget:
    user_id: Optional[str] = None
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    content_flag_id: Optional[str] = None
    activity_flag_id: Optional[str] = None
    suspension_id: Optional[str] = None
    case_id: Optional[str] = None
    hold_id: Optional[str] = None
    alert_id: Optional[str] = None
    rule_id: Optional[str] = None
    threat_id: Optional[str] = None


@dataclass
class AuditOutcome:
    success: bool = True
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class AuditEntry:
    """A single audit log entry."""

    id: str
    timestamp: str
    action: str
    category: str
    actor: str
    actor_type: str = "user"
    target: AuditTarget = field(default_factory=AuditTarget)
    details: dict[str, Any] = field(default_factory=dict)
    severity: str = "info"
    outcome: AuditOutcome = field(default_factory=AuditOutcome)

    def __post_init__(self) -> None:
        self.target = coerce_obj(AuditTarget, self.target) or AuditTarget()
        self.outcome = coerce_obj(AuditOutcome, self.outcome) or AuditOutcome()


class AuditLogger:
    """File-based append-only audit logger.

    Events are persisted as newline-delimited JSON in daily log files stored
    under ``~/.modguard/audit_logs/``.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self._base_dir = base_dir or Path.home() / ".modguard" / "audit_logs"
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._file_lock = FileLock(str(self._base_dir / ".audit.lock"), timeout=10, thread_local=False)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _current_log_file(self) -> Path:
        return self._log_file_for_date(datetime.now(timezone.utc))

    def _read_all_entries(self) -> list[AuditEntry]:
        """Read every entry from all log files, skipping unreadable lines."""
        entries: list[AuditEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            text = path.read_text(encoding="utf-8")
            for lineno, line in enumerate(text.splitlines(), start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry(**json.loads(line)))
                except (json.JSONDecodeError, TypeError) as exc:
                    logger.warning(
                        "Skipping unreadable audit line",
                        extra={"file": path.name, "line": lineno, "error": str(exc)},
                    )
        return entries

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_event(
        self,
        action: str,
        category: str,
        actor: str,
        *,
        actor_type: str = "user",
        target: Optional[dict[str, Optional[str]]] = None,
        details: Optional[dict[str, Any]] = None,
        severity: str = "info",
        success: bool = True,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> AuditEntry:
        """Record an audit event and return the created entry."""
        target = {k: v for k, v in (target or {}).items() if v is not None}
        unknown = set(target) - set(TARGET_FIELDS)
        if unknown:
            raise ValueError(f"unknown audit target fields: {sorted(unknown)}")

        entry = AuditEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            category=category,
            actor=actor,
            actor_type=actor_type,
            target=AuditTarget(**target),
            details=details or {},
            severity=severity,
            outcome=AuditOutcome(
                success=success, error_code=error_code, error_message=error_message
            ),
        )
        line = json.dumps(asdict(entry), default=str) + "\n"
        with self._lock, self._file_lock:
            with self._current_log_file().open("a", encoding="utf-8") as fh:
                fh.write(line)
        return entry

    def get_events(
        self,
        *,
        actor: Optional[str] = None,
        action: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        success: Optional[bool] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 200,
    ) -> list[AuditEntry]:
        """Return filtered audit events, newest first."""
        entries = self._read_all_entries()

        if actor:
            entries = [e for e in entries if e.actor == actor]
        if action:
            entries = [e for e in entries if e.action == action]
        if category:
            entries = [e for e in entries if e.category == category]
        if severity:
            entries = [e for e in entries if e.severity == severity]
        if success is not None:
            entries = [e for e in entries if e.outcome.success == success]
        if start_date:
            entries = [e for e in entries if e.timestamp >= start_date]
        if end_date:
            entries = [e for e in entries if e.timestamp <= end_date]

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]

    def get_events_for_target(self, field_name: str, value: str) -> list[AuditEntry]:
        """Return all events touching one entity, e.g. ``("content_flag_id", id)``."""
        if field_name not in TARGET_FIELDS:
            raise ValueError(f"unknown audit target field: {field_name}")
        result = [
            e for e in self._read_all_entries() if getattr(e.target, field_name) == value
        ]
        result.sort(key=lambda e: e.timestamp, reverse=True)
        return result

    def export_events(self, fmt: str = "json", *, limit: int = 10000, **filters: Any) -> str:
        """Export audit events in the specified format (``json`` or ``csv``)."""
        entries = self.get_events(limit=limit, **filters)

        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf)
            writer.writerow(
                ["id", "timestamp", "action", "category", "actor", "severity", "success"]
                + list(TARGET_FIELDS)
            )
            for e in entries:
                writer.writerow(
                    [e.id, e.timestamp, e.action, e.category, e.actor, e.severity, e.outcome.success]
                    + [getattr(e.target, f) or "" for f in TARGET_FIELDS]
                )
            return buf.getvalue()

        return json.dumps([asdict(e) for e in entries], indent=2, default=str)
