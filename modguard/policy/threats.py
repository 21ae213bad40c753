"""Threat intelligence database: curated indicators that feed the analyzer.

Each entry carries a ``threat_<ms>_<hex>`` id and one or more text
patterns. Active, unexpired keyword, phrase and pattern entries are compiled
into the keyword analyzer next to the enabled moderation rules; behavior,
network and temporal entries are stored for reference only.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from modguard.analysis.analyzer import compile_pattern
from modguard.errors import NotFoundError, ValidationError
from modguard.models.analysis import (
    RulePattern,
    ThreatCategory,
    ThreatEntry,
    ThreatPattern,
    ThreatSource,
    ThreatType,
)
from modguard.models.base import coerce_list
from modguard.models.flags import Severity
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore
from modguard.utils.timeutil import is_past, new_id, now_iso, parse_iso, stamped_id, utcnow

logger = logging.getLogger(__name__)

MAX_DESCRIPTION = 1000
MAX_CONTEXT = 500


def _parse_patterns(raw: list[Any]) -> list[ThreatPattern]:
    items = [{"value": p} if isinstance(p, str) else p for p in raw]
    try:
        return coerce_list(ThreatPattern, items)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid threat pattern: {exc}") from exc


class ThreatDatabase:
    """Threat indicator storage on top of :class:`ModerationStore`."""

    def __init__(self, store: ModerationStore, audit: AuditLogger) -> None:
        self._store = store
        self._audit = audit

    def add_threat(
        self,
        threat_type: str,
        category: str,
        patterns: list[Any],
        added_by: str,
        *,
        severity: str = "medium",
        confidence: float = 0.8,
        source: str = "manual",
        description: str = "",
        context: str = "",
        geographic_scope: Optional[list[str]] = None,
        languages: Optional[list[str]] = None,
        expires_at: Optional[str] = None,
    ) -> ThreatEntry:
        """Validate and store a new threat indicator."""
        try:
            ttype = ThreatType(threat_type)
            tcat = ThreatCategory(category)
            tsource = ThreatSource(source)
            tseverity = Severity(severity)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if not added_by:
            raise ValidationError("added_by is required")
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"confidence must be within [0, 1], got {confidence}")
        if len(description) > MAX_DESCRIPTION:
            raise ValidationError(f"description exceeds {MAX_DESCRIPTION} characters")
        if len(context) > MAX_CONTEXT:
            raise ValidationError(f"context exceeds {MAX_CONTEXT} characters")
        if expires_at is not None:
            try:
                parsed_expiry = parse_iso(expires_at)
            except ValueError as exc:
                raise ValidationError(f"invalid expires_at: {expires_at!r}") from exc
            if parsed_expiry is None:
                raise ValidationError(f"invalid expires_at: {expires_at!r}")

        parsed = _parse_patterns(patterns)
        if not parsed or any(not p.value for p in parsed):
            raise ValidationError("a threat needs at least one non-empty pattern")

        entry = ThreatEntry(
            id=new_id(),
            threat_id=stamped_id("threat"),
            threat_type=ttype,
            category=tcat,
            added_by=added_by,
            patterns=parsed,
            severity=tseverity.value,
            confidence=confidence,
            source=tsource,
            description=description,
            context=context,
            geographic_scope=list(geographic_scope or []),
            languages=list(languages or ["en"]),
            expires_at=expires_at,
        )
        for rp in entry.rule_patterns():
            compile_pattern(rp, entry.threat_id)

        self._store.threats.insert(entry)
        self._audit.log_event(
            "update_threat_database",
            "configuration_change",
            added_by,
            target={"threat_id": entry.threat_id},
            details={
                "threat_type": ttype.value,
                "category": tcat.value,
                "severity": tseverity.value,
                "patterns_count": len(parsed),
            },
            severity="medium",
        )
        logger.info(
            "Threat indicator added",
            extra={"threat_id": entry.threat_id, "threat_type": ttype.value},
        )
        return entry

    def get_threat(self, threat_id: str) -> ThreatEntry:
        found = self._store.threats.find(lambda t: t.threat_id == threat_id)
        if not found:
            raise NotFoundError("ThreatEntry", threat_id)
        return found[0]

    def list_threats(
        self,
        *,
        threat_type: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        active_only: bool = False,
        now: Optional[datetime] = None,
    ) -> list[ThreatEntry]:
        now = now or utcnow()
        threats = self._store.threats.find(
            lambda t: (threat_type is None or t.threat_type.value == threat_type)
            and (category is None or t.category.value == category)
            and (severity is None or t.severity == severity)
            and (not active_only or (t.is_active and not is_past(t.expires_at, now)))
        )
        return sorted(threats, key=lambda t: t.created_at, reverse=True)

    def active_threats(self, now: Optional[datetime] = None) -> list[ThreatEntry]:
        return self.list_threats(active_only=True, now=now)

    def verify_threat(self, threat_id: str, verified_by: str) -> ThreatEntry:
        entry = self.get_threat(threat_id)

        def mutate(t: ThreatEntry) -> None:
            t.verified_by = verified_by
            t.verified_at = now_iso()

        entry = self._store.threats.update(entry.id, mutate)
        self._audit.log_event(
            "verify_threat",
            "configuration_change",
            verified_by,
            target={"threat_id": threat_id},
        )
        return entry

    def set_active(self, threat_id: str, active: bool, actor: str) -> ThreatEntry:
        entry = self.get_threat(threat_id)

        def mutate(t: ThreatEntry) -> None:
            t.is_active = active

        entry = self._store.threats.update(entry.id, mutate)
        self._audit.log_event(
            "toggle_threat",
            "configuration_change",
            actor,
            target={"threat_id": threat_id},
            details={"is_active": active, "version": entry.version},
        )
        return entry

    def rule_patterns(self, now: Optional[datetime] = None) -> list[tuple[str, RulePattern]]:
        """``(threat_id, pattern)`` for every active text indicator."""
        return [(t.threat_id, p) for t in self.active_threats(now) for p in t.rule_patterns()]
