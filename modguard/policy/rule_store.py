"""Moderation rules: CRUD over the rules collection and YAML import.

Rules are keyed by a unique rule id; every update bumps the stored version.
Enabled rules feed the keyword analyzer.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from modguard.analysis.analyzer import KeywordAnalyzer, compile_pattern
from modguard.errors import NotFoundError, ValidationError
from modguard.models.analysis import ModerationRule, RulePattern, RuleType
from modguard.models.base import coerce_list
from modguard.security.audit_log import AuditLogger
from modguard.store import ModerationStore

logger = logging.getLogger(__name__)


def _validate_patterns(patterns: list[RulePattern]) -> None:
    for p in patterns:
        if not p.pattern:
            raise ValidationError("rule patterns must not be empty")
        if not 0.0 <= p.weight <= 1.0:
            raise ValidationError(f"pattern weight must be within [0, 1], got {p.weight}")
        compile_pattern(p)


class RuleStore:
    """Moderation rule storage on top of :class:`ModerationStore`."""

    def __init__(self, store: ModerationStore, audit: AuditLogger) -> None:
        self._store = store
        self._audit = audit

    def upsert_rule(
        self,
        rule_id: str,
        rule_type: str,
        name: str,
        updated_by: str,
        *,
        description: str = "",
        patterns: Optional[list[Any]] = None,
        enabled: bool = True,
        priority: int = 100,
    ) -> ModerationRule:
        """Create the rule, or update it in place when *rule_id* exists."""
        if not rule_id:
            raise ValidationError("rule_id is required")
        try:
            rtype = RuleType(rule_type)
            parsed = coerce_list(RulePattern, patterns or [])
        except (TypeError, ValueError) as exc:
            raise ValidationError(str(exc)) from exc
        _validate_patterns(parsed)

        existing = self._store.rules.get(rule_id)
        if existing is None:
            rule = self._store.rules.insert(
                ModerationRule(
                    id=rule_id,
                    rule_type=rtype,
                    name=name,
                    updated_by=updated_by,
                    description=description,
                    patterns=parsed,
                    enabled=enabled,
                    priority=priority,
                )
            )
            action = "create_moderation_rule"
        else:

            def mutate(r: ModerationRule) -> None:
                r.rule_type = rtype
                r.name = name
                r.description = description
                r.patterns = parsed
                r.enabled = enabled
                r.priority = priority
                r.updated_by = updated_by

            rule = self._store.rules.update(rule_id, mutate)
            action = "update_moderation_rule"

        self._audit.log_event(
            action,
            "system_configuration",
            updated_by,
            target={"rule_id": rule_id},
            details={"version": rule.version, "patterns": len(parsed), "enabled": enabled},
        )
        logger.info("Moderation rule saved", extra={"rule_id": rule_id, "version": rule.version})
        return rule

    def get_rule(self, rule_id: str) -> ModerationRule:
        return self._store.rules.require(rule_id)

    def list_rules(
        self,
        *,
        rule_type: Optional[str] = None,
        enabled_only: bool = False,
    ) -> list[ModerationRule]:
        rules = self._store.rules.find(
            lambda r: (rule_type is None or r.rule_type.value == rule_type)
            and (not enabled_only or r.enabled)
        )
        return sorted(rules, key=lambda r: (r.priority, r.id))

    def toggle_rule(self, rule_id: str, enabled: bool, actor: str) -> ModerationRule:
        def mutate(r: ModerationRule) -> None:
            r.enabled = enabled
            r.updated_by = actor

        rule = self._store.rules.update(rule_id, mutate)
        self._audit.log_event(
            "toggle_moderation_rule",
            "system_configuration",
            actor,
            target={"rule_id": rule_id},
            details={"enabled": enabled, "version": rule.version},
        )
        return rule

    def delete_rule(self, rule_id: str, actor: str) -> None:
        if not self._store.rules.delete(rule_id):
            raise NotFoundError("ModerationRule", rule_id)
        self._audit.log_event(
            "delete_moderation_rule", "system_configuration", actor, target={"rule_id": rule_id}
        )

    def import_yaml(self, path: str | Path, actor: str) -> list[ModerationRule]:
        """Load rules from a YAML file with a top-level ``rules`` list."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict) or not isinstance(data.get("rules", []), list):
            raise ValidationError("rules file must contain a 'rules' list")

        saved = []
        for rule_data in data.get("rules", []):
            try:
                saved.append(
                    self.upsert_rule(
                        rule_id=rule_data["rule_id"],
                        rule_type=rule_data["rule_type"],
                        name=rule_data.get("name", rule_data["rule_id"]),
                        updated_by=actor,
                        description=rule_data.get("description", ""),
                        patterns=rule_data.get("patterns", []),
                        enabled=rule_data.get("enabled", True),
                        priority=rule_data.get("priority", 100),
                    )
                )
            except KeyError as exc:
                raise ValidationError(f"rule entry missing required key {exc}") from exc
        return saved

    def build_analyzer(self, threat_patterns: Iterable[tuple[str, RulePattern]] = ()) -> KeywordAnalyzer:
        """A keyword analyzer over every enabled rule plus the given threat indicators."""
        return KeywordAnalyzer.from_rules(self.list_rules(enabled_only=True), threat_patterns=threat_patterns)
