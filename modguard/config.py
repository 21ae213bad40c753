"""Engine configuration, loaded once at startup from YAML.

Every key is optional; omitted keys keep the defaults below. Unknown keys are
rejected so a typo in a threshold name cannot silently fall back to a default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from modguard.errors import ValidationError

CONFIG_ENV_VAR = "MODGUARD_CONFIG"


@dataclass
class Thresholds:
    """Risk-score cut-offs for the single-message path."""

    critical: float = 0.8
    high: float = 0.6
    medium: float = 0.4
    review: float = 0.5  # reviewRequired when score > review
    auto_escalate: float = 0.8  # auto-escalate when score > auto_escalate


@dataclass
class ScanSettings:
    flag_threshold: float = 0.3
    batch_size: int = 10
    alert_flagged_messages: int = 5
    alert_total_risk: float = 3.0
    high_total_risk: float = 5.0


@dataclass
class BehaviorSettings:
    alert: float = 0.8
    critical: float = 0.9
    enhanced: float = 0.6
    intensive: float = 0.8
    high_volume_messages: int = 100
    repeat_flag_count: int = 5


def _default_activity_scores() -> dict[str, float]:
    return {
        "drug_trafficking": 0.9,
        "terrorism_planning": 0.95,
        "weapons_dealing": 0.85,
        "human_trafficking": 0.9,
        "child_exploitation": 0.95,
        "financial_crimes": 0.7,
        "suspicious_behavior": 0.5,
    }


def _default_retention() -> dict[str, int]:
    return {
        "standard": 90,
        "law_enforcement": 180,
        "legal": 365,
        "emergency": 30,
    }


@dataclass
class ModerationConfig:
    """Top-level configuration for the moderation engine."""

    base_dir: Optional[str] = None
    log_level: str = "INFO"
    thresholds: Thresholds = field(default_factory=Thresholds)
    scan: ScanSettings = field(default_factory=ScanSettings)
    behavior: BehaviorSettings = field(default_factory=BehaviorSettings)
    activity_base_scores: dict[str, float] = field(default_factory=_default_activity_scores)
    evidence_weight: float = 0.1
    retention_days: dict[str, int] = field(default_factory=_default_retention)
    analyzer_timeout_seconds: float = 10.0
    cleanup_batch_size: int = 1000
    log_retention_days: int = 90
    block_user_hours: int = 24
    agency_endpoints: dict[str, str] = field(default_factory=dict)
    agency_timeout_seconds: float = 10.0
    webhooks_enabled: bool = True
    analyzer: str = "keyword"  # keyword | llm
    llm_model: Optional[str] = None

    def __post_init__(self) -> None:
        t = self.thresholds
        if not 0.0 <= t.medium <= t.high <= t.critical <= 1.0:
            raise ValidationError(
                "severity thresholds must satisfy 0 <= medium <= high <= critical <= 1"
            )
        for name in ("review", "auto_escalate"):
            value = getattr(t, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"thresholds.{name} must be within [0, 1]")
        for cls, days in self.retention_days.items():
            if days <= 0:
                raise ValidationError(f"retention_days.{cls} must be positive")
        if self.analyzer_timeout_seconds <= 0:
            raise ValidationError("analyzer_timeout_seconds must be positive")
        if self.analyzer not in ("keyword", "llm"):
            raise ValidationError(f"analyzer must be keyword or llm, got {self.analyzer!r}")

    @property
    def storage_path(self) -> Path:
        if self.base_dir:
            return Path(self.base_dir).expanduser()
        return Path.home() / ".modguard"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _build(cls: type, data: dict[str, Any], prefix: str = "") -> Any:
    """Build dataclass *cls* from *data*, recursing into nested sections."""
    if not isinstance(data, dict):
        raise ValidationError(f"config section '{prefix or 'root'}' must be a mapping")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValidationError(f"unknown config keys: {', '.join(prefix + k for k in unknown)}")

    kwargs: dict[str, Any] = {}
    defaults = cls()
    for name, value in data.items():
        current = getattr(defaults, name)
        if is_dataclass(current):
            kwargs[name] = _build(type(current), value or {}, f"{prefix}{name}.")
        elif isinstance(current, dict):
            merged = dict(current)
            merged.update(value or {})
            kwargs[name] = merged
        else:
            kwargs[name] = value
    return cls(**kwargs)


def load_config(path: str | Path | None = None) -> ModerationConfig:
    """Load a :class:`ModerationConfig` from a YAML file.

    Falls back to ``$MODGUARD_CONFIG`` when *path* is None, and to the
    built-in defaults when neither is set.
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return ModerationConfig()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return _build(ModerationConfig, data)
