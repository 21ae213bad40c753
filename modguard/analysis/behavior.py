"""Behavior scorer: derives risk factors for one user from their recent
messages and flags.

Each factor is computed by its own ``_factor_*`` helper that appends to the
factor list and returns its weight; the total is clamped to 1.0.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from modguard.analysis.analyzer import clamp
from modguard.config import BehaviorSettings
from modguard.models.analysis import RiskFactor
from modguard.models.flags import ContentFlag, Severity, SuspiciousActivityFlag
from modguard.models.messaging import Message


@dataclass
class BehaviorInput:
    """Activity of one user inside the analysis window."""

    messages: list[Message] = field(default_factory=list)
    conversation_ids: set[str] = field(default_factory=set)
    content_flags: list[ContentFlag] = field(default_factory=list)
    activity_flags: list[SuspiciousActivityFlag] = field(default_factory=list)


@dataclass
class BehaviorScore:
    risk_score: float
    risk_factors: list[RiskFactor]


def score_behavior(data: BehaviorInput, settings: BehaviorSettings) -> BehaviorScore:
    factors: list[RiskFactor] = []
    total = 0.0
    total += _factor_message_volume(data, settings, factors)
    total += _factor_repeat_flags(data, settings, factors)
    total += _factor_serious_flags(data, factors)
    return BehaviorScore(risk_score=clamp(total), risk_factors=factors)


def _factor_message_volume(data: BehaviorInput, settings: BehaviorSettings, out: list[RiskFactor]) -> float:
    if len(data.messages) <= settings.high_volume_messages:
        return 0.0
    out.append(
        RiskFactor(
            factor="high_message_volume",
            weight=0.3,
            severity="medium",
            description=f"{len(data.messages)} messages in the analysis window",
        )
    )
    return 0.3


def _factor_repeat_flags(data: BehaviorInput, settings: BehaviorSettings, out: list[RiskFactor]) -> float:
    if len(data.content_flags) <= settings.repeat_flag_count:
        return 0.0
    out.append(
        RiskFactor(
            factor="multiple_content_flags",
            weight=0.5,
            severity="high",
            description=f"{len(data.content_flags)} content flags in the analysis window",
        )
    )
    return 0.5


def _factor_serious_flags(data: BehaviorInput, out: list[RiskFactor]) -> float:
    """Escalated or critical content flags, or confirmed suspicious activity."""
    serious = [
        f for f in data.content_flags if f.escalated or f.severity == Severity.CRITICAL
    ]
    confirmed = [a for a in data.activity_flags if a.status.value == "confirmed"]
    if not serious and not confirmed:
        return 0.0
    out.append(
        RiskFactor(
            factor="serious_flags",
            weight=0.2,
            severity="critical",
            description=(
                f"{len(serious)} escalated or critical content flags, "
                f"{len(confirmed)} confirmed activity flags"
            ),
        )
    )
    return 0.2
