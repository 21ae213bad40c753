"""Content Analyzer interface, a deterministic keyword analyzer, and the
timeout wrapper every caller goes through.

An analyzer scores one content item and never touches message state. A
timed-out or failed analysis surfaces as :class:`DependencyUnavailable`; it
is never turned into a zero score.
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable

from modguard.errors import DependencyUnavailable, ValidationError
from modguard.models.analysis import ModerationRule, PatternType, RulePattern
from modguard.models.flags import Detection

logger = logging.getLogger(__name__)

ANALYSIS_TYPES = ("text", "image", "comprehensive")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


@dataclass
class AnalysisResult:
    """What an analyzer returns for one content item."""

    risk_score: float
    confidence: float
    detections: list[Detection] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


class ContentAnalyzer(ABC):
    """Scores one content item. Implementations must be side-effect free."""

    name = "analyzer"

    @abstractmethod
    def analyze(self, content: str, analysis_type: str) -> AnalysisResult:
        ...


# ---------------------------------------------------------------------------
# Keyword analyzer
# ---------------------------------------------------------------------------

_DEFAULT_PATTERNS = [
    RulePattern(pattern=word, weight=0.3, category="violence")
    for word in ("bomb", "attack", "kill", "terrorist", "weapon")
]


@dataclass
class _CompiledPattern:
    source: RulePattern
    regex: re.Pattern[str]
    rule_id: str = ""


def compile_pattern(pattern: RulePattern, rule_id: str = "") -> _CompiledPattern:
    flags = 0 if pattern.case_sensitive else re.IGNORECASE
    if pattern.type == PatternType.REGEX:
        try:
            regex = re.compile(pattern.pattern, flags)
        except re.error as exc:
            raise ValidationError(f"invalid regex pattern {pattern.pattern!r}: {exc}") from exc
    elif pattern.type == PatternType.PHRASE:
        regex = re.compile(re.escape(pattern.pattern), flags)
    else:
        regex = re.compile(rf"\b{re.escape(pattern.pattern)}\w*\b", flags)
    return _CompiledPattern(source=pattern, regex=regex, rule_id=rule_id)


class KeywordAnalyzer(ContentAnalyzer):
    """Weighted pattern matching.

    Each matching pattern adds its weight to the score (clamped to 1.0) and
    contributes one detection. Deterministic, so it doubles as the offline
    default and as a test double.
    """

    name = "keyword"

    def __init__(self, patterns: Iterable[RulePattern] | None = None, confidence: float = 0.85):
        self._patterns = [compile_pattern(p) for p in (patterns if patterns is not None else _DEFAULT_PATTERNS)]
        self._confidence = confidence

    @classmethod
    def from_rules(
        cls,
        rules: Iterable[ModerationRule],
        confidence: float = 0.85,
        threat_patterns: Iterable[tuple[str, RulePattern]] = (),
    ) -> KeywordAnalyzer:
        """Build an analyzer from the enabled rules, highest priority first.

        Threat indicators, given as ``(threat_id, pattern)``, are appended
        after the rule patterns or the built-in defaults.
        """
        analyzer = cls(patterns=[], confidence=confidence)
        for rule in sorted(rules, key=lambda r: r.priority):
            if not rule.enabled:
                continue
            for p in rule.patterns:
                analyzer._patterns.append(compile_pattern(p, rule.id))
        if not analyzer._patterns:
            analyzer._patterns = [compile_pattern(p) for p in _DEFAULT_PATTERNS]
        for threat_id, p in threat_patterns:
            analyzer._patterns.append(compile_pattern(p, threat_id))
        return analyzer

    def analyze(self, content: str, analysis_type: str) -> AnalysisResult:
        score = 0.0
        detections: list[Detection] = []
        matched: list[dict[str, str]] = []
        for cp in self._patterns:
            if cp.regex.search(content or ""):
                score += cp.source.weight
                detections.append(
                    Detection(
                        type="threat_keyword",
                        category=cp.source.category,
                        severity="high" if cp.source.weight >= 0.3 else "medium",
                        confidence=0.9,
                    )
                )
                matched.append({"pattern": cp.source.pattern, "rule_id": cp.rule_id})
        return AnalysisResult(
            risk_score=clamp(score),
            confidence=self._confidence,
            detections=detections,
            details={"analyzer": self.name, "matched": matched},
        )


# ---------------------------------------------------------------------------
# Timeout wrapper
# ---------------------------------------------------------------------------


def run_analysis(
    analyzer: ContentAnalyzer,
    content: str,
    analysis_type: str,
    timeout: float,
) -> AnalysisResult:
    """Run *analyzer* with a caller-supplied timeout.

    Raises DependencyUnavailable on timeout or analyzer failure. Scores and
    confidences are clamped to [0, 1].
    """
    if analysis_type not in ANALYSIS_TYPES:
        raise ValidationError(
            f"analysis_type must be one of {', '.join(ANALYSIS_TYPES)}, got {analysis_type!r}"
        )

    pool = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = pool.submit(analyzer.analyze, content, analysis_type)
    try:
        result = future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as exc:
        future.cancel()
        raise DependencyUnavailable(
            f"{analyzer.name} analysis timed out after {timeout}s", code="analysis_timeout"
        ) from exc
    except DependencyUnavailable:
        raise
    except Exception as exc:
        logger.exception("Content analyzer failed", extra={"analyzer": analyzer.name})
        raise DependencyUnavailable(
            f"{analyzer.name} analysis failed: {exc}", code="analysis_failed"
        ) from exc
    finally:
        pool.shutdown(wait=False)

    if not isinstance(result, AnalysisResult) or result.risk_score is None:
        raise DependencyUnavailable(
            f"{analyzer.name} returned no risk score", code="analysis_failed"
        )

    result.risk_score = clamp(result.risk_score)
    result.confidence = clamp(result.confidence)
    for d in result.detections:
        d.confidence = clamp(d.confidence)
    return result
