"""Records produced by scans, behavior analysis and moderation rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from modguard.models.base import coerce_enum, coerce_list
from modguard.utils.timeutil import now_iso


class MonitoringLevel(str, Enum):
    NONE = "none"
    STANDARD = "standard"
    ENHANCED = "enhanced"
    INTENSIVE = "intensive"


class ScanStatus(str, Enum):
    RUNNING = "running"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"


@dataclass
class RiskFactor:
    factor: str
    weight: float
    severity: str
    description: str = ""


@dataclass
class UserBehaviorAnalysis:
    id: str
    user_id: str
    analyzed_by: str
    risk_score: float
    analysis_type: str = "routine"
    analysis_depth_days: int = 30
    risk_factors: list[RiskFactor] = field(default_factory=list)
    risk_status: str = "low_risk"
    requires_action: bool = False
    monitoring_level: MonitoringLevel = MonitoringLevel.STANDARD
    message_count: int = 0
    conversation_count: int = 0
    flag_count: int = 0
    alert_id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.risk_factors = coerce_list(RiskFactor, self.risk_factors)
        self.monitoring_level = coerce_enum(MonitoringLevel, self.monitoring_level)


@dataclass
class ScanRecord:
    """Checkpoint for a conversation scan; ``id`` is the scan id."""

    id: str
    conversation_id: str
    lookback_days: int
    analysis_types: list[str] = field(default_factory=lambda: ["comprehensive"])
    status: ScanStatus = ScanStatus.RUNNING
    processed_message_ids: list[str] = field(default_factory=list)
    started_by: str = "system"
    alert_id: Optional[str] = None
    finished_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.status = coerce_enum(ScanStatus, self.status)


class RuleType(str, Enum):
    DRUG_DETECTION = "drug_detection"
    TERRORISM_DETECTION = "terrorism_detection"
    VIOLENCE_DETECTION = "violence_detection"
    WEAPONS_DETECTION = "weapons_detection"
    TRAFFICKING_DETECTION = "trafficking_detection"
    FINANCIAL_CRIME_DETECTION = "financial_crime_detection"
    BEHAVIORAL_ANALYSIS = "behavioral_analysis"
    CONTENT_FILTERING = "content_filtering"


class PatternType(str, Enum):
    KEYWORD = "keyword"
    PHRASE = "phrase"
    REGEX = "regex"


@dataclass
class RulePattern:
    pattern: str
    type: PatternType = PatternType.KEYWORD
    weight: float = 0.3
    category: str = "violence"
    case_sensitive: bool = False

    def __post_init__(self) -> None:
        self.type = coerce_enum(PatternType, self.type)


@dataclass
class ModerationRule:
    """A detection rule; ``id`` is the unique rule id, ``version`` counts edits."""

    id: str
    rule_type: RuleType
    name: str
    updated_by: str
    description: str = ""
    patterns: list[RulePattern] = field(default_factory=list)
    enabled: bool = True
    priority: int = 100
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.rule_type = coerce_enum(RuleType, self.rule_type)
        self.patterns = coerce_list(RulePattern, self.patterns)


# ---------------------------------------------------------------------------
# Threat intelligence
# ---------------------------------------------------------------------------


class ThreatType(str, Enum):
    DRUG_KEYWORDS = "drug_keywords"
    TERRORISM_INDICATORS = "terrorism_indicators"
    VIOLENCE_PATTERNS = "violence_patterns"
    WEAPONS_TERMS = "weapons_terms"
    TRAFFICKING_SIGNALS = "trafficking_signals"
    FINANCIAL_CRIME_PATTERNS = "financial_crime_patterns"
    CODE_WORDS = "code_words"
    SUSPICIOUS_BEHAVIORS = "suspicious_behaviors"
    EXPLOITATION_INDICATORS = "exploitation_indicators"
    RECRUITMENT_PATTERNS = "recruitment_patterns"


class ThreatCategory(str, Enum):
    KEYWORD = "keyword"
    PHRASE = "phrase"
    PATTERN = "pattern"
    BEHAVIOR = "behavior"
    NETWORK = "network"
    TEMPORAL = "temporal"


class ThreatSource(str, Enum):
    MANUAL = "manual"
    ML_DETECTED = "ml_detected"
    LAW_ENFORCEMENT = "law_enforcement"
    INTELLIGENCE = "intelligence"
    COMMUNITY = "community"
    OSINT = "osint"


# Matchable categories only; behavior, network and temporal indicators
# describe activity rather than text.
_THREAT_PATTERN_TYPES = {
    ThreatCategory.KEYWORD: PatternType.KEYWORD,
    ThreatCategory.PHRASE: PatternType.PHRASE,
    ThreatCategory.PATTERN: PatternType.REGEX,
}

_THREAT_DETECTION_CATEGORIES = {
    ThreatType.DRUG_KEYWORDS: "drugs",
    ThreatType.TERRORISM_INDICATORS: "terrorism",
    ThreatType.VIOLENCE_PATTERNS: "violence",
    ThreatType.WEAPONS_TERMS: "weapons",
    ThreatType.TRAFFICKING_SIGNALS: "trafficking",
    ThreatType.FINANCIAL_CRIME_PATTERNS: "financial_crime",
    ThreatType.CODE_WORDS: "code_words",
    ThreatType.SUSPICIOUS_BEHAVIORS: "suspicious_behavior",
    ThreatType.EXPLOITATION_INDICATORS: "exploitation",
    ThreatType.RECRUITMENT_PATTERNS: "recruitment",
}

# At the default confidence of 0.8 these give 0.1 / 0.2 / 0.3 / 0.5.
_THREAT_SEVERITY_WEIGHTS = {"low": 0.125, "medium": 0.25, "high": 0.375, "critical": 0.625}


@dataclass
class ThreatPattern:
    value: str
    language: str = "en"
    context: str = ""
    variations: list[str] = field(default_factory=list)


@dataclass
class ThreatEntry:
    """A curated threat indicator; ``threat_id`` is unique across the database."""

    id: str
    threat_id: str
    threat_type: ThreatType
    category: ThreatCategory
    added_by: str
    patterns: list[ThreatPattern] = field(default_factory=list)
    severity: str = "medium"
    confidence: float = 0.8
    source: ThreatSource = ThreatSource.MANUAL
    description: str = ""
    context: str = ""
    verified_by: Optional[str] = None
    verified_at: Optional[str] = None
    is_active: bool = True
    geographic_scope: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=lambda: ["en"])
    expires_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.threat_type = coerce_enum(ThreatType, self.threat_type)
        self.category = coerce_enum(ThreatCategory, self.category)
        self.source = coerce_enum(ThreatSource, self.source)
        self.patterns = coerce_list(ThreatPattern, self.patterns)

    def rule_patterns(self) -> list[RulePattern]:
        """The entry's text indicators as analyzer patterns, variations included."""
        ptype = _THREAT_PATTERN_TYPES.get(self.category)
        if ptype is None:
            return []
        weight = round(min(1.0, _THREAT_SEVERITY_WEIGHTS.get(self.severity, 0.25) * self.confidence), 3)
        category = _THREAT_DETECTION_CATEGORIES[self.threat_type]
        out = []
        for p in self.patterns:
            for value in [p.value, *p.variations]:
                if value:
                    out.append(RulePattern(pattern=value, type=ptype, weight=weight, category=category))
        return out
