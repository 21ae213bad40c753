"""Shared helpers for engine tests: scripted analyzers, a recording notifier
and seed data."""

import time
from pathlib import Path
from typing import Any, Optional

from modguard.analysis.analyzer import AnalysisResult, ContentAnalyzer
from modguard.config import ModerationConfig
from modguard.engine import ModerationEngine
from modguard.errors import DependencyUnavailable
from modguard.models.flags import Detection


class ScriptedAnalyzer(ContentAnalyzer):
    """Returns a fixed score per message content (``default`` otherwise)."""

    name = "scripted"

    def __init__(self, scores: Optional[dict[str, float]] = None, default: float = 0.0, offline: bool = False):
        self.scores = dict(scores or {})
        self.default = default
        self.offline = offline
        self.calls: list[tuple[str, str]] = []

    def analyze(self, content: str, analysis_type: str) -> AnalysisResult:
        self.calls.append((content, analysis_type))
        if self.offline:
            raise DependencyUnavailable("analyzer offline")
        score = self.scores.get(content, self.default)
        detections = []
        if score > 0:
            detections.append(
                Detection(type="threat_keyword", category="violence", severity="high", confidence=0.9)
            )
        return AnalysisResult(
            risk_score=score,
            confidence=0.9,
            detections=detections,
            details={"analyzer": self.name},
        )


class BrokenAnalyzer(ContentAnalyzer):
    name = "broken"

    def analyze(self, content: str, analysis_type: str) -> AnalysisResult:
        raise RuntimeError("model crashed")


class SlowAnalyzer(ContentAnalyzer):
    name = "slow"

    def __init__(self, delay: float):
        self.delay = delay

    def analyze(self, content: str, analysis_type: str) -> AnalysisResult:
        time.sleep(self.delay)
        return AnalysisResult(risk_score=0.1, confidence=0.5)


class RecordingNotifier:
    """Keeps every notification instead of delivering it."""

    def __init__(self):
        self.sent: list[tuple[list[str], str, dict[str, Any]]] = []

    def notify(self, recipients: list[str], category: str, payload: dict[str, Any]) -> bool:
        self.sent.append((list(recipients), category, dict(payload)))
        return True

    def of_category(self, category: str) -> list[tuple[list[str], str, dict[str, Any]]]:
        return [n for n in self.sent if n[1] == category]


def make_engine(
    tmpdir: str,
    scores: Optional[dict[str, float]] = None,
    *,
    analyzer: Optional[ContentAnalyzer] = None,
    gateway: Any = None,
    **config: Any,
) -> ModerationEngine:
    """An engine storing everything under *tmpdir* with a recording notifier."""
    cfg = ModerationConfig(base_dir=str(Path(tmpdir) / "modguard"), **config)
    return ModerationEngine(
        cfg,
        analyzer=analyzer or ScriptedAnalyzer(scores),
        notifier=RecordingNotifier(),
        gateway=gateway,
    )


def seed_conversation(
    engine: ModerationEngine,
    conversation_id: str = "conv-1",
    conversation_type: str = "direct",
    participants: tuple[str, ...] = ("alice", "bob"),
    notify: bool = False,
):
    return engine.record_conversation(
        {
            "id": conversation_id,
            "conversation_type": conversation_type,
            "participant_ids": list(participants),
            "notify_screenshot_attempts": notify,
        }
    )


def seed_message(
    engine: ModerationEngine,
    message_id: str,
    content: str,
    sender: str = "alice",
    conversation_id: str = "conv-1",
    **fields: Any,
):
    return engine.record_message(
        {
            "id": message_id,
            "conversation_id": conversation_id,
            "sender_id": sender,
            "content": content,
            **fields,
        }
    )


def seed_user(engine: ModerationEngine, user_id: str = "alice", **fields: Any):
    data = {
        "id": user_id,
        "username": user_id,
        "full_name": user_id.title(),
        "email": f"{user_id}@example.com",
    }
    data.update(fields)
    return engine.record_user(data)
