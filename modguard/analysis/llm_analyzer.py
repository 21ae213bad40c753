"""Content Analyzer backed by the Anthropic Messages API.

The model is asked for a JSON verdict which is parsed into an
:class:`AnalysisResult`. Without an API key, or when the API call fails or
returns something unparseable, the analyzer raises DependencyUnavailable so
the content is recorded as ``analysis_pending`` rather than as safe.
"""

from __future__ import annotations

import json
import os
import re
import time
from typing import Any

import anthropic

from modguard.analysis.analyzer import AnalysisResult, ContentAnalyzer, clamp
from modguard.errors import DependencyUnavailable
from modguard.models.flags import Detection

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

_NOT_CONFIGURED_MSG = "LLM analyzer not configured. Set ANTHROPIC_API_KEY."

CONTENT_RISK_PROMPT = """\
You are a trust-and-safety analyst for a private messaging platform. Assess \
the following {analysis_type} content for real-world harm: violence, \
terrorism, drug or weapons trafficking, human trafficking, child \
exploitation and financial crime.

Return ONLY a JSON object with these keys:
- "risk_score": number between 0 and 1
- "confidence": number between 0 and 1
- "flags": array of objects with "type", "category", "severity" \
(low|medium|high|critical) and "confidence"
- "summary": one sentence

---
Content:
{content}
"""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class LLMContentAnalyzer(ContentAnalyzer):
    """Thin wrapper around the Anthropic Python SDK.

    Parameters
    ----------
    model : str
        Model identifier to use for completions.
    api_key : str | None
        Anthropic API key. Falls back to the ``ANTHROPIC_API_KEY``
        environment variable when *None*.
    client : anthropic.Anthropic | None
        Pre-built SDK client; takes precedence over *api_key*.
    """

    name = "llm"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        max_tokens: int = 1024,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self.model = model
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        self.max_tokens = max_tokens
        self._configured = client is not None or bool(self.api_key)
        self._client = client or (anthropic.Anthropic(api_key=self.api_key) if self.api_key else None)

    @property
    def configured(self) -> bool:
        return self._configured

    def analyze(self, content: str, analysis_type: str) -> AnalysisResult:
        if not self._configured:
            raise DependencyUnavailable(_NOT_CONFIGURED_MSG, code="analyzer_not_configured")

        start = time.monotonic()
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.0,
                messages=[
                    {
                        "role": "user",
                        "content": CONTENT_RISK_PROMPT.format(
                            analysis_type=analysis_type, content=content
                        ),
                    }
                ],
            )
        except anthropic.APIError as exc:
            raise DependencyUnavailable(f"Anthropic API error: {exc}") from exc
        latency_ms = int((time.monotonic() - start) * 1000)

        text = response.content[0].text if response.content else ""
        verdict = self._parse_verdict(text)
        return AnalysisResult(
            risk_score=clamp(verdict["risk_score"]),
            confidence=clamp(verdict.get("confidence", 0.5)),
            detections=[
                Detection(
                    type=str(f.get("type", "llm_detection")),
                    category=str(f.get("category", "other")),
                    severity=str(f.get("severity", "medium")),
                    confidence=clamp(f.get("confidence", 0.5)),
                )
                for f in verdict.get("flags", [])
                if isinstance(f, dict)
            ],
            details={
                "analyzer": self.name,
                "model": self.model,
                "summary": verdict.get("summary", ""),
                "latency_ms": latency_ms,
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )

    @staticmethod
    def _parse_verdict(text: str) -> dict[str, Any]:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise DependencyUnavailable("LLM verdict contained no JSON object")
        try:
            verdict = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise DependencyUnavailable(f"LLM verdict is not valid JSON: {exc}") from exc
        if not isinstance(verdict.get("risk_score"), (int, float)):
            raise DependencyUnavailable("LLM verdict has no numeric risk_score")
        return verdict
