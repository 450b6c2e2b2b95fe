"""Analysis request gateway.

Sits between the HTTP handlers and the active backend:
normalize -> fingerprint -> cache -> in-flight coalescer -> retry engine
-> backend -> repaired report -> cache. Follow-up and speech requests
skip the cache but share the retry policy.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from aegisops.api.schemas import IncidentReport
from aegisops.backends.base import Backend, SpeechResult
from aegisops.core.analyze_cache import AnalyzeCache, InFlightCoalescer
from aegisops.core.cache_key import build_cache_key
from aegisops.core.config import Settings
from aegisops.core.errors import MissingField
from aegisops.core.normalizer import (
    AnalyzeRequest,
    clamp_text,
    normalize_analyze_request,
    normalize_history,
    normalize_question,
)
from aegisops.core.repair import coerce_report
from aegisops.core.retry import RetryPolicy, with_retry

logger = structlog.get_logger(__name__)

NO_ANSWER = "No answer generated."
MAX_ANSWER_CHARS = 8_000


@dataclass(frozen=True)
class AnalyzeOutcome:
    report: IncidentReport
    cache_hit: bool = False


class AnalysisGateway:
    """Owns the shared cache, coalescer and retry policy for one backend.

    Args:
        backend: Active generation backend.
        settings: Limits and retry parameters.
        cache: Result cache; pass a disabled cache to turn caching off.
        coalescer: Single-flight map for analyze calls.
    """

    def __init__(
        self,
        backend: Backend,
        settings: Settings,
        cache: AnalyzeCache[IncidentReport] | None = None,
        coalescer: InFlightCoalescer[IncidentReport] | None = None,
    ):
        self.backend = backend
        self.settings = settings
        self.cache = cache if cache is not None else AnalyzeCache(settings.cache_ttl_sec, settings.cache_max_entries)
        self.coalescer = coalescer if coalescer is not None else InFlightCoalescer()
        self.retry_policy = RetryPolicy(
            timeout_ms=settings.timeout_ms,
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
        )

    def build_request(
        self,
        logs: str | None,
        images: Sequence[Mapping[str, Any] | None] | None,
        enable_grounding: bool | None = None,
    ) -> AnalyzeRequest:
        grounding = self.settings.grounding_default if enable_grounding is None else enable_grounding
        return normalize_analyze_request(
            logs,
            images,
            grounding,
            self.backend.identity,
            max_log_chars=self.settings.max_log_chars,
            max_images=self.settings.max_images,
            max_image_bytes=self.settings.max_image_bytes,
        )

    async def analyze(
        self,
        logs: str | None,
        images: Sequence[Mapping[str, Any] | None] | None,
        enable_grounding: bool | None = None,
    ) -> AnalyzeOutcome:
        """Produce a report, at most one backend call per key per TTL window."""
        request = self.build_request(logs, images, enable_grounding)
        key = build_cache_key(request)

        cached = self.cache.get(key)
        if cached is not None:
            logger.info("gateway.cache_hit", key=key[:12])
            return AnalyzeOutcome(report=cached, cache_hit=True)

        logger.info("gateway.analyze", key=key[:12], backend=self.backend.identity,
                    log_chars=len(request.log_text), images=len(request.images),
                    grounding=request.grounding_enabled)
        report = await self.coalescer.run(key, lambda: self._analyze_upstream(key, request))
        return AnalyzeOutcome(report=report)

    async def _analyze_upstream(self, key: str, request: AnalyzeRequest) -> IncidentReport:
        report = await with_retry(
            lambda: self.backend.analyze(request),
            self.retry_policy,
            label=f"{self.backend.name} analyze request",
        )
        self.cache.set(key, report)
        return report

    async def follow_up(
        self,
        report: Mapping[str, Any] | IncidentReport | None,
        history: Sequence[Any] | None,
        question: str | None,
        enable_grounding: bool | None = None,
    ) -> str:
        """Answer a question about an existing report."""
        text = normalize_question(question, self.settings.max_log_chars)
        turns = normalize_history(history)
        context = report if isinstance(report, IncidentReport) else coerce_report(dict(report or {}))
        grounding = self.settings.grounding_default if enable_grounding is None else enable_grounding

        logger.info("gateway.follow_up", backend=self.backend.identity, turns=len(turns), question_chars=len(text))
        answer = await with_retry(
            lambda: self.backend.follow_up(context, turns, text, enable_grounding=grounding),
            self.retry_policy,
            label=f"{self.backend.name} follow-up request",
        )
        return clamp_text(answer if isinstance(answer, str) else "", MAX_ANSWER_CHARS) or NO_ANSWER

    async def speak(self, text: str | None) -> SpeechResult:
        """Synthesize an audio briefing, or report that the backend cannot."""
        value = (text or "").strip()
        if not value:
            raise MissingField("Missing text.")
        result = await with_retry(
            lambda: self.backend.speak(value),
            self.retry_policy,
            label=f"{self.backend.name} TTS request",
        )
        if not result.supported:
            logger.info("gateway.speech_unsupported", backend=self.backend.identity)
        return result
