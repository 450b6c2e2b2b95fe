"""Shared fixtures for all tests."""

import pytest

from aegisops.api.schemas import IncidentReport
from aegisops.backends.base import Backend, SpeechResult
from aegisops.core.config import Settings


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubBackend(Backend):
    """Scriptable backend that counts calls."""

    name = "stub"

    def __init__(self, model: str = "test-model", report: IncidentReport | None = None):
        super().__init__(model)
        self.report = report or IncidentReport(title="Stub incident", severity="SEV2")
        self.analyze_calls = 0
        self.follow_up_calls = []
        self.speak_calls = 0
        self.analyze_side_effects = []  # exceptions/values consumed per call
        self.gate = None  # optional asyncio.Event to hold analyze open

    async def analyze(self, request):
        self.analyze_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.analyze_side_effects:
            effect = self.analyze_side_effects.pop(0)
            if isinstance(effect, BaseException):
                raise effect
            return effect
        return self.report

    async def follow_up(self, report, history, question, enable_grounding=False):
        self.follow_up_calls.append((report, history, question, enable_grounding))
        return f"Answer to: {question}"

    async def speak(self, text):
        self.speak_calls += 1
        return SpeechResult(audio=b"RIFF-audio", mime_type="audio/wav")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        provider="demo",
        max_images=2,
        max_image_bytes=1024,
        max_log_chars=200,
        cache_ttl_sec=100,
        cache_max_entries=10,
        timeout_ms=5_000,
        retry_max_attempts=3,
        retry_base_delay_ms=50,
    )


@pytest.fixture
def stub_backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
def png_base64() -> str:
    # "hello"
    return "aGVsbG8="


@pytest.fixture
def sample_logs() -> str:
    return (
        "[2024-05-01 10:00:01] WARN: redis memory usage at 95%\n"
        "[2024-05-01 10:00:05] ERROR: redis OOM command not allowed\n"
        "[2024-05-01 10:00:09] ALERT: api latency p99 4500ms, error rate 12%\n"
        "[2024-05-01 10:01:00] INFO: autoscaling added 3 nodes\n"
    )


@pytest.fixture
def raw_report() -> dict:
    return {
        "title": "Redis OOM",
        "summary": "Cache tier ran out of memory.",
        "severity": "SEV1",
        "rootCauses": ["maxmemory too low"],
        "reasoning": "Observations: OOM errors.",
        "confidenceScore": 82,
        "timeline": [{"time": "10:00:05", "description": "OOM", "severity": "critical"}],
        "actionItems": [{"task": "Raise maxmemory", "owner": "SRE", "priority": "HIGH"}],
        "mitigationSteps": ["Failover to replica"],
        "impact": {"estimatedUsersAffected": "~10k", "duration": "12m"},
        "tags": ["Redis", "OOM"],
        "lessonsLearned": "Alert on memory earlier.",
        "preventionRecommendations": ["Capacity review"],
    }
