"""Backend adapter contract.

Every generation backend exposes analyze / follow_up / speak. Adapters
only build the provider payload, make the call and hand raw text to the
repair parser; timeouts and retries live in the gateway.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from aegisops.api.schemas import IncidentReport
from aegisops.core.normalizer import AnalyzeRequest, ChatTurn


@dataclass(frozen=True)
class SpeechResult:
    """Outcome of a speech request.

    Attributes:
        audio: Raw audio bytes, or None when the backend produced none.
        mime_type: Audio mime type reported by the backend.
        supported: False when the backend has no speech capability at all.
    """
    audio: bytes | None = None
    mime_type: str | None = None
    supported: bool = True


UNSUPPORTED = SpeechResult(supported=False)


class Backend(ABC):
    """Uniform capability set for generation backends."""

    name: str = "backend"

    def __init__(self, model: str):
        self.model = model

    @property
    def identity(self) -> str:
        """``provider:model``; part of the cache key."""
        return f"{self.name}:{self.model}"

    @abstractmethod
    async def analyze(self, request: AnalyzeRequest) -> IncidentReport:
        ...

    @abstractmethod
    async def follow_up(
        self,
        report: IncidentReport,
        history: list[ChatTurn],
        question: str,
        enable_grounding: bool = False,
    ) -> str:
        ...

    async def speak(self, text: str) -> SpeechResult:
        return UNSUPPORTED

    def is_healthy(self) -> bool:
        return True
