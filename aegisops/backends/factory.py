"""Backend factory.

Picks the concrete backend from settings once at startup.
"""

import structlog

from aegisops.backends.base import Backend
from aegisops.backends.demo import DemoBackend
from aegisops.backends.gemini import GeminiBackend
from aegisops.backends.ollama import OllamaBackend
from aegisops.core.config import Settings
from aegisops.core.errors import BackendMisconfigured

logger = structlog.get_logger(__name__)


def create_backend(settings: Settings) -> Backend:
    """Build the backend named by settings.provider.

    Raises:
        BackendMisconfigured: Unknown provider or missing credentials.
    """
    if settings.provider == "demo":
        backend: Backend = DemoBackend()
    elif settings.provider == "gemini":
        backend = GeminiBackend(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model_analyze,
            tts_model=settings.gemini_model_tts,
        )
    elif settings.provider == "ollama":
        backend = OllamaBackend(base_url=settings.ollama_base_url, model=settings.ollama_model)
    else:
        raise BackendMisconfigured(f"Unknown LLM provider: {settings.provider}")

    logger.info("backend.created", provider=settings.provider, identity=backend.identity)
    return backend
