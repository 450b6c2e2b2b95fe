"""Environment-driven settings for the gateway.

Values are read once at startup. Unparseable numbers and booleans fall
back to their defaults instead of failing the boot.
"""

import os
from dataclasses import dataclass

from aegisops.core.rate_limiter import OPERATION_CLASSES

PROVIDERS = ("demo", "gemini", "ollama")

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def _read_int(name: str, fallback: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _read_bool(name: str, fallback: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return fallback


def _read_str(name: str, fallback: str) -> str:
    return os.environ.get(name, "").strip() or fallback


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration.

    Attributes:
        provider: Active backend, one of PROVIDERS.
        gemini_api_key: Hosted backend credential, empty when unset.
        rate_limits: Per-window ceilings keyed by operation class.
    """
    provider: str = "demo"
    gemini_api_key: str = ""
    gemini_model_analyze: str = "gemini-3-pro-preview"
    gemini_model_tts: str = "gemini-2.5-flash-preview-tts"
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_model: str = "llama3.1"

    max_images: int = 8
    max_image_bytes: int = 5 * 1024 * 1024
    max_log_chars: int = 50_000
    grounding_default: bool = False

    cache_ttl_sec: int = 300
    cache_max_entries: int = 200
    sweep_interval_sec: int = 60

    rate_window_sec: int = 60
    rate_limit_analyze: int = 40
    rate_limit_followup: int = 120
    rate_limit_tts: int = 60

    timeout_ms: int = 45_000
    retry_max_attempts: int = 2
    retry_base_delay_ms: int = 400

    @property
    def rate_limits(self) -> dict[str, int]:
        limits = (self.rate_limit_analyze, self.rate_limit_followup, self.rate_limit_tts)
        return dict(zip(OPERATION_CLASSES, limits))


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    gemini_api_key = os.environ.get("GEMINI_API_KEY", "").strip()

    provider = os.environ.get("LLM_PROVIDER", "").strip().lower()
    if provider not in PROVIDERS:
        provider = "gemini" if gemini_api_key else "demo"

    return Settings(
        provider=provider,
        gemini_api_key=gemini_api_key,
        gemini_model_analyze=_read_str("GEMINI_MODEL_ANALYZE", "gemini-3-pro-preview"),
        gemini_model_tts=_read_str("GEMINI_MODEL_TTS", "gemini-2.5-flash-preview-tts"),
        ollama_base_url=_read_str("OLLAMA_BASE_URL", "http://127.0.0.1:11434").rstrip("/"),
        ollama_model=_read_str("OLLAMA_MODEL", "llama3.1"),
        max_images=max(0, _read_int("MAX_IMAGES", 8)),
        max_image_bytes=max(1, _read_int("MAX_IMAGE_BYTES", 5 * 1024 * 1024)),
        max_log_chars=max(1, _read_int("MAX_LOG_CHARS", 50_000)),
        grounding_default=_read_bool("GROUNDING_DEFAULT", False),
        cache_ttl_sec=_clamp(_read_int("ANALYZE_CACHE_TTL_SEC", 300), 0, 86_400),
        cache_max_entries=_clamp(_read_int("ANALYZE_CACHE_MAX_ENTRIES", 200), 0, 5_000),
        sweep_interval_sec=max(1, _read_int("CACHE_SWEEP_INTERVAL_SEC", 60)),
        rate_window_sec=max(1, _read_int("RATE_LIMIT_WINDOW_SEC", 60)),
        rate_limit_analyze=_read_int("RATE_LIMIT_ANALYZE", 40),
        rate_limit_followup=_read_int("RATE_LIMIT_FOLLOWUP", 120),
        rate_limit_tts=_read_int("RATE_LIMIT_TTS", 60),
        timeout_ms=_clamp(_read_int("LLM_TIMEOUT_MS", 45_000), 5_000, 180_000),
        retry_max_attempts=_clamp(_read_int("LLM_RETRY_MAX_ATTEMPTS", 2), 1, 6),
        retry_base_delay_ms=_clamp(_read_int("LLM_RETRY_BASE_DELAY_MS", 400), 50, 5_000),
    )
