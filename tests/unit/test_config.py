"""Tests for environment-driven settings."""

import pytest

from aegisops.core.config import load_settings

ENV_VARS = [
    "LLM_PROVIDER", "GEMINI_API_KEY", "GEMINI_MODEL_ANALYZE", "GEMINI_MODEL_TTS",
    "OLLAMA_BASE_URL", "OLLAMA_MODEL", "MAX_IMAGES", "MAX_IMAGE_BYTES", "MAX_LOG_CHARS",
    "GROUNDING_DEFAULT", "ANALYZE_CACHE_TTL_SEC", "ANALYZE_CACHE_MAX_ENTRIES",
    "CACHE_SWEEP_INTERVAL_SEC", "RATE_LIMIT_WINDOW_SEC", "RATE_LIMIT_ANALYZE",
    "RATE_LIMIT_FOLLOWUP", "RATE_LIMIT_TTS", "LLM_TIMEOUT_MS", "LLM_RETRY_MAX_ATTEMPTS",
    "LLM_RETRY_BASE_DELAY_MS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings()
    assert settings.provider == "demo"
    assert settings.max_images == 8
    assert settings.max_image_bytes == 5 * 1024 * 1024
    assert settings.max_log_chars == 50_000
    assert settings.cache_ttl_sec == 300
    assert settings.cache_max_entries == 200
    assert settings.timeout_ms == 45_000
    assert settings.retry_max_attempts == 2
    assert settings.retry_base_delay_ms == 400
    assert settings.rate_limits == {"analyze": 40, "followup": 120, "tts": 60}
    assert settings.grounding_default is False


def test_provider_defaults_to_gemini_when_key_present(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    assert load_settings().provider == "gemini"


def test_explicit_provider_wins(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    monkeypatch.setenv("LLM_PROVIDER", "Ollama")
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://ollama:11434/")
    settings = load_settings()
    assert settings.provider == "ollama"
    assert settings.ollama_base_url == "http://ollama:11434"


def test_unknown_provider_falls_back(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    assert load_settings().provider == "demo"


@pytest.mark.parametrize("name,raw,attr,expected", [
    ("LLM_TIMEOUT_MS", "100", "timeout_ms", 5_000),
    ("LLM_TIMEOUT_MS", "999999", "timeout_ms", 180_000),
    ("LLM_RETRY_MAX_ATTEMPTS", "0", "retry_max_attempts", 1),
    ("LLM_RETRY_MAX_ATTEMPTS", "50", "retry_max_attempts", 6),
    ("LLM_RETRY_BASE_DELAY_MS", "1", "retry_base_delay_ms", 50),
    ("ANALYZE_CACHE_TTL_SEC", "-5", "cache_ttl_sec", 0),
    ("ANALYZE_CACHE_MAX_ENTRIES", "100000", "cache_max_entries", 5_000),
])
def test_numeric_values_are_clamped(monkeypatch, name, raw, attr, expected):
    monkeypatch.setenv(name, raw)
    assert getattr(load_settings(), attr) == expected


def test_unparseable_values_use_defaults(monkeypatch):
    monkeypatch.setenv("MAX_IMAGES", "lots")
    monkeypatch.setenv("GROUNDING_DEFAULT", "maybe")
    settings = load_settings()
    assert settings.max_images == 8
    assert settings.grounding_default is False


@pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("off", False), ("FALSE", False)])
def test_boolean_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("GROUNDING_DEFAULT", raw)
    assert load_settings().grounding_default is expected
