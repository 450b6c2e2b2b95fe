"""Timeout + capped exponential backoff around backend calls.

Every backend call goes through with_retry() so the policy is the same
whichever provider is active. Failures are classified as retriable
(rate limits, 5xx, network, timeouts) or fatal (validation, credentials,
safety blocks). Third-party errors come out translated into
UpstreamTransient / UpstreamFatal with their original message.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
import structlog

from aegisops.core.errors import (
    GatewayError,
    UpstreamFatal,
    UpstreamTimeout,
    UpstreamTransient,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 6
MAX_TIMEOUT_MS = 180_000
MIN_DELAY_MS = 50
MAX_DELAY_MS = 10_000
JITTER_LOW = 0.7
JITTER_HIGH = 1.3

RETRIABLE_PATTERNS = (
    " 429", "429 ", "(429)",
    "rate limit", "too many requests", "resource exhausted",
    "internal error", "internal server error",
    "unavailable", "temporarily unavailable",
    "timeout", "timed out", "deadline exceeded",
    "network", "econnreset", "connection reset", "socket hang up",
    "502", "503", "504",
)

FATAL_PATTERNS = (
    "api key", "api_key", "permission denied", "unauthorized", "forbidden",
    "safety", "blocked", "invalid argument",
)


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int = 45_000
    max_attempts: int = 2
    base_delay_ms: int = 400


def _status_code(exc: BaseException) -> int | None:
    """Best-effort HTTP status from httpx, google-genai or ollama errors."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    return None


def is_retriable(exc: BaseException) -> bool:
    """Decide whether a failed attempt deserves another try."""
    if isinstance(exc, UpstreamTransient):
        return True
    if isinstance(exc, GatewayError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException, httpx.NetworkError, ConnectionError)):
        return True

    status = _status_code(exc)
    if status is not None:
        return status in (408, 429) or status >= 500

    message = str(exc).lower()
    if any(p in message for p in FATAL_PATTERNS):
        return False
    return any(p in message for p in RETRIABLE_PATTERNS)


def classify(exc: BaseException) -> GatewayError:
    """Wrap a raw exception in the taxonomy, keeping its message verbatim."""
    if isinstance(exc, GatewayError):
        return exc
    message = str(exc) or type(exc).__name__
    if is_retriable(exc):
        return UpstreamTransient(message)
    return UpstreamFatal(message)


def backoff_delay_ms(attempt: int, base_delay_ms: float, rng: Callable[[], float] = random.random) -> float:
    """Delay before attempt ``attempt`` (>= 2): base * 2^(attempt-1) * jitter, clamped."""
    jitter = JITTER_LOW + rng() * (JITTER_HIGH - JITTER_LOW)
    delay = base_delay_ms * (2 ** (attempt - 1)) * jitter
    return max(MIN_DELAY_MS, min(MAX_DELAY_MS, delay))


async def with_retry(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "Backend request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """Run ``op`` with a per-attempt timeout, retrying retriable failures.

    Args:
        op: Zero-arg coroutine factory; called once per attempt.
        policy: Timeout and attempt budget.
        label: Human name used in timeout messages and logs.
        sleep: Awaitable sleep, injectable for tests.
        rng: Uniform [0, 1) source for jitter.

    Returns:
        Whatever ``op`` returns.

    Raises:
        GatewayError: The last failure, classified. Fatal failures are raised
            on the first attempt; transient ones once attempts run out.
    """
    max_attempts = max(1, min(MAX_ATTEMPTS, int(policy.max_attempts or 1)))
    timeout_s = min(max(1, int(policy.timeout_ms or 1)), MAX_TIMEOUT_MS) / 1000

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay_ms = backoff_delay_ms(attempt, policy.base_delay_ms, rng)
            logger.warning("retry.backoff", label=label, attempt=attempt, delay_ms=round(delay_ms))
            await sleep(delay_ms / 1000)

        try:
            return await asyncio.wait_for(op(), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            error: GatewayError = UpstreamTimeout(f"{label} timed out after {timeout_s:g}s.")
            cause: BaseException = exc
        except Exception as exc:
            error = classify(exc)
            cause = exc

        retriable = isinstance(error, UpstreamTransient)
        logger.warning("retry.attempt_failed", label=label, attempt=attempt,
                       kind=error.kind, retriable=retriable, error=error.message[:200])
        if not retriable or attempt >= max_attempts:
            if error is cause:
                raise error
            raise error from cause

    raise AssertionError("unreachable")
