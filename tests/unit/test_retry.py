"""Tests for the retry/timeout engine and error classification."""

import asyncio

import httpx
import pytest

from aegisops.core.errors import (
    MalformedModelOutput,
    MissingField,
    UpstreamFatal,
    UpstreamTimeout,
    UpstreamTransient,
)
from aegisops.core.retry import (
    MAX_DELAY_MS,
    RetryPolicy,
    backoff_delay_ms,
    classify,
    is_retriable,
    with_retry,
)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://llm.test/api/chat")
    response = httpx.Response(status_code=status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestIsRetriable:

    @pytest.mark.parametrize("error", [
        UpstreamTransient("rate limited"),
        UpstreamTimeout("timed out"),
        asyncio.TimeoutError(),
        httpx.ReadTimeout("read timeout"),
        httpx.ConnectError("connection refused"),
        ConnectionResetError("reset"),
        _status_error(429),
        _status_error(503),
        RuntimeError("429 Too Many Requests"),
        RuntimeError("RESOURCE EXHAUSTED: quota"),
        RuntimeError("The service is temporarily unavailable"),
        RuntimeError("deadline exceeded"),
    ])
    def test_retriable(self, error):
        assert is_retriable(error)

    @pytest.mark.parametrize("error", [
        UpstreamFatal("bad key"),
        MissingField("Missing question."),
        MalformedModelOutput("no json"),
        _status_error(400),
        _status_error(401),
        RuntimeError("API key not valid. Please pass a valid API key."),
        RuntimeError("Response blocked by safety filters (503 in text)"),
        ValueError("something odd"),
    ])
    def test_fatal(self, error):
        assert not is_retriable(error)

    def test_status_code_attribute_is_used(self):
        class SdkError(Exception):
            def __init__(self, code):
                super().__init__("sdk failure")
                self.code = code

        assert is_retriable(SdkError(500))
        assert not is_retriable(SdkError(403))


class TestClassify:

    def test_keeps_message_verbatim(self):
        error = classify(RuntimeError("503 upstream overloaded"))
        assert isinstance(error, UpstreamTransient)
        assert error.message == "503 upstream overloaded"

    def test_fatal_translation(self):
        error = classify(_status_error(400))
        assert isinstance(error, UpstreamFatal)
        assert "400" in error.message

    def test_gateway_errors_pass_through(self):
        original = MissingField("x")
        assert classify(original) is original


class TestBackoffDelay:

    def test_exponential_without_jitter(self):
        mid = lambda: 0.5  # jitter factor 1.0
        assert backoff_delay_ms(2, 100, mid) == pytest.approx(200)
        assert backoff_delay_ms(3, 100, mid) == pytest.approx(400)

    def test_jitter_band(self):
        assert backoff_delay_ms(2, 100, lambda: 0.0) == pytest.approx(140)
        assert backoff_delay_ms(2, 100, lambda: 0.999999) == pytest.approx(260, rel=1e-3)

    def test_clamped(self):
        assert backoff_delay_ms(6, 5_000, lambda: 0.999) == MAX_DELAY_MS
        assert backoff_delay_ms(2, 1, lambda: 0.0) == 50


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        sleep = RecordingSleep()

        async def op():
            return "ok"

        assert await with_retry(op, RetryPolicy(max_attempts=3), sleep=sleep) == "ok"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_always_retriable_uses_every_attempt(self):
        sleep = RecordingSleep()
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise UpstreamTransient(f"503 attempt {attempts}")

        policy = RetryPolicy(timeout_ms=1_000, max_attempts=4, base_delay_ms=100)
        with pytest.raises(UpstreamTransient) as exc:
            await with_retry(op, policy, sleep=sleep, rng=lambda: 0.5)

        assert attempts == 4
        assert exc.value.message == "503 attempt 4"
        assert len(sleep.delays) == 3
        assert sleep.delays == sorted(sleep.delays)
        assert sleep.delays[0] < sleep.delays[1] < sleep.delays[2]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        sleep = RecordingSleep()
        outcomes = [httpx.ConnectError("boom"), "report"]

        async def op():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        result = await with_retry(op, RetryPolicy(max_attempts=2), sleep=sleep)
        assert result == "report"
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        sleep = RecordingSleep()
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise _status_error(401)

        with pytest.raises(UpstreamFatal) as exc:
            await with_retry(op, RetryPolicy(max_attempts=5), sleep=sleep)

        assert attempts == 1
        assert sleep.delays == []
        assert isinstance(exc.value.__cause__, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_malformed_output_is_not_retried(self):
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise MalformedModelOutput("no json", excerpt="...")

        with pytest.raises(MalformedModelOutput):
            await with_retry(op, RetryPolicy(max_attempts=3), sleep=RecordingSleep())
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_timeout_is_classified_and_retried(self):
        sleep = RecordingSleep()
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            await asyncio.sleep(5)

        policy = RetryPolicy(timeout_ms=20, max_attempts=2, base_delay_ms=50)
        with pytest.raises(UpstreamTimeout, match="timed out after"):
            await with_retry(op, policy, label="Test request", sleep=sleep)

        assert attempts == 2
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_attempts_clamped_to_at_least_one(self):
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            raise UpstreamTransient("503")

        with pytest.raises(UpstreamTransient):
            await with_retry(op, RetryPolicy(max_attempts=0), sleep=RecordingSleep())
        assert attempts == 1
