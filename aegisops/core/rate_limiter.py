"""Fixed-window per-client rate limiting.

Buckets are keyed by ``operation:client``. Elapsed buckets are garbage
collected opportunistically on allow() and by the periodic sweep.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

OPERATION_CLASSES = ("analyze", "followup", "tts")


@dataclass
class RateBucket:
    count: int
    reset_at: float


class RateLimiter:
    """Thread-safe fixed-window counters.

    Args:
        clock: Monotonic seconds source, injectable for tests.
        gc_interval_sec: Minimum gap between opportunistic GC passes.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, gc_interval_sec: float = 60.0):
        self._clock = clock
        self._gc_interval = gc_interval_sec
        self._buckets: dict[str, RateBucket] = {}
        self._lock = threading.Lock()
        self._last_gc = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def allow(self, client_key: str, limit: int, window_ms: int) -> bool:
        """Count one request for client_key; False once the window is full.

        A limit of 0 or less disables throttling for that key.
        """
        if limit <= 0:
            return True
        with self._lock:
            now = self._clock()
            if now - self._last_gc >= self._gc_interval:
                self._collect_locked(now)

            bucket = self._buckets.get(client_key)
            if bucket is None or bucket.reset_at <= now:
                self._buckets[client_key] = RateBucket(count=1, reset_at=now + window_ms / 1000)
                return True
            if bucket.count >= limit:
                return False
            bucket.count += 1
            return True

    def check(self, operation: str, client: str, limit: int, window_ms: int) -> bool:
        """allow() keyed by operation class + client identity."""
        allowed = self.allow(f"{operation}:{client}", limit, window_ms)
        if not allowed:
            logger.warning("rate_limit.exceeded", operation=operation, client=client)
        return allowed

    def collect_garbage(self) -> int:
        """Drop buckets whose window has elapsed. Returns how many."""
        with self._lock:
            return self._collect_locked(self._clock())

    def _collect_locked(self, now: float) -> int:
        self._last_gc = now
        stale = [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]
        for key in stale:
            del self._buckets[key]
        return len(stale)
