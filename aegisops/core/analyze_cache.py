"""Analyze result cache and in-flight request coalescer.

AnalyzeCache is a TTL + capacity bounded LRU keyed by the request
fingerprint. InFlightCoalescer implements single-flight: concurrent
callers with the same key await one shared task instead of each calling
the backend. Both are cost controls only; disabling the cache
(ttl or capacity 0) never changes results.
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog
from cachetools import TTLCache

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_TTL_SEC = 86_400
MAX_ENTRIES = 5_000


class AnalyzeCache(Generic[T]):
    """Thread-safe LRU cache with TTL for analyze reports.

    Reads refresh recency, so eviction drops the least recently *used*
    entry rather than the oldest insert.

    Args:
        ttl_sec: Entry lifetime, clamped to 0..MAX_TTL_SEC.
        max_entries: Capacity, clamped to 0..MAX_ENTRIES.
        clock: Monotonic seconds source, injectable for tests.
    """

    def __init__(self, ttl_sec: int, max_entries: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = max(0, min(MAX_TTL_SEC, int(ttl_sec or 0)))
        self.max_entries = max(0, min(MAX_ENTRIES, int(max_entries or 0)))
        self._cache: TTLCache = TTLCache(maxsize=max(1, self.max_entries), ttl=self.ttl_sec, timer=clock)
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_sec > 0 and self.max_entries > 0

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def get(self, key: str) -> T | None:
        """Return the live value for key, or None."""
        if not self.enabled:
            return None
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        """Insert or refresh key, evicting the LRU entry when full."""
        if not self.enabled:
            return
        with self._lock:
            self._cache.expire()
            full = key not in self._cache and len(self._cache) >= self.max_entries
            self._cache[key] = value
        if full:
            logger.debug("cache.evicted", max_entries=self.max_entries)

    def evict(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            before = len(self._cache)
            self._cache.expire()
            return before - len(self._cache)


@dataclass
class CoalescerStats:
    started: int = 0  # upstream computations launched
    coalesced: int = 0  # callers that joined an existing computation


class InFlightCoalescer(Generic[T]):
    """Single-flight de-duplication on top of asyncio tasks.

    The computation runs as its own task, so a caller that goes away does
    not cancel the work the other waiters are riding on. The map entry is
    removed inside the task as it settles, before any waiter resumes.
    Must be used from a single event loop.
    """

    def __init__(self):
        self._in_flight: dict[str, asyncio.Task[T]] = {}
        self.stats = CoalescerStats()

    def __len__(self) -> int:
        return len(self._in_flight)

    def __contains__(self, key: str) -> bool:
        return key in self._in_flight

    async def run(self, key: str, compute: Callable[[], Awaitable[T]]) -> T:
        """Await the in-flight computation for key, starting one if needed.

        Raises:
            Whatever ``compute`` raised; every waiter sees the same exception.
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run_and_release(key, compute))
            task.add_done_callback(_consume_exception)
            self._in_flight[key] = task
            self.stats.started += 1
        else:
            self.stats.coalesced += 1
            logger.info("coalescer.joined", key=key[:12])
        return await asyncio.shield(task)

    async def _run_and_release(self, key: str, compute: Callable[[], Awaitable[T]]) -> T:
        try:
            return await compute()
        finally:
            self._in_flight.pop(key, None)


def _consume_exception(task: asyncio.Task) -> None:
    # Mark the exception retrieved when every waiter has gone away.
    if not task.cancelled():
        task.exception()
