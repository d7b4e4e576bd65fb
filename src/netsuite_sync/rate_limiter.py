"""
Priority-aware concurrency limiter for NetSuite requests.

NetSuite shares one pool of concurrent requests (15 by default) across
ALL integrations on an account (SOAP + REST + RESTlet). We default to a
conservative limit and shrink adaptively on rate limiting, then recover
one slot at a time.
"""

import heapq
import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar

T = TypeVar("T")


@dataclass
class LimiterStats:
    """Statistics for monitoring limiter behavior."""
    admitted: int = 0
    queued_total: int = 0
    reductions: int = 0
    restorations: int = 0


@dataclass
class _Waiter:
    event: threading.Event


class ConcurrencyLimiter:
    """
    Thread-safe counting semaphore with priority admission.

    - Admits immediately while fewer than `max_concurrent` calls run
    - Otherwise queues the caller; higher priority is admitted first,
      ties in arrival order
    - Admission and release happen in one critical section

    Example:
        limiter = ConcurrencyLimiter(max_concurrent=15)
        result = limiter.execute(lambda: client.get(url), priority=10)
    """

    def __init__(self, max_concurrent: int = 15):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._max_concurrent = max_concurrent
        self._running = 0
        self._queue: list[tuple[int, int, _Waiter]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

        self.stats = LimiterStats()

    def execute(self, fn: Callable[[], T], priority: int = 0) -> T:
        """Run fn once a slot is free, releasing the slot afterwards."""
        self._acquire(priority)
        try:
            return fn()
        finally:
            self._release()

    def _acquire(self, priority: int) -> None:
        with self._lock:
            if self._running < self._max_concurrent and not self._queue:
                self._running += 1
                self.stats.admitted += 1
                return

            waiter = _Waiter(threading.Event())
            # heapq is a min-heap: negate priority, seq keeps FIFO within a priority
            heapq.heappush(self._queue, (-priority, next(self._seq), waiter))
            self.stats.queued_total += 1

        # Wait outside the lock; the releaser hands the slot over
        waiter.event.wait()

    def _release(self) -> None:
        with self._lock:
            self._running -= 1
            self._admit_waiters()

    def _admit_waiters(self) -> None:
        """Hand free slots to queued waiters. Must hold lock."""
        while self._queue and self._running < self._max_concurrent:
            _, _, waiter = heapq.heappop(self._queue)
            self._running += 1
            self.stats.admitted += 1
            waiter.event.set()

    def reduce_concurrency(self) -> None:
        """Shrink the limit by 30% (floor 1) after a rate-limit signal."""
        with self._lock:
            if self._max_concurrent > 1:
                self._max_concurrent = max(1, int(self._max_concurrent * 0.7))
                self.stats.reductions += 1

    def restore_concurrency(self, original: int) -> None:
        """Grow the limit by one slot, up to `original`."""
        with self._lock:
            if self._max_concurrent < original:
                self._max_concurrent = min(original, self._max_concurrent + 1)
                self.stats.restorations += 1
                self._admit_waiters()

    @property
    def current_concurrency(self) -> int:
        with self._lock:
            return self._running

    @property
    def max_allowed(self) -> int:
        with self._lock:
            return self._max_concurrent

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def get_stats(self) -> dict:
        """Get limiter statistics for monitoring."""
        with self._lock:
            return {
                "running": self._running,
                "max_allowed": self._max_concurrent,
                "queued": len(self._queue),
                "admitted": self.stats.admitted,
                "queued_total": self.stats.queued_total,
                "reductions": self.stats.reductions,
                "restorations": self.stats.restorations,
            }


class RequestPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


PRIORITY_VALUES: dict[RequestPriority, int] = {
    RequestPriority.CRITICAL: 30,
    RequestPriority.HIGH: 20,
    RequestPriority.NORMAL: 10,
    RequestPriority.LOW: 0,
}


class RequestQueue:
    """
    Named priorities over a ConcurrencyLimiter.

    Lets background sync work yield to user-triggered requests.
    """

    def __init__(self, limiter: ConcurrencyLimiter):
        self.limiter = limiter

    def enqueue(
        self,
        fn: Callable[[], T],
        priority: RequestPriority | str = RequestPriority.NORMAL,
    ) -> T:
        return self.limiter.execute(fn, PRIORITY_VALUES[RequestPriority(priority)])

    def stats(self) -> dict[str, int]:
        return {
            "running": self.limiter.current_concurrency,
            "max_allowed": self.limiter.max_allowed,
            "queued": self.limiter.queue_length,
        }
