"""Run-wide embedding rate limiter: concurrency cap + requests-per-minute bucket."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from types import TracebackType


class RateLimiter:
    """Bounds in-flight embedding requests and their rate across all workers.

    A semaphore caps concurrency; a token bucket holding up to
    ``requests_per_minute`` tokens, refilled continuously, caps the rate.
    One instance is created per run and shared by every worker.

    Usage::

        with limiter:
            litellm.embedding(...)

    Args:
        max_concurrent: Maximum simultaneous requests (>= 1).
        requests_per_minute: Bucket size and refill rate; 0 disables the rate cap.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        requests_per_minute: int = 0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if requests_per_minute < 0:
            raise ValueError("requests_per_minute must be >= 0")
        self.max_concurrent = max_concurrent
        self.requests_per_minute = requests_per_minute
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(requests_per_minute)
        self._updated = clock()

    def acquire(self) -> None:
        """Block until a request slot and a rate token are both available."""
        self._semaphore.acquire()
        try:
            self._take_token()
        except BaseException:
            self._semaphore.release()
            raise

    def release(self) -> None:
        self._semaphore.release()

    def __enter__(self) -> RateLimiter:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def _take_token(self) -> None:
        if self.requests_per_minute == 0:
            return
        rate = self.requests_per_minute / 60.0
        while True:
            with self._lock:
                now = self._clock()
                self._tokens = min(
                    float(self.requests_per_minute),
                    self._tokens + (now - self._updated) * rate,
                )
                self._updated = now
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait = (1.0 - self._tokens) / rate
            self._sleep(wait)
