"""Tests for the run-wide embedding rate limiter."""

from __future__ import annotations

import pytest

from idx.embedding import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_unlimited_rate_never_sleeps():
    clock = FakeClock()
    limiter = RateLimiter(max_concurrent=1, requests_per_minute=0, clock=clock, sleep=clock.sleep)
    for _ in range(100):
        with limiter:
            pass
    assert clock.sleeps == []


def test_bucket_waits_for_refill():
    clock = FakeClock()
    limiter = RateLimiter(max_concurrent=2, requests_per_minute=2, clock=clock, sleep=clock.sleep)
    with limiter:
        pass
    with limiter:
        pass
    assert clock.sleeps == []
    with limiter:
        pass
    assert clock.sleeps == [pytest.approx(30.0)]


def test_bucket_refills_over_time():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=60, clock=clock, sleep=clock.sleep)
    for _ in range(60):
        limiter.acquire()
        limiter.release()
    clock.now += 5.0
    for _ in range(5):
        limiter.acquire()
        limiter.release()
    assert clock.sleeps == []


def test_concurrency_cap():
    limiter = RateLimiter(max_concurrent=2)
    limiter.acquire()
    limiter.acquire()
    assert not limiter._semaphore.acquire(blocking=False)
    limiter.release()
    assert limiter._semaphore.acquire(blocking=False)


@pytest.mark.parametrize("kwargs", [{"max_concurrent": 0}, {"requests_per_minute": -1}])
def test_invalid_arguments(kwargs):
    with pytest.raises(ValueError):
        RateLimiter(**kwargs)
