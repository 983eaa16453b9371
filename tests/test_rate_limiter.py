"""Tests for the sliding-window rate limiter."""

import asyncio
import time

from repo_graph.github.rate_limiter import RateLimiter

from conftest import FakeClock


class TestTryAcquire:
    def test_allows_under_limit(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        assert [limiter.try_acquire("token-a") for _ in range(5)] == [0.0] * 5

    def test_blocks_over_limit(self):
        clock = FakeClock(100.0)
        limiter = RateLimiter(max_requests=3, window_seconds=60, clock=clock)
        for _ in range(3):
            limiter.try_acquire("token-a")
        clock.advance(10)
        assert limiter.try_acquire("token-a") == 50.0

    def test_remaining(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        assert limiter.remaining("token-a") == 5
        limiter.try_acquire("token-a")
        limiter.try_acquire("token-a")
        assert limiter.remaining("token-a") == 3

    def test_window_expiry(self):
        clock = FakeClock(0.0)
        limiter = RateLimiter(max_requests=2, window_seconds=10, clock=clock)
        limiter.try_acquire("token-a")
        clock.advance(5)
        limiter.try_acquire("token-a")
        assert limiter.try_acquire("token-a") > 0
        clock.advance(5)
        assert limiter.try_acquire("token-a") == 0.0
        assert limiter.remaining("token-a") == 0

    def test_per_caller_isolation(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        assert limiter.try_acquire("token-a") == 0.0
        assert limiter.try_acquire("token-b") == 0.0
        assert limiter.try_acquire("token-a") > 0
        assert limiter.try_acquire("token-b") > 0


class TestAcquire:
    def test_acquire_under_limit_returns_immediately(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60)
        started = time.monotonic()
        asyncio.run(limiter.acquire("token-a"))
        assert time.monotonic() - started < 0.05
        assert limiter.remaining("token-a") == 2

    def test_acquire_waits_for_slot(self):
        limiter = RateLimiter(max_requests=1, window_seconds=0.1)
        limiter.try_acquire("token-a")
        started = time.monotonic()
        asyncio.run(limiter.acquire("token-a"))
        assert time.monotonic() - started >= 0.05
        assert limiter.remaining("token-a") == 0
