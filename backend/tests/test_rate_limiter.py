"""
Unit Tests for the sliding-window rate limiter

Run with: pytest tests/test_rate_limiter.py -v
"""

import asyncio

import pytest

from resilience.rate_limiter import SlidingWindowRateLimiter, run_periodic_sweep


class TestSlidingWindowRateLimiter:

    @pytest.fixture
    def limiter(self, clock):
        return SlidingWindowRateLimiter(max_requests=3, window_seconds=60.0, clock=clock)

    def test_allows_up_to_max_requests(self, limiter):
        assert all(limiter.check("10.0.0.1").allowed for _ in range(3))

    def test_fourth_request_rejected_with_retry_after(self, limiter, clock):
        for _ in range(3):
            limiter.check("10.0.0.1")
            clock.advance(5)

        decision = limiter.check("10.0.0.1")

        assert decision.allowed is False
        # oldest request was 15s ago
        assert decision.retry_after == 45

    def test_rejection_is_not_recorded(self, limiter, clock):
        for _ in range(3):
            limiter.check("k")
        for _ in range(10):
            assert not limiter.check("k").allowed

        clock.advance(60)
        assert limiter.check("k").allowed

    def test_allowed_again_after_window(self, limiter, clock):
        for _ in range(3):
            limiter.check("10.0.0.1")

        clock.advance(60)

        assert limiter.check("10.0.0.1").allowed

    def test_retry_after_is_at_least_one_second(self, limiter, clock):
        for _ in range(3):
            limiter.check("k")
        clock.advance(59.9)

        assert limiter.check("k").retry_after == 1

    def test_keys_are_independent(self, limiter):
        for _ in range(3):
            limiter.check("a")

        assert not limiter.check("a").allowed
        assert limiter.check("b").allowed

    def test_sweep_drops_idle_keys(self, limiter, clock):
        limiter.check("idle")
        clock.advance(30)
        limiter.check("active")
        clock.advance(31)

        removed = limiter.sweep()

        assert removed == 1
        assert limiter.tracked_keys() == ["active"]

    def test_swept_key_starts_fresh(self, limiter, clock):
        for _ in range(3):
            limiter.check("k")
        clock.advance(61)
        limiter.sweep()

        assert all(limiter.check("k").allowed for _ in range(3))

    def test_rejects_invalid_limit(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(max_requests=0, window_seconds=60.0)


class TestPeriodicSweep:

    @pytest.mark.asyncio
    async def test_sweeps_until_cancelled(self, clock):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=1.0, clock=clock)
        limiter.check("k")
        clock.advance(2)

        task = asyncio.create_task(run_periodic_sweep([limiter], interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert limiter.tracked_keys() == []
