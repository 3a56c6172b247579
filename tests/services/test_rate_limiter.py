"""Tests for the sliding-window rate limiter."""

import pytest

from switchlink.services.errors import ErrorKind, RateLimitError
from switchlink.services.rate_limiter import RateLimiter, RateLimiterConfig


def make_limiter(clock, **overrides) -> RateLimiter:
    return RateLimiter(RateLimiterConfig(**overrides), clock=clock, sleep=clock.sleep)


class TestRateLimiterWindow:
    """Test admission inside a window."""

    def test_admits_up_to_max_requests(self, clock):
        """Test n requests are admitted and the n+1th is refused."""
        limiter = make_limiter(clock, max_requests=3, window=1.0)

        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert limiter.try_acquire() is False
        assert limiter.current_count == 3

    def test_capacity_returns_after_window(self, clock):
        """Test the oldest slot frees exactly one window after it was taken."""
        limiter = make_limiter(clock, max_requests=2, window=1.0)

        assert limiter.try_acquire()
        clock.advance(0.5)
        assert limiter.try_acquire()
        assert limiter.try_acquire() is False

        clock.advance(0.5)
        assert limiter.try_acquire()
        assert limiter.try_acquire() is False

    def test_can_acquire_does_not_record(self, clock):
        """Test can_acquire is a pure check."""
        limiter = make_limiter(clock, max_requests=1, window=1.0)

        assert limiter.can_acquire()
        assert limiter.can_acquire()
        assert limiter.current_count == 0

    def test_remaining_and_reset_time(self, clock):
        """Test the projections derived from the request log."""
        limiter = make_limiter(clock, max_requests=5, window=10.0)
        assert limiter.remaining == 5
        assert limiter.reset_time == 0.0

        limiter.try_acquire()
        clock.advance(4)
        limiter.try_acquire()

        assert limiter.remaining == 3
        assert limiter.reset_time == pytest.approx(6.0)

    def test_reset_clears_log(self, clock):
        """Test reset makes the full window available again."""
        limiter = make_limiter(clock, max_requests=1, window=60.0)
        limiter.try_acquire()

        limiter.reset()
        assert limiter.try_acquire()

    def test_status(self, clock):
        """Test get_status fields."""
        limiter = make_limiter(clock, max_requests=4, window=2.0)
        limiter.try_acquire()

        status = limiter.get_status()
        assert status["current_count"] == 1
        assert status["max_requests"] == 4
        assert status["remaining"] == 3
        assert status["reset_time"] == pytest.approx(2.0)
        assert status["window"] == 2.0


class TestRateLimiterAcquire:
    """Test acquire() and acquire_async()."""

    def test_acquire_raises_with_retry_after(self, clock):
        """Test acquire fails fast with the time until a slot frees."""
        limiter = make_limiter(clock, max_requests=1, window=10.0)
        limiter.acquire()
        clock.advance(3)

        with pytest.raises(RateLimitError) as exc_info:
            limiter.acquire()

        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after == pytest.approx(7.0)

    @pytest.mark.asyncio
    async def test_acquire_async_waits_for_capacity(self, clock):
        """Test acquire_async sleeps until the window frees a slot."""
        limiter = make_limiter(clock, max_requests=1, window=1.0)
        limiter.acquire()

        await limiter.acquire_async()

        assert clock.sleeps == [1.0]
        assert limiter.current_count == 1

    @pytest.mark.asyncio
    async def test_acquire_async_sleeps_in_bounded_steps(self, clock):
        """Test each wait is capped at one second."""
        limiter = make_limiter(clock, max_requests=1, window=3.0, max_wait=10.0)
        limiter.acquire()

        await limiter.acquire_async()

        assert clock.sleeps == [1.0, 1.0, 1.0]

    @pytest.mark.asyncio
    async def test_acquire_async_gives_up_after_max_wait(self, clock):
        """Test acquire_async raises once max_wait has elapsed."""
        limiter = make_limiter(clock, max_requests=1, window=10.0, max_wait=2.0)
        limiter.acquire()

        with pytest.raises(RateLimitError):
            await limiter.acquire_async()

        assert clock.sleeps == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_execute_fails_fast_by_default(self, clock):
        """Test execute raises instead of waiting when wait_on_limit is off."""
        limiter = make_limiter(clock, max_requests=1, window=5.0)
        calls = []

        async def operation():
            calls.append(1)
            return "done"

        assert await limiter.execute(operation) == "done"
        with pytest.raises(RateLimitError):
            await limiter.execute(operation)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_execute_waits_when_configured(self, clock):
        """Test execute waits for capacity when wait_on_limit is on."""
        limiter = make_limiter(clock, max_requests=1, window=1.0, wait_on_limit=True)

        async def operation():
            return "done"

        await limiter.execute(operation)
        assert await limiter.execute(operation) == "done"
        assert clock.sleeps == [1.0]


class TestScenarios:
    """Concrete scenarios."""

    def test_fourth_write_in_window_is_refused(self, clock):
        """Test three writes per second pass and the fourth is refused."""
        limiter = make_limiter(clock, max_requests=3, window=1.0)

        for _ in range(3):
            limiter.acquire()
            clock.advance(0.1)

        with pytest.raises(RateLimitError) as exc_info:
            limiter.acquire()
        assert exc_info.value.retry_after == pytest.approx(0.7)
