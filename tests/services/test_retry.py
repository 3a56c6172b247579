"""Tests for retry policies and backoff."""

import asyncio

import pytest

from switchlink.services.errors import (
    AuthenticationError,
    CircuitOpenError,
    ConfigurationError,
    ErrorKind,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    UpstreamResponseError,
    ValidationError,
)
from switchlink.services.retry import (
    AGGRESSIVE_RETRY_POLICY,
    CONSERVATIVE_RETRY_POLICY,
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    calculate_backoff_delay,
    retryable,
    should_retry,
    with_retry,
    with_retry_and_timeout,
    with_retry_context,
)


@pytest.fixture
def no_jitter(monkeypatch):
    monkeypatch.setattr("switchlink.services.retry.random.uniform", lambda a, b: 0.0)


def failing_then(result, errors):
    """Operation that raises each error in turn, then returns result."""
    remaining = list(errors)
    calls = []

    async def operation():
        calls.append(1)
        if remaining:
            raise remaining.pop(0)
        return result

    operation.calls = calls
    return operation


class TestBackoff:
    """Test delay calculation."""

    def test_exponential_growth(self, no_jitter):
        assert calculate_backoff_delay(1, 1.0, 30.0, 2.0) == 1.0
        assert calculate_backoff_delay(2, 1.0, 30.0, 2.0) == 2.0
        assert calculate_backoff_delay(3, 1.0, 30.0, 2.0) == 4.0

    def test_capped_at_max_delay(self, no_jitter):
        assert calculate_backoff_delay(10, 1.0, 30.0, 2.0) == 30.0

    def test_jitter_bounds(self, monkeypatch):
        """Test jitter stays within a quarter of the exponential delay."""
        monkeypatch.setattr("switchlink.services.retry.random.uniform", lambda a, b: b)
        assert calculate_backoff_delay(2, 1.0, 30.0, 2.0) == 2.5

        monkeypatch.setattr("switchlink.services.retry.random.uniform", lambda a, b: a)
        assert calculate_backoff_delay(2, 1.0, 30.0, 2.0) == 1.5

    def test_jitter_never_exceeds_max(self, monkeypatch):
        monkeypatch.setattr("switchlink.services.retry.random.uniform", lambda a, b: b)
        assert calculate_backoff_delay(5, 1.0, 16.0, 2.0) == 16.0


class TestShouldRetry:
    """Test error classification under policies."""

    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("reset"),
            RequestTimeoutError(5.0),
            RateLimitError(),
            AuthenticationError(),
            CircuitOpenError(10.0),
            UpstreamResponseError(503, "Service Unavailable"),
            ConnectionResetError(),
        ],
    )
    def test_transient_errors_retry(self, error):
        assert should_retry(error, DEFAULT_RETRY_POLICY)

    @pytest.mark.parametrize(
        "error",
        [
            UpstreamResponseError(404, "Not Found"),
            UpstreamResponseError(400, "Bad Request"),
            ValueError("bug"),
        ],
    )
    def test_permanent_errors_do_not_retry(self, error):
        assert not should_retry(error, DEFAULT_RETRY_POLICY)

    def test_validation_and_config_never_retry(self):
        """Test no policy can make validation or config errors retryable."""
        policy = RetryPolicy(retryable_kinds=frozenset({ErrorKind.VALIDATION_ERROR}))
        assert not should_retry(ValidationError("deviceId", "bad"), policy)
        assert not should_retry(ConfigurationError("bad"), AGGRESSIVE_RETRY_POLICY)

    def test_aggressive_policy_retries_api_errors(self):
        error = UpstreamResponseError(404, "Not Found")
        assert should_retry(error, AGGRESSIVE_RETRY_POLICY)
        assert not should_retry(error, CONSERVATIVE_RETRY_POLICY)


class TestWithRetry:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, clock, no_jitter):
        operation = failing_then("ok", [NetworkError("a"), NetworkError("b")])

        result = await with_retry(operation, DEFAULT_RETRY_POLICY, sleep=clock.sleep)

        assert result == "ok"
        assert len(operation.calls) == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self, clock, no_jitter):
        last = NetworkError("third")
        operation = failing_then("ok", [NetworkError("first"), NetworkError("second"), last])

        with pytest.raises(NetworkError) as exc_info:
            await with_retry(operation, DEFAULT_RETRY_POLICY, sleep=clock.sleep)

        assert exc_info.value is last
        assert len(operation.calls) == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self, clock):
        operation = failing_then("ok", [UpstreamResponseError(400, "Bad Request")])

        with pytest.raises(UpstreamResponseError):
            await with_retry(operation, DEFAULT_RETRY_POLICY, sleep=clock.sleep)

        assert len(operation.calls) == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after_overrides_backoff(self, clock, no_jitter):
        operation = failing_then("ok", [RateLimitError(retry_after=7.5)])

        assert await with_retry(operation, DEFAULT_RETRY_POLICY, sleep=clock.sleep) == "ok"
        assert clock.sleeps == [7.5]

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, clock, no_jitter):
        seen = []
        policy = DEFAULT_RETRY_POLICY.with_overrides(
            on_retry=lambda attempt, error: seen.append((attempt, str(error)))
        )
        operation = failing_then("ok", [NetworkError("a"), NetworkError("b")])

        await with_retry(operation, policy, sleep=clock.sleep)

        assert seen == [(1, "a"), (2, "b")]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_retry(self, clock, no_jitter):
        def broken(attempt, error):
            raise RuntimeError("callback bug")

        policy = DEFAULT_RETRY_POLICY.with_overrides(on_retry=broken)
        operation = failing_then("ok", [NetworkError("a")])

        assert await with_retry(operation, policy, sleep=clock.sleep) == "ok"

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, clock):
        policy = RetryPolicy(max_attempts=1)
        operation = failing_then("ok", [NetworkError("a")])

        with pytest.raises(NetworkError):
            await with_retry(operation, policy, sleep=clock.sleep)
        assert clock.sleeps == []


class TestRetryHelpers:
    """Test the decorator and wrapped forms."""

    @pytest.mark.asyncio
    async def test_retryable_decorator(self, no_jitter):
        attempts = []

        @retryable(RetryPolicy(max_attempts=2, base_delay=0.01))
        async def refresh(device_id):
            attempts.append(device_id)
            if len(attempts) == 1:
                raise NetworkError("flaky")
            return device_id

        assert await refresh("42") == "42"
        assert attempts == ["42", "42"]
        assert refresh.__name__ == "refresh"

    @pytest.mark.asyncio
    async def test_with_retry_and_timeout(self):
        """Test each attempt is bounded and a timeout becomes RequestTimeoutError."""
        attempts = 0

        async def slow():
            nonlocal attempts
            attempts += 1
            await asyncio.Event().wait()

        with pytest.raises(RequestTimeoutError) as exc_info:
            await with_retry_and_timeout(slow, 0.01, RetryPolicy(max_attempts=1))

        assert exc_info.value.timeout == 0.01
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_with_retry_and_timeout_passes_result(self):
        async def fast():
            return 5

        assert await with_retry_and_timeout(fast, 1.0) == 5

    @pytest.mark.asyncio
    async def test_with_retry_context_keeps_user_callback(self, no_jitter):
        seen = []
        policy = DEFAULT_RETRY_POLICY.with_overrides(
            base_delay=0.01,
            on_retry=lambda attempt, error: seen.append(attempt),
        )
        operation = failing_then("done", [NetworkError("a")])

        assert await with_retry_context("refresh devices", operation, policy) == "done"
        assert seen == [1]
