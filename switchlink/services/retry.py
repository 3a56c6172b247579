"""
Retry with exponential backoff.

Provides automatic retry for transient failures with:
- Named retry policies
- Exponential backoff with ±25% jitter
- Kind-based error classification (see ``errors.is_retryable``)
- Retry-after hints honoured for rate-limit errors
"""

import asyncio
import functools
import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from switchlink.services.errors import (
    NEVER_RETRY_KINDS,
    ErrorKind,
    RateLimitError,
    RequestTimeoutError,
    get_error_kind,
    is_retryable,
)

T = TypeVar("T")

JITTER_FACTOR = 0.25


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_kinds: frozenset[ErrorKind] = field(
        default_factory=lambda: frozenset(
            {
                ErrorKind.AUTH_ERROR,
                ErrorKind.TOKEN_EXPIRED,
                ErrorKind.NETWORK_ERROR,
                ErrorKind.TIMEOUT,
                ErrorKind.RATE_LIMITED,
            }
        )
    )
    on_retry: Callable[[int, BaseException], None] | None = None

    def with_overrides(self, **changes: Any) -> "RetryPolicy":
        """Copy of this policy with some fields replaced."""
        return replace(self, **changes)


DEFAULT_RETRY_POLICY = RetryPolicy()

# For critical operations
AGGRESSIVE_RETRY_POLICY = RetryPolicy(
    max_attempts=5,
    base_delay=0.5,
    max_delay=60.0,
    retryable_kinds=frozenset(
        {
            ErrorKind.AUTH_ERROR,
            ErrorKind.TOKEN_EXPIRED,
            ErrorKind.NETWORK_ERROR,
            ErrorKind.TIMEOUT,
            ErrorKind.RATE_LIMITED,
            ErrorKind.API_ERROR,
        }
    ),
)

# For non-critical operations
CONSERVATIVE_RETRY_POLICY = RetryPolicy(
    max_attempts=2,
    base_delay=2.0,
    max_delay=10.0,
    backoff_multiplier=1.5,
    retryable_kinds=frozenset({ErrorKind.NETWORK_ERROR, ErrorKind.TIMEOUT}),
)


def calculate_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    multiplier: float,
) -> float:
    """Calculate backoff delay for a retry attempt.

    Args:
        attempt: Attempt that just failed (1-indexed)
        base_delay: Delay after the first failure
        max_delay: Upper bound for any delay
        multiplier: Exponential backoff base

    Returns:
        Delay in seconds
    """
    exponential = base_delay * (multiplier ** (attempt - 1))
    jitter = exponential * JITTER_FACTOR * random.uniform(-1.0, 1.0)
    return min(exponential + jitter, max_delay)


def should_retry(error: BaseException, policy: RetryPolicy) -> bool:
    """Determine if an error should be retried under ``policy``."""
    kind = get_error_kind(error)
    if kind in NEVER_RETRY_KINDS:
        return False
    return is_retryable(error) or kind in policy.retryable_kinds


def _retry_delay(error: BaseException, attempt: int, policy: RetryPolicy) -> float:
    if isinstance(error, RateLimitError) and error.retry_after is not None:
        return error.retry_after
    return calculate_backoff_delay(
        attempt, policy.base_delay, policy.max_delay, policy.backoff_multiplier
    )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``fn`` until it succeeds, fails permanently, or attempts run out.

    The last error is re-raised unchanged.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if not should_retry(e, policy):
                raise

            if attempt >= policy.max_attempts:
                logger.warning(
                    f"All {policy.max_attempts} attempts failed: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            delay = _retry_delay(e, attempt, policy)

            if policy.on_retry:
                try:
                    policy.on_retry(attempt, e)
                except Exception as callback_error:
                    logger.warning(f"on_retry callback failed: {callback_error}")

            logger.debug(
                f"Attempt {attempt}/{policy.max_attempts} failed "
                f"({get_error_kind(e).value}), retrying in {delay:.2f}s"
            )
            await sleep(delay)
            attempt += 1


def retryable(policy: RetryPolicy = DEFAULT_RETRY_POLICY):
    """Decorator form of with_retry().

    Usage:
        @retryable(CONSERVATIVE_RETRY_POLICY)
        async def refresh_devices():
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_retry(lambda: func(*args, **kwargs), policy)

        return wrapper

    return decorator


async def with_retry_and_timeout(
    fn: Callable[[], Awaitable[T]],
    timeout: float,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> T:
    """Retry ``fn`` with each attempt bounded by ``timeout`` seconds."""

    async def attempt() -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(timeout) from None

    return await with_retry(attempt, policy)


async def with_retry_context(
    operation: str,
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> T:
    """with_retry() that logs every retry against an operation name."""
    user_callback = policy.on_retry

    def log_retry(attempt: int, error: BaseException) -> None:
        logger.info(
            f"Retrying {operation} (attempt {attempt}/{policy.max_attempts}) "
            f"after {get_error_kind(error).value}: {error}"
        )
        if user_callback:
            user_callback(attempt, error)

    return await with_retry(fn, policy.with_overrides(on_retry=log_retry))
