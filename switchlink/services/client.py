"""
ServiceClient - Async HTTP client wrapped in the resilience pipeline.

Order for one logical call:
1. Response cache (cacheable reads only)
2. RequestDeduplicator keyed by method + resource (cacheable reads only)
3. Optional retry with backoff
4. RequestQueue slot at the requested priority
5. Gate: circuit breaker admission, rate limiter (writes only),
   the call itself under a timeout, breaker bookkeeping, cache update
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from switchlink.sanitizers import create_response_preview
from switchlink.services.circuit_breaker import CircuitState
from switchlink.services.context import ResilienceContext
from switchlink.services.errors import (
    CircuitOpenError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ResponseParseError,
    counts_as_upstream_failure,
    create_api_error,
)
from switchlink.services.request_queue import Priority
from switchlink.services.retry import RetryPolicy, with_retry

T = TypeVar("T")

DEFAULT_HEADERS = {"Content-Type": "application/json; charset=utf-8"}


@dataclass
class RequestOptions:
    """Per-call pipeline options."""

    use_cache: bool = False
    cache_key: str | None = None
    bypass_circuit_breaker: bool = False
    priority: Priority | str = Priority.NORMAL
    write: bool = False  # Writes skip cache and dedup and are rate limited
    dedupe_key: str | None = None  # Defaults to cache_key
    invalidate_keys: list[str] = field(default_factory=list)  # Dropped on write success
    timeout: float | None = None
    retry_policy: RetryPolicy | None = None

    @property
    def cacheable(self) -> bool:
        return self.use_cache and not self.write and self.cache_key is not None


class ServiceClient:
    """
    HTTP client with caching, circuit breaker, rate limiting, deduplication
    and a priority queue.

    Usage:
        context = ResilienceContext.create()
        async with ServiceClient("https://my.leviton.com/api", context) as client:
            devices = await client.request(
                "GET",
                "/Residences/42/iotSwitches",
                headers={"Authorization": token},
            )

        # Any coroutine can go through the same pipeline
        result = await client.execute(
            lambda: fetch_something(),
            RequestOptions(use_cache=True, cache_key="something"),
        )
    """

    def __init__(
        self,
        base_url: str,
        context: ResilienceContext,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        service_id: str = "leviton",
        debug: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.context = context
        self.service_id = service_id
        self._timeout = timeout
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._transport = transport
        self._debug = debug

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers=self._headers,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._http_client

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        options: RequestOptions | None = None,
    ) -> T:
        """
        Run ``operation`` through the full pipeline.

        Raises:
            CircuitOpenError: If the circuit breaker refuses the call
            RateLimitError: If a write exceeds the rate limit
            RequestTimeoutError: If the call does not finish in time
            QueueFullError: If the request queue has no room
            ServiceError: Any error raised by the operation itself
        """
        opts = options or RequestOptions()
        cache = self.context.cache

        if opts.cacheable:
            # has() first so a cached None still counts as a hit
            if cache.has(opts.cache_key):
                self._log(f"Cache hit: {opts.cache_key}")
                return cache.get(opts.cache_key)

            dedupe_key = opts.dedupe_key or opts.cache_key
            return await self.context.deduplicator.execute(
                dedupe_key, lambda: self._run(operation, opts)
            )

        return await self._run(operation, opts)

    async def _run(self, operation: Callable[[], Awaitable[T]], opts: RequestOptions) -> T:
        if opts.retry_policy is None:
            return await self._submit(operation, opts)
        return await with_retry(
            lambda: self._submit(operation, opts),
            opts.retry_policy,
            sleep=self.context.sleep,
        )

    async def _submit(self, operation: Callable[[], Awaitable[T]], opts: RequestOptions) -> T:
        return await self.context.queue.add(
            lambda: self._gated(operation, opts), priority=opts.priority
        )

    async def _gated(self, operation: Callable[[], Awaitable[T]], opts: RequestOptions) -> T:
        """Admission checks, the call itself, and bookkeeping."""
        breaker = self.context.circuit_breaker
        limiter = self.context.rate_limiter
        use_cb = not opts.bypass_circuit_breaker

        if use_cb and not breaker.can_request():
            remaining = breaker.get_time_until_reset()
            raise CircuitOpenError(
                remaining if remaining is not None else breaker.config.reset_timeout,
                service_id=self.service_id,
            )

        # Claim the probe slot before any await so concurrent callers see it
        trial = use_cb and breaker.state == CircuitState.HALF_OPEN
        if trial:
            breaker.track_half_open_request()

        timeout = opts.timeout or self._timeout
        try:
            if opts.write:
                if limiter.config.wait_on_limit:
                    await limiter.acquire_async()
                elif not limiter.try_acquire():
                    raise RateLimitError(
                        f"Rate limit exceeded for service '{self.service_id}'",
                        retry_after=limiter.reset_time,
                        service_id=self.service_id,
                    )

            # wait_for cancels the call on timeout, releasing its connection
            result = await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError:
            if use_cb:
                breaker.record_failure()
            raise RequestTimeoutError(timeout, service_id=self.service_id) from None
        except asyncio.CancelledError:
            # Queue timeout, queue reset or dedupe cancel: no verdict on upstream
            if trial:
                breaker.release_half_open_request()
            raise
        except Exception as e:
            if use_cb and counts_as_upstream_failure(e):
                breaker.record_failure()
            elif trial:
                breaker.release_half_open_request()
            raise

        if use_cb:
            breaker.record_success()

        cache = self.context.cache
        if opts.cacheable:
            cache.set(opts.cache_key, result)
        if opts.write:
            for key in opts.invalidate_keys:
                cache.delete(key)

        return result

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_data: Any = None,
        use_cache: bool = False,
        cache_key: str | None = None,
        bypass_circuit_breaker: bool = False,
        priority: Priority | str = Priority.NORMAL,
        invalidate_keys: list[str] | None = None,
        retry_policy: RetryPolicy | None = None,
        retry: bool = True,
    ) -> Any:
        """
        Make an HTTP request with resilience patterns.

        GET requests may be cached (``use_cache``) and are then deduplicated
        on ``"GET:<url>"``. Every other method counts as a write.

        Reads without an explicit ``retry_policy`` use the context's policy.
        Writes only retry when given one. ``retry=False`` disables retry.

        Returns:
            Decoded JSON body
        """
        method = method.upper()
        url = self.url_for(path)
        is_read = method == "GET"

        if not retry:
            retry_policy = None
        elif retry_policy is None and is_read:
            retry_policy = self.context.retry_policy

        if is_read:
            key = cache_key or self.context.cache.generate_key(url, params)
        else:
            key = cache_key

        options = RequestOptions(
            use_cache=use_cache and is_read,
            cache_key=key,
            bypass_circuit_breaker=bypass_circuit_breaker,
            priority=priority,
            write=not is_read,
            dedupe_key=f"{method}:{self.context.cache.generate_key(url, params)}",
            invalidate_keys=list(invalidate_keys or []),
            retry_policy=retry_policy,
        )

        self._log(f"{method} {url}")
        return await self.execute(
            lambda: self._execute_request(method, url, params, headers, json_data),
            options,
        )

    async def _execute_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        headers: dict[str, str] | None,
        json_data: Any,
    ) -> Any:
        """Execute the actual HTTP request."""
        client = self._get_http_client()

        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                headers=headers,
                json=json_data,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(
                self._timeout, service_id=self.service_id, cause=e
            ) from e
        except httpx.RequestError as e:
            raise NetworkError(str(e), service_id=self.service_id, cause=e) from e

        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> Any:
        """Decode a JSON response or raise the matching typed error."""
        body = response.text
        self._log(f"Response: {response.status_code} {create_response_preview(body, 100)}")

        if not response.is_success:
            raise create_api_error(
                response.status_code,
                response.reason_phrase,
                body,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
                service_id=self.service_id,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type and "text/json" not in content_type:
            raise ResponseParseError(
                f"Expected JSON response, got {content_type or 'no content type'}",
                create_response_preview(body),
                service_id=self.service_id,
            )

        if not body.strip():
            raise ResponseParseError("Empty response body", service_id=self.service_id)

        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise ResponseParseError(
                f"Failed to parse JSON: {e}",
                create_response_preview(body),
                service_id=self.service_id,
            ) from e

    def invalidate(self, cache_key: str) -> bool:
        return self.context.cache.delete(cache_key)

    def clear_cache(self, pattern: str | None = None) -> int:
        """Clear cache entries, optionally matching a pattern."""
        if pattern:
            return self.context.cache.invalidate(pattern)
        count = self.context.cache.size
        self.context.cache.clear()
        return count

    def get_status(self) -> dict[str, Any]:
        """Health snapshot of every pipeline component."""
        return {"service_id": self.service_id, **self.context.get_status()}

    def reset(self) -> None:
        """Reset all pipeline state (cache, breaker, limiter, queue)."""
        self.context.reset()

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        await self.context.shutdown()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ServiceClient closed")

    async def __aenter__(self) -> "ServiceClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[API] {message}")


def _parse_retry_after(value: str | None) -> float | None:
    """Retry-After header in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
