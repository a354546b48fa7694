"""
ResilientClient: the single egress point to an upstream data API.

Every logical call goes through, in order:
  1. circuit breaker check (fail fast with CircuitOpenError, no retry spent)
  2. token bucket (sleep until a token is available)
  3. HTTP GET via httpx
  4. status classification -> breaker bookkeeping -> typed exception

Retries are driven by tenacity. 401/403 are never retried and never count
toward the breaker; 429 honours Retry-After; everything else backs off
exponentially. Transport errors that survive all attempts surface as
UpstreamUnavailable.
"""
import asyncio
import logging
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from screener.upstream.breaker import CircuitBreaker
from screener.upstream.errors import (
    CircuitOpenError,
    RateLimitError,
    UpstreamError,
    UpstreamUnavailable,
)
from screener.upstream.limiter import TokenBucket

logger = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str]) -> float:
    """Retry-After is either delta-seconds or an HTTP date. Unparseable -> 0."""
    if not value:
        return 0.0
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, UpstreamError):
        return not exc.is_auth_failure
    return isinstance(exc, (RateLimitError, httpx.TransportError))


class ResilientClient:
    """
    Rate-limited, circuit-broken JSON GET client.

    One instance is shared by all jobs in a process so the limiter and
    breaker see the combined traffic.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        *,
        limiter: TokenBucket,
        breaker: CircuitBreaker,
        retries: int = 3,
        backoff_base: float = 0.5,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        http: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            base_url: API root, e.g. https://api.polygon.io
            api_key: Sent as the apiKey query parameter on every request
                     (omitted when None, for keyless sources).
            limiter: Shared token bucket.
            breaker: Shared circuit breaker.
            retries: Total attempts per logical call (>= 1).
            backoff_base: Seconds; attempt n waits base * 2**(n-1).
            headers: Default headers for the owned httpx client.
            http: Pre-built httpx client (tests pass one with MockTransport).
            sleep: Injected for deterministic backoff in tests.
        """
        self.api_key = api_key
        self.limiter = limiter
        self.breaker = breaker
        self.retries = max(retries, 1)
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers)

    async def call(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET an endpoint and return the decoded JSON body.

        `endpoint` may be a path relative to base_url or an absolute
        next_url cursor returned by a previous page.

        Raises:
            CircuitOpenError: breaker is open; transport was not invoked.
            RateLimitError: still rate limited after all attempts.
            UpstreamError: non-success status (immediately for 401/403).
            UpstreamUnavailable: transport failures on every attempt.
        """
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if self.api_key is not None:
            query["apiKey"] = self.api_key
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retries),
                wait=self._backoff,
                retry=retry_if_exception(_is_retryable),
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    return await self._attempt(endpoint, query)
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(f"{endpoint}: {exc!r}") from exc

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _backoff(self, retry_state: RetryCallState) -> float:
        delay = self.backoff_base * 2 ** (retry_state.attempt_number - 1)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError):
            delay = max(exc.retry_after, delay)
        logger.debug(
            "Retrying after %r (attempt %d) in %.2fs",
            exc,
            retry_state.attempt_number,
            delay,
        )
        return delay

    async def _attempt(self, endpoint: str, query: Dict[str, Any]) -> Dict[str, Any]:
        self.breaker.before_call()
        await self.limiter.acquire()

        # Merge rather than replace: a next_url cursor carries its own query.
        url = httpx.URL(endpoint).copy_merge_params(query)
        try:
            resp = await self._http.get(url)
        except httpx.TransportError:
            self.breaker.record_failure()
            raise

        status = resp.status_code
        if status == 429:
            self.breaker.record_failure()
            raise RateLimitError(parse_retry_after(resp.headers.get("Retry-After")))
        if status in (401, 403):
            logger.error("Upstream rejected credentials (%d) for %s", status, endpoint)
            raise UpstreamError(status, resp.text)
        if status >= 400:
            self.breaker.record_failure()
            raise UpstreamError(status, resp.text)

        try:
            body = resp.json()
        except ValueError:
            self.breaker.record_failure()
            logger.warning("Non-JSON %d response from %s", status, endpoint)
            raise UpstreamError(status, resp.text) from None

        self.breaker.record_success()
        return body
