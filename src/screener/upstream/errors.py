"""Failure taxonomy for calls to the upstream market-data API."""
from typing import Optional


class UpstreamFailure(Exception):
    """Base class for everything ResilientClient can raise."""


class RateLimitError(UpstreamFailure):
    """HTTP 429. retry_after is the server's Retry-After in seconds (0 if absent)."""

    def __init__(self, retry_after: float = 0.0):
        super().__init__(f"Rate limited (retry after {retry_after:g}s)")
        self.retry_after = retry_after


class UpstreamError(UpstreamFailure):
    """Non-success HTTP status other than 429, or a success body that is not JSON."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Upstream returned {status_code}: {body[:200]}")
        self.status_code = status_code
        self.body = body

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)


class UpstreamUnavailable(UpstreamFailure):
    """Transport-level failure (connect/read/timeout) after all retries."""


class CircuitOpenError(UpstreamFailure):
    """Raised without touching the network while the breaker is open."""

    def __init__(self, retry_in: Optional[float] = None):
        msg = "Circuit breaker is open"
        if retry_in is not None:
            msg += f" (half-open in {retry_in:.1f}s)"
        super().__init__(msg)
        self.retry_in = retry_in
