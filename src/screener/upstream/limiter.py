"""
Token bucket for outbound API calls.

Refill is lazy: tokens are recomputed from elapsed time whenever someone
asks for one, so there is no background timer. acquire() never fails, it
sleeps for exactly the deficit. Waiters are serialized by an asyncio.Lock
so two coroutines cannot both spend the same token.

Over any window of T seconds at most capacity + rate * T tokens are granted.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token if one is available right now."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Take a token, sleeping until one has accrued."""
        async with self._lock:
            while not self.try_acquire():
                wait = (1 - self._tokens) / self.refill_rate
                logger.debug("Rate limiter empty, sleeping %.3fs", wait)
                await self._sleep(wait)
