"""
Redis-backed shared cache that never raises.

Any RedisError/OSError marks Redis unavailable for `backoff_seconds`;
during that window every call is served by the in-process fallback and
Redis is not contacted. Writes go to both while Redis is up so the
fallback is warm when Redis drops out.
"""
import logging
import time
from typing import Callable, List, Optional

from redis.exceptions import RedisError

from screener.cache.memory import MemoryCache

logger = logging.getLogger(__name__)

_REDIS_ERRORS = (RedisError, OSError)


class SharedCache:
    def __init__(
        self,
        redis_client,
        fallback: Optional[MemoryCache] = None,
        backoff_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            redis_client: redis.asyncio.Redis created with decode_responses=True,
                or None to run on the fallback only.
            fallback: In-process cache used when Redis is down.
        """
        self._redis = redis_client
        self.fallback = fallback or MemoryCache()
        self.backoff_seconds = backoff_seconds
        self._clock = clock
        self._disabled_until = 0.0

    @property
    def redis_up(self) -> bool:
        return self._redis is not None and self._clock() >= self._disabled_until

    def _fail(self, op: str, exc: BaseException) -> None:
        if self._clock() >= self._disabled_until:
            logger.warning(
                "Redis %s failed (%r); using in-process cache for %.0fs",
                op,
                exc,
                self.backoff_seconds,
            )
        self._disabled_until = self._clock() + self.backoff_seconds

    async def get(self, key: str) -> Optional[str]:
        if self.redis_up:
            try:
                return await self._redis.get(key)
            except _REDIS_ERRORS as exc:
                self._fail("get", exc)
        return await self.fallback.get(key)

    async def set(self, key: str, value: str) -> None:
        await self.fallback.set(key, value)
        if self.redis_up:
            try:
                await self._redis.set(key, value)
            except _REDIS_ERRORS as exc:
                self._fail("set", exc)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self.fallback.setex(key, ttl_seconds, value)
        if self.redis_up:
            try:
                await self._redis.setex(key, ttl_seconds, value)
            except _REDIS_ERRORS as exc:
                self._fail("setex", exc)

    async def keys(self, pattern: str) -> List[str]:
        if self.redis_up:
            try:
                return list(await self._redis.keys(pattern))
            except _REDIS_ERRORS as exc:
                self._fail("keys", exc)
        return await self.fallback.keys(pattern)

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        if self.redis_up:
            try:
                return list(await self._redis.mget(keys))
            except _REDIS_ERRORS as exc:
                self._fail("mget", exc)
        return await self.fallback.mget(keys)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        removed = await self.fallback.delete(*keys)
        if self.redis_up:
            try:
                return await self._redis.delete(*keys)
            except _REDIS_ERRORS as exc:
                self._fail("delete", exc)
        return removed

    async def aclose(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except _REDIS_ERRORS as exc:
                logger.debug("Redis close failed: %r", exc)
