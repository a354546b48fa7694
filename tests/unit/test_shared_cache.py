"""
Tests for the Redis-backed shared cache.

Redis is an AsyncMock. Key behaviours:
  - Reads prefer Redis while it is up; writes go to Redis and the fallback
  - A Redis error is absorbed: the call is served by the fallback
  - After an error Redis is not contacted again until the backoff expires
  - The outage is logged once, not per call
"""
import logging
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from screener.cache.memory import MemoryCache
from screener.cache.shared import SharedCache


def make_redis(**overrides):
    redis = AsyncMock()
    redis.get.return_value = None
    for name, value in overrides.items():
        setattr(redis, name, value)
    return redis


def make_cache(redis, clock):
    return SharedCache(redis, fallback=MemoryCache(clock=clock), backoff_seconds=60.0, clock=clock)


class TestRedisUp:
    @pytest.mark.asyncio
    async def test_reads_from_redis(self, clock):
        redis = make_redis()
        redis.get.return_value = "from-redis"
        cache = make_cache(redis, clock)
        assert await cache.get("k") == "from-redis"

    @pytest.mark.asyncio
    async def test_writes_go_to_both(self, clock):
        redis = make_redis()
        cache = make_cache(redis, clock)
        await cache.setex("k", 30, "v")
        redis.setex.assert_awaited_once_with("k", 30, "v")
        assert await cache.fallback.get("k") == "v"


class TestRedisDown:
    @pytest.mark.asyncio
    async def test_error_falls_back_without_raising(self, clock):
        redis = make_redis(get=AsyncMock(side_effect=RedisConnectionError("down")))
        cache = make_cache(redis, clock)
        await cache.fallback.set("k", "local")

        assert await cache.get("k") == "local"
        assert not cache.redis_up

    @pytest.mark.asyncio
    async def test_backoff_skips_redis_until_it_expires(self, clock):
        redis = make_redis(get=AsyncMock(side_effect=RedisConnectionError("down")))
        cache = make_cache(redis, clock)

        await cache.get("k")
        await cache.get("k")
        await cache.set("k", "v")
        assert redis.get.await_count == 1
        redis.set.assert_not_awaited()

        clock.advance(60)
        assert cache.redis_up
        await cache.get("k")
        assert redis.get.await_count == 2

    @pytest.mark.asyncio
    async def test_os_errors_are_absorbed_too(self, clock):
        redis = make_redis(setex=AsyncMock(side_effect=OSError("connection reset")))
        cache = make_cache(redis, clock)
        await cache.setex("k", 30, "v")
        assert await cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_outage_logged_once(self, clock, caplog):
        redis = make_redis(
            get=AsyncMock(side_effect=RedisConnectionError("down")),
            keys=AsyncMock(side_effect=RedisConnectionError("down")),
        )
        cache = make_cache(redis, clock)
        with caplog.at_level(logging.WARNING, logger="screener.cache.shared"):
            await cache.get("a")
            clock.advance(1)
            await cache.get("b")
        assert len([r for r in caplog.records if "Redis" in r.getMessage()]) == 1


class TestWithoutRedis:
    @pytest.mark.asyncio
    async def test_none_client_uses_fallback_only(self, clock):
        cache = SharedCache(None, fallback=MemoryCache(clock=clock), clock=clock)
        await cache.set("k", "v")
        assert await cache.get("k") == "v"
        assert not cache.redis_up
        await cache.aclose()
