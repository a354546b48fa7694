"""
Process-wide service wiring.

Each accessor builds its object on first call from Settings and returns
the same instance afterwards, so the API, scheduler and CLI in one
process share one rate limiter, one circuit breaker, one cache and one
StoreHealth.
"""
import logging
from typing import Optional

import redis.asyncio as redis_asyncio

from screener.broadcast import InProcessBroadcaster
from screener.cache.memory import MemoryCache
from screener.cache.results import ResultCache
from screener.cache.shared import SharedCache
from screener.config import get_settings
from screener.db.engine import get_engine
from screener.health import StoreHealth
from screener.query.engine import ScreenerEngine
from screener.sync.orchestrator import SyncOrchestrator
from screener.tasks import TaskSupervisor
from screener.upstream.analyst import USER_AGENT, AnalystTargetClient
from screener.upstream.breaker import CircuitBreaker
from screener.upstream.client import ResilientClient
from screener.upstream.limiter import TokenBucket
from screener.upstream.market_data import MarketDataClient

logger = logging.getLogger(__name__)

_market: Optional[MarketDataClient] = None
_analyst: Optional[AnalystTargetClient] = None
_cache: Optional[ResultCache] = None
_health: Optional[StoreHealth] = None
_broadcaster: Optional[InProcessBroadcaster] = None
_supervisor: Optional[TaskSupervisor] = None
_orchestrator: Optional[SyncOrchestrator] = None
_screener: Optional[ScreenerEngine] = None


def get_market_client() -> MarketDataClient:
    global _market
    if _market is None:
        settings = get_settings()
        if not settings.massive_api_key:
            logger.warning("MASSIVE_API_KEY is not set; upstream calls will be rejected")
        client = ResilientClient(
            settings.massive_base_url,
            settings.massive_api_key,
            limiter=TokenBucket(settings.rate_limit_capacity, settings.rate_limit_per_second),
            breaker=CircuitBreaker(settings.breaker_failure_threshold, settings.breaker_reset_seconds),
            retries=settings.client_retries,
            backoff_base=settings.client_backoff_base,
            timeout=settings.client_timeout_seconds,
        )
        _market = MarketDataClient(client)
    return _market


def get_analyst_client() -> Optional[AnalystTargetClient]:
    """Keyless quote-summary source; None when ANALYST_BASE_URL is empty."""
    global _analyst
    settings = get_settings()
    if _analyst is None and settings.analyst_base_url:
        client = ResilientClient(
            settings.analyst_base_url,
            None,
            limiter=TokenBucket(settings.analyst_rate_limit_capacity, settings.analyst_rate_limit_per_second),
            breaker=CircuitBreaker(settings.breaker_failure_threshold, settings.breaker_reset_seconds),
            retries=settings.client_retries,
            backoff_base=settings.client_backoff_base,
            timeout=settings.client_timeout_seconds,
            headers={"User-Agent": USER_AGENT},
        )
        _analyst = AnalystTargetClient(client)
    return _analyst


def get_result_cache() -> ResultCache:
    global _cache
    if _cache is None:
        settings = get_settings()
        fallback = MemoryCache(settings.memory_cache_size)
        redis_client = (
            redis_asyncio.from_url(settings.redis_url, decode_responses=True)
            if settings.redis_url
            else None
        )
        if redis_client is None:
            logger.info("REDIS_URL not set; using in-process cache only")
        _cache = ResultCache(SharedCache(redis_client, fallback))
    return _cache


def get_store_health() -> StoreHealth:
    global _health
    if _health is None:
        seconds = get_settings().store_reprobe_seconds
        _health = StoreHealth(reprobe_after=seconds if seconds > 0 else None)
    return _health


def get_broadcaster() -> InProcessBroadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = InProcessBroadcaster()
    return _broadcaster


def get_supervisor() -> TaskSupervisor:
    global _supervisor
    if _supervisor is None:
        _supervisor = TaskSupervisor()
    return _supervisor


def get_orchestrator() -> SyncOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SyncOrchestrator(
            get_market_client(),
            get_engine(),
            cache=get_result_cache(),
            broadcaster=get_broadcaster(),
            supervisor=get_supervisor(),
            analyst=get_analyst_client(),
            lock_ttl=get_settings().lock_ttl_seconds,
        )
    return _orchestrator


def get_screener() -> ScreenerEngine:
    global _screener
    if _screener is None:
        _screener = ScreenerEngine(
            get_engine(),
            get_market_client(),
            get_result_cache(),
            get_store_health(),
            max_candidates=get_settings().screener_max_candidates,
        )
    return _screener


async def shutdown() -> None:
    """Close network clients and wait for pending broadcasts."""
    if _supervisor is not None:
        await _supervisor.drain()
    if _market is not None:
        await _market.aclose()
    if _analyst is not None:
        await _analyst.aclose()
    if _cache is not None:
        await _cache.backend.aclose()
