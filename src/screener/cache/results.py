"""Key layout and TTLs for screener results and per-symbol indicators."""
import json
import logging
from typing import Any, Dict, Optional

from screener.cache.memory import CacheBackend

logger = logging.getLogger(__name__)

SCREENER_PREFIX = "screener:"
INDICATORS_PREFIX = "indicators:"

SCREENER_RESULTS_TTL = 30
INDICATORS_TTL = 300


def _decode(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable cache entry")
        return None


class ResultCache:
    """Typed get/put over a CacheBackend. Misses are None, never exceptions."""

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    @staticmethod
    def result_key(filter_key: str, page: int, page_size: int) -> str:
        return f"{SCREENER_PREFIX}{filter_key}:{page}:{page_size}"

    async def get_result(self, filter_key: str, page: int, page_size: int) -> Optional[Dict[str, Any]]:
        return _decode(await self.backend.get(self.result_key(filter_key, page, page_size)))

    async def put_result(self, filter_key: str, page: int, page_size: int, result: Dict[str, Any]) -> None:
        await self.backend.setex(
            self.result_key(filter_key, page, page_size),
            SCREENER_RESULTS_TTL,
            json.dumps(result, default=str),
        )

    async def invalidate_results(self) -> int:
        keys = await self.backend.keys(f"{SCREENER_PREFIX}*")
        if not keys:
            return 0
        return await self.backend.delete(*keys)

    async def put_indicators(self, symbol: str, values: Dict[str, Any]) -> None:
        await self.backend.setex(f"{INDICATORS_PREFIX}{symbol}", INDICATORS_TTL, json.dumps(values))

    async def all_indicators(self) -> Dict[str, Dict[str, Any]]:
        """Every cached indicator set, keyed by symbol."""
        keys = await self.backend.keys(f"{INDICATORS_PREFIX}*")
        if not keys:
            return {}
        values = await self.backend.mget(keys)
        out = {}
        for key, raw in zip(keys, values):
            decoded = _decode(raw)
            if decoded is not None:
                out[key[len(INDICATORS_PREFIX):]] = decoded
        return out
