"""
Bounded in-process cache.

Fixed capacity with LRU eviction and per-entry expiry. It implements the
same CacheBackend contract as the Redis-backed SharedCache, so it works
both as the fallback behind SharedCache and as the only backend when no
Redis URL is configured.
"""
import time
from collections import OrderedDict
from fnmatch import fnmatchcase
from typing import Callable, Dict, List, Optional, Protocol, Tuple


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str) -> None: ...
    async def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...
    async def keys(self, pattern: str) -> List[str]: ...
    async def mget(self, keys: List[str]) -> List[Optional[str]]: ...
    async def delete(self, *keys: str) -> int: ...


class MemoryCache:
    def __init__(self, max_entries: int = 2048, clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._clock = clock
        # key -> (value, expires_at or None)
        self._data: "OrderedDict[str, Tuple[str, Optional[float]]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    def _put(self, key: str, value: str, expires_at: Optional[float]) -> None:
        self._data[key] = (value, expires_at)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str) -> None:
        self._put(key, value, None)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self._put(key, value, self._clock() + ttl_seconds)

    async def keys(self, pattern: str) -> List[str]:
        return [k for k in list(self._data) if fnmatchcase(k, pattern) and self._live(k) is not None]

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        return [self._live(k) for k in keys]

    async def delete(self, *keys: str) -> int:
        removed = 0
        for k in keys:
            if self._data.pop(k, None) is not None:
                removed += 1
        return removed

