"""
Primary-store health for the screener.

The query engine asks `use_store()` before every primary-path query.
After a store failure the engine calls `mark_unavailable()` and serves
from the on-demand path. With a positive reprobe interval the store is
tried again once that interval has passed; with reprobe_after=None the
switch lasts for the rest of the process lifetime. Each transition is
logged once.
"""
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StoreHealth:
    def __init__(
        self,
        reprobe_after: Optional[float] = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.reprobe_after = reprobe_after
        self._clock = clock
        self._available = True
        self._down_since: Optional[float] = None
        self.last_error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self._available

    def use_store(self) -> bool:
        """True if the primary path should be attempted now."""
        if self._available:
            return True
        if self.reprobe_after is None:
            return False
        if self._clock() - self._down_since >= self.reprobe_after:
            logger.info("Re-probing primary store after %.0fs in on-demand mode", self.reprobe_after)
            return True
        return False

    def mark_unavailable(self, error: Optional[BaseException] = None) -> None:
        self.last_error = repr(error) if error is not None else None
        if self._available:
            logger.warning(
                "Primary store unavailable, switching to on-demand mode: %s", self.last_error
            )
        self._available = False
        self._down_since = self._clock()

    def mark_available(self) -> None:
        if not self._available:
            logger.info("Primary store reachable again, leaving on-demand mode")
        self._available = True
        self._down_since = None
        self.last_error = None
