"""
Supervised fire-and-forget tasks.

spawn() keeps a strong reference to each task until it finishes, and a
done-callback logs and records any failure so background work never
fails silently.
"""
import asyncio
import logging
from typing import Awaitable, List, Set, Tuple

logger = logging.getLogger(__name__)


class TaskSupervisor:
    def __init__(self, max_failures: int = 100):
        self._tasks: Set[asyncio.Task] = set()
        self.failures: List[Tuple[str, BaseException]] = []
        self._max_failures = max_failures

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %r", task.get_name(), exc)
            self.failures.append((task.get_name(), exc))
            del self.failures[:-self._max_failures]

    async def drain(self) -> None:
        """Wait for every outstanding task (failures are already recorded)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
