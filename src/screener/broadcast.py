"""
Best-effort event fan-out to live subscribers.

The sync and query code only depends on the BroadcastSink protocol.
InProcessBroadcaster is the default: every subscriber gets a bounded
queue, and a full queue drops its oldest event instead of blocking the
publisher. Delivery is not retried and not acknowledged.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)

SCREENER_UPDATED = "screener.updated"
ENTITY_UPDATED = "entity.updated"


class BroadcastSink(Protocol):
    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        ...


class NullBroadcaster:
    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        return None


class InProcessBroadcaster:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)
        self.dropped = 0

    def subscribe(self, topic: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[topic].append(queue)
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        subs = self._subscribers.get(topic, [])
        if queue in subs:
            subs.remove(queue)

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        event = {"topic": topic, "payload": payload}
        for queue in list(self._subscribers.get(topic, [])):
            if queue.full():
                queue.get_nowait()
                self.dropped += 1
            queue.put_nowait(event)
        logger.debug("Published %s to %d subscriber(s)", topic, len(self._subscribers.get(topic, [])))
