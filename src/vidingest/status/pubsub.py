"""Publish/subscribe sinks for upload status records."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

logger = logging.getLogger(__name__)


class StatusPublisher(ABC):
    """Abstract publish sink; delivery is best-effort."""

    @abstractmethod
    def publish(self, channel: str, record: Dict[str, Any]) -> None:
        """Push a status record to every subscriber of ``channel``."""
        pass


class InMemoryPublisher(StatusPublisher):
    """Fan status records out to in-process asyncio subscribers.

    Each subscriber owns a bounded queue. When a subscriber falls behind the
    oldest pending record is dropped, so delivery is at-most-once.
    """

    def __init__(self, max_pending: int = 100):
        self.max_pending = max_pending
        self._subscribers: Dict[str, set[asyncio.Queue]] = defaultdict(set)

    def publish(self, channel: str, record: Dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(channel, ())):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.debug("Dropped stale status for slow subscriber", extra={"channel": channel})
            queue.put_nowait(dict(record))

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    @asynccontextmanager
    async def subscribe(self, channel: str) -> AsyncIterator[asyncio.Queue]:
        """Register a queue on ``channel`` for the lifetime of the context."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_pending)
        self._subscribers[channel].add(queue)
        logger.debug("Status subscriber attached", extra={"channel": channel})
        try:
            yield queue
        finally:
            subscribers = self._subscribers.get(channel)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[channel]
            logger.debug("Status subscriber detached", extra={"channel": channel})
