"""
change_feed.py — In-process push channel for session changes.

Replaces "re-run the query whenever anything changes" with an explicit
publish step: whoever writes a session (or produces a notification event)
publishes one message, and every open subscriber for that owner receives
it on its own asyncio.Queue.

    async with change_feed.subscribe(user_id) as queue:
        while True:
            message = await queue.get()
            await websocket.send_text(json.dumps(message))

publish() never blocks the writer. A subscriber that stops reading loses
its oldest messages first once its queue is full.

Scope: one process. With several API workers, put a Mongo change stream
(collection.watch()) behind publish() instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class ChangeFeed:
    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    @asynccontextmanager
    async def subscribe(self, owner_id: str) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[owner_id].add(queue)
        logger.debug("Change feed subscriber added for %s", owner_id)
        try:
            yield queue
        finally:
            subscribers = self._subscribers.get(owner_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[owner_id]
            logger.debug("Change feed subscriber removed for %s", owner_id)

    def publish(self, owner_id: str, message: dict[str, Any]) -> int:
        """Deliver *message* to every subscriber of *owner_id*; returns how many."""
        delivered = 0
        for queue in list(self._subscribers.get(owner_id, ())):
            if queue.full():
                queue.get_nowait()  # drop oldest
            queue.put_nowait(message)
            delivered += 1
        return delivered

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._subscribers.get(owner_id, ()))


# Module-level singleton
change_feed = ChangeFeed()
