"""
Fan-out of relay messages to connected observers.

Each live-feed connection and each record-channel websocket owns one bounded
:class:`asyncio.Queue`.  Publishing puts the message on every queue without
waiting.  A subscriber that falls ``maxsize`` messages behind is dropped: its
queue is drained and closed with a ``None`` sentinel, which ends its stream.
The client side reconnects and reloads the snapshot, so nothing is lost for
good.

All methods must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Queue depth per subscriber before it counts as stalled
_DEFAULT_QUEUE_SIZE = 256


class BroadcastHub:
    """Publish JSON-able messages to every subscribed queue."""

    def __init__(self, name: str, queue_size: int = _DEFAULT_QUEUE_SIZE) -> None:
        self.name = name
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[dict[str, Any] | None]] = set()

    def subscribe(self) -> asyncio.Queue[dict[str, Any] | None]:
        """Register a new subscriber and return its queue."""
        queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        logger.debug("hub %s: subscriber added (%d total)", self.name, len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any] | None]) -> None:
        self._subscribers.discard(queue)

    def publish(self, message: dict[str, Any]) -> int:
        """
        Deliver ``message`` to every subscriber.

        Returns:
            Number of subscribers the message was queued for.
        """
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("hub %s: subscriber queue full, dropping subscriber", self.name)
                self._close(queue)
        return delivered

    def close_all(self) -> None:
        """End every subscriber's stream (used on shutdown)."""
        for queue in list(self._subscribers):
            self._close(queue)

    def _close(self, queue: asyncio.Queue[dict[str, Any] | None]) -> None:
        self._subscribers.discard(queue)
        while not queue.empty():
            queue.get_nowait()
        queue.put_nowait(None)

    def __len__(self) -> int:
        return len(self._subscribers)


def format_sse(message: dict[str, Any]) -> str:
    """Format one message as a server-sent event frame."""
    return f"data: {json.dumps(message, ensure_ascii=False)}\n\n"
