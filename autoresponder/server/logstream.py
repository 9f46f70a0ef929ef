"""
Live event stream for admin WebSocket clients.

A loguru sink turns log records into `system-log` events; the manager
publishes `connection-status` and `qr` events through the same channel.
"""

import asyncio
from collections import deque
from typing import Any

from loguru import logger


class LogBroadcaster:
    """Fans events out to every subscribed WebSocket client."""

    def __init__(self, history: int = 200, client_buffer: int = 500):
        self.recent: deque[dict[str, Any]] = deque(maxlen=history)
        self.client_buffer = client_buffer
        self._clients: set[asyncio.Queue] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handler_id: int | None = None

    def install(self, level: str = "INFO") -> None:
        """Attach the loguru sink. Must run inside the event loop."""
        self._loop = asyncio.get_running_loop()
        if self._handler_id is None:
            self._handler_id = logger.add(self._sink, level=level.upper(), format="{message}")

    def uninstall(self) -> None:
        if self._handler_id is not None:
            logger.remove(self._handler_id)
            self._handler_id = None
        self._loop = None

    def _sink(self, message: Any) -> None:
        record = message.record
        entry = {
            "event": "system-log",
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name,
            "message": record["message"],
        }
        self.recent.append(entry)
        self.publish(entry)

    def publish(self, payload: dict[str, Any]) -> None:
        """Queue an event for every client; safe from any thread."""
        if self._loop is None or self._loop.is_closed():
            return
        for queue in list(self._clients):
            self._loop.call_soon_threadsafe(self._offer, queue, payload)

    @staticmethod
    def _offer(queue: asyncio.Queue, payload: dict[str, Any]) -> None:
        if queue.full():
            # Slow client: drop its oldest event
            queue.get_nowait()
        queue.put_nowait(payload)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.client_buffer)
        self._clients.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._clients.discard(queue)

    @property
    def client_count(self) -> int:
        return len(self._clients)
