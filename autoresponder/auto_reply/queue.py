"""
Per-chat message queues for autoresponder.

Provides:
- Message id deduplication (bounded LRU)
- Arrival-order processing within a chat
- Concurrency across chats (one worker task per busy chat)
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger

from autoresponder.bus.events import InboundEvent


@dataclass
class DispatchConfig:
    """Configuration for the chat dispatcher."""
    dedupe_capacity: int = 5000  # Message ids remembered for deduplication
    max_queue_size: int = 100  # Per chat


EventHandler = Callable[[InboundEvent], Awaitable[Any]]


class ChatDispatcher:
    """
    Routes inbound events to per-chat FIFO queues.

    Workers are started lazily on the first event for a chat and exit once
    the chat's queue drains, so idle chats hold no tasks or queues.
    """

    def __init__(self, handler: EventHandler, config: DispatchConfig | None = None):
        self.handler = handler
        self.config = config or DispatchConfig()

        self._queues: dict[str, asyncio.Queue[InboundEvent]] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._running = True

        # Stats
        self._total_received = 0
        self._total_duplicates = 0
        self._total_dropped = 0
        self._total_processed = 0
        self._error_count = 0

    def _is_duplicate(self, message_id: str) -> bool:
        if not message_id:
            return False
        if message_id in self._seen:
            self._seen.move_to_end(message_id)
            return True
        self._seen[message_id] = None
        while len(self._seen) > self.config.dedupe_capacity:
            self._seen.popitem(last=False)
        return False

    def submit(self, event: InboundEvent) -> bool:
        """
        Queue an event for processing.

        Args:
            event: Decoded inbound event.

        Returns:
            True if queued, False if dropped (duplicate, full or stopped).
        """
        if not self._running:
            return False
        self._total_received += 1

        if self._is_duplicate(event.message_id):
            self._total_duplicates += 1
            logger.debug(f"Duplicate message {event.message_id} ignored")
            return False

        queue = self._queues.get(event.chat_id)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.config.max_queue_size)
            self._queues[event.chat_id] = queue

        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            self._total_dropped += 1
            logger.warning(f"Queue full for {event.chat_id}, dropping {event.message_id}")
            return False

        if event.chat_id not in self._workers:
            self._workers[event.chat_id] = asyncio.create_task(self._worker(event.chat_id))
        return True

    async def _worker(self, chat_id: str) -> None:
        queue = self._queues[chat_id]
        try:
            while True:
                event = queue.get_nowait() if not queue.empty() else None
                if event is None:
                    break
                try:
                    await self.handler(event)
                    self._total_processed += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._error_count += 1
                    logger.error(f"Dispatcher error in {chat_id}: {e}")
        finally:
            # No await between the empty check and removal, so no event is lost
            self._workers.pop(chat_id, None)
            if queue.empty():
                self._queues.pop(chat_id, None)

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def stop(self) -> None:
        """Stop accepting events and cancel running workers."""
        self._running = False
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._queues.clear()
        logger.info("Chat dispatcher stopped")

    @property
    def active_chats(self) -> int:
        return len(self._workers)

    def get_stats(self) -> dict[str, Any]:
        """Get dispatcher statistics."""
        return {
            "active_chats": self.active_chats,
            "pending": sum(q.qsize() for q in self._queues.values()),
            "total_received": self._total_received,
            "total_duplicates": self._total_duplicates,
            "total_dropped": self._total_dropped,
            "total_processed": self._total_processed,
            "error_count": self._error_count,
        }
