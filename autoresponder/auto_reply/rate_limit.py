"""
Per-sender sliding window rate limiting.

Each sender keeps the timestamps of its admitted messages inside the
trailing window, sorted ascending even when callers pass out-of-order
times. Old entries are pruned lazily on every check.
"""

import bisect
import time
from typing import Any

from loguru import logger

from autoresponder.auto_reply.locks import KeyedLocks
from autoresponder.config.schema import RateLimitConfig


class RateLimiter:
    """
    Sliding window admission control keyed by SenderKey.

    Rejections are not recorded, so a sender that keeps hammering does not
    extend its own penalty.
    """

    def __init__(self, config: RateLimitConfig | None = None):
        self.config = config or RateLimitConfig()
        self._windows: dict[str, list[float]] = {}  # Sorted ascending
        self._locks = KeyedLocks()

        # Stats
        self._total_admitted = 0
        self._total_rejected = 0

    def admit(self, sender_key: str, now: float | None = None) -> bool:
        """
        Check and record a message from a sender.

        Args:
            sender_key: Sender partition key.
            now: Current time in seconds (defaults to wall clock).

        Returns:
            True if admitted, False if the sender is over the limit.
        """
        now = time.time() if now is None else now
        cutoff = now - self.config.window_seconds

        with self._locks.hold(sender_key):
            window = self._windows.setdefault(sender_key, [])
            del window[:bisect.bisect_left(window, cutoff)]

            if len(window) >= self.config.max_messages:
                self._total_rejected += 1
                logger.debug(f"Rate limit exceeded for {sender_key}")
                return False

            bisect.insort(window, now)
            self._total_admitted += 1
            return True

    def count(self, sender_key: str, now: float | None = None) -> int:
        """Number of admits still inside the window for a sender."""
        now = time.time() if now is None else now
        cutoff = now - self.config.window_seconds
        with self._locks.hold(sender_key):
            window = self._windows.get(sender_key)
            if not window:
                return 0
            return sum(1 for ts in window if ts >= cutoff)

    def reset(self, sender_key: str) -> None:
        """Clear rate limit state for a sender."""
        with self._locks.hold(sender_key):
            self._windows.pop(sender_key, None)
        self._locks.discard(sender_key)

    def evict_idle(self, now: float | None = None, max_idle: float | None = None) -> int:
        """
        Drop senders whose newest admit is older than max_idle.

        Returns:
            Number of senders evicted.
        """
        now = time.time() if now is None else now
        max_idle = self.config.window_seconds if max_idle is None else max(
            max_idle, self.config.window_seconds
        )
        evicted = 0
        for sender_key in list(self._windows):
            with self._locks.hold(sender_key):
                window = self._windows.get(sender_key)
                if window and now - window[-1] < max_idle:
                    continue
                self._windows.pop(sender_key, None)
            self._locks.discard(sender_key)
            evicted += 1
        return evicted

    def get_stats(self) -> dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "max_messages": self.config.max_messages,
            "window_seconds": self.config.window_seconds,
            "tracked_senders": len(self._windows),
            "total_admitted": self._total_admitted,
            "total_rejected": self._total_rejected,
        }
