"""
Feedback loop detection.

Another bot (or our own echo) answering us produces the same text over and
over. Each sender keeps a short log of recent messages; when enough of them
are near-duplicates of the current one, spread over a long enough span, the
sender is blocked for a while.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from autoresponder.auto_reply.locks import KeyedLocks
from autoresponder.config.schema import LoopDetectionConfig


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insert/delete/substitute costs."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the shorter string on the inner loop
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current[j] = min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized similarity in [0, 1]; two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


@dataclass
class LoggedMessage:
    """One entry of a sender's recent message log."""
    content: str
    timestamp: float


@dataclass
class RecentMessageLog:
    """Bounded recent messages for one sender."""
    entries: deque[LoggedMessage]
    blocked_until: float = 0.0
    last_seen: float = field(default_factory=time.time)


class LoopDetector:
    """
    Near-duplicate detector keyed by SenderKey.

    A message is part of a loop when, counting itself, at least `threshold`
    logged messages are similar to it and the oldest of them is at least
    `min_time_span_seconds` old. Shorter bursts are treated as legitimate
    double-sends.
    """

    def __init__(self, config: LoopDetectionConfig | None = None):
        self.config = config or LoopDetectionConfig()
        self._logs: dict[str, RecentMessageLog] = {}
        self._locks = KeyedLocks()
        self._total_loops = 0

    def _get_log(self, sender_key: str, now: float) -> RecentMessageLog:
        log = self._logs.get(sender_key)
        if log is None or log.entries.maxlen != self.config.window_size:
            entries = deque(log.entries if log else (), maxlen=self.config.window_size)
            log = RecentMessageLog(
                entries=entries,
                blocked_until=log.blocked_until if log else 0.0,
                last_seen=now,
            )
            self._logs[sender_key] = log
        return log

    def is_loop(self, sender_key: str, content: str, now: float | None = None) -> bool:
        """
        Evaluate a message and record it in the sender's log.

        Args:
            sender_key: Sender partition key.
            content: Normalized message text.
            now: Current time in seconds (defaults to wall clock).

        Returns:
            True if the sender is looping or still blocked.
        """
        now = time.time() if now is None else now
        content = content.strip()

        with self._locks.hold(sender_key):
            log = self._get_log(sender_key, now)
            try:
                if now < log.blocked_until:
                    return True

                similar = [
                    entry for entry in log.entries
                    if similarity(entry.content, content) >= self.config.similarity_threshold
                ]
                count = len(similar) + 1
                if count < self.config.threshold:
                    return False

                span = now - min((entry.timestamp for entry in similar), default=now)
                if span < self.config.min_time_span_seconds:
                    return False

                log.blocked_until = now + self.config.block_seconds
                self._total_loops += 1
                logger.warning(
                    f"Message loop detected for {sender_key}: {count} similar messages "
                    f"in {span:.0f}s, blocking for {self.config.block_seconds:.0f}s"
                )
                return True
            finally:
                log.entries.append(LoggedMessage(content=content, timestamp=now))
                log.last_seen = now

    def is_blocked(self, sender_key: str, now: float | None = None) -> bool:
        """Check whether a sender is currently blocked."""
        now = time.time() if now is None else now
        log = self._logs.get(sender_key)
        return log is not None and now < log.blocked_until

    def unblock(self, sender_key: str) -> None:
        """Lift a block and forget the sender's recent messages."""
        with self._locks.hold(sender_key):
            self._logs.pop(sender_key, None)
        self._locks.discard(sender_key)

    def evict_idle(self, now: float | None = None, max_idle: float = 3600.0) -> int:
        """
        Drop senders not seen for max_idle seconds and not blocked.

        Returns:
            Number of senders evicted.
        """
        now = time.time() if now is None else now
        evicted = 0
        for sender_key in list(self._logs):
            with self._locks.hold(sender_key):
                log = self._logs.get(sender_key)
                if log and (now - log.last_seen < max_idle or now < log.blocked_until):
                    continue
                self._logs.pop(sender_key, None)
            self._locks.discard(sender_key)
            evicted += 1
        return evicted

    def get_stats(self, now: float | None = None) -> dict[str, Any]:
        """Get loop detector statistics."""
        now = time.time() if now is None else now
        return {
            "tracked_senders": len(self._logs),
            "blocked_senders": sorted(
                key for key, log in list(self._logs.items()) if now < log.blocked_until
            ),
            "total_loops": self._total_loops,
        }
