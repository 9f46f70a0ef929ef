"""
Process-wide pipeline state.

All per-sender and per-chat maps live here instead of at module level. The
state is built once at startup from the config, injected into the pipeline,
reconfigured in place on hot reload, and discarded at shutdown.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from autoresponder.auto_reply.circuit import CircuitBreaker
from autoresponder.auto_reply.history import ChatHistory
from autoresponder.auto_reply.loop_detect import LoopDetector
from autoresponder.auto_reply.rate_limit import RateLimiter
from autoresponder.config.schema import Config


@dataclass
class PipelineStats:
    """Counters exposed on the admin surface."""
    message_count: int = 0
    error_count: int = 0
    done_count: int = 0
    failed_count: int = 0
    dropped: dict[str, int] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)

    def record_drop(self, reason: str) -> None:
        self.dropped[reason] = self.dropped.get(reason, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_count": self.message_count,
            "error_count": self.error_count,
            "done_count": self.done_count,
            "failed_count": self.failed_count,
            "dropped": dict(self.dropped),
            "uptime_seconds": round(time.time() - self.started_at, 1),
        }


class PipelineState:
    """Owned container for admission, loop, breaker and transcript state."""

    def __init__(self, config: Config):
        self.config = config
        self.rate_limiter = RateLimiter(config.rate_limit)
        self.circuit_breaker = CircuitBreaker(config.circuit_breaker)
        self.loop_detector = LoopDetector(config.loop_detection)
        self.history = ChatHistory(config.history)
        self.stats = PipelineStats()

    def apply_config(self, config: Config) -> None:
        """
        Swap in new thresholds without losing accumulated state.

        Existing windows, logs and transcripts are kept; new limits apply
        from the next check (bounded logs resize on next write).
        """
        self.config = config
        self.rate_limiter.config = config.rate_limit
        self.circuit_breaker.config = config.circuit_breaker
        self.loop_detector.config = config.loop_detection
        self.history.config = config.history
        logger.info("Pipeline limits reloaded")

    def sweep(self, now: float | None = None) -> dict[str, int]:
        """
        Evict per-key state idle for longer than the retention period.

        Returns:
            Evicted key counts per component.
        """
        now = time.time() if now is None else now
        max_idle = self.config.retention.idle_seconds
        evicted = {
            "rate_limiter": self.rate_limiter.evict_idle(now, max_idle),
            "loop_detector": self.loop_detector.evict_idle(now, max_idle),
            "history": self.history.evict_idle(now, max_idle),
        }
        if any(evicted.values()):
            logger.debug(f"Evicted idle state: {evicted}")
        return evicted

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of every counter and breaker state."""
        return {
            **self.stats.to_dict(),
            "breakers": self.circuit_breaker.get_states(),
            "rate_limiter": self.rate_limiter.get_stats(),
            "loop_detector": self.loop_detector.get_stats(),
            "chats": len(self.history),
        }
