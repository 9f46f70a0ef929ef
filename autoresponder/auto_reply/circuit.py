"""
Circuit breaker for upstream AI services.

Policy: there is no half-open probe state. Once the cooldown has elapsed
since the last failure, the first allow() closes the circuit optimistically.
The failure counter is left at its value, so one more failure reopens the
circuit immediately. A success resets the counter to zero.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from autoresponder.config.schema import BreakerPolicy, CircuitBreakerConfig


class CircuitState(str, Enum):
    """Breaker states."""
    CLOSED = "closed"
    OPEN = "open"


@dataclass
class BreakerState:
    """Failure tracking for one upstream service."""
    service: str
    consecutive_failures: int = 0
    last_failure_at: float = 0.0
    open: bool = False
    total_failures: int = 0
    total_successes: int = 0

    @property
    def state(self) -> CircuitState:
        return CircuitState.OPEN if self.open else CircuitState.CLOSED


class CircuitBreaker:
    """
    Per-service circuit breaker shared by every caller of a service.

    Thresholds and cooldowns come from CircuitBreakerConfig and may differ
    per named service.
    """

    def __init__(self, config: CircuitBreakerConfig | None = None):
        self.config = config or CircuitBreakerConfig()
        self._states: dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def _get_state(self, service: str) -> BreakerState:
        """Get or create the state for a service. Caller holds the lock."""
        state = self._states.get(service)
        if state is None:
            state = BreakerState(service=service)
            self._states[service] = state
        return state

    def _policy(self, service: str) -> BreakerPolicy:
        return self.config.policy_for(service)

    def allow(self, service: str, now: float | None = None) -> bool:
        """
        Check whether a call to the service may proceed.

        Closes an open circuit once its cooldown has elapsed.
        """
        now = time.time() if now is None else now
        with self._lock:
            state = self._get_state(service)
            if not state.open:
                return True

            if now - state.last_failure_at >= self._policy(service).cooldown_seconds:
                state.open = False
                logger.info(f"Circuit closed for '{service}' after cooldown")
                return True

            return False

    def record_success(self, service: str) -> None:
        """Record a successful call, resetting the failure count."""
        with self._lock:
            state = self._get_state(service)
            state.total_successes += 1
            state.consecutive_failures = 0
            if state.open:
                logger.info(f"Circuit closed for '{service}' after success")
                state.open = False

    def record_failure(self, service: str, now: float | None = None) -> bool:
        """
        Record a failed call.

        Returns:
            True if this failure left the circuit open.
        """
        now = time.time() if now is None else now
        with self._lock:
            state = self._get_state(service)
            state.consecutive_failures += 1
            state.total_failures += 1
            state.last_failure_at = now

            threshold = self._policy(service).threshold
            if state.consecutive_failures >= threshold:
                if not state.open:
                    logger.warning(
                        f"Circuit opened for '{service}' after "
                        f"{state.consecutive_failures} consecutive failures"
                    )
                state.open = True
            return state.open

    def is_open(self, service: str, now: float | None = None) -> bool:
        """Read-only check that does not close an expired circuit."""
        now = time.time() if now is None else now
        with self._lock:
            state = self._states.get(service)
            if state is None or not state.open:
                return False
            return now - state.last_failure_at < self._policy(service).cooldown_seconds

    def reset(self, service: str) -> None:
        """Forget all failures for a service."""
        with self._lock:
            self._states.pop(service, None)

    def get_states(self) -> dict[str, dict[str, Any]]:
        """Get breaker state per service for the admin surface."""
        with self._lock:
            return {
                name: {
                    "state": state.state.value,
                    "consecutive_failures": state.consecutive_failures,
                    "last_failure_at": state.last_failure_at or None,
                    "total_failures": state.total_failures,
                    "total_successes": state.total_successes,
                    "threshold": self._policy(name).threshold,
                    "cooldown_seconds": self._policy(name).cooldown_seconds,
                }
                for name, state in self._states.items()
            }
