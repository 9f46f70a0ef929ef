"""
Base transport with an explicit connection state machine.

Transitions:
    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
    CONNECTING -> DISCONNECTED (attempt failed)
    any state -> LOGGED_OUT -> CONNECTING (fresh login)

Listeners registered with on_state_change() run on every transition, which
is where reconnect scheduling and delivery cancellation hang off.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from autoresponder.auto_reply.errors import TransportError
from autoresponder.bus.events import InboundEvent, PresenceState


class ConnectionState(str, Enum):
    """Transport connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.LOGGED_OUT},
    ConnectionState.CONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.LOGGED_OUT,
    },
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED, ConnectionState.LOGGED_OUT},
    ConnectionState.LOGGED_OUT: {ConnectionState.CONNECTING},
}

MessageHandler = Callable[[InboundEvent], Awaitable[Any]]
StateListener = Callable[[ConnectionState, ConnectionState], Awaitable[None] | None]


class BaseTransport(ABC):
    """
    Abstract messaging transport.

    Subclasses implement the I/O; this class owns the connection state
    machine and dispatching of inbound events.
    """

    name: str = "base"

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._message_handler: MessageHandler | None = None
        self._state_listeners: list[StateListener] = []
        self.phone_number: str | None = None  # Own number once logged in

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def set_message_handler(self, handler: MessageHandler) -> None:
        """Set the callback receiving decoded inbound events."""
        self._message_handler = handler

    def on_state_change(self, listener: StateListener) -> None:
        """Register a listener called as listener(old, new) on each transition."""
        self._state_listeners.append(listener)

    async def _transition(self, new_state: ConnectionState) -> None:
        """
        Move to a new state and notify listeners.

        Raises:
            TransportError: If the transition is not allowed.
        """
        old_state = self._state
        if new_state == old_state:
            return
        if new_state not in _TRANSITIONS[old_state]:
            raise TransportError(
                f"{self.name}: invalid transition {old_state.value} -> {new_state.value}"
            )

        self._state = new_state
        logger.info(f"{self.name} connection: {old_state.value} -> {new_state.value}")

        for listener in list(self._state_listeners):
            try:
                result = listener(old_state, new_state)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"{self.name} state listener failed: {e}")

    async def _handle_event(self, event: InboundEvent) -> None:
        """Forward a decoded event to the registered handler."""
        if not self._message_handler:
            logger.debug(f"{self.name}: no message handler, dropping {event.message_id}")
            return
        try:
            await self._message_handler(event)
        except Exception as e:
            logger.error(f"{self.name}: message handler failed for {event.message_id}: {e}")

    def _require_connected(self) -> None:
        if self._state != ConnectionState.CONNECTED:
            raise TransportError(f"{self.name} is {self._state.value}, cannot send")

    @abstractmethod
    async def start(self) -> None:
        """Connect and start receiving events."""

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect and release resources."""

    async def connect(self) -> None:
        """Connect on demand."""
        await self.start()

    async def logout(self) -> None:
        """End the session; a fresh login is needed to reconnect."""
        await self.stop()
        await self._transition(ConnectionState.LOGGED_OUT)

    @abstractmethod
    async def send(self, chat_id: str, text: str) -> None:
        """Send a text message."""

    @abstractmethod
    async def send_audio(self, chat_id: str, data: bytes, mime_type: str = "audio/mp4") -> None:
        """Send a voice note."""

    @abstractmethod
    async def set_presence(self, chat_id: str, state: PresenceState) -> None:
        """Signal composing/paused presence in a chat."""

    def get_status(self) -> dict[str, Any]:
        """Get transport status."""
        return {
            "transport": self.name,
            "state": self._state.value,
            "connected": self.is_connected,
            "connecting": self._state == ConnectionState.CONNECTING,
            "phone_number": self.phone_number,
        }
