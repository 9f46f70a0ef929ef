"""Event types shared by transports and the pipeline."""

from autoresponder.bus.events import (
    ContentKind,
    InboundEvent,
    MessageContent,
    PresenceState,
    sender_key_for,
)

__all__ = [
    "ContentKind",
    "InboundEvent",
    "MessageContent",
    "PresenceState",
    "sender_key_for",
]
