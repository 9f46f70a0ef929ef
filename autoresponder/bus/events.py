"""Event types exchanged between transports and the reply pipeline."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


_JID_SUFFIX = re.compile(r"@s\.whatsapp\.net|@c\.us|@g\.us|@lid")
_NON_DIGIT = re.compile(r"\D")
_WHATSAPP_LINK = re.compile(
    r"https?://(?:wa\.me|api\.whatsapp\.com|chat\.whatsapp\.com)/"
    r"(?:send/?\?phone=)?\+?(\d+)\S*"
)


def phone_from_chat_id(chat_id: str) -> str:
    """Strip WhatsApp JID suffixes from a chat id."""
    return _JID_SUFFIX.sub("", chat_id)


def format_phone_number(phone: str) -> str:
    """
    Normalize a phone number to digits with country code.

    Bare 10 or 11 digit numbers get the Brazilian 55 prefix.
    """
    digits = _NON_DIGIT.sub("", phone)
    if len(digits) in (10, 11) and not digits.startswith("55"):
        return "55" + digits
    return digits


def sender_key_for(chat_id: str) -> str:
    """
    Derive the SenderKey partitioning admission and loop state.

    Group chats and non-numeric ids keep their stripped id as-is.
    """
    stripped = phone_from_chat_id(chat_id).split(":", 1)[0]
    if not chat_id.endswith("@g.us") and stripped.lstrip("+").isdigit():
        return format_phone_number(stripped)
    return stripped


@dataclass(frozen=True)
class WhatsAppLink:
    """A click-to-chat link found in text."""
    link: str
    phone_number: str  # Digits as written in the link
    formatted_phone: str

    @property
    def chat_id(self) -> str:
        return f"{self.formatted_phone}@s.whatsapp.net"


def detect_whatsapp_links(text: str) -> list[WhatsAppLink]:
    """
    Find wa.me and whatsapp.com click-to-chat links carrying a phone number.

    Links to the same number are reported once, in order of appearance.
    """
    links = []
    seen = set()
    for match in _WHATSAPP_LINK.finditer(text):
        phone = match.group(1)
        formatted = format_phone_number(phone)
        if formatted in seen:
            continue
        seen.add(formatted)
        links.append(WhatsAppLink(
            link=match.group(0).rstrip(".,;:!?)]"),
            phone_number=phone,
            formatted_phone=formatted,
        ))
    return links


class ContentKind(str, Enum):
    """Kinds of inbound content."""
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"


@dataclass(frozen=True)
class MessageContent:
    """Raw content of an inbound message."""
    kind: ContentKind
    text: str = ""  # Message text, or image caption
    data: bytes | None = None  # Downloaded media
    mime_type: str = ""

    @classmethod
    def of_text(cls, text: str) -> "MessageContent":
        return cls(kind=ContentKind.TEXT, text=text)

    @classmethod
    def of_audio(cls, data: bytes | None, mime_type: str = "audio/ogg") -> "MessageContent":
        return cls(kind=ContentKind.AUDIO, data=data, mime_type=mime_type)

    @classmethod
    def of_image(
        cls, data: bytes | None, mime_type: str = "image/jpeg", caption: str = ""
    ) -> "MessageContent":
        return cls(kind=ContentKind.IMAGE, text=caption, data=data, mime_type=mime_type)


@dataclass(frozen=True)
class InboundEvent:
    """A decoded message received from the transport."""
    message_id: str
    sender_key: str
    chat_id: str
    content: MessageContent
    received_at: float = field(default_factory=time.time)
    is_ephemeral: bool = False
    from_me: bool = False
    push_name: str = ""
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def text(
        cls,
        chat_id: str,
        text: str,
        message_id: str = "",
        received_at: float | None = None,
        **kwargs: Any,
    ) -> "InboundEvent":
        """Build a text event, deriving the sender key from the chat id."""
        return cls(
            message_id=message_id,
            sender_key=kwargs.pop("sender_key", None) or sender_key_for(chat_id),
            chat_id=chat_id,
            content=MessageContent.of_text(text),
            received_at=received_at if received_at is not None else time.time(),
            **kwargs,
        )


class PresenceState(str, Enum):
    """Chat presence signalled while replying."""
    COMPOSING = "composing"
    PAUSED = "paused"
