"""Bounded rolling transcript per chat, used as AI context."""

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Literal

from autoresponder.auto_reply.locks import KeyedLocks
from autoresponder.config.schema import HistoryConfig

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class HistoryEntry:
    """One transcript turn."""
    role: Role
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatHistory:
    """
    FIFO transcript bounded to `max_length` turns per chat.

    get() returns an immutable snapshot; later appends are never visible
    through a previously returned sequence.
    """

    def __init__(self, config: HistoryConfig | None = None):
        self.config = config or HistoryConfig()
        self._transcripts: dict[str, deque[HistoryEntry]] = {}
        self._last_activity: dict[str, float] = {}
        self._locks = KeyedLocks()

    def append(self, chat_id: str, role: Role, content: str) -> None:
        """Append a turn, dropping the oldest once full."""
        if role not in ("user", "assistant"):
            raise ValueError(f"Invalid role: {role}")
        with self._locks.hold(chat_id):
            transcript = self._transcripts.get(chat_id)
            if transcript is None or transcript.maxlen != self.config.max_length:
                transcript = deque(transcript or (), maxlen=self.config.max_length)
                self._transcripts[chat_id] = transcript
            transcript.append(HistoryEntry(role=role, content=content))
            self._last_activity[chat_id] = time.time()

    def get(self, chat_id: str) -> tuple[HistoryEntry, ...]:
        """Get a snapshot of a chat's transcript, oldest first."""
        with self._locks.hold(chat_id):
            transcript = self._transcripts.get(chat_id)
            return tuple(transcript) if transcript else ()

    def to_messages(self, chat_id: str) -> list[dict[str, str]]:
        """Get the transcript in chat-completion message format."""
        return [entry.to_message() for entry in self.get(chat_id)]

    def clear(self, chat_id: str) -> None:
        """Empty a chat's transcript."""
        with self._locks.hold(chat_id):
            self._transcripts.pop(chat_id, None)
            self._last_activity.pop(chat_id, None)

    def list_chats(self) -> list[dict[str, Any]]:
        """Summaries of all tracked chats."""
        return [
            {
                "chat_id": chat_id,
                "message_count": len(transcript),
                "last_activity": self._last_activity.get(chat_id),
            }
            for chat_id, transcript in list(self._transcripts.items())
        ]

    def evict_idle(self, now: float | None = None, max_idle: float = 3600.0) -> int:
        """Drop transcripts idle for max_idle seconds."""
        now = time.time() if now is None else now
        evicted = 0
        for chat_id in list(self._transcripts):
            with self._locks.hold(chat_id):
                if now - self._last_activity.get(chat_id, 0.0) < max_idle:
                    continue
                self._transcripts.pop(chat_id, None)
                self._last_activity.pop(chat_id, None)
            self._locks.discard(chat_id)
            evicted += 1
        return evicted

    def __contains__(self, chat_id: str) -> bool:
        return chat_id in self._transcripts

    def __len__(self) -> int:
        return len(self._transcripts)
