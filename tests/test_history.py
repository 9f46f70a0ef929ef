"""
Tests for rolling chat transcripts.

Tests:
- FIFO bound
- Snapshot isolation
- Role validation and clearing
"""

import pytest

from autoresponder.auto_reply.history import ChatHistory
from autoresponder.config.schema import HistoryConfig


class TestChatHistory:
    """Test transcript bookkeeping."""

    def test_bounded_fifo(self):
        """Twenty-five appends keep the last twenty in order."""
        history = ChatHistory()
        for i in range(25):
            history.append("chat", "user", f"m{i}")
        entries = history.get("chat")
        assert len(entries) == 20
        assert [e.content for e in entries] == [f"m{i}" for i in range(5, 25)]

    def test_snapshot_is_immutable(self):
        history = ChatHistory()
        history.append("chat", "user", "first")
        snapshot = history.get("chat")
        history.append("chat", "assistant", "second")
        assert len(snapshot) == 1
        assert isinstance(snapshot, tuple)

    def test_unknown_chat_is_empty(self):
        assert ChatHistory().get("nobody") == ()

    def test_invalid_role(self):
        with pytest.raises(ValueError):
            ChatHistory().append("chat", "system", "nope")

    def test_to_messages(self):
        history = ChatHistory()
        history.append("chat", "user", "hi")
        history.append("chat", "assistant", "hello")
        assert history.to_messages("chat") == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_clear(self):
        history = ChatHistory()
        history.append("chat", "user", "hi")
        history.clear("chat")
        assert "chat" not in history
        assert history.get("chat") == ()

    def test_resize_keeps_newest(self):
        history = ChatHistory(HistoryConfig(max_length=5))
        for i in range(5):
            history.append("chat", "user", f"m{i}")
        history.config = HistoryConfig(max_length=2)
        history.append("chat", "user", "m5")
        assert [e.content for e in history.get("chat")] == ["m4", "m5"]

    def test_list_chats(self):
        history = ChatHistory()
        history.append("a", "user", "hi")
        history.append("b", "user", "hi")
        history.append("b", "assistant", "hello")
        counts = {c["chat_id"]: c["message_count"] for c in history.list_chats()}
        assert counts == {"a": 1, "b": 2}
