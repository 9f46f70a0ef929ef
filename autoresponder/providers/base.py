"""Base interface for AI completion backends."""

from abc import ABC, abstractmethod
from typing import Sequence

from autoresponder.auto_reply.history import HistoryEntry


class AIBackend(ABC):
    """
    A named upstream AI service.

    The name partitions circuit breaker state, so two backends that share a
    name share a breaker.
    """

    name: str = "base"

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        history: Sequence[HistoryEntry],
        message: str,
    ) -> str:
        """
        Generate a reply.

        Args:
            system_prompt: Persona / instructions.
            history: Prior turns, oldest first.
            message: The current user message.

        Returns:
            Reply text.

        Raises:
            BackendError: If no usable reply was produced.
        """

    async def close(self) -> None:
        """Release resources."""

    @staticmethod
    def build_messages(
        system_prompt: str,
        history: Sequence[HistoryEntry],
        message: str,
    ) -> list[dict[str, str]]:
        """Assemble chat-completion messages: system, history, then the current turn."""
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(entry.to_message() for entry in history)
        messages.append({"role": "user", "content": message})
        return messages
