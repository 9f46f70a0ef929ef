"""
Contact notifications for replies that hand a client over to someone else.

When a delivered reply contains a WhatsApp click-to-chat link, the linked
number receives a summary of the conversation and the client's details
after a short delay.
"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from autoresponder.auto_reply.history import ChatHistory
from autoresponder.bus.events import InboundEvent, detect_whatsapp_links
from autoresponder.config.schema import NotificationConfig

if TYPE_CHECKING:
    from autoresponder.channels.base import BaseTransport

ROLE_LABELS = {"user": "Client", "assistant": "Assistant"}


class ContactNotifier:
    """
    Sends delayed contact summaries to numbers linked in replies.

    One notification per (target, chat) is pending at a time; a repeat link
    while one is waiting is ignored.
    """

    def __init__(
        self,
        transport: "BaseTransport",
        history: ChatHistory,
        config: NotificationConfig | None = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.transport = transport
        self.history = history
        self.config = config or NotificationConfig()
        self.now = now
        self._pending: dict[tuple[str, str], asyncio.Task] = {}
        self._sent = 0
        self._failed = 0

    def schedule(self, event: InboundEvent, reply: str) -> list[str]:
        """
        Schedule notifications for links found in a delivered reply.

        Args:
            event: The inbound event that was answered.
            reply: The reply text that was delivered.

        Returns:
            Chat ids of the contacts that will be notified.
        """
        if not self.config.enabled:
            return []

        scheduled = []
        for link in detect_whatsapp_links(reply):
            target = link.chat_id
            key = (target, event.chat_id)
            if link.formatted_phone == event.sender_key or key in self._pending:
                continue
            try:
                text = self.build_message(event)
            except (KeyError, IndexError, ValueError) as e:
                logger.error(f"Invalid notification format: {e}")
                return scheduled
            self._pending[key] = asyncio.create_task(self._send_later(key, text))
            scheduled.append(target)
            logger.info(f"Contact {link.formatted_phone} will be notified about {event.sender_key}")
        return scheduled

    def build_message(self, event: InboundEvent) -> str:
        """Render the notification text for a client conversation."""
        entries = self.history.get(event.chat_id)
        recent = entries[-self.config.summary_messages:] if self.config.summary_messages > 0 else ()
        summary = "\n".join(
            f"{ROLE_LABELS.get(entry.role, entry.role)}: {entry.content}" for entry in recent
        )
        return self.config.format.format(
            conversation_summary=summary or "-",
            client_name=event.push_name or "Unknown",
            client_phone=event.sender_key,
            timestamp=self.now().strftime("%Y-%m-%d %H:%M"),
        )

    async def _send_later(self, key: tuple[str, str], text: str) -> None:
        target = key[0]
        try:
            await asyncio.sleep(self.config.delay_seconds)
            await self.transport.send(target, text)
            self._sent += 1
            logger.info(f"Contact notification sent to {target}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failed += 1
            logger.error(f"Failed to notify contact {target}: {e}")
        finally:
            self._pending.pop(key, None)

    async def wait(self) -> None:
        """Wait for every pending notification to finish."""
        if self._pending:
            await asyncio.gather(*self._pending.values(), return_exceptions=True)

    def cancel_all(self) -> int:
        """Cancel pending notifications. Returns how many were cancelled."""
        tasks = [task for task in self._pending.values() if not task.done()]
        for task in tasks:
            task.cancel()
        self._pending.clear()
        return len(tasks)

    def get_stats(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "pending": len(self._pending),
            "sent": self._sent,
            "failed": self._failed,
        }
