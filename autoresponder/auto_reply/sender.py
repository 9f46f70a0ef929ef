"""
Humanized reply delivery.

Replies are split into sentences and sent one at a time with a composing
presence and a typing delay proportional to each sentence's length, so the
bot reads like a person typing. Disappearing-message chats get one plain
message instead.
"""

import asyncio
import random
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger

from autoresponder.auto_reply.errors import DeliveryFailure
from autoresponder.bus.events import PresenceState
from autoresponder.config.schema import DeliveryConfig

if TYPE_CHECKING:
    from autoresponder.channels.base import BaseTransport
    from autoresponder.media.speech import SpeechSynthesizer


_SENTENCE_END = re.compile(r"[.!?]+")


def split_sentences(text: str) -> list[str]:
    """Split on sentence-terminal punctuation, dropping empty fragments."""
    return [part.strip() for part in _SENTENCE_END.split(text) if part.strip()]


@dataclass
class DeliveryUnit:
    """One outbound message and the typing delay before it."""
    text: str
    delay_ms: int = 0


@dataclass
class DeliveryOptions:
    """Per-delivery switches."""
    ephemeral: bool = False  # Send as a single unit, no pacing
    audio: bool = False  # Also send a synthesized voice note


@dataclass
class DeliveryReport:
    """What actually went out."""
    chat_id: str
    units_total: int = 0
    units_sent: int = 0
    cancelled: bool = False
    audio_sent: bool = False
    errors: list[str] = field(default_factory=list)
    first_error: DeliveryFailure | None = None

    @property
    def ok(self) -> bool:
        return not self.errors and not self.cancelled

    def _fail(self, error: DeliveryFailure) -> None:
        self.errors.append(str(error))
        if self.first_error is None:
            self.first_error = error

    def to_dict(self) -> dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "units_total": self.units_total,
            "units_sent": self.units_sent,
            "cancelled": self.cancelled,
            "audio_sent": self.audio_sent,
            "errors": list(self.errors),
        }


class HumanizedSender:
    """
    Paces and chunks outbound text through a transport.

    Each send is attempted once; a failed fragment does not stop the ones
    after it. In-flight deliveries for a chat abort when cancel_chat() or
    cancel_all() is called.
    """

    def __init__(
        self,
        transport: "BaseTransport",
        config: DeliveryConfig | None = None,
        synthesizer: "SpeechSynthesizer | None" = None,
        rng: random.Random | None = None,
    ):
        self.transport = transport
        self.config = config or DeliveryConfig()
        self.synthesizer = synthesizer
        self._rng = rng or random.Random()

        # chat_id -> cancel events of in-flight deliveries
        self._active: dict[str, set[asyncio.Event]] = {}

        # Stats
        self._units_sent = 0
        self._send_failures = 0
        self._cancelled = 0

    def typing_delay_ms(self, fragment: str) -> int:
        """Typing delay for a fragment: length based, jittered, capped."""
        cfg = self.config
        base = max(cfg.min_delay_ms, len(fragment) * cfg.per_char_ms)
        jitter = self._rng.random() * cfg.jitter_ms
        return int(min(base + jitter, cfg.max_delay_ms))

    def plan(self, text: str, ephemeral: bool = False) -> list[DeliveryUnit]:
        """
        Build the outbound plan for a reply.

        Args:
            text: Reply text.
            ephemeral: Collapse to a single unpaced unit.

        Returns:
            Delivery units in send order (empty for blank text).
        """
        text = text.strip()
        if not text:
            return []
        if ephemeral:
            return [DeliveryUnit(text=text)]
        return [
            DeliveryUnit(text=sentence, delay_ms=self.typing_delay_ms(sentence))
            for sentence in split_sentences(text)
        ]

    async def deliver(
        self,
        chat_id: str,
        text: str,
        opts: DeliveryOptions | None = None,
    ) -> DeliveryReport:
        """
        Deliver a reply to a chat.

        Args:
            chat_id: Target chat.
            text: Reply text.
            opts: Delivery options.

        Returns:
            DeliveryReport; failures are reported, never raised.
        """
        opts = opts or DeliveryOptions()
        report = DeliveryReport(chat_id=chat_id)

        units = self.plan(text, ephemeral=opts.ephemeral)
        report.units_total = len(units)
        if not units:
            logger.warning(f"Empty message text for {chat_id}, skipping send")
            return report

        cancel = asyncio.Event()
        self._active.setdefault(chat_id, set()).add(cancel)
        try:
            if opts.ephemeral:
                await self._send_unit(chat_id, units[0].text, report)
                logger.info(f"Ephemeral reply sent to {chat_id} as a single message")
                return report

            for i, unit in enumerate(units):
                if cancel.is_set():
                    break
                await self._presence(chat_id, PresenceState.COMPOSING)
                if await self._wait(cancel, unit.delay_ms):
                    break
                await self._send_unit(chat_id, unit.text, report)
                if i < len(units) - 1 and await self._wait(cancel, self.config.sentence_pause_ms):
                    break

            if cancel.is_set():
                report.cancelled = True
                self._cancelled += 1
                logger.info(
                    f"Delivery to {chat_id} cancelled after "
                    f"{report.units_sent}/{report.units_total} messages"
                )
                return report

            if opts.audio and self.synthesizer:
                await self._send_audio(chat_id, text, report)

            await self._presence(chat_id, PresenceState.PAUSED)
            return report
        finally:
            events = self._active.get(chat_id)
            if events is not None:
                events.discard(cancel)
                if not events:
                    del self._active[chat_id]
            if report.first_error is not None:
                logger.error(
                    f"Delivery to {chat_id}: {len(report.errors)} send(s) failed, "
                    f"first: {report.first_error}"
                )

    async def _send_unit(self, chat_id: str, text: str, report: DeliveryReport) -> None:
        try:
            await self.transport.send(chat_id, text)
            report.units_sent += 1
            self._units_sent += 1
        except Exception as e:
            self._send_failures += 1
            report._fail(DeliveryFailure(chat_id, str(e)))

    async def _send_audio(self, chat_id: str, text: str, report: DeliveryReport) -> None:
        try:
            audio = await self.synthesizer.synthesize(text)
            if audio:
                await self.transport.send_audio(chat_id, audio, self.synthesizer.mime_type)
                report.audio_sent = True
        except Exception as e:
            logger.error(f"Failed to send audio reply to {chat_id}: {e}")

    async def _presence(self, chat_id: str, state: PresenceState) -> None:
        try:
            await self.transport.set_presence(chat_id, state)
        except Exception as e:
            logger.debug(f"Presence update '{state.value}' failed for {chat_id}: {e}")

    @staticmethod
    async def _wait(cancel: asyncio.Event, delay_ms: int) -> bool:
        """Sleep for delay_ms unless cancelled. Returns True if cancelled."""
        if delay_ms <= 0:
            return cancel.is_set()
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay_ms / 1000)
            return True
        except asyncio.TimeoutError:
            return False

    def cancel_chat(self, chat_id: str) -> int:
        """
        Abort in-flight deliveries for a chat.

        Returns:
            Number of deliveries signalled.
        """
        events = self._active.get(chat_id, set())
        for event in events:
            event.set()
        return len(events)

    def cancel_all(self) -> int:
        """Abort every in-flight delivery."""
        count = 0
        for chat_id in list(self._active):
            count += self.cancel_chat(chat_id)
        if count:
            logger.warning(f"Cancelled {count} in-flight deliveries")
        return count

    @property
    def in_flight(self) -> int:
        return sum(len(events) for events in self._active.values())

    def get_stats(self) -> dict[str, Any]:
        """Get delivery statistics."""
        return {
            "in_flight": self.in_flight,
            "units_sent": self._units_sent,
            "send_failures": self._send_failures,
            "cancelled": self._cancelled,
        }
