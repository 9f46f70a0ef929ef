"""
Reply pipeline for autoresponder.

Takes one inbound event through:
- Self-echo filtering
- Per-sender rate limiting
- Media normalization (transcription / image description)
- Loop detection
- Transcript bookkeeping
- Breaker-guarded AI generation with failover
- Humanized delivery
- Contact notifications for WhatsApp links in the reply
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from autoresponder.auto_reply.errors import (
    AdmissionRejected,
    DegradedInput,
    UpstreamUnavailable,
)
from autoresponder.auto_reply.history import HistoryEntry
from autoresponder.auto_reply.sender import DeliveryOptions, DeliveryReport, HumanizedSender
from autoresponder.auto_reply.state import PipelineState
from autoresponder.bus.events import ContentKind, InboundEvent, sender_key_for

if TYPE_CHECKING:
    from autoresponder.auto_reply.notify import ContactNotifier
    from autoresponder.providers.base import AIBackend
    from autoresponder.media import MediaServices


# Primary call plus one retry against the next allowed service
MAX_ATTEMPTS = 2


class PipelineStatus(str, Enum):
    """Terminal states of a processed event."""
    DONE = "done"
    DROPPED = "dropped"
    FAILED = "failed"


class DropReason(str, Enum):
    """Why an event was dropped."""
    SELF_ECHO = "self-echo"
    RATE_LIMITED = "rate-limited"
    EMPTY = "empty"
    LOOP = "loop"
    SERVICE_UNAVAILABLE = "service-unavailable"


@dataclass
class PipelineOutcome:
    """Result of processing one inbound event."""
    status: PipelineStatus
    reason: str | None = None
    text: str = ""  # Normalized inbound text
    reply: str | None = None
    service: str | None = None
    delivery: DeliveryReport | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "text": self.text,
            "reply": self.reply,
            "service": self.service,
            "delivery": self.delivery.to_dict() if self.delivery else None,
        }


class _NoServiceAllowed(Exception):
    """Every configured service is behind an open breaker."""


class ResponsePipeline:
    """
    Turns an inbound event into at most one AI reply.

    Per-key state lives in the injected PipelineState. process() never
    raises; every failure maps onto a PipelineOutcome.

    Admission and loop checks use the local clock at processing time;
    the transport timestamp (received_at) is metadata only.
    """

    def __init__(
        self,
        state: PipelineState,
        sender: HumanizedSender,
        backends: list["AIBackend"],
        media: "MediaServices | None" = None,
        notifier: "ContactNotifier | None" = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.sender = sender
        self.backends = backends
        self.media = media
        self.notifier = notifier
        self.clock = clock

    @property
    def config(self):
        return self.state.config

    def own_sender_keys(self) -> set[str]:
        """Sender keys that identify this account."""
        keys = set()
        for number in (self.config.responder.self_number, self.sender.transport.phone_number):
            if number:
                keys.add(sender_key_for(number))
        return keys

    async def process(self, event: InboundEvent) -> PipelineOutcome:
        """
        Process a single inbound event.

        Args:
            event: Decoded inbound event.

        Returns:
            The terminal outcome.
        """
        stats = self.state.stats
        stats.message_count += 1
        try:
            outcome = await self._run(event)
        except AdmissionRejected as e:
            logger.warning(str(e))
            outcome = PipelineOutcome(status=PipelineStatus.DROPPED, reason=e.reason)
        except Exception as e:
            logger.exception(f"Unexpected error processing {event.message_id or event.chat_id}: {e}")
            outcome = PipelineOutcome(status=PipelineStatus.FAILED, reason="internal-error")

        if outcome.status == PipelineStatus.DONE:
            stats.done_count += 1
        elif outcome.status == PipelineStatus.DROPPED:
            stats.record_drop(outcome.reason or "unknown")
        else:
            stats.failed_count += 1
            stats.error_count += 1
        if outcome.delivery is not None and outcome.delivery.errors:
            stats.error_count += 1
        return outcome

    async def _run(self, event: InboundEvent) -> PipelineOutcome:
        state = self.state
        responder = self.config.responder
        sender_key = event.sender_key

        if event.from_me or sender_key in self.own_sender_keys():
            logger.debug(f"Ignoring own message in {event.chat_id}")
            return PipelineOutcome(status=PipelineStatus.DROPPED, reason=DropReason.SELF_ECHO.value)

        if not state.rate_limiter.admit(sender_key, now=self.clock()):
            raise AdmissionRejected(DropReason.RATE_LIMITED.value, sender_key)

        text = await self._normalize(event)
        if not text:
            logger.debug(f"Empty message from {sender_key}, nothing to answer")
            return PipelineOutcome(status=PipelineStatus.DROPPED, reason=DropReason.EMPTY.value)

        if state.loop_detector.is_loop(sender_key, text, now=self.clock()):
            raise AdmissionRejected(DropReason.LOOP.value, sender_key)

        logger.info(f"Message from {event.push_name or sender_key}: {text[:80]}")

        context = state.history.get(event.chat_id)
        state.history.append(event.chat_id, "user", text)

        opts = DeliveryOptions(
            ephemeral=event.is_ephemeral and responder.ephemeral_message_handling,
            audio=event.content.kind == ContentKind.AUDIO and responder.audio_responses,
        )

        try:
            reply, service = await self._generate(context, text)
        except _NoServiceAllowed:
            logger.warning(f"All AI services unavailable, sending fallback to {sender_key}")
            delivery = await self.sender.deliver(
                event.chat_id,
                responder.fallback_message,
                DeliveryOptions(ephemeral=opts.ephemeral),
            )
            return PipelineOutcome(
                status=PipelineStatus.DROPPED,
                reason=DropReason.SERVICE_UNAVAILABLE.value,
                text=text,
                delivery=delivery,
            )
        except UpstreamUnavailable as e:
            logger.error(f"AI generation failed for {event.chat_id}: {e}")
            delivery = await self.sender.deliver(
                event.chat_id,
                responder.fallback_message,
                DeliveryOptions(ephemeral=opts.ephemeral),
            )
            return PipelineOutcome(
                status=PipelineStatus.FAILED,
                reason="upstream-failed",
                text=text,
                service=e.service,
                delivery=delivery,
            )

        state.history.append(event.chat_id, "assistant", reply)
        delivery = await self.sender.deliver(event.chat_id, reply, opts)
        logger.info(
            f"Replied to {event.chat_id} via {service} "
            f"({delivery.units_sent}/{delivery.units_total} sent)"
        )
        if self.notifier and not delivery.cancelled:
            self.notifier.schedule(event, reply)
        return PipelineOutcome(
            status=PipelineStatus.DONE,
            text=text,
            reply=reply,
            service=service,
            delivery=delivery,
        )

    async def _normalize(self, event: InboundEvent) -> str:
        """Reduce content to text, substituting placeholders for failed media."""
        content = event.content
        responder = self.config.responder

        if content.kind == ContentKind.AUDIO:
            try:
                return await self._transcribe(content.data, content.mime_type)
            except Exception as e:
                logger.warning(f"{DegradedInput('audio', str(e))}; using placeholder")
                return responder.audio_placeholder

        if content.kind == ContentKind.IMAGE:
            try:
                description = await self._describe(content.data, content.mime_type)
                text = f"{responder.image_prefix} {description}"
            except Exception as e:
                logger.warning(f"{DegradedInput('image', str(e))}; using placeholder")
                text = responder.image_placeholder
            caption = content.text.strip()
            return f"{text}\n{caption}" if caption else text

        return content.text.strip()

    async def _transcribe(self, data: bytes | None, mime_type: str) -> str:
        transcriber = self.media.transcriber if self.media else None
        if transcriber is None or not data:
            raise DegradedInput("audio", "transcription unavailable")
        text = (await transcriber.transcribe(data, mime_type or "audio/ogg")).strip()
        if not text:
            raise DegradedInput("audio", "empty transcription")
        return text

    async def _describe(self, data: bytes | None, mime_type: str) -> str:
        describer = self.media.describer if self.media else None
        if describer is None or not data:
            raise DegradedInput("image", "description unavailable")
        description = (await describer.describe(data, mime_type or "image/jpeg")).strip()
        if not description:
            raise DegradedInput("image", "empty description")
        return description

    async def _generate(
        self,
        context: tuple[HistoryEntry, ...],
        message: str,
    ) -> tuple[str, str]:
        """
        Call backends in failover order behind their circuit breakers.

        Returns:
            (reply, service name).

        Raises:
            _NoServiceAllowed: If every breaker is open.
            UpstreamUnavailable: If every attempted call failed.
        """
        breaker = self.state.circuit_breaker
        timeout = self.config.ai.request_timeout
        system_prompt = self.config.responder.system_prompt

        attempts = 0
        last_error: UpstreamUnavailable | None = None

        for backend in self.backends:
            if attempts >= MAX_ATTEMPTS:
                break
            if not breaker.allow(backend.name):
                logger.warning(str(UpstreamUnavailable(backend.name, "circuit open")))
                continue

            attempts += 1
            try:
                reply = await asyncio.wait_for(
                    backend.complete(system_prompt, context, message),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                breaker.record_failure(backend.name)
                last_error = UpstreamUnavailable(backend.name, f"timed out after {timeout}s")
                logger.warning(str(last_error))
                continue
            except Exception as e:
                breaker.record_failure(backend.name)
                last_error = UpstreamUnavailable(backend.name, str(e))
                logger.warning(str(last_error))
                continue

            breaker.record_success(backend.name)
            return reply, backend.name

        if last_error is None:
            raise _NoServiceAllowed()
        raise last_error

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline and delivery statistics."""
        return {
            **self.state.get_stats(),
            "services": [backend.name for backend in self.backends],
            "delivery": self.sender.get_stats(),
        }
