"""
Responder lifecycle manager with hot-reload support.

Provides:
- State machine for the responder lifecycle (stopped -> running)
- Wiring of transport, pipeline, sender and dispatcher
- Hot-reload of limits, delays and provider clients without restart
- Periodic eviction of idle per-sender state
"""

import asyncio
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from autoresponder import __version__
from autoresponder.auto_reply.notify import ContactNotifier
from autoresponder.auto_reply.pipeline import ResponsePipeline
from autoresponder.auto_reply.queue import ChatDispatcher
from autoresponder.auto_reply.sender import HumanizedSender
from autoresponder.auto_reply.state import PipelineState
from autoresponder.bus.events import InboundEvent
from autoresponder.channels.base import BaseTransport, ConnectionState
from autoresponder.config.loader import merge_config, persist_config
from autoresponder.media import MediaServices, create_media_services
from autoresponder.providers.litellm_provider import create_backends

if TYPE_CHECKING:
    from autoresponder.config.schema import Config
    from autoresponder.providers.base import AIBackend
    from autoresponder.server.logstream import LogBroadcaster


class ResponderState(Enum):
    """Responder lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class ResponderManager:
    """
    Owns the pipeline state and every component around it.

    Features:
    - Transport disconnect or logout cancels in-flight deliveries
    - apply_config() swaps thresholds into live components, then persists
    - Serialized start/stop/reload with asyncio.Lock
    """

    def __init__(
        self,
        config: "Config",
        transport: BaseTransport | None = None,
        backends: "list[AIBackend] | None" = None,
        media: MediaServices | None = None,
        config_path: Path | None = None,
        broadcaster: "LogBroadcaster | None" = None,
    ):
        self._config = config
        self._config_path = config_path
        self.broadcaster = broadcaster

        if transport is None:
            from autoresponder.channels.whatsapp import WhatsAppBridgeTransport
            transport = WhatsAppBridgeTransport(config.whatsapp)
        self.transport = transport

        self.media = media if media is not None else create_media_services(config)
        self.backends = backends if backends is not None else create_backends(config)
        self.pipeline_state = PipelineState(config)
        self.sender = HumanizedSender(
            transport,
            config.delivery,
            synthesizer=self.media.synthesizer,
        )
        self.notifier = ContactNotifier(
            transport,
            self.pipeline_state.history,
            config.notifications,
        )
        self.pipeline = ResponsePipeline(
            self.pipeline_state,
            self.sender,
            self.backends,
            media=self.media,
            notifier=self.notifier,
        )
        self.dispatcher = ChatDispatcher(self.pipeline.process)

        self.transport.set_message_handler(self._on_message)
        self.transport.on_state_change(self._on_transport_state)
        if hasattr(self.transport, "on_qr"):
            self.transport.on_qr(self._on_qr)

        # State tracking
        self._state = ResponderState.STOPPED
        self._error: str | None = None
        self._started_at: datetime | None = None
        self._sweep_task: asyncio.Task | None = None

        self._lock = asyncio.Lock()

    @property
    def config(self) -> "Config":
        return self._config

    @property
    def state(self) -> ResponderState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ResponderState.RUNNING

    @property
    def error(self) -> str | None:
        return self._error

    async def start(self) -> bool:
        """
        Start the transport and background tasks.

        Returns:
            True if the responder is running.
        """
        async with self._lock:
            if self._state == ResponderState.RUNNING:
                return True
            self._state = ResponderState.STARTING
            self._error = None
            logger.info("Starting responder...")

            try:
                if not self.backends:
                    logger.warning("No AI backend configured - replies will be dropped")
                self.dispatcher = ChatDispatcher(self.pipeline.process)
                if self._config.whatsapp.enabled:
                    await self.transport.start()
                else:
                    logger.info("WhatsApp disabled, transport not started")
                self._sweep_task = asyncio.create_task(self._sweep_loop())

                self._state = ResponderState.RUNNING
                self._started_at = datetime.now()
                logger.info(f"Responder running (services: {[b.name for b in self.backends]})")
                return True
            except Exception as e:
                self._state = ResponderState.ERROR
                self._error = str(e)
                logger.error(f"Responder start failed: {e}")
                return False

    async def stop(self) -> None:
        """Stop the transport and background tasks; state is kept for restart."""
        async with self._lock:
            if self._state in (ResponderState.STOPPED, ResponderState.STOPPING):
                return
            self._state = ResponderState.STOPPING
            logger.info("Stopping responder...")

            if self._sweep_task:
                self._sweep_task.cancel()
                try:
                    await self._sweep_task
                except asyncio.CancelledError:
                    pass
                self._sweep_task = None

            self.sender.cancel_all()
            self.notifier.cancel_all()
            await self.dispatcher.stop()
            try:
                await self.transport.stop()
            except Exception as e:
                logger.error(f"Error stopping transport: {e}")

            self._state = ResponderState.STOPPED
            logger.info("Responder stopped")

    async def shutdown(self) -> None:
        """Stop and release backend and media clients."""
        await self.stop()
        for backend in self.backends:
            await backend.close()
        await self.media.close()

    async def connect(self) -> None:
        """Connect the transport (admin action)."""
        await self.transport.connect()

    async def disconnect(self) -> None:
        """Log the transport out (admin action)."""
        await self.transport.logout()

    async def _on_message(self, event: InboundEvent) -> None:
        self.dispatcher.submit(event)

    async def _on_transport_state(self, old: ConnectionState, new: ConnectionState) -> None:
        if new in (ConnectionState.DISCONNECTED, ConnectionState.LOGGED_OUT):
            cancelled = self.sender.cancel_all()
            if cancelled:
                logger.warning(f"Transport {new.value}: aborted {cancelled} deliveries")
        if self.broadcaster:
            self.broadcaster.publish({
                "event": "connection-status",
                "data": self.transport.get_status(),
            })

    async def _on_qr(self, qr: str) -> None:
        if self.broadcaster:
            self.broadcaster.publish({"event": "qr", "data": qr})

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.retention.sweep_interval_seconds)
            try:
                self.pipeline_state.sweep()
            except Exception as e:
                logger.error(f"Idle state sweep failed: {e}")

    async def apply_config(self, update: dict[str, Any]) -> "Config":
        """
        Merge a partial update and apply it to the running components.

        Args:
            update: Nested dict of changed settings.

        Returns:
            The new configuration.

        Raises:
            pydantic.ValidationError: If the merged config is invalid.
        """
        async with self._lock:
            new_config = merge_config(self._config, update)
            self._config = new_config

            self.pipeline_state.apply_config(new_config)
            self.sender.config = new_config.delivery
            self.notifier.config = new_config.notifications
            if hasattr(self.transport, "config"):
                self.transport.config = new_config.whatsapp

            if "providers" in update or "ai" in update:
                self.backends = create_backends(new_config)
                self.pipeline.backends = self.backends
                logger.info(f"AI services reloaded: {[b.name for b in self.backends]}")

            if "providers" in update or "media" in update:
                await self.media.close()
                self.media = create_media_services(new_config)
                self.pipeline.media = self.media
                self.sender.synthesizer = self.media.synthesizer
                logger.info("Media services reloaded")

            logger.info(f"Config updated: {', '.join(sorted(update)) or 'no changes'}")

        try:
            await persist_config(new_config, self._config_path)
        except Exception as e:
            logger.error(f"Failed to persist config: {e}")
        return new_config

    def get_status(self) -> dict[str, Any]:
        """Get comprehensive status information."""
        return {
            "state": self._state.value,
            "is_running": self.is_running,
            "error": self._error,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "transport": self.transport.get_status(),
            "services": [backend.name for backend in self.backends],
            "media": {
                "transcription": self.media.transcriber is not None,
                "vision": self.media.describer is not None,
                "speech": self.media.synthesizer is not None,
            },
            "version": __version__,
        }

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline, delivery and dispatcher statistics."""
        return {
            **self.pipeline.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
            "notifications": self.notifier.get_stats(),
        }
