"""
WhatsApp channel over a bridge process.

The bridge owns the WhatsApp session and speaks JSON frames over a
WebSocket:

Inbound:
    {"type": "message", "message": {...}, "media": "<base64>"}
    {"type": "status", "status": "connected", "phone": "5511..."}
    {"type": "qr", "qr": "..."}
    {"type": "call", "id": "...", "from": "...@s.whatsapp.net", "status": "offer"}

Outbound:
    {"type": "send", "to": ..., "text": ...}
    {"type": "send_audio", "to": ..., "audio": "<base64>", "mimetype": ..., "ptt": true}
    {"type": "presence", "to": ..., "state": "composing" | "paused"}
    {"type": "reject_call", "id": ..., "from": ...}
    {"type": "logout"}
"""

import asyncio
import base64
import binascii
import json
import time
from typing import Any, Awaitable, Callable

import websockets
from loguru import logger

from autoresponder.auto_reply.errors import TransportError
from autoresponder.bus.events import (
    InboundEvent,
    MessageContent,
    PresenceState,
    phone_from_chat_id,
    sender_key_for,
)
from autoresponder.channels.base import BaseTransport, ConnectionState
from autoresponder.config.schema import WhatsAppConfig

QrListener = Callable[[str], Awaitable[None] | None]

CALL_REJECTION_INTERVAL = 60.0  # One rejection message per caller per interval


def _unwrap(message: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Strip ephemeral / view-once wrappers. Returns (inner message, was_ephemeral)."""
    ephemeral = False
    for wrapper in ("ephemeralMessage", "viewOnceMessage", "viewOnceMessageV2"):
        inner = (message.get(wrapper) or {}).get("message")
        if inner:
            ephemeral = ephemeral or wrapper == "ephemeralMessage"
            message = inner
    return message, ephemeral


def _decode_media(encoded: str | None) -> bytes | None:
    if not encoded:
        return None
    try:
        return base64.b64decode(encoded)
    except (binascii.Error, ValueError):
        logger.warning("Invalid base64 media payload from bridge")
        return None


def decode_message_frame(frame: dict[str, Any]) -> InboundEvent | None:
    """
    Decode a bridge message frame into an InboundEvent.

    Args:
        frame: Parsed {"type": "message", ...} frame.

    Returns:
        The event, or None for frames without a chat or with unsupported content.
    """
    raw = frame.get("message") or {}
    key = raw.get("key") or {}
    chat_id = key.get("remoteJid", "")
    if not chat_id or chat_id == "status@broadcast":
        return None

    message, wrapped_ephemeral = _unwrap(raw.get("message") or {})
    is_ephemeral = bool(
        wrapped_ephemeral
        or (raw.get("messageContextInfo") or {}).get("ephemeralExpiration")
        or (message.get("messageContextInfo") or {}).get("ephemeralExpiration")
        or raw.get("ephemeralExpiration")
    )

    if message.get("conversation"):
        content = MessageContent.of_text(message["conversation"])
    elif (message.get("extendedTextMessage") or {}).get("text"):
        content = MessageContent.of_text(message["extendedTextMessage"]["text"])
    elif "audioMessage" in message:
        audio = message["audioMessage"] or {}
        content = MessageContent.of_audio(
            _decode_media(frame.get("media")),
            mime_type=audio.get("mimetype", "audio/ogg"),
        )
    elif "imageMessage" in message:
        image = message["imageMessage"] or {}
        content = MessageContent.of_image(
            _decode_media(frame.get("media")),
            mime_type=image.get("mimetype", "image/jpeg"),
            caption=image.get("caption", ""),
        )
    else:
        logger.debug(f"Unsupported message type from {chat_id}: {list(message)}")
        return None

    # Group messages are partitioned by the group; the participant is metadata
    participant = key.get("participant", "")
    timestamp = raw.get("messageTimestamp")
    try:
        received_at = float(timestamp) if timestamp else time.time()
    except (TypeError, ValueError):
        received_at = time.time()

    return InboundEvent(
        message_id=key.get("id", ""),
        sender_key=sender_key_for(chat_id),
        chat_id=chat_id,
        content=content,
        received_at=received_at,
        is_ephemeral=is_ephemeral,
        from_me=bool(key.get("fromMe")),
        push_name=raw.get("pushName", "") or "",
        metadata={"participant": participant} if participant else {},
    )


class WhatsAppBridgeTransport(BaseTransport):
    """
    WhatsApp transport speaking to a bridge over WebSocket.

    Reconnects with exponential backoff (1s, 2s, 4s ...) after an unexpected
    disconnect, up to `max_reconnect_attempts`; after that it stays
    DISCONNECTED until connect() is called. A logout never reconnects.
    """

    name = "whatsapp"

    def __init__(self, config: WhatsAppConfig):
        super().__init__()
        self.config = config
        self.last_qr: str | None = None

        self._ws: Any = None
        self._running = False
        self._task: asyncio.Task | None = None
        self._reconnect_attempts = 0
        self._qr_listeners: list[QrListener] = []
        self._call_rejections: dict[str, float] = {}

    def on_qr(self, listener: QrListener) -> None:
        """Register a listener for new login QR codes."""
        self._qr_listeners.append(listener)

    async def start(self) -> None:
        """Start the bridge connection loop."""
        if self._task and not self._task.done():
            return
        self._running = True
        self._reconnect_attempts = 0
        self._task = asyncio.create_task(self._run())

    async def connect(self) -> None:
        """Connect on demand (admin action); resets the reconnect budget."""
        if self.is_connected:
            return
        await self.start()

    async def stop(self) -> None:
        """Close the bridge connection."""
        self._running = False
        if self._ws is not None:
            await self._ws.close()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            await self._transition(ConnectionState.DISCONNECTED)

    async def logout(self) -> None:
        """Log the WhatsApp session out; a new QR login is required afterwards."""
        if self._ws is not None:
            try:
                await self._ws.send(json.dumps({"type": "logout"}))
            except Exception as e:
                logger.warning(f"Failed to send logout to bridge: {e}")
        self._running = False
        await self._transition(ConnectionState.LOGGED_OUT)
        await self.stop()
        self.phone_number = None

    async def _run(self) -> None:
        while self._running:
            await self._transition(ConnectionState.CONNECTING)
            try:
                logger.info(f"Connecting to WhatsApp bridge at {self.config.bridge_url}...")
                async with websockets.connect(self.config.bridge_url) as ws:
                    self._ws = ws
                    await self._receive_loop(ws)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"WhatsApp bridge error: {e}")
            finally:
                self._ws = None

            if self.state == ConnectionState.LOGGED_OUT or not self._running:
                break
            await self._transition(ConnectionState.DISCONNECTED)

            self._reconnect_attempts += 1
            if self._reconnect_attempts > self.config.max_reconnect_attempts:
                logger.error(
                    f"WhatsApp bridge unreachable after {self.config.max_reconnect_attempts} "
                    "reconnect attempts, waiting for manual connect"
                )
                self._running = False
                break

            delay = min(2 ** (self._reconnect_attempts - 1), 60)
            logger.info(f"Reconnecting in {delay}s (attempt {self._reconnect_attempts})...")
            await asyncio.sleep(delay)

    async def _receive_loop(self, ws: Any) -> None:
        async for raw in ws:
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON from bridge: {str(raw)[:100]}")
                continue
            await self._handle_frame(frame)
            if self.state == ConnectionState.LOGGED_OUT:
                break

    async def _handle_frame(self, frame: dict[str, Any]) -> None:
        kind = frame.get("type")

        if kind == "message":
            event = decode_message_frame(frame)
            if event is not None:
                await self._handle_event(event)
        elif kind == "status":
            await self._handle_status(frame)
        elif kind == "qr":
            await self._handle_qr(frame.get("qr", ""))
        elif kind == "call":
            await self._handle_call(frame)
        elif kind == "error":
            logger.error(f"WhatsApp bridge error: {frame.get('error')}")
        else:
            logger.debug(f"Ignoring bridge frame type {kind!r}")

    async def _handle_status(self, frame: dict[str, Any]) -> None:
        status = frame.get("status")
        if status == "connected":
            if frame.get("phone"):
                self.phone_number = phone_from_chat_id(frame["phone"]).split(":", 1)[0]
            self.last_qr = None
            self._reconnect_attempts = 0
            await self._transition(ConnectionState.CONNECTED)
        elif status == "logged_out":
            logger.warning("WhatsApp session logged out")
            self.phone_number = None
            await self._transition(ConnectionState.LOGGED_OUT)
        elif status == "disconnected" and self._ws is not None:
            # Let the connection loop apply the reconnect policy
            await self._ws.close()

    async def _handle_qr(self, qr: str) -> None:
        if not qr:
            return
        self.last_qr = qr
        logger.info("New WhatsApp login QR code available")
        for listener in list(self._qr_listeners):
            try:
                result = listener(qr)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"QR listener failed: {e}")

    async def _handle_call(self, frame: dict[str, Any], now: float | None = None) -> None:
        caller = frame.get("from", "")
        if not self.config.reject_calls or frame.get("status", "offer") != "offer" or not caller:
            return

        await self._send_frame({"type": "reject_call", "id": frame.get("id", ""), "from": caller})
        logger.info(f"Rejected call from {phone_from_chat_id(caller)}")

        now = time.time() if now is None else now
        last = self._call_rejections.get(caller)
        if last is not None and now - last < CALL_REJECTION_INTERVAL:
            return
        self._call_rejections = {
            key: at for key, at in self._call_rejections.items()
            if now - at < CALL_REJECTION_INTERVAL
        }
        self._call_rejections[caller] = now
        if self.config.call_rejection_message:
            await self.send(caller, self.config.call_rejection_message)

    async def _send_frame(self, frame: dict[str, Any]) -> None:
        self._require_connected()
        if self._ws is None:
            raise TransportError(f"{self.name} bridge socket is closed")
        await self._ws.send(json.dumps(frame))

    async def send(self, chat_id: str, text: str) -> None:
        """Send a text message."""
        await self._send_frame({"type": "send", "to": chat_id, "text": text})

    async def send_audio(self, chat_id: str, data: bytes, mime_type: str = "audio/mp4") -> None:
        """Send a voice note."""
        await self._send_frame({
            "type": "send_audio",
            "to": chat_id,
            "audio": base64.b64encode(data).decode("ascii"),
            "mimetype": mime_type,
            "ptt": True,
        })

    async def set_presence(self, chat_id: str, state: PresenceState) -> None:
        """Signal composing/paused presence."""
        await self._send_frame({"type": "presence", "to": chat_id, "state": state.value})

    def get_status(self) -> dict[str, Any]:
        """Get transport status including pending QR and reconnect attempts."""
        return {
            **super().get_status(),
            "bridge_url": self.config.bridge_url,
            "qr": self.last_qr,
            "reconnect_attempts": self._reconnect_attempts,
        }
