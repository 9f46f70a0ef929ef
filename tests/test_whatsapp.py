"""
Tests for the WhatsApp bridge transport.

Tests:
- Message frame decoding
- Status frames driving the connection state machine
- Call rejection and its throttle
- Reconnect backoff and logout handling
- Sending requires a connection
"""

import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autoresponder.auto_reply.errors import TransportError
from autoresponder.bus.events import ContentKind, PresenceState
from autoresponder.channels.base import ConnectionState
from autoresponder.channels.whatsapp import WhatsAppBridgeTransport, decode_message_frame
from autoresponder.config.schema import WhatsAppConfig


def message_frame(message, media=None, **raw):
    frame = {
        "type": "message",
        "message": {
            "key": {"remoteJid": "5511999999999@s.whatsapp.net", "id": "ABC", "fromMe": False},
            "message": message,
            "messageTimestamp": 1700000000,
            "pushName": "Ana",
            **raw,
        },
    }
    if media is not None:
        frame["media"] = media
    return frame


def connected_transport(config=None):
    transport = WhatsAppBridgeTransport(config or WhatsAppConfig())
    transport._state = ConnectionState.CONNECTED
    transport._ws = MagicMock()
    transport._ws.send = AsyncMock()
    transport._ws.close = AsyncMock()
    return transport


def sent_frames(transport):
    return [json.loads(call.args[0]) for call in transport._ws.send.call_args_list]


class TestDecodeMessageFrame:
    """Test bridge message decoding."""

    def test_conversation(self):
        event = decode_message_frame(message_frame({"conversation": "oi"}))
        assert event.content.kind == ContentKind.TEXT
        assert event.content.text == "oi"
        assert event.message_id == "ABC"
        assert event.sender_key == "5511999999999"
        assert event.received_at == 1700000000.0
        assert event.push_name == "Ana"
        assert not event.is_ephemeral

    def test_extended_text(self):
        event = decode_message_frame(message_frame({"extendedTextMessage": {"text": "link"}}))
        assert event.content.text == "link"

    def test_audio_with_media(self):
        media = base64.b64encode(b"OGGDATA").decode()
        event = decode_message_frame(message_frame(
            {"audioMessage": {"mimetype": "audio/ogg; codecs=opus"}}, media=media,
        ))
        assert event.content.kind == ContentKind.AUDIO
        assert event.content.data == b"OGGDATA"
        assert event.content.mime_type == "audio/ogg; codecs=opus"

    def test_image_caption(self):
        event = decode_message_frame(message_frame(
            {"imageMessage": {"caption": "look", "mimetype": "image/png"}},
        ))
        assert event.content.kind == ContentKind.IMAGE
        assert event.content.text == "look"
        assert event.content.data is None

    def test_invalid_media_is_ignored(self):
        event = decode_message_frame(message_frame({"audioMessage": {}}, media="abc"))
        assert event.content.data is None

    def test_ephemeral_wrapper(self):
        event = decode_message_frame(message_frame(
            {"ephemeralMessage": {"message": {"conversation": "secret"}}},
        ))
        assert event.is_ephemeral
        assert event.content.text == "secret"

    def test_ephemeral_expiration_marker(self):
        event = decode_message_frame(message_frame(
            {"conversation": "secret"}, messageContextInfo={"ephemeralExpiration": 86400},
        ))
        assert event.is_ephemeral

    def test_status_broadcast_skipped(self):
        frame = message_frame({"conversation": "story"})
        frame["message"]["key"]["remoteJid"] = "status@broadcast"
        assert decode_message_frame(frame) is None

    def test_unsupported_content(self):
        assert decode_message_frame(message_frame({"stickerMessage": {}})) is None

    def test_from_me(self):
        frame = message_frame({"conversation": "mine"})
        frame["message"]["key"]["fromMe"] = True
        assert decode_message_frame(frame).from_me


class TestFrames:
    """Test inbound frame handling."""

    @pytest.mark.asyncio
    async def test_connected_status(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig())
        transitions = []
        transport.on_state_change(lambda old, new: transitions.append(new))
        transport._state = ConnectionState.CONNECTING
        transport.last_qr = "QR"

        await transport._handle_frame({
            "type": "status", "status": "connected", "phone": "5511888888888:3@s.whatsapp.net",
        })

        assert transport.is_connected
        assert transport.phone_number == "5511888888888"
        assert transport.last_qr is None
        assert transitions == [ConnectionState.CONNECTED]

    @pytest.mark.asyncio
    async def test_logged_out_status(self):
        transport = connected_transport()
        await transport._handle_frame({"type": "status", "status": "logged_out"})
        assert transport.state == ConnectionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_qr_notifies_listeners(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig())
        listener = AsyncMock()
        transport.on_qr(listener)
        await transport._handle_frame({"type": "qr", "qr": "2@abc"})
        listener.assert_awaited_once_with("2@abc")
        assert transport.get_status()["qr"] == "2@abc"

    @pytest.mark.asyncio
    async def test_message_forwarded_to_handler(self):
        transport = connected_transport()
        handler = AsyncMock()
        transport.set_message_handler(handler)
        await transport._handle_frame(message_frame({"conversation": "oi"}))
        handler.assert_awaited_once()
        assert handler.await_args.args[0].content.text == "oi"


class TestCalls:
    """Test call rejection."""

    @pytest.mark.asyncio
    async def test_rejects_and_throttles_message(self):
        transport = connected_transport(WhatsAppConfig(
            reject_calls=True, call_rejection_message="No calls, please text.",
        ))
        call = {"type": "call", "id": "c1", "from": "5511999999999@s.whatsapp.net", "status": "offer"}

        await transport._handle_call(call, now=1000.0)
        await transport._handle_call(call, now=1010.0)
        await transport._handle_call(call, now=1070.0)

        kinds = [f["type"] for f in sent_frames(transport)]
        assert kinds.count("reject_call") == 3
        assert kinds.count("send") == 2

    @pytest.mark.asyncio
    async def test_calls_ignored_when_disabled(self):
        transport = connected_transport(WhatsAppConfig(reject_calls=False))
        await transport._handle_call({"from": "x@s.whatsapp.net", "status": "offer"})
        transport._ws.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_throttle_forgets_stale_callers(self):
        transport = connected_transport(WhatsAppConfig(reject_calls=True))

        for i in range(3):
            call = {"id": f"c{i}", "from": f"551190000000{i}@s.whatsapp.net", "status": "offer"}
            await transport._handle_call(call, now=1000.0 + i)
        late = {"id": "late", "from": "5511911111111@s.whatsapp.net", "status": "offer"}
        await transport._handle_call(late, now=1100.0)

        assert list(transport._call_rejections) == ["5511911111111@s.whatsapp.net"]


class TestOutbound:
    """Test outbound frames."""

    @pytest.mark.asyncio
    async def test_send_text(self):
        transport = connected_transport()
        await transport.send("chat@s.whatsapp.net", "hi")
        assert sent_frames(transport) == [{"type": "send", "to": "chat@s.whatsapp.net", "text": "hi"}]

    @pytest.mark.asyncio
    async def test_send_audio_is_base64(self):
        transport = connected_transport()
        await transport.send_audio("chat", b"OGG", "audio/ogg; codecs=opus")
        frame = sent_frames(transport)[0]
        assert frame["type"] == "send_audio"
        assert base64.b64decode(frame["audio"]) == b"OGG"
        assert frame["ptt"] is True

    @pytest.mark.asyncio
    async def test_presence(self):
        transport = connected_transport()
        await transport.set_presence("chat", PresenceState.COMPOSING)
        assert sent_frames(transport)[0]["state"] == "composing"

    @pytest.mark.asyncio
    async def test_send_requires_connection(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig())
        with pytest.raises(TransportError):
            await transport.send("chat", "hi")

    @pytest.mark.asyncio
    async def test_logout(self):
        transport = connected_transport()
        ws = transport._ws
        await transport.logout()
        assert transport.state == ConnectionState.LOGGED_OUT
        assert json.loads(ws.send.call_args_list[0].args[0]) == {"type": "logout"}


class TestStateMachine:
    """Test transition validation."""

    @pytest.mark.asyncio
    async def test_invalid_transition_raises(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig())
        with pytest.raises(TransportError):
            await transport._transition(ConnectionState.CONNECTED)

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_block_transition(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig())

        def broken(old, new):
            raise RuntimeError("boom")

        transport.on_state_change(broken)
        await transport._transition(ConnectionState.CONNECTING)
        assert transport.state == ConnectionState.CONNECTING


class FakeBridgeSocket:
    """Async context manager that replays bridge frames, then closes."""

    def __init__(self, frames):
        self.frames = [json.dumps(frame) for frame in frames]
        self.send = AsyncMock()
        self.close = AsyncMock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._replay()

    async def _replay(self):
        for raw in self.frames:
            yield raw


CONNECTED = {"type": "status", "status": "connected", "phone": "5511888888888@s.whatsapp.net"}


async def run_connection_loop(transport, connections):
    """Drive the connection loop with scripted connect results and no real sleeps."""
    sleep = AsyncMock()
    with patch("autoresponder.channels.whatsapp.websockets.connect", side_effect=connections) as connect, \
            patch("autoresponder.channels.whatsapp.asyncio.sleep", sleep):
        transport._running = True
        await transport._run()
    return connect, [call.args[0] for call in sleep.await_args_list]


class TestReconnect:
    """Test the bridge connection loop."""

    @pytest.mark.asyncio
    async def test_backoff_then_gives_up(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig(max_reconnect_attempts=3))
        refused = [OSError("connection refused") for _ in range(5)]

        connect, delays = await run_connection_loop(transport, refused)

        assert delays == [1, 2, 4]
        assert connect.call_count == 4
        assert transport.state == ConnectionState.DISCONNECTED
        assert not transport._running

    @pytest.mark.asyncio
    async def test_successful_connection_resets_backoff(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig(max_reconnect_attempts=3))
        connections = [
            OSError("refused"),
            FakeBridgeSocket([CONNECTED]),
            OSError("refused"),
            OSError("refused"),
            OSError("refused"),
        ]

        connect, delays = await run_connection_loop(transport, connections)

        assert delays == [1, 1, 2, 4]
        assert connect.call_count == 5
        assert transport.phone_number == "5511888888888"
        assert transport.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_logout_never_reconnects(self):
        transport = WhatsAppBridgeTransport(WhatsAppConfig(max_reconnect_attempts=3))
        socket = FakeBridgeSocket([CONNECTED, {"type": "status", "status": "logged_out"}])

        connect, delays = await run_connection_loop(transport, [socket, OSError("unused")])

        assert connect.call_count == 1
        assert delays == []
        assert transport.state == ConnectionState.LOGGED_OUT

