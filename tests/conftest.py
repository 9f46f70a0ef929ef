"""
Pytest configuration and shared fixtures for autoresponder tests.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add the project root to the path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from autoresponder.auto_reply.errors import TransportError
from autoresponder.auto_reply.pipeline import ResponsePipeline
from autoresponder.auto_reply.sender import HumanizedSender
from autoresponder.auto_reply.state import PipelineState
from autoresponder.channels.base import BaseTransport, ConnectionState
from autoresponder.config.schema import Config, DeliveryConfig, ResponderConfig
from autoresponder.providers.base import AIBackend


class FakeTransport(BaseTransport):
    """In-memory transport recording everything sent."""

    name = "fake"

    def __init__(self):
        super().__init__()
        self.sent: list[tuple[str, str]] = []
        self.audio: list[tuple[str, bytes, str]] = []
        self.presence: list[tuple[str, str]] = []
        self.fail_texts: set[str] = set()

    async def start(self) -> None:
        await self._transition(ConnectionState.CONNECTING)
        await self._transition(ConnectionState.CONNECTED)

    async def stop(self) -> None:
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            await self._transition(ConnectionState.DISCONNECTED)

    async def send(self, chat_id: str, text: str) -> None:
        if text in self.fail_texts:
            raise TransportError(f"send failed: {text}")
        self.sent.append((chat_id, text))

    async def send_audio(self, chat_id: str, data: bytes, mime_type: str = "audio/mp4") -> None:
        self.audio.append((chat_id, data, mime_type))

    async def set_presence(self, chat_id: str, state) -> None:
        self.presence.append((chat_id, state.value))


class FakeClock:
    """Settable clock for time-dependent pipeline checks."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeBackend(AIBackend):
    """Scripted AI backend."""

    def __init__(self, name: str, reply: str = "Hello there.", error: Exception | None = None, delay: float = 0):
        self.name = name
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, tuple, str]] = []

    async def complete(self, system_prompt, history, message) -> str:
        self.calls.append((system_prompt, tuple(history), message))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def config():
    """Config with instant delivery pacing."""
    return Config(
        responder=ResponderConfig(
            system_prompt="You are a test assistant.",
            self_number="5511900000000",
        ),
        delivery=DeliveryConfig(
            min_delay_ms=0,
            per_char_ms=0,
            jitter_ms=0,
            max_delay_ms=0,
            sentence_pause_ms=0,
        ),
    )


@pytest.fixture
def transport():
    """A connected fake transport."""
    transport = FakeTransport()
    transport._state = ConnectionState.CONNECTED
    return transport


@pytest.fixture
def backends():
    return [FakeBackend("openai"), FakeBackend("gemini", reply="Backup reply.")]


@pytest.fixture
def pipeline_state(config):
    return PipelineState(config)


@pytest.fixture
def sender(transport, config):
    return HumanizedSender(transport, config.delivery)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pipeline(pipeline_state, sender, backends, clock):
    return ResponsePipeline(pipeline_state, sender, backends, clock=clock)


@pytest.fixture
def config_dir(tmp_path):
    """Create a temporary config directory."""
    config = tmp_path / "config"
    config.mkdir()
    return config
