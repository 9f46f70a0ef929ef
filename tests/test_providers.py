"""
Tests for AI backends and media clients.

Tests:
- LiteLLM model naming and message assembly
- Empty and failed completions raise BackendError
- Backend construction from config
- Whisper / speech clients against a mock HTTP transport
- Voice reply provider selection and fallback
"""

import base64
import io
import json
import wave
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from autoresponder.auto_reply.errors import BackendError
from autoresponder.auto_reply.history import HistoryEntry
from autoresponder.config.schema import Config, MediaConfig, ProviderConfig
from autoresponder.media import create_media_services, create_synthesizer
from autoresponder.media.speech import (
    FallbackSynthesizer,
    GeminiSpeechSynthesizer,
    SpeechSynthesizer,
)
from autoresponder.media.transcribe import WhisperTranscriber
from autoresponder.providers.litellm_provider import LiteLLMBackend, create_backends


def completion(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=12),
    )


class TestLiteLLMBackend:
    """Test the LiteLLM backend."""

    def test_gemini_model_prefixed(self):
        backend = LiteLLMBackend("gemini", ProviderConfig(api_key="g", model="gemini-1.5-flash"))
        assert backend.model == "gemini/gemini-1.5-flash"

    def test_default_model(self):
        backend = LiteLLMBackend("openai", ProviderConfig(api_key="o"))
        assert backend.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_complete_builds_messages(self):
        backend = LiteLLMBackend("openai", ProviderConfig(api_key="o", model="gpt-4o-mini"))
        history = [HistoryEntry("user", "hi"), HistoryEntry("assistant", "hello")]

        with patch(
            "autoresponder.providers.litellm_provider.acompletion",
            new=AsyncMock(return_value=completion("  Sure thing.  ")),
        ) as mock:
            reply = await backend.complete("Be nice.", history, "help?")

        assert reply == "Sure thing."
        kwargs = mock.await_args.kwargs
        assert kwargs["api_key"] == "o"
        assert kwargs["messages"] == [
            {"role": "system", "content": "Be nice."},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "help?"},
        ]
        assert backend.get_usage_stats()["total_tokens"] == 12

    @pytest.mark.asyncio
    async def test_empty_reply_raises(self):
        backend = LiteLLMBackend("openai", ProviderConfig(api_key="o"))
        with patch(
            "autoresponder.providers.litellm_provider.acompletion",
            new=AsyncMock(return_value=completion("   ")),
        ):
            with pytest.raises(BackendError):
                await backend.complete("", [], "hi")

    @pytest.mark.asyncio
    async def test_upstream_error_wrapped(self):
        backend = LiteLLMBackend("openai", ProviderConfig(api_key="o"))
        with patch(
            "autoresponder.providers.litellm_provider.acompletion",
            new=AsyncMock(side_effect=RuntimeError("429")),
        ):
            with pytest.raises(BackendError, match="openai"):
                await backend.complete("", [], "hi")


class TestFactories:
    """Test construction from config."""

    def test_create_backends_in_failover_order(self):
        config = Config()
        config.providers.openai.api_key = "o"
        config.providers.gemini.api_key = "g"
        assert [b.name for b in create_backends(config)] == ["openai", "gemini"]

    def test_create_backends_without_keys(self):
        assert create_backends(Config()) == []

    def test_media_needs_openai_key(self):
        services = create_media_services(Config())
        assert services.transcriber is None
        assert services.synthesizer is None
        assert services.describer is None


def mock_client(handler):
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://api.openai.com/v1",
    )


class TestMediaClients:
    """Test HTTP media clients."""

    @pytest.mark.asyncio
    async def test_transcribe(self):
        def handler(request):
            assert request.url.path == "/v1/audio/transcriptions"
            assert request.headers["Authorization"] == "Bearer key"
            return httpx.Response(200, json={"text": " hello there "})

        transcriber = WhisperTranscriber("key", MediaConfig())
        await transcriber.close()
        transcriber._client = mock_client(handler)

        assert await transcriber.transcribe(b"OGG", "audio/ogg; codecs=opus") == "hello there"
        await transcriber.close()

    @pytest.mark.asyncio
    async def test_transcribe_error_raises(self):
        transcriber = WhisperTranscriber("key")
        await transcriber.close()
        transcriber._client = mock_client(lambda request: httpx.Response(500))

        with pytest.raises(httpx.HTTPStatusError):
            await transcriber.transcribe(b"OGG")
        await transcriber.close()

    @pytest.mark.asyncio
    async def test_synthesize(self):
        def handler(request):
            assert request.url.path == "/v1/audio/speech"
            return httpx.Response(200, content=b"OPUS")

        synthesizer = SpeechSynthesizer("key")
        await synthesizer.close()
        synthesizer._client = mock_client(handler)

        assert await synthesizer.synthesize("Hi") == b"OPUS"
        await synthesizer.close()

    @pytest.mark.asyncio
    async def test_gemini_synthesize_wraps_pcm(self):
        pcm = b"\x01\x00\x02\x00" * 10

        def handler(request):
            assert request.url.path == "/v1beta/models/gemini-2.5-flash-preview-tts:generateContent"
            assert request.headers["x-goog-api-key"] == "g"
            body = json.loads(request.content)
            voice = body["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
            assert voice["voiceName"] == "Kore"
            assert body["contents"][0]["parts"][0]["text"] == "Hi"
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [
                {"inlineData": {"mimeType": "audio/L16;rate=24000", "data": base64.b64encode(pcm).decode()}},
            ]}}]})

        synthesizer = GeminiSpeechSynthesizer("g")
        await synthesizer.close()
        synthesizer._client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://generativelanguage.googleapis.com/v1beta",
        )

        audio = await synthesizer.synthesize("Hi")
        with wave.open(io.BytesIO(audio)) as wav:
            assert wav.getframerate() == 24000
            assert wav.getnchannels() == 1
            assert wav.readframes(wav.getnframes()) == pcm
        assert synthesizer.mime_type == "audio/wav"
        await synthesizer.close()

    @pytest.mark.asyncio
    async def test_gemini_response_without_audio_raises(self):
        synthesizer = GeminiSpeechSynthesizer("g")
        await synthesizer.close()
        synthesizer._client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})),
            base_url="https://generativelanguage.googleapis.com/v1beta",
        )

        with pytest.raises(ValueError):
            await synthesizer.synthesize("Hi")
        await synthesizer.close()


class TestVoiceProviders:
    """Test voice reply provider selection."""

    @pytest.mark.asyncio
    async def test_default_is_openai(self):
        config = Config()
        config.providers.openai.api_key = "o"
        config.providers.gemini.api_key = "g"
        synthesizer = create_synthesizer(config)
        assert isinstance(synthesizer, SpeechSynthesizer)
        await synthesizer.close()

    @pytest.mark.asyncio
    async def test_gemini_provider_uses_gemini_key(self):
        config = Config()
        config.media.tts_provider = "gemini"
        config.providers.gemini.api_key = "g"
        synthesizer = create_synthesizer(config)
        assert isinstance(synthesizer, GeminiSpeechSynthesizer)
        assert synthesizer.api_key == "g"
        await synthesizer.close()

    def test_missing_provider_key_disables_voice(self):
        config = Config()
        config.media.tts_provider = "gemini"
        config.providers.openai.api_key = "o"
        assert create_synthesizer(config) is None

    @pytest.mark.asyncio
    async def test_audio_fallback_chains_other_provider(self):
        config = Config()
        config.media.tts_provider = "gemini"
        config.media.audio_fallback = True
        config.providers.openai.api_key = "o"
        config.providers.gemini.api_key = "g"
        synthesizer = create_synthesizer(config)
        assert isinstance(synthesizer, FallbackSynthesizer)
        assert [s.name for s in synthesizer.synthesizers] == ["gemini", "openai"]
        await synthesizer.close()

    @pytest.mark.asyncio
    async def test_fallback_uses_next_on_failure(self):
        first = SimpleNamespace(
            name="gemini", mime_type="audio/wav",
            synthesize=AsyncMock(side_effect=httpx.ConnectError("down")),
        )
        second = SimpleNamespace(
            name="openai", mime_type="audio/ogg; codecs=opus",
            synthesize=AsyncMock(return_value=b"OPUS"),
        )
        synthesizer = FallbackSynthesizer([first, second])

        assert await synthesizer.synthesize("Hi") == b"OPUS"
        assert synthesizer.mime_type == "audio/ogg; codecs=opus"

    @pytest.mark.asyncio
    async def test_fallback_raises_when_all_fail(self):
        broken = SimpleNamespace(
            name="openai", mime_type="audio/ogg",
            synthesize=AsyncMock(side_effect=httpx.ConnectError("down")),
        )
        with pytest.raises(httpx.ConnectError):
            await FallbackSynthesizer([broken]).synthesize("Hi")
