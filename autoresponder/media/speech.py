"""Text-to-speech for voice-note replies."""

import base64
import io
import wave

import httpx
from loguru import logger

from autoresponder.config.schema import MediaConfig

# Gemini speech output is raw 16-bit mono PCM at 24 kHz
GEMINI_SAMPLE_RATE = 24000


class SpeechSynthesizer:
    """Synthesizes replies with the OpenAI speech API."""

    name = "openai"
    mime_type = "audio/ogg; codecs=opus"

    def __init__(self, api_key: str, config: MediaConfig | None = None):
        self.config = config or MediaConfig()
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.config.openai_api_base,
            timeout=self.config.timeout,
        )

    async def synthesize(self, text: str) -> bytes:
        """Render text to opus audio bytes."""
        response = await self._client.post(
            "/audio/speech",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.config.tts_model,
                "voice": self.config.tts_voice,
                "input": text,
                "response_format": "opus",
            },
        )
        response.raise_for_status()
        return response.content

    async def close(self) -> None:
        await self._client.aclose()


class GeminiSpeechSynthesizer:
    """Synthesizes replies with a Gemini speech model and a prebuilt voice."""

    name = "gemini"
    mime_type = "audio/wav"

    def __init__(self, api_key: str, config: MediaConfig | None = None):
        self.config = config or MediaConfig()
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.config.gemini_api_base,
            timeout=self.config.timeout,
        )

    async def synthesize(self, text: str) -> bytes:
        """Render text to WAV audio bytes."""
        response = await self._client.post(
            f"/models/{self.config.gemini_tts_model}:generateContent",
            headers={"x-goog-api-key": self.api_key},
            json={
                "contents": [{"parts": [{"text": text}]}],
                "generationConfig": {
                    "responseModalities": ["AUDIO"],
                    "speechConfig": {
                        "voiceConfig": {
                            "prebuiltVoiceConfig": {"voiceName": self.config.gemini_tts_voice},
                        },
                    },
                },
            },
        )
        response.raise_for_status()
        try:
            part = response.json()["candidates"][0]["content"]["parts"][0]
            pcm = base64.b64decode(part["inlineData"]["data"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ValueError(f"Gemini speech response has no audio: {e}") from e
        return pcm_to_wav(pcm)

    async def close(self) -> None:
        await self._client.aclose()


def pcm_to_wav(pcm: bytes, sample_rate: int = GEMINI_SAMPLE_RATE) -> bytes:
    """Wrap 16-bit mono PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class FallbackSynthesizer:
    """
    Tries each synthesizer in order until one produces audio.

    mime_type reflects the synthesizer that produced the last result.
    """

    def __init__(self, synthesizers: list):
        self.synthesizers = synthesizers
        self.mime_type = synthesizers[0].mime_type

    @property
    def name(self) -> str:
        return "+".join(s.name for s in self.synthesizers)

    async def synthesize(self, text: str) -> bytes:
        error: Exception | None = None
        for synthesizer in self.synthesizers:
            try:
                audio = await synthesizer.synthesize(text)
            except Exception as e:
                logger.warning(f"Speech synthesis via {synthesizer.name} failed: {e}")
                error = e
                continue
            self.mime_type = synthesizer.mime_type
            return audio
        raise error or ValueError("No speech synthesizer configured")

    async def close(self) -> None:
        for synthesizer in self.synthesizers:
            await synthesizer.close()
