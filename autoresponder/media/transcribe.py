"""Audio transcription through the OpenAI Whisper API."""

import httpx
from loguru import logger

from autoresponder.config.schema import MediaConfig


class WhisperTranscriber:
    """
    Transcribes voice notes to text.

    Raises on any failure; the pipeline substitutes a placeholder.
    """

    def __init__(self, api_key: str, config: MediaConfig | None = None):
        self.config = config or MediaConfig()
        self.api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.config.openai_api_base,
            timeout=self.config.timeout,
        )

    async def transcribe(self, data: bytes, mime_type: str = "audio/ogg") -> str:
        """
        Transcribe audio bytes.

        Args:
            data: Encoded audio (ogg/opus voice notes by default).
            mime_type: Audio MIME type.

        Returns:
            Transcribed text (may be empty).
        """
        extension = mime_type.split("/")[-1].split(";")[0].strip() or "ogg"
        response = await self._client.post(
            "/audio/transcriptions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            data={"model": self.config.transcription_model},
            files={"file": (f"audio.{extension}", data, mime_type)},
        )
        response.raise_for_status()
        text = response.json().get("text", "").strip()
        logger.debug(f"Transcribed {len(data)} bytes of audio into {len(text)} chars")
        return text

    async def close(self) -> None:
        await self._client.aclose()
