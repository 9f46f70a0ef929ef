"""
Media collaborators: transcription, image description, speech synthesis.
"""

from dataclasses import dataclass

from loguru import logger

from autoresponder.config.schema import Config
from autoresponder.media.speech import (
    FallbackSynthesizer,
    GeminiSpeechSynthesizer,
    SpeechSynthesizer,
)
from autoresponder.media.transcribe import WhisperTranscriber
from autoresponder.media.vision import VisionDescriber

_SYNTHESIZERS = {
    "openai": SpeechSynthesizer,
    "gemini": GeminiSpeechSynthesizer,
}


@dataclass
class MediaServices:
    """Optional media collaborators; None means the feature is unavailable."""
    transcriber: WhisperTranscriber | None = None
    describer: VisionDescriber | None = None
    synthesizer: SpeechSynthesizer | GeminiSpeechSynthesizer | FallbackSynthesizer | None = None

    async def close(self) -> None:
        for client in (self.transcriber, self.synthesizer):
            if client is not None:
                await client.close()


def create_synthesizer(config: Config):
    """
    Build the voice reply synthesizer.

    The configured tts_provider comes first; with audio_fallback the other
    provider is tried when it fails. Providers without a key are skipped.

    Returns:
        A synthesizer, or None if no usable provider has a key.
    """
    primary = config.media.tts_provider
    order = [primary]
    if config.media.audio_fallback:
        order += [name for name in _SYNTHESIZERS if name != primary]

    synthesizers = []
    for name in order:
        provider = config.get_provider(name)
        if provider and provider.api_key:
            synthesizers.append(_SYNTHESIZERS[name](provider.api_key, config.media))
        else:
            logger.info(f"No {name} key: {name} voice replies disabled")

    if not synthesizers:
        return None
    if len(synthesizers) == 1:
        return synthesizers[0]
    return FallbackSynthesizer(synthesizers)


def create_media_services(config: Config) -> MediaServices:
    """Build media collaborators from whatever credentials are configured."""
    services = MediaServices()
    openai_key = config.providers.openai.api_key

    if openai_key:
        services.transcriber = WhisperTranscriber(openai_key, config.media)
    else:
        logger.info("No OpenAI key: audio transcription disabled")

    services.synthesizer = create_synthesizer(config)

    vision_provider = config.get_provider(config.media.vision_service)
    if vision_provider and vision_provider.api_key:
        services.describer = VisionDescriber(
            model=vision_provider.model,
            provider=vision_provider,
            config=config.media,
        )
    else:
        logger.info("No vision provider key: image descriptions disabled")

    return services


__all__ = [
    "FallbackSynthesizer",
    "GeminiSpeechSynthesizer",
    "MediaServices",
    "SpeechSynthesizer",
    "VisionDescriber",
    "WhisperTranscriber",
    "create_media_services",
    "create_synthesizer",
]
