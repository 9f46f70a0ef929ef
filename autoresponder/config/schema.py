"""Configuration schema using Pydantic."""

from pathlib import Path
from typing import Literal
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class ResponderConfig(BaseModel):
    """Reply behaviour configuration."""
    system_prompt: str = "You are a helpful WhatsApp assistant."
    self_number: str = ""  # Own phone number, messages from it are echoes
    ephemeral_message_handling: bool = True  # Single-unit replies for disappearing messages
    audio_responses: bool = False  # Also answer audio messages with synthesized speech
    fallback_message: str = (
        "Sorry, I can't answer right now. Please try again in a few minutes."
    )
    audio_placeholder: str = "[Audio message - transcription unavailable]"
    image_placeholder: str = "[Image sent - analysis unavailable]"
    image_prefix: str = "[Image sent]"


class RateLimitConfig(BaseModel):
    """Per-sender sliding window admission."""
    max_messages: int = 10  # Max admitted messages per window
    window_seconds: float = 60.0


class LoopDetectionConfig(BaseModel):
    """Near-duplicate feedback loop detection."""
    window_size: int = 15  # Recent messages kept per sender
    threshold: int = 5  # Similar messages needed to declare a loop
    block_seconds: float = 120.0
    min_time_span_seconds: float = 30.0  # Bursts shorter than this are not loops
    similarity_threshold: float = 0.95


class HistoryConfig(BaseModel):
    """Rolling transcript configuration."""
    max_length: int = 20


class BreakerPolicy(BaseModel):
    """Circuit breaker thresholds for one upstream service."""
    threshold: int = 5  # Consecutive failures before opening
    cooldown_seconds: float = 30.0


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration."""
    default: BreakerPolicy = Field(default_factory=BreakerPolicy)
    services: dict[str, BreakerPolicy] = Field(default_factory=dict)  # Per-service overrides

    def policy_for(self, service: str) -> BreakerPolicy:
        """Get the policy for a named service."""
        return self.services.get(service, self.default)


class DeliveryConfig(BaseModel):
    """Humanized typing cadence, in milliseconds."""
    min_delay_ms: int = 1000
    per_char_ms: int = 50
    jitter_ms: int = 2000
    max_delay_ms: int = 5000
    sentence_pause_ms: int = 1000


class AIConfig(BaseModel):
    """AI backend selection."""
    services: list[str] = Field(default_factory=lambda: ["openai", "gemini"])  # Primary first
    request_timeout: float = 30.0
    max_tokens: int = 300
    temperature: float = 0.7


class ProviderConfig(BaseModel):
    """LLM provider configuration."""
    api_key: str = ""
    api_base: str | None = None
    model: str = ""


class ProvidersConfig(BaseModel):
    """Configuration for LLM providers."""
    openai: ProviderConfig = Field(default_factory=lambda: ProviderConfig(
        model="gpt-4o-mini"
    ))
    gemini: ProviderConfig = Field(default_factory=lambda: ProviderConfig(
        model="gemini/gemini-1.5-flash"
    ))


class MediaConfig(BaseModel):
    """Transcription, vision and speech configuration."""
    transcription_model: str = "whisper-1"
    vision_service: str = "openai"  # Provider used for image descriptions
    vision_prompt: str = "Describe this image briefly and objectively."
    tts_provider: Literal["openai", "gemini"] = "openai"  # Voice reply synthesizer
    audio_fallback: bool = False  # Try the other TTS provider when the first fails
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"
    gemini_tts_model: str = "gemini-2.5-flash-preview-tts"
    gemini_tts_voice: str = "Kore"
    openai_api_base: str = "https://api.openai.com/v1"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: float = 30.0


class NotificationConfig(BaseModel):
    """Contact notifications for WhatsApp links shared in replies."""
    enabled: bool = False
    delay_seconds: float = 5.0
    summary_messages: int = 6  # Transcript entries quoted in the summary
    format: str = (
        "*New contact request*\n\n"
        "*Conversation summary:*\n{conversation_summary}\n\n"
        "*Client details:*\n"
        "- Name: {client_name}\n"
        "- Phone: {client_phone}\n"
        "- Time: {timestamp}\n\n"
        "Please get in touch as soon as possible to continue the conversation."
    )


class WhatsAppConfig(BaseModel):
    """WhatsApp bridge configuration."""
    enabled: bool = True
    bridge_url: str = "ws://localhost:3001"
    reject_calls: bool = False
    call_rejection_message: str = (
        "I'm unavailable right now. Please leave a message and I'll reply as soon as possible."
    )
    max_reconnect_attempts: int = 3


class GatewayConfig(BaseModel):
    """Admin server configuration."""
    host: str = "127.0.0.1"
    port: int = 3000


class RetentionConfig(BaseModel):
    """Idle per-sender state eviction."""
    idle_seconds: float = 3600.0
    sweep_interval_seconds: float = 300.0


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class Config(BaseSettings):
    """Root configuration for autoresponder."""
    model_config = SettingsConfigDict(
        env_prefix="AUTORESPONDER_",
        env_nested_delimiter="__",
    )

    responder: ResponderConfig = Field(default_factory=ResponderConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    loop_detection: LoopDetectionConfig = Field(default_factory=LoopDetectionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Environment variables outrank values read from the config file."""
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    def get_provider(self, service: str) -> ProviderConfig | None:
        """Get provider configuration for a named AI service."""
        return getattr(self.providers, service, None)

    def configured_services(self) -> list[str]:
        """
        Get AI services in failover order that have credentials.

        Returns:
            Service names, primary first.
        """
        services = []
        for name in self.ai.services:
            provider = self.get_provider(name)
            if provider and (provider.api_key or provider.api_base):
                services.append(name)
        return services

    @property
    def data_dir(self) -> Path:
        """Get the data directory."""
        return Path("~/.autoresponder").expanduser()
