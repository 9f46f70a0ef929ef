"""LiteLLM backend implementation for OpenAI, Gemini and compatible services."""

from typing import Any, Sequence

import litellm
from litellm import acompletion
from loguru import logger

from autoresponder.auto_reply.errors import BackendError
from autoresponder.auto_reply.history import HistoryEntry
from autoresponder.config.schema import AIConfig, Config, ProviderConfig
from autoresponder.providers.base import AIBackend


class LiteLLMBackend(AIBackend):
    """
    AI backend using LiteLLM's unified completion API.

    One instance per named service. Failover between services is the
    pipeline's job, not this class's.
    """

    # Service name -> default model and model prefix
    SERVICE_DEFAULTS = {
        "openai": {"model": "gpt-4o-mini", "prefix": ""},
        "gemini": {"model": "gemini-1.5-flash", "prefix": "gemini/"},
    }

    def __init__(
        self,
        name: str,
        provider: ProviderConfig,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ):
        self.name = name
        self.api_key = provider.api_key or None
        self.api_base = provider.api_base
        self.model = self._format_model_name(provider.model)
        self.max_tokens = max_tokens
        self.temperature = temperature

        # Usage tracking
        self._request_count = 0
        self._total_tokens = 0

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True

    def _format_model_name(self, model: str) -> str:
        """Apply the service prefix LiteLLM needs to route the model."""
        defaults = self.SERVICE_DEFAULTS.get(self.name, {"model": "", "prefix": ""})
        model = model or defaults["model"]
        prefix = defaults["prefix"]
        if prefix and not model.startswith(prefix):
            model = f"{prefix}{model}"
        return model

    async def complete(
        self,
        system_prompt: str,
        history: Sequence[HistoryEntry],
        message: str,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self.build_messages(system_prompt, history, message),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            raise BackendError(f"{self.name} completion failed: {e}") from e

        self._request_count += 1
        usage = getattr(response, "usage", None)
        if usage:
            self._total_tokens += getattr(usage, "total_tokens", 0) or 0

        content = self._parse_response(response)
        if not content:
            raise BackendError(f"{self.name} returned an empty reply")
        logger.debug(f"{self.name} replied with {len(content)} chars")
        return content

    @staticmethod
    def _parse_response(response: Any) -> str:
        """Extract the reply text from a LiteLLM response."""
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError):
            return ""
        return (content or "").strip()

    def get_usage_stats(self) -> dict[str, Any]:
        """Get usage statistics."""
        return {
            "model": self.model,
            "request_count": self._request_count,
            "total_tokens": self._total_tokens,
        }


def create_backends(config: Config) -> list[AIBackend]:
    """
    Build backends for every configured AI service, in failover order.

    Args:
        config: Root configuration.

    Returns:
        Backends, primary first. Services without credentials are skipped.
    """
    ai: AIConfig = config.ai
    backends: list[AIBackend] = []
    for name in config.configured_services():
        provider = config.get_provider(name)
        backends.append(LiteLLMBackend(
            name=name,
            provider=provider,
            max_tokens=ai.max_tokens,
            temperature=ai.temperature,
        ))
    if not backends:
        logger.warning("No AI service has credentials configured")
    return backends
