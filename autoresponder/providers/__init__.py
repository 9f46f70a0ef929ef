"""AI backend abstraction module."""

from autoresponder.providers.base import AIBackend
from autoresponder.providers.litellm_provider import LiteLLMBackend, create_backends

__all__ = [
    "AIBackend",
    "LiteLLMBackend",
    "create_backends",
]
