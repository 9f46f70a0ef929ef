"""Image description through a vision-capable chat model."""

import base64
from typing import Any

from litellm import acompletion

from autoresponder.config.schema import MediaConfig, ProviderConfig


class VisionDescriber:
    """Describes images as text so they can enter the transcript."""

    def __init__(self, model: str, provider: ProviderConfig, config: MediaConfig | None = None):
        self.config = config or MediaConfig()
        self.model = model
        self.api_key = provider.api_key or None
        self.api_base = provider.api_base

    async def describe(self, data: bytes, mime_type: str = "image/jpeg") -> str:
        """
        Describe an image.

        Args:
            data: Encoded image bytes.
            mime_type: Image MIME type.

        Returns:
            Description text.
        """
        encoded = base64.b64encode(data).decode("ascii")
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": self.config.vision_prompt},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            }],
            "max_tokens": 300,
            "timeout": self.config.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        response = await acompletion(**kwargs)
        return (response.choices[0].message.content or "").strip()
