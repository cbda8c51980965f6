"""
Anthropic provider — supports claude-3-5-sonnet and claude-3-haiku.

Pricing (as of early 2025):
  claude-3-5-sonnet-20241022: $3.00 / 1M input,  $15.00 / 1M output
                               Images: ~1600 tokens per standard image
  claude-3-haiku-20240307:    $0.25 / 1M input,  $1.25  / 1M output
                               Images: ~1600 tokens per standard image

Claude is a useful second opinion on packaging photos: it reads fine print
and model numbers on labels well.
"""
from __future__ import annotations

import base64
import time
import logging

import anthropic

from providers.base import (
    SYSTEM_PROMPT, IMAGE_PROMPT,
    IdentificationProvider, ProviderResult, detect_media_type,
)

logger = logging.getLogger(__name__)

_ANTHROPIC_IMAGE_TOKENS = 1600  # approximate tokens per image for Claude


class AnthropicProvider(IdentificationProvider):

    def __init__(self, api_key: str, model: str = "claude-3-haiku-20240307"):
        self.name = "anthropic"
        self.model_id = model
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

        _pricing = {
            "claude-3-5-sonnet-20241022": (0.003,  0.015),
            "claude-3-haiku-20240307":    (0.00025, 0.00125),
        }
        self.cost_per_1k_input_tokens, self.cost_per_1k_output_tokens = _pricing.get(
            model, (0.003, 0.015)
        )
        self.cost_per_image = _ANTHROPIC_IMAGE_TOKENS / 1000 * self.cost_per_1k_input_tokens

    async def analyse_image(self, image_bytes: bytes) -> ProviderResult:
        b64 = base64.b64encode(image_bytes).decode()
        return await self._complete(
            [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": detect_media_type(image_bytes),
                        "data": b64,
                    },
                },
                {"type": "text", "text": IMAGE_PROMPT},
            ],
            images=1,
        )

    async def analyse_text(self, prompt: str) -> ProviderResult:
        return await self._complete([{"type": "text", "text": prompt}])

    async def _complete(self, content: list, images: int = 0) -> ProviderResult:
        t0 = time.monotonic()

        message = await self._client.messages.create(
            model=self.model_id,
            max_tokens=512,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": content}],
        )

        latency_ms = int((time.monotonic() - t0) * 1000)
        raw = message.content[0].text
        return self.build_result(
            raw, latency_ms, message.usage.input_tokens, message.usage.output_tokens, images,
        )
