"""
OpenAI provider — supports gpt-4o and gpt-4o-mini.

Pricing (as of early 2025):
  gpt-4o:       $5.00 / 1M input tokens,  $15.00 / 1M output tokens
                + image tiles: each 512×512 tile = 170 tokens (~$0.00085/tile)
                A typical 1024×1024 product photo ≈ 765 input tokens for vision
  gpt-4o-mini:  $0.15 / 1M input tokens,  $0.60 / 1M output tokens
"""
from __future__ import annotations

import base64
import time
import logging

from openai import AsyncOpenAI

from providers.base import (
    SYSTEM_PROMPT, IMAGE_PROMPT,
    IdentificationProvider, ProviderResult, detect_media_type,
)

logger = logging.getLogger(__name__)


class OpenAIProvider(IdentificationProvider):

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        self.name = "openai"
        self.model_id = model
        self._client = AsyncOpenAI(api_key=api_key)

        # Pricing per 1k tokens
        _pricing = {
            "gpt-4o":      (0.005,  0.015),
            "gpt-4o-mini": (0.00015, 0.0006),
        }
        self.cost_per_1k_input_tokens, self.cost_per_1k_output_tokens = _pricing.get(
            model, (0.005, 0.015)
        )
        # High-detail image processing: ~765 tokens for a typical product photo
        self.cost_per_image = 765 / 1000 * self.cost_per_1k_input_tokens

    async def analyse_image(self, image_bytes: bytes) -> ProviderResult:
        b64 = base64.b64encode(image_bytes).decode()
        media_type = detect_media_type(image_bytes)
        return await self._complete(
            [
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{media_type};base64,{b64}", "detail": "high"},
                },
                {"type": "text", "text": IMAGE_PROMPT},
            ],
            images=1,
        )

    async def analyse_text(self, prompt: str) -> ProviderResult:
        return await self._complete(prompt)

    async def _complete(self, content, images: int = 0) -> ProviderResult:
        t0 = time.monotonic()

        response = await self._client.chat.completions.create(
            model=self.model_id,
            max_tokens=512,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
        )

        latency_ms = int((time.monotonic() - t0) * 1000)
        raw = response.choices[0].message.content or ""
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return self.build_result(raw, latency_ms, input_tokens, output_tokens, images)
