"""
Groq provider — Llama models via Groq's OpenAI-compatible API.

Groq offers extremely fast inference (LPU hardware).
Get a free API key at console.groq.com

Models:
  meta-llama/llama-4-scout-17b-16e-instruct  — vision + text, fast, cheap (default)

Pricing: Groq charges per token and rates are very low.
  llama-4-scout: ~$0.11 / 1M input tokens, ~$0.34 / 1M output tokens
"""
from __future__ import annotations

import base64
import time
import logging

import openai

from providers.base import (
    SYSTEM_PROMPT, IMAGE_PROMPT,
    IdentificationProvider, ProviderResult, detect_media_type,
)

logger = logging.getLogger(__name__)

_GROQ_BASE_URL = "https://api.groq.com/openai/v1"

_PRICING: dict[str, tuple[float, float, float]] = {
    # model: ($/1k_input, $/1k_output, $/image)
    "meta-llama/llama-4-scout-17b-16e-instruct": (0.00011, 0.00034, 0.00006),
}


class GroqProvider(IdentificationProvider):

    def __init__(self, api_key: str, model: str = "meta-llama/llama-4-scout-17b-16e-instruct"):
        self.name     = "groq"
        self.model_id = model
        self._client  = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=_GROQ_BASE_URL,
        )
        rates = _PRICING.get(model, (0.00011, 0.00034, 0.00006))
        self.cost_per_1k_input_tokens  = rates[0]
        self.cost_per_1k_output_tokens = rates[1]
        self.cost_per_image            = rates[2]

    async def analyse_image(self, image_bytes: bytes) -> ProviderResult:
        b64 = base64.b64encode(image_bytes).decode()
        media_type = detect_media_type(image_bytes)
        return await self._complete(
            [
                {
                    "type":      "image_url",
                    "image_url": {"url": f"data:{media_type};base64,{b64}"},
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
            temperature=0.3,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
        )

        latency_ms    = int((time.monotonic() - t0) * 1000)
        raw           = response.choices[0].message.content or ""
        usage         = response.usage
        input_tokens  = usage.prompt_tokens     if usage else 800
        output_tokens = usage.completion_tokens if usage else 150

        return self.build_result(raw, latency_ms, input_tokens, output_tokens, images)
