"""
Provider Manager — initialises and runs the identification providers.
Keys are read from key_store (DB → .env fallback) on every cold-start, so a
key changed in the DB takes effect after reset_providers().

Modes:
  best      — run all enabled providers in parallel, return highest quality_score winner
  cheapest  — run only the cheapest available provider
  single:X  — run only provider named X (e.g. "single:openai/gpt-4o-mini")

Per-model enable/disable via environment variables:
  ENABLE_GROQ_LLAMA4_SCOUT=true/false        (default true)
  ENABLE_GPT_4O_MINI=true/false              (default true)
  ENABLE_GPT_4O=true/false                   (default false — expensive)
  ENABLE_CLAUDE_3_HAIKU_20240307=true/false  (default true)

ProviderIdentifier wraps all this behind the identification collaborator
contract: identify(payload) -> IdentifyResult, never raising.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import config
from providers.base import (
    IdentificationProvider, IdentifyResult, Payload, ProviderResult,
)

logger = logging.getLogger(__name__)

# Module-level cache — cleared by reset_providers() when a key changes
_providers: dict[str, IdentificationProvider] = {}


def _model_enabled(env_key: str, default: bool = True) -> bool:
    """
    Check whether a specific model is enabled via an environment variable.
    Default is True for most models; pass default=False to require explicit opt-in.
    """
    raw = os.getenv(env_key, "true" if default else "false")
    return raw.strip().lower() not in ("false", "0", "no")


async def _build_providers() -> dict[str, IdentificationProvider]:
    """
    Instantiate every provider whose API key is available (DB or .env)
    AND whose per-model toggle is enabled.
    Returns dict keyed by full_name.
    """
    import key_store
    providers: dict[str, IdentificationProvider] = {}

    # ── Groq (Llama — very fast & cheap) ──────────────────────────────────────
    groq_key = await key_store.get("groq_api_key")
    if groq_key:
        from providers.groq_provider import GroqProvider
        for model, env_flag in [
            ("meta-llama/llama-4-scout-17b-16e-instruct", "ENABLE_GROQ_LLAMA4_SCOUT"),
        ]:
            if _model_enabled(env_flag):
                p = GroqProvider(groq_key, model)
                providers[p.full_name] = p
                logger.info("Loaded provider: %s", p.full_name)
            else:
                logger.info("Skipped provider groq/%s (disabled by %s)", model, env_flag)

    # ── OpenAI ────────────────────────────────────────────────────────────────
    openai_key = await key_store.get("openai_api_key")
    if openai_key:
        from providers.openai_provider import OpenAIProvider
        for model, env_flag, default_on in [
            ("gpt-4o-mini", "ENABLE_GPT_4O_MINI", True),
            ("gpt-4o",      "ENABLE_GPT_4O",      False),
        ]:
            if _model_enabled(env_flag, default=default_on):
                p = OpenAIProvider(openai_key, model)
                providers[p.full_name] = p
                logger.info("Loaded provider: %s", p.full_name)
            else:
                logger.info("Skipped provider openai/%s (disabled by %s)", model, env_flag)

    # ── Anthropic ─────────────────────────────────────────────────────────────
    anthropic_key = await key_store.get("anthropic_api_key")
    if anthropic_key:
        from providers.anthropic_provider import AnthropicProvider
        for model, env_flag in [
            ("claude-3-haiku-20240307", "ENABLE_CLAUDE_3_HAIKU_20240307"),
        ]:
            if _model_enabled(env_flag):
                p = AnthropicProvider(anthropic_key, model)
                providers[p.full_name] = p
                logger.info("Loaded provider: %s", p.full_name)
            else:
                logger.info("Skipped provider anthropic/%s (disabled by %s)", model, env_flag)

    if not providers:
        raise RuntimeError(
            "No identification providers available. "
            "Set GROQ_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY."
        )

    return providers


async def get_providers() -> dict[str, IdentificationProvider]:
    global _providers
    if not _providers:
        _providers = await _build_providers()
    return _providers


def reset_providers() -> None:
    global _providers
    _providers = {}


async def cheapest_provider() -> IdentificationProvider:
    providers = await get_providers()
    return min(
        providers.values(),
        key=lambda p: p.cost_per_image + p.cost_per_1k_input_tokens * 0.8,
    )


# ── Core analysis function ────────────────────────────────────────────────────

async def analyse(
    payload: Payload,
    mode: str = "best",
) -> tuple[ProviderResult, list[ProviderResult]]:
    """
    Run identification using the requested mode.

    Returns:
        (winner, all_results)
    """
    providers = await get_providers()

    if mode == "cheapest":
        targets = [await cheapest_provider()]
    elif mode.startswith("single:"):
        name = mode[len("single:"):]
        if name not in providers:
            available = ", ".join(providers)
            raise ValueError(f"Provider '{name}' not available. Available: {available}")
        targets = [providers[name]]
    else:
        targets = list(providers.values())

    errors: list[Exception] = []

    async def _safe_run(provider: IdentificationProvider) -> Optional[ProviderResult]:
        try:
            result = await provider.analyse(payload)
            logger.info(
                "[%s] OK — product=%r confidence=%s latency=%dms",
                provider.full_name, result.product_name, result.confidence, result.latency_ms,
            )
            return result
        except Exception as exc:
            logger.error("[%s] Failed: %s", provider.full_name, exc)
            errors.append(exc)
            return None

    raw_results = await asyncio.gather(*[_safe_run(p) for p in targets])
    all_results  = [r for r in raw_results if r is not None]

    if not all_results:
        detail = "; ".join(str(e) for e in errors)
        raise RuntimeError(f"All identification providers failed: {detail}")

    winner = max(all_results, key=lambda r: r.quality_score)
    return winner, all_results


# ── Error classification ──────────────────────────────────────────────────────

_ERROR_CODES: list[tuple[str, str, str]] = [
    # (substring in provider error, code, user-facing message)
    ("blur",       "BLURRED_IMAGE",   "The image is too blurry to identify the product. Try a sharper photo."),
    ("resolution", "LOW_RESOLUTION",  "The image resolution is too low. Try a closer or larger photo."),
    ("angle",      "BAD_ANGLE",       "Poor image angle for product identification. Try a front-on photo."),
    ("partial",    "PARTIAL_PRODUCT", "Only part of the product is visible. Try fitting the whole product in frame."),
    ("api key",    "API_KEY_ERROR",   "Identification service is misconfigured (API key). Please try text search."),
]


def classify_error(exc: BaseException) -> tuple[str, str]:
    """Map a provider failure onto (user message, error code)."""
    text = str(exc)
    low = text.lower()
    for needle, code, message in _ERROR_CODES:
        if needle in low:
            return message, code
    return text or "Unknown error occurred during product identification", "UNKNOWN_ERROR"


class ProviderIdentifier:
    """Identification collaborator backed by the AI providers above."""

    def __init__(self, mode: Optional[str] = None) -> None:
        self.mode = mode or config.IDENTIFY_MODE

    async def identify(self, payload: Payload) -> IdentifyResult:
        try:
            winner, _ = await analyse(payload, self.mode)
        except Exception as exc:
            message, code = classify_error(exc)
            logger.warning("Identification failed (%s): %s", code, exc)
            return IdentifyResult.failed(message, code)
        return IdentifyResult.from_provider(winner)
