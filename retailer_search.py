"""
retailer_search.py — public interface for the retailer-search collaborator.

The orchestrator only needs an object with `async search(query)`; this
module builds the configured one:

  SCRAPER_FALLBACK_PATH empty  →  ScraperServiceBackend on SCRAPER_SEARCH_PATH
  SCRAPER_FALLBACK_PATH set    →  FallbackBackend: direct endpoint first,
                                  browser-based endpoint when the first one
                                  fails or finds nothing
"""
from __future__ import annotations

import logging
from typing import Optional

import config
from search_backends.base import RetailerResults, SearchBackend

logger = logging.getLogger(__name__)

__all__ = ["RetailerResults", "FallbackBackend", "get_backend", "reset_backend", "backend_name"]

_backend: Optional[SearchBackend] = None


class FallbackBackend(SearchBackend):
    """
    Primary first; fallback when primary raises or returns no offers.
    Retailer lists from both answers are merged. Raises only when both fail.
    """

    def __init__(self, primary: SearchBackend, fallback: SearchBackend) -> None:
        self.primary = primary
        self.fallback = fallback

    @property
    def name(self) -> str:
        return f"{self.primary.name} → {self.fallback.name}"

    async def search(self, query: str) -> RetailerResults:
        first: Optional[RetailerResults] = None
        try:
            first = await self.primary.search(query)
            if first.offers:
                return first
            logger.info("[%s] no offers for '%s' — trying fallback", self.primary.name, query)
        except Exception as exc:
            logger.warning("[%s] failed for '%s': %s — trying fallback", self.primary.name, query, exc)

        try:
            second = await self.fallback.search(query)
        except Exception as exc:
            if first is not None:
                logger.warning("[%s] fallback failed: %s — keeping empty primary answer", self.fallback.name, exc)
                return first
            raise
        return first.merge(second) if first is not None else second


async def get_backend() -> SearchBackend:
    """Return the active backend, initialising it once on first call."""
    global _backend
    if _backend is not None:
        return _backend
    _backend = await _build_backend()
    logger.info("Retailer search backend: %s", _backend.name)
    return _backend


def reset_backend() -> None:
    """Forget the cached backend; the next get_backend() re-reads the API key."""
    global _backend
    _backend = None


async def backend_name() -> str:
    try:
        return (await get_backend()).name
    except Exception:
        return "not configured"


async def _build_backend() -> SearchBackend:
    import key_store
    from search_backends.scraper_backend import ScraperServiceBackend

    if not config.SCRAPER_BASE_URL:
        raise RuntimeError("SCRAPER_BASE_URL is not set.")

    api_key = await key_store.get("scraper_api_key")
    primary = ScraperServiceBackend(
        config.SCRAPER_BASE_URL,
        config.SCRAPER_SEARCH_PATH,
        api_key=api_key,
        timeout=config.SCRAPER_TIMEOUT,
        label="direct",
    )
    if not config.SCRAPER_FALLBACK_PATH:
        return primary

    fallback = ScraperServiceBackend(
        config.SCRAPER_BASE_URL,
        config.SCRAPER_FALLBACK_PATH,
        api_key=api_key,
        timeout=config.SCRAPER_TIMEOUT,
        label="browser",
    )
    return FallbackBackend(primary, fallback)
