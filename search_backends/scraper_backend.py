"""
Scraping-service backend — talks to the service that drives the per-retailer
scrapers (direct retailer APIs, headless browsers) and returns one combined
answer.

Request:
  POST {SCRAPER_BASE_URL}{path}   {"query": "iphone 15"}

Response (fields observed across service versions):
  {
    "success": true,
    "products" | "data" | "results": [ {raw offer}, ... ],
    "scrapedRetailers": ["Amazon", "Flipkart"],
    "failedRetailers":  ["Croma"],
    "message": "only set when success is false"
  }

The service handles per-retailer concurrency and retries itself; this
backend makes exactly one HTTP call per search.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import aiohttp

from search_backends.base import RetailerResults, SearchBackend

logger = logging.getLogger(__name__)

_OFFER_FIELDS = ("products", "data", "results")


class ScraperServiceBackend(SearchBackend):

    def __init__(
        self,
        base_url: str,
        path: str = "/api/price-comparison/search",
        api_key: Optional[str] = None,
        timeout: float = 120,
        label: str = "scraper",
    ) -> None:
        self._url = base_url.rstrip("/") + "/" + path.lstrip("/")
        self._timeout = timeout
        self._label = label
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["X-API-Key"] = api_key

    @property
    def name(self) -> str:
        return f"ScraperService[{self._label}] {self._url}"

    async def search(self, query: str) -> RetailerResults:
        data = await self._post({"query": query})
        results = _parse_payload(data)
        logger.info(
            "[%s] '%s' → %d offers (scraped=%s failed=%s)",
            self._label, query, len(results.offers),
            results.scraped_retailers, results.failed_retailers,
        )
        return results

    # ── HTTP helper ───────────────────────────────────────────────────────────

    async def _post(self, body: dict) -> dict:
        """Single HTTP call to the search endpoint. Raises RuntimeError on any failure status."""
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self._url,
                json=body,
                headers=self._headers,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise RuntimeError(f"Scraper service error {resp.status}: {text[:200]}")
                data = await resp.json()
        if not isinstance(data, dict):
            raise RuntimeError(f"Scraper service returned {type(data).__name__}, expected an object")
        if data.get("success") is False:
            raise RuntimeError(f"Scraper service failed: {data.get('message') or data.get('error') or 'unknown error'}")
        return data


# ── Parser ────────────────────────────────────────────────────────────────────

def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def _parse_payload(data: dict) -> RetailerResults:
    offers: list = []
    for key in _OFFER_FIELDS:
        value = data.get(key)
        if isinstance(value, list) and value:
            offers = value
            break
    return RetailerResults(
        offers=offers,
        scraped_retailers=_string_list(data.get("scrapedRetailers")),
        failed_retailers=_string_list(data.get("failedRetailers")),
    )
