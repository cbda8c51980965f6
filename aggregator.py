"""
aggregator.py — from "user hits search" to a ranked, cached SearchSession.

Per request:

  IDLE → IDENTIFYING (image/barcode only) → DISPATCHING → COLLECTING → RANKED → DONE
                 └──────────────── any collaborator failure ──────────────────→ FAILED

  • Identification runs before dispatch, never alongside it: the retailer
    query IS the identification output.
  • Retailer search is called once. Retries and per-retailer concurrency
    belong to the collaborator.
  • failed_retailers being non-empty is still a success.
  • Zero offers → EmptyResultError (soft, "no matches"), nothing cached.

Overlapping searches: every call takes a sequence number. A run that
completes after a newer run has started is stale — its result is dropped
(SupersededSearchError) and never written over the newer session.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Union

import config
from errors import (
    AggregationError, CollectionError, EmptyResultError,
    IdentificationError, SupersededSearchError,
)
from offers import NormalizedOffer, normalize_offers
from providers.base import BarcodePayload, IdentifyResult, ImagePayload, Payload
from ranking import rank_offers
from search_backends.base import RetailerResults
from session_cache import SearchSession, SessionCache

logger = logging.getLogger(__name__)


class SearchState(str, Enum):
    IDLE = "idle"
    IDENTIFYING = "identifying"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    RANKED = "ranked"
    DONE = "done"
    FAILED = "failed"


class Identifier(Protocol):
    async def identify(self, payload: Payload) -> IdentifyResult: ...


class RetailerSearch(Protocol):
    async def search(self, query: str) -> RetailerResults: ...


# ── Input ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SearchInput:
    kind: str                       # text | image | barcode
    query: str = ""
    image: bytes = b""
    barcode: str = ""

    @classmethod
    def from_text(cls, query: str) -> "SearchInput":
        return cls(kind="text", query=query)

    @classmethod
    def from_image(cls, image: bytes) -> "SearchInput":
        return cls(kind="image", image=image)

    @classmethod
    def from_barcode(cls, code: str) -> "SearchInput":
        return cls(kind="barcode", barcode=code)

    @property
    def needs_identification(self) -> bool:
        return self.kind in ("image", "barcode")

    def payload(self) -> Payload:
        if self.kind == "image":
            return ImagePayload(self.image)
        if self.kind == "barcode":
            return BarcodePayload(self.barcode.strip())
        raise ValueError(f"{self.kind} input needs no identification")


def _coerce_input(request: Union[SearchInput, str]) -> SearchInput:
    if isinstance(request, str):
        request = SearchInput.from_text(request)
    if request.kind not in ("text", "image", "barcode"):
        raise ValueError(f"Unknown search input kind: {request.kind}")
    if request.kind == "text" and not request.query.strip():
        raise ValueError("Search query is required")
    if request.kind == "image" and not request.image:
        raise ValueError("Image data is required")
    if request.kind == "barcode" and not request.barcode.strip():
        raise ValueError("Barcode is required")
    return request


# ── Per-request bookkeeping ───────────────────────────────────────────────────

@dataclass
class SearchRun:
    sequence: int
    kind: str
    state: SearchState = SearchState.IDLE
    query: Optional[str] = None
    error: Optional[AggregationError] = None
    started_at: float = field(default_factory=time.monotonic)

    def advance(self, state: SearchState) -> None:
        logger.debug("Search #%d: %s → %s", self.sequence, self.state.value, state.value)
        self.state = state


# ── Orchestrator ──────────────────────────────────────────────────────────────

class OfferAggregator:

    def __init__(
        self,
        identifier: Identifier,
        retailer_search: RetailerSearch,
        cache: SessionCache,
        log_searches: bool = False,
    ) -> None:
        self.identifier = identifier
        self.retailer_search = retailer_search
        self.cache = cache
        self.log_searches = log_searches
        self._sequence = 0
        self._write_lock = asyncio.Lock()
        self.latest_run: Optional[SearchRun] = None

    async def search(self, request: Union[SearchInput, str]) -> SearchSession:
        """
        Run one search end to end.
        Returns the ranked session; raises an AggregationError subclass otherwise.
        Blank input raises ValueError before anything starts.
        """
        request = _coerce_input(request)
        self._sequence += 1
        run = SearchRun(sequence=self._sequence, kind=request.kind)
        self.latest_run = run
        logger.info("Search #%d started (%s)", run.sequence, request.kind)

        try:
            query = await self._resolve_query(run, request)
            results = await self._collect(run, query)
            session = self._rank(run, request, query, results)

            async with self._write_lock:
                if run.sequence != self._sequence:
                    raise SupersededSearchError(run.sequence, self._sequence)
                if not await self.cache.save_session(session):
                    logger.warning(
                        "Search #%d: result for '%s' is not cached and will not survive navigation",
                        run.sequence, query,
                    )
        except AggregationError as exc:
            run.error = exc
            run.advance(SearchState.FAILED)
            level = logging.INFO if exc.soft else logging.WARNING
            logger.log(level, "Search #%d ended at %s: %s", run.sequence, exc.stage, exc.message)
            raise

        run.advance(SearchState.DONE)
        logger.info(
            "Search #%d done: '%s' → %d offers in %.1fs",
            run.sequence, query, len(session.offers), time.monotonic() - run.started_at,
        )
        if self.log_searches:
            await self._log(session)
        return session

    # ── Stages ────────────────────────────────────────────────────────────────

    async def _resolve_query(self, run: SearchRun, request: SearchInput) -> str:
        if not request.needs_identification:
            run.query = request.query.strip()
            return run.query

        run.advance(SearchState.IDENTIFYING)
        try:
            result = await self.identifier.identify(request.payload())
        except Exception as exc:
            raise IdentificationError(f"Identification failed: {exc}") from exc

        if not result.success:
            raise IdentificationError(
                result.error or "Could not identify the product",
                code=result.code or "UNKNOWN_ERROR",
            )
        keywords = (result.keywords or "").strip()
        if not keywords:
            raise IdentificationError(
                "Product was identified but no search keywords came back",
                code="NO_KEYWORDS",
            )

        logger.info("Search #%d identified %r → '%s'", run.sequence, result.product_name, keywords)
        run.query = keywords
        return keywords

    async def _collect(self, run: SearchRun, query: str) -> RetailerResults:
        run.advance(SearchState.DISPATCHING)
        try:
            call = self.retailer_search.search(query)
            run.advance(SearchState.COLLECTING)
            results = await call
        except Exception as exc:
            raise CollectionError(f"Could not reach retailers: {exc}") from exc

        if results.failed_retailers:
            logger.warning("Search #%d: retailers failed: %s", run.sequence, ", ".join(results.failed_retailers))
        if not results.offers:
            raise EmptyResultError(query, results.scraped_retailers, results.failed_retailers)
        return results

    def _rank(
        self,
        run: SearchRun,
        request: SearchInput,
        query: str,
        results: RetailerResults,
    ) -> SearchSession:
        offers = rank_offers(normalize_offers(results.offers))
        run.advance(SearchState.RANKED)
        return SearchSession(
            query=query,
            offers=tuple(offers),
            scraped_retailers=tuple(results.scraped_retailers),
            failed_retailers=tuple(results.failed_retailers),
            search_type=request.kind,
        )

    async def _log(self, session: SearchSession) -> None:
        import database as db
        try:
            await db.log_search(
                session.query, session.search_type, len(session.offers),
                list(session.scraped_retailers), list(session.failed_retailers),
            )
        except Exception as exc:
            logger.warning("Could not log search '%s': %s", session.query, exc)

    # ── Navigation ────────────────────────────────────────────────────────────

    async def restore_session(self) -> Optional[SearchSession]:
        """Returning from a detail page: the last search, or None if there was none."""
        return await self.cache.restore_session()

    async def reset_session(self) -> None:
        await self.cache.reset_session()

    async def record_view(self, offer: NormalizedOffer) -> list[NormalizedOffer]:
        return await self.cache.record_view(offer)

    async def recently_viewed(self) -> list[NormalizedOffer]:
        return await self.cache.recently_viewed()

    async def find_offer(self, offer_id: str) -> Optional[NormalizedOffer]:
        return await self.cache.find_offer(offer_id)


async def create_aggregator() -> OfferAggregator:
    """Wire the production collaborators: AI providers, scraping service, SQLite + memory tiers."""
    import database as db
    import retailer_search
    from providers.manager import ProviderIdentifier
    from storage import MemoryStore, SQLiteStore

    await db.init_db()
    return OfferAggregator(
        identifier=ProviderIdentifier(),
        retailer_search=await retailer_search.get_backend(),
        cache=SessionCache(durable=SQLiteStore(), ephemeral=MemoryStore()),
        log_searches=config.LOG_SEARCHES,
    )
