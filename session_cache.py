"""
session_cache.py — keeps the last search alive across navigation.

The user opens an offer's detail page and comes back; the result list must
reappear exactly as it was, without re-querying retailers.

Tiers:
  ephemeral — current browsing session, most recent activity → checked FIRST
  durable   — survives restarts → fallback only

Ephemeral wins over durable on restore. That is the opposite of the
"durable is more authoritative" instinct and must stay that way: a stale
durable copy from yesterday must never hide today's search.

Durable also holds the "recently viewed" list: most-recent first, capped
at RECENTLY_VIEWED_LIMIT entries on every write.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import config
from offers import NormalizedOffer
from storage import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_KEY = "last_search"
RECENT_KEY = "recently_viewed"


@dataclass(frozen=True)
class SearchSession:
    """One completed search. Replaced wholesale, never edited."""
    query: str
    offers: tuple[NormalizedOffer, ...]
    scraped_retailers: tuple[str, ...] = ()
    failed_retailers: tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)
    search_type: str = "text"       # text | image | barcode

    @property
    def lowest_price(self) -> Optional[NormalizedOffer]:
        return next((o for o in self.offers if o.is_lowest_price), None)

    @property
    def best_deal(self) -> Optional[NormalizedOffer]:
        return next((o for o in self.offers if o.is_best_deal), None)

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "offers": [o.to_dict() for o in self.offers],
            "scrapedRetailers": list(self.scraped_retailers),
            "failedRetailers": list(self.failed_retailers),
            "timestamp": self.timestamp,
            "searchType": self.search_type,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SearchSession":
        return cls(
            query=data["query"],
            offers=tuple(NormalizedOffer.from_dict(o) for o in data["offers"]),
            scraped_retailers=tuple(data.get("scrapedRetailers") or ()),
            failed_retailers=tuple(data.get("failedRetailers") or ()),
            timestamp=float(data.get("timestamp") or 0),
            search_type=data.get("searchType", "text"),
        )


class SessionCache:

    def __init__(
        self,
        durable: KeyValueStore,
        ephemeral: KeyValueStore,
        recent_limit: int = config.RECENTLY_VIEWED_LIMIT,
    ) -> None:
        self.durable = durable
        self.ephemeral = ephemeral
        self.recent_limit = recent_limit
        self._recent_lock = asyncio.Lock()      # record_view is read-modify-write

    # ── Search session ────────────────────────────────────────────────────────

    async def save_session(self, session: SearchSession) -> list[str]:
        """
        Write the session to both tiers, each one independently.
        A tier that fails is logged and skipped; the others are still written.
        Returns the names of the tiers that now hold the session.
        """
        payload = json.dumps(session.to_dict())
        saved: list[str] = []
        for tier in (self.durable, self.ephemeral):
            try:
                await tier.set(SESSION_KEY, payload)
            except Exception as exc:
                logger.warning("Could not cache search '%s' in %s: %s", session.query, tier.name, exc)
                continue
            saved.append(tier.name)
        logger.info(
            "Cached search '%s' (%d offers) in %s",
            session.query, len(session.offers), " + ".join(saved) or "no tier",
        )
        return saved

    async def restore_session(self) -> Optional[SearchSession]:
        """
        Return the most recent session: ephemeral tier first, durable second.
        None means "no previous search" — distinct from a search that found nothing.
        """
        for tier in (self.ephemeral, self.durable):
            session = await self._load_session(tier)
            if session is not None:
                logger.info("Restored search '%s' from %s", session.query, tier.name)
                return session
        logger.info("No previous search to restore")
        return None

    async def reset_session(self) -> None:
        """Forget the last search in both tiers. Recently viewed is kept."""
        await self.ephemeral.remove(SESSION_KEY)
        await self.durable.remove(SESSION_KEY)
        logger.info("Search session reset")

    async def _load_session(self, tier: KeyValueStore) -> Optional[SearchSession]:
        try:
            raw = await tier.get(SESSION_KEY)
        except Exception as exc:
            logger.warning("Could not read session from %s: %s", tier.name, exc)
            return None
        if not raw:
            return None
        try:
            return SearchSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring corrupt session in %s: %s", tier.name, exc)
            return None

    # ── Recently viewed ───────────────────────────────────────────────────────

    async def record_view(self, offer: NormalizedOffer) -> list[NormalizedOffer]:
        """
        Put offer at the front of the recently-viewed list.
        A previous entry with the same id moves instead of duplicating;
        anything past recent_limit falls off the end (oldest first).
        """
        async with self._recent_lock:
            recent = [o for o in await self.recently_viewed() if o.id != offer.id]
            recent.insert(0, offer)
            recent = recent[: self.recent_limit]
            await self.durable.set(RECENT_KEY, json.dumps([o.to_dict() for o in recent]))
        return recent

    async def recently_viewed(self) -> list[NormalizedOffer]:
        """Newest first."""
        raw = await self.durable.get(RECENT_KEY)
        if not raw:
            return []
        try:
            return [NormalizedOffer.from_dict(o) for o in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring corrupt recently-viewed list: %s", exc)
            return []

    async def find_offer(self, offer_id: str) -> Optional[NormalizedOffer]:
        """Look an offer up for its detail page: current results, then recently viewed."""
        session = await self.restore_session()
        if session is not None:
            for o in session.offers:
                if o.id == offer_id:
                    return o
        for o in await self.recently_viewed():
            if o.id == offer_id:
                return o
        return None
