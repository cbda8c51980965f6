"""
Tests for aggregator.py.

Covers:
  - text search: collect → normalize → rank → cache, no identification
  - image / barcode search: identification output becomes the query
  - identification failures (exception, success=false, blank keywords)
  - collection failure, partial retailer failure, zero offers
  - overlapping searches: a stale completion never overwrites a newer one,
    even when the newer search fails
  - cache write failures do not fail the search
  - navigation helpers delegate to the session cache
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

import database as db
from aggregator import OfferAggregator, SearchInput, SearchState, _coerce_input
from errors import (
    CollectionError, EmptyResultError, IdentificationError, SupersededSearchError,
)
from providers.base import BarcodePayload, IdentifyResult, ImagePayload
from search_backends.base import RetailerResults
from session_cache import SessionCache
from storage import MemoryStore


def make_results(*prices, failed=()) -> RetailerResults:
    vendors = ["Amazon", "Flipkart", "Reliance Digital", "Croma", "DMart"]
    offers = [
        {"title": f"Phone {i}", "retailer": vendors[i % len(vendors)], "price": p, "rating": 4.0}
        for i, p in enumerate(prices)
    ]
    scraped = [vendors[i % len(vendors)] for i in range(len(prices))]
    return RetailerResults(offers=offers, scraped_retailers=scraped, failed_retailers=list(failed))


class FullDiskStore(MemoryStore):
    async def set(self, key, value):
        raise OSError("disk full")


def make_aggregator(results=None, identify=None, log_searches=False):
    retailer_search = MagicMock()
    retailer_search.search = AsyncMock(return_value=results or make_results(100, 90))
    identifier = MagicMock()
    identifier.identify = AsyncMock(return_value=identify or IdentifyResult(success=True, keywords="apple iphone 15"))
    cache = SessionCache(durable=MemoryStore("durable"), ephemeral=MemoryStore())
    return OfferAggregator(identifier, retailer_search, cache, log_searches=log_searches)


# ── Input ──────────────────────────────────────────────────────────────────────

class TestSearchInput:
    def test_string_becomes_text(self):
        assert _coerce_input("tv").kind == "text"

    def test_blank_text_rejected(self):
        with pytest.raises(ValueError):
            _coerce_input("   ")

    def test_empty_image_rejected(self):
        with pytest.raises(ValueError):
            _coerce_input(SearchInput.from_image(b""))

    def test_blank_barcode_rejected(self):
        with pytest.raises(ValueError):
            _coerce_input(SearchInput.from_barcode(" "))

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="Unknown"):
            _coerce_input(SearchInput(kind="voice", query="x"))

    def test_payloads(self):
        assert isinstance(SearchInput.from_image(b"\xff\xd8").payload(), ImagePayload)
        assert SearchInput.from_barcode(" 890103 ").payload() == BarcodePayload("890103")

    def test_text_needs_no_identification(self):
        assert not SearchInput.from_text("tv").needs_identification
        with pytest.raises(ValueError):
            SearchInput.from_text("tv").payload()


# ── Text search ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestTextSearch:
    async def test_ranked_session_returned(self):
        agg = make_aggregator(make_results(100, 90, 120))
        session = await agg.search("  phone  ")
        assert session.query == "phone"
        assert session.search_type == "text"
        assert len(session.offers) == 3
        assert session.lowest_price.price == 90.0
        assert session.best_deal is not None

    async def test_identifier_not_called(self):
        agg = make_aggregator()
        await agg.search("phone")
        agg.identifier.identify.assert_not_called()
        agg.retailer_search.search.assert_awaited_once_with("phone")

    async def test_session_cached(self):
        agg = make_aggregator()
        session = await agg.search("phone")
        assert await agg.restore_session() == session

    async def test_state_done(self):
        agg = make_aggregator()
        await agg.search("phone")
        assert agg.latest_run.state is SearchState.DONE

    async def test_partial_failure_still_succeeds(self):
        agg = make_aggregator(make_results(100, 200, failed=["Croma"]))
        session = await agg.search("phone")
        assert session.failed_retailers == ("Croma",)
        assert len(session.offers) == 2

    async def test_every_offer_has_unique_id(self):
        results = RetailerResults(offers=[{"title": "Same", "retailer": "Amazon", "price": p} for p in (1, 2, 3)])
        session = await make_aggregator(results).search("same")
        assert len({o.id for o in session.offers}) == 3

    async def test_blank_query_raises_before_search(self):
        agg = make_aggregator()
        with pytest.raises(ValueError):
            await agg.search("")
        agg.retailer_search.search.assert_not_called()


# ── Image / barcode search ─────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestIdentifiedSearch:
    async def test_image_keywords_become_query(self):
        agg = make_aggregator()
        session = await agg.search(SearchInput.from_image(b"\xff\xd8jpeg"))
        agg.retailer_search.search.assert_awaited_once_with("apple iphone 15")
        assert session.query == "apple iphone 15"
        assert session.search_type == "image"

    async def test_barcode_payload_passed(self):
        agg = make_aggregator()
        await agg.search(SearchInput.from_barcode("8901030865278"))
        (payload,), _ = agg.identifier.identify.call_args
        assert payload == BarcodePayload("8901030865278")

    async def test_identification_failure_result(self):
        agg = make_aggregator(identify=IdentifyResult.failed("Image too blurry", "BLURRED_IMAGE"))
        with pytest.raises(IdentificationError) as exc_info:
            await agg.search(SearchInput.from_image(b"img"))
        assert exc_info.value.code == "BLURRED_IMAGE"
        assert exc_info.value.stage == "identification"
        agg.retailer_search.search.assert_not_called()

    async def test_identifier_exception_wrapped(self):
        agg = make_aggregator()
        agg.identifier.identify = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(IdentificationError, match="boom"):
            await agg.search(SearchInput.from_image(b"img"))
        assert agg.latest_run.state is SearchState.FAILED

    async def test_blank_keywords(self):
        agg = make_aggregator(identify=IdentifyResult(success=True, keywords="  "))
        with pytest.raises(IdentificationError) as exc_info:
            await agg.search(SearchInput.from_barcode("123"))
        assert exc_info.value.code == "NO_KEYWORDS"

    async def test_failure_leaves_previous_session(self):
        agg = make_aggregator()
        first = await agg.search("phone")
        agg.identifier.identify = AsyncMock(return_value=IdentifyResult.failed("no product", "NO_PRODUCT_DETECTED"))
        with pytest.raises(IdentificationError):
            await agg.search(SearchInput.from_image(b"img"))
        assert await agg.restore_session() == first


# ── Collection ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestCollection:
    async def test_search_error_wrapped(self):
        agg = make_aggregator()
        agg.retailer_search.search = AsyncMock(side_effect=RuntimeError("Scraper service error 503"))
        with pytest.raises(CollectionError, match="503") as exc_info:
            await agg.search("phone")
        assert exc_info.value.stage == "collection"
        assert not exc_info.value.soft

    async def test_zero_offers_is_soft_empty(self):
        agg = make_aggregator(RetailerResults(offers=[], scraped_retailers=["Amazon"], failed_retailers=["Croma"]))
        with pytest.raises(EmptyResultError) as exc_info:
            await agg.search("unobtainium")
        assert exc_info.value.soft
        assert exc_info.value.failed_retailers == ["Croma"]
        assert "unobtainium" in exc_info.value.message

    async def test_empty_result_not_cached(self):
        agg = make_aggregator()
        first = await agg.search("phone")
        agg.retailer_search.search = AsyncMock(return_value=RetailerResults())
        with pytest.raises(EmptyResultError):
            await agg.search("nothing")
        assert await agg.restore_session() == first


# ── Ordering ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestOrdering:
    async def test_stale_result_dropped(self):
        agg = make_aggregator()
        release_slow = asyncio.Event()

        async def fake_search(query):
            if query == "slow":
                await release_slow.wait()
                return make_results(500)
            return make_results(100)

        agg.retailer_search.search = fake_search

        slow_task = asyncio.create_task(agg.search("slow"))
        await asyncio.sleep(0)
        fast = await agg.search("fast")
        release_slow.set()

        with pytest.raises(SupersededSearchError) as exc_info:
            await slow_task
        assert exc_info.value.sequence == 1
        assert exc_info.value.latest == 2
        assert exc_info.value.soft

        restored = await agg.restore_session()
        assert restored.query == "fast"
        assert restored == fast

    async def test_failed_newer_search_still_supersedes(self):
        blurry = IdentifyResult(success=False, error="Image is too blurry", code="BLURRED_IMAGE")
        agg = make_aggregator(identify=blurry)
        earlier = await agg.search("earlier")
        release_slow = asyncio.Event()

        async def fake_search(query):
            if query == "slow":
                await release_slow.wait()
            return make_results(100)

        agg.retailer_search.search = fake_search

        slow_task = asyncio.create_task(agg.search("slow"))
        await asyncio.sleep(0)
        with pytest.raises(IdentificationError):
            await agg.search(SearchInput.from_image(b"\xff\xd8"))
        release_slow.set()

        with pytest.raises(SupersededSearchError):
            await slow_task
        assert await agg.restore_session() == earlier

    async def test_sequential_searches_both_cached(self):
        agg = make_aggregator()
        await agg.search("first")
        second = await agg.search("second")
        assert await agg.restore_session() == second


# ── Cache failures ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestCacheFailures:
    async def test_durable_write_failure_still_returns(self):
        agg = make_aggregator()
        agg.cache = SessionCache(durable=FullDiskStore("durable"), ephemeral=MemoryStore())
        session = await agg.search("phone")
        assert agg.latest_run.state is SearchState.DONE
        assert await agg.restore_session() == session

    async def test_no_tier_writable(self):
        agg = make_aggregator()
        agg.cache = SessionCache(durable=FullDiskStore("durable"), ephemeral=FullDiskStore())
        session = await agg.search("phone")
        assert len(session.offers) == 2
        assert agg.latest_run.state is SearchState.DONE
        assert agg.latest_run.error is None
        assert await agg.restore_session() is None


# ── Navigation ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestNavigation:
    async def test_reset(self):
        agg = make_aggregator()
        await agg.search("phone")
        await agg.reset_session()
        assert await agg.restore_session() is None

    async def test_record_and_find(self):
        agg = make_aggregator()
        session = await agg.search("phone")
        offer = session.offers[0]
        await agg.record_view(offer)
        assert [o.id for o in await agg.recently_viewed()] == [offer.id]
        assert await agg.find_offer(offer.id) == offer


# ── Search log ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSearchLog:
    @pytest_asyncio.fixture(autouse=True)
    async def init(self, tmp_data_dir):
        await db.init_db()

    async def test_logged_when_enabled(self):
        agg = make_aggregator(make_results(1, 2, failed=["DMart"]), log_searches=True)
        await agg.search("phone")
        stats = await db.get_stats()
        assert stats["total_searches"] == 1
        assert stats["retailer_failures"] == {"DMart": 1}

    async def test_not_logged_when_disabled(self):
        await make_aggregator().search("phone")
        assert (await db.get_stats())["total_searches"] == 0
