"""
Tests for main.py.

Covers:
  - argument validation: missing image file, unknown key names
  - --view opens an offer and records it; --recent lists it afterwards
  - search exit codes (soft failures exit 0)
  - --stats, --keys, --set-key / --delete-key (collaborator caches reset)
  - log handlers keep stdout free for results
"""
from __future__ import annotations

import logging
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

import database as db
import key_store
import main
import providers.manager as manager_mod
import retailer_search
from aggregator import OfferAggregator
from providers.base import IdentifyResult
from search_backends.base import RetailerResults
from session_cache import SessionCache
from storage import MemoryStore


def make_aggregator(offers=None) -> OfferAggregator:
    results = RetailerResults(
        offers=offers if offers is not None else [
            {"title": "Pixel 8", "retailer": "Amazon", "price": 52999, "rating": 4.5},
            {"title": "Pixel 8", "retailer": "Flipkart", "price": 49999, "rating": 4.1},
        ],
        scraped_retailers=["Amazon", "Flipkart"],
        failed_retailers=[],
    )
    retailer = MagicMock()
    retailer.search = AsyncMock(return_value=results)
    identifier = MagicMock()
    identifier.identify = AsyncMock(return_value=IdentifyResult(success=True, keywords="google pixel 8"))
    cache = SessionCache(durable=MemoryStore("durable"), ephemeral=MemoryStore())
    return OfferAggregator(identifier, retailer, cache)


@pytest_asyncio.fixture(autouse=True)
async def init(tmp_data_dir):
    await db.init_db()


@pytest.fixture
def agg():
    aggregator = make_aggregator()
    with patch("main.create_aggregator", new=AsyncMock(return_value=aggregator)):
        yield aggregator


# ── Argument parsing ───────────────────────────────────────────────────────────

class TestParseArgs:
    def test_query_words(self):
        assert main.parse_args(["pixel", "8"]).query == ["pixel", "8"]

    def test_missing_image_is_usage_error(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main.parse_args(["--image", str(tmp_path / "nope.jpg")])
        assert exc_info.value.code == 2
        assert "image not found" in capsys.readouterr().err

    def test_existing_image_accepted(self, tmp_path):
        photo = tmp_path / "photo.jpg"
        photo.write_bytes(b"\xff\xd8\xff")
        assert main.parse_args(["--image", str(photo)]).image == str(photo)

    def test_unknown_key_name(self, capsys):
        with pytest.raises(SystemExit):
            main.parse_args(["--set-key", "gemini_api_key", "x"])
        assert "unknown key" in capsys.readouterr().err

    def test_unknown_delete_key(self):
        with pytest.raises(SystemExit):
            main.parse_args(["--delete-key", "nope"])


# ── Logging ────────────────────────────────────────────────────────────────────

def test_log_handlers_leave_stdout_alone(tmp_path):
    handlers = main._log_handlers(tmp_path)
    try:
        streams = [h.stream for h in handlers if type(h) is logging.StreamHandler]
        assert streams == [sys.stderr]
        assert any(isinstance(h, logging.FileHandler) for h in handlers)
    finally:
        for h in handlers:
            h.close()


# ── Search / view / recent ─────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestSearchCommands:
    async def test_search_prints_badges(self, agg, capsys):
        assert await main.run(main.parse_args(["pixel", "8"])) == 0
        out = capsys.readouterr().out
        assert "Results for 'pixel 8'" in out
        assert "LOWEST PRICE" in out

    async def test_nothing_to_search(self, agg, capsys):
        assert await main.run(main.parse_args([])) == 2
        assert "Nothing to search for" in capsys.readouterr().err

    async def test_zero_offers_is_soft(self, capsys):
        aggregator = make_aggregator(offers=[])
        with patch("main.create_aggregator", new=AsyncMock(return_value=aggregator)):
            assert await main.run(main.parse_args(["unobtainium"])) == 0
        assert "[collection]" in capsys.readouterr().err

    async def test_view_records_recently_viewed(self, agg, capsys):
        await main.run(main.parse_args(["pixel", "8"]))
        offer = (await agg.restore_session()).offers[1]
        capsys.readouterr()

        assert await main.run(main.parse_args(["--view", offer.id])) == 0
        assert offer.vendor in capsys.readouterr().out
        assert [o.id for o in await agg.recently_viewed()] == [offer.id]

        await main.run(main.parse_args(["--recent"]))
        assert offer.id in capsys.readouterr().out

    async def test_view_unknown_offer(self, agg, capsys):
        assert await main.run(main.parse_args(["--view", "ghost"])) == 1
        assert "No offer 'ghost'" in capsys.readouterr().err
        assert await agg.recently_viewed() == []

    async def test_recent_empty(self, agg, capsys):
        assert await main.run(main.parse_args(["--recent"])) == 0
        assert "Nothing viewed yet." in capsys.readouterr().out

    async def test_restore_without_search(self, agg, capsys):
        assert await main.run(main.parse_args(["--restore"])) == 1


# ── Stats / keys ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestAdminCommands:
    async def test_stats(self, capsys, monkeypatch):
        monkeypatch.setattr(retailer_search, "backend_name", AsyncMock(return_value="direct"))
        await db.log_search("pixel 8", "text", 2, ["Amazon"], ["Croma"])
        assert await main.run(main.parse_args(["--stats"])) == 0
        out = capsys.readouterr().out
        assert "Searches:          1 (text 1)" in out
        assert "Croma 1" in out
        assert "direct" in out

    async def test_keys_are_masked(self, capsys):
        await key_store.set("openai_api_key", "sk-1234567890abcdef")
        assert await main.run(main.parse_args(["--keys"])) == 0
        out = capsys.readouterr().out
        assert "sk-1" in out
        assert "sk-1234567890abcdef" not in out

    async def test_set_key_resets_collaborators(self, monkeypatch):
        monkeypatch.setattr(manager_mod, "_providers", {"groq/llama": MagicMock()})
        monkeypatch.setattr(retailer_search, "_backend", MagicMock())

        assert await main.run(main.parse_args(["--set-key", "groq_api_key", "gsk-new-value"])) == 0

        assert await key_store.get("groq_api_key") == "gsk-new-value"
        assert manager_mod._providers == {}
        assert retailer_search._backend is None

    async def test_delete_key(self, monkeypatch):
        monkeypatch.delenv("SCRAPER_API_KEY", raising=False)
        await key_store.set("scraper_api_key", "scr-123")
        assert await main.run(main.parse_args(["--delete-key", "scraper_api_key"])) == 0
        assert await key_store.get("scraper_api_key") is None
