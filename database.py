"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  kv_store     — durable key/value tier of the session cache, split by namespace
  api_keys     — collaborator API keys (override .env values)
  search_logs  — one row per successful search

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "offer_radar.db")
_lock = asyncio.Lock()          # serialise schema migrations


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
-- Durable tier of the session cache (survives restarts)
CREATE TABLE IF NOT EXISTS kv_store (
    namespace  TEXT NOT NULL,
    key        TEXT NOT NULL,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);

-- Collaborator API keys (override .env values)
CREATE TABLE IF NOT EXISTS api_keys (
    key_name   TEXT PRIMARY KEY,
    key_value  TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS search_logs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    query             TEXT    NOT NULL DEFAULT '',
    search_type       TEXT    NOT NULL DEFAULT 'text',
    offer_count       INTEGER NOT NULL DEFAULT 0,
    scraped_retailers TEXT    NOT NULL DEFAULT '[]',
    failed_retailers  TEXT    NOT NULL DEFAULT '[]',
    searched_at       TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_search_logs_at ON search_logs (searched_at);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


# ── Key/value store ───────────────────────────────────────────────────────────

async def kv_get(namespace: str, key: str) -> Optional[str]:
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT value FROM kv_store WHERE namespace = ? AND key = ?", (namespace, key)
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None


async def kv_set(namespace: str, key: str, value: str) -> None:
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO kv_store (namespace, key, value, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(namespace, key) DO UPDATE SET
                 value=excluded.value,
                 updated_at=excluded.updated_at""",
            (namespace, key, value, now),
        )
        await db.commit()


async def kv_delete(namespace: str, key: str) -> bool:
    """Delete one entry. Returns True if something was removed."""
    async with aiosqlite.connect(DB_PATH) as db:
        cur = await db.execute(
            "DELETE FROM kv_store WHERE namespace = ? AND key = ?", (namespace, key)
        )
        await db.commit()
        return cur.rowcount > 0


# ── API key operations ────────────────────────────────────────────────────────

async def get_api_key(key_name: str) -> Optional[str]:
    """Return DB-stored value for key_name, or None if not set."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT key_value FROM api_keys WHERE key_name = ?", (key_name,)
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None


async def set_api_key(key_name: str, key_value: str) -> None:
    """Insert or replace an API key in the DB."""
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO api_keys (key_name, key_value, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(key_name) DO UPDATE SET
                 key_value=excluded.key_value,
                 updated_at=excluded.updated_at""",
            (key_name, key_value, now),
        )
        await db.commit()


async def delete_api_key(key_name: str) -> None:
    """Remove a key from DB (falls back to .env value)."""
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("DELETE FROM api_keys WHERE key_name = ?", (key_name,))
        await db.commit()


# ── Search log operations ─────────────────────────────────────────────────────

async def log_search(
    query: str,
    search_type: str,
    offer_count: int,
    scraped_retailers: list[str],
    failed_retailers: list[str],
) -> None:
    """Record a completed search."""
    now = datetime.now(timezone.utc).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO search_logs
               (query, search_type, offer_count, scraped_retailers, failed_retailers, searched_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (query, search_type, offer_count,
             json.dumps(scraped_retailers), json.dumps(failed_retailers), now),
        )
        await db.commit()


async def get_stats() -> dict:
    """Return summary stats over the search log."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute("SELECT COUNT(*) FROM search_logs") as cur:
            total_searches = (await cur.fetchone())[0]

        async with db.execute(
            "SELECT search_type, COUNT(*) as n FROM search_logs GROUP BY search_type ORDER BY n DESC"
        ) as cur:
            searches_per_type = dict(await cur.fetchall())

        async with db.execute("SELECT failed_retailers FROM search_logs") as cur:
            failures: dict[str, int] = {}
            for (raw,) in await cur.fetchall():
                for retailer in json.loads(raw):
                    failures[retailer] = failures.get(retailer, 0) + 1

        async with db.execute(
            "SELECT searched_at FROM search_logs ORDER BY searched_at DESC LIMIT 1"
        ) as cur:
            row = await cur.fetchone()
            last_search = row[0] if row else "never"

    return {
        "total_searches": total_searches,
        "searches_per_type": searches_per_type,
        "retailer_failures": failures,
        "last_search": last_search,
    }
