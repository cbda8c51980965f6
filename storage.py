"""
storage.py — the key/value primitive behind the session cache.

Two tiers, injected into SessionCache rather than reached through globals:

  SQLiteStore  — durable: rows in database.kv_store, survive restarts
  MemoryStore  — ephemeral: lives as long as the browsing session (process)

Both store plain strings; serialisation is the cache's job.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """All storage tiers must implement this interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable tier name for logs."""
        ...


class MemoryStore(KeyValueStore):

    def __init__(self, name: str = "ephemeral") -> None:
        self._name = name
        self._data: dict[str, str] = {}

    @property
    def name(self) -> str:
        return self._name

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class SQLiteStore(KeyValueStore):
    """
    Durable tier on top of database.py.
    The namespace keeps several logical stores apart in one table.
    database.init_db() must have run first.
    """

    def __init__(self, namespace: str = "durable") -> None:
        self._namespace = namespace

    @property
    def name(self) -> str:
        return f"sqlite:{self._namespace}"

    async def get(self, key: str) -> Optional[str]:
        import database as db
        return await db.kv_get(self._namespace, key)

    async def set(self, key: str, value: str) -> None:
        import database as db
        await db.kv_set(self._namespace, key, value)

    async def remove(self, key: str) -> None:
        import database as db
        await db.kv_delete(self._namespace, key)
