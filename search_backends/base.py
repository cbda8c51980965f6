"""
Abstract base for all retailer search backends.

Every backend answers with the same RetailerResults — raw offers from every
retailer that answered, plus which retailers were scraped and which failed.
Per-retailer failures are data, not exceptions: a backend only raises when
it could not search at all.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class RetailerResults:
    offers: list[dict] = field(default_factory=list)            # raw, producer-defined
    scraped_retailers: list[str] = field(default_factory=list)
    failed_retailers: list[str] = field(default_factory=list)

    def merge(self, other: "RetailerResults") -> "RetailerResults":
        """Combine two partial answers; a retailer scraped by either is not failed."""
        scraped = list(dict.fromkeys(self.scraped_retailers + other.scraped_retailers))
        failed = [
            r for r in dict.fromkeys(self.failed_retailers + other.failed_retailers)
            if r not in scraped
        ]
        return RetailerResults(
            offers=self.offers + other.offers,
            scraped_retailers=scraped,
            failed_retailers=failed,
        )


class SearchBackend(ABC):
    """All backends must implement this interface."""

    @abstractmethod
    async def search(self, query: str) -> RetailerResults:
        """
        Search every retailer for `query`.
        Raises only on total failure.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name for logs/display."""
        ...
