"""
errors.py — what can go wrong between "user hits search" and "ranked offers".

Only the two collaborator calls (identification, retailer search) raise.
Every error carries the stage it came from so the UI can tell
"couldn't understand your photo" apart from "couldn't reach retailers".
"""
from __future__ import annotations

from typing import Optional


class AggregationError(Exception):
    """Base for every user-facing search failure."""

    stage: str = "aggregation"
    soft: bool = False

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage


class IdentificationError(AggregationError):
    """The AI collaborator failed or gave back no usable keywords."""

    stage = "identification"

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR") -> None:
        super().__init__(message)
        self.code = code


class CollectionError(AggregationError):
    """The retailer-search collaborator could not search at all."""

    stage = "collection"


class EmptyResultError(AggregationError):
    """
    Collection worked but nobody had a match.
    Soft: the UI shows "no matches", not an error state.
    """

    stage = "collection"
    soft = True

    def __init__(
        self,
        query: str,
        scraped_retailers: Optional[list[str]] = None,
        failed_retailers: Optional[list[str]] = None,
    ) -> None:
        super().__init__(f"No products found matching '{query}'")
        self.query = query
        self.scraped_retailers = list(scraped_retailers or [])
        self.failed_retailers = list(failed_retailers or [])


class SupersededSearchError(AggregationError):
    """A newer search started while this one was in flight; its result is dropped."""

    stage = "ordering"
    soft = True

    def __init__(self, sequence: int, latest: int) -> None:
        super().__init__(f"Search #{sequence} superseded by search #{latest}")
        self.sequence = sequence
        self.latest = latest


class MalformedOfferWarning(UserWarning):
    """A raw offer lacked required fields and was filled with defaults."""
