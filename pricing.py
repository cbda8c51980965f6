"""
pricing.py — turns free-form retailer prices into numbers.

Retailers hand us "₹12,345.67", "$1,000", "From $499.99", 1234 or nothing
at all. Everything collapses to a non-negative float; the status tells the
caller whether the 0 it got back is a real price, a missing one, or junk.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

# Currency codes are removed before glyphs so "Rs." does not leave a stray dot
_CURRENCY_CODES = re.compile(r"\b(?:rs\.?|inr|usd|eur|gbp)", re.IGNORECASE)
_CURRENCY_GLYPHS = re.compile(r"[₹$€£¥\s]")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


class PriceStatus(str, Enum):
    OK = "ok"
    MISSING = "missing"
    INVALID = "invalid"


@dataclass(frozen=True)
class ParsedPrice:
    value: float
    status: PriceStatus

    @property
    def known(self) -> bool:
        return self.status is PriceStatus.OK


_MISSING = ParsedPrice(0.0, PriceStatus.MISSING)
_INVALID = ParsedPrice(0.0, PriceStatus.INVALID)


def extract_number(value: Any) -> Optional[float]:
    """
    Pull the first decimal number out of value.
    Numbers pass through; strings lose currency markers and thousands
    separators first. Returns None when nothing numeric is found.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    cleaned = _CURRENCY_CODES.sub("", value)
    cleaned = _CURRENCY_GLYPHS.sub("", cleaned).replace(",", "")
    m = _NUMBER.search(cleaned)
    if not m:
        return None
    try:
        return float(m.group(0))
    except ValueError:
        return None


def parse_price_detail(value: Any) -> ParsedPrice:
    """Parse value and say whether the price was present, usable, or neither."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return _MISSING
    number = extract_number(value)
    if number is None or not math.isfinite(number) or number < 0:
        return _INVALID
    return ParsedPrice(number, PriceStatus.OK)


def parse_price(value: Any) -> float:
    """Non-negative price for value, or 0.0 when absent or unparseable. Never raises."""
    return parse_price_detail(value).value
