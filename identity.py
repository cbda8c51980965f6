"""
identity.py — stable ids for raw retailer offers.

Priority:
  1. upstream id, verbatim
  2. slug(name)[:20] + "-" + slug(vendor)   (deterministic)
  3. random token                           (safety net only)
"""
from __future__ import annotations

import re
import secrets
from typing import Any, Mapping, Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]")

ID_KEYS = ("id", "productId", "product_id")
NAME_KEYS = ("name", "title", "productName", "product_title")
VENDOR_KEYS = ("vendor", "retailer", "seller", "store", "source")


def slug(text: Any) -> str:
    """Lower-case text and drop everything that isn't a-z or 0-9."""
    if text is None:
        return ""
    return _NON_ALNUM.sub("", str(text).lower())


def first_present(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Optional[Any]:
    """Return the first value under keys that isn't None or blank."""
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def random_id() -> str:
    return secrets.token_hex(7)[:13]


def assign_id(raw: Mapping[str, Any]) -> str:
    upstream = first_present(raw, ID_KEYS)
    if upstream is not None:
        return str(upstream)

    name_slug = slug(first_present(raw, NAME_KEYS))
    vendor_slug = slug(first_present(raw, VENDOR_KEYS))
    if name_slug and vendor_slug:
        return f"{name_slug[:20]}-{vendor_slug}"

    return random_id()
