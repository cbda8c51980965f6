"""
offers.py — one canonical offer shape for every retailer.

Every retailer (and the AI collaborator) names its fields differently:
Amazon gives "title"/"currentPrice", the scraping service gives
"retailer"/"link", the direct APIs give "name"/"price"/"vendor".
normalize_offers() maps them all onto NormalizedOffer.

It never decides ranking and never drops an offer — a broken record comes
out with defaults and a MalformedOfferWarning instead.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import config
from errors import MalformedOfferWarning
from identity import NAME_KEYS, VENDOR_KEYS, assign_id, first_present
from pricing import PriceStatus, extract_number, parse_price_detail

logger = logging.getLogger(__name__)

PRICE_KEYS = ("price", "currentPrice", "current_price", "salePrice", "sale_price")
ORIGINAL_PRICE_KEYS = ("originalPrice", "original_price", "mrp", "listPrice", "list_price")
LOGO_KEYS = ("vendorLogoUrl", "vendorLogo", "sellerLogo")
RATING_KEYS = ("rating", "stars")
IMAGE_KEYS = ("imageUrl", "image", "thumbnail", "img")
LINK_KEYS = ("url", "link", "productUrl", "product_url")
SPEC_KEYS = ("specifications", "specs")

UNKNOWN_VENDOR = "Unknown"
MAX_RATING = 5.0


@dataclass
class NormalizedOffer:
    id: str
    name: str
    price: float                    # ≥ 0; 0 when unknown (see price_status)
    vendor: str
    vendor_logo_url: str
    image_url: str
    link: str
    original_price: Optional[float] = None
    rating: Optional[float] = None  # 0–5
    price_status: str = PriceStatus.OK.value
    specifications: dict = field(default_factory=dict)

    # Computed by ranking.py, never taken from source data
    is_lowest_price: bool = False
    is_best_deal: bool = False

    @property
    def has_price(self) -> bool:
        return self.price_status == PriceStatus.OK.value

    # ── Serialisation (camelCase, same shape the frontend stores) ─────────────

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "originalPrice": self.original_price,
            "priceStatus": self.price_status,
            "vendor": self.vendor,
            "vendorLogoUrl": self.vendor_logo_url,
            "rating": self.rating,
            "imageUrl": self.image_url,
            "link": self.link,
            "specifications": dict(self.specifications),
            "isLowestPrice": self.is_lowest_price,
            "isBestDeal": self.is_best_deal,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NormalizedOffer":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            price=float(data["price"]),
            original_price=data.get("originalPrice"),
            price_status=data.get("priceStatus", PriceStatus.OK.value),
            vendor=data["vendor"],
            vendor_logo_url=data["vendorLogoUrl"],
            rating=data.get("rating"),
            image_url=data["imageUrl"],
            link=data["link"],
            specifications=dict(data.get("specifications") or {}),
            is_lowest_price=bool(data.get("isLowestPrice", False)),
            is_best_deal=bool(data.get("isBestDeal", False)),
        )


# ── Field helpers ─────────────────────────────────────────────────────────────

def vendor_logo_url(vendor: str) -> str:
    """Deterministic logo URL for a vendor name (placeholder for unknown vendors)."""
    key = "".join(vendor.lower().split())
    if not key or key == UNKNOWN_VENDOR.lower():
        return config.FALLBACK_LOGO_URL
    return config.VENDOR_LOGO_TEMPLATE.format(vendor=key)


def coerce_rating(value: Any) -> Optional[float]:
    """
    Ratings arrive as 4.3, "4.3", "4.3 out of 5 stars" or junk.
    Returns a 0–5 float, or None when no number can be read.
    """
    if value is None:
        return None
    number = extract_number(value)
    if number is None or number != number:  # NaN
        return None
    return min(max(number, 0.0), MAX_RATING)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ── Normalizer ────────────────────────────────────────────────────────────────

def normalize_offer(raw: Any) -> NormalizedOffer:
    """Map one raw offer onto NormalizedOffer. Never raises."""
    if not isinstance(raw, Mapping):
        logger.warning("Offer is not a mapping (%s) — using defaults", type(raw).__name__)
        raw = {}

    missing: list[str] = []

    name = _text(first_present(raw, NAME_KEYS))
    if name is None:
        missing.append("name")
        name = config.DEFAULT_PRODUCT_NAME

    price = parse_price_detail(first_present(raw, PRICE_KEYS))
    if price.status is PriceStatus.MISSING:
        missing.append("price")

    original = parse_price_detail(first_present(raw, ORIGINAL_PRICE_KEYS))

    vendor = _text(first_present(raw, VENDOR_KEYS))
    if vendor is None:
        missing.append("vendor")
        vendor = UNKNOWN_VENDOR

    specs = first_present(raw, SPEC_KEYS)

    offer = NormalizedOffer(
        id=assign_id(raw),
        name=name,
        price=price.value,
        price_status=price.status.value,
        original_price=original.value if original.known else None,
        vendor=vendor,
        vendor_logo_url=_text(first_present(raw, LOGO_KEYS)) or vendor_logo_url(vendor),
        rating=coerce_rating(first_present(raw, RATING_KEYS)),
        image_url=_text(first_present(raw, IMAGE_KEYS)) or config.FALLBACK_IMAGE_URL,
        link=_text(first_present(raw, LINK_KEYS)) or "#",
        specifications=dict(specs) if isinstance(specs, Mapping) else {},
    )

    if missing:
        logger.warning("Offer %s missing %s — filled with defaults", offer.id, ", ".join(missing))
        warnings.warn(
            f"Offer {offer.id} missing {', '.join(missing)}",
            MalformedOfferWarning,
            stacklevel=2,
        )

    return offer


def normalize_offers(raw_offers: Any) -> list[NormalizedOffer]:
    """
    Normalize a batch of raw offers.

    One output per input, in order. Anything that isn't a list/tuple gives [].
    Ids are made unique within the batch: the first holder keeps its id,
    later duplicates get "-2", "-3", … appended.
    """
    if not isinstance(raw_offers, (list, tuple)):
        if raw_offers is not None:
            logger.warning("Expected a list of offers, got %s", type(raw_offers).__name__)
        return []

    result: list[NormalizedOffer] = []
    seen: set[str] = set()
    for raw in raw_offers:
        offer = normalize_offer(raw)
        if offer.id in seen:
            base, n = offer.id, 2
            while f"{base}-{n}" in seen:
                n += 1
            offer.id = f"{base}-{n}"
        seen.add(offer.id)
        result.append(offer)
    return result
