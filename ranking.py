"""
ranking.py — "Lowest price" and "Best deal" badges.

Lowest price: cheapest offer; ties go to the best-rated candidate, then to
the first one in retailer order.

Best deal: highest composite score among rated offers —
    score = 0.7 × price_score + 0.3 × rating/5
    price_score = (max_price - price) / (max_price - min_price), 0.5 when flat
Price dominates because it is what people compare on; rating only separates
similarly priced offers. No ratings at all → best deal = lowest price.

Offers with an unknown price (price_status != ok) sit out both badges
unless nobody has a known price.
"""
from __future__ import annotations

import logging
from typing import Optional

from offers import NormalizedOffer

logger = logging.getLogger(__name__)

PRICE_WEIGHT = 0.7
RATING_WEIGHT = 0.3
FLAT_PRICE_SCORE = 0.5


def deal_score(offer: NormalizedOffer, min_price: float, max_price: float) -> float:
    """Composite price/rating score; offer must have a rating."""
    spread = max_price - min_price
    price_score = (max_price - offer.price) / spread if spread > 0 else FLAT_PRICE_SCORE
    rating_score = (offer.rating or 0.0) / 5
    return PRICE_WEIGHT * price_score + RATING_WEIGHT * rating_score


def _ranking_pool(offers: list[NormalizedOffer]) -> list[NormalizedOffer]:
    priced = [o for o in offers if o.has_price]
    return priced or list(offers)


def _pick_lowest(pool: list[NormalizedOffer], min_price: float) -> NormalizedOffer:
    candidates = [o for o in pool if o.price == min_price]
    if len(candidates) == 1:
        return candidates[0]

    rated = [o for o in candidates if o.rating is not None]
    if not rated:
        return candidates[0]

    best = rated[0]
    for o in rated[1:]:
        if o.rating > best.rating:
            best = o
    return best


def _pick_best_deal(
    pool: list[NormalizedOffer],
    min_price: float,
    max_price: float,
) -> Optional[NormalizedOffer]:
    best: Optional[NormalizedOffer] = None
    best_score = float("-inf")
    for o in pool:
        if o.rating is None:
            continue
        score = deal_score(o, min_price, max_price)
        if score > best_score:
            best, best_score = o, score
    return best


def rank_offers(offers: list[NormalizedOffer]) -> list[NormalizedOffer]:
    """
    Set is_lowest_price / is_best_deal on a freshly normalized list.
    Flags are reset first, so at most one offer carries each badge.
    Returns the same list. Empty input is a no-op.
    """
    if not offers:
        return offers

    for o in offers:
        o.is_lowest_price = False
        o.is_best_deal = False

    pool = _ranking_pool(offers)
    min_price = min(o.price for o in pool)
    max_price = max(o.price for o in pool)

    lowest = _pick_lowest(pool, min_price)
    lowest.is_lowest_price = True

    best = _pick_best_deal(pool, min_price, max_price) or lowest
    best.is_best_deal = True

    logger.debug(
        "Ranked %d offers: lowest=%s (%.2f) best=%s",
        len(offers), lowest.id, lowest.price, best.id,
    )
    return offers
