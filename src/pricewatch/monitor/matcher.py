"""Classify search results as new or already tracked."""

from __future__ import annotations

import logging
from typing import Iterable

from ..schemas import Listing

logger = logging.getLogger(__name__)


def within_bounds(price: float, min_price: float | None = None, max_price: float | None = None) -> bool:
    if min_price is not None and price < min_price:
        return False
    if max_price is not None and price > max_price:
        return False
    return True


def find_new(
    existing_ids: set[str],
    candidates: Iterable[Listing],
    min_price: float | None = None,
    max_price: float | None = None,
) -> list[Listing]:
    """Listings not yet tracked whose price lies in [min_price, max_price].

    Out-of-range listings are dropped before novelty is decided, so they
    never reach storage. A listing repeated within ``candidates`` is
    returned once.
    """
    seen: set[str] = set()
    fresh: list[Listing] = []
    for listing in candidates:
        if listing.item_id in existing_ids or listing.item_id in seen:
            continue
        if not within_bounds(listing.price, min_price, max_price):
            continue
        seen.add(listing.item_id)
        fresh.append(listing)
    return fresh


def target_price_for(price: float, discount_pct: float = 0.0) -> float:
    """Initial target price for a newly discovered listing."""
    if discount_pct <= 0:
        return price
    return round(price * (1 - discount_pct / 100), 2)


def save_new_items(
    store,
    owner_id: int,
    query_id: int | None,
    listings: Iterable[Listing],
    discount_pct: float = 0.0,
) -> int:
    """Upsert listings as tracked items; returns how many rows were created."""
    created = 0
    for listing in listings:
        _, is_new = store.upsert_tracked_item(
            owner_id, query_id, listing, target_price=target_price_for(listing.price, discount_pct),
        )
        if is_new:
            created += 1
            logger.info(
                "Owner %d: tracking new item %s (%s %.2f) %s",
                owner_id, listing.item_id, listing.currency, listing.price, listing.title[:60],
            )
    return created
