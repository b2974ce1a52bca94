"""Map Browse API JSON payloads to typed listings."""

from __future__ import annotations

import logging

from ..schemas import Listing, SearchPage

logger = logging.getLogger(__name__)


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_listing(data: dict) -> Listing | None:
    """Build a Listing from an item summary / item detail dict.

    Returns None for entries without an id or a usable price.
    """
    item_id = data.get("itemId") or data.get("legacyItemId")
    price_obj = data.get("price") or data.get("currentBidPrice") or {}
    price = _to_float(price_obj.get("value"))
    if not item_id or price is None:
        return None

    return Listing(
        item_id=str(item_id),
        title=data.get("title") or "",
        price=price,
        currency=price_obj.get("currency") or "USD",
        url=data.get("itemWebUrl") or data.get("itemHref") or "",
        image_url=(data.get("image") or {}).get("imageUrl") or "",
        condition=data.get("condition") or "",
        seller=(data.get("seller") or {}).get("username") or "",
        buying_options=list(data.get("buyingOptions") or []),
    )


def parse_search_page(data: dict) -> SearchPage:
    listings = []
    skipped = 0
    for summary in data.get("itemSummaries") or []:
        listing = parse_listing(summary)
        if listing is None:
            skipped += 1
            continue
        listings.append(listing)
    if skipped:
        logger.debug("Skipped %d item summaries without id/price", skipped)

    return SearchPage(
        listings=listings,
        total=int(data.get("total") or 0),
        offset=int(data.get("offset") or 0),
        limit=int(data.get("limit") or 0),
    )
