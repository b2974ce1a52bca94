"""Price monitor control: on-demand price checks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import Owner
from ..schemas import PriceCheckRequest, PriceCheckResponse
from ..store import CatalogUnavailableError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/prices", tags=["prices"])


def _monitor():
    from ..main import app_state

    monitor = app_state.get("monitor")
    if monitor is None:
        raise HTTPException(503, "Price monitor not available")
    return monitor


async def _run(check, owner_id: int | None = None) -> PriceCheckResponse:
    try:
        stats = await check
    except CatalogUnavailableError as e:
        logger.error("Manual price check aborted: %s", e)
        raise HTTPException(503, "Catalog unavailable")
    return PriceCheckResponse(owner_id=owner_id, **stats.to_dict())


@router.post("/check", response_model=PriceCheckResponse)
async def check_all_prices():
    logger.info("Price check triggered manually for all owners")
    return await _run(_monitor().run_pass())


@router.post("/items/check", response_model=PriceCheckResponse)
async def check_item_prices(body: PriceCheckRequest):
    monitor = _monitor()
    logger.info("Price check triggered manually for %d items", len(body.item_ids))
    return await _run(monitor.check_items(body.item_ids))


@router.post("/check/{owner_id}", response_model=PriceCheckResponse)
async def check_owner_prices(owner_id: int, db: Session = Depends(get_db)):
    owner = db.get(Owner, owner_id)
    if owner is None:
        raise HTTPException(404, "Owner not found")
    if not owner.access_token or owner.needs_reauth:
        raise HTTPException(409, "Owner has no usable marketplace credential")
    monitor = _monitor()
    logger.info("Price check triggered manually for owner %d", owner_id)
    return await _run(monitor.run_pass(owner_id), owner_id)
