"""Tracked items and their price history."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import PriceSample, TrackedItem
from ..schemas import ItemListResponse, ItemResponse, PriceSampleResponse, TargetPriceUpdate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/items", tags=["items"])


@router.get("", response_model=ItemListResponse)
def list_items(
    owner_id: int | None = None,
    query_id: int | None = None,
    active: bool | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    q = db.query(TrackedItem)
    if owner_id is not None:
        q = q.filter(TrackedItem.owner_id == owner_id)
    if query_id is not None:
        q = q.filter(TrackedItem.query_id == query_id)
    if active is not None:
        q = q.filter(TrackedItem.is_active == active)
    total = q.count()
    items = q.order_by(TrackedItem.created_at.desc()).offset(offset).limit(limit).all()
    return ItemListResponse(items=items, total=total)


@router.get("/{item_id}/history", response_model=list[PriceSampleResponse])
def get_item_history(
    item_id: int,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    if db.get(TrackedItem, item_id) is None:
        raise HTTPException(404, "Item not found")
    return (
        db.query(PriceSample)
        .filter(PriceSample.item_id == item_id)
        .order_by(PriceSample.recorded_at.desc(), PriceSample.id.desc())
        .limit(limit)
        .all()
    )


@router.patch("/{item_id}/target", response_model=ItemResponse)
def update_target_price(item_id: int, body: TargetPriceUpdate, db: Session = Depends(get_db)):
    """Set the alert target in the item's listing currency, or clear it with null."""
    item = db.get(TrackedItem, item_id)
    if item is None:
        raise HTTPException(404, "Item not found")
    item.target_price = body.target_price
    db.commit()
    db.refresh(item)
    logger.info("Item %d: target price set to %s", item_id, body.target_price)
    return item
