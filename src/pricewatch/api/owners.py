"""Owners: account linking, notification preferences and price summaries."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from ..marketplace import IdentityError
from ..models import NotificationPreference, Owner, PriceSample, TrackedItem, TrackedQuery
from ..notifier.preferences import parse_channels
from ..schemas import (
    CredentialLink,
    OwnerCreate,
    OwnerResponse,
    PreferenceResponse,
    PreferenceUpdate,
    PriceSummaryResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/owners", tags=["owners"])


def _get_owner(owner_id: int, db: Session) -> Owner:
    owner = db.get(Owner, owner_id)
    if owner is None:
        raise HTTPException(404, "Owner not found")
    return owner


def _owner_response(owner: Owner) -> OwnerResponse:
    return OwnerResponse(
        id=owner.id,
        name=owner.name,
        email=owner.email,
        linked=bool(owner.access_token),
        needs_reauth=owner.needs_reauth,
        created_at=owner.created_at,
    )


def _to_response(pref: NotificationPreference) -> PreferenceResponse:
    return PreferenceResponse(
        owner_id=pref.owner_id,
        drop_threshold_pct=pref.drop_threshold_pct,
        quiet_hours_enabled=pref.quiet_hours_enabled,
        quiet_start_hour=pref.quiet_start_hour,
        quiet_end_hour=pref.quiet_end_hour,
        timezone=pref.timezone,
        channels=parse_channels(pref.channels),
    )


@router.get("/{owner_id}/preferences", response_model=PreferenceResponse)
def get_preferences(owner_id: int, db: Session = Depends(get_db)):
    _get_owner(owner_id, db)
    pref = db.query(NotificationPreference).filter(NotificationPreference.owner_id == owner_id).first()
    if pref is None:
        raise HTTPException(404, "Owner has not opted in to notifications")
    return _to_response(pref)


@router.put("/{owner_id}/preferences", response_model=PreferenceResponse)
def put_preferences(owner_id: int, body: PreferenceUpdate, db: Session = Depends(get_db)):
    _get_owner(owner_id, db)
    pref = db.query(NotificationPreference).filter(NotificationPreference.owner_id == owner_id).first()
    if pref is None:
        pref = NotificationPreference(owner_id=owner_id)
        db.add(pref)

    pref.drop_threshold_pct = body.drop_threshold_pct
    pref.quiet_hours_enabled = body.quiet_hours_enabled
    pref.quiet_start_hour = body.quiet_start_hour
    pref.quiet_end_hour = body.quiet_end_hour
    pref.timezone = body.timezone
    pref.channels = json.dumps([c.model_dump() for c in body.channels])
    db.commit()
    db.refresh(pref)
    logger.info("Owner %d: notification preferences updated", owner_id)
    return _to_response(pref)


@router.delete("/{owner_id}/credential")
def unlink_credential(owner_id: int, db: Session = Depends(get_db)):
    """Forget the marketplace credential and stop tracking for this owner."""
    owner = _get_owner(owner_id, db)
    owner.access_token = None
    owner.refresh_token = None
    owner.token_expires_at = None
    queries = (
        db.query(TrackedQuery)
        .filter(TrackedQuery.owner_id == owner_id, TrackedQuery.is_active == True)  # noqa: E712
        .update({TrackedQuery.is_active: False}, synchronize_session=False)
    )
    items = (
        db.query(TrackedItem)
        .filter(TrackedItem.owner_id == owner_id, TrackedItem.is_active == True)  # noqa: E712
        .update({TrackedItem.is_active: False}, synchronize_session=False)
    )
    db.commit()
    logger.info("Owner %d: credential unlinked (%d queries, %d items deactivated)", owner_id, queries, items)
    return {"status": "unlinked", "queries_deactivated": queries, "items_deactivated": items}


@router.post("", response_model=OwnerResponse, status_code=201)
def create_owner(body: OwnerCreate, db: Session = Depends(get_db)):
    owner = Owner(name=body.name.strip(), email=body.email)
    db.add(owner)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(409, f"Email '{body.email}' already registered")
    db.refresh(owner)
    return _owner_response(owner)


@router.get("/{owner_id}", response_model=OwnerResponse)
def get_owner(owner_id: int, db: Session = Depends(get_db)):
    return _owner_response(_get_owner(owner_id, db))


@router.post("/{owner_id}/credential", response_model=OwnerResponse)
async def link_credential(owner_id: int, body: CredentialLink, db: Session = Depends(get_db)):
    """Exchange an OAuth authorization code and store the owner's credential."""
    from ..main import app_state

    owner = _get_owner(owner_id, db)
    identity = app_state.get("identity")
    if identity is None:
        raise HTTPException(503, "OAuth is not configured")
    try:
        credential = await identity.exchange_auth_code(body.code)
    except IdentityError as e:
        logger.warning("Owner %d: authorization code exchange failed: %s", owner_id, e)
        raise HTTPException(400, "Authorization code rejected")

    owner.access_token = credential.access_token
    owner.refresh_token = credential.refresh_token
    owner.token_expires_at = credential.expires_at
    owner.needs_reauth = False
    db.commit()
    db.refresh(owner)
    logger.info("Owner %d: marketplace account linked", owner_id)
    return _owner_response(owner)


@router.get("/{owner_id}/price-summary", response_model=PriceSummaryResponse)
def get_price_summary(owner_id: int, db: Session = Depends(get_db)):
    _get_owner(owner_id, db)
    total_items = db.query(TrackedItem).filter(TrackedItem.owner_id == owner_id).count()
    active = (
        db.query(TrackedItem)
        .filter(TrackedItem.owner_id == owner_id, TrackedItem.is_active == True)  # noqa: E712
        .all()
    )
    prices = [i.current_price for i in active if i.current_price]
    below_target = sum(
        1 for i in active
        if i.target_price is not None and i.current_price is not None and i.current_price < i.target_price
    )
    drops, savings = (
        db.query(func.count(PriceSample.id), func.coalesce(func.sum(PriceSample.drop_amount), 0.0))
        .filter(PriceSample.owner_id == owner_id, PriceSample.price_dropped == True)  # noqa: E712
        .one()
    )
    return PriceSummaryResponse(
        owner_id=owner_id,
        total_items=total_items,
        active_items=len(active),
        items_below_target=below_target,
        average_price=round(sum(prices) / len(prices), 2) if prices else 0.0,
        lowest_price=min(prices, default=0.0),
        highest_price=max(prices, default=0.0),
        price_drops=drops,
        total_savings=round(savings, 2),
    )
