"""Tracked query CRUD."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..marketplace import QueryValidationError
from ..marketplace.client import SearchFilters
from ..models import Owner, TrackedQuery
from ..schemas import QueryCreate, QueryListResponse, QueryResponse, QueryUpdate

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/queries", tags=["queries"])


def _validate_filters(query: TrackedQuery) -> None:
    try:
        SearchFilters.from_query(query).validate()
    except QueryValidationError as e:
        raise HTTPException(422, str(e))


@router.get("", response_model=QueryListResponse)
def list_queries(
    owner_id: int | None = None,
    active: bool | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    q = db.query(TrackedQuery)
    if owner_id is not None:
        q = q.filter(TrackedQuery.owner_id == owner_id)
    if active is not None:
        q = q.filter(TrackedQuery.is_active == active)
    total = q.count()
    queries = q.order_by(TrackedQuery.created_at.desc()).offset(offset).limit(limit).all()
    return QueryListResponse(queries=queries, total=total)


@router.post("", response_model=QueryResponse, status_code=201)
def create_query(body: QueryCreate, db: Session = Depends(get_db)):
    name = body.name.strip()
    keywords = body.keywords.strip()
    if not name or not keywords:
        raise HTTPException(400, "Name and keywords must not be empty")
    if db.get(Owner, body.owner_id) is None:
        raise HTTPException(404, "Owner not found")

    existing = (
        db.query(TrackedQuery)
        .filter(TrackedQuery.owner_id == body.owner_id, TrackedQuery.name == name)
        .first()
    )
    if existing:
        raise HTTPException(409, f"Query '{name}' already exists")

    query = TrackedQuery(**body.model_dump(exclude={"name", "keywords"}), name=name, keywords=keywords)
    _validate_filters(query)
    db.add(query)
    db.commit()
    db.refresh(query)
    logger.info("Owner %d: created query %d '%s'", query.owner_id, query.id, query.name)
    return query


@router.patch("/{query_id}", response_model=QueryResponse)
def update_query(query_id: int, body: QueryUpdate, db: Session = Depends(get_db)):
    query = db.get(TrackedQuery, query_id)
    if not query:
        raise HTTPException(404, "Query not found")

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(query, field, value)
    _validate_filters(query)
    db.commit()
    db.refresh(query)
    return query


@router.delete("/{query_id}", status_code=204)
def deactivate_query(query_id: int, db: Session = Depends(get_db)):
    """Soft delete: the query stops running but its items keep their history."""
    query = db.get(TrackedQuery, query_id)
    if not query:
        raise HTTPException(404, "Query not found")
    query.is_active = False
    db.commit()
    logger.info("Query %d deactivated", query_id)
