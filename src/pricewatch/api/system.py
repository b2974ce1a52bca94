"""Health check endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..models import TrackedItem, TrackedQuery
from ..schemas import HealthResponse, ServiceStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["system"])


@router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    from ..main import app_state

    services: list[ServiceStatus] = []
    overall = "ok"

    # Database
    try:
        active_queries = db.query(TrackedQuery).filter(TrackedQuery.is_active == True).count()  # noqa: E712
        active_items = db.query(TrackedItem).filter(TrackedItem.is_active == True).count()  # noqa: E712
        services.append(ServiceStatus(name="database", status="ok"))
    except Exception as e:
        logger.warning("Health check: DB error: %s", e)
        active_queries = active_items = 0
        services.append(ServiceStatus(name="database", status="degraded", detail=str(e)))
        overall = "degraded"

    # Scheduler
    scheduler = app_state.get("scheduler")
    running = scheduler.running if scheduler else False
    services.append(ServiceStatus(
        name="scheduler",
        status="ok" if running else "unavailable",
        detail="" if running else "not running",
    ))
    if not running:
        overall = "degraded"

    # Marketplace client
    client = app_state.get("client")
    if client:
        services.append(ServiceStatus(
            name="marketplace", status="ok", detail=f"{client.rate_limit_hits} rate limit hits",
        ))
    else:
        services.append(ServiceStatus(name="marketplace", status="unavailable", detail="not initialised"))

    # OAuth
    if app_state.get("identity"):
        services.append(ServiceStatus(name="oauth", status="ok"))
    else:
        services.append(ServiceStatus(name="oauth", status="unavailable", detail="not configured"))

    # Exchange rates
    converter = app_state.get("converter")
    if converter is not None and settings.exchange_rates_enabled and converter.provider_failures == 0:
        services.append(ServiceStatus(name="exchange_rates", status="ok"))
    else:
        detail = "using static fallback rates" if converter is not None else "not initialised"
        services.append(ServiceStatus(name="exchange_rates", status="degraded", detail=detail))

    return HealthResponse(
        status=overall,
        scheduler_running=running,
        active_queries=active_queries,
        active_items=active_items,
        services=services,
    )
