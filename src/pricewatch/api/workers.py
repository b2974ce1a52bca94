"""Search cycle control: manual trigger, status and schedule."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from ..schemas import ScheduleUpdate, TriggerResponse, WorkerStatusResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/workers", tags=["workers"])


def _scheduler():
    from ..main import app_state

    scheduler = app_state.get("scheduler")
    if scheduler is None:
        raise HTTPException(503, "Scheduler not available")
    return scheduler


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_cycle():
    scheduler = _scheduler()
    if not scheduler.trigger_in_background():
        return TriggerResponse(triggered=False, message="A search cycle is already running")
    logger.info("Search cycle triggered manually")
    return TriggerResponse(triggered=True, message="Search cycle started")


@router.get("/status", response_model=WorkerStatusResponse)
def worker_status():
    return WorkerStatusResponse(**_scheduler().status())


@router.patch("/schedule", response_model=WorkerStatusResponse)
def update_schedule(body: ScheduleUpdate):
    scheduler = _scheduler()
    try:
        scheduler.reschedule(body.interval_seconds)
    except ValueError as e:
        raise HTTPException(422, str(e))
    return WorkerStatusResponse(**scheduler.status())


@router.post("/pause")
def pause_workers():
    _scheduler().pause()
    return {"status": "paused"}


@router.post("/resume")
def resume_workers():
    _scheduler().resume()
    return {"status": "resumed"}
