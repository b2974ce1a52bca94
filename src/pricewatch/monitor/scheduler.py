"""APScheduler-based driver for search cycles and data retention."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..config import settings
from ..store import CatalogStore
from .search_worker import CycleStats, SearchWorker

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "search_cycle"
RETENTION_JOB_ID = "data_retention"


class MonitorScheduler:
    def __init__(
        self,
        worker: SearchWorker,
        store: CatalogStore,
        *,
        interval_seconds: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        self.worker = worker
        self._store = store
        self._scheduler = AsyncIOScheduler()
        self.interval_seconds = interval_seconds or settings.cycle_interval
        self.enabled = settings.scheduler_enabled if enabled is None else enabled
        self.running = False
        self.last_run_at: datetime | None = None
        self.last_duration_ms = 0
        self.last_stats: dict | None = None
        self.last_error: str | None = None
        self._background: asyncio.Task | None = None

    def start(self) -> None:
        if self.enabled:
            self._add_cycle_job()
        else:
            logger.info("Periodic search cycles disabled; manual trigger only")
        self._scheduler.add_job(
            self._data_retention_cleanup,
            "interval",
            seconds=86400,
            id=RETENTION_JOB_ID,
            replace_existing=True,
            max_instances=1,
        )
        self._scheduler.start()
        self.running = True
        logger.info("Monitor scheduler started (interval=%ds)", self.interval_seconds)

    def _add_cycle_job(self) -> None:
        self._scheduler.add_job(
            self._run_cycle,
            "interval",
            seconds=self.interval_seconds,
            id=CYCLE_JOB_ID,
            replace_existing=True,
            max_instances=1,
        )

    def pause(self) -> None:
        self._scheduler.pause()
        self.running = False
        logger.info("Monitor scheduler paused")

    def resume(self) -> None:
        self._scheduler.resume()
        self.running = True
        logger.info("Monitor scheduler resumed")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Monitor scheduler stopped")

    def reschedule(self, interval_seconds: int) -> None:
        """Change the cycle interval; the job is (re)created if needed."""
        if interval_seconds < settings.min_cycle_interval:
            raise ValueError(
                f"interval must be at least {settings.min_cycle_interval}s (got {interval_seconds})"
            )
        self.interval_seconds = interval_seconds
        self.enabled = True
        if self._scheduler.get_job(CYCLE_JOB_ID) is not None:
            self._scheduler.reschedule_job(CYCLE_JOB_ID, trigger="interval", seconds=interval_seconds)
        elif self._scheduler.running:
            self._add_cycle_job()
        logger.info("Search cycle interval changed to %ds", interval_seconds)

    @property
    def next_run_at(self) -> datetime | None:
        job = self._scheduler.get_job(CYCLE_JOB_ID)
        return job.next_run_time if job is not None else None

    async def trigger_now(self) -> CycleStats | None:
        """Run a cycle immediately. None if one is already in flight or it failed."""
        return await self._run_cycle()

    def trigger_in_background(self) -> bool:
        """Start a cycle without waiting for it. False if one is already running."""
        if self.worker.running:
            logger.info("Manual trigger ignored: search cycle already running")
            return False
        self._background = asyncio.create_task(self._run_cycle())
        return True

    def status(self) -> dict:
        return {
            "running": self.worker.running,
            "enabled": self.enabled and self.running,
            "interval_seconds": self.interval_seconds,
            "last_run_at": self.last_run_at,
            "last_duration_ms": self.last_duration_ms,
            "next_run_at": self.next_run_at,
            "last_stats": self.last_stats,
            "last_error": self.last_error,
        }

    async def _run_cycle(self) -> CycleStats | None:
        started = datetime.now(timezone.utc)
        try:
            stats = await self.worker.run_cycle()
        except Exception as e:
            logger.exception("Error in search cycle: %s", e)
            self.last_run_at = started
            self.last_error = str(e)
            return None
        if stats is None:
            return None
        self.last_run_at = started
        self.last_duration_ms = stats.duration_ms
        self.last_stats = stats.to_dict()
        self.last_error = None
        return stats

    async def _data_retention_cleanup(self) -> None:
        """Delete old price samples and notification logs.

        Retention policy:
        - PriceSample: price_sample_retention_days (default 90)
        - NotificationLog: notification_log_retention_days (default 30)
        """
        now = datetime.now(timezone.utc)
        try:
            deleted = self._store.prune_history(
                sample_cutoff=now - timedelta(days=settings.price_sample_retention_days),
                log_cutoff=now - timedelta(days=settings.notification_log_retention_days),
            )
        except Exception as e:
            logger.exception("Data retention cleanup failed: %s", e)
            return
        total = sum(deleted.values())
        if total:
            logger.info("Data retention complete: %d records deleted", total)
