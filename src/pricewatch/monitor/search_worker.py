"""Batch worker: run every active tracked query and track new listings."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass

from ..config import settings
from ..currency import currency_for_marketplace
from ..marketplace import ReauthorizationRequired
from ..marketplace.client import MarketplaceClient, OwnerSession, SearchFilters
from ..models import TrackedQuery
from ..schemas import Listing
from ..store import CatalogStore, CatalogUnavailableError
from .batching import run_in_groups
from .matcher import find_new, save_new_items
from .price_monitor import PriceMonitor, PriceMonitorStats

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    total: int = 0
    completed: int = 0
    failed: int = 0
    new_items_found: int = 0
    items_processed: int = 0  # listings examined across all queries
    rate_limit_hits: int = 0
    duration_ms: int = 0
    reauth_required: int = 0
    price_checks: PriceMonitorStats | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class QueryOutcome:
    query_id: int
    listings_seen: int
    new_items: int


class SearchWorker:
    """Walks the active queries in bounded concurrent groups.

    One query failing never stops the others; only a lost catalog aborts
    the cycle. At most one cycle runs at a time.
    """

    def __init__(
        self,
        store: CatalogStore,
        client: MarketplaceClient,
        price_monitor: PriceMonitor | None = None,
        *,
        concurrency: int | None = None,
        batch_delay: float | None = None,
        max_queries: int | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        unit_timeout: float | None = None,
        target_discount_pct: float | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._store = store
        self._client = client
        self._price_monitor = price_monitor
        self._concurrency = concurrency or settings.worker_concurrency
        self._batch_delay = settings.worker_batch_delay if batch_delay is None else batch_delay
        self._max_queries = max_queries or settings.worker_max_queries_per_run
        self._page_size = page_size or settings.search_page_size
        self._max_pages = max_pages or settings.search_max_pages
        self._unit_timeout = settings.unit_timeout if unit_timeout is None else unit_timeout
        self._discount_pct = (
            settings.default_target_discount_pct if target_discount_pct is None else target_discount_pct
        )
        self._sleep = sleep
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_cycle(self) -> CycleStats | None:
        """Run one cycle. Returns None if a cycle is already in flight."""
        if self._running:
            logger.info("Search cycle already running; trigger ignored")
            return None
        self._running = True
        try:
            return await self._run_cycle()
        finally:
            self._running = False

    async def _run_cycle(self) -> CycleStats:
        started = time.monotonic()
        stats = CycleStats()
        self._client.clear_sessions()
        rate_limits_before = self._client.rate_limit_hits

        queries = self._store.active_queries(limit=self._max_queries)
        stats.total = len(queries)
        logger.info("Search cycle started: %d active queries", stats.total)

        results = await run_in_groups(
            queries,
            self.process_query,
            group_size=self._concurrency,
            delay=self._batch_delay,
            unit_timeout=self._unit_timeout,
            abort_on=(CatalogUnavailableError,),
            sleep=self._sleep,
        )
        for query, result in zip(queries, results):
            if isinstance(result, BaseException):
                stats.failed += 1
                self._record_failure(query, result, stats)
                continue
            stats.completed += 1
            stats.new_items_found += result.new_items
            stats.items_processed += result.listings_seen

        if self._price_monitor is not None and settings.monitor_prices_each_cycle:
            stats.price_checks = await self._price_monitor.run_pass()

        stats.rate_limit_hits = self._client.rate_limit_hits - rate_limits_before
        stats.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Search cycle complete: %d/%d queries ok, %d failed, %d new items, "
            "%d listings examined, %d rate limit hits (%dms)",
            stats.completed, stats.total, stats.failed, stats.new_items_found,
            stats.items_processed, stats.rate_limit_hits, stats.duration_ms,
        )
        return stats

    def _record_failure(self, query: TrackedQuery, error: BaseException, stats: CycleStats) -> None:
        if isinstance(error, ReauthorizationRequired):
            stats.reauth_required += 1
            self._store.mark_reauth_required(query.owner_id)
            logger.warning("Query %d (owner %d): %s", query.id, query.owner_id, error)
        elif isinstance(error, asyncio.TimeoutError):
            logger.warning("Query %d '%s' timed out after %.0fs", query.id, query.name, self._unit_timeout)
        else:
            logger.warning("Query %d '%s' failed: %r", query.id, query.name, error)

    def _session(self, owner_id: int) -> OwnerSession:
        credential = self._store.get_credential(owner_id)
        if credential is None:
            raise ReauthorizationRequired(f"Owner {owner_id} has no linked credential", owner_id=owner_id)
        return self._client.session_for(
            owner_id, credential,
            persist=lambda c: self._store.save_credential(owner_id, c),
        )

    async def process_query(self, query: TrackedQuery) -> QueryOutcome:
        filters = SearchFilters.from_query(query)
        filters.currency = currency_for_marketplace(query.marketplace_id)
        filters.validate()

        session = self._session(query.owner_id)
        existing = self._store.tracked_item_ids(query.owner_id)

        listings: list[Listing] = []
        offset = 0
        for _ in range(self._max_pages):
            page = await session.search(
                query.keywords, filters,
                limit=self._page_size, offset=offset, marketplace_id=query.marketplace_id,
            )
            listings.extend(page.listings)
            if not page.listings or not page.has_more:
                break
            offset += page.limit or self._page_size

        fresh = find_new(existing, listings, query.min_price, query.max_price)
        created = save_new_items(self._store, query.owner_id, query.id, fresh, self._discount_pct)
        self._store.stamp_query_run(query.id)

        logger.debug(
            "Query %d '%s': %d listings, %d new", query.id, query.name, len(listings), created,
        )
        return QueryOutcome(query_id=query.id, listings_seen=len(listings), new_items=created)
