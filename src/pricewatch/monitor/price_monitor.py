"""Price monitor: re-check tracked items, record history, raise drop alerts."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass

from ..config import settings
from ..marketplace import MarketplaceApiError, ReauthorizationRequired
from ..marketplace.client import MarketplaceClient, OwnerSession
from ..models import TrackedItem
from ..notifier.base import PriceDropAlert
from ..store import CatalogStore, CatalogUnavailableError
from .batching import run_in_groups

logger = logging.getLogger(__name__)

PRICE_EPSILON = 0.01


@dataclass(frozen=True)
class PriceComparison:
    changed: bool
    dropped: bool
    drop_amount: float
    drop_percent: float


def compare_prices(old: float, new: float) -> PriceComparison:
    drop_amount = old - new
    return PriceComparison(
        changed=abs(new - old) > PRICE_EPSILON,
        dropped=new < old,
        drop_amount=drop_amount,
        drop_percent=(drop_amount / old * 100) if old > 0 else 0.0,
    )


@dataclass
class PriceCheckResult:
    item_id: int
    remote_item_id: str
    previous_price: float | None = None
    current_price: float | None = None
    currency: str = ""
    price_changed: bool = False
    price_dropped: bool = False
    drop_amount: float = 0.0
    drop_percent: float = 0.0
    alert_triggered: bool = False
    error_message: str | None = None


@dataclass
class PriceMonitorStats:
    items_checked: int = 0
    prices_updated: int = 0
    price_drops_detected: int = 0
    alerts_triggered: int = 0
    conversion_errors: int = 0
    api_errors: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class PriceMonitor:
    def __init__(
        self,
        store: CatalogStore,
        client: MarketplaceClient,
        converter,
        dispatcher=None,
        *,
        base_currency: str | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        unit_timeout: float | None = None,
        max_items: int | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._store = store
        self._client = client
        self._converter = converter
        self._dispatcher = dispatcher
        self._base_currency = base_currency or settings.base_currency
        self._batch_size = batch_size or settings.monitor_batch_size
        self._batch_delay = settings.monitor_batch_delay if batch_delay is None else batch_delay
        self._unit_timeout = settings.unit_timeout if unit_timeout is None else unit_timeout
        self._max_items = max_items or settings.monitor_max_items_per_cycle
        self._sleep = sleep

    async def run_pass(self, owner_id: int | None = None) -> PriceMonitorStats:
        """Check every active tracked item once (optionally for one owner)."""
        items = self._store.active_items(owner_id=owner_id, limit=self._max_items)
        return await self._check_all(items)

    async def check_items(self, item_ids: list[int]) -> PriceMonitorStats:
        """Check an explicit list of tracked items."""
        items = self._store.items_by_ids(item_ids)
        return await self._check_all(items)

    async def _check_all(self, items: list[TrackedItem]) -> PriceMonitorStats:
        started = time.monotonic()
        stats = PriceMonitorStats()
        if not items:
            return stats

        logger.info("Price check started: %d items", len(items))
        results = await run_in_groups(
            items,
            lambda item: self.check_item(item, stats),
            group_size=self._batch_size,
            delay=self._batch_delay,
            unit_timeout=self._unit_timeout,
            abort_on=(CatalogUnavailableError,),
            sleep=self._sleep,
        )
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                stats.api_errors += 1
                logger.warning(
                    "Price check for item %d (%s) failed: %r",
                    item.id, item.remote_item_id, result,
                )

        stats.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Price check complete: %d checked, %d updated, %d drops, %d alerts, %d errors (%dms)",
            stats.items_checked, stats.prices_updated, stats.price_drops_detected,
            stats.alerts_triggered, stats.api_errors, stats.duration_ms,
        )
        return stats

    def _session(self, owner_id: int) -> OwnerSession:
        credential = self._store.get_credential(owner_id)
        if credential is None:
            raise ReauthorizationRequired(f"Owner {owner_id} has no linked credential", owner_id=owner_id)
        return self._client.session_for(
            owner_id, credential,
            persist=lambda c: self._store.save_credential(owner_id, c),
        )

    async def _normalize(self, amount: float, currency: str) -> float:
        return await self._converter.convert(amount, currency, self._base_currency)

    async def check_item(self, item: TrackedItem, stats: PriceMonitorStats) -> PriceCheckResult:
        stats.items_checked += 1
        result = PriceCheckResult(item_id=item.id, remote_item_id=item.remote_item_id)

        # Fetch
        try:
            listing = await self._session(item.owner_id).get_item(item.remote_item_id)
        except ReauthorizationRequired as e:
            stats.api_errors += 1
            self._store.mark_reauth_required(item.owner_id)
            result.error_message = str(e)
            return result
        except MarketplaceApiError as e:
            stats.api_errors += 1
            if e.is_gone:
                self._store.deactivate_item(item.id)
            logger.warning("Item %d (%s): fetch failed: %s", item.id, item.remote_item_id, e)
            result.error_message = str(e)
            return result

        # Normalize
        new_price = listing.price
        old_price = item.current_price if item.current_price is not None else new_price
        target = item.target_price
        currency = listing.currency
        if listing.currency != self._base_currency or item.currency != self._base_currency:
            try:
                converted_new = await self._normalize(new_price, listing.currency)
                converted_old = await self._normalize(old_price, item.currency)
                converted_target = (
                    await self._normalize(target, item.currency) if target is not None else None
                )
            except Exception as e:
                stats.conversion_errors += 1
                logger.warning("Item %d: currency conversion failed, using raw prices: %s", item.id, e)
            else:
                new_price, old_price, target = converted_new, converted_old, converted_target
                currency = self._base_currency

        # Compare
        cmp = compare_prices(old_price, new_price)
        result.previous_price = old_price
        result.current_price = new_price
        result.currency = currency
        result.price_changed = cmp.changed
        result.price_dropped = cmp.dropped
        result.drop_amount = cmp.drop_amount
        result.drop_percent = cmp.drop_percent

        # Persist
        self._store.record_price_check(
            item.id, new_price, currency,
            changed=cmp.changed, dropped=cmp.dropped, drop_amount=cmp.drop_amount,
        )
        if cmp.changed:
            stats.prices_updated += 1
            logger.info(
                "Item %d: price %.2f -> %.2f %s", item.id, old_price, new_price, currency,
            )
        if cmp.dropped:
            stats.price_drops_detected += 1

        # Alert decision
        if cmp.dropped and target is not None and new_price < target:
            result.alert_triggered = True
            stats.alerts_triggered += 1
            await self._emit(PriceDropAlert(
                owner_id=item.owner_id,
                item_id=item.id,
                remote_item_id=item.remote_item_id,
                title=item.title or listing.title,
                previous_price=old_price,
                current_price=new_price,
                target_price=target,
                drop_amount=cmp.drop_amount,
                drop_percent=cmp.drop_percent,
                currency=currency,
                url=listing.url or item.url,
            ))
        return result

    async def _emit(self, alert: PriceDropAlert) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.emit(alert)
        except CatalogUnavailableError:
            raise
        except Exception as e:
            logger.warning("Alert dispatch for item %d failed: %s", alert.item_id, e)
