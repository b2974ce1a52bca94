"""Catalog store: persistence operations used by the monitoring engine.

Every method opens its own short-lived session, so concurrent units of a
cycle never share one. Rows are returned detached but readable
(``expire_on_commit=False``).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .marketplace.identity import Credential
from .models import (
    NotificationLog, NotificationPreference, Owner, PriceSample, TrackedItem, TrackedQuery,
)
from .schemas import Listing

logger = logging.getLogger(__name__)


class CatalogUnavailableError(Exception):
    """The catalog database cannot be reached; the current cycle must stop."""


class CatalogStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except OperationalError as e:
            db.rollback()
            raise CatalogUnavailableError(f"Catalog database unavailable: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # --- Owners / credentials ---

    def get_credential(self, owner_id: int) -> Credential | None:
        with self._session() as db:
            owner = db.get(Owner, owner_id)
            if owner is None or not owner.access_token:
                return None
            return Credential(
                access_token=owner.access_token,
                refresh_token=owner.refresh_token,
                expires_at=owner.token_expires_at,
            )

    def save_credential(self, owner_id: int, credential: Credential) -> None:
        with self._session() as db:
            owner = db.get(Owner, owner_id)
            if owner is None:
                raise ValueError(f"Owner {owner_id} not found")
            owner.access_token = credential.access_token
            owner.refresh_token = credential.refresh_token
            owner.token_expires_at = credential.expires_at
            owner.needs_reauth = False
        logger.debug("Owner %d: credential persisted", owner_id)

    def mark_reauth_required(self, owner_id: int) -> None:
        with self._session() as db:
            owner = db.get(Owner, owner_id)
            if owner is not None:
                owner.needs_reauth = True
        logger.warning("Owner %d: marketplace account must be re-linked", owner_id)

    # --- Queries ---

    def active_queries(self, limit: int | None = None) -> list[TrackedQuery]:
        """Active queries of owners with a usable credential.

        Least recently run first, never-run queries on top.
        """
        with self._session() as db:
            q = (
                db.query(TrackedQuery)
                .join(Owner, TrackedQuery.owner_id == Owner.id)
                .filter(
                    TrackedQuery.is_active == True,  # noqa: E712
                    Owner.needs_reauth == False,  # noqa: E712
                    Owner.access_token.is_not(None),
                )
                .order_by(
                    TrackedQuery.last_run_at.is_(None).desc(),
                    TrackedQuery.last_run_at.asc(),
                    TrackedQuery.id.asc(),
                )
            )
            if limit:
                q = q.limit(limit)
            return q.all()

    def stamp_query_run(self, query_id: int, when: datetime | None = None) -> None:
        with self._session() as db:
            query = db.get(TrackedQuery, query_id)
            if query is not None:
                query.last_run_at = when or datetime.now(timezone.utc)

    # --- Items ---

    def tracked_item_ids(self, owner_id: int) -> set[str]:
        """Remote ids of every item the owner tracks, deactivated ones included."""
        with self._session() as db:
            rows = db.query(TrackedItem.remote_item_id).filter(TrackedItem.owner_id == owner_id).all()
            return {r[0] for r in rows}

    def upsert_tracked_item(
        self,
        owner_id: int,
        query_id: int | None,
        listing: Listing,
        target_price: float | None = None,
    ) -> tuple[TrackedItem, bool]:
        """Insert the listing, or refresh the existing row for (owner, item id).

        Returns (item, created). Two units discovering the same listing end
        up with a single row: the loser of the insert race updates instead.
        """
        now = datetime.now(timezone.utc)
        try:
            with self._session() as db:
                item = TrackedItem(
                    owner_id=owner_id,
                    query_id=query_id,
                    remote_item_id=listing.item_id,
                    title=listing.title,
                    url=listing.url,
                    currency=listing.currency,
                    current_price=listing.price,
                    target_price=target_price,
                    lowest_price=listing.price,
                    highest_price=listing.price,
                    last_checked_at=now,
                )
                db.add(item)
                db.flush()
            return item, True
        except IntegrityError:
            logger.debug("Owner %d: item %s already tracked, updating", owner_id, listing.item_id)

        with self._session() as db:
            item = (
                db.query(TrackedItem)
                .filter(
                    TrackedItem.owner_id == owner_id,
                    TrackedItem.remote_item_id == listing.item_id,
                )
                .one()
            )
            item.current_price = listing.price
            item.lowest_price = listing.price if item.lowest_price is None else min(item.lowest_price, listing.price)
            item.highest_price = listing.price if item.highest_price is None else max(item.highest_price, listing.price)
            item.last_checked_at = now
        return item, False

    def active_items(self, owner_id: int | None = None, limit: int | None = None) -> list[TrackedItem]:
        """Active items of owners with a usable credential, stalest first."""
        with self._session() as db:
            q = (
                db.query(TrackedItem)
                .join(Owner, TrackedItem.owner_id == Owner.id)
                .filter(
                    TrackedItem.is_active == True,  # noqa: E712
                    Owner.needs_reauth == False,  # noqa: E712
                    Owner.access_token.is_not(None),
                )
            )
            if owner_id is not None:
                q = q.filter(TrackedItem.owner_id == owner_id)
            q = q.order_by(
                TrackedItem.last_checked_at.is_(None).desc(),
                TrackedItem.last_checked_at.asc(),
                TrackedItem.id.asc(),
            )
            if limit:
                q = q.limit(limit)
            return q.all()

    def items_by_ids(self, item_ids: list[int]) -> list[TrackedItem]:
        if not item_ids:
            return []
        with self._session() as db:
            return db.query(TrackedItem).filter(TrackedItem.id.in_(item_ids)).all()

    def record_price_check(
        self,
        item_id: int,
        price: float,
        currency: str,
        *,
        changed: bool,
        dropped: bool,
        drop_amount: float,
        when: datetime | None = None,
    ) -> PriceSample:
        """Apply one successful price check: update the item, append a sample."""
        when = when or datetime.now(timezone.utc)
        with self._session() as db:
            item = db.get(TrackedItem, item_id)
            if item is None:
                raise ValueError(f"Tracked item {item_id} not found")
            if changed or item.current_price is None:
                item.current_price = price
                item.currency = currency
                item.lowest_price = price if item.lowest_price is None else min(item.lowest_price, price)
                item.highest_price = price if item.highest_price is None else max(item.highest_price, price)
            item.last_checked_at = when

            sample = PriceSample(
                item_id=item.id,
                owner_id=item.owner_id,
                price=price,
                currency=currency,
                price_dropped=dropped,
                drop_amount=drop_amount if dropped else None,
                recorded_at=when,
            )
            db.add(sample)
            db.flush()
            return sample

    def deactivate_item(self, item_id: int) -> None:
        with self._session() as db:
            item = db.get(TrackedItem, item_id)
            if item is not None:
                item.is_active = False
        logger.info("Tracked item %d deactivated (listing gone)", item_id)

    # --- Notifications ---

    def get_preference(self, owner_id: int) -> NotificationPreference | None:
        with self._session() as db:
            return (
                db.query(NotificationPreference)
                .filter(NotificationPreference.owner_id == owner_id)
                .first()
            )

    def record_notification(
        self,
        owner_id: int,
        item_id: int | None,
        channel: str,
        message: str,
        success: bool,
        event_type: str = "price_drop",
    ) -> None:
        with self._session() as db:
            db.add(NotificationLog(
                owner_id=owner_id,
                item_id=item_id,
                channel=channel,
                event_type=event_type,
                message=message,
                success=success,
            ))

    # --- Retention ---

    def prune_history(self, sample_cutoff: datetime, log_cutoff: datetime) -> dict[str, int]:
        """Delete price samples and notification logs older than the cutoffs."""
        with self._session() as db:
            samples = (
                db.query(PriceSample)
                .filter(PriceSample.recorded_at < sample_cutoff)
                .delete(synchronize_session=False)
            )
            logs = (
                db.query(NotificationLog)
                .filter(NotificationLog.sent_at < log_cutoff)
                .delete(synchronize_session=False)
            )
        if samples:
            logger.info("Data retention: deleted %d old PriceSample records", samples)
        if logs:
            logger.info("Data retention: deleted %d old NotificationLog records", logs)
        return {"price_samples": samples, "notification_log": logs}
