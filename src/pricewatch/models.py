from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class Owner(Base):
    """A user on whose behalf the marketplace API is polled."""

    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, default="")
    email: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)

    # Marketplace credential (mutated only by the refresh flow)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    needs_reauth: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    queries: Mapped[list["TrackedQuery"]] = relationship(back_populates="owner", cascade="all, delete-orphan")
    items: Mapped[list["TrackedItem"]] = relationship(back_populates="owner", cascade="all, delete-orphan")
    preference: Mapped["NotificationPreference | None"] = relationship(
        back_populates="owner", cascade="all, delete-orphan", uselist=False,
    )


class TrackedQuery(Base):
    __tablename__ = "tracked_queries"
    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_tracked_query_owner_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), index=True)
    name: Mapped[str] = mapped_column(Text)
    keywords: Mapped[str] = mapped_column(Text)

    min_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    condition: Mapped[str | None] = mapped_column(Text, nullable=True)  # NEW / USED / REFURBISHED / FOR_PARTS
    buying_format: Mapped[str | None] = mapped_column(Text, nullable=True)  # FIXED_PRICE / AUCTION
    free_shipping: Mapped[bool] = mapped_column(Boolean, default=False)
    marketplace_id: Mapped[str] = mapped_column(Text, default="EBAY_US")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    owner: Mapped["Owner"] = relationship(back_populates="queries")


class TrackedItem(Base):
    __tablename__ = "tracked_items"
    __table_args__ = (
        UniqueConstraint("owner_id", "remote_item_id", name="uq_tracked_item_owner_remote"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), index=True)
    query_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("tracked_queries.id"), nullable=True)
    remote_item_id: Mapped[str] = mapped_column(Text)
    title: Mapped[str] = mapped_column(Text, default="")
    url: Mapped[str] = mapped_column(Text, default="")
    currency: Mapped[str] = mapped_column(Text, default="USD")

    current_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    lowest_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    highest_price: Mapped[float | None] = mapped_column(Float, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    owner: Mapped["Owner"] = relationship(back_populates="items")
    samples: Mapped[list["PriceSample"]] = relationship(back_populates="item", cascade="all, delete-orphan")


class PriceSample(Base):
    """Append-only price observation. Only retention cleanup deletes rows."""

    __tablename__ = "price_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(Integer, ForeignKey("tracked_items.id"), index=True)
    owner_id: Mapped[int] = mapped_column(Integer, index=True)
    price: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(Text, default="USD")
    price_dropped: Mapped[bool] = mapped_column(Boolean, default=False)
    drop_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)

    item: Mapped["TrackedItem"] = relationship(back_populates="samples")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("owners.id"), unique=True)
    drop_threshold_pct: Mapped[float] = mapped_column(Float, default=5.0)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    quiet_start_hour: Mapped[int] = mapped_column(Integer, default=22)
    quiet_end_hour: Mapped[int] = mapped_column(Integer, default=8)
    timezone: Mapped[str] = mapped_column(Text, default="UTC")
    channels: Mapped[str] = mapped_column(Text, default="[]")  # JSON: [{"type","enabled","config"}]
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    owner: Mapped["Owner"] = relationship(back_populates="preference")


class NotificationLog(Base):
    __tablename__ = "notification_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, index=True)
    item_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channel: Mapped[str] = mapped_column(Text)  # log / discord / slack / webhook / email / sms / push
    event_type: Mapped[str] = mapped_column(Text, default="price_drop")
    message: Mapped[str] = mapped_column(Text, default="")
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)
