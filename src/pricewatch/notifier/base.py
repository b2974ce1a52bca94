"""Notification interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class PriceDropAlert:
    owner_id: int
    item_id: int
    remote_item_id: str
    title: str
    previous_price: float
    current_price: float
    target_price: float
    drop_amount: float
    drop_percent: float
    currency: str = "USD"
    url: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BaseChannel(ABC):
    """Abstract base for notification channels."""

    name: str = "base"

    @abstractmethod
    async def deliver(self, alert: PriceDropAlert, config: dict) -> bool:
        """Send a notification. Return True on success."""
        ...

    def format_message(self, alert: PriceDropAlert) -> str:
        lines = [f"[price_drop] {alert.title}"]
        lines.append(f"Item: {alert.remote_item_id}")
        lines.append(
            f"Price: {alert.previous_price:,.2f} → {alert.current_price:,.2f} {alert.currency} "
            f"(-{alert.drop_percent:.1f}%)"
        )
        lines.append(f"Target: {alert.target_price:,.2f} {alert.currency}")
        if alert.url:
            lines.append(f"URL: {alert.url}")
        return "\n".join(lines)
