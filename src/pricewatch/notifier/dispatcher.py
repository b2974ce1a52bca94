"""Fan price-drop alerts out to each owner's enabled channels."""

from __future__ import annotations

import logging
from datetime import datetime

from .base import BaseChannel, PriceDropAlert
from .email import EmailChannel
from .log_notifier import LogChannel
from .placeholder import PushChannel, SmsChannel
from .webhook import DiscordChannel, SlackChannel, WebhookChannel

logger = logging.getLogger(__name__)


def is_quiet_hour(hour: int, start: int, end: int) -> bool:
    """True if ``hour`` is inside [start, end), wrapping past midnight when start > end."""
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def default_channels() -> dict[str, BaseChannel]:
    channels: list[BaseChannel] = [
        LogChannel(), DiscordChannel(), SlackChannel(), WebhookChannel(),
        EmailChannel(), SmsChannel(), PushChannel(),
    ]
    return {c.name: c for c in channels}


class NotificationDispatcher:
    """Delivers alerts according to each owner's preferences.

    No preference row means the owner has not opted in and nothing is sent.
    Alerts inside the quiet-hour window or below the drop threshold are
    dropped. Each enabled channel is attempted independently and every
    attempt is written to the notification log when a store is given.
    """

    def __init__(self, preferences, channels: dict[str, BaseChannel] | None = None, store=None) -> None:
        self._preferences = preferences
        self._channels = channels if channels is not None else default_channels()
        self._store = store

    async def emit(self, alert: PriceDropAlert, now: datetime | None = None) -> list[str]:
        """Deliver ``alert``; returns the channel types that succeeded."""
        prefs = self._preferences.get(alert.owner_id)
        if prefs is None:
            logger.debug("Owner %d has no notification preferences; alert dropped", alert.owner_id)
            return []

        if prefs.quiet_hours_enabled:
            hour = prefs.local_hour(now)
            if is_quiet_hour(hour, prefs.quiet_start_hour, prefs.quiet_end_hour):
                logger.info(
                    "Owner %d: quiet hours (%02d-%02d, now %02d), alert for item %d suppressed",
                    alert.owner_id, prefs.quiet_start_hour, prefs.quiet_end_hour, hour, alert.item_id,
                )
                return []

        if alert.drop_percent < prefs.drop_threshold_pct:
            logger.debug(
                "Owner %d: drop %.1f%% below threshold %.1f%%, alert dropped",
                alert.owner_id, alert.drop_percent, prefs.drop_threshold_pct,
            )
            return []

        delivered: list[str] = []
        for channel_cfg in prefs.channels:
            if not channel_cfg.get("enabled", True):
                continue
            channel_type = channel_cfg["type"]
            channel = self._channels.get(channel_type)
            if channel is None:
                logger.warning("Owner %d: unknown notification channel %r", alert.owner_id, channel_type)
                continue

            try:
                ok = await channel.deliver(alert, channel_cfg.get("config") or {})
            except Exception as e:
                logger.warning("Channel %s failed for owner %d: %s", channel_type, alert.owner_id, e)
                ok = False

            if self._store is not None:
                self._store.record_notification(
                    alert.owner_id, alert.item_id, channel_type,
                    channel.format_message(alert), ok,
                )
            if ok:
                delivered.append(channel_type)

        if delivered:
            logger.info(
                "Owner %d: price drop alert for item %d sent via %s",
                alert.owner_id, alert.item_id, ", ".join(delivered),
            )
        return delivered
