"""Per-owner notification preferences, read from the catalog."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..models import NotificationPreference

logger = logging.getLogger(__name__)


@dataclass
class PreferenceSnapshot:
    owner_id: int
    drop_threshold_pct: float = 5.0
    quiet_hours_enabled: bool = False
    quiet_start_hour: int = 22
    quiet_end_hour: int = 8
    timezone: str = "UTC"
    channels: list[dict] = field(default_factory=list)

    @classmethod
    def from_model(cls, pref: NotificationPreference) -> PreferenceSnapshot:
        return cls(
            owner_id=pref.owner_id,
            drop_threshold_pct=pref.drop_threshold_pct,
            quiet_hours_enabled=pref.quiet_hours_enabled,
            quiet_start_hour=pref.quiet_start_hour,
            quiet_end_hour=pref.quiet_end_hour,
            timezone=pref.timezone or "UTC",
            channels=parse_channels(pref.channels),
        )

    def local_hour(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        try:
            tz = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Owner %d: unknown timezone %r, using UTC", self.owner_id, self.timezone)
            tz = timezone.utc
        return now.astimezone(tz).hour


def parse_channels(raw: str | None) -> list[dict]:
    if not raw:
        return []
    try:
        channels = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Invalid channel JSON in notification preference: %r", raw[:100])
        return []
    return [c for c in channels if isinstance(c, dict) and c.get("type")]


class SqlPreferenceStore:
    """Preference lookup backed by the catalog store."""

    def __init__(self, store) -> None:
        self._store = store

    def get(self, owner_id: int) -> PreferenceSnapshot | None:
        pref = self._store.get_preference(owner_id)
        if pref is None:
            return None
        return PreferenceSnapshot.from_model(pref)
