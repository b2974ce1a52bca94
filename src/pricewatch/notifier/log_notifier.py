"""Channel that writes alerts to the application log."""

from __future__ import annotations

import logging

from .base import BaseChannel, PriceDropAlert

logger = logging.getLogger(__name__)


class LogChannel(BaseChannel):
    name = "log"

    async def deliver(self, alert: PriceDropAlert, config: dict) -> bool:
        msg = self.format_message(alert)
        logger.info("NOTIFICATION (owner %d):\n%s", alert.owner_id, msg)
        return True
