"""Channels without a delivery backend yet. They log intent and never raise."""

from __future__ import annotations

import logging

from .base import BaseChannel, PriceDropAlert

logger = logging.getLogger(__name__)


class SmsChannel(BaseChannel):
    name = "sms"

    async def deliver(self, alert: PriceDropAlert, config: dict) -> bool:
        logger.info(
            "SMS notification not implemented; would text %s about item %s",
            config.get("phone", "<unset>"), alert.remote_item_id,
        )
        return False


class PushChannel(BaseChannel):
    name = "push"

    async def deliver(self, alert: PriceDropAlert, config: dict) -> bool:
        logger.info(
            "Push notification not implemented; would notify owner %d about item %s",
            alert.owner_id, alert.remote_item_id,
        )
        return False
