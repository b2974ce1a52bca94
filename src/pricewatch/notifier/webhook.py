"""Webhook channels for Discord / Slack / generic JSON endpoints."""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from dataclasses import asdict

import httpx

from .base import BaseChannel, PriceDropAlert

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF = (1, 3, 5)  # seconds


async def send_webhook(
    url: str,
    payload: dict,
    *,
    headers: dict | None = None,
    max_retries: int = MAX_RETRIES,
) -> bool:
    """POST JSON to a webhook URL with retry + backoff."""
    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(url, json=payload, headers=headers or {})
                resp.raise_for_status()
            return True
        except httpx.HTTPError as e:
            wait = RETRY_BACKOFF[attempt] if attempt < len(RETRY_BACKOFF) else RETRY_BACKOFF[-1]
            if attempt < max_retries - 1:
                logger.warning("Webhook attempt %d/%d failed: %s (retry in %ds)", attempt + 1, max_retries, e, wait)
                await asyncio.sleep(wait)
            else:
                logger.warning("Webhook failed after %d attempts: %s", max_retries, e)
    return False


class _WebhookChannel(BaseChannel):
    async def deliver(self, alert: PriceDropAlert, config: dict) -> bool:
        url = config.get("url") or config.get("webhook_url")
        if not url:
            logger.debug("%s channel has no URL configured; skipping", self.name)
            return False
        return await send_webhook(url, self.build_payload(alert, config), headers=config.get("headers"))

    @abstractmethod
    def build_payload(self, alert: PriceDropAlert, config: dict) -> dict:
        ...


class DiscordChannel(_WebhookChannel):
    name = "discord"

    def build_payload(self, alert: PriceDropAlert, config: dict) -> dict:
        return {
            "content": self.format_message(alert),
            "embeds": [{
                "title": alert.title[:256],
                "url": alert.url,
                "color": 0x2ECC71,
                "fields": [
                    {"name": "Price", "value": f"{alert.current_price:,.2f} {alert.currency}", "inline": True},
                    {"name": "Was", "value": f"{alert.previous_price:,.2f} {alert.currency}", "inline": True},
                    {"name": "Drop", "value": f"{alert.drop_percent:.1f}%", "inline": True},
                    {"name": "Target", "value": f"{alert.target_price:,.2f} {alert.currency}", "inline": True},
                ],
                "timestamp": alert.timestamp.isoformat(),
            }],
        }


class SlackChannel(_WebhookChannel):
    name = "slack"

    def build_payload(self, alert: PriceDropAlert, config: dict) -> dict:
        message = self.format_message(alert)
        return {
            "text": message,
            "blocks": [{
                "type": "section",
                "text": {"type": "mrkdwn", "text": message},
            }],
        }


class WebhookChannel(_WebhookChannel):
    """Generic JSON webhook: the alert fields plus a rendered message."""

    name = "webhook"

    def build_payload(self, alert: PriceDropAlert, config: dict) -> dict:
        data = asdict(alert)
        data["timestamp"] = alert.timestamp.isoformat()
        return {"event": "price_drop", "message": self.format_message(alert), "alert": data}
