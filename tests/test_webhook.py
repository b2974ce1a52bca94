"""Tests for webhook channels (Discord, Slack, generic JSON)."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from pricewatch.notifier.base import PriceDropAlert
from pricewatch.notifier.webhook import DiscordChannel, SlackChannel, WebhookChannel, _WebhookChannel, send_webhook


def _alert(**overrides) -> PriceDropAlert:
    data = dict(
        owner_id=1, item_id=10, remote_item_id="v1|123|0", title="Test Camera",
        previous_price=100.0, current_price=85.0, target_price=90.0,
        drop_amount=15.0, drop_percent=15.0, url="https://www.ebay.com/itm/123",
    )
    data.update(overrides)
    return PriceDropAlert(**data)


class TestSendWebhook:
    @pytest.mark.asyncio
    async def test_json_post(self):
        with patch("pricewatch.notifier.webhook.httpx.AsyncClient") as mock_cls:
            mock_client = AsyncMock()
            mock_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_resp = AsyncMock()
            mock_resp.raise_for_status = lambda: None
            mock_client.post.return_value = mock_resp

            result = await send_webhook("https://example.com/hook", {"content": "test"})
            assert result is True
            mock_client.post.assert_called_once()
            assert mock_client.post.call_args.kwargs.get("json") == {"content": "test"}

    @pytest.mark.asyncio
    async def test_retry_on_failure(self):
        with patch("pricewatch.notifier.webhook.httpx.AsyncClient") as mock_cls:
            mock_client = AsyncMock()
            mock_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_client.post.side_effect = httpx.ConnectError("connection error")

            with patch("pricewatch.notifier.webhook.asyncio.sleep", new_callable=AsyncMock) as sleep:
                result = await send_webhook("https://example.com/hook", {"msg": "test"}, max_retries=3)
            assert result is False
            assert mock_client.post.call_count == 3
            assert [c.args[0] for c in sleep.await_args_list] == [1, 3]

    @pytest.mark.asyncio
    async def test_recovers_after_one_failure(self):
        with patch("pricewatch.notifier.webhook.httpx.AsyncClient") as mock_cls:
            mock_client = AsyncMock()
            mock_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
            mock_resp = AsyncMock()
            mock_resp.raise_for_status = lambda: None
            mock_client.post.side_effect = [httpx.ReadTimeout("slow"), mock_resp]

            with patch("pricewatch.notifier.webhook.asyncio.sleep", new_callable=AsyncMock):
                result = await send_webhook("https://example.com/hook", {"msg": "test"})
            assert result is True
            assert mock_client.post.call_count == 2


class TestChannelPayloads:
    def test_discord_payload(self):
        payload = DiscordChannel().build_payload(_alert(), {})
        assert "Test Camera" in payload["content"]
        embed = payload["embeds"][0]
        assert embed["url"] == "https://www.ebay.com/itm/123"
        assert {"name": "Drop", "value": "15.0%", "inline": True} in embed["fields"]

    def test_slack_payload(self):
        payload = SlackChannel().build_payload(_alert(), {})
        assert payload["blocks"][0]["text"]["type"] == "mrkdwn"
        assert "85.00" in payload["text"]

    def test_generic_payload_carries_alert_fields(self):
        payload = WebhookChannel().build_payload(_alert(), {})
        assert payload["event"] == "price_drop"
        assert payload["alert"]["remote_item_id"] == "v1|123|0"
        assert isinstance(payload["alert"]["timestamp"], str)

    @pytest.mark.asyncio
    async def test_missing_url_skips_delivery(self):
        with patch("pricewatch.notifier.webhook.send_webhook", new_callable=AsyncMock) as send:
            assert await DiscordChannel().deliver(_alert(), {}) is False
            send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deliver_uses_configured_url(self):
        with patch("pricewatch.notifier.webhook.send_webhook", new_callable=AsyncMock, return_value=True) as send:
            assert await SlackChannel().deliver(_alert(), {"webhook_url": "https://hooks.slack.com/x"}) is True
            assert send.await_args.args[0] == "https://hooks.slack.com/x"

    def test_channel_without_payload_builder_cannot_be_created(self):
        class Incomplete(_WebhookChannel):
            name = "incomplete"

        with pytest.raises(TypeError):
            Incomplete()
