"""Tests for the marketplace client: owner sessions, token refresh, filters."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import item_summary, search_payload
from pricewatch.marketplace import IdentityError, MarketplaceApiError, QueryValidationError, ReauthorizationRequired
from pricewatch.marketplace.client import MarketplaceClient, SearchFilters
from pricewatch.marketplace.identity import Credential
from pricewatch.marketplace.retry import RetryPolicy

BASE = "https://api.test/buy/browse/v1"


def _future(hours: int = 2) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


def _make_client(handler, identity=None) -> MarketplaceClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MarketplaceClient(
        identity=identity,
        policy=RetryPolicy(max_retries=2),
        http=http,
        base_url=BASE,
        sleep=AsyncMock(),
    )


def _identity(new_token: str = "fresh-token"):
    identity = MagicMock()
    identity.refresh = AsyncMock(return_value=Credential(
        access_token=new_token, refresh_token="refresh-2", expires_at=_future(),
    ))
    return identity


class TestSearchFilters:
    def test_full_expression(self):
        f = SearchFilters(
            min_price=10, max_price=50.5, condition="new", buying_format="Buy It Now",
            free_shipping=True, currency="USD",
        )
        assert f.to_expression() == (
            "price:[10..50.5],priceCurrency:USD,conditions:{NEW},"
            "buyingOptions:{FIXED_PRICE},maxDeliveryCost:0"
        )

    def test_open_ranges(self):
        assert SearchFilters(min_price=5).to_expression() == "price:[5]"
        assert SearchFilters(max_price=20).to_expression() == "price:[..20]"

    def test_empty(self):
        assert SearchFilters().to_expression() is None

    @pytest.mark.parametrize("kwargs", [
        {"min_price": 50, "max_price": 10},
        {"min_price": -1},
        {"condition": "mint"},
        {"buying_format": "barter"},
    ])
    def test_invalid_input_rejected(self, kwargs):
        with pytest.raises(QueryValidationError):
            SearchFilters(**kwargs).validate()


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_request_and_parsing(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=search_payload(
                [item_summary("v1|1|0", 19.99), {"itemId": "broken"}], total=42,
            ))

        client = _make_client(handler)
        session = client.session_for(1, Credential("tok-abcd", "ref", _future()))
        page = await session.search("lego", SearchFilters(max_price=30), limit=50)

        req = seen[0]
        assert req.url.path == "/buy/browse/v1/item_summary/search"
        assert req.url.params["q"] == "lego"
        assert req.url.params["limit"] == "50"
        assert req.url.params["filter"] == "price:[..30]"
        assert req.headers["Authorization"] == "Bearer tok-abcd"
        assert req.headers["X-EBAY-C-MARKETPLACE-ID"] == "EBAY_US"
        assert [l.item_id for l in page.listings] == ["v1|1|0"]
        assert page.listings[0].price == 19.99
        assert page.total == 42

    @pytest.mark.asyncio
    async def test_invalid_filters_never_sent(self):
        handler = MagicMock()
        client = _make_client(handler)
        session = client.session_for(1, Credential("tok", "ref", _future()))
        with pytest.raises(QueryValidationError):
            await session.search("lego", SearchFilters(min_price=100, max_price=1))
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limit_hits_counted(self):
        responses = iter([
            httpx.Response(429, headers={"Retry-After": "0"}),
            httpx.Response(200, json=search_payload([])),
        ])
        client = _make_client(lambda request: next(responses))
        session = client.session_for(1, Credential("tok", "ref", _future()))
        await session.search("lego")
        assert client.rate_limit_hits == 1

    @pytest.mark.asyncio
    async def test_get_item_gone(self):
        client = _make_client(lambda request: httpx.Response(404, text="not found"))
        session = client.session_for(1, Credential("tok", "ref", _future()))
        with pytest.raises(MarketplaceApiError) as exc:
            await session.get_item("v1|9|0")
        assert exc.value.is_gone
        assert not isinstance(exc.value, ReauthorizationRequired)


class TestTokenRefresh:
    @pytest.mark.asyncio
    async def test_401_refreshes_once_and_persists_before_retry(self):
        persisted = []
        tokens_seen = []

        def handler(request):
            token = request.headers["Authorization"].removeprefix("Bearer ")
            tokens_seen.append((token, len(persisted)))
            if token == "stale-token":
                return httpx.Response(401)
            return httpx.Response(200, json=item_summary("v1|1|0", 10.0))

        identity = _identity("fresh-token")
        client = _make_client(handler, identity)
        session = client.session_for(7, Credential("stale-token", "refresh-1", _future()), persist=persisted.append)

        listing = await session.get_item("v1|1|0")

        assert listing.price == 10.0
        identity.refresh.assert_awaited_once_with("refresh-1")
        assert tokens_seen == [("stale-token", 0), ("fresh-token", 1)]
        assert persisted[0].access_token == "fresh-token"
        assert session.credential.access_token == "fresh-token"

    @pytest.mark.asyncio
    async def test_second_401_raises_reauthorization(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        identity = _identity()
        client = _make_client(handler, identity)
        session = client.session_for(7, Credential("stale", "refresh-1", _future()))

        with pytest.raises(ReauthorizationRequired) as exc:
            await session.get_item("x")
        assert exc.value.owner_id == 7
        assert identity.refresh.await_count == 1
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_401_without_refresh_token(self):
        identity = _identity()
        client = _make_client(lambda request: httpx.Response(401), identity)
        session = client.session_for(3, Credential("stale", None, _future()))
        with pytest.raises(ReauthorizationRequired):
            await session.get_item("x")
        identity.refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_failure_raises_reauthorization(self):
        identity = MagicMock()
        identity.refresh = AsyncMock(side_effect=IdentityError("invalid_grant"))
        client = _make_client(lambda request: httpx.Response(401), identity)
        session = client.session_for(3, Credential("stale", "revoked", _future()))
        with pytest.raises(ReauthorizationRequired) as exc:
            await session.get_item("x")
        assert isinstance(exc.value.__cause__, IdentityError)

    @pytest.mark.asyncio
    async def test_expired_credential_refreshed_before_sending(self):
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json=item_summary("v1|1|0", 10.0))

        identity = _identity("fresh-token")
        client = _make_client(handler, identity)
        expired = Credential("old-token", "refresh-1", datetime.now(timezone.utc) + timedelta(seconds=30))
        session = client.session_for(1, expired)

        await session.get_item("v1|1|0")
        assert seen == ["Bearer fresh-token"]

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_sends_nothing(self):
        handler = MagicMock()
        client = _make_client(handler, _identity())
        expired = Credential("old", None, datetime.now(timezone.utc) - timedelta(minutes=1))
        session = client.session_for(1, expired)
        with pytest.raises(ReauthorizationRequired):
            await session.get_item("x")
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_401s_share_one_refresh(self):
        def handler(request):
            if request.headers["Authorization"] == "Bearer stale":
                return httpx.Response(401)
            return httpx.Response(200, json=item_summary("v1|1|0", 10.0))

        identity = _identity("fresh-token")
        client = _make_client(handler, identity)
        session = client.session_for(1, Credential("stale", "refresh-1", _future()))

        results = await asyncio.gather(*(session.get_item("v1|1|0") for _ in range(3)))
        assert len(results) == 3
        identity.refresh.assert_awaited_once()


class TestOwnerSessions:
    def test_one_session_per_owner(self):
        client = _make_client(MagicMock())
        a = client.session_for(1, Credential("a"))
        b = client.session_for(2, Credential("b"))
        assert client.session_for(1, Credential("ignored")) is a
        assert a is not b
        assert b.credential.access_token == "b"

    def test_clear_sessions(self):
        client = _make_client(MagicMock())
        a = client.session_for(1, Credential("a"))
        client.clear_sessions()
        assert client.session_for(1, Credential("a2")) is not a
