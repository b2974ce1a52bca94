"""Async marketplace (Browse API) client with retry, backoff and token refresh."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from ..config import settings
from ..schemas import Listing, SearchPage
from . import IdentityError, MarketplaceApiError, QueryValidationError, ReauthorizationRequired
from .identity import Credential, IdentityProvider, mask_token
from .parser import parse_listing, parse_search_page
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

VALID_CONDITIONS = ("NEW", "USED", "REFURBISHED", "FOR_PARTS")
VALID_BUYING_FORMATS = ("FIXED_PRICE", "AUCTION")

_ALIASES = {
    "FOR_PARTS_OR_NOT_WORKING": "FOR_PARTS",
    "BUY_IT_NOW": "FIXED_PRICE",
    "BOTH": "",
}

PersistCallback = Callable[[Credential], Any]


def _normalize(value: str | None) -> str:
    if not value:
        return ""
    key = value.strip().upper().replace(" ", "_")
    return _ALIASES.get(key, key)


def _fmt(value: float) -> str:
    return f"{value:g}"


@dataclass
class SearchFilters:
    min_price: float | None = None
    max_price: float | None = None
    condition: str | None = None
    buying_format: str | None = None
    free_shipping: bool = False
    currency: str | None = None

    @classmethod
    def from_query(cls, query) -> SearchFilters:
        return cls(
            min_price=query.min_price,
            max_price=query.max_price,
            condition=query.condition,
            buying_format=query.buying_format,
            free_shipping=bool(query.free_shipping),
        )

    def validate(self) -> None:
        for name in ("min_price", "max_price"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise QueryValidationError(f"{name} must be >= 0 (got {value})")
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise QueryValidationError(
                f"min_price {self.min_price} exceeds max_price {self.max_price}"
            )
        condition = _normalize(self.condition)
        if condition and condition not in VALID_CONDITIONS:
            raise QueryValidationError(f"Unknown condition: {self.condition!r}")
        buying_format = _normalize(self.buying_format)
        if buying_format and buying_format not in VALID_BUYING_FORMATS:
            raise QueryValidationError(f"Unknown buying format: {self.buying_format!r}")

    def to_expression(self) -> str | None:
        """Render the Browse API ``filter`` parameter."""
        self.validate()
        parts: list[str] = []
        if self.min_price is not None and self.max_price is not None:
            parts.append(f"price:[{_fmt(self.min_price)}..{_fmt(self.max_price)}]")
        elif self.min_price is not None:
            parts.append(f"price:[{_fmt(self.min_price)}]")
        elif self.max_price is not None:
            parts.append(f"price:[..{_fmt(self.max_price)}]")
        if parts and self.currency:
            parts.append(f"priceCurrency:{self.currency}")

        condition = _normalize(self.condition)
        if condition:
            parts.append(f"conditions:{{{condition}}}")
        buying_format = _normalize(self.buying_format)
        if buying_format:
            parts.append(f"buyingOptions:{{{buying_format}}}")
        if self.free_shipping:
            parts.append("maxDeliveryCost:0")
        return ",".join(parts) or None


class MarketplaceClient:
    """Shared HTTP connection pool; hands out one session per owner.

    Credentials never live on the shared client. Each owner gets an
    ``OwnerSession`` bound to that owner's credential, so concurrent units
    for different owners cannot observe each other's tokens.
    """

    def __init__(
        self,
        identity: IdentityProvider | None = None,
        policy: RetryPolicy | None = None,
        http: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._identity = identity
        self._policy = policy or RetryPolicy.from_settings()
        self._client = http or httpx.AsyncClient(timeout=settings.marketplace_request_timeout)
        self._base_url = (base_url or settings.marketplace_api_base).rstrip("/")
        self._sleep = sleep
        self._sessions: dict[int, OwnerSession] = {}
        self._rate_limit_hits = 0

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def rate_limit_hits(self) -> int:
        """Number of HTTP 429 responses received so far."""
        return self._rate_limit_hits

    def session_for(
        self,
        owner_id: int,
        credential: Credential,
        persist: PersistCallback | None = None,
    ) -> OwnerSession:
        session = self._sessions.get(owner_id)
        if session is None:
            session = OwnerSession(self, owner_id, credential, persist)
            self._sessions[owner_id] = session
        return session

    def clear_sessions(self) -> None:
        """Drop cached owner sessions. Call at the start of each cycle."""
        self._sessions.clear()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _count_rate_limit(self) -> None:
        self._rate_limit_hits += 1

    async def _send(
        self,
        path: str,
        token: str,
        params: dict | None,
        marketplace_id: str,
        operation: str,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": marketplace_id,
        }
        return await call_with_retry(
            lambda: self._client.get(url, params=params, headers=headers),
            self._policy,
            operation=operation,
            on_rate_limit=self._count_rate_limit,
            sleep=self._sleep,
        )


class OwnerSession:
    """Marketplace calls on behalf of a single owner."""

    def __init__(
        self,
        client: MarketplaceClient,
        owner_id: int,
        credential: Credential,
        persist: PersistCallback | None = None,
    ) -> None:
        self._client = client
        self.owner_id = owner_id
        self._credential = credential
        self._persist = persist
        self._refresh_lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def credential(self) -> Credential:
        return self._credential

    async def search(
        self,
        keywords: str,
        filters: SearchFilters | None = None,
        limit: int = 50,
        offset: int = 0,
        marketplace_id: str | None = None,
    ) -> SearchPage:
        """Keyword search. Filter input is validated before anything is sent."""
        params: dict[str, Any] = {"q": keywords, "limit": limit}
        if offset:
            params["offset"] = offset
        expression = filters.to_expression() if filters else None
        if expression:
            params["filter"] = expression

        logger.debug("Searching %r on %s (offset=%d)", keywords, marketplace_id or settings.marketplace_id, offset)
        data = await self._request(
            "/item_summary/search", params, marketplace_id, f'search("{keywords}")',
        )
        page = parse_search_page(data)
        logger.debug("Search %r returned %d listings (total=%d)", keywords, len(page.listings), page.total)
        return page

    async def get_item(self, item_id: str, marketplace_id: str | None = None) -> Listing:
        data = await self._request(f"/item/{item_id}", None, marketplace_id, f'get_item("{item_id}")')
        listing = parse_listing(data)
        if listing is None:
            raise MarketplaceApiError(f"Item {item_id} has no usable price")
        return listing

    async def _request(
        self,
        path: str,
        params: dict | None,
        marketplace_id: str | None,
        operation: str,
    ) -> dict:
        marketplace_id = marketplace_id or settings.marketplace_id
        token = self._credential.access_token
        refreshed = False

        if self._credential.is_expired():
            logger.info("Owner %d: access token expired, refreshing before %s", self.owner_id, operation)
            token = await self._refresh(token)
            refreshed = True

        try:
            resp = await self._client._send(path, token, params, marketplace_id, operation)
        except MarketplaceApiError as e:
            if e.status_code != 401:
                raise
            if refreshed:
                raise ReauthorizationRequired(
                    f"Owner {self.owner_id}: refreshed token rejected by {operation}",
                    owner_id=self.owner_id,
                ) from e
            logger.info("Owner %d: 401 from %s, attempting token refresh", self.owner_id, operation)
            token = await self._refresh(token)
            try:
                resp = await self._client._send(path, token, params, marketplace_id, operation)
            except MarketplaceApiError as retry_error:
                if retry_error.status_code == 401:
                    raise ReauthorizationRequired(
                        f"Owner {self.owner_id}: still unauthorized after refresh ({operation})",
                        owner_id=self.owner_id,
                    ) from retry_error
                raise

        return resp.json()

    async def _refresh(self, stale_token: str) -> str:
        """Refresh the credential once and persist it before it is used."""
        async with self._refresh_lock:
            current = self._credential
            if current.access_token != stale_token and not current.is_expired():
                # Another unit for this owner refreshed while we waited.
                return current.access_token

            identity = self._client._identity
            if not current.refresh_token or identity is None:
                raise ReauthorizationRequired(
                    f"Owner {self.owner_id}: credential rejected and no refresh token available",
                    owner_id=self.owner_id,
                )
            try:
                new_credential = await identity.refresh(current.refresh_token)
            except IdentityError as e:
                raise ReauthorizationRequired(
                    f"Owner {self.owner_id}: token refresh failed: {e}",
                    owner_id=self.owner_id,
                ) from e

            if self._persist is not None:
                result = self._persist(new_credential)
                if inspect.isawaitable(result):
                    await result
            self._credential = new_credential
            self.refresh_count += 1
            logger.info(
                "Owner %d: credential refreshed (%s -> %s)",
                self.owner_id, mask_token(stale_token), mask_token(new_credential.access_token),
            )
            return new_credential.access_token
