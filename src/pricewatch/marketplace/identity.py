"""OAuth2 identity provider: authorization-code exchange and token refresh."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx

from ..config import settings
from . import IdentityError

logger = logging.getLogger(__name__)


def mask_token(token: str | None) -> str:
    """Render a token for logs without revealing it."""
    if not token:
        return "<none>"
    return f"...{token[-4:]}"


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def is_expired(self, buffer_seconds: int | None = None, now: datetime | None = None) -> bool:
        """True when the token expires within ``buffer_seconds`` from now."""
        if self.expires_at is None:
            return False
        if buffer_seconds is None:
            buffer_seconds = settings.token_refresh_buffer_seconds
        now = now or datetime.now(timezone.utc)
        expires = self.expires_at if self.expires_at.tzinfo else self.expires_at.replace(tzinfo=timezone.utc)
        return expires <= now + timedelta(seconds=buffer_seconds)

    def __repr__(self) -> str:
        return (
            f"Credential(access_token={mask_token(self.access_token)}, "
            f"refresh_token={mask_token(self.refresh_token)}, expires_at={self.expires_at})"
        )


class IdentityProvider:
    """Client for the marketplace OAuth2 token endpoint."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        token_url: str | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._client_id = client_id or settings.oauth_client_id
        self._client_secret = client_secret or settings.oauth_client_secret
        self._redirect_uri = redirect_uri or settings.oauth_redirect_uri
        self._token_url = token_url or settings.oauth_token_url
        self._client = http or httpx.AsyncClient(timeout=settings.marketplace_request_timeout)

    async def exchange_auth_code(self, code: str) -> Credential:
        data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
        })
        return self._credential_from(data, fallback_refresh=None)

    async def refresh(self, refresh_token: str) -> Credential:
        """Exchange a refresh token for a new access token.

        The provider may omit a new refresh token; the old one stays valid then.
        """
        data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        credential = self._credential_from(data, fallback_refresh=refresh_token)
        logger.info("Access token refreshed (%s)", mask_token(credential.access_token))
        return credential

    async def close(self) -> None:
        await self._client.aclose()

    async def _token_request(self, form: dict) -> dict:
        try:
            resp = await self._client.post(
                self._token_url,
                data=form,
                auth=(self._client_id, self._client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            raise IdentityError(f"Token endpoint HTTP error: {e}") from e

        if resp.status_code != 200:
            raise IdentityError(
                f"Token endpoint returned {resp.status_code}: {resp.text[:200]}"
            )
        data = resp.json()
        if not data.get("access_token"):
            raise IdentityError("Token endpoint response has no access_token")
        return data

    @staticmethod
    def _credential_from(data: dict, fallback_refresh: str | None) -> Credential:
        expires_in = data.get("expires_in")
        expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            if expires_in is not None else None
        )
        return Credential(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=expires_at,
        )
