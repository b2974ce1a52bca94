"""Exponential backoff with Retry-After support for marketplace calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable

import httpx

from ..config import settings
from . import MarketplaceApiError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    initial_delay: float = 0.1  # seconds
    backoff_base: float = 2.0
    max_delay: float = 30.0
    retryable_statuses: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_retries=settings.retry_max_retries,
            initial_delay=settings.retry_initial_delay,
            backoff_base=settings.retry_backoff_base,
            max_delay=settings.retry_max_delay,
            retryable_statuses=frozenset(settings.retry_statuses),
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), capped at max_delay."""
        return min(self.max_delay, self.initial_delay * self.backoff_base ** attempt)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def error_from_response(resp: httpx.Response, operation: str = "request") -> MarketplaceApiError:
    return MarketplaceApiError(
        f"{operation} returned HTTP {resp.status_code}: {resp.text[:200]}",
        status_code=resp.status_code,
        retry_after=parse_retry_after(resp.headers.get("Retry-After")),
    )


async def call_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    *,
    operation: str = "request",
    on_rate_limit: Callable[[], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """Send a request, retrying transient failures with exponential backoff.

    Transport errors and statuses in ``policy.retryable_statuses`` are retried
    up to ``policy.max_retries`` times. Any other error status raises
    immediately. When retries run out the last error is raised.
    A 401 is returned as an error like any other non-retryable status; the
    credential refresh is handled by the caller.
    """
    last_error: MarketplaceApiError | None = None

    for attempt in range(policy.max_retries + 1):
        try:
            resp = await send()
        except httpx.TransportError as e:
            last_error = MarketplaceApiError(f"{operation} transport error: {e!r}")
            last_error.__cause__ = e
        else:
            if resp.status_code < 400:
                return resp
            last_error = error_from_response(resp, operation)
            if last_error.is_rate_limited and on_rate_limit is not None:
                on_rate_limit()
            if resp.status_code not in policy.retryable_statuses:
                raise last_error

        if attempt == policy.max_retries:
            logger.error("[%s] Max retries (%d) exhausted", operation, policy.max_retries)
            break

        delay = policy.backoff_delay(attempt)
        if last_error.retry_after is not None:
            delay = last_error.retry_after
            logger.warning(
                "[%s] Rate limited (%s). Respecting Retry-After: %.1fs",
                operation, last_error.status_code, delay,
            )
        else:
            logger.warning(
                "[%s] %s. Attempt %d/%d, retrying in %.2fs",
                operation, last_error, attempt + 1, policy.max_retries + 1, delay,
            )
        await sleep(delay)

    raise last_error
