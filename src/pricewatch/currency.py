"""Currency normalization with a short-TTL rate cache and static fallbacks."""

from __future__ import annotations

import logging
import threading
import time

import httpx

from .config import settings

logger = logging.getLogger(__name__)

RATE_API_URL = "https://v6.exchangerate-api.com/v6/{key}/latest/{base}"

MARKETPLACE_CURRENCIES = {
    "EBAY_US": "USD",
    "EBAY_CA": "CAD",
    "EBAY_GB": "GBP",
    "EBAY_AU": "AUD",
    "EBAY_DE": "EUR",
    "EBAY_FR": "EUR",
    "EBAY_IT": "EUR",
    "EBAY_ES": "EUR",
    "EBAY_NL": "EUR",
    "EBAY_BE": "EUR",
    "EBAY_AT": "EUR",
    "EBAY_CH": "CHF",
    "EBAY_SE": "SEK",
    "EBAY_JP": "JPY",
    "EBAY_IN": "INR",
    "EBAY_SG": "SGD",
    "EBAY_HK": "HKD",
}

# Approximate rates used when the provider is unavailable.
FALLBACK_RATES: dict[str, dict[str, float]] = {
    "USD": {"CAD": 1.35, "GBP": 0.79, "EUR": 0.92, "AUD": 1.52, "JPY": 149.5, "CHF": 0.88,
            "SEK": 10.5, "INR": 83.2, "SGD": 1.34, "HKD": 7.81},
    "EUR": {"USD": 1.09, "GBP": 0.86, "CAD": 1.47, "AUD": 1.65, "JPY": 162.5, "CHF": 0.96,
            "SEK": 11.4, "INR": 90.5, "SGD": 1.46, "HKD": 8.5},
    "GBP": {"USD": 1.27, "EUR": 1.16, "CAD": 1.71, "AUD": 1.92, "JPY": 189.0, "CHF": 1.12,
            "SEK": 13.3, "INR": 105.0, "SGD": 1.70, "HKD": 9.9},
    "CAD": {"USD": 0.74, "EUR": 0.68, "GBP": 0.58, "AUD": 1.12, "JPY": 110.5, "CHF": 0.65,
            "SEK": 7.8, "INR": 67.0, "SGD": 0.99, "HKD": 5.78},
    "AUD": {"USD": 0.66, "EUR": 0.61, "GBP": 0.52, "CAD": 0.89, "JPY": 98.5, "CHF": 0.58,
            "SEK": 6.9, "INR": 59.8, "SGD": 0.88, "HKD": 5.14},
    "JPY": {"USD": 0.0067, "EUR": 0.0062, "GBP": 0.0053, "CAD": 0.0090, "AUD": 0.0102,
            "CHF": 0.0059, "SEK": 0.070, "INR": 0.61, "SGD": 0.0090, "HKD": 0.054},
    "CHF": {"USD": 1.14, "EUR": 1.04, "GBP": 0.89, "CAD": 1.54, "AUD": 1.72, "JPY": 170.0,
            "SEK": 11.9, "INR": 94.5, "SGD": 1.52, "HKD": 8.88},
    "SEK": {"USD": 0.095, "EUR": 0.088, "GBP": 0.075, "CAD": 0.13, "AUD": 0.15, "JPY": 14.3,
            "CHF": 0.084, "INR": 7.9, "SGD": 0.127, "HKD": 0.745},
    "INR": {"USD": 0.012, "EUR": 0.011, "GBP": 0.0095, "CAD": 0.016, "AUD": 0.017, "JPY": 1.64,
            "CHF": 0.0106, "SEK": 0.127, "SGD": 0.016, "HKD": 0.094},
    "SGD": {"USD": 0.75, "EUR": 0.69, "GBP": 0.59, "CAD": 1.01, "AUD": 1.14, "JPY": 111.0,
            "CHF": 0.66, "SEK": 7.87, "INR": 62.5, "HKD": 5.88},
    "HKD": {"USD": 0.128, "EUR": 0.117, "GBP": 0.101, "CAD": 0.172, "AUD": 0.194, "JPY": 18.9,
            "CHF": 0.112, "SEK": 1.34, "INR": 10.6, "SGD": 0.17},
}


def currency_for_marketplace(marketplace_id: str) -> str:
    return MARKETPLACE_CURRENCIES.get(marketplace_id, settings.base_currency)


def fallback_rate(from_ccy: str, to_ccy: str) -> float | None:
    """Static table lookup, trying the inverse pair second."""
    rate = FALLBACK_RATES.get(from_ccy, {}).get(to_ccy)
    if rate is not None:
        return rate
    inverse = FALLBACK_RATES.get(to_ccy, {}).get(from_ccy)
    if inverse:
        return 1 / inverse
    return None


class CurrencyConverter:
    """Converts amounts between currencies.

    Rates come from the exchange-rate provider and are cached for
    ``ttl`` seconds. When the provider is missing, failing, or does not know
    the pair, the static table is used; as a last resort the rate is 1.0.
    Conversion never raises because of a rate outage.
    """

    def __init__(
        self,
        api_key: str | None = None,
        ttl: int | None = None,
        http: httpx.AsyncClient | None = None,
        clock=time.monotonic,
    ) -> None:
        self._api_key = settings.exchange_rate_api_key if api_key is None else api_key
        self._ttl = settings.exchange_rate_ttl if ttl is None else ttl
        self._client = http or httpx.AsyncClient(timeout=settings.exchange_rate_timeout)
        self._clock = clock
        self._cache: dict[tuple[str, str], tuple[float, float]] = {}
        self._lock = threading.Lock()
        self.provider_failures = 0

    async def convert(self, amount: float, from_ccy: str, to_ccy: str) -> float:
        from_ccy, to_ccy = from_ccy.upper(), to_ccy.upper()
        if from_ccy == to_ccy:
            return amount
        rate = await self.get_rate(from_ccy, to_ccy)
        return amount * rate

    async def get_rate(self, from_ccy: str, to_ccy: str) -> float:
        from_ccy, to_ccy = from_ccy.upper(), to_ccy.upper()
        if from_ccy == to_ccy:
            return 1.0

        cached = self._cached_rate(from_ccy, to_ccy)
        if cached is not None:
            return cached

        if self._api_key:
            rate = await self._fetch_rate(from_ccy, to_ccy)
            if rate is not None:
                self._store_rate(from_ccy, to_ccy, rate)
                return rate

        rate = fallback_rate(from_ccy, to_ccy)
        if rate is not None:
            logger.debug("Using fallback rate %s->%s: %s", from_ccy, to_ccy, rate)
            return rate

        logger.warning("No exchange rate for %s->%s, using 1.0", from_ccy, to_ccy)
        return 1.0

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    async def close(self) -> None:
        await self._client.aclose()

    def _cached_rate(self, from_ccy: str, to_ccy: str) -> float | None:
        with self._lock:
            entry = self._cache.get((from_ccy, to_ccy))
            if entry is None:
                return None
            rate, fetched_at = entry
            if self._clock() - fetched_at >= self._ttl:
                del self._cache[(from_ccy, to_ccy)]
                return None
            return rate

    def _store_rate(self, from_ccy: str, to_ccy: str, rate: float) -> None:
        with self._lock:
            self._cache[(from_ccy, to_ccy)] = (rate, self._clock())

    async def _fetch_rate(self, from_ccy: str, to_ccy: str) -> float | None:
        url = RATE_API_URL.format(key=self._api_key, base=from_ccy)
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            self.provider_failures += 1
            logger.warning("Exchange rate provider failed for %s: %s", from_ccy, e)
            return None

        rate = (data.get("conversion_rates") or {}).get(to_ccy)
        if rate is None:
            logger.info("Exchange rate provider has no %s->%s pair", from_ccy, to_ccy)
            return None
        return float(rate)
