"""
Exchange rate client (CoinGecko simple/price API).

Implements the RateLookup collaborator: identical currencies short-circuit to
1.0; any transport or parse failure raises RateUnavailableError.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional

import httpx

from app.domain.errors import RateUnavailableError

logger = logging.getLogger(__name__)

FIAT_CURRENCIES = {"USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "CNY", "INR", "KRW"}

COIN_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "USDC": "usd-coin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "TRX": "tron",
    "AVAX": "avalanche-2",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "XLM": "stellar",
}

CROSS_VIA = "USDT"


class ExchangeRateClient:
    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        cache_ttl_seconds: int = 300,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = (api_key or "").strip() or None
        self.cache_ttl_seconds = cache_ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._cache: Dict[str, tuple[float, float]] = {}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _cache_get(self, key: str) -> Optional[float]:
        cached = self._cache.get(key)
        if not cached:
            return None
        ts, rate = cached
        if time.time() - ts > self.cache_ttl_seconds:
            return None
        return rate

    def _cache_set(self, key: str, rate: float) -> None:
        self._cache[key] = (time.time(), rate)

    async def fetch_rate(self, from_currency: str, to_currency: str) -> float:
        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return 1.0

        key = f"{source}->{target}"
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        if source in FIAT_CURRENCIES and target in FIAT_CURRENCIES:
            rate = await self._fetch_cross_rate(source, target)
        else:
            try:
                rate = await self._fetch_direct_rate(source, target)
            except RateUnavailableError:
                logger.debug("Direct rate %s unavailable, trying %s cross rate", key, CROSS_VIA)
                rate = await self._fetch_cross_rate(source, target)

        self._cache_set(key, rate)
        return rate

    async def _fetch_direct_rate(self, source: str, target: str) -> float:
        coin_id = COIN_IDS.get(source, source.lower())
        payload = await self._get({"ids": coin_id, "vs_currencies": target.lower()}, source, target)
        rate = (payload.get(coin_id) or {}).get(target.lower())
        if not isinstance(rate, (int, float)) or rate <= 0:
            raise RateUnavailableError(source, target, "rate missing from response")
        return float(rate)

    async def _fetch_cross_rate(self, source: str, target: str) -> float:
        via_id = COIN_IDS[CROSS_VIA]
        payload = await self._get(
            {"ids": via_id, "vs_currencies": f"{source.lower()},{target.lower()}"},
            source,
            target,
        )
        rates = payload.get(via_id) or {}
        source_rate = rates.get(source.lower())
        target_rate = rates.get(target.lower())
        if not isinstance(source_rate, (int, float)) or not isinstance(target_rate, (int, float)):
            raise RateUnavailableError(source, target, "cross rate missing from response")
        if source_rate <= 0 or target_rate <= 0:
            raise RateUnavailableError(source, target, "non-positive cross rate")
        # 1 VIA = source_rate SOURCE = target_rate TARGET
        return float(target_rate) / float(source_rate)

    async def _get(self, params: Dict[str, str], source: str, target: str) -> dict:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        try:
            resp = await self._get_client().get(self.api_url, params=params, headers=headers)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RateUnavailableError(source, target, str(exc)) from exc
        if not isinstance(payload, dict):
            raise RateUnavailableError(source, target, "unexpected response shape")
        return payload
