"""
Settlement Engine - Price Oracle.

============================================================
RESPONSIBILITY
============================================================
Unit -> USD rates from CoinGecko.

- Maps unit symbols to CoinGecko ids
- Caches rates for a short TTL
- Bulk lookup in one request
- Static fallback table when the API is unavailable

============================================================
DESIGN PRINCIPLES
============================================================
- get_price raises on failure; the normalizer decides to
  fall back, so fallback use is always logged there
- Rates are Decimal, never float

============================================================
"""

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Tuple

import httpx

from .config import PriceOracleConfig, TimeoutConfig
from .types import SettlementEngineError


logger = logging.getLogger(__name__)


SYMBOL_TO_ID: Dict[str, str] = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "usdt": "tether",
    "usdc": "usd-coin",
    "bnb": "binancecoin",
    "sol": "solana",
    "xrp": "ripple",
    "ada": "cardano",
    "doge": "dogecoin",
    "dot": "polkadot",
    "pol": "polygon-ecosystem-token",
    "matic": "polygon-ecosystem-token",
    "dai": "dai",
    "ltc": "litecoin",
    "avax": "avalanche-2",
    "link": "chainlink",
    "atom": "cosmos",
    "xlm": "stellar",
    "etc": "ethereum-classic",
    "uni": "uniswap",
    "bch": "bitcoin-cash",
}


def coingecko_id(symbol: str) -> str:
    lower = (symbol or "").lower()
    return SYMBOL_TO_ID.get(lower, lower)


class PriceLookupError(SettlementEngineError):
    """A rate could not be obtained."""

    def __init__(self, message: str, symbol: str = "", recoverable: bool = True):
        super().__init__(message)
        self.symbol = symbol
        self.recoverable = recoverable


class CoinGeckoPriceOracle:
    """
    Price oracle backed by the CoinGecko simple/price endpoint.

    Instances are callable, so they can be passed directly as the
    normalizer's price function.
    """

    def __init__(
        self,
        config: Optional[PriceOracleConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock=time.monotonic,
    ):
        """
        Initialize the oracle.

        Args:
            config: Oracle configuration
            timeout_config: Timeout configuration
            transport: httpx transport override (tests)
            clock: Monotonic clock for cache expiry
        """
        self._config = config or PriceOracleConfig()
        self._timeout = (timeout_config or TimeoutConfig()).price_timeout_seconds
        self._transport = transport
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Decimal]] = {}

    async def __call__(self, symbol: str) -> Decimal:
        return await self.get_price(symbol)

    # =========================================================
    # LOOKUPS
    # =========================================================

    async def get_price(self, symbol: str) -> Decimal:
        """
        USD rate for one unit.

        Raises:
            PriceLookupError: On network/API errors or a missing price
        """
        prices = await self.get_prices([symbol])
        price = prices.get(symbol.lower())
        if price is None:
            raise PriceLookupError(f"No price found for {symbol}", symbol=symbol, recoverable=False)
        return price

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, Decimal]:
        """
        USD rates for several units in one request.

        Units with no price are absent from the result.

        Raises:
            PriceLookupError: On network/API errors
        """
        wanted = list(dict.fromkeys(s.lower() for s in symbols))
        result: Dict[str, Decimal] = {}
        missing = []
        for symbol in wanted:
            cached = self._cached(coingecko_id(symbol))
            if cached is not None:
                result[symbol] = cached
            else:
                missing.append(symbol)

        if not missing:
            return result

        ids = list(dict.fromkeys(coingecko_id(s) for s in missing))
        data = await self._fetch(ids)
        expires_at = self._clock() + self._config.cache_ttl_seconds

        for symbol in missing:
            coin_id = coingecko_id(symbol)
            raw = (data.get(coin_id) or {}).get("usd")
            if raw is None:
                logger.warning(f"No price found for {coin_id}")
                continue
            try:
                price = Decimal(str(raw))
            except InvalidOperation:
                logger.warning(f"Unparseable price for {coin_id}: {raw!r}")
                continue
            if price <= 0:
                continue
            self._cache[coin_id] = (expires_at, price)
            result[symbol] = price
        return result

    async def price_or_fallback(self, symbol: str) -> Decimal:
        """USD rate, or the fallback table entry if the lookup fails."""
        try:
            return await self.get_price(symbol)
        except PriceLookupError as e:
            fallback = self._config.fallback_for(symbol)
            logger.warning(f"Using fallback price {fallback} for {symbol}: {e}")
            return fallback

    def clear_cache(self) -> None:
        self._cache.clear()

    # =========================================================
    # INTERNAL
    # =========================================================

    def _cached(self, coin_id: str) -> Optional[Decimal]:
        entry = self._cache.get(coin_id)
        if entry is None:
            return None
        expires_at, price = entry
        if expires_at <= self._clock():
            del self._cache[coin_id]
            return None
        return price

    async def _fetch(self, ids) -> Dict[str, Dict[str, object]]:
        params = {"ids": ",".join(ids), "vs_currencies": "usd"}
        headers = {}
        if self._config.api_key:
            headers["x-cg-demo-api-key"] = self._config.api_key

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self._config.base_url}/simple/price",
                    params=params,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise PriceLookupError(
                f"HTTP {status}: {e.response.text[:200]}",
                symbol=params["ids"],
                recoverable=status >= 500 or status == 429,
            )
        except httpx.TimeoutException as e:
            raise PriceLookupError(f"Request timeout: {e}", symbol=params["ids"])
        except httpx.RequestError as e:
            raise PriceLookupError(f"Request error: {e}", symbol=params["ids"])

        if not isinstance(data, dict):
            raise PriceLookupError("Unexpected response shape", symbol=params["ids"], recoverable=False)
        return data
