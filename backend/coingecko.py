"""
coingecko.py — CoinGecko client for crypto quotes, OHLC history and the coin list.

Free public API, no key required. Every call goes through the shared
MarketCache; a fresh quote is broadcast as `price:update` to the
`price:{SYMBOL}:crypto` room.

Usage:
    client = CoinGeckoClient(cache=MarketCache(), hub=hub)
    quote = await client.get_current_price("bitcoin")       # or "BTC"
    history = await client.get_historical_data("ethereum", "1d", days=30)
    coins = await client.get_supported_cryptos()
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from cache import MarketCache, get_cache_key
from errors import (
    MarketDataError,
    RateLimitError,
    SymbolNotFoundError,
    UpstreamTimeoutError,
)
from models import Candle, CoinListing, CryptoQuote, PriceHistory, iso_from_millis
from socket_hub import SocketHub, broadcast_price


# ─── Constants ────────────────────────────────────────────────────────────────

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
DEFAULT_TIMEOUT = 10.0
HISTORY_TIMEOUT = 15.0

RATE_LIMIT_MESSAGE = "CoinGecko API rate limit exceeded. Please wait 1-2 minutes and try again."

# Common tickers → CoinGecko coin ids; anything else is treated as an id
SYMBOL_TO_COINGECKO: Dict[str, str] = {
    "BTC":   "bitcoin",
    "ETH":   "ethereum",
    "SOL":   "solana",
    "ADA":   "cardano",
    "XRP":   "ripple",
    "DOGE":  "dogecoin",
    "DOT":   "polkadot",
    "LTC":   "litecoin",
    "LINK":  "chainlink",
    "AAVE":  "aave",
    "UNI":   "uniswap",
    "AVAX":  "avalanche-2",
    "MATIC": "matic-network",
    "ARB":   "arbitrum",
    "BNB":   "binancecoin",
}

# Timeframe → days of OHLC requested ("1d" uses the caller's days)
TIMEFRAME_DAYS: Dict[str, int] = {
    "1m": 1,
    "1h": 7,
}


def resolve_coin_id(symbol: str) -> str:
    """Map a ticker like "BTC" to its CoinGecko id; pass ids through lower-cased."""
    cleaned = symbol.strip()
    return SYMBOL_TO_COINGECKO.get(cleaned.upper(), cleaned.lower())


# ─── Client ───────────────────────────────────────────────────────────────────


class CoinGeckoClient:
    """Async CoinGecko adapter with caching and price broadcast."""

    def __init__(
        self,
        cache: Optional[MarketCache] = None,
        hub: Optional[SocketHub] = None,
        base_url: str = COINGECKO_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        history_timeout: float = HISTORY_TIMEOUT,
    ) -> None:
        self.cache = cache if cache is not None else MarketCache()
        self.hub = hub
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.history_timeout = history_timeout

    # ─── Public API ──────────────────────────────────────────────────────────

    async def get_current_price(self, symbol: str) -> CryptoQuote:
        """Current USD price with 24h change, volume and market cap."""
        key = get_cache_key(symbol.upper(), "crypto", "realtime")
        return await self.cache.get_or_set(
            key,
            lambda: self._fetch_price(symbol),
            self.cache.ttl_for("realtime"),
        )

    async def get_historical_data(
        self,
        symbol: str,
        timeframe: str = "1d",
        days: int = 30,
    ) -> PriceHistory:
        """OHLC candles for charting. CoinGecko's OHLC endpoint carries no volume."""
        requested_days = TIMEFRAME_DAYS.get(timeframe, days)
        key = get_cache_key(symbol.upper(), "crypto", f"{timeframe}:{requested_days}")
        return await self.cache.get_or_set(
            key,
            lambda: self._fetch_history(symbol, timeframe, requested_days),
            self.cache.ttl_for(timeframe),
        )

    async def get_supported_cryptos(self) -> List[CoinListing]:
        """Every coin CoinGecko knows, as {id, symbol, name}."""
        key = get_cache_key("coins-list", "crypto", "1d")
        return await self.cache.get_or_set(key, self._fetch_coin_list, self.cache.ttl_for("1d"))

    # ─── Fetchers ────────────────────────────────────────────────────────────

    async def _fetch_price(self, symbol: str) -> CryptoQuote:
        coin_id = resolve_coin_id(symbol)
        data = await self._get(
            "/simple/price",
            {
                "ids": coin_id,
                "vs_currencies": "usd",
                "include_24hr_change": "true",
                "include_24hr_vol": "true",
                "include_market_cap": "true",
            },
            self.timeout,
            symbol,
        )
        entry = data.get(coin_id) if isinstance(data, dict) else None
        if not entry or entry.get("usd") is None:
            raise SymbolNotFoundError(
                f'Cryptocurrency "{symbol}" not found. Try: bitcoin, ethereum, cardano, etc.'
            )

        quote = CryptoQuote(
            symbol=symbol.upper(),
            price=float(entry["usd"]),
            change_24h=float(entry.get("usd_24h_change") or 0),
            volume_24h=float(entry.get("usd_24h_vol") or 0),
            market_cap=float(entry.get("usd_market_cap") or 0),
        )
        logger.debug("CoinGecko {} → ${}", coin_id, quote.price)
        await broadcast_price(self.hub, symbol, "crypto", quote.to_dict())
        return quote

    async def _fetch_history(self, symbol: str, timeframe: str, days: int) -> PriceHistory:
        coin_id = resolve_coin_id(symbol)
        data = await self._get(
            f"/coins/{coin_id}/ohlc",
            {"vs_currency": "usd", "days": days},
            self.history_timeout,
            symbol,
        )

        if isinstance(data, dict) and isinstance(data.get("status"), dict):
            status = data["status"]
            if status.get("error_code") == 429:
                raise RateLimitError(RATE_LIMIT_MESSAGE)
            raise MarketDataError(
                f"CoinGecko API error: {status.get('error_message') or 'Unknown error'}"
            )
        if not isinstance(data, list):
            logger.error("Unexpected CoinGecko OHLC payload for {}: {}", coin_id, data)
            raise MarketDataError("Invalid response format from CoinGecko API")

        candles = []
        for row in data:
            if not isinstance(row, (list, tuple)) or len(row) < 5 or any(v is None for v in row[:5]):
                raise MarketDataError("Invalid data format in CoinGecko response")
            ts, open_, high, low, close = row[:5]
            candles.append(Candle(
                time=iso_from_millis(ts),
                open=float(open_),
                high=float(high),
                low=float(low),
                close=float(close),
                volume=0,
            ))
        return PriceHistory(symbol=symbol.upper(), timeframe=timeframe, candles=candles)

    async def _fetch_coin_list(self) -> List[CoinListing]:
        data = await self._get("/coins/list", {"include_platform": "false"}, self.timeout)
        if not isinstance(data, list):
            raise MarketDataError("Invalid response format from CoinGecko API")
        return [
            CoinListing(id=coin["id"], symbol=str(coin["symbol"]).upper(), name=coin["name"])
            for coin in data
            if isinstance(coin, dict) and coin.get("id") and coin.get("symbol") and coin.get("name")
        ]

    # ─── HTTP ────────────────────────────────────────────────────────────────

    async def _get(
        self,
        path: str,
        params: Dict[str, Any],
        timeout: float,
        symbol: Optional[str] = None,
    ) -> Any:
        """GET a CoinGecko endpoint and decode its JSON body."""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("CoinGecko timeout on {}: {}", path, exc)
            raise UpstreamTimeoutError(
                "Request timeout. CoinGecko API may be slow. Please try again."
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("CoinGecko request to {} failed: {}", path, exc)
            raise MarketDataError(f"CoinGecko request failed: {exc}") from exc

        if resp.status_code == 429:
            logger.warning("CoinGecko rate limit hit on {}", path)
            raise RateLimitError(RATE_LIMIT_MESSAGE)
        if resp.status_code == 404 and symbol is not None:
            raise SymbolNotFoundError(f'Cryptocurrency "{symbol}" not found')
        if resp.status_code >= 400:
            raise MarketDataError(f"CoinGecko API error: HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            raise MarketDataError("Invalid response format from CoinGecko API") from exc
