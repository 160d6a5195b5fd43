"""
alphavantage.py — Alpha Vantage client for stock quotes, history and symbol search.

Needs ALPHAVANTAGE_API_KEY; without it every call raises ApiKeyMissingError
(HTTP 503). Alpha Vantage reports errors inside a 200 body:

    {"Error Message": "..."}   → MarketDataError
    {"Note": "..."}            → RateLimitError (classic throttling notice)
    {"Information": "..."}     → RateLimitError (daily quota notice)

Quotes and history are cached; search is not.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from loguru import logger

from cache import MarketCache, get_cache_key
from errors import (
    ApiKeyMissingError,
    MarketDataError,
    RateLimitError,
    SymbolNotFoundError,
    UpstreamTimeoutError,
)
from models import Candle, PriceHistory, StockMatch, StockQuote, to_iso
from socket_hub import SocketHub, broadcast_price


# ─── Constants ────────────────────────────────────────────────────────────────

ALPHAVANTAGE_URL = "https://www.alphavantage.co/query"
DEFAULT_TIMEOUT = 10.0
HISTORY_TIMEOUT = 15.0
DEFAULT_TIME_ZONE = "US/Eastern"

API_KEY_MISSING_MESSAGE = (
    "Stock data is not available. Please configure ALPHAVANTAGE_API_KEY in the "
    "backend .env file. Get a free key at https://www.alphavantage.co/support/#api-key"
)
RATE_LIMIT_MESSAGE = (
    "Alpha Vantage API rate limit exceeded. Please wait before making another request."
)

# Timeframe → (function, interval)
TIMEFRAME_FUNCTIONS: Dict[str, tuple] = {
    "1m": ("TIME_SERIES_INTRADAY", "1min"),
    "1h": ("TIME_SERIES_INTRADAY", "60min"),
    "1d": ("TIME_SERIES_DAILY_ADJUSTED", None),
}


def _num(value: Any, default: float = 0.0) -> float:
    try:
        return float(str(value).replace("%", ""))
    except (TypeError, ValueError):
        return default


def _series_zone(data: Dict[str, Any]) -> tzinfo:
    """Zone of intraday bar times, from the series meta data."""
    meta = data.get("Meta Data") or {}
    name = next((v for k, v in meta.items() if "Time Zone" in k), DEFAULT_TIME_ZONE)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown Alpha Vantage time zone {!r}, using {}", name, DEFAULT_TIME_ZONE)
        return ZoneInfo(DEFAULT_TIME_ZONE)


def _parse_bar_time(raw: str, zone: tzinfo) -> str:
    stamp = datetime.fromisoformat(raw)
    # daily bars are bare dates; intraday bars are wall-clock times in zone
    if len(raw) > 10:
        stamp = stamp.replace(tzinfo=zone)
    return to_iso(stamp)


# ─── Client ───────────────────────────────────────────────────────────────────


class AlphaVantageClient:
    """Async Alpha Vantage adapter with caching and price broadcast."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[MarketCache] = None,
        hub: Optional[SocketHub] = None,
        base_url: str = ALPHAVANTAGE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        history_timeout: float = HISTORY_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.cache = cache if cache is not None else MarketCache()
        self.hub = hub
        self.base_url = base_url
        self.timeout = timeout
        self.history_timeout = history_timeout
        if not api_key:
            logger.warning("ALPHAVANTAGE_API_KEY not set. Stock data will not be available.")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    # ─── Public API ──────────────────────────────────────────────────────────

    async def get_current_price(self, symbol: str) -> StockQuote:
        self._require_key()
        symbol = symbol.upper()
        return await self.cache.get_or_set(
            get_cache_key(symbol, "stock", "realtime"),
            lambda: self._fetch_quote(symbol),
            self.cache.ttl_for("realtime"),
        )

    async def get_historical_data(self, symbol: str, timeframe: str = "1d") -> PriceHistory:
        self._require_key()
        symbol = symbol.upper()
        return await self.cache.get_or_set(
            get_cache_key(symbol, "stock", timeframe),
            lambda: self._fetch_history(symbol, timeframe),
            self.cache.ttl_for(timeframe),
        )

    async def search_stocks(self, keywords: str) -> List[StockMatch]:
        self._require_key()
        data = await self._query({"function": "SYMBOL_SEARCH", "keywords": keywords}, self.timeout)
        return [
            StockMatch(
                symbol=match.get("1. symbol", ""),
                name=match.get("2. name", ""),
                type=match.get("3. type"),
                region=match.get("4. region"),
            )
            for match in data.get("bestMatches") or []
        ]

    # ─── Fetchers ────────────────────────────────────────────────────────────

    async def _fetch_quote(self, symbol: str) -> StockQuote:
        data = await self._query({"function": "GLOBAL_QUOTE", "symbol": symbol}, self.timeout)
        quote = data.get("Global Quote")
        if not quote:
            raise SymbolNotFoundError(f"Stock {symbol} not found")

        result = StockQuote(
            symbol=quote.get("01. symbol", symbol),
            price=_num(quote.get("05. price")),
            change=_num(quote.get("09. change")),
            change_percent=_num(quote.get("10. change percent")),
            volume=int(_num(quote.get("06. volume"))),
            high=_num(quote.get("03. high")),
            low=_num(quote.get("04. low")),
            open=_num(quote.get("02. open")),
            previous_close=_num(quote.get("08. previous close")),
        )
        logger.debug("Alpha Vantage {} → ${}", symbol, result.price)
        await broadcast_price(self.hub, symbol, "stock", result.to_dict())
        return result

    async def _fetch_history(self, symbol: str, timeframe: str) -> PriceHistory:
        function, interval = TIMEFRAME_FUNCTIONS.get(timeframe, TIMEFRAME_FUNCTIONS["1d"])
        params: Dict[str, Any] = {
            "function": function,
            "symbol": symbol,
            "outputsize": "compact",
        }
        if interval:
            params["interval"] = interval
        data = await self._query(params, self.history_timeout)

        series_key = next((k for k in data if "Time Series" in k), None)
        if series_key is None:
            raise MarketDataError("Invalid response format from Alpha Vantage")

        zone = _series_zone(data)
        candles = []
        for stamp, bar in data[series_key].items():
            close = bar.get("4. close") or bar.get("5. adjusted close")
            volume = bar.get("5. volume") or bar.get("6. volume") or 0
            candles.append(Candle(
                time=_parse_bar_time(stamp, zone),
                open=_num(bar.get("1. open")),
                high=_num(bar.get("2. high")),
                low=_num(bar.get("3. low")),
                close=_num(close),
                volume=int(_num(volume)),
            ))
        # newest-first upstream
        candles.sort(key=lambda c: c.time)
        return PriceHistory(symbol=symbol, timeframe=timeframe, candles=candles)

    # ─── HTTP ────────────────────────────────────────────────────────────────

    def _require_key(self) -> None:
        if not self.configured:
            raise ApiKeyMissingError(API_KEY_MISSING_MESSAGE)

    async def _query(self, params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        """Call the query endpoint and unwrap Alpha Vantage's in-body errors."""
        params = dict(params, apikey=self.api_key)
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.get(self.base_url, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("Alpha Vantage timeout ({}): {}", params.get("function"), exc)
            raise UpstreamTimeoutError("Request timeout. Alpha Vantage may be slow. Please try again.") from exc
        except httpx.HTTPError as exc:
            logger.error("Alpha Vantage request failed ({}): {}", params.get("function"), exc)
            raise MarketDataError(f"Alpha Vantage request failed: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimitError(RATE_LIMIT_MESSAGE)
        if resp.status_code >= 400:
            raise MarketDataError(f"Alpha Vantage API error: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise MarketDataError("Invalid response format from Alpha Vantage") from exc
        if not isinstance(data, dict):
            raise MarketDataError("Invalid response format from Alpha Vantage")

        if data.get("Error Message"):
            raise MarketDataError(data["Error Message"])
        if data.get("Note") or data.get("Information"):
            logger.warning("Alpha Vantage throttled {}: {}", params.get("function"), data.get("Note") or data.get("Information"))
            raise RateLimitError(RATE_LIMIT_MESSAGE)
        return data
