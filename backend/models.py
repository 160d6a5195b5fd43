"""
models.py — Market-data records shared by the provider clients.

All records serialize to the camelCase JSON the frontend consumes, with
millisecond ISO-8601 UTC timestamps ending in "Z".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


ASSET_TYPES = ("crypto", "stock")
TIMEFRAMES = ("1m", "1h", "1d")


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_now() -> str:
    return to_iso(datetime.now(timezone.utc))


def iso_from_millis(ms: float) -> str:
    return to_iso(datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc))


# ─── Quotes ───────────────────────────────────────────────────────────────────


@dataclass
class CryptoQuote:
    """Spot price for a cryptocurrency, in USD."""
    symbol: str
    price: float
    change_24h: float = 0.0
    volume_24h: float = 0.0
    market_cap: float = 0.0
    timestamp: str = field(default_factory=iso_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change24h": self.change_24h,
            "volume24h": self.volume_24h,
            "marketCap": self.market_cap,
            "timestamp": self.timestamp,
        }


@dataclass
class StockQuote:
    """Latest daily quote for an equity."""
    symbol: str
    price: float
    change: float
    change_percent: float
    volume: int
    high: float
    low: float
    open: float
    previous_close: float
    timestamp: str = field(default_factory=iso_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "high": self.high,
            "low": self.low,
            "open": self.open,
            "previousClose": self.previous_close,
            "timestamp": self.timestamp,
        }


# ─── History ──────────────────────────────────────────────────────────────────


@dataclass
class Candle:
    """One OHLCV bar."""
    time: str
    open: float
    high: float
    low: float
    close: float
    volume: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class PriceHistory:
    """Chronological candles for one symbol and timeframe."""
    symbol: str
    timeframe: str
    candles: List[Candle]
    timestamp: str = field(default_factory=iso_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "data": [c.to_dict() for c in self.candles],
            "timestamp": self.timestamp,
        }


# ─── Search Results ───────────────────────────────────────────────────────────


@dataclass
class CoinListing:
    id: str
    symbol: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "symbol": self.symbol, "name": self.name}


@dataclass
class StockMatch:
    symbol: str
    name: str
    type: Optional[str] = None
    region: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "type": self.type,
            "region": self.region,
        }
