"""
cache.py — TTL cache in front of the market-data providers.

Entries carry their own TTL. Quotes expire quickly, daily history slowly:

    realtime / 1m → TTL.REALTIME (60s)
    1h            → TTL.HOURLY   (300s)
    anything else → TTL.DAILY    (900s)

Expired entries are dropped on read and swept in bulk at most once per
check period.

Usage:
    cache = MarketCache()
    key = get_cache_key("AAPL", "stock", "realtime")
    quote = await cache.get_or_set(key, lambda: client.fetch("AAPL"), get_ttl("realtime"))
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger


# ─── Constants ────────────────────────────────────────────────────────────────


class TTL:
    REALTIME = 60
    HOURLY = 300
    DAILY = 900


DEFAULT_TTL = 60
DEFAULT_CHECK_PERIOD = 120


def get_cache_key(symbol: str, asset_type: str, timeframe: str) -> str:
    """Cache key for market data, e.g. `market:stock:AAPL:realtime`."""
    return f"market:{asset_type}:{symbol}:{timeframe}"


def get_ttl(
    timeframe: str,
    realtime: int = TTL.REALTIME,
    hourly: int = TTL.HOURLY,
    daily: int = TTL.DAILY,
) -> int:
    """TTL in seconds for a timeframe."""
    if timeframe in ("1m", "realtime"):
        return realtime
    if timeframe == "1h":
        return hourly
    return daily


# ─── Cache Entry ──────────────────────────────────────────────────────────────


@dataclass
class CacheEntry:
    """Cached value with TTL."""
    value: Any
    ttl: float = DEFAULT_TTL
    cached_at: float = field(default_factory=time.time)

    def is_fresh(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return (now - self.cached_at) < self.ttl


# ─── Market Cache ─────────────────────────────────────────────────────────────


class MarketCache:
    """In-process key/value cache with per-entry TTL."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        check_period: float = DEFAULT_CHECK_PERIOD,
        realtime_ttl: int = TTL.REALTIME,
        hourly_ttl: int = TTL.HOURLY,
        daily_ttl: int = TTL.DAILY,
    ) -> None:
        self.default_ttl = default_ttl
        self.check_period = check_period
        self.realtime_ttl = realtime_ttl
        self.hourly_ttl = hourly_ttl
        self.daily_ttl = daily_ttl
        self._entries: Dict[str, CacheEntry] = {}
        self._last_sweep = time.time()
        self._hits = 0
        self._misses = 0

    def ttl_for(self, timeframe: str) -> int:
        return get_ttl(timeframe, self.realtime_ttl, self.hourly_ttl, self.daily_ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        self._maybe_sweep()
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if not entry.is_fresh():
            del self._entries[key]
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            value=value,
            ttl=self.default_ttl if ttl is None else ttl,
        )

    async def get_or_set(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return the cached value for key, or await fetch() and cache its result.

        Exceptions from fetch() propagate and leave the cache untouched.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug("Cache hit {}", key)
            return cached

        logger.debug("Cache miss {}", key)
        value = await fetch()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry; returns the number removed."""
        now = time.time()
        stale = [k for k, e in self._entries.items() if not e.is_fresh(now)]
        for key in stale:
            del self._entries[key]
        self._last_sweep = now
        if stale:
            logger.debug("Purged {} expired cache entries", len(stale))
        return len(stale)

    def stats(self) -> Dict[str, int]:
        return {
            "keys": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh()

    def _maybe_sweep(self) -> None:
        if time.time() - self._last_sweep >= self.check_period:
            self.purge_expired()
