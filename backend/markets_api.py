"""
markets_api.py — Market-data routes.

Endpoints:
    GET /api/markets/price/{type}/{symbol}       — current quote
    GET /api/markets/historical/{type}/{symbol}  — OHLC candles (?timeframe=1d&days=30)
    GET /api/markets/search/{type}               — search (?q=...)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from loguru import logger

from errors import InvalidRequestError
from market_data import MarketDataService


router = APIRouter(prefix="/api/markets", tags=["markets"])

DEFAULT_HISTORY_DAYS = 30


def get_market(request: Request) -> MarketDataService:
    return request.app.state.market


def parse_int(raw: Optional[str], default: int, name: str) -> int:
    """Parse an integer query parameter, or the default when absent."""
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequestError(f"{name} must be an integer") from None


@router.get("/price/{asset_type}/{symbol}")
async def get_price(asset_type: str, symbol: str, request: Request) -> Dict[str, Any]:
    """Current price for a crypto or stock symbol."""
    logger.info("[Markets API] Fetching price for {}:{}", asset_type, symbol)
    quote = await get_market(request).get_price(asset_type, symbol)
    return quote.to_dict()


@router.get("/historical/{asset_type}/{symbol}")
async def get_historical(
    asset_type: str,
    symbol: str,
    request: Request,
    timeframe: str = "1d",
    days: Optional[str] = None,
) -> Dict[str, Any]:
    """Historical candles for charting."""
    history = await get_market(request).get_historical(
        asset_type,
        symbol,
        timeframe=timeframe,
        days=parse_int(days, DEFAULT_HISTORY_DAYS, "days"),
    )
    return history.to_dict()


@router.get("/search/{asset_type}")
async def search(asset_type: str, request: Request, q: Optional[str] = None) -> Dict[str, Any]:
    """Search cryptos (by symbol or name) or stocks (Alpha Vantage symbol search)."""
    results = await get_market(request).search(asset_type, q or "")
    return {"results": [r.to_dict() for r in results]}
