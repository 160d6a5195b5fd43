"""
leaderboard_api.py — Leaderboard routes.

Endpoints:
    GET  /api/leaderboard          — standings (?limit=100)
    POST /api/leaderboard/update   — {userId, username, totalValue, change24h}
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Request

from errors import InvalidRequestError
from leaderboard import DEFAULT_LIMIT
from markets_api import parse_int
from portfolio_api import get_leaderboard


router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("")
async def get_standings(request: Request, limit: Optional[str] = None) -> Dict[str, Any]:
    """Users ranked by total portfolio value."""
    try:
        count = parse_int(limit, DEFAULT_LIMIT, "limit")
    except InvalidRequestError:
        count = DEFAULT_LIMIT
    if count <= 0:
        count = DEFAULT_LIMIT
    return {"leaderboard": get_leaderboard(request).standings(count)}


@router.post("/update")
async def update_entry(request: Request, payload: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
    entry = get_leaderboard(request).update(payload or {})
    return {"success": True, "entry": entry.to_dict()}
