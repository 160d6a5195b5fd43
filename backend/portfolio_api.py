"""
portfolio_api.py — Portfolio routes.

Endpoints:
    GET  /api/portfolio/{user_id}               — portfolio valued at live prices
    GET  /api/portfolio/{user_id}/transactions  — executed orders (?limit=50)
    POST /api/portfolio/{user_id}/buy           — {symbol, type, quantity, price}
    POST /api/portfolio/{user_id}/sell          — {symbol, type, quantity, price}
    POST /api/portfolio/{user_id}/cash          — {operation: add|withdraw, amount}

Every response that returns a portfolio also pushes it as `portfolio:update`
to the user's socket room and refreshes the user's leaderboard value.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Request

from leaderboard import Leaderboard
from markets_api import get_market, parse_int
from portfolio import Portfolio, PortfolioStore, Transaction, value_portfolio
from socket_hub import SocketHub, broadcast_portfolio


router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])

DEFAULT_TRANSACTION_LIMIT = 50


def get_store(request: Request) -> PortfolioStore:
    return request.app.state.portfolios


def get_leaderboard(request: Request) -> Leaderboard:
    return request.app.state.leaderboard


def get_hub(request: Request) -> SocketHub:
    return request.app.state.hub


async def publish(request: Request, portfolio: Portfolio) -> Dict[str, Any]:
    """Broadcast the portfolio and record its value on the leaderboard."""
    payload = portfolio.to_dict()
    await broadcast_portfolio(get_hub(request), portfolio.user_id, payload)
    if portfolio.user_id in get_store(request):
        get_leaderboard(request).record_value(portfolio.user_id, portfolio.total_value)
    return payload


def trade_response(portfolio: Dict[str, Any], txn: Transaction) -> Dict[str, Any]:
    return {"success": True, "portfolio": portfolio, "transaction": txn.to_dict()}


@router.get("/{user_id}")
async def get_portfolio(user_id: str, request: Request) -> Dict[str, Any]:
    """The user's portfolio with every holding re-priced."""
    portfolio = get_store(request).get_or_default(user_id)
    await value_portfolio(portfolio, get_market(request))
    return await publish(request, portfolio)


@router.get("/{user_id}/transactions")
async def get_transactions(user_id: str, request: Request, limit: Optional[str] = None) -> Dict[str, Any]:
    count = parse_int(limit, DEFAULT_TRANSACTION_LIMIT, "limit")
    history: List[Transaction] = get_store(request).transactions(user_id, limit=max(count, 0))
    return {"userId": user_id, "transactions": [t.to_dict() for t in history]}


@router.post("/{user_id}/buy")
async def buy(user_id: str, request: Request, payload: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
    portfolio, txn = get_store(request).buy(user_id, payload or {})
    return trade_response(await publish(request, portfolio), txn)


@router.post("/{user_id}/sell")
async def sell(user_id: str, request: Request, payload: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
    portfolio, txn = get_store(request).sell(user_id, payload or {})
    return trade_response(await publish(request, portfolio), txn)


@router.post("/{user_id}/cash")
async def update_cash(user_id: str, request: Request, payload: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
    portfolio, txn = get_store(request).update_cash(user_id, payload or {})
    return trade_response(await publish(request, portfolio), txn)
