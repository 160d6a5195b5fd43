#!/usr/bin/env python3
"""
server.py — FastAPI application for the paper-trading backend.

Wires the market-data providers, the shared TTL cache, the portfolio store,
the leaderboard and the WebSocket hub into one ASGI app.

HTTP:
    GET  /health
    /api/markets/...      (markets_api.py)
    /api/portfolio/...    (portfolio_api.py)
    /api/leaderboard/...  (leaderboard_api.py)

WebSocket:
    WS /ws                (socket_hub.py frame protocol)

Run:
    cd backend/
    uvicorn server:app --port 3001 --reload
    # or
    python server.py
"""

from __future__ import annotations

import json
import os
import sys
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

import leaderboard_api
import markets_api
import portfolio_api
from alphavantage import AlphaVantageClient
from cache import MarketCache
from coingecko import CoinGeckoClient
from config import Settings
from errors import BackendError
from leaderboard import Leaderboard
from market_data import MarketDataService
from models import iso_now
from portfolio import PortfolioStore
from socket_hub import SocketHub, build_error_frame


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=log_level,
        colorize=True,
    )
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        logger.add(
            log_file,
            rotation="10 MB",
            retention="7 days",
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
        )


def build_market(settings: Settings, hub: Optional[SocketHub] = None) -> MarketDataService:
    """Both providers over one shared cache."""
    cache = MarketCache(
        check_period=settings.cache_check_period,
        realtime_ttl=settings.ttl_realtime,
        hourly_ttl=settings.ttl_hourly,
        daily_ttl=settings.ttl_daily,
    )
    crypto = CoinGeckoClient(
        cache=cache,
        hub=hub,
        timeout=settings.http_timeout,
        history_timeout=settings.history_timeout,
    )
    stocks = AlphaVantageClient(
        api_key=settings.alphavantage_api_key,
        cache=cache,
        hub=hub,
        timeout=settings.http_timeout,
        history_timeout=settings.history_timeout,
    )
    return MarketDataService(crypto, stocks)


# ─── App Factory ──────────────────────────────────────────────────────────────


def create_app(
    settings: Optional[Settings] = None,
    market: Optional[MarketDataService] = None,
    portfolios: Optional[PortfolioStore] = None,
    leaderboard: Optional[Leaderboard] = None,
    hub: Optional[SocketHub] = None,
) -> FastAPI:
    settings = settings or Settings()
    hub = hub or SocketHub()

    app = FastAPI(
        title="Paper Trading API",
        description="Simulated crypto and stock trading over live market data",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.hub = hub
    app.state.market = market or build_market(settings, hub)
    app.state.portfolios = portfolios or PortfolioStore(starting_cash=settings.starting_cash)
    app.state.leaderboard = leaderboard or Leaderboard()

    # Any origin in development; the configured list otherwise
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if settings.is_development else settings.allowed_origins,
        allow_origin_regex=".*" if settings.is_development else None,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.include_router(markets_api.router)
    app.include_router(portfolio_api.router)
    app.include_router(leaderboard_api.router)

    # ─── Routes ──────────────────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "timestamp": iso_now()}

    @app.websocket("/ws")
    async def socket_endpoint(websocket: WebSocket) -> None:
        sid = await hub.connect(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await websocket.send_json(build_error_frame("Invalid JSON"))
                    continue
                await websocket.send_json(hub.handle_message(sid, message))
        except WebSocketDisconnect:
            pass
        finally:
            hub.disconnect(sid)

    # ─── Error Handlers ──────────────────────────────────────────────────────

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.status_code},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on {} {}", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": f"Internal error: {exc}", "code": 500},
        )

    return app


app = create_app(Settings.from_env())


def main() -> None:
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, settings.log_file)
    logger.info("Server running on port {}", settings.port)
    logger.info("Environment: {}", settings.env)

    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
