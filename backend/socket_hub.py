"""
socket_hub.py — Room-based WebSocket pub/sub for price and portfolio updates.

Every frame, in both directions, is a JSON object:

    {"event": "<name>", "data": {...}}

Client → server events:
    subscribe:price        {"symbol": "BTC", "type": "crypto"}  → room price:BTC:crypto
    unsubscribe:price      {"symbol": "BTC", "type": "crypto"}
    subscribe:portfolio    {"userId": "user1"}                  → room portfolio:user1
    unsubscribe:portfolio  {"userId": "user1"}
    ping                   {...}                                → pong (echoes data)

Server → client events:
    connected         {"sid": ...}
    subscribed        {"room": ...}
    unsubscribed      {"room": ...}
    price:update      quote payload
    portfolio:update  portfolio payload
    pong              {...}
    error             {"message": ...}
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from loguru import logger

from models import iso_now


PRICE_UPDATE = "price:update"
PORTFOLIO_UPDATE = "portfolio:update"


def price_room(symbol: str, asset_type: str) -> str:
    return f"price:{symbol.upper()}:{asset_type}"


def portfolio_room(user_id: str) -> str:
    return f"portfolio:{user_id}"


def build_frame(event: str, data: Any = None) -> Dict[str, Any]:
    return {"event": event, "data": {} if data is None else data}


def build_error_frame(message: str) -> Dict[str, Any]:
    return build_frame("error", {"message": message})


# ─── Hub ──────────────────────────────────────────────────────────────────────


class SocketHub:
    """Tracks WebSocket sessions, their room memberships, and fans out events."""

    def __init__(self) -> None:
        self._sockets: Dict[str, WebSocket] = {}
        self._rooms: Dict[str, Set[str]] = {}

    @property
    def connection_count(self) -> int:
        return len(self._sockets)

    # ── Sessions ──────────────────────────────────────────────────────────

    async def connect(self, websocket: WebSocket) -> str:
        """Accept the socket, register it and greet it with its session id."""
        await websocket.accept()
        sid = uuid.uuid4().hex[:12]
        self._sockets[sid] = websocket
        logger.info("Client connected: {} ({} clients)", sid, self.connection_count)
        await websocket.send_json(build_frame("connected", {"sid": sid, "timestamp": iso_now()}))
        return sid

    def disconnect(self, sid: str) -> None:
        if self._sockets.pop(sid, None) is None:
            return
        for room in list(self._rooms):
            self._leave(sid, room)
        logger.info("Client disconnected: {} ({} clients)", sid, self.connection_count)

    # ── Rooms ─────────────────────────────────────────────────────────────

    def join(self, sid: str, room: str) -> None:
        self._rooms.setdefault(room, set()).add(sid)

    def leave(self, sid: str, room: str) -> None:
        self._leave(sid, room)

    def _leave(self, sid: str, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._rooms[room]

    def members(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    def rooms_for(self, sid: str) -> Set[str]:
        return {room for room, members in self._rooms.items() if sid in members}

    # ── Broadcast ─────────────────────────────────────────────────────────

    async def emit(self, room: str, event: str, data: Any) -> int:
        """Send event to every member of room. Returns deliveries made."""
        frame = build_frame(event, data)
        delivered = 0
        dead: List[str] = []
        for sid in list(self._rooms.get(room, ())):
            ws = self._sockets.get(sid)
            if ws is None:
                dead.append(sid)
                continue
            try:
                await ws.send_json(frame)
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping client {} after send failure: {}", sid, exc)
                dead.append(sid)
        for sid in dead:
            self.disconnect(sid)
            self._leave(sid, room)
        return delivered

    # ── Client Messages ───────────────────────────────────────────────────

    def handle_message(self, sid: str, message: Any) -> Dict[str, Any]:
        """
        Apply one client frame and return the reply frame for that client.
        """
        if not isinstance(message, dict):
            return build_error_frame("Frames must be JSON objects")
        event = message.get("event", "")
        data = message.get("data") or {}
        if not isinstance(data, dict):
            return build_error_frame("Frame data must be an object")

        if event == "ping":
            return build_frame("pong", data)

        if event in ("subscribe:price", "unsubscribe:price"):
            symbol = data.get("symbol")
            asset_type = data.get("type")
            if not symbol or not asset_type:
                return build_error_frame(f"{event} requires symbol and type")
            room = price_room(str(symbol), str(asset_type))
        elif event in ("subscribe:portfolio", "unsubscribe:portfolio"):
            user_id = data.get("userId")
            if not user_id:
                return build_error_frame(f"{event} requires userId")
            room = portfolio_room(str(user_id))
        else:
            return build_error_frame(f"Unknown event: {event}")

        if event.startswith("subscribe"):
            self.join(sid, room)
            logger.info("Client {} subscribed to {}", sid, room)
            return build_frame("subscribed", {"room": room})
        self.leave(sid, room)
        logger.info("Client {} unsubscribed from {}", sid, room)
        return build_frame("unsubscribed", {"room": room})


# ─── Broadcast helpers ────────────────────────────────────────────────────────


async def broadcast_price(hub: Optional[SocketHub], symbol: str, asset_type: str, quote: Dict[str, Any]) -> None:
    if hub is not None:
        await hub.emit(price_room(symbol, asset_type), PRICE_UPDATE, quote)


async def broadcast_portfolio(hub: Optional[SocketHub], user_id: str, portfolio: Dict[str, Any]) -> None:
    if hub is not None:
        await hub.emit(portfolio_room(user_id), PORTFOLIO_UPDATE, portfolio)
