"""
leaderboard.py — In-memory ranking of users by total portfolio value.

Entries are upserted by user id; standings are sorted by total value,
highest first, and ranked from 1.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from errors import InvalidRequestError
from models import iso_now


DEFAULT_LIMIT = 100


def default_username(user_id: str) -> str:
    return f"User {user_id}"


@dataclass
class LeaderboardEntry:
    user_id: str
    username: str
    total_value: float
    change_24h: float = 0.0
    last_updated: str = field(default_factory=iso_now)

    def to_dict(self, rank: Optional[int] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if rank is not None:
            out["rank"] = rank
        out.update({
            "userId": self.user_id,
            "username": self.username,
            "totalValue": self.total_value,
            "change24h": self.change_24h,
            "lastUpdated": self.last_updated,
        })
        return out


class Leaderboard:
    """Upsert-by-user ranking table."""

    def __init__(self) -> None:
        self._entries: Dict[str, LeaderboardEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, user_id: str) -> Optional[LeaderboardEntry]:
        return self._entries.get(user_id)

    def update(self, payload: Any) -> LeaderboardEntry:
        """Apply a {userId, username, totalValue, change24h} body."""
        if not isinstance(payload, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        user_id = payload.get("userId")
        total_value = payload.get("totalValue")
        if not user_id or total_value is None:
            raise InvalidRequestError("Missing required fields: userId, totalValue")
        try:
            value = float(total_value)
            change = float(payload.get("change24h") or 0)
        except (TypeError, ValueError):
            raise InvalidRequestError("totalValue and change24h must be numbers") from None
        if not math.isfinite(value) or not math.isfinite(change):
            raise InvalidRequestError("totalValue and change24h must be finite numbers")

        return self.upsert(
            str(user_id),
            total_value=value,
            username=payload.get("username") or None,
            change_24h=change,
        )

    def upsert(
        self,
        user_id: str,
        total_value: float,
        username: Optional[str] = None,
        change_24h: float = 0.0,
    ) -> LeaderboardEntry:
        entry = LeaderboardEntry(
            user_id=user_id,
            username=username or default_username(user_id),
            total_value=total_value,
            change_24h=change_24h,
        )
        self._entries[user_id] = entry
        logger.debug("Leaderboard {} → {:.2f}", user_id, total_value)
        return entry

    def record_value(self, user_id: str, total_value: float) -> LeaderboardEntry:
        """Refresh a user's value, keeping any username and change already set."""
        existing = self._entries.get(user_id)
        if existing is None:
            return self.upsert(user_id, total_value)
        existing.total_value = total_value
        existing.last_updated = iso_now()
        return existing

    def standings(self, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        ordered = sorted(self._entries.values(), key=lambda e: e.total_value, reverse=True)
        return [entry.to_dict(rank=i + 1) for i, entry in enumerate(ordered[:max(limit, 0)])]

    def clear(self) -> None:
        self._entries.clear()
