"""
test_leaderboard.py — Tests for the in-memory leaderboard.
"""

from __future__ import annotations

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from errors import InvalidRequestError
from leaderboard import Leaderboard, LeaderboardEntry, default_username


class TestUpdate:
    def test_inserts_entry(self):
        board = Leaderboard()
        entry = board.update({"userId": "u1", "username": "alice", "totalValue": 12000, "change24h": 1.5})
        assert entry.username == "alice"
        assert entry.total_value == 12000.0
        assert entry.change_24h == 1.5
        assert len(board) == 1

    def test_upsert_replaces(self):
        board = Leaderboard()
        board.update({"userId": "u1", "totalValue": 100})
        board.update({"userId": "u1", "totalValue": 200})
        assert len(board) == 1
        assert board.get("u1").total_value == 200

    def test_default_username(self):
        entry = Leaderboard().update({"userId": "42", "totalValue": 1})
        assert entry.username == default_username("42") == "User 42"

    def test_zero_value_allowed(self):
        assert Leaderboard().update({"userId": "u1", "totalValue": 0}).total_value == 0

    def test_missing_fields(self):
        with pytest.raises(InvalidRequestError) as info:
            Leaderboard().update({"userId": "u1"})
        assert info.value.message == "Missing required fields: userId, totalValue"

    def test_non_numeric_value(self):
        with pytest.raises(InvalidRequestError):
            Leaderboard().update({"userId": "u1", "totalValue": "lots"})

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", float("nan"), float("inf")])
    def test_non_finite_value_rejected(self, value):
        board = Leaderboard()
        with pytest.raises(InvalidRequestError):
            board.update({"userId": "u1", "totalValue": value})
        assert len(board) == 0

    def test_non_finite_change_rejected(self):
        with pytest.raises(InvalidRequestError):
            Leaderboard().update({"userId": "u1", "totalValue": 1, "change24h": "nan"})

    def test_ranking_survives_rejected_nan(self):
        board = Leaderboard()
        board.update({"userId": "a", "totalValue": 100})
        board.update({"userId": "b", "totalValue": 5000})
        with pytest.raises(InvalidRequestError):
            board.update({"userId": "evil", "totalValue": "nan"})
        board.update({"userId": "c", "totalValue": 20000})
        assert [(s["userId"], s["totalValue"]) for s in board.standings()] == [
            ("c", 20000.0),
            ("b", 5000.0),
            ("a", 100.0),
        ]


class TestStandings:
    def _board(self) -> Leaderboard:
        board = Leaderboard()
        board.upsert("a", 5000)
        board.upsert("b", 15000)
        board.upsert("c", 10000)
        return board

    def test_sorted_and_ranked(self):
        standings = self._board().standings()
        assert [s["userId"] for s in standings] == ["b", "c", "a"]
        assert [s["rank"] for s in standings] == [1, 2, 3]

    def test_limit(self):
        assert len(self._board().standings(limit=2)) == 2

    def test_entry_shape(self):
        row = self._board().standings(limit=1)[0]
        assert set(row) == {"rank", "userId", "username", "totalValue", "change24h", "lastUpdated"}

    def test_empty(self):
        assert Leaderboard().standings() == []

    def test_clear(self):
        board = self._board()
        board.clear()
        assert len(board) == 0


class TestRecordValue:
    def test_creates_entry(self):
        board = Leaderboard()
        entry = board.record_value("u1", 9000)
        assert entry.username == "User u1"
        assert entry.total_value == 9000

    def test_keeps_username_and_change(self):
        board = Leaderboard()
        board.upsert("u1", 100, username="alice", change_24h=3.0)
        entry = board.record_value("u1", 250)
        assert entry.username == "alice"
        assert entry.change_24h == 3.0
        assert entry.total_value == 250


class TestEntry:
    def test_to_dict_without_rank(self):
        entry = LeaderboardEntry(user_id="u1", username="x", total_value=1.0)
        assert "rank" not in entry.to_dict()
