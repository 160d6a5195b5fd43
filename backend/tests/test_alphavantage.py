"""
test_alphavantage.py — Tests for the Alpha Vantage client.

httpx.AsyncClient is patched out; no network calls are made.
"""

from __future__ import annotations

import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from alphavantage import AlphaVantageClient
from errors import (
    ApiKeyMissingError,
    MarketDataError,
    RateLimitError,
    SymbolNotFoundError,
    UpstreamTimeoutError,
)


def make_response(payload, status_code: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


def make_client(response=None, side_effect=None) -> MagicMock:
    mock_client = MagicMock()
    mock_client.get = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


GLOBAL_QUOTE = {
    "Global Quote": {
        "01. symbol": "AAPL",
        "02. open": "189.10",
        "03. high": "191.00",
        "04. low": "188.50",
        "05. price": "190.25",
        "06. volume": "51234567",
        "08. previous close": "188.00",
        "09. change": "2.25",
        "10. change percent": "1.1968%",
    }
}

DAILY_SERIES = {
    "Meta Data": {"2. Symbol": "AAPL"},
    "Time Series (Daily)": {
        "2024-01-03": {
            "1. open": "184.22", "2. high": "185.88", "3. low": "183.43",
            "4. close": "184.25", "5. adjusted close": "184.25", "6. volume": "58414460",
        },
        "2024-01-02": {
            "1. open": "187.15", "2. high": "188.44", "3. low": "183.88",
            "4. close": "185.64", "5. adjusted close": "185.64", "6. volume": "82488700",
        },
    },
}

INTRADAY_SERIES = {
    "Time Series (60min)": {
        "2024-01-02 16:00:00": {
            "1. open": "185.0", "2. high": "186.0", "3. low": "184.5",
            "4. close": "185.6", "5. volume": "1200",
        },
    },
}


# ─── API Key ──────────────────────────────────────────────────────────────────


class TestApiKey:
    def test_configured(self):
        assert AlphaVantageClient(api_key="k").configured is True
        assert AlphaVantageClient().configured is False

    @pytest.mark.asyncio
    async def test_empty_key_is_not_configured(self):
        client = AlphaVantageClient(api_key="")
        assert client.configured is False
        with pytest.raises(ApiKeyMissingError):
            await client.get_current_price("AAPL")

    @pytest.mark.asyncio
    async def test_price_requires_key(self):
        with pytest.raises(ApiKeyMissingError) as info:
            await AlphaVantageClient().get_current_price("AAPL")
        assert info.value.status_code == 503
        assert "ALPHAVANTAGE_API_KEY" in info.value.message

    @pytest.mark.asyncio
    async def test_history_requires_key(self):
        with pytest.raises(ApiKeyMissingError):
            await AlphaVantageClient().get_historical_data("AAPL")

    @pytest.mark.asyncio
    async def test_search_requires_key(self):
        with pytest.raises(ApiKeyMissingError):
            await AlphaVantageClient().search_stocks("apple")


# ─── Quotes ───────────────────────────────────────────────────────────────────


class TestCurrentPrice:
    @pytest.mark.asyncio
    async def test_parses_global_quote(self):
        mock_client = make_client(make_response(GLOBAL_QUOTE))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            quote = await AlphaVantageClient(api_key="k").get_current_price("aapl")
        assert quote.symbol == "AAPL"
        assert quote.price == 190.25
        assert quote.change == 2.25
        assert quote.change_percent == pytest.approx(1.1968)
        assert quote.volume == 51234567
        assert quote.previous_close == 188.0
        params = mock_client.get.call_args.kwargs["params"]
        assert params == {"function": "GLOBAL_QUOTE", "symbol": "AAPL", "apikey": "k"}

    @pytest.mark.asyncio
    async def test_empty_quote_is_not_found(self):
        mock_client = make_client(make_response({"Global Quote": {}}))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(SymbolNotFoundError) as info:
                await AlphaVantageClient(api_key="k").get_current_price("ZZZZ")
        assert info.value.message == "Stock ZZZZ not found"

    @pytest.mark.asyncio
    async def test_quote_cached(self):
        mock_client = make_client(make_response(GLOBAL_QUOTE))
        client = AlphaVantageClient(api_key="k")
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            await client.get_current_price("AAPL")
            await client.get_current_price("aapl")
        assert mock_client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_broadcasts_fresh_quote(self):
        hub = MagicMock()
        hub.emit = AsyncMock(return_value=0)
        mock_client = make_client(make_response(GLOBAL_QUOTE))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            await AlphaVantageClient(api_key="k", hub=hub).get_current_price("AAPL")
        room, _, data = hub.emit.call_args[0]
        assert room == "price:AAPL:stock"
        assert data["changePercent"] == pytest.approx(1.1968)


# ─── In-body Errors ───────────────────────────────────────────────────────────


class TestBodyErrors:
    @pytest.mark.asyncio
    async def test_error_message(self):
        mock_client = make_client(make_response({"Error Message": "Invalid API call."}))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(MarketDataError) as info:
                await AlphaVantageClient(api_key="k").get_current_price("AAPL")
        assert info.value.message == "Invalid API call."

    @pytest.mark.asyncio
    async def test_note_is_rate_limit(self):
        mock_client = make_client(make_response({"Note": "Thank you for using Alpha Vantage!"}))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RateLimitError):
                await AlphaVantageClient(api_key="k").get_current_price("AAPL")

    @pytest.mark.asyncio
    async def test_information_is_rate_limit(self):
        mock_client = make_client(make_response({"Information": "daily limit"}))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RateLimitError) as info:
                await AlphaVantageClient(api_key="k").search_stocks("apple")
        assert info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_http_429(self):
        mock_client = make_client(make_response({}, status_code=429))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RateLimitError):
                await AlphaVantageClient(api_key="k").get_current_price("AAPL")

    @pytest.mark.asyncio
    async def test_timeout(self):
        mock_client = make_client(side_effect=httpx.ConnectTimeout("slow"))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(UpstreamTimeoutError):
                await AlphaVantageClient(api_key="k").get_current_price("AAPL")

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        mock_client = make_client(make_response(["unexpected"]))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(MarketDataError):
                await AlphaVantageClient(api_key="k").get_current_price("AAPL")


# ─── History ──────────────────────────────────────────────────────────────────


class TestHistoricalData:
    @pytest.mark.asyncio
    async def test_daily_series_sorted_oldest_first(self):
        mock_client = make_client(make_response(DAILY_SERIES))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            history = await AlphaVantageClient(api_key="k").get_historical_data("AAPL", "1d")
        assert [c.time for c in history.candles] == [
            "2024-01-02T00:00:00.000Z",
            "2024-01-03T00:00:00.000Z",
        ]
        assert history.candles[0].close == 185.64
        assert history.candles[0].volume == 82488700
        params = mock_client.get.call_args.kwargs["params"]
        assert params["function"] == "TIME_SERIES_DAILY_ADJUSTED"
        assert "interval" not in params

    @pytest.mark.asyncio
    async def test_intraday_interval(self):
        mock_client = make_client(make_response(INTRADAY_SERIES))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            history = await AlphaVantageClient(api_key="k").get_historical_data("AAPL", "1h")
        params = mock_client.get.call_args.kwargs["params"]
        assert params["function"] == "TIME_SERIES_INTRADAY"
        assert params["interval"] == "60min"
        assert history.candles[0].time == "2024-01-02T21:00:00.000Z"
        assert history.candles[0].volume == 1200

    @pytest.mark.asyncio
    async def test_intraday_uses_series_time_zone(self):
        payload = {
            "Meta Data": {"1. Information": "Intraday (60min)", "6. Time Zone": "US/Eastern"},
            "Time Series (60min)": {
                "2024-07-01 10:00:00": {
                    "1. open": "1", "2. high": "1", "3. low": "1", "4. close": "1", "5. volume": "1",
                },
            },
        }
        mock_client = make_client(make_response(payload))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            history = await AlphaVantageClient(api_key="k").get_historical_data("AAPL", "1h")
        assert history.candles[0].time == "2024-07-01T14:00:00.000Z"

    @pytest.mark.asyncio
    async def test_intraday_utc_zone(self):
        payload = dict(INTRADAY_SERIES, **{"Meta Data": {"6. Time Zone": "UTC"}})
        mock_client = make_client(make_response(payload))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            history = await AlphaVantageClient(api_key="k").get_historical_data("AAPL", "1h")
        assert history.candles[0].time == "2024-01-02T16:00:00.000Z"

    @pytest.mark.asyncio
    async def test_unknown_zone_falls_back_to_eastern(self):
        payload = dict(INTRADAY_SERIES, **{"Meta Data": {"6. Time Zone": "Mars/Olympus"}})
        mock_client = make_client(make_response(payload))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            history = await AlphaVantageClient(api_key="k").get_historical_data("AAPL", "1h")
        assert history.candles[0].time == "2024-01-02T21:00:00.000Z"

    @pytest.mark.asyncio
    async def test_daily_dates_stay_utc_midnight(self):
        payload = dict(DAILY_SERIES, **{"Meta Data": {"5. Time Zone": "US/Eastern"}})
        mock_client = make_client(make_response(payload))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            history = await AlphaVantageClient(api_key="k").get_historical_data("AAPL", "1d")
        assert history.candles[0].time == "2024-01-02T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_missing_series(self):
        mock_client = make_client(make_response({"Meta Data": {}}))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(MarketDataError) as info:
                await AlphaVantageClient(api_key="k").get_historical_data("AAPL")
        assert info.value.message == "Invalid response format from Alpha Vantage"


# ─── Search ───────────────────────────────────────────────────────────────────


class TestSearch:
    @pytest.mark.asyncio
    async def test_maps_best_matches(self):
        payload = {
            "bestMatches": [
                {"1. symbol": "AAPL", "2. name": "Apple Inc", "3. type": "Equity", "4. region": "United States"},
            ]
        }
        mock_client = make_client(make_response(payload))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            results = await AlphaVantageClient(api_key="k").search_stocks("apple")
        assert [r.to_dict() for r in results] == [
            {"symbol": "AAPL", "name": "Apple Inc", "type": "Equity", "region": "United States"}
        ]

    @pytest.mark.asyncio
    async def test_no_matches(self):
        mock_client = make_client(make_response({}))
        with patch("alphavantage.httpx.AsyncClient", return_value=mock_client):
            assert await AlphaVantageClient(api_key="k").search_stocks("zzzz") == []
