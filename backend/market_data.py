"""
market_data.py — Asset-type dispatch over the crypto and stock providers.

    crypto → CoinGeckoClient
    stock  → AlphaVantageClient

Usage:
    market = MarketDataService(CoinGeckoClient(cache), AlphaVantageClient(key, cache))
    quote = await market.get_price("crypto", "bitcoin")
    history = await market.get_historical("stock", "aapl", timeframe="1h")
    results = await market.search("crypto", "eth")
"""

from __future__ import annotations

from typing import List, Union

from loguru import logger

from alphavantage import AlphaVantageClient
from coingecko import CoinGeckoClient
from errors import InvalidRequestError
from models import (
    ASSET_TYPES,
    TIMEFRAMES,
    CoinListing,
    CryptoQuote,
    PriceHistory,
    StockMatch,
    StockQuote,
)


MAX_CRYPTO_SEARCH_RESULTS = 20
MIN_SYMBOL_LENGTH = 2

Quote = Union[CryptoQuote, StockQuote]


def validate_asset_type(asset_type: str) -> str:
    if asset_type not in ASSET_TYPES:
        raise InvalidRequestError('Invalid type. Must be "crypto" or "stock"')
    return asset_type


class MarketDataService:
    """Routes market-data requests to the provider for the asset type."""

    def __init__(self, crypto: CoinGeckoClient, stocks: AlphaVantageClient) -> None:
        self.crypto = crypto
        self.stocks = stocks

    async def get_price(self, asset_type: str, symbol: str) -> Quote:
        validate_asset_type(asset_type)
        symbol = symbol.strip()
        if not symbol:
            raise InvalidRequestError("Symbol is required")
        logger.debug("Fetching price for {}:{}", asset_type, symbol)
        if asset_type == "crypto":
            return await self.crypto.get_current_price(symbol)
        return await self.stocks.get_current_price(symbol)

    async def get_historical(
        self,
        asset_type: str,
        symbol: str,
        timeframe: str = "1d",
        days: int = 30,
    ) -> PriceHistory:
        symbol = (symbol or "").strip()
        if len(symbol) < MIN_SYMBOL_LENGTH:
            raise InvalidRequestError("Invalid symbol. Symbol must be at least 2 characters.")
        validate_asset_type(asset_type)
        if timeframe not in TIMEFRAMES:
            raise InvalidRequestError('Invalid timeframe. Must be "1m", "1h" or "1d"')
        if days < 1:
            raise InvalidRequestError("days must be a positive integer")

        if asset_type == "crypto":
            return await self.crypto.get_historical_data(symbol.lower(), timeframe, days)
        return await self.stocks.get_historical_data(symbol.upper(), timeframe)

    async def search(self, asset_type: str, query: str) -> List[Union[CoinListing, StockMatch]]:
        if not query or not query.strip():
            raise InvalidRequestError("Search query (q) is required")
        validate_asset_type(asset_type)

        if asset_type == "crypto":
            needle = query.strip().lower()
            coins = await self.crypto.get_supported_cryptos()
            matches = [
                coin for coin in coins
                if needle in coin.symbol.lower() or needle in coin.name.lower()
            ]
            return matches[:MAX_CRYPTO_SEARCH_RESULTS]
        return await self.stocks.search_stocks(query.strip())
