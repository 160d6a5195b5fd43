"""
errors.py — Exception hierarchy for the paper-trading backend.

Every exception carries the HTTP status it maps to; the server renders them
as `{"error": <message>, "code": <status>}`.
"""

from __future__ import annotations


class BackendError(Exception):
    """Base exception for backend errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ─── Request / Portfolio ──────────────────────────────────────────────────────


class InvalidRequestError(BackendError):
    """Raised when a request is missing fields or carries bad values."""
    status_code = 400


class TradeRejectedError(BackendError):
    """Raised when a well-formed order cannot be filled."""
    status_code = 400


class InsufficientFundsError(TradeRejectedError):
    def __init__(self, message: str = "Insufficient funds") -> None:
        super().__init__(message)


class InsufficientQuantityError(TradeRejectedError):
    def __init__(self, message: str = "Insufficient quantity") -> None:
        super().__init__(message)


class InsufficientCashError(TradeRejectedError):
    def __init__(self, message: str = "Insufficient cash balance") -> None:
        super().__init__(message)


class NotFoundError(BackendError):
    status_code = 404


class PortfolioNotFoundError(NotFoundError):
    def __init__(self, message: str = "Portfolio not found") -> None:
        super().__init__(message)


class HoldingNotFoundError(NotFoundError):
    def __init__(self, message: str = "Holding not found") -> None:
        super().__init__(message)


# ─── Market Data ──────────────────────────────────────────────────────────────


class MarketDataError(BackendError):
    """Raised when an upstream market-data provider fails."""
    status_code = 502


class SymbolNotFoundError(MarketDataError):
    status_code = 404


class RateLimitError(MarketDataError):
    status_code = 429


class UpstreamTimeoutError(MarketDataError):
    status_code = 504


class ApiKeyMissingError(MarketDataError):
    """Raised when a provider needs an API key that is not configured."""
    status_code = 503
