"""
portfolio.py — In-memory paper-trading portfolios with average-cost accounting.

Each user has a cash balance and holdings keyed by (symbol, asset type).

    buy:   cash -= qty × price
           avg_price = (avg_price × held + qty × price) / (held + qty)
    sell:  cash += qty × price
           profit = (price − avg_price) × qty; avg_price unchanged
           holding removed once its quantity reaches zero
    cash:  add / withdraw, never below zero

A user without a portfolio reads as the default (starting cash, no holdings);
the first buy or cash operation creates it.

Usage:
    store = PortfolioStore(starting_cash=10_000.0)
    portfolio, txn = store.buy("user1", {"symbol": "BTC", "type": "crypto",
                                         "quantity": 0.1, "price": 50_000})
    await value_portfolio(portfolio, market)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from loguru import logger

from errors import (
    HoldingNotFoundError,
    InsufficientCashError,
    InsufficientFundsError,
    InsufficientQuantityError,
    InvalidRequestError,
    MarketDataError,
    PortfolioNotFoundError,
)
from models import ASSET_TYPES, iso_now

if TYPE_CHECKING:
    from market_data import MarketDataService


# ─── Constants ────────────────────────────────────────────────────────────────

STARTING_CASH = 10_000.0
EPSILON = 1e-9              # float dust below this counts as zero
MAX_TRANSACTIONS = 500      # per-user history cap
CASH_OPERATIONS = ("add", "withdraw")


# ─── Data Classes ─────────────────────────────────────────────────────────────


@dataclass
class Holding:
    """A position in one asset."""
    symbol: str
    asset_type: str
    quantity: float
    avg_price: float
    current_price: Optional[float] = None
    current_value: Optional[float] = None

    @property
    def book_value(self) -> float:
        if self.current_value is not None:
            return self.current_value
        return self.quantity * self.avg_price

    def mark(self, price: float) -> None:
        """Re-price the holding at price."""
        self.current_price = price
        self.current_value = self.quantity * price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "type": self.asset_type,
            "quantity": self.quantity,
            "avgPrice": self.avg_price,
            "currentPrice": self.current_price,
            "currentValue": self.current_value,
        }


@dataclass
class Portfolio:
    """Cash plus holdings for one user."""
    user_id: str
    cash: float = STARTING_CASH
    holdings: List[Holding] = field(default_factory=list)
    total_value: float = STARTING_CASH
    last_updated: Optional[str] = None

    def find_holding(self, symbol: str, asset_type: str) -> Optional[Holding]:
        symbol = symbol.upper()
        for holding in self.holdings:
            if holding.symbol == symbol and holding.asset_type == asset_type:
                return holding
        return None

    def remove_holding(self, holding: Holding) -> None:
        self.holdings = [h for h in self.holdings if h is not holding]

    def projected_total(
        self,
        cash: float,
        changed: Optional[Holding] = None,
        changed_value: float = 0.0,
    ) -> float:
        """Total value with cash replaced and, optionally, one holding re-valued."""
        others = sum(h.book_value for h in self.holdings if h is not changed)
        return cash + others + changed_value

    def recompute_total(self) -> float:
        """Cash plus the last known value of every holding."""
        self.total_value = self.cash + sum(h.book_value for h in self.holdings)
        self.last_updated = iso_now()
        return self.total_value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "holdings": [h.to_dict() for h in self.holdings],
            "cash": self.cash,
            "totalValue": self.total_value,
            "lastUpdated": self.last_updated,
        }


@dataclass
class Transaction:
    """One executed buy, sell, or cash movement."""
    kind: str                      # "buy" | "sell" | "add" | "withdraw"
    timestamp: str = field(default_factory=iso_now)
    symbol: Optional[str] = None
    asset_type: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    amount: Optional[float] = None     # total cost, revenue, or cash moved
    profit: Optional[float] = None
    new_balance: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == "buy":
            return {
                "type": "buy",
                "symbol": self.symbol,
                "assetType": self.asset_type,
                "quantity": self.quantity,
                "price": self.price,
                "totalCost": self.amount,
                "timestamp": self.timestamp,
            }
        if self.kind == "sell":
            return {
                "type": "sell",
                "symbol": self.symbol,
                "assetType": self.asset_type,
                "quantity": self.quantity,
                "price": self.price,
                "totalRevenue": self.amount,
                "profit": self.profit,
                "timestamp": self.timestamp,
            }
        return {
            "type": self.kind,
            "amount": self.amount,
            "newBalance": self.new_balance,
            "timestamp": self.timestamp,
        }


@dataclass
class OrderRequest:
    symbol: str
    asset_type: str
    quantity: float
    price: float

    @property
    def notional(self) -> float:
        return self.quantity * self.price


# ─── Request Parsing ──────────────────────────────────────────────────────────


def _positive_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _check_finite(*values: float) -> None:
    """Reject an operation whose resulting amounts overflow."""
    if not all(math.isfinite(v) for v in values):
        raise InvalidRequestError("Resulting balance is out of range")


def parse_order(payload: Any) -> OrderRequest:
    """Validate a buy/sell body: {symbol, type, quantity, price}."""
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    symbol = payload.get("symbol")
    asset_type = payload.get("type")
    quantity = payload.get("quantity")
    price = payload.get("price")
    if not symbol or not asset_type or not quantity or not price:
        raise InvalidRequestError("Missing required fields: symbol, type, quantity, price")
    if asset_type not in ASSET_TYPES:
        raise InvalidRequestError('Invalid type. Must be "crypto" or "stock"')

    qty = _positive_number(quantity)
    px = _positive_number(price)
    if qty is None or px is None:
        raise InvalidRequestError("Quantity and price must be positive numbers")
    return OrderRequest(symbol=str(symbol).strip().upper(), asset_type=asset_type, quantity=qty, price=px)


def parse_cash_request(payload: Any) -> Tuple[str, float]:
    """Validate a cash body: {operation, amount}."""
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    operation = payload.get("operation")
    amount = payload.get("amount")
    if not operation or not amount:
        raise InvalidRequestError("Missing required fields: operation, amount")
    if operation not in CASH_OPERATIONS:
        raise InvalidRequestError('Invalid operation. Must be "add" or "withdraw"')
    parsed = _positive_number(amount)
    if parsed is None:
        raise InvalidRequestError("Amount must be a positive number")
    return operation, parsed


# ─── Store ────────────────────────────────────────────────────────────────────


class PortfolioStore:
    """
    Process-local portfolio map.

    Mutations run synchronously between awaits, so on a single event loop
    each buy/sell/cash call is applied atomically.
    """

    def __init__(self, starting_cash: float = STARTING_CASH, max_transactions: int = MAX_TRANSACTIONS) -> None:
        self.starting_cash = starting_cash
        self.max_transactions = max_transactions
        self._portfolios: Dict[str, Portfolio] = {}
        self._transactions: Dict[str, List[Transaction]] = {}

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._portfolios

    def __len__(self) -> int:
        return len(self._portfolios)

    def get(self, user_id: str) -> Optional[Portfolio]:
        return self._portfolios.get(user_id)

    def get_or_default(self, user_id: str) -> Portfolio:
        """The stored portfolio, or an unsaved default one."""
        existing = self._portfolios.get(user_id)
        if existing is not None:
            return existing
        return Portfolio(
            user_id=user_id,
            cash=self.starting_cash,
            total_value=self.starting_cash,
        )

    def transactions(self, user_id: str, limit: Optional[int] = None) -> List[Transaction]:
        history = self._transactions.get(user_id, [])
        if limit is not None:
            return history[-limit:] if limit > 0 else []
        return list(history)

    def reset(self) -> None:
        self._portfolios.clear()
        self._transactions.clear()

    # ── Mutations ─────────────────────────────────────────────────────────

    def buy(self, user_id: str, payload: Any) -> Tuple[Portfolio, Transaction]:
        order = parse_order(payload)
        portfolio = self.get_or_default(user_id)
        total_cost = order.notional

        if portfolio.cash + EPSILON < total_cost:
            raise InsufficientFundsError()

        new_cash = max(portfolio.cash - total_cost, 0.0)
        holding = portfolio.find_holding(order.symbol, order.asset_type)
        if holding is not None:
            new_quantity = holding.quantity + order.quantity
            new_avg = (holding.avg_price * holding.quantity + total_cost) / new_quantity
            mark_price = holding.current_price if holding.current_price is not None else order.price
            new_value = new_quantity * mark_price
        else:
            new_avg = order.price
            new_value = total_cost
        _check_finite(new_avg, new_value, portfolio.projected_total(new_cash, holding, new_value))

        portfolio.cash = new_cash
        if holding is not None:
            holding.avg_price = new_avg
            holding.quantity = new_quantity
            holding.mark(mark_price)
        else:
            holding = Holding(
                symbol=order.symbol,
                asset_type=order.asset_type,
                quantity=order.quantity,
                avg_price=order.price,
            )
            holding.mark(order.price)
            portfolio.holdings.append(holding)

        portfolio.recompute_total()
        self._portfolios[user_id] = portfolio
        txn = Transaction(
            kind="buy",
            symbol=order.symbol,
            asset_type=order.asset_type,
            quantity=order.quantity,
            price=order.price,
            amount=total_cost,
        )
        self._record(user_id, txn)
        logger.info("{} bought {} {} @ {} (cost {:.2f})", user_id, order.quantity, order.symbol, order.price, total_cost)
        return portfolio, txn

    def sell(self, user_id: str, payload: Any) -> Tuple[Portfolio, Transaction]:
        order = parse_order(payload)
        portfolio = self._portfolios.get(user_id)
        if portfolio is None:
            raise PortfolioNotFoundError()

        holding = portfolio.find_holding(order.symbol, order.asset_type)
        if holding is None:
            raise HoldingNotFoundError()
        if holding.quantity + EPSILON < order.quantity:
            raise InsufficientQuantityError()

        revenue = order.notional
        profit = (order.price - holding.avg_price) * order.quantity
        new_cash = portfolio.cash + revenue
        remaining = holding.quantity - order.quantity
        mark_price = holding.current_price if holding.current_price is not None else order.price
        remaining_value = 0.0 if remaining <= EPSILON else remaining * mark_price
        _check_finite(profit, portfolio.projected_total(new_cash, holding, remaining_value))

        portfolio.cash = new_cash
        holding.quantity = remaining
        if remaining <= EPSILON:
            portfolio.remove_holding(holding)
        else:
            holding.mark(mark_price)

        portfolio.recompute_total()
        txn = Transaction(
            kind="sell",
            symbol=order.symbol,
            asset_type=order.asset_type,
            quantity=order.quantity,
            price=order.price,
            amount=revenue,
            profit=profit,
        )
        self._record(user_id, txn)
        logger.info("{} sold {} {} @ {} (profit {:+.2f})", user_id, order.quantity, order.symbol, order.price, profit)
        return portfolio, txn

    def update_cash(self, user_id: str, payload: Any) -> Tuple[Portfolio, Transaction]:
        operation, amount = parse_cash_request(payload)
        portfolio = self.get_or_default(user_id)

        if operation == "add":
            new_cash = portfolio.cash + amount
        else:
            if portfolio.cash + EPSILON < amount:
                raise InsufficientCashError()
            new_cash = max(portfolio.cash - amount, 0.0)
        _check_finite(portfolio.projected_total(new_cash))

        portfolio.cash = new_cash
        portfolio.recompute_total()
        self._portfolios[user_id] = portfolio
        txn = Transaction(kind=operation, amount=amount, new_balance=portfolio.cash)
        self._record(user_id, txn)
        logger.info("{} cash {} {:.2f} → balance {:.2f}", user_id, operation, amount, portfolio.cash)
        return portfolio, txn

    def _record(self, user_id: str, txn: Transaction) -> None:
        history = self._transactions.setdefault(user_id, [])
        history.append(txn)
        if len(history) > self.max_transactions:
            del history[: len(history) - self.max_transactions]


# ─── Valuation ────────────────────────────────────────────────────────────────


async def value_portfolio(portfolio: Portfolio, market: "MarketDataService") -> Portfolio:
    """
    Re-price every holding from live market data.

    A holding whose quote cannot be fetched is valued at its average price.
    Prices are fetched first and applied afterwards, so a trade landing
    while quotes are in flight is never half-applied.
    """
    prices: Dict[Tuple[str, str], float] = {}
    for holding in list(portfolio.holdings):
        key = (holding.symbol, holding.asset_type)
        if key in prices:
            continue
        try:
            quote = await market.get_price(holding.asset_type, holding.symbol)
            prices[key] = quote.price
        except MarketDataError as exc:
            logger.warning("Error fetching price for {}: {}", holding.symbol, exc)
            prices[key] = holding.avg_price

    for holding in portfolio.holdings:
        holding.mark(prices.get((holding.symbol, holding.asset_type), holding.avg_price))
    portfolio.recompute_total()
    return portfolio
