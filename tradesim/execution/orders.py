"""
Order and trade records.

**Conceptual**: An Order is a request (buy/sell N units of a symbol, optionally
at a limit price). A Trade is the immutable execution record produced when an
order is filled. In a backtest, every order resolves immediately and
terminally: it is either FILLED in full or REJECTED. There are no partial
fills and no resting orders.

Both records are frozen dataclasses. A status change is expressed by producing
a new Order via `filled()` / `rejected()` rather than by mutating the original,
so the order log the engine keeps is an append-only history of requests and
outcomes.

Ids come from IdSequence counters owned by one backtest run ("order-1",
"order-2", ...), so replaying the same bars with the same strategy yields the
same ids.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import pandas as pd


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    PENDING = "pending"
    FILLED = "filled"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Order:
    """
    A request to trade.

    Attributes:
        id: Run-unique identifier ("order-N").
        symbol: Instrument symbol.
        side: BUY or SELL.
        quantity: Requested units (positive).
        timestamp: Bar timestamp at which the order was created.
        limit_price: Price the fill is based on; None means the bar close.
        status: PENDING until resolved, then FILLED or REJECTED.
        filled_quantity: Units filled (equal to quantity once FILLED).
        average_price: Fill price once FILLED.
        reason: Strategy's reason for the signal, or the rejection reason.
        strategy: Name of the strategy that emitted the signal.
    """
    id: str
    symbol: str
    side: OrderSide
    quantity: float
    timestamp: pd.Timestamp
    limit_price: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    filled_quantity: float = 0.0
    average_price: Optional[float] = None
    reason: Optional[str] = None
    strategy: Optional[str] = None

    @property
    def order_type(self) -> OrderType:
        return OrderType.MARKET if self.limit_price is None else OrderType.LIMIT

    @property
    def is_buy(self) -> bool:
        return self.side is OrderSide.BUY

    def filled(self, price: float) -> "Order":
        """Terminal FILLED copy of this order at `price` (full quantity)."""
        return replace(
            self,
            status=OrderStatus.FILLED,
            filled_quantity=self.quantity,
            average_price=price,
        )

    def rejected(self, reason: str) -> "Order":
        """Terminal REJECTED copy of this order."""
        return replace(self, status=OrderStatus.REJECTED, reason=reason)


@dataclass(frozen=True)
class Trade:
    """
    Immutable execution record.

    Attributes:
        id: Run-unique identifier ("trade-N").
        order_id: Id of the order this trade filled.
        symbol: Instrument symbol.
        side: BUY or SELL.
        quantity: Units executed.
        price: Fill price after slippage.
        commission: Commission charged, in quote currency.
        timestamp: Bar timestamp of the fill.
        realized_pnl: For sells closing (part of) a long position:
                     (price - entry_price) * quantity - commission.
                     None for buys.
        strategy: Name of the strategy that emitted the signal.
    """
    id: str
    order_id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    commission: float
    timestamp: pd.Timestamp
    realized_pnl: Optional[float] = None
    strategy: Optional[str] = None

    @property
    def notional(self) -> float:
        return self.quantity * self.price


class IdSequence:
    """Deterministic id generator: IdSequence("order") -> order-1, order-2, ..."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        self._count = 0

    def next(self) -> str:
        self._count += 1
        return f"{self.prefix}-{self._count}"

    def reset(self) -> None:
        self._count = 0
