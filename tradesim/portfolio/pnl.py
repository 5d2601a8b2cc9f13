"""
Profit and loss helpers.

Per-fill P&L lives on Trade.realized_pnl and in the ledger. The functions here
answer the questions analytics and strategies ask about groups of fills:

  - trade_pnl: gross/net P&L of a hypothetical entry/exit pair.
  - round_trips: group fills per symbol from flat to flat, so that a position
    built with three buys and closed with two sells counts as ONE trade in
    win-rate and profit-factor statistics.
  - average_entry_price, break_even_price, risk_reward: sizing/exit helpers.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import pandas as pd

from tradesim.execution.orders import OrderSide, Trade

QUANTITY_EPSILON = 1e-9


@dataclass(frozen=True)
class TradePnL:
    gross_pnl: float
    net_pnl: float
    commission: float
    pnl_pct: float


def trade_pnl(
    entry_price: float,
    exit_price: float,
    quantity: float,
    side: OrderSide | str = OrderSide.BUY,
    commission: float = 0.0,
) -> TradePnL:
    """
    P&L of one entry/exit pair.

    `side` is the side of the ENTRY: BUY for a long (profit when exit > entry),
    SELL for a short (profit when exit < entry). pnl_pct is net P&L relative
    to the cost basis quantity * entry_price, in percent.

    Raises:
        ValueError: If quantity or entry_price is not positive.
    """
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")

    side = OrderSide(side)
    if side is OrderSide.BUY:
        gross = (exit_price - entry_price) * quantity
    else:
        gross = (entry_price - exit_price) * quantity

    net = gross - commission
    return TradePnL(
        gross_pnl=gross,
        net_pnl=net,
        commission=commission,
        pnl_pct=net / (quantity * entry_price) * 100,
    )


@dataclass
class RoundTrip:
    """
    All fills that took one symbol from flat back to flat.

    Attributes:
        symbol: Instrument symbol.
        opened_at: Timestamp of the first buy.
        closed_at: Timestamp of the sell that flattened the position.
        quantity: Total units bought during the trip.
        net_pnl: Σ sell realized P&L - Σ buy commissions.
        commission: Σ commission over all fills of the trip.
        trade_ids: Ids of the fills, in order.
    """
    symbol: str
    opened_at: pd.Timestamp
    closed_at: Optional[pd.Timestamp] = None
    quantity: float = 0.0
    net_pnl: float = 0.0
    commission: float = 0.0
    trade_ids: list = field(default_factory=list)

    @property
    def hold_time(self) -> Optional[pd.Timedelta]:
        if self.closed_at is None:
            return None
        return self.closed_at - self.opened_at


def round_trips(trades: Iterable[Trade]) -> list[RoundTrip]:
    """
    Group fills into completed round trips, in order of completion.

    Trips still open after the last fill are not returned.

    Raises:
        ValueError: If a sell has no open trip to close, or a sell has no
                   realized_pnl.
    """
    open_trips: dict[str, RoundTrip] = {}
    open_quantity: dict[str, float] = {}
    completed: list[RoundTrip] = []

    for trade in trades:
        symbol = trade.symbol
        if trade.side is OrderSide.BUY:
            trip = open_trips.get(symbol)
            if trip is None:
                trip = RoundTrip(symbol=symbol, opened_at=trade.timestamp)
                open_trips[symbol] = trip
                open_quantity[symbol] = 0.0
            trip.quantity += trade.quantity
            trip.net_pnl -= trade.commission
            trip.commission += trade.commission
            trip.trade_ids.append(trade.id)
            open_quantity[symbol] += trade.quantity
            continue

        trip = open_trips.get(symbol)
        if trip is None:
            raise ValueError(f"{trade.id}: sell of {symbol} without an open round trip")
        if trade.realized_pnl is None:
            raise ValueError(f"{trade.id}: sell has no realized_pnl")

        trip.net_pnl += trade.realized_pnl
        trip.commission += trade.commission
        trip.trade_ids.append(trade.id)
        open_quantity[symbol] -= trade.quantity

        if open_quantity[symbol] <= QUANTITY_EPSILON:
            trip.closed_at = trade.timestamp
            completed.append(trip)
            del open_trips[symbol]
            del open_quantity[symbol]

    return completed


def round_trip_pnls(trades: Iterable[Trade]) -> list[float]:
    """Net P&L of every completed round trip, in order of completion."""
    return [trip.net_pnl for trip in round_trips(trades)]


def average_entry_price(trades: Sequence[Trade]) -> float:
    """Quantity-weighted average price of `trades` (0.0 if no quantity)."""
    total_quantity = sum(t.quantity for t in trades)
    if total_quantity <= 0:
        return 0.0
    return sum(t.price * t.quantity for t in trades) / total_quantity


def break_even_price(
    entry_price: float,
    commission: float,
    quantity: float,
    side: OrderSide | str = OrderSide.BUY,
) -> float:
    """Exit price at which a position's P&L covers `commission` exactly."""
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    per_unit = commission / quantity
    if OrderSide(side) is OrderSide.BUY:
        return entry_price + per_unit
    return entry_price - per_unit


def risk_reward(
    entry_price: float,
    target_price: float,
    stop_price: float,
    side: OrderSide | str = OrderSide.BUY,
) -> float:
    """
    Potential profit divided by potential loss.

    Returns 0.0 when the stop equals the entry (no defined risk).
    """
    if OrderSide(side) is OrderSide.BUY:
        profit = target_price - entry_price
        loss = entry_price - stop_price
    else:
        profit = entry_price - target_price
        loss = stop_price - entry_price
    return profit / loss if loss != 0 else 0.0
