"""
Strategy interface and trivial reference strategies.

**Conceptual**: This module defines the contract between strategies and the
backtest loop. Per bar, the loop appends the bar to the StrategyContext,
updates the registered indicators, marks the position, and then calls
`strategy.on_candle(bar, context)`. The strategy answers with a list of
Signals (possibly empty). Each signal becomes an order that is risk-checked
and filled before the next signal of the same bar is processed.

**Why signals instead of orders?**
  - Strategies express intent (buy 10 because of X); ids, validation and
    fills are the loop's job.
  - A strategy never mutates the portfolio; it only reads snapshots through
    the context, so it cannot corrupt the ledger or peek at future bars.

**Teaching note**: Strategy is a Protocol (structural typing), not an ABC.
Any object with `name`, `initialize` and `on_candle` of the right shape
plugs in. `on_order_filled(order_id, context)` is optional; the loop calls it
only if the strategy defines it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol

import pandas as pd

from tradesim.data.schemas import Bar
from tradesim.execution.orders import OrderSide

if TYPE_CHECKING:
    from tradesim.strategies.context import StrategyContext


class SignalType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


@dataclass(frozen=True)
class Signal:
    """
    A strategy's request to trade.

    Attributes:
        symbol: Instrument symbol.
        side: BUY or SELL.
        quantity: Units to trade (positive).
        timestamp: Bar timestamp the signal was produced on.
        kind: ENTRY or EXIT (informational).
        price: Limit/reference price; None fills at the bar close.
        stop_loss: Protective stop for entries (enables per-trade risk checks).
        take_profit: Profit target (informational).
        reason: Human-readable reason, kept on the order.
        strategy: Name of the emitting strategy.
    """
    symbol: str
    side: OrderSide
    quantity: float
    timestamp: pd.Timestamp
    kind: SignalType = SignalType.ENTRY
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    reason: Optional[str] = None
    strategy: Optional[str] = None


def buy_signal(bar: Bar, quantity: float, reason: str | None = None,
               strategy: str | None = None, stop_loss: float | None = None) -> Signal:
    """Entry signal for `bar.symbol` filled at the bar close."""
    return Signal(
        symbol=bar.symbol,
        side=OrderSide.BUY,
        quantity=quantity,
        timestamp=bar.timestamp,
        kind=SignalType.ENTRY,
        stop_loss=stop_loss,
        reason=reason,
        strategy=strategy,
    )


def sell_signal(bar: Bar, quantity: float, reason: str | None = None,
                strategy: str | None = None) -> Signal:
    """Exit signal for `bar.symbol` filled at the bar close."""
    return Signal(
        symbol=bar.symbol,
        side=OrderSide.SELL,
        quantity=quantity,
        timestamp=bar.timestamp,
        kind=SignalType.EXIT,
        reason=reason,
        strategy=strategy,
    )


class Strategy(Protocol):
    """Structural interface the backtest loop drives."""

    name: str

    def initialize(self, context: "StrategyContext") -> None:
        """
        Called once before the first bar.

        Typical use: create indicators and register them with
        `context.register_indicator(name, indicator)` so the loop updates them.
        """
        ...

    def on_candle(self, bar: Bar, context: "StrategyContext") -> list[Signal]:
        """
        Called once per bar, after indicators have been updated with `bar`.

        Returns:
            Signals to process in order (empty list for no action).
        """
        ...


# ============================================================================
# Simple strategy implementations for testing and demonstration
# ============================================================================


class HoldCashStrategy:
    """
    Never trades.

    Equity must stay exactly at initial capital; a baseline for checking loop
    plumbing (state transitions, equity curve, empty trade statistics).
    """

    name = "hold-cash"

    def initialize(self, context: "StrategyContext") -> None:
        pass

    def on_candle(self, bar: Bar, context: "StrategyContext") -> list[Signal]:
        return []


class BuyAndHoldStrategy:
    """
    Buys once on the first bar with `fraction` of cash and holds to the end.

    The loop's closing phase sells the position at the final close, so the
    result is one round trip whose P&L tracks the instrument.
    """

    name = "buy-and-hold"

    def __init__(self, fraction: float = 0.95, whole_units: bool = True):
        if not 0 < fraction <= 1:
            raise ValueError(f"fraction must be in (0, 1], got {fraction}")
        self.fraction = fraction
        self.whole_units = whole_units

    def initialize(self, context: "StrategyContext") -> None:
        pass

    def on_candle(self, bar: Bar, context: "StrategyContext") -> list[Signal]:
        if context.has_position(bar.symbol) or context.bar_count > 1:
            return []
        quantity = context.portfolio().cash * self.fraction / bar.close
        if self.whole_units:
            quantity = float(int(quantity))
        if quantity <= 0:
            return []
        return [buy_signal(bar, quantity, reason="Initial allocation", strategy=self.name)]
