"""
Portfolio ledger: the single source of truth for cash, positions and P&L.

**Conceptual**: The ledger simulates a brokerage account during a backtest.
It is mutated in exactly two ways:
  - apply_trade(trade): a fill changes cash and a position.
  - mark_price(symbol, price): a new price changes a position's valuation.
Everything else (strategies, risk checks, analytics) reads immutable
PortfolioSnapshot copies.

**Accounting rules**:
  - Buy:  cash -= quantity * price + commission. The position is created, or
    grown with a volume-weighted entry:
        new_entry = (old_qty * old_entry + qty * price) / (old_qty + qty)
  - Sell: cash += quantity * price - commission. The position shrinks; its
    entry is unchanged. realized P&L accumulates the trade's realized_pnl.
    When the remaining quantity reaches 0 (within 1e-9) the position is
    deleted, never kept at quantity 0.
  - Selling a symbol that is not held, or more than is held, raises
    LedgerError. The ledger never clamps; order validation rejects such
    orders before they get here. Non-finite quantities, prices and
    commissions raise LedgerError too.
  - Every revaluation moves the position's high/low-water marks, from which
    MFE/MAE are derived. The first fill or mark of a new calendar day records
    the day's starting equity for the daily loss limit.

**Invariants** (after every mutation):
  - equity == cash + Σ(quantity * current_price)
  - total_pnl == realized_pnl + unrealized_pnl

**Financial assumptions**: long positions are what trades open (a sell never
opens a short). Position.side exists so that unrealized P&L is computed
correctly for either direction if a short is ever carried.

One ledger per backtest run; it is passed by reference, never shared
globally, so independent runs can execute in parallel.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional

import pandas as pd

from tradesim.errors import ConfigurationError, LedgerError
from tradesim.execution.orders import OrderSide, Trade

logger = logging.getLogger(__name__)

QUANTITY_EPSILON = 1e-9


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"


class PositionTransition(str, Enum):
    """What a trade did to the position it touched."""
    OPENED = "opened"
    INCREASED = "increased"
    REDUCED = "reduced"
    CLOSED = "closed"


class PositionStatus(str, Enum):
    WINNING = "winning"
    LOSING = "losing"
    BREAKEVEN = "breakeven"


@dataclass
class Position:
    """
    An open position in one symbol.

    Attributes:
        symbol: Instrument symbol.
        quantity: Units held (always > 0 while the position exists).
        entry_price: Volume-weighted average entry price.
        current_price: Last mark (or fill) price.
        side: LONG or SHORT.
        realized_pnl: P&L realized by partial closes of this position.
        unrealized_pnl: (current - entry) * quantity for longs, inverse for shorts.
        opened_at: Timestamp of the opening fill.
        updated_at: Timestamp of the last fill or mark.
        high_price: Highest price seen since the position opened (high-water mark).
        low_price: Lowest price seen since the position opened (low-water mark).
    """
    symbol: str
    quantity: float
    entry_price: float
    current_price: float
    side: PositionSide = PositionSide.LONG
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    opened_at: Optional[pd.Timestamp] = None
    updated_at: Optional[pd.Timestamp] = None
    high_price: Optional[float] = None
    low_price: Optional[float] = None

    def __post_init__(self):
        if self.high_price is None:
            self.high_price = self.current_price
        if self.low_price is None:
            self.low_price = self.current_price

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def margin(self) -> float:
        """Capital committed at entry: quantity * entry_price."""
        return self.quantity * self.entry_price

    @property
    def total_pnl(self) -> float:
        return self.realized_pnl + self.unrealized_pnl

    @property
    def pnl_pct(self) -> float:
        """total_pnl relative to the cost basis quantity * entry_price, in percent."""
        cost_basis = self.margin
        return self.total_pnl / cost_basis * 100 if cost_basis else 0.0

    @property
    def mfe(self) -> float:
        """
        Maximum favorable excursion: open P&L at the best price seen, for the
        current quantity and entry.
        """
        if self.side is PositionSide.LONG:
            return (self.high_price - self.entry_price) * self.quantity
        return (self.entry_price - self.low_price) * self.quantity

    @property
    def mae(self) -> float:
        """Maximum adverse excursion: worst open P&L seen (<= 0 once marked through entry)."""
        if self.side is PositionSide.LONG:
            return (self.low_price - self.entry_price) * self.quantity
        return (self.entry_price - self.high_price) * self.quantity

    @property
    def status(self) -> PositionStatus:
        if self.total_pnl > 0:
            return PositionStatus.WINNING
        if self.total_pnl < 0:
            return PositionStatus.LOSING
        return PositionStatus.BREAKEVEN

    def revalue(self) -> None:
        self.high_price = max(self.high_price, self.current_price)
        self.low_price = min(self.low_price, self.current_price)
        if self.side is PositionSide.LONG:
            self.unrealized_pnl = (self.current_price - self.entry_price) * self.quantity
        else:
            self.unrealized_pnl = (self.entry_price - self.current_price) * self.quantity


@dataclass(frozen=True)
class PortfolioSnapshot:
    """
    Read-only view of the ledger at one point in time.

    Positions are copies; mutating them does not affect the ledger.

    Attributes:
        timestamp: Timestamp of the last fill or mark (None before any).
        initial_capital: Capital the ledger was seeded with.
        cash: Cash balance.
        equity: cash + Σ(quantity * current_price).
        realized_pnl: Sum of realized P&L over all sells.
        unrealized_pnl: Sum of open positions' unrealized P&L.
        total_pnl: realized_pnl + unrealized_pnl.
        margin_used: Σ position margin (quantity * entry_price).
        margin_available: equity - margin_used.
        peak_equity: Highest equity observed so far (high-water mark).
        gross_exposure: Σ |market value|.
        positions: Symbol -> Position copy.
        day_start_equity: Equity when the current calendar day began (the
                          first fill or mark stamped with that day).
    """
    timestamp: Optional[pd.Timestamp]
    initial_capital: float
    cash: float
    equity: float
    realized_pnl: float
    unrealized_pnl: float
    total_pnl: float
    margin_used: float
    margin_available: float
    peak_equity: float
    gross_exposure: float
    positions: Dict[str, Position] = field(default_factory=dict)
    day_start_equity: Optional[float] = None

    @property
    def position_count(self) -> int:
        return len(self.positions)

    @property
    def drawdown(self) -> float:
        """Fractional decline of equity from peak_equity (0 at a new high)."""
        if self.peak_equity <= 0:
            return 0.0
        return max(0.0, (self.peak_equity - self.equity) / self.peak_equity)

    @property
    def daily_loss(self) -> float:
        """Decline of equity since the start of the day (0 when up on the day)."""
        if self.day_start_equity is None:
            return 0.0
        return max(0.0, self.day_start_equity - self.equity)

    def has_position(self, symbol: str) -> bool:
        return symbol in self.positions

    def get_position(self, symbol: str) -> Optional[Position]:
        return self.positions.get(symbol)


class PortfolioLedger:
    """
    Mutable account state for one backtest run.

    Args:
        initial_capital: Starting cash. Must be positive.

    Raises:
        ConfigurationError: If initial_capital <= 0.
    """

    def __init__(self, initial_capital: float):
        if initial_capital <= 0:
            raise ConfigurationError(
                f"initial_capital must be positive, got {initial_capital}"
            )
        self.initial_capital = float(initial_capital)
        self.reset()

    def reset(self) -> None:
        """Back to all cash, no positions."""
        self._cash = self.initial_capital
        self._positions: Dict[str, Position] = {}
        self._realized_pnl = 0.0
        self._timestamp: Optional[pd.Timestamp] = None
        self._unrealized_pnl = 0.0
        self._equity = self.initial_capital
        self._margin_used = 0.0
        self._gross_exposure = 0.0
        self._peak_equity = self.initial_capital
        self._day: Optional[pd.Timestamp] = None
        self._day_start_equity = self.initial_capital

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply_trade(self, trade: Trade) -> PositionTransition:
        """
        Apply a fill to cash and positions.

        Args:
            trade: Executed trade. For sells, trade.realized_pnl is accumulated;
                  if it is None it is computed from the position's entry.

        Returns:
            The PositionTransition the trade caused.

        Raises:
            LedgerError: Selling an unheld symbol or more than is held, a
                        non-positive quantity, or a non-finite quantity,
                        price or commission.
        """
        if not math.isfinite(trade.quantity) or trade.quantity <= 0:
            raise LedgerError(f"{trade.id}: quantity must be positive, got {trade.quantity}")
        if not math.isfinite(trade.price) or not math.isfinite(trade.commission):
            raise LedgerError(
                f"{trade.id}: price and commission must be finite, "
                f"got {trade.price} and {trade.commission}"
            )

        self._roll_day(trade.timestamp)

        if trade.side is OrderSide.BUY:
            transition = self._apply_buy(trade)
        else:
            transition = self._apply_sell(trade)

        self._timestamp = trade.timestamp
        self._recompute()
        logger.debug(
            f"{trade.id} {trade.side.value} {trade.quantity} {trade.symbol} "
            f"-> {transition.value}; cash={self._cash:.2f} equity={self._equity:.2f}"
        )
        return transition

    def _apply_buy(self, trade: Trade) -> PositionTransition:
        self._cash -= trade.quantity * trade.price + trade.commission

        position = self._positions.get(trade.symbol)
        if position is None:
            self._positions[trade.symbol] = Position(
                symbol=trade.symbol,
                quantity=trade.quantity,
                entry_price=trade.price,
                current_price=trade.price,
                opened_at=trade.timestamp,
                updated_at=trade.timestamp,
            )
            return PositionTransition.OPENED

        new_quantity = position.quantity + trade.quantity
        position.entry_price = (
            position.quantity * position.entry_price + trade.quantity * trade.price
        ) / new_quantity
        position.quantity = new_quantity
        position.current_price = trade.price
        position.updated_at = trade.timestamp
        return PositionTransition.INCREASED

    def _apply_sell(self, trade: Trade) -> PositionTransition:
        position = self._positions.get(trade.symbol)
        if position is None:
            raise LedgerError(f"{trade.id}: no open position in {trade.symbol} to sell")
        if trade.quantity > position.quantity + QUANTITY_EPSILON:
            raise LedgerError(
                f"{trade.id}: cannot sell {trade.quantity} {trade.symbol}, "
                f"only {position.quantity} held"
            )

        realized = trade.realized_pnl
        if realized is None:
            realized = (trade.price - position.entry_price) * trade.quantity - trade.commission

        self._cash += trade.quantity * trade.price - trade.commission
        self._realized_pnl += realized

        remaining = position.quantity - trade.quantity
        if remaining <= QUANTITY_EPSILON:
            del self._positions[trade.symbol]
            return PositionTransition.CLOSED

        position.quantity = remaining
        position.realized_pnl += realized
        position.current_price = trade.price
        position.updated_at = trade.timestamp
        return PositionTransition.REDUCED

    def mark_price(
        self,
        symbol: str,
        price: float,
        timestamp: Optional[pd.Timestamp] = None,
    ) -> None:
        """
        Revalue the position in `symbol` at `price`. No-op if not held.

        A timestamp on a new calendar day also starts a new day for the
        daily loss, held position or not.

        Raises:
            LedgerError: If price is not finite.
        """
        if not math.isfinite(price):
            raise LedgerError(f"Mark price for {symbol} must be finite, got {price}")
        if timestamp is not None:
            self._roll_day(timestamp)

        position = self._positions.get(symbol)
        if position is None:
            return
        position.current_price = price
        if timestamp is not None:
            position.updated_at = timestamp
            self._timestamp = timestamp
        self._recompute()

    def _roll_day(self, timestamp: Optional[pd.Timestamp]) -> None:
        if timestamp is None:
            return
        day = pd.Timestamp(timestamp).normalize()
        if day != self._day:
            self._day = day
            self._day_start_equity = self._equity

    def _recompute(self) -> None:
        market_value = 0.0
        unrealized = 0.0
        margin = 0.0
        gross = 0.0
        for position in self._positions.values():
            position.revalue()
            market_value += position.market_value
            unrealized += position.unrealized_pnl
            margin += position.margin
            gross += abs(position.market_value)

        self._equity = self._cash + market_value
        self._unrealized_pnl = unrealized
        self._margin_used = margin
        self._gross_exposure = gross
        self._peak_equity = max(self._peak_equity, self._equity)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    @property
    def cash(self) -> float:
        return self._cash

    @property
    def equity(self) -> float:
        return self._equity

    @property
    def realized_pnl(self) -> float:
        return self._realized_pnl

    @property
    def unrealized_pnl(self) -> float:
        return self._unrealized_pnl

    @property
    def peak_equity(self) -> float:
        return self._peak_equity

    def has_position(self, symbol: str) -> bool:
        return symbol in self._positions

    def get_position(self, symbol: str) -> Optional[Position]:
        """Copy of the position in `symbol`, or None."""
        position = self._positions.get(symbol)
        return None if position is None else replace(position)

    def positions(self) -> Dict[str, Position]:
        """Copies of all open positions keyed by symbol."""
        return {symbol: replace(p) for symbol, p in self._positions.items()}

    def snapshot(self) -> PortfolioSnapshot:
        return PortfolioSnapshot(
            timestamp=self._timestamp,
            initial_capital=self.initial_capital,
            cash=self._cash,
            equity=self._equity,
            realized_pnl=self._realized_pnl,
            unrealized_pnl=self._unrealized_pnl,
            total_pnl=self._realized_pnl + self._unrealized_pnl,
            margin_used=self._margin_used,
            margin_available=self._equity - self._margin_used,
            peak_equity=self._peak_equity,
            gross_exposure=self._gross_exposure,
            positions=self.positions(),
            day_start_equity=self._day_start_equity,
        )

    def summary(self) -> dict:
        """Flat dict of the headline numbers, for logs and reports."""
        return {
            "initial_capital": self.initial_capital,
            "cash": self._cash,
            "equity": self._equity,
            "realized_pnl": self._realized_pnl,
            "unrealized_pnl": self._unrealized_pnl,
            "total_pnl": self._realized_pnl + self._unrealized_pnl,
            "return_pct": (self._equity / self.initial_capital - 1) * 100,
            "open_positions": len(self._positions),
            "peak_equity": self._peak_equity,
        }
