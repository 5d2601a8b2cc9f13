"""
Per-run strategy context.

The context is what a strategy sees of the world: recent bars, the indicators
it registered, and read-only snapshots of the portfolio. It is created by the
backtest loop for one run and passed by reference to every strategy call;
nothing about it is global.
"""

import logging
from collections import deque
from typing import Optional

from tradesim.data.schemas import Bar
from tradesim.execution.orders import Order, OrderSide
from tradesim.indicators.base import Indicator
from tradesim.portfolio.ledger import PortfolioLedger, PortfolioSnapshot, Position
from tradesim.risk.limits import RiskLimits, validate_order

logger = logging.getLogger(__name__)

DEFAULT_MAX_BARS = 500


class StrategyContext:
    """
    Bars, indicators and portfolio view for one backtest run.

    Args:
        symbol: Primary symbol of the run.
        ledger: The run's ledger. Strategies only ever receive snapshots/copies.
        limits: Risk limits, used by can_buy / can_sell.
        max_bars: Number of most recent bars retained.
    """

    def __init__(
        self,
        symbol: str,
        ledger: PortfolioLedger,
        limits: Optional[RiskLimits] = None,
        max_bars: int = DEFAULT_MAX_BARS,
    ):
        if max_bars <= 0:
            raise ValueError(f"max_bars must be positive, got {max_bars}")
        self.symbol = symbol
        self.limits = limits or RiskLimits()
        self._ledger = ledger
        self._bars: deque = deque(maxlen=max_bars)
        self._bar_count = 0
        self._indicators: dict[str, Indicator] = {}

    # -- bars --------------------------------------------------------------

    def add_bar(self, bar: Bar) -> None:
        self._bars.append(bar)
        self._bar_count += 1

    @property
    def current_bar(self) -> Optional[Bar]:
        return self._bars[-1] if self._bars else None

    @property
    def current_price(self) -> Optional[float]:
        bar = self.current_bar
        return None if bar is None else bar.close

    @property
    def bar_count(self) -> int:
        """Bars seen this run (not capped by max_bars)."""
        return self._bar_count

    def get_bars(self, count: Optional[int] = None) -> list[Bar]:
        """The most recent `count` retained bars (all if None), oldest first."""
        if count is None:
            return list(self._bars)
        if count <= 0:
            return []
        return list(self._bars)[-count:]

    # -- indicators --------------------------------------------------------

    def register_indicator(self, name: str, indicator: Indicator) -> None:
        """Register an indicator; the loop updates it on every bar."""
        if name in self._indicators:
            raise ValueError(f"Indicator '{name}' is already registered")
        self._indicators[name] = indicator
        logger.debug(f"Registered indicator {name}: {indicator!r}")

    def get_indicator(self, name: str) -> Optional[Indicator]:
        return self._indicators.get(name)

    @property
    def indicators(self) -> dict[str, Indicator]:
        return dict(self._indicators)

    def update_indicators(self, bar: Bar) -> None:
        for indicator in self._indicators.values():
            indicator.update(bar)

    # -- portfolio view ----------------------------------------------------

    def portfolio(self) -> PortfolioSnapshot:
        return self._ledger.snapshot()

    def position(self, symbol: Optional[str] = None) -> Optional[Position]:
        """Copy of the position in `symbol` (default: the run's symbol)."""
        return self._ledger.get_position(symbol or self.symbol)

    def has_position(self, symbol: Optional[str] = None) -> bool:
        return self._ledger.has_position(symbol or self.symbol)

    def can_buy(self, quantity: float, price: Optional[float] = None) -> bool:
        """Would a buy of `quantity` at `price` (default: last close) pass validation?"""
        return self._would_accept(OrderSide.BUY, quantity, price)

    def can_sell(self, quantity: float) -> bool:
        return self._would_accept(OrderSide.SELL, quantity, None)

    def _would_accept(self, side: OrderSide, quantity: float, price: Optional[float]) -> bool:
        bar = self.current_bar
        candidate = Order(
            id="candidate",
            symbol=self.symbol,
            side=side,
            quantity=quantity,
            timestamp=None if bar is None else bar.timestamp,
            limit_price=price,
        )
        decision = validate_order(
            candidate,
            self.portfolio(),
            self.limits,
            reference_price=self.current_price,
        )
        return decision.accepted

    def reset(self) -> None:
        """Drop bars and indicator state (registrations are kept)."""
        self._bars.clear()
        self._bar_count = 0
        for indicator in self._indicators.values():
            indicator.reset()
