"""
Deterministic fill model for accepted orders.

**Financial assumptions**:
  - Every accepted order fills in full, immediately, on the bar it was created.
  - Base price is the order's limit price if set, otherwise the bar close.
  - Slippage is a fraction of the base price, always adverse:
    buys pay base * (1 + slippage), sells receive base * (1 - slippage).
  - Commission is a fraction of traded notional at the fill price:
    quantity * fill_price * commission_rate.
  - Realized P&L on a sell is (fill_price - entry_price) * quantity - commission,
    where entry_price is the position's volume-weighted entry. The buy-side
    commission was already paid in cash when the position was opened and is
    not deducted again here.

These are the same conventions as a simple paper broker: no spread model, no
market impact, no latency. They are deliberately simple so that a backtest is
a reproducible function of (bars, strategy, config).
"""

import logging
from typing import Optional

from tradesim.data.schemas import Bar
from tradesim.errors import ConfigurationError
from tradesim.execution.orders import IdSequence, Order, OrderSide, Trade

logger = logging.getLogger(__name__)


class FillSimulator:
    """
    Turns an accepted Order into a Trade.

    Args:
        commission_rate: Fraction of notional charged per fill (0.001 = 0.1%).
        slippage: Adverse price move as a fraction of the base price.

    Raises:
        ConfigurationError: If either rate is outside [0, 1).
    """

    def __init__(self, commission_rate: float = 0.001, slippage: float = 0.0005):
        if not 0 <= commission_rate < 1:
            raise ConfigurationError(
                f"commission_rate must be in [0, 1), got {commission_rate}"
            )
        if not 0 <= slippage < 1:
            raise ConfigurationError(f"slippage must be in [0, 1), got {slippage}")

        self.commission_rate = commission_rate
        self.slippage = slippage
        self._trade_ids = IdSequence("trade")

    def fill_price(self, order: Order, bar: Bar) -> float:
        """Slippage-adjusted fill price for `order` on `bar`."""
        base = order.limit_price if order.limit_price is not None else bar.close
        if order.side is OrderSide.BUY:
            return base * (1 + self.slippage)
        return base * (1 - self.slippage)

    def commission(self, quantity: float, price: float) -> float:
        return quantity * price * self.commission_rate

    def fill(self, order: Order, bar: Bar, entry_price: Optional[float] = None) -> Trade:
        """
        Execute `order` against `bar`.

        Args:
            order: Accepted order.
            bar: Current bar (supplies the close and the fill timestamp).
            entry_price: Volume-weighted entry of the position being sold.
                        Required to compute realized P&L on sells; ignored on buys.

        Returns:
            The resulting Trade.
        """
        price = self.fill_price(order, bar)
        commission = self.commission(order.quantity, price)

        realized_pnl = None
        if order.side is OrderSide.SELL and entry_price is not None:
            realized_pnl = (price - entry_price) * order.quantity - commission

        trade = Trade(
            id=self._trade_ids.next(),
            order_id=order.id,
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=price,
            commission=commission,
            timestamp=bar.timestamp,
            realized_pnl=realized_pnl,
            strategy=order.strategy,
        )
        logger.debug(
            f"Filled {order.id}: {order.side.value} {order.quantity} {order.symbol} "
            f"@ {price:.4f} (commission {commission:.4f})"
        )
        return trade

    def reset(self) -> None:
        self._trade_ids.reset()
