"""
Pre-trade risk limits and order validation.

**Conceptual**: Before an order reaches the fill simulator, it is checked
against the CURRENT portfolio snapshot and a set of RiskLimits. Validation
returns an OrderDecision value; it never raises to signal a rejection, so the
backtest loop branches explicitly:

    decision = validate_order(order, snapshot, limits, reference_price=bar.close)
    if not decision.accepted:
        log, record, drop the signal

**Which checks apply to which side?**
  - Sells (exits) only need a position to sell: the symbol must be held and
    the quantity must not exceed what is held. Exposure limits never block an
    exit, since refusing to reduce risk because risk is too high would be
    backwards.
  - Buys (entries/increases) go through every exposure check:
    max positions (only when opening a new symbol), max position size,
    min position size, max risk per trade (when a stop is known),
    max portfolio risk, the optional daily loss limit, max drawdown from peak
    equity, and available cash.
  - Quantities and prices must be finite; a NaN would pass every comparison
    below and poison cash and equity.

All functions are stateless; RiskLimits is an immutable value.
"""

import math
from dataclasses import dataclass
from typing import Optional

from tradesim.errors import ConfigurationError
from tradesim.execution.orders import Order, OrderSide
from tradesim.portfolio.ledger import PortfolioSnapshot

QUANTITY_EPSILON = 1e-9


@dataclass(frozen=True)
class RiskLimits:
    """
    Portfolio risk limits.

    Attributes:
        max_risk_per_trade: Max loss-to-stop of one entry as a fraction of equity.
        max_portfolio_risk: Max Σ|unrealized P&L| / equity before new entries stop.
        max_drawdown: Max decline from peak equity before new entries stop.
        max_positions: Max number of simultaneously open symbols.
        max_position_size: Max order notional as a fraction of equity.
        min_position_size: Min order notional in quote currency.
        daily_loss_limit: Optional loss since the start of the current day,
                          in quote currency, at which new entries stop.
    """
    max_risk_per_trade: float = 0.05
    max_portfolio_risk: float = 0.10
    max_drawdown: float = 0.20
    max_positions: int = 5
    max_position_size: float = 0.25
    min_position_size: float = 10.0
    daily_loss_limit: Optional[float] = None

    def __post_init__(self):
        for name in ("max_risk_per_trade", "max_portfolio_risk", "max_drawdown", "max_position_size"):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise ConfigurationError(f"{name} must be in (0, 1], got {value}")
        if isinstance(self.max_positions, bool) or not isinstance(self.max_positions, int) \
                or self.max_positions < 1:
            raise ConfigurationError(
                f"max_positions must be a positive integer, got {self.max_positions!r}"
            )
        if self.min_position_size < 0:
            raise ConfigurationError(
                f"min_position_size must be non-negative, got {self.min_position_size}"
            )
        if self.daily_loss_limit is not None and not self.daily_loss_limit > 0:
            raise ConfigurationError(
                f"daily_loss_limit must be positive when set, got {self.daily_loss_limit}"
            )


@dataclass(frozen=True)
class OrderDecision:
    """Outcome of order validation: accepted, or rejected with a reason."""
    accepted: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "OrderDecision":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: str) -> "OrderDecision":
        return cls(accepted=False, reason=reason)

    def __bool__(self) -> bool:
        return self.accepted


def _is_positive(value: float) -> bool:
    # NaN and inf compare False against every bound, so they are rejected here.
    return math.isfinite(value) and value > 0


def portfolio_risk(snapshot: PortfolioSnapshot) -> float:
    """
    Σ |unrealized P&L| / equity over open positions.

    Returns 0.0 with no positions; +inf if equity is not positive while
    positions are open.
    """
    total = sum(abs(p.unrealized_pnl) for p in snapshot.positions.values())
    if total == 0:
        return 0.0
    if snapshot.equity <= 0:
        return float("inf")
    return total / snapshot.equity


def trade_risk(entry_price: float, stop_price: float, quantity: float, equity: float) -> float:
    """Loss if stopped out, |entry - stop| * quantity, as a fraction of equity."""
    if equity <= 0:
        raise ValueError(f"equity must be positive, got {equity}")
    return abs(entry_price - stop_price) * quantity / equity


def validate_order(
    order: Order,
    snapshot: PortfolioSnapshot,
    limits: RiskLimits,
    reference_price: Optional[float] = None,
    stop_price: Optional[float] = None,
    commission_rate: float = 0.0,
    slippage: float = 0.0,
) -> OrderDecision:
    """
    Check an order against risk limits and the current portfolio.

    Args:
        order: The order to check.
        snapshot: Current ledger snapshot.
        limits: Risk limits to enforce.
        reference_price: Price used for notional checks when the order has no
                        limit price (the engine passes the bar close).
        stop_price: Protective stop, if the signal carries one; enables the
                   max-risk-per-trade check.
        commission_rate: Used to estimate the cash a buy will consume.
        slippage: Used to estimate the cash a buy will consume.

    Returns:
        OrderDecision.accept() or OrderDecision.reject(reason).
    """
    if not _is_positive(order.quantity):
        return OrderDecision.reject(f"Quantity must be positive, got {order.quantity}")
    if order.limit_price is not None and not _is_positive(order.limit_price):
        return OrderDecision.reject(f"Limit price must be positive, got {order.limit_price}")

    if order.side is OrderSide.SELL:
        position = snapshot.get_position(order.symbol)
        if position is None:
            return OrderDecision.reject(f"No open position in {order.symbol} to sell")
        if order.quantity > position.quantity + QUANTITY_EPSILON:
            return OrderDecision.reject(
                f"Sell quantity {order.quantity} exceeds position {position.quantity} "
                f"in {order.symbol}"
            )
        return OrderDecision.accept()

    price = order.limit_price if order.limit_price is not None else reference_price
    if price is None or not _is_positive(price):
        return OrderDecision.reject(f"No valid price to evaluate buy of {order.symbol}")

    if (not snapshot.has_position(order.symbol)
            and snapshot.position_count >= limits.max_positions):
        return OrderDecision.reject(f"Maximum positions reached: {limits.max_positions}")

    if snapshot.equity <= 0:
        return OrderDecision.reject(f"Equity is not positive ({snapshot.equity:.2f})")

    notional = order.quantity * price
    size_fraction = notional / snapshot.equity
    if size_fraction > limits.max_position_size:
        return OrderDecision.reject(
            f"Position size {size_fraction:.2%} of equity exceeds limit "
            f"{limits.max_position_size:.2%}"
        )
    if notional < limits.min_position_size:
        return OrderDecision.reject(
            f"Position size {notional:.2f} below minimum {limits.min_position_size:.2f}"
        )

    if stop_price is not None:
        risk = trade_risk(price, stop_price, order.quantity, snapshot.equity)
        if risk > limits.max_risk_per_trade:
            return OrderDecision.reject(
                f"Trade risk {risk:.2%} exceeds limit {limits.max_risk_per_trade:.2%}"
            )

    current_risk = portfolio_risk(snapshot)
    if current_risk >= limits.max_portfolio_risk:
        return OrderDecision.reject(
            f"Portfolio risk {current_risk:.2%} at or above limit "
            f"{limits.max_portfolio_risk:.2%}"
        )

    if limits.daily_loss_limit is not None and snapshot.daily_loss >= limits.daily_loss_limit:
        return OrderDecision.reject(
            f"Daily loss limit reached: {snapshot.daily_loss:.2f} >= "
            f"{limits.daily_loss_limit:.2f}"
        )

    if snapshot.drawdown >= limits.max_drawdown:
        return OrderDecision.reject(
            f"Drawdown {snapshot.drawdown:.2%} at or above limit {limits.max_drawdown:.2%}"
        )

    estimated_cost = notional * (1 + slippage) * (1 + commission_rate)
    if estimated_cost > snapshot.cash:
        return OrderDecision.reject(
            f"Insufficient cash: need {estimated_cost:.2f}, have {snapshot.cash:.2f}"
        )

    return OrderDecision.accept()


def check_limits(snapshot: PortfolioSnapshot, limits: RiskLimits) -> list[str]:
    """
    List the limits the portfolio currently violates (empty if none).

    Unlike validate_order, this inspects the portfolio as a whole, e.g. for
    end-of-bar monitoring or reporting.
    """
    violations = []

    if snapshot.position_count > limits.max_positions:
        violations.append(
            f"Too many positions: {snapshot.position_count} > {limits.max_positions}"
        )

    current_risk = portfolio_risk(snapshot)
    if current_risk > limits.max_portfolio_risk:
        violations.append(
            f"Portfolio risk too high: {current_risk:.2%} > {limits.max_portfolio_risk:.2%}"
        )

    if snapshot.drawdown > limits.max_drawdown:
        violations.append(
            f"Drawdown too high: {snapshot.drawdown:.2%} > {limits.max_drawdown:.2%}"
        )

    return violations
