"""
Tests for tradesim/risk/limits.py

Order validation is exercised against real ledger snapshots so that the
checks see the same numbers the backtest loop would.
"""

import pandas as pd
import pytest

from tradesim.errors import ConfigurationError
from tradesim.execution.orders import Order, OrderSide, Trade
from tradesim.portfolio.ledger import PortfolioLedger
from tradesim.risk.limits import (
    OrderDecision,
    RiskLimits,
    check_limits,
    portfolio_risk,
    trade_risk,
    validate_order,
)

T0 = pd.Timestamp("2024-01-01")


def _order(side, quantity, symbol="TEST", limit_price=None):
    return Order(
        id="order-1",
        symbol=symbol,
        side=OrderSide(side),
        quantity=quantity,
        timestamp=T0,
        limit_price=limit_price,
    )


def _buy_fill(ledger, symbol, quantity, price):
    ledger.apply_trade(Trade(
        id=f"fill-{symbol}",
        order_id="x",
        symbol=symbol,
        side=OrderSide.BUY,
        quantity=quantity,
        price=price,
        commission=0.0,
        timestamp=T0,
    ))


def test_default_limits():
    limits = RiskLimits()
    assert limits.max_risk_per_trade == 0.05
    assert limits.max_portfolio_risk == 0.10
    assert limits.max_drawdown == 0.20
    assert limits.max_positions == 5
    assert limits.max_position_size == 0.25
    assert limits.min_position_size == 10.0
    assert limits.daily_loss_limit is None


@pytest.mark.parametrize("kwargs", [
    {"max_position_size": 0.0},
    {"max_drawdown": 1.5},
    {"max_positions": 0},
    {"max_positions": 2.5},
    {"min_position_size": -1.0},
    {"daily_loss_limit": 0.0},
    {"daily_loss_limit": -100.0},
])
def test_invalid_limits_raise(kwargs):
    with pytest.raises(ConfigurationError):
        RiskLimits(**kwargs)


def test_buy_within_limits_is_accepted():
    """A 20% of equity buy with ample cash passes every check."""
    snap = PortfolioLedger(10_000).snapshot()
    decision = validate_order(_order("buy", 20), snap, RiskLimits(), reference_price=100.0)
    assert decision == OrderDecision.accept()
    assert decision


def test_buy_over_max_position_size_is_rejected():
    snap = PortfolioLedger(10_000).snapshot()
    decision = validate_order(_order("buy", 30), snap, RiskLimits(), reference_price=100.0)
    assert not decision.accepted
    assert "Position size" in decision.reason


def test_buy_below_min_position_size_is_rejected():
    snap = PortfolioLedger(10_000).snapshot()
    decision = validate_order(_order("buy", 1), snap, RiskLimits(), reference_price=5.0)
    assert not decision
    assert "below minimum" in decision.reason


def test_buy_without_price_is_rejected():
    snap = PortfolioLedger(10_000).snapshot()
    assert not validate_order(_order("buy", 1), snap, RiskLimits())


def test_non_positive_quantity_is_rejected():
    snap = PortfolioLedger(10_000).snapshot()
    assert not validate_order(_order("buy", 0), snap, RiskLimits(), reference_price=10.0)


@pytest.mark.parametrize("quantity", [float("nan"), float("inf"), -float("inf")])
def test_non_finite_quantity_is_rejected(quantity):
    """NaN fails every comparison, so it must be caught before the size checks."""
    ledger = PortfolioLedger(10_000)
    _buy_fill(ledger, "TEST", 5, 100.0)
    snap = ledger.snapshot()
    limits = RiskLimits(max_position_size=1.0)

    buy = validate_order(_order("buy", quantity), snap, limits, reference_price=100.0)
    assert not buy
    assert "Quantity must be positive" in buy.reason
    assert not validate_order(_order("sell", quantity), snap, limits)


def test_non_finite_prices_are_rejected():
    snap = PortfolioLedger(10_000).snapshot()
    limits = RiskLimits(max_position_size=1.0)

    limit_nan = validate_order(
        _order("buy", 1, limit_price=float("nan")), snap, limits, reference_price=100.0
    )
    assert not limit_nan
    assert "Limit price" in limit_nan.reason
    assert not validate_order(_order("buy", 1), snap, limits, reference_price=float("nan"))
    assert not validate_order(_order("buy", 1), snap, limits, reference_price=float("inf"))


def test_max_positions_blocks_new_symbols_but_not_increases_or_exits():
    """
    With max_positions=2 and two symbols held:
      - a buy of a third symbol is rejected,
      - a buy of a held symbol is allowed,
      - selling a held symbol is always allowed.
    """
    ledger = PortfolioLedger(100_000)
    _buy_fill(ledger, "AAA", 10, 100.0)
    _buy_fill(ledger, "BBB", 10, 100.0)
    snap = ledger.snapshot()
    limits = RiskLimits(max_positions=2)

    assert not validate_order(_order("buy", 10, "CCC"), snap, limits, reference_price=100.0)
    assert validate_order(_order("buy", 10, "AAA"), snap, limits, reference_price=100.0)
    assert validate_order(_order("sell", 10, "AAA"), snap, limits)


def test_sell_checks_only_position_and_quantity():
    ledger = PortfolioLedger(10_000)
    _buy_fill(ledger, "TEST", 5, 100.0)
    snap = ledger.snapshot()

    assert validate_order(_order("sell", 5), snap, RiskLimits())
    assert not validate_order(_order("sell", 6), snap, RiskLimits())
    assert not validate_order(_order("sell", 1, "OTHER"), snap, RiskLimits())


def test_exit_allowed_in_deep_drawdown():
    """Drawdown beyond the limit blocks entries, never exits."""
    ledger = PortfolioLedger(10_000)
    _buy_fill(ledger, "TEST", 50, 100.0)
    ledger.mark_price("TEST", 40.0)
    snap = ledger.snapshot()
    limits = RiskLimits(max_position_size=1.0, max_portfolio_risk=1.0)

    assert snap.drawdown == pytest.approx(0.30)
    buy = validate_order(_order("buy", 1), snap, limits, reference_price=40.0)
    assert not buy
    assert "Drawdown" in buy.reason
    assert validate_order(_order("sell", 50), snap, limits)


def test_daily_loss_limit_blocks_entries_until_the_next_day():
    """
    Buy 10 AAA at 100 on day 0, mark at 50: daily loss 500 >= a 400 limit,
    so a new entry is rejected while the exit is still allowed. The first
    mark on day 1 starts a new day at equity 9,500 and entries resume.
    """
    ledger = PortfolioLedger(10_000)
    _buy_fill(ledger, "AAA", 10, 100.0)
    ledger.mark_price("AAA", 50.0, T0)
    limits = RiskLimits(
        max_position_size=1.0, max_portfolio_risk=1.0, max_drawdown=1.0, daily_loss_limit=400.0
    )

    snap = ledger.snapshot()
    assert snap.daily_loss == pytest.approx(500.0)
    buy = validate_order(_order("buy", 1, "BBB"), snap, limits, reference_price=50.0)
    assert not buy
    assert "Daily loss limit" in buy.reason
    assert validate_order(_order("sell", 10, "AAA"), snap, limits)

    ledger.mark_price("AAA", 50.0, T0 + pd.Timedelta(days=1))
    next_day = ledger.snapshot()
    assert next_day.day_start_equity == pytest.approx(9_500.0)
    assert validate_order(_order("buy", 1, "BBB"), next_day, limits, reference_price=50.0)


def test_portfolio_risk_blocks_new_entries():
    """|unrealized| / equity = 500 / 10,500 ≈ 4.8% ≥ a 4% limit → rejected."""
    ledger = PortfolioLedger(10_000)
    _buy_fill(ledger, "AAA", 10, 100.0)
    ledger.mark_price("AAA", 150.0)
    snap = ledger.snapshot()

    assert portfolio_risk(snap) == pytest.approx(500 / 10_500)
    decision = validate_order(
        _order("buy", 1, "BBB"), snap, RiskLimits(max_portfolio_risk=0.04), reference_price=100.0
    )
    assert not decision
    assert "Portfolio risk" in decision.reason


def test_trade_risk_check_with_stop():
    """20 units risking 10 each = 200 = 2% of 10,000 equity; passes 5%, fails 1%."""
    snap = PortfolioLedger(10_000).snapshot()
    assert trade_risk(100.0, 90.0, 20, 10_000) == pytest.approx(0.02)
    assert validate_order(_order("buy", 20), snap, RiskLimits(), reference_price=100.0, stop_price=90.0)
    assert not validate_order(
        _order("buy", 20), snap, RiskLimits(max_risk_per_trade=0.01),
        reference_price=100.0, stop_price=90.0,
    )


def test_insufficient_cash_accounts_for_costs():
    """A buy of exactly all cash fails once slippage and commission are added."""
    snap = PortfolioLedger(10_000).snapshot()
    limits = RiskLimits(max_position_size=1.0)
    assert validate_order(_order("buy", 100), snap, limits, reference_price=100.0)
    decision = validate_order(
        _order("buy", 100), snap, limits, reference_price=100.0,
        commission_rate=0.001, slippage=0.0005,
    )
    assert not decision
    assert "Insufficient cash" in decision.reason


def test_limit_price_takes_precedence_over_reference():
    snap = PortfolioLedger(10_000).snapshot()
    # 20 @ 200 = 40% of equity despite a reference price of 100
    assert not validate_order(
        _order("buy", 20, limit_price=200.0), snap, RiskLimits(), reference_price=100.0
    )


def test_check_limits_lists_violations():
    ledger = PortfolioLedger(10_000)
    _buy_fill(ledger, "TEST", 50, 100.0)
    ledger.mark_price("TEST", 40.0)
    violations = check_limits(ledger.snapshot(), RiskLimits())
    assert any("Drawdown" in v for v in violations)
    assert any("Portfolio risk" in v for v in violations)
    assert check_limits(PortfolioLedger(10_000).snapshot(), RiskLimits()) == []
