"""
Tests for tradesim/portfolio/pnl.py
"""

import pandas as pd
import pytest

from tradesim.execution.orders import OrderSide, Trade
from tradesim.portfolio.pnl import (
    average_entry_price,
    break_even_price,
    risk_reward,
    round_trip_pnls,
    round_trips,
    trade_pnl,
)

T0 = pd.Timestamp("2024-01-01")


def _trade(i, side, quantity, price, commission=0.0, symbol="TEST", realized_pnl=None, day=None):
    return Trade(
        id=f"trade-{i}",
        order_id=f"order-{i}",
        symbol=symbol,
        side=OrderSide(side),
        quantity=quantity,
        price=price,
        commission=commission,
        timestamp=T0 + pd.Timedelta(days=i if day is None else day),
        realized_pnl=realized_pnl,
    )


def test_trade_pnl_long():
    """Long 10 @ 100 → 110 with $2 commission: gross 100, net 98, 9.8%."""
    pnl = trade_pnl(100.0, 110.0, 10, OrderSide.BUY, commission=2.0)
    assert pnl.gross_pnl == pytest.approx(100.0)
    assert pnl.net_pnl == pytest.approx(98.0)
    assert pnl.pnl_pct == pytest.approx(9.8)


def test_trade_pnl_short():
    """Short 10 @ 100 covered at 90: gross +100."""
    pnl = trade_pnl(100.0, 90.0, 10, "sell")
    assert pnl.gross_pnl == pytest.approx(100.0)


def test_trade_pnl_rejects_bad_quantity():
    with pytest.raises(ValueError):
        trade_pnl(100.0, 110.0, 0)


def test_round_trip_groups_scale_in_and_scale_out():
    """
    Two buys and two sells of one symbol form ONE round trip.

    net = Σ sell realized - Σ buy commissions = (30 + 50) - (1 + 1) = 78
    """
    trades = [
        _trade(1, "buy", 5, 100.0, 1.0),
        _trade(2, "buy", 5, 100.0, 1.0),
        _trade(3, "sell", 4, 110.0, 0.5, realized_pnl=30.0),
        _trade(4, "sell", 6, 110.0, 0.5, realized_pnl=50.0),
    ]
    trips = round_trips(trades)

    assert len(trips) == 1
    trip = trips[0]
    assert trip.net_pnl == pytest.approx(78.0)
    assert trip.commission == pytest.approx(3.0)
    assert trip.quantity == 10
    assert trip.trade_ids == ["trade-1", "trade-2", "trade-3", "trade-4"]
    assert trip.hold_time == pd.Timedelta(days=3)


def test_round_trips_are_per_symbol_and_ignore_open_trips():
    """Interleaved symbols pair correctly; an open trip is not reported."""
    trades = [
        _trade(1, "buy", 1, 10.0, symbol="AAA"),
        _trade(2, "buy", 1, 20.0, symbol="BBB"),
        _trade(3, "sell", 1, 12.0, symbol="AAA", realized_pnl=2.0),
        _trade(4, "buy", 1, 11.0, symbol="AAA"),
    ]
    assert round_trip_pnls(trades) == [pytest.approx(2.0)]


def test_round_trips_reject_orphan_sell():
    with pytest.raises(ValueError):
        round_trips([_trade(1, "sell", 1, 10.0, realized_pnl=0.0)])


def test_average_entry_price():
    trades = [_trade(1, "buy", 10, 100.0), _trade(2, "buy", 30, 120.0)]
    assert average_entry_price(trades) == pytest.approx(115.0)
    assert average_entry_price([]) == 0.0


def test_break_even_price():
    """$5 commission on 10 units needs a 0.50 move to break even."""
    assert break_even_price(100.0, 5.0, 10) == pytest.approx(100.5)
    assert break_even_price(100.0, 5.0, 10, "sell") == pytest.approx(99.5)


def test_risk_reward():
    """Entry 100, target 130, stop 90 → 3:1."""
    assert risk_reward(100.0, 130.0, 90.0) == pytest.approx(3.0)
    assert risk_reward(100.0, 70.0, 110.0, "sell") == pytest.approx(3.0)
    assert risk_reward(100.0, 130.0, 100.0) == 0.0
