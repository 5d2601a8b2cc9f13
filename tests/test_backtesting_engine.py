"""
Tests for tradesim/backtesting/engine.py

The hand-computed scenario runs closes [100, 100, 110, 90] with
10,000 capital, 0.1% commission and 0.05% slippage, buying 50 units on the
third bar:

  buy fill   = 110 * 1.0005 = 110.055, commission = 50 * 110.055 * 0.001 = 5.50275
  cash       = 10,000 - 5,502.75 - 5.50275 = 4,491.74725
  equity @3  = 4,491.74725 + 50 * 110 = 9,991.74725
  close fill = 90 * 0.9995 = 89.955, commission = 4.49775
  final      = 4,491.74725 + 4,497.75 - 4.49775 = 8,984.9995
"""

import numpy as np
import pandas as pd
import pytest

from tradesim.analytics.synthetic_data import bars_from_closes
from tradesim.backtesting.engine import (
    BacktestConfig,
    Backtester,
    BacktestState,
    run_backtest,
)
from tradesim.config.settings import BacktestSettings, Settings
from tradesim.data.loaders import DataFrameBarFeed, bars_to_dataframe
from tradesim.errors import ConfigurationError
from tradesim.execution.orders import OrderSide, OrderStatus
from tradesim.risk.limits import RiskLimits
from tradesim.strategies.base import (
    BuyAndHoldStrategy,
    HoldCashStrategy,
    Signal,
    buy_signal,
)
from tradesim.strategies.examples import SmaCrossoverStrategy

FULLY_INVESTED = RiskLimits(max_position_size=1.0, max_drawdown=1.0)


class ScriptedStrategy:
    """Emits pre-programmed signals by bar number (1-based) and records fills."""

    name = "scripted"

    def __init__(self, script):
        self.script = script
        self.filled = []
        self.initialized = 0

    def initialize(self, context):
        self.initialized += 1

    def on_candle(self, bar, context):
        return [make(bar) for make in self.script.get(context.bar_count, [])]

    def on_order_filled(self, order_id, context):
        self.filled.append(order_id)


def _config(**kwargs):
    values = dict(
        initial_capital=10_000.0,
        commission_rate=0.001,
        slippage=0.0005,
        risk_limits=FULLY_INVESTED,
    )
    values.update(kwargs)
    return BacktestConfig(**values)


def test_end_to_end_hand_computed_run():
    """One buy, held into a falling bar, closed by the closing phase."""
    bars = bars_from_closes([100, 100, 110, 90])
    strategy = ScriptedStrategy({3: [lambda bar: buy_signal(bar, 50)]})

    result = Backtester(strategy, bars, _config()).run()

    assert result.state is BacktestState.COMPLETE
    assert [t.side for t in result.trades] == [OrderSide.BUY, OrderSide.SELL]

    buy, sell = result.trades
    assert buy.price == pytest.approx(110.055)
    assert buy.commission == pytest.approx(5.50275)
    assert sell.price == pytest.approx(89.955)
    assert sell.commission == pytest.approx(4.49775)
    assert sell.realized_pnl == pytest.approx(-1_005.0 - 4.49775)

    assert result.final_equity == pytest.approx(8_984.9995)
    assert result.portfolio.cash == pytest.approx(8_984.9995)
    assert result.portfolio.positions == {}
    assert np.allclose(
        result.equity_curve.to_numpy(),
        [10_000.0, 10_000.0, 9_991.74725, 8_984.9995],
    )
    assert list(result.equity_curve.index) == [bar.timestamp for bar in bars]

    assert result.metrics.total_trades == 1
    assert result.metrics.losing_trades == 1
    assert result.metrics.average_loss == pytest.approx(1_015.0005)
    assert result.total_return_pct == pytest.approx((8_984.9995 / 10_000 - 1) * 100)
    assert strategy.filled == ["order-1", "order-2"]


def test_hold_cash_keeps_equity_flat():
    bars = bars_from_closes([100, 105, 95, 120, 80])
    result = run_backtest(HoldCashStrategy(), bars, _config())

    assert result.trades == []
    assert result.orders == []
    assert (result.equity_curve == 10_000.0).all()
    assert result.final_equity == 10_000.0
    assert result.metrics.total_trades == 0
    assert result.summary["state"] == "complete"
    assert result.summary["bars"] == 5


def test_state_transitions_and_double_run():
    bars = bars_from_closes([100, 101, 102])
    backtester = Backtester(HoldCashStrategy(), bars, _config())
    assert backtester.state is BacktestState.INITIALIZED
    assert backtester.context is None

    backtester.run()
    assert backtester.state is BacktestState.COMPLETE
    with pytest.raises(RuntimeError):
        backtester.run()


def test_reset_and_rerun_is_identical(synthetic_bars):
    backtester = Backtester(SmaCrossoverStrategy(10, 30), synthetic_bars, _config())
    first = backtester.run()

    backtester.reset()
    assert backtester.state is BacktestState.INITIALIZED
    assert backtester.ledger.equity == 10_000.0
    second = backtester.run()

    assert [t.id for t in first.trades] == [t.id for t in second.trades]
    assert [t.price for t in first.trades] == [t.price for t in second.trades]
    assert first.final_equity == second.final_equity
    pd.testing.assert_series_equal(first.equity_curve, second.equity_curve)


def test_should_stop_ends_run_early_and_still_closes():
    """Stopping after two bars closes the open position at the second close."""
    bars = bars_from_closes([100, 110, 120, 130])
    strategy = ScriptedStrategy({1: [lambda bar: buy_signal(bar, 10)]})
    calls = {"n": 0}

    def should_stop():
        calls["n"] += 1
        return calls["n"] > 2

    config = _config(commission_rate=0.0, slippage=0.0)
    result = Backtester(strategy, bars, config).run(should_stop=should_stop)

    assert len(result.equity_curve) == 2
    assert result.trades[-1].side is OrderSide.SELL
    assert result.trades[-1].price == pytest.approx(110.0)
    assert result.final_equity == pytest.approx(10_100.0)
    assert result.state is BacktestState.COMPLETE


def test_buy_and_hold_rejected_by_default_position_limit():
    """95% of equity in one order breaks the default 25% max position size."""
    bars = bars_from_closes([100, 101, 102])
    result = run_backtest(BuyAndHoldStrategy(), bars, _config(risk_limits=RiskLimits()))

    assert result.trades == []
    assert len(result.orders) == 1
    assert len(result.rejected_orders) == 1
    rejected = result.rejected_orders[0]
    assert rejected.status is OrderStatus.REJECTED
    assert "Position size" in rejected.reason
    assert result.summary["rejected_orders"] == 1


@pytest.mark.parametrize("quantity", [float("nan"), float("inf")])
def test_non_finite_quantity_is_rejected_and_equity_stays_finite(quantity):
    """A NaN or inf buy on bar 2 is rejected before it reaches cash or positions."""
    bars = bars_from_closes([100, 101, 102, 103])
    strategy = ScriptedStrategy({2: [lambda bar: buy_signal(bar, quantity)]})

    result = run_backtest(strategy, bars, _config())

    assert result.trades == []
    assert len(result.rejected_orders) == 1
    assert "Quantity must be positive" in result.rejected_orders[0].reason
    assert result.final_equity == 10_000.0
    assert np.isfinite(result.equity_curve.to_numpy()).all()


def test_buy_and_hold_with_full_allocation():
    bars = bars_from_closes([100, 120])
    result = run_backtest(
        BuyAndHoldStrategy(), bars, _config(commission_rate=0.0, slippage=0.0)
    )

    # floor(10,000 * 0.95 / 100) = 95 units, +20 each.
    assert result.trades[0].quantity == 95
    assert result.final_equity == pytest.approx(10_000.0 + 95 * 20)


def test_second_signal_sees_ledger_after_first_fill():
    """Two 60-unit buys at 100 in one bar: the second finds only 4,000 cash."""
    bars = bars_from_closes([100, 100])
    strategy = ScriptedStrategy({
        1: [lambda bar: buy_signal(bar, 60), lambda bar: buy_signal(bar, 60)],
    })
    result = run_backtest(strategy, bars, _config(commission_rate=0.0, slippage=0.0))

    assert [o.status for o in result.orders[:2]] == [OrderStatus.FILLED, OrderStatus.REJECTED]
    assert "Insufficient cash" in result.rejected_orders[0].reason
    assert strategy.filled == ["order-1", "order-3"]


def test_signal_for_another_symbol_is_rejected():
    bars = bars_from_closes([100, 100], symbol="AAA")

    def other_symbol(bar):
        return Signal(symbol="BBB", side=OrderSide.BUY, quantity=1, timestamp=bar.timestamp)

    result = run_backtest(ScriptedStrategy({1: [other_symbol]}), bars, _config())

    assert result.trades == []
    assert result.rejected_orders[0].symbol == "BBB"
    assert "No bar for BBB" in result.rejected_orders[0].reason


def test_strategy_sees_registered_indicators_updated(synthetic_bars):
    strategy = SmaCrossoverStrategy(10, 30)
    backtester = Backtester(strategy, synthetic_bars[:50], _config())
    backtester.run()

    closes = [bar.close for bar in synthetic_bars[:50]]
    assert backtester.context.bar_count == 50
    assert strategy.slow_sma.value() == pytest.approx(np.mean(closes[-30:]))


def test_sma_crossover_ledger_reconciles(synthetic_bars):
    """Flat at the end: equity = initial + Σ realized - Σ buy commissions."""
    result = run_backtest(SmaCrossoverStrategy(10, 30), synthetic_bars, _config())

    assert result.trades
    sides = [t.side for t in result.trades]
    assert sides[::2] == [OrderSide.BUY] * len(sides[::2])
    assert sides[1::2] == [OrderSide.SELL] * len(sides[1::2])

    realized = sum(t.realized_pnl for t in result.trades if t.side is OrderSide.SELL)
    buy_commissions = sum(t.commission for t in result.trades if t.side is OrderSide.BUY)
    assert result.final_equity == pytest.approx(10_000.0 + realized - buy_commissions)
    assert result.portfolio.positions == {}
    assert result.metrics.total_trades == len(result.trades) // 2


@pytest.mark.parametrize("kwargs", [
    {"initial_capital": 0.0},
    {"commission_rate": 1.0},
    {"slippage": -0.01},
    {"periods_per_year": 0},
    {"start": "2024-02-01", "end": "2024-01-01"},
])
def test_config_validation(kwargs):
    with pytest.raises(ConfigurationError):
        BacktestConfig(**kwargs)


def test_config_from_settings_with_overrides():
    settings = Settings(backtest=BacktestSettings(initial_capital=5_000.0, commission_rate=0.002))
    config = BacktestConfig.from_settings(settings, slippage=0.0)

    assert config.initial_capital == 5_000.0
    assert config.commission_rate == 0.002
    assert config.slippage == 0.0
    assert config.risk_limits == RiskLimits()


def test_config_from_environment(monkeypatch):
    monkeypatch.setenv("BACKTEST_INITIAL_CAPITAL", "25000")
    monkeypatch.setenv("RISK_MAX_POSITIONS", "3")
    config = BacktestConfig.from_settings()

    assert config.initial_capital == 25_000.0
    assert config.risk_limits.max_positions == 3


def test_empty_window_is_a_configuration_error():
    bars = bars_from_closes([100, 101])
    with pytest.raises(ConfigurationError):
        Backtester(HoldCashStrategy(), bars, _config(start="2030-01-01"))


def test_start_end_window_on_bar_list():
    bars = bars_from_closes([100, 101, 102, 103, 104])
    backtester = Backtester(
        HoldCashStrategy(), bars, _config(start="2024-01-02", end="2024-01-04")
    )
    assert [bar.close for bar in backtester.bars] == [101.0, 102.0, 103.0]


def test_runs_from_dataframe_feed(synthetic_bars):
    feed = DataFrameBarFeed({"SYN": bars_to_dataframe(synthetic_bars)})

    latest = Backtester(HoldCashStrategy(), feed, _config(), symbol="SYN", limit=100)
    assert latest.bars == synthetic_bars[-100:]

    window = Backtester(
        HoldCashStrategy(),
        feed,
        _config(start=synthetic_bars[10].timestamp, end=synthetic_bars[19].timestamp),
        symbol="SYN",
    )
    assert window.bars == synthetic_bars[10:20]

    with pytest.raises(ConfigurationError):
        Backtester(HoldCashStrategy(), feed, _config())


def test_open_ended_window_on_utc_feed():
    """A start-only or end-only window works with timezone-aware feed bars."""
    bars = bars_from_closes([100, 101, 102, 103, 104], symbol="UTC",
                            start="2024-01-01T00:00:00Z")
    feed = DataFrameBarFeed({"UTC": bars_to_dataframe(bars)})

    from_start = Backtester(
        HoldCashStrategy(), feed, _config(start="2024-01-03T00:00:00Z"), symbol="UTC"
    )
    assert [bar.close for bar in from_start.bars] == [102.0, 103.0, 104.0]
    assert str(from_start.bars[0].timestamp.tz) == "UTC"

    until_end = Backtester(
        HoldCashStrategy(), feed, _config(end="2024-01-02T00:00:00Z"), symbol="UTC"
    )
    assert [bar.close for bar in until_end.bars] == [100.0, 101.0]

    result = from_start.run()
    assert result.final_equity == 10_000.0
    assert len(result.equity_curve) == 3
