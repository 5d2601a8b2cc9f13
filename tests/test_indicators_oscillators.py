"""
Tests for tradesim/indicators/oscillators.py

Covers RSI bounds and extremes, and the warm-up (degenerate) states of MACD
and Stochastic.
"""

import pytest

from tradesim.analytics.synthetic_data import bars_from_closes, generate_synthetic_bars
from tradesim.errors import ConfigurationError
from tradesim.indicators.moving_averages import EMA
from tradesim.indicators.oscillators import MACD, RSI, Stochastic, StochasticValue


def test_rsi_always_within_bounds():
    """RSI stays in [0, 100] over a volatile synthetic path."""
    bars = generate_synthetic_bars(500, volatility=0.6, seed=21)
    values = [v for v in RSI(14).calculate_all(bars) if v is not None]
    assert values
    assert all(0.0 <= v <= 100.0 for v in values)


def test_rsi_increasing_series_is_100():
    """Only gains → average loss 0 → RSI 100."""
    bars = bars_from_closes(range(1, 40))
    assert RSI(14).calculate(bars) == pytest.approx(100.0)


def test_rsi_decreasing_series_is_0():
    """Only losses → average gain 0 → RSI 0."""
    bars = bars_from_closes(range(40, 1, -1))
    assert RSI(14).calculate(bars) == pytest.approx(0.0)


def test_rsi_needs_period_plus_one_bars():
    """RSI(14) needs 15 bars (14 deltas) for its first value."""
    bars = bars_from_closes(range(1, 16))
    rsi = RSI(14)
    values = [rsi.update(bar) for bar in bars]
    assert values[13] is None
    assert values[14] is not None


def test_rsi_first_value_hand_computed():
    """
    RSI(2) on closes [10, 11, 10]:
      deltas +1, -1 → avg gain 0.5, avg loss 0.5 → RS 1 → RSI 50.
    Next close 12 (delta +2):
      avg gain (0.5 + 2) / 2 = 1.25, avg loss (0.5 + 0) / 2 = 0.25 → RS 5 → RSI 83.33.
    """
    rsi = RSI(2)
    values = [rsi.update(bar) for bar in bars_from_closes([10, 11, 10, 12])]
    assert values[2] == pytest.approx(50.0)
    assert values[3] == pytest.approx(100 - 100 / 6)


def test_rsi_threshold_helpers():
    rsi = RSI(14)
    for bar in bars_from_closes(range(40, 1, -1)):
        rsi.update(bar)
    assert rsi.is_oversold()
    assert not rsi.is_overbought()


def test_macd_rejects_fast_not_shorter_than_slow():
    with pytest.raises(ConfigurationError):
        MACD(fast=26, slow=12)
    with pytest.raises(ConfigurationError):
        MACD(fast=10, slow=10)


def test_macd_signal_equals_macd_until_signal_warms_up():
    """
    MACD(3, 6, 4): the macd line starts at index 5; the signal EMA needs 4
    macd points, so at indices 5..7 signal == macd and histogram == 0. From
    index 8 the signal is a real EMA of the macd line.
    """
    bars = generate_synthetic_bars(40, seed=8)
    macd = MACD(3, 6, 4)
    values = [macd.update(bar) for bar in bars]

    assert all(v is None for v in values[:5])
    for v in values[5:8]:
        assert v.signal == v.macd
        assert v.histogram == 0.0

    fast, slow = EMA(3), EMA(6)
    macd_line = []
    for bar in bars:
        f, s = fast.update(bar), slow.update(bar)
        if f is not None and s is not None:
            macd_line.append(f - s)
    assert values[8].signal == pytest.approx(sum(macd_line[:4]) / 4)
    assert values[8].histogram == pytest.approx(values[8].macd - values[8].signal)


def test_macd_of_constant_series_is_zero():
    bars = bars_from_closes([50.0] * 60)
    value = MACD().calculate(bars)
    assert value.macd == pytest.approx(0.0)
    assert value.signal == pytest.approx(0.0)
    assert value.histogram == pytest.approx(0.0)


def test_macd_no_crossover_during_warmup():
    """While signal == macd the crossover helpers report nothing."""
    bars = generate_synthetic_bars(30, seed=12)
    macd = MACD(3, 6, 9)
    for bar in bars[:8]:
        macd.update(bar)
        assert not macd.is_bullish_crossover()
        assert not macd.is_bearish_crossover()


def test_stochastic_flat_window_is_50():
    """Highest high == lowest low → raw %K 50 (no division by zero)."""
    bars = bars_from_closes([10.0] * 20)
    value = Stochastic(5, 3, 3).calculate(bars)
    assert value == StochasticValue(k=50.0, d=50.0)


def test_stochastic_close_at_high_is_100():
    """Rising flat bars close at the window high → %K = %D = 100."""
    bars = bars_from_closes(range(1, 30))
    value = Stochastic(5, 3, 3).calculate(bars)
    assert value.k == pytest.approx(100.0)
    assert value.d == pytest.approx(100.0)


def test_stochastic_warmup_states():
    """
    Stochastic(5, d=3, smooth_k=3): first value at index 4.
      - indices 4, 5: %K = %D = raw %K (smoothing not yet full)
      - index 6: %K = mean of raw %K at 4..6, %D = %K
      - index 7: %D still equals %K
      - index 8: %D = mean of smoothed %K at 6..8
    """
    bars = generate_synthetic_bars(30, seed=13)
    stoch = Stochastic(5, 3, 3)
    values = [stoch.update(bar) for bar in bars]

    raw = []
    for i in range(4, 9):
        window = bars[i - 4: i + 1]
        hh = max(b.high for b in window)
        ll = min(b.low for b in window)
        raw.append(100 * (bars[i].close - ll) / (hh - ll))

    assert all(v is None for v in values[:4])
    assert values[4].k == pytest.approx(raw[0]) and values[4].d == values[4].k
    assert values[5].k == pytest.approx(raw[1]) and values[5].d == values[5].k
    smoothed = [sum(raw[j - 2: j + 1]) / 3 for j in (2, 3, 4)]
    assert values[6].k == pytest.approx(smoothed[0]) and values[6].d == values[6].k
    assert values[7].k == pytest.approx(smoothed[1]) and values[7].d == values[7].k
    assert values[8].k == pytest.approx(smoothed[2])
    assert values[8].d == pytest.approx(sum(smoothed) / 3)


def test_stochastic_threshold_helpers():
    stoch = Stochastic(5, 3, 1)
    for bar in bars_from_closes(range(30, 1, -1)):
        stoch.update(bar)
    assert stoch.is_oversold()
    assert not stoch.is_overbought()
