"""
Tests for tradesim/indicators/base.py

The central property: for every indicator, the value produced by streaming
update() bar by bar equals calculate(bars, i) (a fresh replay over
bars[0:i+1]) at every index, on a few hundred synthetic bars.
"""

import dataclasses

import numpy as np
import pytest

from tradesim.analytics.synthetic_data import bars_from_closes, generate_synthetic_bars
from tradesim.errors import ConfigurationError
from tradesim.indicators.base import IndicatorHistory, validate_period
from tradesim.indicators.moving_averages import EMA, SMA, WMA
from tradesim.indicators.oscillators import MACD, RSI, Stochastic
from tradesim.indicators.volatility import ATR, BollingerBands
from tradesim.indicators.volume import OBV, VolumeProfile


def _flatten(value) -> list:
    """Numbers of an indicator value (float or frozen value record) as a flat list."""
    if dataclasses.is_dataclass(value):
        flat = []
        for item in dataclasses.astuple(value):
            flat.extend(item if isinstance(item, tuple) else [item])
        return flat
    return [value]


def _assert_same(streamed, replayed):
    if streamed is None or replayed is None:
        assert streamed is None and replayed is None
        return
    assert np.allclose(_flatten(streamed), _flatten(replayed), rtol=1e-9, atol=0.0)


ALL_INDICATORS = [
    lambda: SMA(20),
    lambda: EMA(20),
    lambda: WMA(20),
    lambda: RSI(14),
    lambda: MACD(12, 26, 9),
    lambda: Stochastic(14, 3, 3),
    lambda: ATR(14),
    lambda: BollingerBands(20, 2.0),
    lambda: OBV(),
    lambda: VolumeProfile(period=100, bins=50),
]


@pytest.mark.parametrize("make_indicator", ALL_INDICATORS)
def test_streaming_matches_replay(make_indicator):
    """
    update() streaming equals calculate(bars, i) on 500 synthetic bars.

    Indices are sampled with a stride (plus both ends of the warm-up) to keep
    the quadratic replay cost small.
    """
    bars = generate_synthetic_bars(500, seed=11)
    indicator = make_indicator()
    streamed = [indicator.update(bar) for bar in bars]

    required = indicator.required_candles
    indices = sorted(
        set(range(0, len(bars), 37))
        | {required - 2, required - 1, required, len(bars) - 1}
    )
    for i in indices:
        if i < 0:
            continue
        _assert_same(streamed[i], indicator.calculate(bars, i))


@pytest.mark.parametrize("make_indicator", ALL_INDICATORS)
def test_calculate_all_matches_streaming(make_indicator):
    """calculate_all is a single replay and equals streaming at every index."""
    bars = generate_synthetic_bars(300, seed=5)
    indicator = make_indicator()
    streamed = [indicator.update(bar) for bar in bars]
    batch = indicator.fresh().calculate_all(bars)

    assert len(batch) == len(streamed)
    for s, b in zip(streamed, batch):
        _assert_same(s, b)


@pytest.mark.parametrize("make_indicator", ALL_INDICATORS)
def test_none_until_required_candles(make_indicator):
    """Exactly the first required_candles - 1 updates return None."""
    bars = generate_synthetic_bars(150, seed=3)
    indicator = make_indicator()
    values = [indicator.update(bar) for bar in bars]
    required = indicator.required_candles

    assert all(v is None for v in values[: required - 1])
    assert values[required - 1] is not None
    assert indicator.has_enough_data()


def test_calculate_does_not_touch_instance_state():
    """calculate() replays on a fresh copy; the caller's instance is unchanged."""
    bars = bars_from_closes(range(1, 31))
    sma = SMA(5)
    for bar in bars[:10]:
        sma.update(bar)
    before = sma.value()

    sma.calculate(bars, 29)

    assert sma.value() == before


def test_calculate_index_out_of_range():
    """An index outside the bar list raises IndexError."""
    bars = bars_from_closes([1, 2, 3])
    with pytest.raises(IndexError):
        SMA(2).calculate(bars, 3)
    with pytest.raises(IndexError):
        SMA(2).calculate(bars, -1)


def test_reset_forgets_history():
    """After reset() the indicator warms up again from scratch."""
    bars = bars_from_closes([1, 2, 3, 4, 5])
    sma = SMA(3)
    for bar in bars:
        sma.update(bar)
    assert sma.value() == pytest.approx(4.0)

    sma.reset()

    assert sma.value() is None
    assert sma.values() == []
    assert not sma.has_enough_data()
    assert sma.update(bars[0]) is None


def test_history_is_bounded():
    """Retained history is capped at max(2 * required_candles, 2)."""
    bars = bars_from_closes(range(1, 101))
    sma = SMA(5)
    for bar in bars:
        sma.update(bar)
    assert len(sma.values()) == 10
    assert sma.value_at(0) == pytest.approx(98.0)
    assert sma.value_at(1) == pytest.approx(97.0)
    assert sma.value_at(10) is None


def test_has_enough_data_with_explicit_bars():
    """has_enough_data(bars) checks the given list, not the streamed count."""
    rsi = RSI(14)
    assert not rsi.has_enough_data(bars_from_closes(range(14)))
    assert rsi.has_enough_data(bars_from_closes(range(15)))


def test_indicator_history_offsets():
    """at(0) is the latest value; out-of-range offsets return None."""
    history = IndicatorHistory(3)
    for v in [1, 2, 3, 4]:
        history.append(v)
    assert history.to_list() == [2, 3, 4]
    assert history.latest() == 4
    assert history.at(2) == 2
    assert history.at(3) is None
    assert history.at(-1) is None


@pytest.mark.parametrize("bad", [0, -3, 2.5, "10", True])
def test_validate_period_rejects_invalid_values(bad):
    """Non-integers, bools and values below the minimum are configuration errors."""
    with pytest.raises(ConfigurationError):
        validate_period("period", bad)


def test_invalid_period_raises_at_construction():
    """Indicators validate their periods in the constructor."""
    with pytest.raises(ConfigurationError):
        SMA(0)
    with pytest.raises(ConfigurationError):
        VolumeProfile(period=10, bins=0)


def test_repr_shows_config():
    assert repr(SMA(7)) == "SMA(period=7, source='close')"
