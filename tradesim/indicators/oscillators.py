"""
Momentum oscillators: RSI, MACD, Stochastic.

**Degenerate-state policy** (MACD and Stochastic): both are built from a
smoothed series of a derived series, and the outer smoothing needs its own
warm-up. Rather than returning None for those extra bars, they report the
unsmoothed value in its place:
  - MACD: until the signal EMA has `signal` macd points, signal = macd and
    histogram = 0.
  - Stochastic: until the %K smoothing has `smooth_k` raw values, %K = raw %K;
    until %D has `d_period` smoothed values, %D = %K.
Strategies that look for crossovers therefore never see one during warm-up
(the two lines coincide), and the first real values appear as early as the
base lookback allows.
"""

from collections import deque
from dataclasses import dataclass

from tradesim.data.schemas import Bar, PriceSource, get_price
from tradesim.errors import ConfigurationError
from tradesim.indicators.base import StreamingIndicator, validate_period
from tradesim.indicators.moving_averages import EMA, SMA


class RSI(StreamingIndicator):
    """
    Relative Strength Index with Wilder smoothing.

    **Mathematical**:
      - delta_t = price_t - price_{t-1}; gain = max(delta, 0), loss = max(-delta, 0)
      - first averages: simple mean of the first `period` gains / losses
      - then avg = (prev_avg * (period - 1) + current) / period, separately
      - RSI = 100 if avg_loss == 0 else 100 - 100 / (1 + avg_gain / avg_loss)

    Needs period + 1 bars (period deltas) before the first value.
    """

    name = "RSI"

    def __init__(self, period: int = 14, source: PriceSource | str = PriceSource.CLOSE):
        self.period = validate_period("period", period)
        self.source = PriceSource(source)
        self.required_candles = self.period + 1
        self.reset()

    def _reset_state(self) -> None:
        self._prev_price = None
        self._avg_gain = None
        self._avg_loss = None
        self._gain_sum = 0.0
        self._loss_sum = 0.0
        self._deltas = 0

    def _step(self, bar: Bar):
        price = get_price(bar, self.source)
        if self._prev_price is None:
            self._prev_price = price
            return None

        delta = price - self._prev_price
        self._prev_price = price
        gain = delta if delta > 0 else 0.0
        loss = -delta if delta < 0 else 0.0

        if self._avg_gain is None:
            self._gain_sum += gain
            self._loss_sum += loss
            self._deltas += 1
            if self._deltas < self.period:
                return None
            self._avg_gain = self._gain_sum / self.period
            self._avg_loss = self._loss_sum / self.period
        else:
            self._avg_gain = (self._avg_gain * (self.period - 1) + gain) / self.period
            self._avg_loss = (self._avg_loss * (self.period - 1) + loss) / self.period

        if self._avg_loss == 0:
            return 100.0
        rs = self._avg_gain / self._avg_loss
        return 100.0 - 100.0 / (1.0 + rs)

    def get_config(self) -> dict:
        return {"period": self.period, "source": self.source.value}

    def is_oversold(self, threshold: float = 30.0) -> bool:
        current = self.value()
        return current is not None and current < threshold

    def is_overbought(self, threshold: float = 70.0) -> bool:
        current = self.value()
        return current is not None and current > threshold


@dataclass(frozen=True)
class MACDValue:
    macd: float
    signal: float
    histogram: float


class MACD(StreamingIndicator):
    """
    Moving Average Convergence Divergence.

    macd = EMA(fast) - EMA(slow), available from index slow-1;
    signal = EMA(signal) of the macd series (SMA-seeded like any EMA);
    histogram = macd - signal. See the module docstring for the warm-up
    policy of the signal line.

    Raises:
        ConfigurationError: If fast >= slow or any period is invalid.
    """

    name = "MACD"

    def __init__(
        self,
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
        source: PriceSource | str = PriceSource.CLOSE,
    ):
        self.fast = validate_period("fast", fast)
        self.slow = validate_period("slow", slow)
        self.signal = validate_period("signal", signal)
        if self.fast >= self.slow:
            raise ConfigurationError(
                f"fast period ({self.fast}) must be shorter than slow period ({self.slow})"
            )
        self.source = PriceSource(source)
        self.required_candles = self.slow
        self.reset()

    def _reset_state(self) -> None:
        self._fast_ema = EMA(self.fast)
        self._slow_ema = EMA(self.slow)
        self._signal_ema = EMA(self.signal)

    def _step(self, bar: Bar):
        price = get_price(bar, self.source)
        fast = self._fast_ema.update_value(price)
        slow = self._slow_ema.update_value(price)
        if fast is None or slow is None:
            return None

        macd = fast - slow
        signal = self._signal_ema.update_value(macd)
        if signal is None:
            signal = macd
        return MACDValue(macd=macd, signal=signal, histogram=macd - signal)

    def get_config(self) -> dict:
        return {
            "fast": self.fast,
            "slow": self.slow,
            "signal": self.signal,
            "source": self.source.value,
        }

    def is_bullish_crossover(self) -> bool:
        """MACD line crossed above the signal line on the latest bar."""
        current, previous = self.value(), self.value_at(1)
        if current is None or previous is None:
            return False
        return previous.macd <= previous.signal and current.macd > current.signal

    def is_bearish_crossover(self) -> bool:
        """MACD line crossed below the signal line on the latest bar."""
        current, previous = self.value(), self.value_at(1)
        if current is None or previous is None:
            return False
        return previous.macd >= previous.signal and current.macd < current.signal

    def is_histogram_increasing(self) -> bool:
        current, previous = self.value(), self.value_at(1)
        if current is None or previous is None:
            return False
        return current.histogram > previous.histogram


@dataclass(frozen=True)
class StochasticValue:
    k: float
    d: float


class Stochastic(StreamingIndicator):
    """
    Stochastic oscillator (%K / %D).

    **Mathematical**:
      - raw %K = 100 * (close - LL) / (HH - LL) over the last k_period bars,
        50 when HH == LL (flat window)
      - %K = SMA(smooth_k) of raw %K (smooth_k = 1 means unsmoothed)
      - %D = SMA(d_period) of %K

    First value at index k_period - 1; see the module docstring for how
    %K and %D are filled while their smoothing windows warm up.
    """

    name = "Stochastic"

    def __init__(self, k_period: int = 14, d_period: int = 3, smooth_k: int = 3):
        self.k_period = validate_period("k_period", k_period)
        self.d_period = validate_period("d_period", d_period)
        self.smooth_k = validate_period("smooth_k", smooth_k)
        self.required_candles = self.k_period
        self.reset()

    def _reset_state(self) -> None:
        self._window = deque(maxlen=self.k_period)
        self._k_smoother = SMA(self.smooth_k)
        self._d_smoother = SMA(self.d_period)

    def _step(self, bar: Bar):
        self._window.append(bar)
        if len(self._window) < self.k_period:
            return None

        highest = max(b.high for b in self._window)
        lowest = min(b.low for b in self._window)
        if highest == lowest:
            raw_k = 50.0
        else:
            raw_k = 100.0 * (bar.close - lowest) / (highest - lowest)

        smoothed = self._k_smoother.update_value(raw_k)
        if smoothed is None:
            return StochasticValue(k=raw_k, d=raw_k)

        d = self._d_smoother.update_value(smoothed)
        return StochasticValue(k=smoothed, d=smoothed if d is None else d)

    def get_config(self) -> dict:
        return {
            "k_period": self.k_period,
            "d_period": self.d_period,
            "smooth_k": self.smooth_k,
        }

    def is_oversold(self, threshold: float = 20.0) -> bool:
        current = self.value()
        return current is not None and current.k < threshold

    def is_overbought(self, threshold: float = 80.0) -> bool:
        current = self.value()
        return current is not None and current.k > threshold

    def is_bullish_crossover(self) -> bool:
        """%K crossed above %D on the latest bar."""
        current, previous = self.value(), self.value_at(1)
        if current is None or previous is None:
            return False
        return previous.k <= previous.d and current.k > current.d

    def is_bearish_crossover(self) -> bool:
        """%K crossed below %D on the latest bar."""
        current, previous = self.value(), self.value_at(1)
        if current is None or previous is None:
            return False
        return previous.k >= previous.d and current.k < current.d
