"""
Volatility indicators: ATR and Bollinger Bands.

Both use population statistics (divide by N) where a dispersion measure is
involved, consistent with the risk metrics in tradesim.analytics.
"""

from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from tradesim.data.schemas import Bar, PriceSource, get_price
from tradesim.errors import ConfigurationError
from tradesim.indicators.base import StreamingIndicator, validate_period


class ATR(StreamingIndicator):
    """
    Average True Range with Wilder smoothing.

    **Mathematical**:
      - TR_t = max(high - low, |high - close_{t-1}|, |low - close_{t-1}|)
      - first ATR = mean of the first `period` true ranges
      - then ATR = (prev_ATR * (period - 1) + TR) / period

    The first bar has no previous close, so the first TR is at index 1 and
    the first ATR at index `period` (required_candles = period + 1).
    """

    name = "ATR"

    def __init__(self, period: int = 14):
        self.period = validate_period("period", period)
        self.required_candles = self.period + 1
        self.reset()

    def _reset_state(self) -> None:
        self._prev_close = None
        self._atr = None
        self._tr_sum = 0.0
        self._tr_count = 0

    def _step(self, bar: Bar):
        prev_close = self._prev_close
        self._prev_close = bar.close
        if prev_close is None:
            return None

        true_range = max(
            bar.high - bar.low,
            abs(bar.high - prev_close),
            abs(bar.low - prev_close),
        )

        if self._atr is None:
            self._tr_sum += true_range
            self._tr_count += 1
            if self._tr_count < self.period:
                return None
            self._atr = self._tr_sum / self.period
        else:
            self._atr = (self._atr * (self.period - 1) + true_range) / self.period
        return self._atr

    def get_config(self) -> dict:
        return {"period": self.period}

    def is_volatility_increasing(self) -> bool:
        current, previous = self.value(), self.value_at(1)
        return current is not None and previous is not None and current > previous

    def is_volatility_decreasing(self) -> bool:
        current, previous = self.value(), self.value_at(1)
        return current is not None and previous is not None and current < previous

    def percentage(self, close: float) -> Optional[float]:
        """Latest ATR as a percentage of `close`, or None before warm-up."""
        current = self.value()
        if current is None:
            return None
        if close <= 0:
            raise ValueError(f"close must be positive, got {close}")
        return current / close * 100.0


@dataclass(frozen=True)
class BollingerValue:
    upper: float
    middle: float
    lower: float
    bandwidth: float
    percent_b: float


class BollingerBands(StreamingIndicator):
    """
    Bollinger Bands.

    **Mathematical**:
      - middle = SMA(period)
      - std = population standard deviation over the same window
      - upper / lower = middle ± multiplier * std
      - bandwidth = upper - lower
      - %B = (price - lower) / (upper - lower), defined as 0.5 when bandwidth == 0

    %B > 1 means price closed above the upper band, %B < 0 below the lower.
    """

    name = "BollingerBands"

    def __init__(
        self,
        period: int = 20,
        multiplier: float = 2.0,
        source: PriceSource | str = PriceSource.CLOSE,
    ):
        self.period = validate_period("period", period)
        if multiplier <= 0:
            raise ConfigurationError(f"multiplier must be positive, got {multiplier}")
        self.multiplier = float(multiplier)
        self.source = PriceSource(source)
        self.required_candles = self.period
        self.reset()

    def _reset_state(self) -> None:
        self._window = deque(maxlen=self.period)

    def _step(self, bar: Bar):
        price = get_price(bar, self.source)
        self._window.append(price)
        if len(self._window) < self.period:
            return None

        window = np.fromiter(self._window, dtype=float, count=self.period)
        middle = float(window.mean())
        std = float(window.std())
        upper = middle + self.multiplier * std
        lower = middle - self.multiplier * std
        bandwidth = upper - lower
        percent_b = 0.5 if bandwidth == 0 else (price - lower) / bandwidth

        return BollingerValue(
            upper=upper,
            middle=middle,
            lower=lower,
            bandwidth=bandwidth,
            percent_b=percent_b,
        )

    def get_config(self) -> dict:
        return {
            "period": self.period,
            "multiplier": self.multiplier,
            "source": self.source.value,
        }

    def is_above_upper_band(self) -> bool:
        current = self.value()
        return current is not None and current.percent_b > 1

    def is_below_lower_band(self) -> bool:
        current = self.value()
        return current is not None and current.percent_b < 0

    def is_squeezing(self, threshold: Optional[float] = None) -> bool:
        """Bandwidth shrank on the latest bar (and is below `threshold`, if given)."""
        current, previous = self.value(), self.value_at(1)
        if current is None or previous is None:
            return False
        narrowing = current.bandwidth < previous.bandwidth
        if threshold is not None:
            return narrowing and current.bandwidth < threshold
        return narrowing

    def is_expanding(self) -> bool:
        current, previous = self.value(), self.value_at(1)
        if current is None or previous is None:
            return False
        return current.bandwidth > previous.bandwidth
