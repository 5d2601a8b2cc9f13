"""
Moving averages: SMA, EMA, WMA.

All three read one price per bar (selected by `source`, default close) and
also accept bare prices through `update_value(price)`, which is how MACD and
Stochastic compose them over derived series (macd line, raw %K) without
fabricating bars.
"""

from collections import deque

from tradesim.data.schemas import Bar, PriceSource, get_price
from tradesim.indicators.base import StreamingIndicator, validate_period


class _PriceIndicator(StreamingIndicator):
    """Bar-to-price adapter: `_step(bar)` delegates to `_step_value(price)`."""

    source: PriceSource = PriceSource.CLOSE

    def _step_value(self, price: float):
        raise NotImplementedError

    def _step(self, bar: Bar):
        return self._step_value(get_price(bar, self.source))

    def update_value(self, price: float):
        """Feed one bare price; same recurrence as update(bar)."""
        return self._record(self._step_value(float(price)))


class SMA(_PriceIndicator):
    """
    Simple moving average of the last `period` prices.

    O(1) per update: a running sum over a fixed-size window.
    """

    name = "SMA"

    def __init__(self, period: int = 20, source: PriceSource | str = PriceSource.CLOSE):
        self.period = validate_period("period", period)
        self.source = PriceSource(source)
        self.required_candles = self.period
        self.reset()

    def _reset_state(self) -> None:
        self._window = deque(maxlen=self.period)
        self._sum = 0.0

    def _step_value(self, price: float):
        if len(self._window) == self.period:
            self._sum -= self._window[0]
        self._window.append(price)
        self._sum += price

        if len(self._window) < self.period:
            return None
        return self._sum / self.period

    def get_config(self) -> dict:
        return {"period": self.period, "source": self.source.value}


class EMA(_PriceIndicator):
    """
    Exponential moving average.

    **Mathematical**:
      - seed (index period-1) = mean of the first `period` prices
      - thereafter ema_t = price_t * k + ema_{t-1} * (1 - k),  k = 2 / (period + 1)

    Seeding with the SMA (rather than the first price) means the first value
    appears at the same index as SMA(period) and equals it.
    """

    name = "EMA"

    def __init__(self, period: int = 20, source: PriceSource | str = PriceSource.CLOSE):
        self.period = validate_period("period", period)
        self.source = PriceSource(source)
        self.required_candles = self.period
        self.multiplier = 2.0 / (self.period + 1)
        self.reset()

    def _reset_state(self) -> None:
        self._ema = None
        self._seed_sum = 0.0
        self._seed_count = 0

    def _step_value(self, price: float):
        if self._ema is None:
            self._seed_sum += price
            self._seed_count += 1
            if self._seed_count < self.period:
                return None
            self._ema = self._seed_sum / self.period
            return self._ema

        self._ema = price * self.multiplier + self._ema * (1 - self.multiplier)
        return self._ema

    def get_config(self) -> dict:
        return {"period": self.period, "source": self.source.value}


class WMA(_PriceIndicator):
    """
    Linearly weighted moving average.

    Weights 1..N from oldest to newest, normalized by N(N+1)/2, so the most
    recent price counts N times as much as the oldest one in the window.
    """

    name = "WMA"

    def __init__(self, period: int = 20, source: PriceSource | str = PriceSource.CLOSE):
        self.period = validate_period("period", period)
        self.source = PriceSource(source)
        self.required_candles = self.period
        self._denominator = self.period * (self.period + 1) / 2
        self.reset()

    def _reset_state(self) -> None:
        self._window = deque(maxlen=self.period)

    def _step_value(self, price: float):
        self._window.append(price)
        if len(self._window) < self.period:
            return None
        weighted = sum(weight * p for weight, p in enumerate(self._window, start=1))
        return weighted / self._denominator

    def get_config(self) -> dict:
        return {"period": self.period, "source": self.source.value}
