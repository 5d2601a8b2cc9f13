"""
Volume indicators: On-Balance Volume and Volume Profile.
"""

from collections import deque
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from tradesim.data.schemas import Bar
from tradesim.indicators.base import StreamingIndicator, validate_period


class OBV(StreamingIndicator):
    """
    On-Balance Volume.

    **Mathematical**:
      - first value (index 1): +volume_1 if close_1 > close_0,
        -volume_1 if close_1 < close_0, 0 if equal
      - then OBV_t = OBV_{t-1} ± volume_t by the sign of the close change,
        unchanged when the close is unchanged

    Only the direction of change matters, not its size. `history_size`
    controls how many OBV values are retained for the trend and divergence
    helpers.
    """

    name = "OBV"

    def __init__(self, history_size: int = 20):
        self.history_size = validate_period("history_size", history_size, minimum=2)
        self.required_candles = 2
        self.reset()

    def _reset_state(self) -> None:
        self._prev_close = None
        self._obv = None

    def _step(self, bar: Bar):
        prev_close = self._prev_close
        self._prev_close = bar.close
        if prev_close is None:
            return None

        if bar.close > prev_close:
            change = bar.volume
        elif bar.close < prev_close:
            change = -bar.volume
        else:
            change = 0.0

        self._obv = change if self._obv is None else self._obv + change
        return self._obv

    def get_config(self) -> dict:
        return {"history_size": self.history_size}

    def _recent(self, lookback: int) -> Optional[list]:
        retained = self.values()
        if lookback < 2 or len(retained) < lookback:
            return None
        return retained[-lookback:]

    def is_trending_up(self, lookback: int = 3) -> bool:
        """OBV strictly rose over each of the last `lookback` values."""
        recent = self._recent(lookback)
        if recent is None:
            return False
        return all(later > earlier for earlier, later in zip(recent, recent[1:]))

    def is_trending_down(self, lookback: int = 3) -> bool:
        recent = self._recent(lookback)
        if recent is None:
            return False
        return all(later < earlier for earlier, later in zip(recent, recent[1:]))

    def has_bullish_divergence(self, bars: Sequence[Bar], lookback: int = 10) -> bool:
        """
        Price made a lower low over the window while OBV rose.

        `bars` must be the bars this instance was fed (their tail is compared
        against the tail of the retained OBV values).
        """
        recent = self._recent(lookback)
        if recent is None or len(bars) < lookback:
            return False
        window = bars[-lookback:]
        return window[-1].low < window[0].low and recent[-1] > recent[0]

    def has_bearish_divergence(self, bars: Sequence[Bar], lookback: int = 10) -> bool:
        """Price made a higher high over the window while OBV fell."""
        recent = self._recent(lookback)
        if recent is None or len(bars) < lookback:
            return False
        window = bars[-lookback:]
        return window[-1].high > window[0].high and recent[-1] < recent[0]


VALUE_AREA_FRACTION = 0.70
VALUE_AREA_TOLERANCE = 1e-12


@dataclass(frozen=True)
class VolumeProfileValue:
    """
    Volume distribution over the lookback window.

    Attributes:
        poc: Point of Control, midpoint of the highest-volume bin.
        value_area_high: Upper edge of the value area.
        value_area_low: Lower edge of the value area.
        total_volume: Sum of bar volumes in the window.
        bin_size: Width of one price bin (0 for a flat window).
        levels: Volume per bin, lowest price bin first.
    """
    poc: float
    value_area_high: float
    value_area_low: float
    total_volume: float
    bin_size: float
    levels: tuple


class VolumeProfile(StreamingIndicator):
    """
    Volume Profile over the last `period` bars.

    **Functionally**:
    - Split [lowest low, highest high] of the window into `bins` equal bins.
    - Spread each bar's volume over the bins its [low, high] overlaps,
      proportionally to the overlap length. A bar with high == low puts its
      whole volume in the bin containing its price (the top edge belongs to
      the last bin).
    - POC = midpoint of the max-volume bin (lowest such bin on ties).
    - Value Area: start at the POC bin and add one neighbouring bin at a
      time, whichever side has more volume (upper side on ties), until at
      least 70% of the window's volume is covered.
    - A flat window (highest == lowest) reports POC = VAL = VAH = that price
      with all volume in the first bin and bin_size 0.

    Recomputed from the retained window on each update; cost is
    O(period * bins) per bar.
    """

    name = "VolumeProfile"

    def __init__(self, period: int = 100, bins: int = 50):
        self.period = validate_period("period", period)
        self.bins = validate_period("bins", bins)
        self.required_candles = self.period
        self.reset()

    def _reset_state(self) -> None:
        self._window = deque(maxlen=self.period)

    def _step(self, bar: Bar):
        self._window.append(bar)
        if len(self._window) < self.period:
            return None
        return self._profile(list(self._window))

    def _profile(self, window: list) -> VolumeProfileValue:
        lows = np.array([b.low for b in window], dtype=float)
        highs = np.array([b.high for b in window], dtype=float)
        volumes = np.array([b.volume for b in window], dtype=float)
        closes = np.array([b.close for b in window], dtype=float)

        lowest = float(lows.min())
        highest = float(highs.max())
        total_volume = float(volumes.sum())

        if highest == lowest:
            levels = np.zeros(self.bins)
            levels[0] = total_volume
            return VolumeProfileValue(
                poc=lowest,
                value_area_high=lowest,
                value_area_low=lowest,
                total_volume=total_volume,
                bin_size=0.0,
                levels=tuple(levels.tolist()),
            )

        bin_size = (highest - lowest) / self.bins
        edges = lowest + bin_size * np.arange(self.bins + 1)
        levels = np.zeros(self.bins)

        ranges = highs - lows
        spread = ranges > 0
        if spread.any():
            # overlap[i, j] = length of bar i's [low, high] inside bin j
            overlap = (
                np.minimum(highs[spread, None], edges[None, 1:])
                - np.maximum(lows[spread, None], edges[None, :-1])
            ).clip(min=0.0)
            per_unit = volumes[spread] / ranges[spread]
            levels += (overlap * per_unit[:, None]).sum(axis=0)

        flat = ~spread
        if flat.any():
            idx = np.floor((closes[flat] - lowest) / bin_size).astype(int)
            np.add.at(levels, np.clip(idx, 0, self.bins - 1), volumes[flat])

        poc_bin = int(np.argmax(levels))
        low_bin, high_bin = self._value_area(levels, poc_bin)

        return VolumeProfileValue(
            poc=lowest + (poc_bin + 0.5) * bin_size,
            value_area_high=lowest + (high_bin + 1) * bin_size,
            value_area_low=lowest + low_bin * bin_size,
            total_volume=total_volume,
            bin_size=bin_size,
            levels=tuple(levels.tolist()),
        )

    def _value_area(self, levels: np.ndarray, poc_bin: int) -> tuple[int, int]:
        total = float(levels.sum())
        # Stop once the area reaches the target up to float rounding of the sums.
        target = total * VALUE_AREA_FRACTION - VALUE_AREA_TOLERANCE * total
        covered = float(levels[poc_bin])
        low_bin = high_bin = poc_bin
        last = len(levels) - 1

        while covered < target and (low_bin > 0 or high_bin < last):
            below = levels[low_bin - 1] if low_bin > 0 else -np.inf
            above = levels[high_bin + 1] if high_bin < last else -np.inf
            if below > above:
                low_bin -= 1
                covered += float(levels[low_bin])
            else:
                high_bin += 1
                covered += float(levels[high_bin])

        return low_bin, high_bin

    def get_config(self) -> dict:
        return {"period": self.period, "bins": self.bins}

    def is_in_value_area(self, price: float) -> bool:
        current = self.value()
        if current is None:
            return False
        return current.value_area_low <= price <= current.value_area_high

    def is_near_poc(self, price: float, threshold: float = 0.005) -> bool:
        """|price - POC| / POC <= threshold (0.005 = within 0.5%)."""
        if threshold < 0:
            raise ValueError(f"threshold must be non-negative, got {threshold}")
        current = self.value()
        if current is None or current.poc == 0:
            return False
        return abs(price - current.poc) / current.poc <= threshold
