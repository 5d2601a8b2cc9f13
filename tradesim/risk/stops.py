"""
Stop-loss price helpers.

Strategies compute a stop price with one of these helpers and exit (emit a
sell signal) when is_stop_triggered says so. The backtest loop itself does not
place resting stop orders.
"""

from typing import Optional

import pandas as pd

from tradesim.portfolio.ledger import PositionSide


def fixed_stop(
    entry_price: float,
    side: PositionSide | str = PositionSide.LONG,
    percent: Optional[float] = None,
    price: Optional[float] = None,
) -> float:
    """
    Fixed stop: an explicit price, or `percent` away from the entry.

    Raises:
        ValueError: If neither price nor percent is given.
    """
    if price is not None:
        return price
    if percent is None:
        raise ValueError("fixed stop requires either price or percent")
    if PositionSide(side) is PositionSide.LONG:
        return entry_price * (1 - percent)
    return entry_price * (1 + percent)


def atr_stop(
    reference_price: float,
    atr: Optional[float],
    multiplier: float = 2.0,
    side: PositionSide | str = PositionSide.LONG,
) -> Optional[float]:
    """
    Stop `multiplier` ATRs away from `reference_price`.

    Returns None while the ATR is still warming up, leaving the fallback
    choice to the caller.
    """
    if atr is None:
        return None
    distance = atr * multiplier
    if PositionSide(side) is PositionSide.LONG:
        return reference_price - distance
    return reference_price + distance


class TrailingStop:
    """
    Trailing stop following the best price seen since entry.

    Longs trail the high-water mark: stop = hwm * (1 - trailing_percent).
    Shorts trail the low-water mark: stop = lwm * (1 + trailing_percent).
    The stop only ever moves in the position's favour.
    """

    def __init__(
        self,
        entry_price: float,
        trailing_percent: float,
        side: PositionSide | str = PositionSide.LONG,
    ):
        if not 0 < trailing_percent < 1:
            raise ValueError(f"trailing_percent must be in (0, 1), got {trailing_percent}")
        self.trailing_percent = trailing_percent
        self.side = PositionSide(side)
        self.water_mark = entry_price

    @property
    def stop_price(self) -> float:
        if self.side is PositionSide.LONG:
            return self.water_mark * (1 - self.trailing_percent)
        return self.water_mark * (1 + self.trailing_percent)

    def update(self, price: float) -> float:
        """Feed the latest price; returns the (possibly raised) stop."""
        if self.side is PositionSide.LONG:
            self.water_mark = max(self.water_mark, price)
        else:
            self.water_mark = min(self.water_mark, price)
        return self.stop_price

    def is_triggered(self, price: float) -> bool:
        return is_stop_triggered(self.stop_price, price, self.side)


def time_stop_triggered(
    opened_at: pd.Timestamp,
    now: pd.Timestamp,
    max_holding: pd.Timedelta,
) -> bool:
    """True once a position has been held for at least `max_holding`."""
    return now - opened_at >= max_holding


def is_stop_triggered(
    stop_price: float,
    current_price: float,
    side: PositionSide | str = PositionSide.LONG,
) -> bool:
    if PositionSide(side) is PositionSide.LONG:
        return current_price <= stop_price
    return current_price >= stop_price
