"""
Canonical bar schema and validation for the backtest core.

**Conceptual**: This module defines the "data contract" between the outside
world (CSV files, exchange adapters, synthetic generators) and the backtest
core. The core consumes one thing only: an ordered sequence of immutable OHLCV
bars. Explicit schemas and early validation are critical for:
  - Reproducible backtests: every run sees bars in the same format.
  - Debugging: clear error messages point exactly to schema violations.
  - Correct indicators: recurrences assume strictly increasing timestamps.

**Schema philosophy**:
  - A Bar is a frozen dataclass: indicators and strategies can hold on to it
    without worrying that someone mutates it later.
  - Bars for one symbol are in strictly ascending order by timestamp (oldest
    first). The core never re-sorts; callers must supply ordered data.
  - Validation raises SchemaValidationError with actionable messages.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import pandas as pd


class SchemaValidationError(Exception):
    """
    Raised when bar data does not conform to the expected schema.

    **Conceptual**: This exception signals schema violations (missing columns,
    bad timestamps, wrong sort order, inconsistent OHLC values) and includes
    enough context (symbol, row index, specific issue) for quick remediation.
    """
    pass


class PriceSource(str, Enum):
    """
    Which price of a bar an indicator consumes.

    hl2, hlc3 and ohlc4 are the usual typical-price composites.
    """
    OPEN = "open"
    HIGH = "high"
    LOW = "low"
    CLOSE = "close"
    HL2 = "hl2"
    HLC3 = "hlc3"
    OHLC4 = "ohlc4"


@dataclass(frozen=True)
class Bar:
    """
    One OHLCV sample for a fixed time interval.

    Attributes:
        timestamp: Bar open time (pandas Timestamp, tz-aware or naive).
        open: Opening price.
        high: Highest price during the interval.
        low: Lowest price during the interval.
        close: Closing price (the price fills default to).
        volume: Traded volume during the interval.
        symbol: Instrument symbol (e.g., "BTCUSD").
        timeframe: Interval label (e.g., "1h", "1d").
    """
    timestamp: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float
    symbol: str = ""
    timeframe: str = "1d"

    @property
    def range(self) -> float:
        """High minus low."""
        return self.high - self.low


def get_price(bar: Bar, source: PriceSource | str = PriceSource.CLOSE) -> float:
    """
    Extract a price from a bar according to a price source.

    Args:
        bar: The bar to read.
        source: One of open/high/low/close/hl2/hlc3/ohlc4 (enum or string).

    Returns:
        The selected price.

    Raises:
        ValueError: If source is not a known price source.
    """
    source = PriceSource(source)
    if source is PriceSource.CLOSE:
        return bar.close
    if source is PriceSource.OPEN:
        return bar.open
    if source is PriceSource.HIGH:
        return bar.high
    if source is PriceSource.LOW:
        return bar.low
    if source is PriceSource.HL2:
        return (bar.high + bar.low) / 2
    if source is PriceSource.HLC3:
        return (bar.high + bar.low + bar.close) / 3
    return (bar.open + bar.high + bar.low + bar.close) / 4


def validate_bars(bars: Sequence[Bar], context: str | None = None) -> None:
    """
    Validate that a bar sequence is usable by the backtest core.

    **Functionally**:
      - Timestamps must be strictly increasing (no ties, no reversals).
      - high must be >= low for every bar.
      - volume must be non-negative.

    **Why strict ascending order?**
      - Indicator recurrences (EMA, RSI, ATR, OBV) are order-dependent; an
        out-of-order bar silently corrupts every later value.
      - The engine never re-sorts, so ordering is the caller's contract and
        is checked once, up front, rather than inside the loop.

    Args:
        bars: Bars to validate, oldest first.
        context: Optional description (e.g., "BTCUSD 1h") used in messages.

    Raises:
        SchemaValidationError: On the first violation found.
    """
    ctx = f"{context}: " if context else ""

    previous: Bar | None = None
    for i, bar in enumerate(bars):
        if bar.high < bar.low:
            raise SchemaValidationError(
                f"{ctx}Bar at index {i} has high ({bar.high}) below low ({bar.low})."
            )
        if bar.volume < 0:
            raise SchemaValidationError(
                f"{ctx}Bar at index {i} has negative volume ({bar.volume})."
            )
        if previous is not None and not bar.timestamp > previous.timestamp:
            raise SchemaValidationError(
                f"{ctx}Timestamps are not in strictly ascending order at index {i} "
                f"({previous.timestamp} -> {bar.timestamp}). "
                f"Hint: sort bars oldest first and drop duplicate timestamps."
            )
        previous = bar
