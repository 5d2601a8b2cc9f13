"""
Conversion between pandas price tables and Bar sequences, plus bar feeds.

**Conceptual**: Historical data usually lives in DataFrames (read from CSV,
fetched from a vendor, generated synthetically). The backtest core wants a
materialized, ascending list of Bar records. This module is the thin bridge:
  - bars_from_dataframe: DataFrame -> list[Bar] with schema checks.
  - bars_to_dataframe: list[Bar] -> DataFrame (handy for inspection/plots).
  - BarFeed: the pull interface the engine uses when it is handed a data
    source instead of a ready list ("last N bars" or "bars in range").
  - DataFrameBarFeed: an in-memory BarFeed over per-symbol DataFrames.

**Column naming**: the raw price schema uses the columns
`timestamp, open_price, high_price, low_price, closing_price, volume`.
Tables stored newest-first are accepted and flipped to oldest-first before
conversion, since the core requires ascending order.
"""

from typing import Optional, Protocol, Sequence

import pandas as pd

from tradesim.data.schemas import Bar, SchemaValidationError, validate_bars


RAW_PRICE_REQUIRED_COLUMNS = [
    'timestamp',
    'open_price',
    'high_price',
    'low_price',
    'closing_price',
    'volume',
]


def bars_from_dataframe(
    df: pd.DataFrame,
    symbol: str,
    timeframe: str = "1d",
) -> list[Bar]:
    """
    Convert a raw price DataFrame into an ascending list of Bars.

    **Functionally**:
      - Checks that all required columns are present.
      - Parses `timestamp` to datetime if it is not already.
      - Accepts ascending or descending tables; descending input is reversed.
      - Validates the resulting sequence with validate_bars.

    Args:
        df: Table with the raw price columns.
        symbol: Symbol stamped on every bar.
        timeframe: Interval label stamped on every bar.

    Returns:
        List of Bars, oldest first.

    Raises:
        SchemaValidationError: Missing columns, unparseable timestamps,
                              duplicate timestamps, or inconsistent OHLC.
    """
    missing_cols = set(RAW_PRICE_REQUIRED_COLUMNS) - set(df.columns)
    if missing_cols:
        raise SchemaValidationError(
            f"{symbol}: Missing required columns: {sorted(missing_cols)}. "
            f"Expected columns: {RAW_PRICE_REQUIRED_COLUMNS}. "
            f"Found columns: {list(df.columns)}."
        )

    if df.empty:
        return []

    timestamps = df['timestamp']
    if not pd.api.types.is_datetime64_any_dtype(timestamps):
        try:
            timestamps = pd.to_datetime(timestamps, format='ISO8601')
        except (ValueError, TypeError) as e:
            raise SchemaValidationError(
                f"{symbol}: 'timestamp' column contains non-parseable values. "
                f"Expected ISO 8601 date-time strings. Error: {e}"
            ) from e

    table = df.assign(timestamp=timestamps)
    # Newest-first tables are flipped; anything else is taken as given and
    # validate_bars reports ordering problems.
    if len(table) > 1 and table['timestamp'].iloc[0] > table['timestamp'].iloc[-1]:
        table = table.iloc[::-1]

    bars = [
        Bar(
            timestamp=pd.Timestamp(row.timestamp),
            open=float(row.open_price),
            high=float(row.high_price),
            low=float(row.low_price),
            close=float(row.closing_price),
            volume=float(row.volume),
            symbol=symbol,
            timeframe=timeframe,
        )
        for row in table.itertuples(index=False)
    ]

    validate_bars(bars, context=symbol)
    return bars


def bars_to_dataframe(bars: Sequence[Bar]) -> pd.DataFrame:
    """
    Convert Bars into a raw price DataFrame (ascending, one row per bar).

    Args:
        bars: Bars to convert.

    Returns:
        DataFrame with the raw price columns plus `symbol` and `timeframe`.
    """
    return pd.DataFrame(
        {
            'timestamp': [bar.timestamp for bar in bars],
            'open_price': [bar.open for bar in bars],
            'high_price': [bar.high for bar in bars],
            'low_price': [bar.low for bar in bars],
            'closing_price': [bar.close for bar in bars],
            'volume': [bar.volume for bar in bars],
            'symbol': [bar.symbol for bar in bars],
            'timeframe': [bar.timeframe for bar in bars],
        },
        columns=RAW_PRICE_REQUIRED_COLUMNS + ['symbol', 'timeframe'],
    )


class BarFeed(Protocol):
    """
    Pull interface for historical bars.

    **Conceptual**: The engine never subscribes to pushed data. When it is
    given a feed instead of a list, it asks once, before the loop starts, for
    either the N most recent bars or the bars inside a time range. Any
    object with these two methods (CSV reader, exchange adapter, mock) can
    be plugged in.
    """

    def get_bars(self, symbol: str, timeframe: str, limit: int) -> list[Bar]:
        """Return up to `limit` most recent bars, oldest first."""
        ...

    def get_bars_range(
        self,
        symbol: str,
        timeframe: str,
        start: Optional[pd.Timestamp] = None,
        end: Optional[pd.Timestamp] = None,
    ) -> list[Bar]:
        """
        Return bars with start <= timestamp <= end, oldest first.

        A None bound leaves that side of the range open.
        """
        ...


class DataFrameBarFeed:
    """
    In-memory BarFeed backed by one raw price DataFrame per symbol.

    Tables are converted (and validated) once at construction, so lookups
    are plain list slices.
    """

    def __init__(self, tables: dict[str, pd.DataFrame], timeframe: str = "1d"):
        self._timeframe = timeframe
        self._bars: dict[str, list[Bar]] = {
            symbol: bars_from_dataframe(df, symbol=symbol, timeframe=timeframe)
            for symbol, df in tables.items()
        }

    @property
    def symbols(self) -> list[str]:
        return sorted(self._bars)

    def _lookup(self, symbol: str, timeframe: str) -> list[Bar]:
        if symbol not in self._bars:
            raise KeyError(f"No bars loaded for symbol '{symbol}'.")
        if timeframe != self._timeframe:
            raise ValueError(
                f"Feed holds '{self._timeframe}' bars, requested '{timeframe}'."
            )
        return self._bars[symbol]

    def get_bars(self, symbol: str, timeframe: str, limit: int) -> list[Bar]:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        return list(self._lookup(symbol, timeframe)[-limit:])

    def get_bars_range(
        self,
        symbol: str,
        timeframe: str,
        start: Optional[pd.Timestamp] = None,
        end: Optional[pd.Timestamp] = None,
    ) -> list[Bar]:
        return [
            bar for bar in self._lookup(symbol, timeframe)
            if (start is None or bar.timestamp >= start)
            and (end is None or bar.timestamp <= end)
        ]
