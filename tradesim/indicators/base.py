"""
Indicator capability interface and the shared streaming/replay machinery.

**Conceptual**: An indicator is a stateful numeric transform over a stream of
bars. Each one exposes the same small capability surface (the Indicator
protocol below) so the strategy context and the backtest loop can drive any
of them without knowing which one it is.

**One recurrence path**: every indicator implements its recurrence exactly
once, in `_step(bar)` (called by `update`). Batch evaluation is defined in
terms of it:
    calculate(bars, i)   == replay update() over a fresh instance on bars[0:i+1]
    calculate_all(bars)  == one replay, collecting every intermediate value
so incremental and historical values agree by construction instead of by two
formulas that have to be kept in sync.

**Insufficient data**: before `required_candles` bars have been seen, update
and calculate return None. They never raise and never return 0 or NaN as a
stand-in.

**Memory**: each instance keeps only the rolling window its lookback needs
plus a bounded history of computed values (IndicatorHistory), so a 10-year
minute-bar replay does not grow memory per indicator.
"""

from collections import deque
from typing import Any, Optional, Protocol, Sequence

from tradesim.data.schemas import Bar
from tradesim.errors import ConfigurationError


def validate_period(name: str, value, minimum: int = 1) -> int:
    """
    Validate an integer lookback parameter.

    Args:
        name: Parameter name used in the error message (e.g., "period").
        value: Candidate value.
        minimum: Smallest allowed value.

    Returns:
        The value, unchanged.

    Raises:
        ConfigurationError: If value is not an int (bools rejected) or < minimum.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


class IndicatorHistory:
    """
    Bounded history of computed (non-None) indicator values, newest last.

    `at(0)` is the latest value, `at(1)` the one before, and so on. Offsets
    beyond what is retained return None rather than raising, which is what
    crossover-style helpers want on the first few bars.
    """

    def __init__(self, maxlen: int):
        self._values = deque(maxlen=max(maxlen, 2))

    @property
    def maxlen(self) -> int:
        return self._values.maxlen

    def append(self, value) -> None:
        self._values.append(value)

    def clear(self) -> None:
        self._values.clear()

    def latest(self):
        return self._values[-1] if self._values else None

    def at(self, offset: int):
        if offset < 0 or offset >= len(self._values):
            return None
        return self._values[-1 - offset]

    def to_list(self) -> list:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)


class Indicator(Protocol):
    """
    Capability interface every indicator satisfies.

    Strategies and the backtest loop depend on this protocol only; concrete
    indicators are independent value types (no shared base class is required,
    although the ones in this package reuse StreamingIndicator for the
    replay plumbing).
    """

    name: str
    required_candles: int

    def calculate(self, bars: Sequence[Bar], index: Optional[int] = None) -> Any:
        ...

    def calculate_all(self, bars: Sequence[Bar]) -> list:
        ...

    def update(self, bar: Bar) -> Any:
        ...

    def reset(self) -> None:
        ...

    def value(self) -> Any:
        ...

    def value_at(self, offset: int) -> Any:
        ...

    def values(self) -> list:
        ...

    def get_config(self) -> dict:
        ...

    def has_enough_data(self, bars: Optional[Sequence[Bar]] = None) -> bool:
        ...


class StreamingIndicator:
    """
    Replay plumbing shared by the concrete indicators.

    Subclasses set `name` and `required_candles`, implement
    `_step(bar)` (the recurrence, returning a value or None),
    `_reset_state()` (clear recurrence state) and `get_config()` (constructor
    keyword arguments, used to build fresh instances for replay), then call
    `self.reset()` at the end of `__init__`.
    """

    name: str = "indicator"
    required_candles: int = 1
    history_size: Optional[int] = None

    def _step(self, bar: Bar):
        raise NotImplementedError

    def _reset_state(self) -> None:
        raise NotImplementedError

    def get_config(self) -> dict:
        raise NotImplementedError

    # -- streaming ---------------------------------------------------------

    def _record(self, value):
        self._seen += 1
        if value is not None:
            self._history.append(value)
        return value

    def update(self, bar: Bar):
        """Feed one bar; return the new value or None while warming up."""
        return self._record(self._step(bar))

    def reset(self) -> None:
        """Forget every bar seen so far."""
        bound = max(2 * self.required_candles, self.history_size or 0, 2)
        self._history = IndicatorHistory(bound)
        self._seen = 0
        self._reset_state()

    def value(self):
        """Latest computed value, or None if none yet."""
        return self._history.latest()

    def value_at(self, offset: int):
        """Computed value `offset` steps back (0 = latest), or None."""
        return self._history.at(offset)

    def values(self) -> list:
        """Retained computed values, oldest first."""
        return self._history.to_list()

    def has_enough_data(self, bars: Optional[Sequence[Bar]] = None) -> bool:
        """True if `bars` (or the bars streamed so far) cover required_candles."""
        count = self._seen if bars is None else len(bars)
        return count >= self.required_candles

    # -- replay ------------------------------------------------------------

    def fresh(self):
        """New instance with the same configuration and empty state."""
        return type(self)(**self.get_config())

    def calculate(self, bars: Sequence[Bar], index: Optional[int] = None):
        """
        Value at `index` (default: last bar), by replaying update() on a fresh
        instance over bars[0:index+1]. Does not touch this instance's state.

        Raises:
            IndexError: If index is outside [0, len(bars)).
        """
        if index is None:
            index = len(bars) - 1
        if index < 0 or index >= len(bars):
            raise IndexError(f"index {index} out of range for {len(bars)} bars")

        replica = self.fresh()
        result = None
        for bar in bars[: index + 1]:
            result = replica.update(bar)
        return result

    def calculate_all(self, bars: Sequence[Bar]) -> list:
        """Value at every index of `bars` (None while warming up), one replay."""
        replica = self.fresh()
        return [replica.update(bar) for bar in bars]

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.get_config().items())
        return f"{type(self).__name__}({params})"
