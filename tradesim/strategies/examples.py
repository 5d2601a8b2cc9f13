"""
Example signal strategies.

Both are long-only and size entries as a fraction of available cash
(`floor(cash * position_fraction / close)` units). With the default
RiskLimits (max 25% of equity per position) a fraction above 0.25 is
rejected by order validation, so pass a matching `risk_limits` in
BacktestConfig when running them fully invested.
"""

import logging
import math

from tradesim.data.schemas import Bar
from tradesim.errors import ConfigurationError
from tradesim.indicators.moving_averages import SMA
from tradesim.indicators.oscillators import RSI
from tradesim.strategies.base import Signal, buy_signal, sell_signal
from tradesim.strategies.context import StrategyContext

logger = logging.getLogger(__name__)


def _entry_quantity(context: StrategyContext, bar: Bar, fraction: float) -> float:
    return float(math.floor(context.portfolio().cash * fraction / bar.close))


class SmaCrossoverStrategy:
    """
    Trend following on a fast/slow SMA crossover.

    - Flat and fast SMA crosses above slow SMA → buy.
    - Long and fast SMA crosses below slow SMA → sell the whole position.

    A cross is "previous fast <= previous slow and current fast > current slow"
    (and the mirror image for the exit), so the first bar on which both
    averages exist can never signal.
    """

    name = "sma-crossover"

    def __init__(self, fast_period: int = 20, slow_period: int = 50,
                 position_fraction: float = 0.95):
        if fast_period >= slow_period:
            raise ConfigurationError(
                f"fast_period ({fast_period}) must be shorter than slow_period ({slow_period})"
            )
        if not 0 < position_fraction <= 1:
            raise ConfigurationError(
                f"position_fraction must be in (0, 1], got {position_fraction}"
            )
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.position_fraction = position_fraction
        self.fast_sma = None
        self.slow_sma = None

    def initialize(self, context: StrategyContext) -> None:
        self.fast_sma = SMA(self.fast_period)
        self.slow_sma = SMA(self.slow_period)
        context.register_indicator("fast_sma", self.fast_sma)
        context.register_indicator("slow_sma", self.slow_sma)
        logger.info(f"{self.name} initialized with {self.fast_period}/{self.slow_period} SMA")

    def on_candle(self, bar: Bar, context: StrategyContext) -> list[Signal]:
        fast_now, slow_now = self.fast_sma.value(), self.slow_sma.value()
        fast_prev, slow_prev = self.fast_sma.value_at(1), self.slow_sma.value_at(1)
        if None in (fast_now, slow_now, fast_prev, slow_prev):
            return []

        if not context.has_position(bar.symbol):
            if fast_prev <= slow_prev and fast_now > slow_now:
                quantity = _entry_quantity(context, bar, self.position_fraction)
                if quantity > 0:
                    return [buy_signal(
                        bar,
                        quantity,
                        reason=f"Bullish crossover: fast SMA {fast_now:.2f} > slow SMA {slow_now:.2f}",
                        strategy=self.name,
                    )]
            return []

        if fast_prev >= slow_prev and fast_now < slow_now:
            position = context.position(bar.symbol)
            return [sell_signal(
                bar,
                position.quantity,
                reason=f"Bearish crossover: fast SMA {fast_now:.2f} < slow SMA {slow_now:.2f}",
                strategy=self.name,
            )]
        return []

    def on_order_filled(self, order_id: str, context: StrategyContext) -> None:
        logger.debug(f"{self.name}: {order_id} filled")


class RsiMeanReversionStrategy:
    """
    Mean reversion on RSI extremes.

    - Flat and RSI < oversold → buy.
    - Long and RSI > overbought → sell the whole position.
    """

    name = "rsi-mean-reversion"

    def __init__(self, period: int = 14, oversold: float = 30.0, overbought: float = 70.0,
                 position_fraction: float = 0.95):
        if not 0 <= oversold < overbought <= 100:
            raise ConfigurationError(
                f"need 0 <= oversold < overbought <= 100, got {oversold}/{overbought}"
            )
        if not 0 < position_fraction <= 1:
            raise ConfigurationError(
                f"position_fraction must be in (0, 1], got {position_fraction}"
            )
        self.period = period
        self.oversold = oversold
        self.overbought = overbought
        self.position_fraction = position_fraction
        self.rsi = None

    def initialize(self, context: StrategyContext) -> None:
        self.rsi = RSI(self.period)
        context.register_indicator("rsi", self.rsi)
        logger.info(f"{self.name} initialized with {self.period}-period RSI")

    def on_candle(self, bar: Bar, context: StrategyContext) -> list[Signal]:
        value = self.rsi.value()
        if value is None:
            return []

        if not context.has_position(bar.symbol):
            if self.rsi.is_oversold(self.oversold):
                quantity = _entry_quantity(context, bar, self.position_fraction)
                if quantity > 0:
                    return [buy_signal(
                        bar, quantity,
                        reason=f"RSI oversold: {value:.2f} < {self.oversold}",
                        strategy=self.name,
                    )]
            return []

        if self.rsi.is_overbought(self.overbought):
            position = context.position(bar.symbol)
            return [sell_signal(
                bar, position.quantity,
                reason=f"RSI overbought: {value:.2f} > {self.overbought}",
                strategy=self.name,
            )]
        return []
