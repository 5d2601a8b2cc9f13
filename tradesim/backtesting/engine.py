"""
Event-driven backtest engine.

**Conceptual**: The backtester is the orchestrator that brings together a
strategy, a bar sequence, the fill simulator and the portfolio ledger. It
walks the bars oldest to newest and, for each bar, runs a fixed pipeline:

    price update → indicator update → strategy signals → validation → fill
    → ledger mutation → equity point

Nothing is re-entrant: every signal of a bar is validated against the ledger
as it stands after the previous signal's fill, and the next bar is not
touched until the current one is fully processed.

**Why an explicit state machine?**
  - `INITIALIZED → RUNNING → CLOSING → COMPLETE` makes the lifecycle
    observable (tests and callers can assert where a run stopped).
  - A Backtester owns its ledger, context and trade lists. Running it twice
    without reset() would silently mix two runs, so that is an error.

**Closing phase**: after the last bar every open position is sold at the
final close through the normal signal path (validation, slippage,
commission). The result therefore never reports unrealized P&L as if it
were money in the bank.

**Teaching note**: The two most common backtest bugs are time travel
(looking at future bars) and ledger drift (cash and positions disagreeing
with the trade list). This loop prevents the first by only ever handing the
strategy bars it has already seen, and the second by routing every cash
movement through PortfolioLedger.apply_trade.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

import pandas as pd

from tradesim.analytics.performance import PerformanceMetrics, calculate_performance
from tradesim.config.settings import Settings, get_settings
from tradesim.data.loaders import BarFeed
from tradesim.data.schemas import Bar, validate_bars
from tradesim.errors import ConfigurationError
from tradesim.execution.fill_simulator import FillSimulator
from tradesim.execution.orders import IdSequence, Order, OrderSide, Trade
from tradesim.portfolio.ledger import PortfolioLedger, PortfolioSnapshot
from tradesim.risk.limits import OrderDecision, RiskLimits, validate_order
from tradesim.strategies.base import Signal, SignalType, Strategy
from tradesim.strategies.context import DEFAULT_MAX_BARS, StrategyContext

logger = logging.getLogger(__name__)

PROGRESS_LOG_INTERVAL = 100
DEFAULT_FEED_LIMIT = 1_000


class BacktestState(str, Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    CLOSING = "closing"
    COMPLETE = "complete"


@dataclass
class BacktestConfig:
    """
    Parameters for a backtest run.

    **Conceptual**: BacktestConfig holds everything that shapes the economics
    of a run: capital, cost model, risk limits and an optional date window.
    Keeping these in one validated object makes parameter sweeps a matter of
    building many configs.

    Attributes:
        initial_capital: Starting cash. Must be positive.
        commission_rate: Commission as a fraction of fill notional, in [0, 1).
        slippage: Adverse price move as a fraction of the base price, in [0, 1).
        start: Optional first timestamp (inclusive) of the traded window.
        end: Optional last timestamp (inclusive) of the traded window.
        risk_limits: Limits enforced by order validation.
        periods_per_year: Bars per year, for annualized metrics.
        max_context_bars: Bars retained in the StrategyContext.
        risk_free_rate: Per-period risk-free rate for Sharpe/Sortino.
    """
    initial_capital: float = 100_000.0
    commission_rate: float = 0.001
    slippage: float = 0.0005
    start: Optional[pd.Timestamp] = None
    end: Optional[pd.Timestamp] = None
    risk_limits: RiskLimits = field(default_factory=RiskLimits)
    periods_per_year: int = 252
    max_context_bars: int = DEFAULT_MAX_BARS
    risk_free_rate: float = 0.0

    def __post_init__(self):
        if self.initial_capital <= 0:
            raise ConfigurationError(
                f"initial_capital must be positive, got: {self.initial_capital}"
            )
        if not 0 <= self.commission_rate < 1:
            raise ConfigurationError(
                f"commission_rate must be in [0, 1), got: {self.commission_rate}"
            )
        if not 0 <= self.slippage < 1:
            raise ConfigurationError(f"slippage must be in [0, 1), got: {self.slippage}")
        if self.periods_per_year <= 0:
            raise ConfigurationError(
                f"periods_per_year must be positive, got: {self.periods_per_year}"
            )
        if self.max_context_bars <= 0:
            raise ConfigurationError(
                f"max_context_bars must be positive, got: {self.max_context_bars}"
            )
        if self.start is not None:
            self.start = pd.Timestamp(self.start)
        if self.end is not None:
            self.end = pd.Timestamp(self.end)
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ConfigurationError(f"start ({self.start}) is after end ({self.end})")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "BacktestConfig":
        """
        Build a config from environment-backed settings.

        Args:
            settings: Settings to use (default: get_settings()).
            **overrides: Field values that take precedence over the settings.
        """
        settings = settings or get_settings()
        values = dict(
            initial_capital=settings.backtest.initial_capital,
            commission_rate=settings.backtest.commission_rate,
            slippage=settings.backtest.slippage,
            periods_per_year=settings.backtest.periods_per_year,
            risk_limits=settings.risk,
        )
        values.update(overrides)
        return cls(**values)


@dataclass
class BacktestResult:
    """
    Everything a finished (or stopped) run produced.

    Attributes:
        trades: Fills in execution order.
        orders: Every order created, filled or rejected, in submission order.
        rejected_orders: The rejected subset of `orders`.
        portfolio: Final ledger snapshot.
        summary: Flat dict of headline numbers (see PortfolioLedger.summary).
        equity_curve: Mark-to-market equity per processed bar, indexed by bar
                     timestamp. The last point includes the closing phase.
        initial_capital: Starting cash.
        final_equity: Equity after the closing phase.
        total_return_pct: (final / initial - 1) * 100.
        total_trades: Number of fills.
        state: Backtest state when the result was taken.
        metrics: PerformanceMetrics computed from trades and the equity curve.
        config: The BacktestConfig of the run.
    """
    trades: List[Trade]
    orders: List[Order]
    rejected_orders: List[Order]
    portfolio: PortfolioSnapshot
    summary: dict
    equity_curve: pd.Series
    initial_capital: float
    final_equity: float
    total_return_pct: float
    total_trades: int
    state: BacktestState
    metrics: PerformanceMetrics
    config: Optional[BacktestConfig] = None


class Backtester:
    """
    Runs one strategy over one symbol's bars.

    Args:
        strategy: Object implementing the Strategy protocol.
        data: Bars (oldest first) or a BarFeed to pull them from.
        config: Run configuration (default: BacktestConfig()).
        symbol: Symbol to request from a feed. For bar sequences it defaults
               to the first bar's symbol.
        timeframe: Timeframe to request from a feed.
        limit: Number of most recent bars to request from a feed when the
              config has no start/end window.

    Raises:
        ConfigurationError: No bars to run on, or a feed without a symbol.
        SchemaValidationError: Bars out of order or malformed.
    """

    def __init__(
        self,
        strategy: Strategy,
        data: Sequence[Bar] | BarFeed,
        config: Optional[BacktestConfig] = None,
        symbol: Optional[str] = None,
        timeframe: str = "1d",
        limit: int = DEFAULT_FEED_LIMIT,
    ):
        self.strategy = strategy
        self.config = config or BacktestConfig()

        bars = self._load_bars(data, symbol, timeframe, limit)
        if not bars:
            raise ConfigurationError("No bars to backtest (check data and start/end window)")
        validate_bars(bars, context=symbol or bars[0].symbol)
        self._bars = bars
        self.symbol = symbol or bars[0].symbol

        self._ledger = PortfolioLedger(self.config.initial_capital)
        self._fills = FillSimulator(self.config.commission_rate, self.config.slippage)
        self._order_ids = IdSequence("order")
        self._context: Optional[StrategyContext] = None
        self._state = BacktestState.INITIALIZED
        self._trades: List[Trade] = []
        self._orders: List[Order] = []
        self._rejected: List[Order] = []
        self._equity_points: List[float] = []
        self._equity_index: List[pd.Timestamp] = []

    def _load_bars(
        self,
        data: Sequence[Bar] | BarFeed,
        symbol: Optional[str],
        timeframe: str,
        limit: int,
    ) -> List[Bar]:
        start, end = self.config.start, self.config.end

        if hasattr(data, "get_bars_range"):
            if symbol is None:
                raise ConfigurationError("symbol is required when backtesting from a BarFeed")
            if start is not None or end is not None:
                bars = data.get_bars_range(symbol, timeframe, start, end)
            else:
                bars = data.get_bars(symbol, timeframe, limit)
            logger.info(f"Loaded {len(bars)} {symbol} {timeframe} bars from feed")
            return list(bars)

        bars = list(data)
        if symbol is not None:
            bars = [bar for bar in bars if bar.symbol == symbol]
        if start is not None:
            bars = [bar for bar in bars if bar.timestamp >= start]
        if end is not None:
            bars = [bar for bar in bars if bar.timestamp <= end]
        return bars

    # -- read API ----------------------------------------------------------

    @property
    def state(self) -> BacktestState:
        return self._state

    @property
    def bars(self) -> List[Bar]:
        return list(self._bars)

    @property
    def context(self) -> Optional[StrategyContext]:
        return self._context

    @property
    def ledger(self) -> PortfolioLedger:
        return self._ledger

    # -- lifecycle ---------------------------------------------------------

    def run(self, should_stop: Optional[Callable[[], bool]] = None) -> BacktestResult:
        """
        Run the backtest to completion.

        Args:
            should_stop: Optional callable checked before each bar. When it
                        returns True no further bars are started and the run
                        proceeds to the closing phase at the last processed bar.

        Returns:
            BacktestResult of the run.

        Raises:
            RuntimeError: If the backtester has already run (call reset() first).
        """
        if self._state is not BacktestState.INITIALIZED:
            raise RuntimeError(
                f"Backtest already ran (state: {self._state.value}); call reset() first"
            )

        self._context = StrategyContext(
            self.symbol,
            self._ledger,
            limits=self.config.risk_limits,
            max_bars=self.config.max_context_bars,
        )
        self.strategy.initialize(self._context)
        self._state = BacktestState.RUNNING
        logger.info(
            f"Starting backtest: {self.strategy.name} on {self.symbol}, "
            f"{len(self._bars)} bars, capital {self.config.initial_capital:,.2f}"
        )

        last_bar: Optional[Bar] = None
        for i, bar in enumerate(self._bars):
            if should_stop is not None and should_stop():
                logger.info(f"Stop requested after {i} bars")
                break
            self._process_bar(bar)
            last_bar = bar
            if (i + 1) % PROGRESS_LOG_INTERVAL == 0:
                logger.debug(
                    f"Progress: {i + 1}/{len(self._bars)} bars, equity {self._ledger.equity:,.2f}"
                )

        self._state = BacktestState.CLOSING
        if last_bar is not None:
            self._close_positions(last_bar)
        self._state = BacktestState.COMPLETE

        result = self.get_results()
        logger.info(
            f"Backtest complete: final equity {result.final_equity:,.2f} "
            f"({result.total_return_pct:+.2f}%), {result.total_trades} trades, "
            f"{len(result.rejected_orders)} rejected orders"
        )
        return result

    def reset(self) -> None:
        """Clear ledger, context, trades and orders; back to INITIALIZED."""
        self._ledger.reset()
        self._fills.reset()
        self._order_ids.reset()
        self._context = None
        self._trades.clear()
        self._orders.clear()
        self._rejected.clear()
        self._equity_points.clear()
        self._equity_index.clear()
        self._state = BacktestState.INITIALIZED
        logger.debug("Backtester reset")

    # -- per-bar pipeline --------------------------------------------------

    def _process_bar(self, bar: Bar) -> None:
        context = self._context
        context.add_bar(bar)
        context.update_indicators(bar)
        self._ledger.mark_price(bar.symbol, bar.close, bar.timestamp)

        signals = self.strategy.on_candle(bar, context) or []
        for signal in signals:
            self._process_signal(signal, bar)

        self._record_equity(bar)

    def _record_equity(self, bar: Bar) -> None:
        # Fills leave the position marked at the fill price; equity points are at the close.
        self._ledger.mark_price(bar.symbol, bar.close, bar.timestamp)
        self._equity_index.append(bar.timestamp)
        self._equity_points.append(self._ledger.equity)

    def _process_signal(self, signal: Signal, bar: Bar) -> Optional[Trade]:
        """
        Turn one signal into an order, validate it, and fill it if accepted.

        Returns:
            The resulting Trade, or None if the order was rejected.
        """
        order = Order(
            id=self._order_ids.next(),
            symbol=signal.symbol,
            side=signal.side,
            quantity=signal.quantity,
            timestamp=bar.timestamp,
            limit_price=signal.price,
            reason=signal.reason,
            strategy=signal.strategy or self.strategy.name,
        )

        if signal.symbol != bar.symbol:
            decision = OrderDecision.reject(
                f"No bar for {signal.symbol} (current bar is {bar.symbol})"
            )
        else:
            decision = validate_order(
                order,
                self._ledger.snapshot(),
                self.config.risk_limits,
                reference_price=bar.close,
                stop_price=signal.stop_loss,
                commission_rate=self.config.commission_rate,
                slippage=self.config.slippage,
            )

        if not decision:
            rejected = order.rejected(decision.reason)
            self._orders.append(rejected)
            self._rejected.append(rejected)
            logger.warning(
                f"Order {order.id} rejected: {order.side.value} {order.quantity} "
                f"{order.symbol}: {decision.reason}"
            )
            return None

        entry_price = None
        if order.side is OrderSide.SELL:
            entry_price = self._ledger.get_position(order.symbol).entry_price

        trade = self._fills.fill(order, bar, entry_price=entry_price)
        self._ledger.apply_trade(trade)
        self._orders.append(order.filled(trade.price))
        self._trades.append(trade)

        on_order_filled = getattr(self.strategy, "on_order_filled", None)
        if callable(on_order_filled):
            on_order_filled(order.id, self._context)
        return trade

    def _close_positions(self, bar: Bar) -> None:
        positions = self._ledger.positions()
        if not positions:
            return

        logger.info(f"Closing {len(positions)} open position(s) at {bar.timestamp}")
        for symbol, position in positions.items():
            exit_signal = Signal(
                symbol=symbol,
                side=OrderSide.SELL,
                quantity=position.quantity,
                timestamp=bar.timestamp,
                kind=SignalType.EXIT,
                reason="Backtest end: closing position",
                strategy=self.strategy.name,
            )
            self._process_signal(exit_signal, bar)

        # The last equity point reflects the closing fills.
        self._ledger.mark_price(bar.symbol, bar.close, bar.timestamp)
        if self._equity_points:
            self._equity_points[-1] = self._ledger.equity

    # -- results -----------------------------------------------------------

    def equity_curve(self) -> pd.Series:
        return pd.Series(
            data=list(self._equity_points),
            index=pd.DatetimeIndex(self._equity_index),
            name="equity",
            dtype=float,
        )

    def get_results(self) -> BacktestResult:
        """
        Package the run's outputs.

        Can be called at any state; before COMPLETE it describes the run so
        far (open positions included at their last mark).
        """
        equity_curve = self.equity_curve()
        final_equity = self._ledger.equity
        initial_capital = self.config.initial_capital

        duration_ms = 0.0
        if len(equity_curve) >= 2:
            duration_ms = (equity_curve.index[-1] - equity_curve.index[0]) / pd.Timedelta(milliseconds=1)

        metrics = calculate_performance(
            self._trades,
            initial_capital,
            final_equity,
            duration_ms,
            equity_curve=equity_curve,
            periods_per_year=self.config.periods_per_year,
            risk_free_rate=self.config.risk_free_rate,
        )

        summary = self._ledger.summary()
        summary.update(
            state=self._state.value,
            bars=len(equity_curve),
            trades=len(self._trades),
            orders=len(self._orders),
            rejected_orders=len(self._rejected),
        )

        return BacktestResult(
            trades=list(self._trades),
            orders=list(self._orders),
            rejected_orders=list(self._rejected),
            portfolio=self._ledger.snapshot(),
            summary=summary,
            equity_curve=equity_curve,
            initial_capital=initial_capital,
            final_equity=final_equity,
            total_return_pct=(final_equity / initial_capital - 1) * 100,
            total_trades=len(self._trades),
            state=self._state,
            metrics=metrics,
            config=self.config,
        )


def run_backtest(
    strategy: Strategy,
    bars: Sequence[Bar] | BarFeed,
    config: Optional[BacktestConfig] = None,
    **kwargs,
) -> BacktestResult:
    """
    Run a backtest in one call.

    Equivalent to `Backtester(strategy, bars, config, **kwargs).run()`.

    Example:
        >>> bars = generate_synthetic_bars(500, seed=7)
        >>> result = run_backtest(SmaCrossoverStrategy(10, 30), bars,
        ...                       BacktestConfig(risk_limits=RiskLimits(max_position_size=1.0)))
        >>> print(format_performance(result.metrics))
    """
    return Backtester(strategy, bars, config, **kwargs).run()
