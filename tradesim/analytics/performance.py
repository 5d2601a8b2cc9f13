"""
Backtest performance report.

calculate_performance runs once, after the loop, over the trade list and
(optionally) the per-bar equity curve. It combines the return, risk and
trade statistics from risk_metrics into one PerformanceMetrics record, and
format_performance renders that record as a plain-text report.

**Which returns?**
  - With an equity curve (what the Backtester passes): per-bar returns of
    the mark-to-market curve. This is the honest series; open positions
    lose value on the bars they lose value.
  - Without one: a realized-only curve that starts at initial capital and
    steps by each sell's realized P&L. Coarser, but computable from trades
    alone.

Trade statistics always use round trips (flat to flat per symbol), never
pairs of consecutive fills.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from tradesim.analytics import risk_metrics
from tradesim.execution.orders import OrderSide, Trade
from tradesim.portfolio.pnl import round_trips

logger = logging.getLogger(__name__)

MS_PER_YEAR = 365 * 24 * 60 * 60 * 1000
MS_PER_HOUR = 60 * 60 * 1000


@dataclass(frozen=True)
class PerformanceMetrics:
    """
    Headline statistics of one backtest run.

    Ratios and fractions are decimals (0.12 = 12%) unless the field name ends
    in `_pct`. Undefined ratios are NaN (see risk_metrics for the rules).

    Attributes:
        total_return: Final equity minus initial capital, in currency.
        total_return_pct: total_return / initial capital * 100.
        annualized_return: mean(per-period return) * periods_per_year.
        cagr: (final / initial) ** (1 / years) - 1 over the run's calendar
              duration; 0 when the duration is not positive.
        sharpe_ratio: Per-period Sharpe of the returns.
        sortino_ratio: Per-period Sortino of the returns.
        calmar_ratio: annualized_return / max drawdown fraction.
        max_drawdown: Largest peak-to-trough decline, in currency.
        max_drawdown_pct: The same decline as a percent of the peak.
        volatility: Per-period population std of the returns.
        var_95: Historical 95% VaR of the returns (positive = loss).
        cvar_95: Historical 95% CVaR of the returns (positive = loss).
        total_trades: Completed round trips.
        winning_trades: Round trips with net P&L > 0.
        losing_trades: Round trips with net P&L < 0.
        win_rate: winning_trades / total_trades (fraction).
        average_win: Mean winning round-trip P&L.
        average_loss: Mean losing round-trip P&L, positive.
        profit_factor: Σwins / |Σlosses|.
        expectancy: Expected net P&L per round trip.
        avg_hold_time_ms: Mean round-trip duration in milliseconds.
        max_consecutive_wins: Longest winning streak.
        max_consecutive_losses: Longest losing streak.
    """
    total_return: float
    total_return_pct: float
    annualized_return: float
    cagr: float
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    max_drawdown: float
    max_drawdown_pct: float
    volatility: float
    var_95: float
    cvar_95: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    average_win: float
    average_loss: float
    profit_factor: float
    expectancy: float
    avg_hold_time_ms: float
    max_consecutive_wins: int
    max_consecutive_losses: int

    def to_dict(self) -> dict:
        return asdict(self)


def realized_equity_curve(trades: Sequence[Trade], initial_capital: float) -> tuple[np.ndarray, np.ndarray]:
    """
    Equity stepped by realized P&L only, and the matching returns.

    Each sell with a realized P&L adds a point; the return of that step is
    realized / equity after the step.

    Returns:
        (equity, returns): equity starts with initial_capital and has one
        more element than returns.
    """
    equity = initial_capital
    curve = [equity]
    returns = []
    for trade in trades:
        if trade.side is not OrderSide.SELL or trade.realized_pnl is None:
            continue
        equity += trade.realized_pnl
        curve.append(equity)
        returns.append(trade.realized_pnl / equity if equity != 0 else 0.0)
    return np.asarray(curve, dtype=float), np.asarray(returns, dtype=float)


def compute_cagr(initial_capital: float, final_equity: float, duration_ms: float) -> float:
    """
    Compound annual growth rate over a calendar duration.

    **Mathematical**: with years = duration_ms / (365 days in ms),
        CAGR = (final / initial) ** (1 / years) - 1

    **Edge cases**: years <= 0 → 0.0; a non-positive final equity → -1.0
    (everything was lost).
    """
    years = duration_ms / MS_PER_YEAR
    if years <= 0:
        return 0.0
    if final_equity <= 0:
        return -1.0
    return float((final_equity / initial_capital) ** (1 / years) - 1)


def calculate_performance(
    trades: Sequence[Trade],
    initial_capital: float,
    final_equity: float,
    duration_ms: float,
    equity_curve: Optional[pd.Series] = None,
    periods_per_year: int = 252,
    risk_free_rate: float = 0.0,
) -> PerformanceMetrics:
    """
    Compute the full performance report of a run.

    Args:
        trades: All fills of the run, in execution order.
        initial_capital: Starting cash.
        final_equity: Equity after the closing phase.
        duration_ms: Calendar length of the run (last bar - first bar) in ms.
        equity_curve: Mark-to-market equity per bar. When omitted, returns
                      come from the realized-only curve.
        periods_per_year: Bars per year, for the annualized return.
        risk_free_rate: Per-period risk-free rate for Sharpe/Sortino.

    Returns:
        PerformanceMetrics.

    Raises:
        ValueError: If initial_capital is not positive, or the trade list
                   cannot be grouped into round trips.
    """
    if initial_capital <= 0:
        raise ValueError(f"initial_capital must be positive, got {initial_capital}")

    total_return = final_equity - initial_capital

    if equity_curve is not None and len(equity_curve) > 0:
        equity = np.concatenate(([initial_capital], equity_curve.to_numpy(dtype=float)))
        returns = risk_metrics.returns_from_equity(equity)
    else:
        equity, returns = realized_equity_curve(trades, initial_capital)

    drawdown = risk_metrics.max_drawdown(equity)
    annualized = risk_metrics.annualized_return(returns, periods_per_year)

    trips = round_trips(trades)
    stats = risk_metrics.trade_statistics([trip.net_pnl for trip in trips])
    hold_times = [trip.hold_time / pd.Timedelta(milliseconds=1) for trip in trips]

    metrics = PerformanceMetrics(
        total_return=total_return,
        total_return_pct=total_return / initial_capital * 100,
        annualized_return=annualized,
        cagr=compute_cagr(initial_capital, final_equity, duration_ms),
        sharpe_ratio=risk_metrics.sharpe_ratio(returns, risk_free_rate),
        sortino_ratio=risk_metrics.sortino_ratio(returns, risk_free_rate),
        calmar_ratio=risk_metrics.calmar_ratio(returns, drawdown.fraction, periods_per_year),
        max_drawdown=drawdown.amount,
        max_drawdown_pct=drawdown.percent,
        volatility=risk_metrics.volatility(returns),
        var_95=risk_metrics.value_at_risk(returns, 0.95),
        cvar_95=risk_metrics.conditional_value_at_risk(returns, 0.95),
        total_trades=stats.total_trades,
        winning_trades=stats.winning_trades,
        losing_trades=stats.losing_trades,
        win_rate=stats.win_rate,
        average_win=stats.average_win,
        average_loss=stats.average_loss,
        profit_factor=stats.profit_factor,
        expectancy=stats.expectancy,
        avg_hold_time_ms=float(np.mean(hold_times)) if hold_times else 0.0,
        max_consecutive_wins=stats.max_consecutive_wins,
        max_consecutive_losses=stats.max_consecutive_losses,
    )
    logger.debug(
        f"Performance: return {metrics.total_return_pct:.2f}%, "
        f"{metrics.total_trades} round trips, max DD {metrics.max_drawdown_pct:.2f}%"
    )
    return metrics


def format_performance(metrics: PerformanceMetrics) -> str:
    """Render metrics as a multi-section plain-text report."""
    win_rate_pct = 0.0 if np.isnan(metrics.win_rate) else metrics.win_rate * 100
    lines = [
        "=== Performance Metrics ===",
        "",
        "Returns:",
        f"  Total Return: ${metrics.total_return:.2f} ({metrics.total_return_pct:.2f}%)",
        f"  Annualized Return: {metrics.annualized_return * 100:.2f}%",
        f"  CAGR: {metrics.cagr * 100:.2f}%",
        "",
        "Risk Metrics:",
        f"  Sharpe Ratio: {metrics.sharpe_ratio:.2f}",
        f"  Sortino Ratio: {metrics.sortino_ratio:.2f}",
        f"  Calmar Ratio: {metrics.calmar_ratio:.2f}",
        f"  Max Drawdown: ${metrics.max_drawdown:.2f} ({metrics.max_drawdown_pct:.2f}%)",
        f"  Volatility: {metrics.volatility:.4f}",
        f"  VaR (95%): {metrics.var_95:.4f}",
        f"  CVaR (95%): {metrics.cvar_95:.4f}",
        "",
        "Trade Statistics:",
        f"  Total Trades: {metrics.total_trades}",
        f"  Win Rate: {win_rate_pct:.2f}% ({metrics.winning_trades}W / {metrics.losing_trades}L)",
        f"  Average Win: ${metrics.average_win:.2f}",
        f"  Average Loss: ${metrics.average_loss:.2f}",
        f"  Profit Factor: {metrics.profit_factor:.2f}",
        f"  Expectancy: ${metrics.expectancy:.2f}",
        "",
        "Position Metrics:",
        f"  Avg Hold Time: {metrics.avg_hold_time_ms / MS_PER_HOUR:.2f} hours",
        f"  Max Consecutive Wins: {metrics.max_consecutive_wins}",
        f"  Max Consecutive Losses: {metrics.max_consecutive_losses}",
    ]
    return "\n".join(lines)
