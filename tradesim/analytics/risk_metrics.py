"""
Risk and performance statistics for backtest evaluation.

This module is a set of pure functions over plain sequences of numbers:
per-period returns, equity values, or per-trade P&Ls. Nothing here knows
about bars, orders or the ledger, so every function can be tested with
hand-written lists.

Metrics are grouped into:
  - Moments: mean, population standard deviation, volatility
  - Risk-adjusted return: Sharpe, Sortino, Calmar, information ratio
  - Drawdown: running-peak walk over an equity curve
  - Tail risk: historical VaR and CVaR
  - Trade statistics: win rate, profit factor, expectancy, streaks

**Convention**: population statistics (ddof=0) everywhere. Ratios whose
denominator is zero return NaN rather than a misleading 0, with one
intentional exception: Sortino is +inf when no return falls below the
target (there is no downside to divide by).
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _as_array(values: Sequence[float] | pd.Series) -> np.ndarray:
    if isinstance(values, pd.Series):
        return values.to_numpy(dtype=float)
    return np.asarray(values, dtype=float)


# ============================================================================
# Moments
# ============================================================================


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty input."""
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(arr.mean())


def std(values: Sequence[float]) -> float:
    """Population standard deviation (ddof=0); 0.0 for an empty input."""
    arr = _as_array(values)
    if arr.size == 0:
        return 0.0
    return float(arr.std(ddof=0))


def volatility(returns: Sequence[float]) -> float:
    """
    Per-period volatility of returns.

    Not annualized: multiply by sqrt(periods_per_year) to compare across
    bar frequencies.
    """
    return std(returns)


def returns_from_equity(equity: Sequence[float] | pd.Series) -> np.ndarray:
    """
    Simple per-period returns r_t = E_t / E_{t-1} - 1.

    Returns an array one shorter than the input (empty for fewer than two
    points).
    """
    arr = _as_array(equity)
    if arr.size < 2:
        return np.array([], dtype=float)
    return arr[1:] / arr[:-1] - 1.0


# ============================================================================
# Risk-adjusted return
# ============================================================================


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.0) -> float:
    """
    Compute the per-period Sharpe ratio.

    **Conceptual**: The Sharpe ratio measures how much excess return a
    strategy earns per unit of total volatility. Two strategies with the same
    average return are not equal if one gets there with wild swings.

    **Mathematical**:
        Sharpe = (mean(r) - r_f) / std(r)
    with std the population standard deviation and r_f the per-period
    risk-free rate.

    **Functionally**:
    - Per-period, not annualized (multiply by sqrt(periods_per_year) if needed).
    - Symmetric: upside volatility is penalized as much as downside.

    **Edge cases**:
    - Empty input → NaN.
    - Zero volatility (all returns equal) → NaN; the ratio is undefined,
      not zero.

    Args:
        returns: Per-period returns as decimals.
        risk_free_rate: Per-period risk-free rate.

    Returns:
        Sharpe ratio, or NaN when undefined.
    """
    arr = _as_array(returns)
    if arr.size == 0:
        return float("nan")
    sigma = arr.std(ddof=0)
    if sigma == 0:
        return float("nan")
    return float((arr.mean() - risk_free_rate) / sigma)


def sortino_ratio(returns: Sequence[float], risk_free_rate: float = 0.0) -> float:
    """
    Compute the per-period Sortino ratio.

    **Conceptual**: Like Sharpe, but only returns below the target count as
    risk. A trend follower with large winning days and small losing days is
    not punished for the winners.

    **Mathematical**:
        Sortino = (mean(r) - r_f) / std({r_t : r_t < r_f})
    The denominator is the population standard deviation of the sub-target
    returns themselves.

    **Edge cases**:
    - Empty input → NaN.
    - No return below the target → +inf (there is no downside).
    - Exactly one sub-target return, or all sub-target returns equal → NaN.

    Args:
        returns: Per-period returns as decimals.
        risk_free_rate: Target / risk-free rate per period.

    Returns:
        Sortino ratio, +inf, or NaN as described above.
    """
    arr = _as_array(returns)
    if arr.size == 0:
        return float("nan")
    downside = arr[arr < risk_free_rate]
    if downside.size == 0:
        return float("inf")
    downside_std = downside.std(ddof=0)
    if downside_std == 0:
        return float("nan")
    return float((arr.mean() - risk_free_rate) / downside_std)


def annualized_return(returns: Sequence[float], periods_per_year: int = 252) -> float:
    """
    Arithmetic annualized return: mean(r) * periods_per_year.

    This is the simple scaling used for Calmar. For compounded growth over a
    known calendar duration use CAGR instead (see performance.py).
    """
    arr = _as_array(returns)
    if arr.size == 0:
        return 0.0
    return float(arr.mean() * periods_per_year)


def information_ratio(
    portfolio_returns: Sequence[float],
    benchmark_returns: Sequence[float],
) -> float:
    """
    Mean active return divided by tracking error.

    **Mathematical**: with a_t = r_t - b_t,
        IR = mean(a) / std(a)

    **Edge cases**: mismatched lengths raise ValueError; empty input or zero
    tracking error → NaN.
    """
    port = _as_array(portfolio_returns)
    bench = _as_array(benchmark_returns)
    if port.size != bench.size:
        raise ValueError(
            f"Return series lengths differ: {port.size} vs {bench.size}"
        )
    if port.size == 0:
        return float("nan")
    active = port - bench
    tracking_error = active.std(ddof=0)
    if tracking_error == 0:
        return float("nan")
    return float(active.mean() / tracking_error)


def beta(asset_returns: Sequence[float], market_returns: Sequence[float]) -> float:
    """
    Sensitivity of the asset to the market: cov(a, m) / var(m).

    Population covariance and variance. Mismatched lengths raise ValueError;
    empty input or a flat market → NaN.
    """
    asset = _as_array(asset_returns)
    market = _as_array(market_returns)
    if asset.size != market.size:
        raise ValueError(
            f"Return series lengths differ: {asset.size} vs {market.size}"
        )
    if asset.size == 0:
        return float("nan")
    market_var = market.var(ddof=0)
    if market_var == 0:
        return float("nan")
    covariance = float(np.mean((asset - asset.mean()) * (market - market.mean())))
    return covariance / float(market_var)


# ============================================================================
# Drawdown
# ============================================================================


@dataclass(frozen=True)
class DrawdownStats:
    """
    Largest peak-to-trough decline of an equity curve.

    Attributes:
        amount: Decline in currency units (peak - trough).
        fraction: Decline as a fraction of the peak (0.5 = 50%).
        peak: Equity at the peak preceding the worst trough.
        trough: Equity at the worst trough.
    """
    amount: float
    fraction: float
    peak: float
    trough: float

    @property
    def percent(self) -> float:
        return self.fraction * 100


def max_drawdown(equity: Sequence[float] | pd.Series) -> DrawdownStats:
    """
    Compute the maximum drawdown of an equity curve.

    **Conceptual**: Drawdown answers "how much did I lose from the best point
    before things got better?" It is the number that makes traders abandon a
    strategy, so it matters more than volatility in practice.

    **Mathematical**: Walk the curve keeping the running peak P_t = max(E_0..E_t):
        DD_t = P_t - E_t,   MaxDD = max_t DD_t
    The reported fraction is the one belonging to the largest absolute
    drawdown, DD / P at that point.

    **Edge cases**:
    - Empty curve → all zeros.
    - Monotonically non-decreasing curve → amount 0, fraction 0.
    - Non-positive peak → fraction 0 (undefined as a percentage).

    Example:
        >>> max_drawdown([100, 50, 120]).amount
        50.0

    Args:
        equity: Equity values in time order.

    Returns:
        DrawdownStats of the worst decline.
    """
    arr = _as_array(equity)
    if arr.size == 0:
        return DrawdownStats(amount=0.0, fraction=0.0, peak=0.0, trough=0.0)

    running_peak = np.maximum.accumulate(arr)
    drawdowns = running_peak - arr
    worst = int(np.argmax(drawdowns))
    amount = float(drawdowns[worst])
    peak = float(running_peak[worst])
    fraction = amount / peak if peak > 0 else 0.0
    return DrawdownStats(amount=amount, fraction=fraction, peak=peak, trough=float(arr[worst]))


def calmar_ratio(
    returns: Sequence[float],
    max_drawdown_fraction: float,
    periods_per_year: int = 252,
) -> float:
    """
    Annualized return per unit of maximum drawdown.

    **Mathematical**:
        Calmar = annualized_return(r) / max_drawdown_fraction

    **Edge cases**: empty returns or no drawdown → NaN.
    """
    if len(returns) == 0 or max_drawdown_fraction <= 0:
        return float("nan")
    return annualized_return(returns, periods_per_year) / max_drawdown_fraction


# ============================================================================
# Tail risk
# ============================================================================


def _tail_index(n: int, confidence: float) -> int:
    if not 0 < confidence < 1:
        raise ValueError(f"confidence must be in (0, 1), got {confidence}")
    return min(int(math.floor((1 - confidence) * n)), n - 1)


def value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    """
    Historical Value at Risk, reported as a positive loss.

    **Mathematical**: sort returns ascending, take s[floor((1-c)·n)] and
    negate it. At c = 0.95 with 100 returns this is the 6th worst return.

    **Edge cases**: empty input → 0.0. A result below zero means even the
    tail return was a gain.
    """
    arr = np.sort(_as_array(returns))
    if arr.size == 0:
        return 0.0
    return float(-arr[_tail_index(arr.size, confidence)])


def conditional_value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    """
    Historical CVaR (expected shortfall), reported as a positive loss.

    Mean of the sorted returns up to and including the VaR index:
        CVaR = -mean(s[0 .. floor((1-c)·n)])
    Always >= VaR for the same input. Empty input → 0.0.
    """
    arr = np.sort(_as_array(returns))
    if arr.size == 0:
        return 0.0
    cutoff = _tail_index(arr.size, confidence)
    return float(-arr[: cutoff + 1].mean())


# ============================================================================
# Trade statistics
# ============================================================================


@dataclass(frozen=True)
class TradeStatistics:
    """
    Summary of per-trade net P&Ls.

    Attributes:
        total_trades: Number of trades (including break-even ones).
        winning_trades: Trades with P&L > 0.
        losing_trades: Trades with P&L < 0.
        win_rate: winning_trades / total_trades as a fraction (0.4 = 40%).
        average_win: Mean winning P&L (0 without wins).
        average_loss: Mean losing P&L as a positive number (0 without losses).
        win_loss_ratio: average_win / average_loss (NaN without losses).
        profit_factor: Σwins / |Σlosses|; +inf with no losses, NaN with neither.
        expectancy: win_rate·average_win - (1-win_rate)·average_loss.
        largest_win: Best trade (0 without wins).
        largest_loss: Worst trade as a positive number (0 without losses).
        max_consecutive_wins: Longest run of winning trades.
        max_consecutive_losses: Longest run of losing trades.
    """
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    average_win: float
    average_loss: float
    win_loss_ratio: float
    profit_factor: float
    expectancy: float
    largest_win: float
    largest_loss: float
    max_consecutive_wins: int
    max_consecutive_losses: int


def _longest_run(flags: np.ndarray) -> int:
    longest = current = 0
    for flag in flags:
        current = current + 1 if flag else 0
        longest = max(longest, current)
    return longest


def trade_statistics(pnls: Sequence[float]) -> TradeStatistics:
    """
    Compute win/loss statistics over per-trade net P&Ls.

    **Conceptual**: Win rate alone says little. A 30% win rate is excellent
    when winners are five times the size of losers. Profit factor and
    expectancy combine both sides into one number.

    **Mathematical**:
        win_rate      = wins / n
        profit_factor = Σ wins / |Σ losses|
        expectancy    = win_rate·avg_win - (1 - win_rate)·avg_loss

    **Edge cases**:
    - No trades → zero counts, NaN ratios.
    - Break-even trades (P&L == 0) count toward total_trades only.
    - No losses → profit factor +inf; neither wins nor losses → NaN.

    Args:
        pnls: Net P&L of each completed trade, in time order.

    Returns:
        TradeStatistics.
    """
    arr = _as_array(pnls)
    total = int(arr.size)
    if total == 0:
        nan = float("nan")
        return TradeStatistics(
            total_trades=0, winning_trades=0, losing_trades=0,
            win_rate=nan, average_win=0.0, average_loss=0.0,
            win_loss_ratio=nan, profit_factor=nan, expectancy=nan,
            largest_win=0.0, largest_loss=0.0,
            max_consecutive_wins=0, max_consecutive_losses=0,
        )

    wins = arr[arr > 0]
    losses = arr[arr < 0]
    win_rate = wins.size / total
    average_win = float(wins.mean()) if wins.size else 0.0
    average_loss = float(-losses.mean()) if losses.size else 0.0

    gross_win = float(wins.sum())
    gross_loss = float(-losses.sum())
    if gross_loss > 0:
        profit_factor = gross_win / gross_loss
    elif gross_win > 0:
        profit_factor = float("inf")
    else:
        profit_factor = float("nan")

    win_loss_ratio = average_win / average_loss if average_loss > 0 else float("nan")
    expectancy = win_rate * average_win - (1 - win_rate) * average_loss

    return TradeStatistics(
        total_trades=total,
        winning_trades=int(wins.size),
        losing_trades=int(losses.size),
        win_rate=win_rate,
        average_win=average_win,
        average_loss=average_loss,
        win_loss_ratio=win_loss_ratio,
        profit_factor=profit_factor,
        expectancy=expectancy,
        largest_win=float(wins.max()) if wins.size else 0.0,
        largest_loss=float(-losses.min()) if losses.size else 0.0,
        max_consecutive_wins=_longest_run(arr > 0),
        max_consecutive_losses=_longest_run(arr < 0),
    )


def rolling_sharpe(
    returns: pd.Series,
    window: int = 63,
    risk_free_rate: float = 0.0,
) -> pd.Series:
    """
    Sharpe ratio over a sliding window of returns.

    Uses population std inside each window. Windows with zero volatility are
    NaN, matching sharpe_ratio. Useful for spotting a strategy whose edge
    decays over the test period.

    Args:
        returns: Per-period returns indexed by time.
        window: Window length in periods.
        risk_free_rate: Per-period risk-free rate.

    Returns:
        Series aligned with `returns`; the first window-1 entries are NaN.
    """
    if window < 2:
        raise ValueError(f"window must be >= 2, got {window}")
    excess = returns - risk_free_rate
    rolling_std = returns.rolling(window).std(ddof=0)
    result = excess.rolling(window).mean() / rolling_std.where(rolling_std > 0)
    return result


def summarize_returns(
    returns: Sequence[float],
    periods_per_year: int = 252,
    risk_free_rate: float = 0.0,
    equity: Optional[Sequence[float]] = None,
) -> dict:
    """
    Convenience bundle of the return-based metrics as a dict.

    When `equity` is omitted, drawdown is measured on a curve compounded
    from a starting value of 100.
    """
    arr = _as_array(returns)
    if equity is None:
        equity = 100.0 * np.concatenate(([1.0], np.cumprod(1.0 + arr)))
    drawdown = max_drawdown(equity)
    logger.debug(f"Summarizing {arr.size} returns (max drawdown {drawdown.percent:.2f}%)")
    return {
        "mean": mean(arr),
        "volatility": volatility(arr),
        "sharpe": sharpe_ratio(arr, risk_free_rate),
        "sortino": sortino_ratio(arr, risk_free_rate),
        "annualized_return": annualized_return(arr, periods_per_year),
        "max_drawdown": drawdown.amount,
        "max_drawdown_pct": drawdown.percent,
        "calmar": calmar_ratio(arr, drawdown.fraction, periods_per_year),
        "var_95": value_at_risk(arr, 0.95),
        "cvar_95": conditional_value_at_risk(arr, 0.95),
    }
