"""
Synthetic market data for tests, property checks and strategy smoke runs.

Two close-price processes are provided:
  - Geometric Brownian Motion (GBM): trending, compounding behavior.
  - Ornstein-Uhlenbeck (OU): mean-reverting, range-bound behavior.

generate_synthetic_bars wraps either path into a list of internally
consistent OHLCV Bars (open = previous close, high >= max(open, close),
low <= min(open, close), volume >= 0) with strictly ascending timestamps,
which is exactly what indicators and the backtest loop consume.
"""

import numpy as np
import pandas as pd

from tradesim.data.schemas import Bar


def generate_gbm_prices(
    initial_price: float,
    drift: float,
    volatility: float,
    n_steps: int,
    dt: float = 1 / 252,
    seed: int | None = None,
) -> pd.Series:
    """
    Generate a close-price path using Geometric Brownian Motion.

    **Mathematical**: discrete (exact log-normal) update per step:
        S_{t+1} = S_t * exp((μ - 0.5 * σ^2) * dt + σ * sqrt(dt) * Z_t),  Z_t ~ N(0, 1)

    **Edge cases**:
    - n_steps = 0 → returns just [initial_price].
    - volatility = 0 → deterministic path S_0 * exp(μ * t * dt).

    Args:
        initial_price: Starting price (must be positive).
        drift: Annualized drift μ (0.10 = 10% per year).
        volatility: Annualized volatility σ.
        n_steps: Number of steps after the initial price.
        dt: Time increment per step (1/252 for daily bars).
        seed: Random seed for reproducibility.

    Returns:
        Series of length n_steps + 1 indexed by step number.

    Raises:
        ValueError: If initial_price <= 0 or n_steps < 0.
    """
    if initial_price <= 0:
        raise ValueError(f"initial_price must be positive, got {initial_price}")
    if n_steps < 0:
        raise ValueError(f"n_steps must be non-negative, got {n_steps}")

    if seed is not None:
        np.random.seed(seed)

    z = np.random.standard_normal(n_steps)
    log_steps = (drift - 0.5 * volatility**2) * dt + volatility * np.sqrt(dt) * z

    # Cumulative sum of log increments gives the log price relative to S_0
    log_path = np.concatenate([[0.0], np.cumsum(log_steps)])
    prices = initial_price * np.exp(log_path)

    return pd.Series(prices, index=range(n_steps + 1), name='price')


def generate_ou_prices(
    initial_price: float,
    mean_reversion_speed: float,
    long_term_mean: float,
    volatility: float,
    n_steps: int,
    dt: float = 1 / 252,
    seed: int | None = None,
) -> pd.Series:
    """
    Generate a mean-reverting price path using an Ornstein-Uhlenbeck process.

    **Mathematical**: Euler-Maruyama discretization of dX = κ(θ - X)dt + σ dW:
        X_{t+1} = X_t + κ * (θ - X_t) * dt + σ * sqrt(dt) * Z_t

    Here σ is an absolute price volatility (not a percentage), so choose it
    relative to θ. The path is not floored; pick κ and σ so prices stay
    positive if the result is turned into bars.

    Args:
        initial_price: Starting price.
        mean_reversion_speed: κ, pull strength toward the mean.
        long_term_mean: θ, the equilibrium price.
        volatility: σ, absolute noise scale per sqrt(year).
        n_steps: Number of steps after the initial price.
        dt: Time increment per step.
        seed: Random seed for reproducibility.

    Returns:
        Series of length n_steps + 1 indexed by step number.
    """
    if n_steps < 0:
        raise ValueError(f"n_steps must be non-negative, got {n_steps}")

    if seed is not None:
        np.random.seed(seed)

    prices = np.zeros(n_steps + 1)
    prices[0] = initial_price
    z = np.random.standard_normal(n_steps)

    for t in range(n_steps):
        pull = mean_reversion_speed * (long_term_mean - prices[t]) * dt
        prices[t + 1] = prices[t] + pull + volatility * np.sqrt(dt) * z[t]

    return pd.Series(prices, index=range(n_steps + 1), name='price')


def bars_from_closes(
    closes,
    symbol: str = "SYN",
    timeframe: str = "1d",
    start: str | pd.Timestamp = "2024-01-01",
    freq: str = "D",
    volume: float = 1_000.0,
) -> list[Bar]:
    """
    Build flat bars (open = high = low = close) from a list of closes.

    Handy for hand-computed scenarios where only closes matter,
    e.g. closes [100, 100, 110, 90] for an end-to-end loop check.

    Args:
        closes: Iterable of close prices.
        symbol: Symbol stamped on every bar.
        timeframe: Interval label stamped on every bar.
        start: First timestamp.
        freq: pandas offset alias between bars.
        volume: Constant volume per bar.

    Returns:
        List of Bars, oldest first.
    """
    closes = [float(c) for c in closes]
    timestamps = pd.date_range(start=start, periods=len(closes), freq=freq)
    return [
        Bar(
            timestamp=ts,
            open=c,
            high=c,
            low=c,
            close=c,
            volume=volume,
            symbol=symbol,
            timeframe=timeframe,
        )
        for ts, c in zip(timestamps, closes)
    ]


def generate_synthetic_bars(
    n_bars: int,
    initial_price: float = 100.0,
    drift: float = 0.05,
    volatility: float = 0.25,
    process: str = "gbm",
    mean_reversion_speed: float = 5.0,
    long_term_mean: float | None = None,
    symbol: str = "SYN",
    timeframe: str = "1d",
    start: str | pd.Timestamp = "2020-01-01",
    freq: str = "D",
    base_volume: float = 10_000.0,
    seed: int | None = None,
) -> list[Bar]:
    """
    Generate a list of consistent OHLCV bars driven by a GBM or OU close path.

    **Functionally**:
    - Closes come from generate_gbm_prices (process="gbm") or
      generate_ou_prices (process="ou", σ interpreted as a fraction of θ).
    - open[i] = close[i-1] (open[0] = initial_price).
    - high/low extend beyond max/min(open, close) by a random fraction
      of up to ~1% so true range and stochastic ranges are non-trivial.
    - volume is log-normally distributed around base_volume.
    - timestamps are pd.date_range(start, periods=n_bars, freq=freq).

    Args:
        n_bars: Number of bars (must be positive).
        initial_price: First open/close anchor.
        drift: GBM drift (ignored for OU).
        volatility: GBM σ, or OU σ as a fraction of long_term_mean.
        process: "gbm" or "ou".
        mean_reversion_speed: OU κ.
        long_term_mean: OU θ (defaults to initial_price).
        symbol: Symbol stamped on every bar.
        timeframe: Interval label stamped on every bar.
        start: First timestamp.
        freq: pandas offset alias between bars.
        base_volume: Median volume per bar.
        seed: Random seed; the same seed yields identical bars.

    Returns:
        List of n_bars Bars, oldest first.

    Raises:
        ValueError: If n_bars <= 0 or process is unknown.
    """
    if n_bars <= 0:
        raise ValueError(f"n_bars must be positive, got {n_bars}")

    if process == "gbm":
        closes = generate_gbm_prices(
            initial_price, drift, volatility, n_steps=n_bars, seed=seed
        ).to_numpy()[1:]
    elif process == "ou":
        theta = initial_price if long_term_mean is None else long_term_mean
        closes = generate_ou_prices(
            initial_price,
            mean_reversion_speed,
            theta,
            volatility * theta,
            n_steps=n_bars,
            seed=seed,
        ).to_numpy()[1:]
    else:
        raise ValueError(f"Unknown process '{process}'. Expected 'gbm' or 'ou'.")

    # Seeded above (when seed is given); continue drawing from the same stream
    opens = np.concatenate([[initial_price], closes[:-1]])
    wick_up = np.abs(np.random.standard_normal(n_bars)) * 0.005
    wick_down = np.abs(np.random.standard_normal(n_bars)) * 0.005
    highs = np.maximum(opens, closes) * (1 + wick_up)
    lows = np.minimum(opens, closes) * (1 - wick_down)
    volumes = base_volume * np.exp(0.3 * np.random.standard_normal(n_bars))

    timestamps = pd.date_range(start=start, periods=n_bars, freq=freq)

    return [
        Bar(
            timestamp=timestamps[i],
            open=float(opens[i]),
            high=float(highs[i]),
            low=float(lows[i]),
            close=float(closes[i]),
            volume=float(volumes[i]),
            symbol=symbol,
            timeframe=timeframe,
        )
        for i in range(n_bars)
    ]
