"""
Configuration settings for the backtest core.

**Conceptual**: This module provides strongly-typed configuration objects that
load from environment variables (via .env files). All settings are validated
at construction, ensuring fail-fast behavior if configuration is invalid:
a negative starting capital or a commission rate of 150% is reported before a
single bar is processed, not halfway through a parameter sweep.

**Why centralized config?**
  - Single source of truth for run defaults (capital, costs, risk limits).
  - Easy to test (inject fake settings instead of reading from environment).
  - Fail-fast validation (bad value -> ConfigurationError at startup).

**Environment variables** (all optional, defaults in parentheses):
  - BACKTEST_INITIAL_CAPITAL (100000)
  - BACKTEST_COMMISSION_RATE (0.001 = 0.1% of notional)
  - BACKTEST_SLIPPAGE (0.0005 = 0.05% adverse price move)
  - BACKTEST_PERIODS_PER_YEAR (252)
  - RISK_MAX_RISK_PER_TRADE (0.05), RISK_MAX_PORTFOLIO_RISK (0.10),
    RISK_MAX_DRAWDOWN (0.20), RISK_MAX_POSITIONS (5),
    RISK_MAX_POSITION_SIZE (0.25), RISK_MIN_POSITION_SIZE (10),
    RISK_DAILY_LOSS_LIMIT (unset = no daily loss limit)
  - LOG_LEVEL (INFO)

This module uses python-dotenv to load .env files and dataclasses for type safety.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from tradesim.errors import ConfigurationError
from tradesim.risk.limits import RiskLimits

# Load .env from project root (dev/local environments); missing file is fine
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got: {raw}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got: {raw}")


@dataclass(frozen=True)
class BacktestSettings:
    """
    Default economics of a backtest run.

    Attributes:
        initial_capital: Starting cash in quote currency. Must be positive.
        commission_rate: Commission as a fraction of traded notional
                        (0.001 = 0.1%). Must be in [0, 1).
        slippage: Adverse price move as a fraction of the base fill price
                 (buys pay more, sells receive less). Must be in [0, 1).
        periods_per_year: Bars per year, used to annualize returns
                         (252 for daily equity bars, 8760 for hourly crypto).
    """
    initial_capital: float = 100_000.0
    commission_rate: float = 0.001
    slippage: float = 0.0005
    periods_per_year: int = 252

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.initial_capital <= 0:
            raise ConfigurationError(
                f"initial_capital must be positive, got: {self.initial_capital}"
            )
        if not 0 <= self.commission_rate < 1:
            raise ConfigurationError(
                f"commission_rate must be in [0, 1), got: {self.commission_rate}"
            )
        if not 0 <= self.slippage < 1:
            raise ConfigurationError(
                f"slippage must be in [0, 1), got: {self.slippage}"
            )
        if self.periods_per_year <= 0:
            raise ConfigurationError(
                f"periods_per_year must be positive, got: {self.periods_per_year}"
            )

    @classmethod
    def from_env(cls) -> "BacktestSettings":
        """
        Load backtest settings from environment variables.

        Returns:
            BacktestSettings with values from BACKTEST_* variables (or defaults).

        Raises:
            ConfigurationError: If a variable is unparseable or out of range.
        """
        return cls(
            initial_capital=_env_float("BACKTEST_INITIAL_CAPITAL", 100_000.0),
            commission_rate=_env_float("BACKTEST_COMMISSION_RATE", 0.001),
            slippage=_env_float("BACKTEST_SLIPPAGE", 0.0005),
            periods_per_year=_env_int("BACKTEST_PERIODS_PER_YEAR", 252),
        )


def risk_limits_from_env() -> RiskLimits:
    """
    Load risk limits from RISK_* environment variables.

    Returns:
        RiskLimits (validated by its own __post_init__).
    """
    defaults = RiskLimits()
    return RiskLimits(
        max_risk_per_trade=_env_float("RISK_MAX_RISK_PER_TRADE", defaults.max_risk_per_trade),
        max_portfolio_risk=_env_float("RISK_MAX_PORTFOLIO_RISK", defaults.max_portfolio_risk),
        max_drawdown=_env_float("RISK_MAX_DRAWDOWN", defaults.max_drawdown),
        max_positions=_env_int("RISK_MAX_POSITIONS", defaults.max_positions),
        max_position_size=_env_float("RISK_MAX_POSITION_SIZE", defaults.max_position_size),
        min_position_size=_env_float("RISK_MIN_POSITION_SIZE", defaults.min_position_size),
        daily_loss_limit=_env_float("RISK_DAILY_LOSS_LIMIT", defaults.daily_loss_limit),
    )


@dataclass(frozen=True)
class Settings:
    """
    Top-level settings object aggregating all subsystem settings.

    **Usage pattern**:
      ```python
      from tradesim.config.settings import Settings

      settings = Settings.from_env()
      config = BacktestConfig.from_settings(settings)
      ```

    Attributes:
        backtest: Capital and cost model defaults.
        risk: Risk limits applied by order validation.
        log_level: Root log level name; setup_logging uses it when called
                   without an explicit level.
    """
    backtest: BacktestSettings = field(default_factory=BacktestSettings)
    risk: RiskLimits = field(default_factory=RiskLimits)
    log_level: str = "INFO"

    def __post_init__(self):
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"log_level must be one of {VALID_LOG_LEVELS}, got: {self.log_level}"
            )

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Load all settings from environment variables.

        Raises:
            ConfigurationError: If any variable is unparseable or invalid.
        """
        return cls(
            backtest=BacktestSettings.from_env(),
            risk=risk_limits_from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Lazily loaded, immutable settings shared by callers that don't inject their own.
# Backtest runs never mutate it, so parallel runs can read it safely.
_default_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the cached settings object, loading it from the environment on first use.

    Tests and parameter sweeps can bypass this entirely by constructing
    Settings(...) directly and passing it where needed.

    Returns:
        The cached Settings.
    """
    global _default_settings

    if _default_settings is None:
        _default_settings = Settings.from_env()

    return _default_settings


def reset_settings():
    """
    Clear the cached settings so the next get_settings() re-reads the environment.

    Used in tests together with monkeypatched environment variables.
    """
    global _default_settings
    _default_settings = None
