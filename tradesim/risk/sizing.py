"""
Position sizing formulas.

Each function answers "how many units should I buy at entry_price?" for one
sizing method. size_position dispatches by method name and applies the
portfolio limits, which is what a strategy usually wants:

    qty = size_position("risk-based", equity, entry_price, limits,
                        stop_price=entry_price * 0.97, risk_percent=0.01)

Sizes are fractional; use round_to_lot for instruments traded in lots.
"""

import logging
import math
from typing import Optional

from tradesim.risk.limits import RiskLimits

logger = logging.getLogger(__name__)

SIZING_METHODS = ("fixed", "percent", "risk-based", "kelly", "volatility")

KELLY_CAP = 0.25
TARGET_VOLATILITY = 0.02


def _check_price(entry_price: float) -> None:
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")


def fixed_size(quantity: float) -> float:
    return quantity


def percent_size(equity: float, entry_price: float, percent: float = 0.10) -> float:
    """Allocate `percent` of equity."""
    _check_price(entry_price)
    return equity * percent / entry_price


def risk_based_size(
    equity: float,
    entry_price: float,
    stop_price: float,
    risk_percent: float = 0.02,
) -> float:
    """
    Size so that being stopped out loses `risk_percent` of equity.

        quantity = equity * risk_percent / |entry - stop|

    Returns 0.0 when the stop equals the entry (undefined risk per unit).
    """
    _check_price(entry_price)
    risk_per_unit = abs(entry_price - stop_price)
    if risk_per_unit == 0:
        logger.warning("Risk per unit is zero (stop == entry), returning size 0")
        return 0.0
    return equity * risk_percent / risk_per_unit


def kelly_size(
    equity: float,
    entry_price: float,
    win_rate: float,
    win_loss_ratio: float,
    fraction: float = 0.25,
) -> float:
    """
    Fractional Kelly allocation.

    **Mathematical**: f* = p - (1 - p) / b with p = win rate, b = avg win / avg loss.
    The allocation is f* * fraction, clipped to [0, 0.25] of equity; a negative
    edge gives size 0.
    """
    _check_price(entry_price)
    if win_loss_ratio <= 0:
        raise ValueError(f"win_loss_ratio must be positive, got {win_loss_ratio}")
    kelly = win_rate - (1 - win_rate) / win_loss_ratio
    allocation = min(max(kelly * fraction, 0.0), KELLY_CAP)
    return equity * allocation / entry_price


def volatility_size(
    equity: float,
    entry_price: float,
    volatility: float,
    multiplier: float = 1.0,
) -> float:
    """
    Inverse-volatility allocation targeting 2% volatility.

    Allocation fraction = (0.02 / volatility) * multiplier, clipped to [0, 1].
    """
    _check_price(entry_price)
    if volatility <= 0:
        raise ValueError(f"volatility must be positive, got {volatility}")
    allocation = min(max(TARGET_VOLATILITY / volatility * multiplier, 0.0), 1.0)
    return equity * allocation / entry_price


def max_size(equity: float, entry_price: float, max_position_fraction: float) -> float:
    _check_price(entry_price)
    return equity * max_position_fraction / entry_price


def apply_limits(size: float, entry_price: float, min_notional: float, max_units: float) -> float:
    """0 if the notional is below `min_notional`, else `size` capped at `max_units`."""
    if size * entry_price < min_notional:
        return 0.0
    return min(size, max_units)


def round_to_lot(size: float, lot_size: float) -> float:
    """Round down to a whole number of lots."""
    if lot_size <= 0:
        raise ValueError(f"lot_size must be positive, got {lot_size}")
    return math.floor(size / lot_size) * lot_size


def size_position(
    method: str,
    equity: float,
    entry_price: float,
    limits: Optional[RiskLimits] = None,
    *,
    quantity: float = 1.0,
    percent: float = 0.10,
    stop_price: Optional[float] = None,
    risk_percent: float = 0.02,
    win_rate: Optional[float] = None,
    win_loss_ratio: Optional[float] = None,
    kelly_fraction: float = 0.25,
    volatility: Optional[float] = None,
    volatility_multiplier: float = 1.0,
) -> float:
    """
    Size a position with the named method, then apply `limits` if given.

    Args:
        method: One of "fixed", "percent", "risk-based", "kelly", "volatility".
        equity: Current portfolio equity.
        entry_price: Expected entry price.
        limits: If given, max_position_size and min_position_size are applied.
        (remaining keyword arguments feed the individual methods)

    Raises:
        ValueError: Unknown method, or a method's required input is missing.
    """
    if method == "fixed":
        size = fixed_size(quantity)
    elif method == "percent":
        size = percent_size(equity, entry_price, percent)
    elif method == "risk-based":
        if stop_price is None:
            raise ValueError("stop_price is required for risk-based sizing")
        size = risk_based_size(equity, entry_price, stop_price, risk_percent)
    elif method == "kelly":
        if win_rate is None or win_loss_ratio is None:
            raise ValueError("win_rate and win_loss_ratio are required for kelly sizing")
        size = kelly_size(equity, entry_price, win_rate, win_loss_ratio, kelly_fraction)
    elif method == "volatility":
        if volatility is None:
            raise ValueError("volatility is required for volatility sizing")
        size = volatility_size(equity, entry_price, volatility, volatility_multiplier)
    else:
        raise ValueError(f"Unknown sizing method '{method}'. Expected one of {SIZING_METHODS}")

    if limits is not None:
        size = apply_limits(
            size,
            entry_price,
            limits.min_position_size,
            max_size(equity, entry_price, limits.max_position_size),
        )

    logger.debug(f"Sized {method} position: {size}")
    return size
