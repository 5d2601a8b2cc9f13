"""
Typed exceptions for the backtest core.

**Conceptual**: The core distinguishes three failure kinds:
  - Insufficient data: indicators return None, never raise.
  - Policy rejection: order validation returns an OrderDecision (a value,
    not an exception) and the loop keeps going.
  - Configuration errors: invalid periods, capital, or limits are raised at
    construction time, before any bar is processed.

Only the last kind (plus ledger invariant violations, which indicate a caller
bug) is represented by exceptions here. Both subclass ValueError so callers
that already catch ValueError for bad arguments keep working.
"""


class ConfigurationError(ValueError):
    """
    Raised when an indicator, backtest config, risk limit or setting is invalid.

    Raised eagerly in constructors / __post_init__ so a bad configuration fails
    before the first bar is processed.
    """
    pass


class LedgerError(ValueError):
    """
    Raised when a trade would violate a ledger invariant.

    Examples: selling a symbol with no open position, or selling more than is
    held. The ledger never clamps such trades; order validation is expected to
    reject them upstream, so reaching this error means a caller bypassed it.
    """
    pass
