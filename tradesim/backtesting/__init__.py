"""
Backtest engine, state machine, and run results.

Orchestrates bars, indicators, strategies, risk validation, fills and the
portfolio ledger to produce trade lists, equity curves and performance metrics.
"""
