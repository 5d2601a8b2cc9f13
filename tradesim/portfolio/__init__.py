"""
Portfolio ledger and P&L helpers.

The ledger is the single source of truth for cash, positions and P&L during
a backtest run, and is mutated only by applying trades and marking prices.
"""
