"""
Risk/performance metrics and synthetic market data.

Includes Sharpe/Sortino/Calmar, drawdown, VaR/CVaR, trade statistics, the
post-run performance report, and GBM/OU generators for testing.
"""
