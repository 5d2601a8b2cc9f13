"""
tradesim – event-driven strategy backtesting core.

Streams historical OHLCV bars through incremental technical indicators and a
strategy, simulates fills against a portfolio ledger, and reports risk and
performance statistics for the finished run.
"""
