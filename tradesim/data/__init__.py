"""
Bar records, schema validation, and pandas conversion helpers.

Defines the immutable OHLCV Bar consumed by the backtest core and the
DataFrame-backed feed used to hand materialized history to the engine.
"""
