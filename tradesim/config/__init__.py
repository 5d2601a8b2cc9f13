"""
Configuration loading and validation for backtest and risk settings.

Provides strongly typed settings objects loaded from environment variables
(and an optional .env file) with upfront validation.
"""
