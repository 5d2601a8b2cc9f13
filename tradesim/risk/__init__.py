"""
Risk limits, order validation, position sizing and stop-loss helpers.

All functions are stateless and operate on portfolio snapshots.
"""
