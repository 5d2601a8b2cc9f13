"""
Order and trade records plus the deterministic fill simulator.
"""
