"""
Strategy interface, strategy context, and example strategies.
"""
