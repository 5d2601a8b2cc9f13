"""
Streaming technical indicators.

Every indicator keeps its own bounded window and recurrence state, produces
None until it has enough history, and defines batch calculation as a replay
of its incremental update.
"""
