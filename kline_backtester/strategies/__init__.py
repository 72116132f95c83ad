"""
Strategy interfaces for signal generation.

Defines the USD and BTC strategy protocols, the signal records they return,
and small deterministic strategies used for testing.
"""
