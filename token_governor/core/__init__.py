"""
Core modules for token-governor.

This package contains admission control, backoff, rolling-window rate
limits, the usage ledger and prompt optimisation heuristics.
"""
