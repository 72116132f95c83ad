"""
Backtest engines and the pieces they orchestrate.

Timeline merging, exit and entry evaluation, the USD futures and BTC rotation
engines, result objects and multi-run grids.
"""
