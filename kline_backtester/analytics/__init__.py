"""
Performance statistics for finished backtests.

Equity-curve metrics (drawdown, daily Sharpe ratio) and trade-list statistics
(win rate, profit factor, monthly and per-symbol breakdowns).
"""
