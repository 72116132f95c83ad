"""
kline_backtester: deterministic candle-replay backtests for crypto futures
and BTC-denominated ALT/BTC rotations.
"""
