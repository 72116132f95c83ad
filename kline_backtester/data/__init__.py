"""
Candle data contracts and collaborators.

Schema validation for candle and funding-rate frames, the market-data and
indicator protocols, symbol loading, and synthetic ALT/BTC ratio candles.
"""
