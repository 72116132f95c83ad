"""
Position/trade models, the position ledger, and P&L accounting.

Implements slippage, per-leg commission and partial closes for the USD
variant, and BTC return arithmetic for the rotation variant.
"""
