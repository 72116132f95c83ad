"""
P&L, slippage and commission arithmetic for both simulator variants.

**Conceptual**: These functions hold every numeric policy of the simulation
(how a fill is slipped, how a leg is charged, how a close turns into a trade)
so the evaluators and engines only decide *when* something happens, never
*how much* it is worth.

**Financial assumptions**:
  - Slippage is a fraction of price applied against the trader: a long entry
    pays more, a long exit receives less; shorts are the mirror.
  - Commission is a fraction of the notional traded on each leg
    (entry, every partial close, final close).
  - USD P&L is the percentage move from entry applied to the notional:
    long `(exit - entry) / entry * size`, short `(entry - exit) / entry * size`.
  - BTC P&L uses the ALT/BTC ratio change; leveraged rotations lose at most
    the allocated margin.
"""

from typing import Sequence

import pandas as pd

from kline_backtester.execution.models import (
    LONG,
    PartialClose,
    Position,
    Trade,
    BtcPartialExit,
    BtcPosition,
    BtcTrade,
)


def apply_entry_slippage(price: float, side: str, slippage_rate: float) -> float:
    """Fill price for opening a position (long pays up, short sells lower)."""
    if side == LONG:
        return price * (1.0 + slippage_rate)
    return price * (1.0 - slippage_rate)


def apply_exit_slippage(price: float, side: str, slippage_rate: float) -> float:
    """Fill price for closing a position (long sells lower, short buys back higher)."""
    if side == LONG:
        return price * (1.0 - slippage_rate)
    return price * (1.0 + slippage_rate)


def price_move_pnl(side: str, entry_price: float, exit_price: float, size: float) -> float:
    """Gross P&L of `size` notional moved from `entry_price` to `exit_price`."""
    if side == LONG:
        return (exit_price - entry_price) / entry_price * size
    return (entry_price - exit_price) / entry_price * size


def unrealized_pnl(position: Position, mark_price: float) -> float:
    """
    Mark-to-market P&L of an open position.

    Same formula as a close (remaining size, side-aware move), minus the
    entry commission, plus what partial closes already realised net of
    their own leg commission. No exit slippage or exit commission is assumed.
    """
    raw = price_move_pnl(position.side, position.entry_price, mark_price, position.remaining_size)
    entry_commission = position.commission - position.partial_commission
    return raw - entry_commission + position.partial_pnl


def partial_close(
    position: Position,
    price: float,
    fraction: float,
    timestamp: pd.Timestamp,
    reason: str,
    slippage_rate: float,
    commission_rate: float,
) -> PartialClose:
    """
    Close `fraction` of the remaining size in place.

    The partial close is appended to the position and its commission is
    added to `position.commission` so the final close does not charge it
    twice.
    """
    close_size = position.remaining_size * fraction
    slipped = apply_exit_slippage(price, position.side, slippage_rate)
    commission = close_size * commission_rate
    pnl = price_move_pnl(position.side, position.entry_price, slipped, close_size) - commission

    record = PartialClose(
        price=slipped,
        size=close_size,
        pnl=pnl,
        timestamp=timestamp,
        reason=reason,
        commission=commission,
    )
    position.partial_closes.append(record)
    position.commission += commission
    return record


def close_position(
    position: Position,
    price: float,
    timestamp: pd.Timestamp,
    exit_reason: str,
    slippage_rate: float,
    commission_rate: float,
) -> Trade:
    """
    Freeze a position into a Trade at `price` (before slippage).

    The trade P&L is the final leg net of the total commission (entry,
    partial legs and this exit) plus the P&L realised by partial closes
    (each of which was already net of its own leg commission, so the
    partial commission is added back once to avoid counting it twice).
    """
    slipped = apply_exit_slippage(price, position.side, slippage_rate)
    final_size = position.remaining_size
    exit_commission = final_size * commission_rate
    total_commission = position.commission + exit_commission

    pnl = (
        price_move_pnl(position.side, position.entry_price, slipped, final_size)
        - total_commission
        + position.partial_pnl
        + position.partial_commission
    )

    return Trade(
        id=position.id,
        symbol=position.symbol,
        side=position.side,
        entry_price=position.entry_price,
        size=position.size,
        leverage=position.leverage,
        stop_loss=position.stop_loss,
        take_profit=position.take_profit,
        take_profit_2=position.take_profit_2,
        entry_time=position.entry_time,
        exit_time=timestamp,
        exit_price=slipped,
        final_size=final_size,
        pnl=pnl,
        commission=total_commission,
        duration=timestamp - position.entry_time,
        reason=position.reason,
        exit_reason=exit_reason,
        partial_closes=tuple(position.partial_closes),
        trailing_stop=position.trailing_stop,
        breakeven=position.breakeven,
        tp1_hit=position.tp1_hit,
    )


def realized_pnl(trades: Sequence) -> float:
    return sum(t.pnl for t in trades)


# ============================================================================
# BTC-denominated accounting
# ============================================================================

def calculate_btc_return(
    btc_allocated: float,
    entry_ratio: float,
    exit_ratio: float,
    leverage: float,
    commission_rate: float,
) -> float:
    """
    BTC received when closing `btc_allocated` of a rotation position.

    **Mathematical**: with r = exit_ratio / entry_ratio
      - spot (leverage <= 1): gross = allocated * r
      - futures: gross = max(0, allocated * (1 + leverage * (r - 1)))
    Commission is charged on entry and exit notional (allocated, or
    allocated * leverage for futures) and the net return is floored at zero.

    Returns:
        Net BTC returned (>= 0). Zero when `entry_ratio` is zero.
    """
    if entry_ratio == 0:
        return 0.0

    ratio_change = exit_ratio / entry_ratio

    if leverage <= 1:
        gross = btc_allocated * ratio_change
        notional = btc_allocated
    else:
        gross = max(btc_allocated * (1.0 + leverage * (ratio_change - 1.0)), 0.0)
        notional = btc_allocated * leverage

    total_commission = notional * commission_rate * 2
    return max(gross - total_commission, 0.0)


def btc_mark_to_market(position: BtcPosition, mark_ratio: float) -> float:
    """Value in BTC of an open rotation at `mark_ratio`, no commission."""
    if mark_ratio <= 0 or position.entry_ratio <= 0:
        return position.btc_allocated

    ratio_change = mark_ratio / position.entry_ratio
    if position.leverage <= 1:
        return position.btc_allocated * ratio_change
    return max(position.btc_allocated * (1.0 + position.leverage * (ratio_change - 1.0)), 0.0)


def btc_partial_exit(
    position: BtcPosition,
    ratio: float,
    fraction: float,
    timestamp: pd.Timestamp,
    reason: str,
    commission_rate: float,
) -> BtcPartialExit:
    """Sell `fraction` of the current allocation; returns the BTC released."""
    sold = position.btc_allocated * fraction
    returned = calculate_btc_return(sold, position.entry_ratio, ratio, position.leverage, commission_rate)
    record = BtcPartialExit(
        ratio=ratio,
        btc_allocated=sold,
        btc_returned=returned,
        timestamp=timestamp,
        reason=reason,
    )
    position.partial_exits.append(record)
    position.btc_allocated -= sold
    return record


def close_btc_position(
    position: BtcPosition,
    exit_ratio: float,
    timestamp: pd.Timestamp,
    exit_reason: str,
    commission_rate: float,
) -> tuple[BtcTrade, float]:
    """
    Freeze a rotation position into a BtcTrade.

    Returns:
        (trade, btc_returned) where btc_returned goes back to the available pool.
    """
    returned = calculate_btc_return(
        position.btc_allocated, position.entry_ratio, exit_ratio, position.leverage, commission_rate
    )
    trade = BtcTrade(
        id=position.id,
        alt_symbol=position.alt_symbol,
        entry_ratio=position.entry_ratio,
        exit_ratio=exit_ratio,
        btc_allocated=position.btc_allocated,
        initial_btc_allocated=position.initial_btc_allocated,
        entry_time=position.entry_time,
        exit_time=timestamp,
        btc_pnl=returned - position.btc_allocated,
        duration=timestamp - position.entry_time,
        leverage=position.leverage,
        reason=position.reason,
        exit_reason=exit_reason,
        tp1_hit=position.tp1_hit,
        partial_exits=tuple(position.partial_exits),
    )
    return trade, returned
