"""
Exit rule cascades for open positions.

**Conceptual**: At every timestamp where an open position's symbol has a
candle, the engine asks this module "what happens to this position now?".
The answer is an ExitOutcome: nothing, a partial close, or a full close.
Rules are evaluated in a fixed order and the first rule that fires wins:

USD futures (evaluate_usd_exit):
  1. Stop loss (candle extreme crosses the stop; filled AT the stop).
  2. Take-profit 1, once: partial close when a TP2 exists (stop moves to
     breakeven), full close otherwise.
  3. Take-profit 2 (only after TP1).
  4. Strategy exit (filled at candle close).
  5. Trailing stop update: never closes in the same step, only tightens.

BTC rotation (evaluate_btc_exit), all on the ratio close:
  1. Stop loss.  2. BTC dominance dropping fast.  3. TP1 partial.
  4. TP2.  5. Max hold timeout.  6. Strategy exit (partial or full).

**Why split evaluate / apply?**
  Deciding an outcome reads the position; applying it mutates the position
  and the ledger. Keeping the two apart means the cascade can be unit-tested
  on a bare Position without a ledger, and all mutation happens through
  `apply_usd_exit` / `apply_btc_exit` in one place.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import pandas as pd

from kline_backtester.config.settings import BacktestConfig, BtcBacktestConfig, BtcRiskProfile
from kline_backtester.execution.accounting import (
    btc_partial_exit,
    close_btc_position,
    close_position,
    partial_close,
)
from kline_backtester.execution.ledger import PositionLedger
from kline_backtester.execution.models import BtcPosition, BtcTrade, Position, Trade
from kline_backtester.strategies.base import BtcStrategy, Strategy, StrategyContext

logger = logging.getLogger(__name__)

REASON_STOP_LOSS = "Stop loss hit"
REASON_TP1_FULL = "TP1 hit — full close"
REASON_TP2 = "TP2 hit — full close"
REASON_FORCED_CLOSE = "End of backtest — forced close"

BTC_REASON_STOP_LOSS = "stop_loss"
BTC_REASON_DOMINANCE = "btc_dominance_drop"
BTC_REASON_TP1 = "tp1"
BTC_REASON_TP2 = "tp2"
BTC_REASON_MAX_HOLD = "max_hold_timeout"
BTC_REASON_FORCED_CLOSE = "backtest_end"


def tp1_partial_reason(fraction: float) -> str:
    return f"TP1 hit — partial close {fraction:.0%}"


class ExitAction(Enum):
    NONE = "none"
    PARTIAL = "partial"
    CLOSE = "close"


@dataclass(frozen=True)
class ExitOutcome:
    """
    Decision produced by an exit cascade.

    Attributes:
        action: NONE, PARTIAL or CLOSE.
        reason: Exit reason recorded on the trade or partial close.
        price: Fill level before slippage (USD price or ALT/BTC ratio).
        fraction: Share of the remaining size/allocation closed by a PARTIAL.
        take_profit_1: True when the outcome is the first take-profit firing.
    """
    action: ExitAction
    reason: str = ""
    price: float = 0.0
    fraction: float = 1.0
    take_profit_1: bool = False


NO_ACTION = ExitOutcome(action=ExitAction.NONE)


# ============================================================================
# USD futures cascade
# ============================================================================

def _touched(position: Position, level: float, high: float, low: float, favourable: bool) -> bool:
    """True if the candle range reached `level` in the given direction."""
    if position.is_long == favourable:
        return high >= level
    return low <= level


def update_trailing_stop(
    position: Position,
    close: float,
    atr: Optional[float],
    trigger: float = 1.0,
    multiplier: float = 0.5,
) -> bool:
    """
    Ratchet the trailing stop once the close is `trigger` ATRs in profit.

    The candidate level is `entry +/- multiplier * ATR`. `trailing_stop`
    only ever tightens (higher for longs, lower for shorts), and the live
    stop moves to it only when that is tighter than the current stop.

    Returns:
        True if the position's stop loss changed.
    """
    if atr is None or not math.isfinite(atr) or atr <= 0:
        return False

    if position.is_long:
        if close - position.entry_price < trigger * atr:
            return False
        candidate = position.entry_price + multiplier * atr
        if position.trailing_stop is None or candidate > position.trailing_stop:
            position.trailing_stop = candidate
        if position.trailing_stop > position.stop_loss:
            position.stop_loss = position.trailing_stop
            return True
        return False

    if position.entry_price - close < trigger * atr:
        return False
    candidate = position.entry_price - multiplier * atr
    if position.trailing_stop is None or candidate < position.trailing_stop:
        position.trailing_stop = candidate
    if position.trailing_stop < position.stop_loss:
        position.stop_loss = position.trailing_stop
        return True
    return False


def evaluate_usd_exit(
    position: Position,
    candles: pd.DataFrame,
    index: int,
    strategy: Strategy,
    context: StrategyContext,
    config: BacktestConfig,
) -> ExitOutcome:
    """
    Run the USD exit cascade for one position on one candle.

    When no rule closes the position, the trailing stop is updated in place
    and NO_ACTION is returned.

    Args:
        position: Open position on `context.symbol`.
        candles: Enriched candle frame of the symbol.
        index: Row of the current candle.
        strategy: Strategy consulted for discretionary exits.
        context: Per-symbol strategy context.
        config: Run configuration (trailing and TP1 settings).

    Returns:
        The first outcome that fires.
    """
    row = candles.iloc[index]
    high = float(row['high'])
    low = float(row['low'])
    close = float(row['close'])

    if _touched(position, position.stop_loss, high, low, favourable=False):
        return ExitOutcome(ExitAction.CLOSE, REASON_STOP_LOSS, position.stop_loss)

    if not position.tp1_hit and _touched(position, position.take_profit, high, low, favourable=True):
        if position.take_profit_2 is not None:
            fraction = config.tp1_close_fraction
            return ExitOutcome(
                ExitAction.PARTIAL,
                tp1_partial_reason(fraction),
                position.take_profit,
                fraction=fraction,
                take_profit_1=True,
            )
        return ExitOutcome(ExitAction.CLOSE, REASON_TP1_FULL, position.take_profit, take_profit_1=True)

    if (
        position.tp1_hit
        and position.take_profit_2 is not None
        and _touched(position, position.take_profit_2, high, low, favourable=True)
    ):
        return ExitOutcome(ExitAction.CLOSE, REASON_TP2, position.take_profit_2)

    signal = strategy.should_exit(position, candles, index, context)
    if signal.exit:
        return ExitOutcome(ExitAction.CLOSE, signal.reason, close)

    atr = row['atr'] if 'atr' in row.index else None
    if update_trailing_stop(
        position,
        close,
        float(atr) if atr is not None else None,
        trigger=config.trailing_atr_trigger,
        multiplier=config.trailing_atr_multiplier,
    ):
        logger.debug("%s trailing stop -> %.6f", position.id, position.stop_loss)

    return NO_ACTION


def apply_usd_exit(
    ledger: PositionLedger,
    position: Position,
    outcome: ExitOutcome,
    timestamp: pd.Timestamp,
    config: BacktestConfig,
) -> Optional[Trade]:
    """
    Carry out an ExitOutcome on the ledger.

    Returns:
        The Trade when the position was fully closed, else None.
    """
    if outcome.action is ExitAction.NONE:
        return None

    if outcome.take_profit_1:
        position.tp1_hit = True

    if outcome.action is ExitAction.PARTIAL:
        partial_close(
            position,
            outcome.price,
            outcome.fraction,
            timestamp,
            outcome.reason,
            config.slippage_rate,
            config.commission_rate,
        )
        if outcome.take_profit_1:
            position.stop_loss = position.entry_price
            position.breakeven = True
        return None

    trade = close_position(
        position,
        outcome.price,
        timestamp,
        outcome.reason,
        config.slippage_rate,
        config.commission_rate,
    )
    ledger.close(position.id, trade)
    return trade


# ============================================================================
# BTC rotation cascade
# ============================================================================

def evaluate_btc_exit(
    position: BtcPosition,
    candles: pd.DataFrame,
    index: int,
    strategy: BtcStrategy,
    avg_ratio_trend: float,
    dominance_trend: float,
    profile: BtcRiskProfile,
    config: BtcBacktestConfig,
) -> ExitOutcome:
    """
    Run the rotation exit cascade for one position on one ratio candle.

    Args:
        position: Open rotation on the candle's alt.
        candles: Ratio candle frame of the alt.
        index: Row of the current candle.
        strategy: Rotation strategy consulted last.
        avg_ratio_trend: Trend over the configured lookback (given to the strategy).
        dominance_trend: 1-day average ratio trend (%) across alts.
        profile: Stop/target/hold rules for the position's leverage.
        config: Run configuration.

    Returns:
        The first outcome that fires, priced at the ratio close.
    """
    ratio = float(candles['close'].iloc[index])
    timestamp = candles['timestamp'].iloc[index]
    entry = position.entry_ratio

    if ratio <= entry * (1.0 - profile.stop_loss_pct):
        return ExitOutcome(ExitAction.CLOSE, BTC_REASON_STOP_LOSS, ratio)

    if dominance_trend > config.dominance_threshold:
        return ExitOutcome(ExitAction.CLOSE, BTC_REASON_DOMINANCE, ratio)

    if not position.tp1_hit and ratio >= entry * (1.0 + profile.tp1_pct):
        return ExitOutcome(
            ExitAction.PARTIAL,
            BTC_REASON_TP1,
            ratio,
            fraction=config.tp1_sell_fraction,
            take_profit_1=True,
        )

    if position.tp1_hit and ratio >= entry * (1.0 + profile.tp2_pct):
        return ExitOutcome(ExitAction.CLOSE, BTC_REASON_TP2, ratio)

    if timestamp - position.entry_time >= pd.Timedelta(days=profile.max_hold_days):
        return ExitOutcome(ExitAction.CLOSE, BTC_REASON_MAX_HOLD, ratio)

    signal = strategy.should_exit(position, candles, index, avg_ratio_trend)
    if signal.exit:
        fraction = signal.sell_fraction
        if not 0.0 < fraction <= 1.0:
            fraction = 1.0
        if fraction >= 1.0:
            return ExitOutcome(ExitAction.CLOSE, signal.reason, ratio)
        return ExitOutcome(ExitAction.PARTIAL, signal.reason, ratio, fraction=fraction)

    return NO_ACTION


def apply_btc_exit(
    ledger: PositionLedger,
    position: BtcPosition,
    outcome: ExitOutcome,
    timestamp: pd.Timestamp,
    profile: BtcRiskProfile,
) -> Tuple[Optional[BtcTrade], float]:
    """
    Carry out an ExitOutcome on a rotation position.

    Returns:
        (trade or None, BTC released back to the available pool).
    """
    if outcome.action is ExitAction.NONE:
        return None, 0.0

    if outcome.action is ExitAction.PARTIAL:
        record = btc_partial_exit(
            position,
            outcome.price,
            outcome.fraction,
            timestamp,
            outcome.reason,
            profile.commission_rate,
        )
        if outcome.take_profit_1:
            position.tp1_hit = True
        return None, record.btc_returned

    trade, returned = close_btc_position(
        position, outcome.price, timestamp, outcome.reason, profile.commission_rate
    )
    ledger.close(position.id, trade)
    return trade, returned
