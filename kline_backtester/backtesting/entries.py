"""
Entry evaluation and position sizing.

**Conceptual**: The strategy says *whether* to enter; this module decides
whether the engine *can* and *how big*. A candidate entry is rejected (never
an error) when:
  - too few candles precede the current one (warm-up),
  - the symbol already holds a position, or the ledger is at its cap,
  - any value the sizing consumes is NaN/inf (treated as "not enough data"),
  - the arithmetic degenerates (zero stop distance, size <= 0, allocation
    below the minimum).

**USD sizing** (fixed-fractional risk):
    entry = close * (1 + s)  for longs, close * (1 - s) for shorts
    risk  = equity * risk_per_trade
    size  = risk / (|entry - stop| / entry), capped at equity * leverage
so that hitting the stop loses roughly `risk` dollars.

**BTC sizing**:
    allocation = total_btc_equity * signal.btc_allocation,
    capped at the BTC not already allocated.
"""

import logging
import math
from typing import Optional

import pandas as pd

from kline_backtester.config.settings import BacktestConfig, BtcBacktestConfig
from kline_backtester.execution.accounting import apply_entry_slippage
from kline_backtester.execution.ledger import PositionLedger
from kline_backtester.execution.models import LONG, SHORT, BtcPosition, Position
from kline_backtester.strategies.base import (
    BtcStrategy,
    EntrySignal,
    Strategy,
    StrategyContext,
)

logger = logging.getLogger(__name__)


def _finite(*values) -> bool:
    return all(v is not None and math.isfinite(v) for v in values)


def calculate_position_size(
    entry_price: float,
    stop_loss: float,
    equity: float,
    risk_per_trade: float,
    leverage: float,
) -> float:
    """
    Notional size risking `equity * risk_per_trade` between entry and stop.

    Returns:
        Size in USD, capped at `equity * leverage`. Zero when the stop
        distance is zero or the entry price is not positive.
    """
    if entry_price <= 0:
        return 0.0
    distance = abs(entry_price - stop_loss) / entry_price
    if distance == 0:
        return 0.0
    size = (equity * risk_per_trade) / distance
    return min(size, equity * leverage)


def build_usd_position(
    signal: EntrySignal,
    side: str,
    symbol: str,
    close: float,
    timestamp: pd.Timestamp,
    equity: float,
    config: BacktestConfig,
    position_id: str,
) -> Optional[Position]:
    """
    Size and create a Position from an accepted signal, or None if degenerate.

    The entry commission is charged immediately and stored on the position.
    """
    take_profit_2 = signal.take_profit_2
    if not _finite(close, signal.stop_loss, signal.take_profit, equity):
        return None
    if take_profit_2 is not None and not math.isfinite(take_profit_2):
        return None

    entry_price = apply_entry_slippage(close, side, config.slippage_rate)
    size = calculate_position_size(
        entry_price, signal.stop_loss, equity, config.risk_per_trade, config.leverage
    )
    if size <= 0:
        return None

    return Position(
        id=position_id,
        symbol=symbol,
        side=side,
        entry_price=entry_price,
        size=size,
        leverage=config.leverage,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
        take_profit_2=take_profit_2,
        entry_time=timestamp,
        commission=size * config.commission_rate,
        reason=signal.reason,
    )


def evaluate_usd_entry(
    candles: pd.DataFrame,
    index: int,
    strategy: Strategy,
    context: StrategyContext,
    ledger: PositionLedger,
    equity: float,
    config: BacktestConfig,
    position_id: str,
) -> Optional[Position]:
    """
    Ask the strategy for an entry on the current candle and size it.

    The long signal is considered before the short one; the first that
    produces a valid position wins. The caller adds the returned position to
    the ledger.

    Args:
        candles: Enriched candle frame of `context.symbol`.
        index: Row of the current candle.
        strategy: USD strategy.
        context: Per-symbol strategy context.
        ledger: Ledger used for the concurrency checks (not mutated here).
        equity: Last sampled account equity.
        config: Run configuration.
        position_id: Id assigned if an entry is made.

    Returns:
        New Position, or None if no entry.
    """
    if index < config.warmup_candles:
        return None
    if ledger.has_position(context.symbol) or ledger.is_full:
        return None

    close = float(candles['close'].iloc[index])
    timestamp = candles['timestamp'].iloc[index]

    for side, ask in ((LONG, strategy.should_enter_long), (SHORT, strategy.should_enter_short)):
        signal = ask(candles, index, context)
        if not signal.enter:
            continue
        position = build_usd_position(
            signal, side, context.symbol, close, timestamp, equity, config, position_id
        )
        if position is None:
            logger.debug("Rejected %s %s entry at %s: degenerate sizing", context.symbol, side, timestamp)
            continue
        return position

    return None


def evaluate_btc_entry(
    candles: pd.DataFrame,
    index: int,
    alt_symbol: str,
    strategy: BtcStrategy,
    avg_ratio_trend: float,
    ledger: PositionLedger,
    total_btc_equity: float,
    available_btc: float,
    config: BtcBacktestConfig,
    position_id: str,
) -> Optional[BtcPosition]:
    """
    Ask the rotation strategy for an entry and size the BTC allocation.

    Returns:
        New BtcPosition (the caller deducts `btc_allocated` from the
        available pool and adds it to the ledger), or None.
    """
    if index < config.warmup_candles:
        return None
    if ledger.has_position(alt_symbol) or ledger.is_full:
        return None

    ratio = float(candles['close'].iloc[index])
    if not math.isfinite(ratio) or ratio <= 0:
        return None

    signal = strategy.should_enter(candles, index, avg_ratio_trend)
    if not signal.enter:
        return None
    if not _finite(signal.btc_allocation, total_btc_equity) or signal.btc_allocation <= 0:
        return None

    allocation = min(total_btc_equity * signal.btc_allocation, available_btc)
    if allocation <= 0 or allocation < config.min_btc_allocation:
        return None

    return BtcPosition(
        id=position_id,
        alt_symbol=alt_symbol,
        entry_ratio=ratio,
        btc_allocated=allocation,
        entry_time=candles['timestamp'].iloc[index],
        leverage=strategy.leverage,
        reason=signal.reason,
    )
