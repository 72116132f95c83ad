"""
Strategy interfaces for both simulators.

**Conceptual**: This module defines the contract between strategies and the
backtest engines. A strategy only answers questions ("enter long here?",
"exit this position now?"); the engine owns sizing, risk rules, accounting
and the position ledger. Strategies never mutate positions or candles.

**Why Protocols?**
  - Any object with the right methods is a strategy: a class instance, a
    module-level singleton, or a small test double. No inheritance required.
  - Each strategy is effectively a set of pure functions over
    (candles, index, context), which keeps backtests reproducible.

**Why a StrategyContext?**
  Auxiliary data a strategy needs beyond its own candle series (other
  timeframes, funding rates) is handed to it explicitly on every call. There
  is no module-level store to load beforehand, so repeated or concurrent runs
  cannot see each other's data.

**Teaching note**: Indicator values can be NaN during warm-up. Strategies
should treat NaN as "not enough data" and return NO_SIGNAL / NO_EXIT rather
than raising.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence

import pandas as pd

from kline_backtester.execution.models import BtcPosition, Position


# ============================================================================
# USD-margined futures signals
# ============================================================================

@dataclass(frozen=True)
class EntrySignal:
    """
    Answer to "should I open a position here?".

    Attributes:
        enter: True to request an entry.
        stop_loss: Absolute stop price.
        take_profit: First take-profit price.
        take_profit_2: Optional second take-profit price. When set, TP1
                       closes half and moves the stop to breakeven.
        reason: Free-text reason recorded on the position.
    """
    enter: bool
    stop_loss: float = 0.0
    take_profit: float = 0.0
    take_profit_2: Optional[float] = None
    reason: str = ""


@dataclass(frozen=True)
class ExitSignal:
    exit: bool
    reason: str = ""


NO_SIGNAL = EntrySignal(enter=False)
NO_EXIT = ExitSignal(exit=False)


@dataclass(frozen=True)
class StrategyContext:
    """
    Per-symbol data passed to every strategy call.

    Attributes:
        symbol: Symbol being evaluated.
        timeframe: Primary timeframe of the candle series.
        multi_timeframe: timeframe -> enriched candle frame for the symbol,
                         including the primary timeframe. Empty unless the
                         strategy declared `required_timeframes`.
        funding_rates: Funding-rate frame for the symbol (columns
                       `funding_rate_timestamp`, `funding_rate`), or None.
    """
    symbol: str
    timeframe: str
    multi_timeframe: Mapping[str, pd.DataFrame] = field(default_factory=dict)
    funding_rates: Optional[pd.DataFrame] = None

    def funding_rate_at(self, timestamp: pd.Timestamp) -> Optional[float]:
        """Most recent funding rate at or before `timestamp`, or None."""
        if self.funding_rates is None or self.funding_rates.empty:
            return None
        stamps = self.funding_rates['funding_rate_timestamp']
        pos = stamps.searchsorted(timestamp, side='right') - 1
        if pos < 0:
            return None
        return float(self.funding_rates['funding_rate'].iloc[pos])


class Strategy(Protocol):
    """
    USD futures strategy interface.

    `candles` is the full enriched frame for the symbol (ascending); `index`
    is the row of the current candle. Strategies must not read rows after
    `index`.
    """

    name: str
    required_timeframes: Sequence[str]

    def should_enter_long(
        self, candles: pd.DataFrame, index: int, context: StrategyContext
    ) -> EntrySignal:
        ...

    def should_enter_short(
        self, candles: pd.DataFrame, index: int, context: StrategyContext
    ) -> EntrySignal:
        ...

    def should_exit(
        self, position: Position, candles: pd.DataFrame, index: int, context: StrategyContext
    ) -> ExitSignal:
        ...


# ============================================================================
# BTC-denominated rotation signals
# ============================================================================

@dataclass(frozen=True)
class BtcEntrySignal:
    """
    Answer to "should I rotate BTC into this alt?".

    Attributes:
        enter: True to request an entry.
        btc_allocation: Fraction of total BTC equity to allocate (0, 1].
        stop_loss_ratio / tp1_ratio / tp2_ratio: Informational levels; the
            engine applies its own risk profile.
        reason: Free-text reason.
    """
    enter: bool
    btc_allocation: float = 0.0
    stop_loss_ratio: float = 0.0
    tp1_ratio: float = 0.0
    tp2_ratio: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class BtcExitSignal:
    """`sell_fraction` in (0, 1]; anything outside that range means sell everything."""
    exit: bool
    sell_fraction: float = 1.0
    reason: str = ""


NO_BTC_ENTRY = BtcEntrySignal(enter=False)
NO_BTC_EXIT = BtcExitSignal(exit=False, sell_fraction=0.0)


class BtcStrategy(Protocol):
    """
    ALT/BTC rotation strategy interface.

    `avg_ratio_trend` is the average % change of all ALT/BTC ratios over the
    engine's trend lookback: positive means alts outperform BTC.
    """

    name: str
    leverage: float

    def should_enter(
        self, candles: pd.DataFrame, index: int, avg_ratio_trend: float
    ) -> BtcEntrySignal:
        ...

    def should_exit(
        self, position: BtcPosition, candles: pd.DataFrame, index: int, avg_ratio_trend: float
    ) -> BtcExitSignal:
        ...


# ============================================================================
# Simple strategy implementations for testing and demonstration
# ============================================================================

class NeverEnterStrategy:
    """
    Trivial strategy that never trades.

    **Expected behavior in backtest**: equity stays at starting capital, no
    trades, flat equity curve. Useful to verify engine plumbing.
    """

    name = "Never Enter"
    required_timeframes: Sequence[str] = ()

    def should_enter_long(self, candles, index, context):
        return NO_SIGNAL

    def should_enter_short(self, candles, index, context):
        return NO_SIGNAL

    def should_exit(self, position, candles, index, context):
        return NO_EXIT


class ScheduledEntryStrategy:
    """
    Enters at pre-arranged timestamps with fixed percentage brackets.

    **Conceptual**: A deterministic fixture: given a mapping of
    (symbol, timestamp) -> side, it signals an entry on exactly those candles
    with a stop `stop_pct` away from the close and a take-profit
    `take_profit_pct` away (plus an optional second take-profit). It never
    asks for a discretionary exit unless `exit_at` names the candle.

    Args:
        entries: {(symbol, timestamp): "long" | "short"}.
        stop_pct: Stop distance as a fraction of the close (e.g. 0.05).
        take_profit_pct: TP1 distance as a fraction of the close.
        take_profit_2_pct: Optional TP2 distance.
        exit_at: Optional {(symbol, timestamp)} where should_exit fires.
    """

    name = "Scheduled Entry"

    def __init__(
        self,
        entries: Mapping[tuple, str],
        stop_pct: float = 0.05,
        take_profit_pct: float = 0.10,
        take_profit_2_pct: Optional[float] = None,
        exit_at: Sequence[tuple] = (),
        required_timeframes: Sequence[str] = (),
    ):
        self.entries = dict(entries)
        self.stop_pct = stop_pct
        self.take_profit_pct = take_profit_pct
        self.take_profit_2_pct = take_profit_2_pct
        self.exit_at = set(exit_at)
        self.required_timeframes = tuple(required_timeframes)

    def _signal(self, candles: pd.DataFrame, index: int, context: StrategyContext, side: str) -> EntrySignal:
        ts = candles['timestamp'].iloc[index]
        if self.entries.get((context.symbol, ts)) != side:
            return NO_SIGNAL
        close = float(candles['close'].iloc[index])
        direction = 1.0 if side == "long" else -1.0
        tp2 = None
        if self.take_profit_2_pct is not None:
            tp2 = close * (1.0 + direction * self.take_profit_2_pct)
        return EntrySignal(
            enter=True,
            stop_loss=close * (1.0 - direction * self.stop_pct),
            take_profit=close * (1.0 + direction * self.take_profit_pct),
            take_profit_2=tp2,
            reason=f"scheduled {side}",
        )

    def should_enter_long(self, candles, index, context):
        return self._signal(candles, index, context, "long")

    def should_enter_short(self, candles, index, context):
        return self._signal(candles, index, context, "short")

    def should_exit(self, position, candles, index, context):
        ts = candles['timestamp'].iloc[index]
        if (context.symbol, ts) in self.exit_at:
            return ExitSignal(exit=True, reason="scheduled exit")
        return NO_EXIT


class ScheduledRotationStrategy:
    """
    BTC rotation fixture: enters alts at pre-arranged timestamps.

    Args:
        entries: {(alt_symbol, timestamp): btc_allocation_fraction}.
        leverage: 1 for spot, > 1 for leveraged rotations.
        exits: Optional {(alt_symbol, timestamp): sell_fraction}.
    """

    name = "Scheduled Rotation"

    def __init__(self, entries: Mapping[tuple, float], leverage: float = 1.0,
                 exits: Optional[Mapping[tuple, float]] = None):
        self.entries = dict(entries)
        self.leverage = leverage
        self.exits = dict(exits or {})

    def should_enter(self, candles, index, avg_ratio_trend):
        key = (candles['alt_symbol'].iloc[index], candles['timestamp'].iloc[index])
        fraction = self.entries.get(key)
        if fraction is None:
            return NO_BTC_ENTRY
        close = float(candles['close'].iloc[index])
        return BtcEntrySignal(
            enter=True,
            btc_allocation=fraction,
            stop_loss_ratio=close * 0.85,
            tp1_ratio=close * 1.30,
            tp2_ratio=close * 1.50,
            reason="scheduled rotation",
        )

    def should_exit(self, position, candles, index, avg_ratio_trend):
        key = (position.alt_symbol, candles['timestamp'].iloc[index])
        fraction = self.exits.get(key)
        if fraction is None:
            return NO_BTC_EXIT
        return BtcExitSignal(exit=True, sell_fraction=fraction, reason="scheduled exit")
