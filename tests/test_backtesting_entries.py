"""
Tests for kline_backtester/backtesting/entries.py

Covers:
- Fixed-fractional sizing and the leverage cap
- Entry rejections: warm-up, symbol already held, ledger full, NaN levels
- Long considered before short
- BTC allocation sizing, capping at the available pool and the minimum
"""

import math

import pandas as pd
import pytest

from kline_backtester.backtesting.entries import (
    calculate_position_size,
    evaluate_btc_entry,
    evaluate_usd_entry,
)
from kline_backtester.config.settings import BacktestConfig, BtcBacktestConfig
from kline_backtester.execution.ledger import PositionLedger
from kline_backtester.execution.models import BtcPosition, Position
from kline_backtester.strategies.base import (
    NO_SIGNAL,
    EntrySignal,
    NeverEnterStrategy,
    ScheduledRotationStrategy,
    StrategyContext,
)

T0 = pd.Timestamp("2024-01-01 00:00", tz="UTC")
CONTEXT = StrategyContext(symbol="BTCUSDT", timeframe="1h")


def make_candles(closes, freq: str = "1h") -> pd.DataFrame:
    stamps = pd.date_range(T0, periods=len(closes), freq=freq)
    return pd.DataFrame({
        "timestamp": stamps,
        "open": closes,
        "high": closes,
        "low": closes,
        "close": closes,
        "volume": 1.0,
    })


class FixedSignalStrategy(NeverEnterStrategy):
    """Returns the given signals on every candle."""

    name = "Fixed Signal"

    def __init__(self, long=NO_SIGNAL, short=NO_SIGNAL):
        self.long = long
        self.short = short

    def should_enter_long(self, candles, index, context):
        return self.long

    def should_enter_short(self, candles, index, context):
        return self.short


LONG_SIGNAL = EntrySignal(enter=True, stop_loss=95.0, take_profit=110.0, reason="go long")
SHORT_SIGNAL = EntrySignal(enter=True, stop_loss=105.0, take_profit=90.0, reason="go short")


def test_position_size_risks_a_fixed_fraction():
    """
    Scenario: equity 500, risk 4%, entry 100, stop 95 (5% away).

    Expected: 20 USD at risk / 0.05 = 400 notional (below the 1500 cap).
    """
    assert calculate_position_size(100.0, 95.0, 500.0, 0.04, 3.0) == pytest.approx(400.0)


def test_position_size_capped_by_leverage():
    assert calculate_position_size(100.0, 99.9, 500.0, 0.04, 3.0) == pytest.approx(1500.0)


def test_position_size_zero_for_degenerate_inputs():
    assert calculate_position_size(100.0, 100.0, 500.0, 0.04, 3.0) == 0.0
    assert calculate_position_size(0.0, 95.0, 500.0, 0.04, 3.0) == 0.0


def test_usd_entry_sized_with_slippage_and_commission():
    config = BacktestConfig(slippage_rate=0.0003, commission_rate=0.0006)
    candles = make_candles([100.0, 100.0])
    position = evaluate_usd_entry(
        candles, 1, FixedSignalStrategy(long=LONG_SIGNAL), CONTEXT,
        PositionLedger(3), 500.0, config, position_id="BTCUSDT-0",
    )

    entry = 100.0 * 1.0003
    size = 20.0 / ((entry - 95.0) / entry)
    assert isinstance(position, Position)
    assert position.id == "BTCUSDT-0"
    assert position.side == "long"
    assert position.entry_price == pytest.approx(entry)
    assert position.size == pytest.approx(size)
    assert position.commission == pytest.approx(size * 0.0006)
    assert position.entry_time == candles["timestamp"].iloc[1]
    assert position.reason == "go long"


def test_usd_entry_rejected_during_warmup():
    candles = make_candles([100.0, 100.0])
    strategy = FixedSignalStrategy(long=LONG_SIGNAL)

    assert evaluate_usd_entry(candles, 0, strategy, CONTEXT, PositionLedger(3), 500.0,
                              BacktestConfig(), "BTCUSDT-0") is None
    assert evaluate_usd_entry(candles, 0, strategy, CONTEXT, PositionLedger(3), 500.0,
                              BacktestConfig(warmup_candles=0), "BTCUSDT-0") is not None


def test_usd_entry_rejected_when_symbol_held_or_ledger_full():
    candles = make_candles([100.0, 100.0])
    strategy = FixedSignalStrategy(long=LONG_SIGNAL)
    held = PositionLedger(3)
    held.add(evaluate_usd_entry(candles, 1, strategy, CONTEXT, held, 500.0, BacktestConfig(), "BTCUSDT-0"))

    assert evaluate_usd_entry(candles, 1, strategy, CONTEXT, held, 500.0, BacktestConfig(), "BTCUSDT-1") is None

    full = PositionLedger(1)
    other = StrategyContext(symbol="ETHUSDT", timeframe="1h")
    full.add(evaluate_usd_entry(candles, 1, strategy, other, full, 500.0, BacktestConfig(), "ETHUSDT-0"))
    assert evaluate_usd_entry(candles, 1, strategy, CONTEXT, full, 500.0, BacktestConfig(), "BTCUSDT-1") is None


def test_usd_entry_nan_stop_is_not_enough_data():
    candles = make_candles([100.0, 100.0])
    strategy = FixedSignalStrategy(long=EntrySignal(enter=True, stop_loss=math.nan, take_profit=110.0))
    assert evaluate_usd_entry(candles, 1, strategy, CONTEXT, PositionLedger(3), 500.0,
                              BacktestConfig(), "BTCUSDT-0") is None


def test_usd_long_checked_before_short():
    candles = make_candles([100.0, 100.0])
    both = FixedSignalStrategy(long=LONG_SIGNAL, short=SHORT_SIGNAL)
    position = evaluate_usd_entry(candles, 1, both, CONTEXT, PositionLedger(3), 500.0,
                                  BacktestConfig(), "BTCUSDT-0")
    assert position.side == "long"

    # A long without a usable take-profit falls through to the short
    broken_long = EntrySignal(enter=True, stop_loss=95.0, take_profit=math.nan)
    fallback = FixedSignalStrategy(long=broken_long, short=SHORT_SIGNAL)
    position = evaluate_usd_entry(candles, 1, fallback, CONTEXT, PositionLedger(3), 500.0,
                                  BacktestConfig(), "BTCUSDT-0")
    assert position.side == "short"
    assert position.entry_price == pytest.approx(100.0 * (1 - 0.0003))


# ============================================================================
# BTC rotation entries
# ============================================================================

def make_ratio_candles(ratios) -> pd.DataFrame:
    stamps = pd.date_range(T0, periods=len(ratios), freq="4h")
    return pd.DataFrame({"timestamp": stamps, "alt_symbol": "ETHUSDT", "close": ratios})


def rotation_entry(candles, fraction, total=0.05, available=0.05, config=None, ledger=None):
    strategy = ScheduledRotationStrategy({("ETHUSDT", candles["timestamp"].iloc[1]): fraction})
    return evaluate_btc_entry(
        candles, 1, "ETHUSDT", strategy, 0.0, ledger or PositionLedger(3),
        total, available, config or BtcBacktestConfig(), position_id="btc-pos-1",
    )


def test_btc_entry_allocates_fraction_of_total_equity():
    candles = make_ratio_candles([0.05, 0.05])
    position = rotation_entry(candles, 0.2, total=0.06, available=0.05)

    assert isinstance(position, BtcPosition)
    assert position.btc_allocated == pytest.approx(0.012)
    assert position.initial_btc_allocated == pytest.approx(0.012)
    assert position.entry_ratio == pytest.approx(0.05)
    assert position.entry_time == candles["timestamp"].iloc[1]


def test_btc_entry_capped_at_available_btc():
    candles = make_ratio_candles([0.05, 0.05])
    position = rotation_entry(candles, 0.5, total=0.05, available=0.01)
    assert position.btc_allocated == pytest.approx(0.01)


def test_btc_entry_rejected_below_minimum_allocation():
    candles = make_ratio_candles([0.05, 0.05])
    assert rotation_entry(candles, 0.2, total=0.05, available=0.00005) is None
    assert rotation_entry(candles, 0.2, total=0.05, available=0.0) is None


def test_btc_entry_rejected_for_bad_ratio_or_warmup():
    assert rotation_entry(make_ratio_candles([0.05, 0.0]), 0.2) is None
    assert rotation_entry(make_ratio_candles([0.05, math.nan]), 0.2) is None

    candles = make_ratio_candles([0.05, 0.05])
    strategy = ScheduledRotationStrategy({("ETHUSDT", candles["timestamp"].iloc[0]): 0.2})
    assert evaluate_btc_entry(
        candles, 0, "ETHUSDT", strategy, 0.0, PositionLedger(3), 0.05, 0.05,
        BtcBacktestConfig(), position_id="btc-pos-1",
    ) is None


def test_btc_entry_rejected_when_alt_already_held():
    candles = make_ratio_candles([0.05, 0.05])
    ledger = PositionLedger(3)
    ledger.add(rotation_entry(candles, 0.2))
    assert rotation_entry(candles, 0.2, ledger=ledger) is None
