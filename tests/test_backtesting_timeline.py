"""
Tests for kline_backtester/backtesting/timeline.py

Covers:
- Union of timestamps across misaligned symbols, ascending and unique
- Per-symbol row lookup (None where a symbol has no candle)
- Empty/missing symbols dropped
- Result independent of the order series were loaded in
"""

import pandas as pd

from kline_backtester.backtesting.timeline import build_timeline


def make_frame(start: str, periods: int, freq: str = "1h") -> pd.DataFrame:
    stamps = pd.date_range(pd.Timestamp(start, tz="UTC"), periods=periods, freq=freq)
    return pd.DataFrame({"timestamp": stamps, "close": range(periods)})


def test_union_of_misaligned_series():
    """
    Scenario: BTC has candles 00:00-02:00, ETH 01:00-03:00.

    Expected: timeline 00:00..03:00 (4 stamps); ETH has no row at 00:00.
    """
    btc = make_frame("2024-01-01 00:00", 3)
    eth = make_frame("2024-01-01 01:00", 3)
    timeline = build_timeline({"BTCUSDT": btc, "ETHUSDT": eth}, symbols=["BTCUSDT", "ETHUSDT"])

    assert len(timeline) == 4
    assert list(timeline.timestamps) == sorted(set(btc["timestamp"]) | set(eth["timestamp"]))

    t0, t1, _, t3 = timeline.timestamps
    assert timeline.index_of("BTCUSDT", t0) == 0
    assert timeline.index_of("ETHUSDT", t0) is None
    assert timeline.index_of("ETHUSDT", t1) == 0
    assert timeline.index_of("BTCUSDT", t3) is None
    assert timeline.index_of("SOLUSDT", t0) is None


def test_empty_and_missing_symbols_are_dropped():
    btc = make_frame("2024-01-01", 2)
    empty = btc.iloc[0:0]
    timeline = build_timeline(
        {"BTCUSDT": btc, "ETHUSDT": empty, "XRPUSDT": None},
        symbols=["ETHUSDT", "BTCUSDT", "XRPUSDT", "SOLUSDT"],
    )

    assert timeline.symbols == ("BTCUSDT",)
    assert len(timeline) == 2


def test_visiting_order_follows_symbol_list():
    btc = make_frame("2024-01-01", 2)
    eth = make_frame("2024-01-01", 2)
    timeline = build_timeline({"BTCUSDT": btc, "ETHUSDT": eth}, symbols=["ETHUSDT", "BTCUSDT"])

    assert timeline.symbols == ("ETHUSDT", "BTCUSDT")


def test_default_order_is_sorted_and_load_order_independent():
    btc = make_frame("2024-01-01 00:00", 3)
    eth = make_frame("2024-01-01 02:00", 3)

    first = build_timeline({"BTCUSDT": btc, "ETHUSDT": eth})
    second = build_timeline({"ETHUSDT": eth, "BTCUSDT": btc})

    assert first.timestamps == second.timestamps
    assert first.symbols == second.symbols == ("BTCUSDT", "ETHUSDT")


def test_no_data_gives_empty_timeline():
    timeline = build_timeline({})
    assert timeline.is_empty
    assert len(timeline) == 0
