"""
Tests for kline_backtester/data/altbtc.py

Covers:
- Ratio OHLC construction (high/low use the opposite BTC extreme)
- Only matching timestamps with non-zero BTC prices survive
- Nearest-in-time funding rate attachment
- Batch building skips alts without data
- Average ratio trend across alts
"""

import pandas as pd
import pytest

from kline_backtester.data.altbtc import (
    build_all_alt_btc_candles,
    build_alt_btc_candles,
    calculate_avg_ratio_trend,
    nearest_index,
)
from kline_backtester.data.loaders import InMemoryMarketDataProvider, PassthroughEnricher

T0 = pd.Timestamp("2024-01-01 00:00", tz="UTC")


def make_candles(rows, start: pd.Timestamp = T0, freq: str = "4h") -> pd.DataFrame:
    """rows: list of (open, high, low, close)."""
    stamps = pd.date_range(start, periods=len(rows), freq=freq)
    opens, highs, lows, closes = zip(*rows)
    return pd.DataFrame({
        "timestamp": stamps,
        "open": opens,
        "high": highs,
        "low": lows,
        "close": closes,
        "volume": 5.0,
        "turnover": 7.0,
    })


def test_ratio_ohlc():
    """
    Scenario: ETH (2000, 2200, 1900, 2100) against BTC (40000, 44000, 38000, 42000).

    Expected:
      open  = 2000 / 40000 = 0.05
      high  = 2200 / 38000
      low   = 1900 / 44000
      close = 2100 / 42000 = 0.05
    """
    btc = make_candles([(40000, 44000, 38000, 42000)])
    eth = make_candles([(2000, 2200, 1900, 2100)])

    ratio = build_alt_btc_candles("ETHUSDT", btc, eth)

    row = ratio.iloc[0]
    assert row["open"] == pytest.approx(0.05)
    assert row["high"] == pytest.approx(2200 / 38000)
    assert row["low"] == pytest.approx(1900 / 44000)
    assert row["close"] == pytest.approx(0.05)
    assert row["alt_symbol"] == "ETHUSDT"
    assert row["alt_usdt_price"] == pytest.approx(2100)
    assert row["btc_usdt_price"] == pytest.approx(42000)
    assert row["volume"] == pytest.approx(5.0)
    assert "alt_funding_rate" not in ratio.columns


def test_only_matching_nonzero_rows_survive():
    btc = make_candles([(100, 100, 100, 100), (100, 100, 0, 100), (100, 100, 100, 100)])
    eth = make_candles([(5, 5, 5, 5)] * 4, start=T0 + pd.Timedelta(hours=4))

    ratio = build_alt_btc_candles("ETHUSDT", btc, eth)

    # T0 has no ETH candle; T0+4h has a zero BTC low; T0+12h has no BTC candle
    assert list(ratio["timestamp"]) == [T0 + pd.Timedelta(hours=8)]
    assert ratio["close"].iloc[0] == pytest.approx(0.05)


def test_missing_or_disjoint_inputs_give_none():
    btc = make_candles([(100, 100, 100, 100)])
    eth = make_candles([(5, 5, 5, 5)], start=T0 + pd.Timedelta(days=1))

    assert build_alt_btc_candles("ETHUSDT", None, eth) is None
    assert build_alt_btc_candles("ETHUSDT", btc, btc.iloc[0:0]) is None
    assert build_alt_btc_candles("ETHUSDT", btc, eth) is None


def test_funding_rate_nearest_in_time():
    btc = make_candles([(100, 100, 100, 100)] * 3)
    eth = make_candles([(5, 5, 5, 5)] * 3)
    funding = pd.DataFrame({
        "funding_rate_timestamp": [T0 - pd.Timedelta(hours=1), T0 + pd.Timedelta(hours=5)],
        "funding_rate": [0.0001, 0.0003],
    })

    ratio = build_alt_btc_candles("ETHUSDT", btc, eth, funding_rates=funding)

    # 00:00 -> 23:00 (1h away); 04:00 -> 05:00; 08:00 -> 05:00
    assert list(ratio["alt_funding_rate"]) == [0.0001, 0.0003, 0.0003]


def test_enricher_runs_on_ratio_series():
    btc = make_candles([(100, 100, 100, 100)] * 2)
    eth = make_candles([(5, 5, 5, 5)] * 2)
    ratio = build_alt_btc_candles("ETHUSDT", btc, eth, enricher=PassthroughEnricher())
    assert "atr" in ratio.columns


def test_nearest_index_ties_go_earlier():
    stamps = pd.Series(pd.date_range(T0, periods=3, freq="4h"))

    assert nearest_index(stamps, T0 + pd.Timedelta(hours=2)) == 0
    assert nearest_index(stamps, T0 + pd.Timedelta(hours=3)) == 1
    assert nearest_index(stamps, T0 - pd.Timedelta(days=1)) == 0
    assert nearest_index(stamps, T0 + pd.Timedelta(days=1)) == 2
    assert nearest_index(stamps.iloc[0:0], T0) == -1


def test_build_all_skips_alts_without_data(caplog):
    provider = InMemoryMarketDataProvider({
        ("BTCUSDT", "4h"): make_candles([(100, 100, 100, 100)] * 2),
        ("ETHUSDT", "4h"): make_candles([(5, 5, 5, 5)] * 2),
    })

    with caplog.at_level("WARNING"):
        ratios = build_all_alt_btc_candles(provider, ["SOLUSDT", "ETHUSDT"], "4h")

    assert list(ratios) == ["ETHUSDT"]
    assert "SOLUSDT" in caplog.text
    assert build_all_alt_btc_candles(provider, ["ETHUSDT"], "4h", btc_symbol="XBTUSDT") == {}


def test_avg_ratio_trend():
    """
    Scenario: over one day ETH/BTC rises 10% and SOL/BTC falls 4%.

    Expected: average trend (10 - 4) / 2 = 3%.
    """
    stamps = pd.date_range(T0, periods=7, freq="4h")
    series = {
        "ETHUSDT": pd.DataFrame({"timestamp": stamps, "close": [1.0, 1, 1, 1, 1, 1, 1.1]}),
        "SOLUSDT": pd.DataFrame({"timestamp": stamps, "close": [0.5, 0.5, 0.5, 0.5, 0.5, 0.5, 0.48]}),
    }

    assert calculate_avg_ratio_trend(series, stamps[-1], 1) == pytest.approx(3.0)
    # Lookback before the data: nearest candle is the first one
    assert calculate_avg_ratio_trend(series, stamps[-1], 7) == pytest.approx(3.0)
    assert calculate_avg_ratio_trend({}, stamps[-1], 1) == 0.0
    assert calculate_avg_ratio_trend({"X": series["ETHUSDT"].assign(close=0.0)}, stamps[-1], 1) == 0.0
