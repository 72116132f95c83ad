"""
Tests for kline_backtester/data/loaders.py

Covers:
- InMemoryMarketDataProvider lookups
- PassthroughEnricher adding missing indicator columns
- load_symbol_series: normalisation, skipping missing symbols, auxiliary
  timeframes, funding rates, enricher contract
"""

import pandas as pd
import pytest

from kline_backtester.data.loaders import (
    InMemoryMarketDataProvider,
    PassthroughEnricher,
    load_enriched_candles,
    load_funding_rates,
    load_symbol_series,
)
from kline_backtester.data.schemas import SchemaValidationError


def make_candles(n: int, freq: str = "1h") -> pd.DataFrame:
    """Raw provider frame with epoch-ms timestamps, newest first."""
    stamps = pd.date_range("2024-01-01", periods=n, freq=freq, tz="UTC")
    df = pd.DataFrame({
        "timestamp": stamps.asi8 // 10**6,
        "open": 100.0,
        "high": 101.0,
        "low": 99.0,
        "close": 100.0,
        "volume": 1.0,
    })
    return df.iloc[::-1].reset_index(drop=True)


class DroppingEnricher:
    """Violates the enricher contract by dropping a warm-up row."""

    def enrich(self, candles):
        return candles.iloc[1:]


def test_provider_lookup():
    candles = make_candles(3)
    provider = InMemoryMarketDataProvider({("BTCUSDT", "1h"): candles})
    provider.add_funding_rates("BTCUSDT", pd.DataFrame({"funding_rate_timestamp": [], "funding_rate": []}))

    assert provider.load_candles("BTCUSDT", "1h") is candles
    assert provider.load_candles("BTCUSDT", "4h") is None
    assert provider.load_funding_rates("ETHUSDT") is None


def test_passthrough_enricher_adds_missing_columns():
    candles = make_candles(2)
    enriched = PassthroughEnricher(ensure_columns=("atr", "rsi")).enrich(candles)

    assert enriched["atr"].isna().all()
    assert enriched["rsi"].isna().all()
    assert "atr" not in candles.columns

    with_atr = candles.assign(atr=1.5)
    assert PassthroughEnricher().enrich(with_atr) is with_atr


def test_load_enriched_candles_normalises():
    provider = InMemoryMarketDataProvider({("BTCUSDT", "1h"): make_candles(3)})
    candles = load_enriched_candles(provider, PassthroughEnricher(), "BTCUSDT", "1h")

    assert candles["timestamp"].is_monotonic_increasing
    assert str(candles["timestamp"].dt.tz) == "UTC"
    assert "atr" in candles.columns
    assert load_enriched_candles(provider, PassthroughEnricher(), "ETHUSDT", "1h") is None


def test_enricher_must_keep_row_count():
    provider = InMemoryMarketDataProvider({("BTCUSDT", "1h"): make_candles(3)})

    with pytest.raises(SchemaValidationError, match="Enricher returned 2 rows for 3 candles"):
        load_enriched_candles(provider, DroppingEnricher(), "BTCUSDT", "1h")


def test_frame_without_timestamp_column_is_rejected():
    raw = make_candles(3).rename(columns={"timestamp": "time"})
    provider = InMemoryMarketDataProvider({("BTCUSDT", "1h"): raw})

    with pytest.raises(SchemaValidationError, match=r"\[BTCUSDT 1h\] Missing required candle columns"):
        load_enriched_candles(provider, PassthroughEnricher(), "BTCUSDT", "1h")


def test_load_symbol_series_skips_missing_symbols(caplog):
    provider = InMemoryMarketDataProvider({("BTCUSDT", "1h"): make_candles(3)})

    with caplog.at_level("WARNING"):
        series = load_symbol_series(provider, PassthroughEnricher(), ["ETHUSDT", "BTCUSDT"], "1h")

    assert list(series) == ["BTCUSDT"]
    assert series["BTCUSDT"].multi_timeframe == {}
    assert series["BTCUSDT"].funding_rates is None
    assert "No candle data for ETHUSDT 1h" in caplog.text


def test_load_symbol_series_with_auxiliary_timeframes_and_funding():
    provider = InMemoryMarketDataProvider(
        {("BTCUSDT", "1h"): make_candles(8), ("BTCUSDT", "4h"): make_candles(2, freq="4h")},
        funding_rates={"BTCUSDT": pd.DataFrame({
            "funding_rate_timestamp": [1704096000000, 1704067200000],
            "funding_rate": [0.0002, 0.0001],
        })},
    )

    series = load_symbol_series(
        provider, PassthroughEnricher(), ["BTCUSDT"], "1h", required_timeframes=("4h", "1d")
    )["BTCUSDT"]

    assert set(series.multi_timeframe) == {"1h", "4h"}
    assert series.multi_timeframe["1h"] is series.candles
    assert list(series.funding_rates["funding_rate"]) == [0.0001, 0.0002]


def test_load_funding_rates_none_when_empty():
    provider = InMemoryMarketDataProvider(funding_rates={
        "BTCUSDT": pd.DataFrame({"funding_rate_timestamp": [], "funding_rate": []}),
    })
    assert load_funding_rates(provider, "BTCUSDT") is None
    assert load_funding_rates(provider, "ETHUSDT") is None
