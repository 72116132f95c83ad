"""
Synthetic ALT/BTC ratio candles and the cross-alt ratio trend.

**Conceptual**: The BTC rotation simulator prices everything in BTC. An alt
quoted in USDT becomes an ALT/BTC pair by dividing its candle by BTC's
candle at the same timestamp. The resulting ratio frame is an ordinary
candle frame (timestamp/open/high/low/close/volume/turnover), so the same
indicator enricher and strategy code work on it unchanged.

**Ratio OHLC** (alt / btc at matching timestamps):
  - open  = alt.open  / btc.open
  - high  = alt.high  / btc.low    (largest ratio possible in the period)
  - low   = alt.low   / btc.high   (smallest ratio possible in the period)
  - close = alt.close / btc.close
Rows exist only where both series have a candle and every BTC price is
non-zero. Each row also carries `alt_symbol`, `alt_usdt_price`,
`btc_usdt_price` and, when funding data exists, `alt_funding_rate` (the
funding rate nearest in time).

**Teaching note**: `calculate_avg_ratio_trend` is the "BTC dominance"
gauge. Positive values mean alts are outperforming BTC on average.
"""

import logging
import math
from typing import Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from kline_backtester.data.loaders import (
    IndicatorEnricher,
    MarketDataProvider,
    load_funding_rates,
)
from kline_backtester.data.schemas import (
    SchemaValidationError,
    normalize_candles,
    normalize_funding_rates,
    validate_candle_schema,
)

logger = logging.getLogger(__name__)


def nearest_index(stamps: pd.Series, target: pd.Timestamp) -> int:
    """
    Position of the timestamp in ascending `stamps` closest to `target`.

    Ties between the earlier and the later neighbour go to the earlier one.
    Returns -1 for an empty series.
    """
    n = len(stamps)
    if n == 0:
        return -1
    pos = int(stamps.searchsorted(target, side='left'))
    if pos == 0:
        return 0
    if pos >= n:
        return n - 1
    after = abs(stamps.iloc[pos] - target)
    before = abs(stamps.iloc[pos - 1] - target)
    return pos - 1 if before <= after else pos


def build_alt_btc_candles(
    alt_symbol: str,
    btc_candles: Optional[pd.DataFrame],
    alt_candles: Optional[pd.DataFrame],
    funding_rates: Optional[pd.DataFrame] = None,
    enricher: Optional[IndicatorEnricher] = None,
) -> Optional[pd.DataFrame]:
    """
    Build the ALT/BTC ratio frame for one alt.

    Args:
        alt_symbol: e.g. "ETHUSDT".
        btc_candles: BTC/USDT candle frame.
        alt_candles: ALT/USDT candle frame, same timeframe.
        funding_rates: Optional funding-rate frame for the alt.
        enricher: Optional indicator enricher run on the ratio series.

    Returns:
        Ratio frame ascending by timestamp, or None when either input is
        missing or no timestamps match.
    """
    if btc_candles is None or btc_candles.empty or alt_candles is None or alt_candles.empty:
        return None

    btc = normalize_candles(btc_candles, context="BTC ratio base")
    alt = normalize_candles(alt_candles, context=f"{alt_symbol} ratio quote")
    validate_candle_schema(btc, context="BTC ratio base")
    validate_candle_schema(alt, context=f"{alt_symbol} ratio quote")

    merged = alt.merge(btc, on='timestamp', how='inner', suffixes=('_alt', '_btc'))
    btc_prices = merged[['open_btc', 'high_btc', 'low_btc', 'close_btc']]
    merged = merged[(btc_prices != 0).all(axis=1)]
    if merged.empty:
        return None

    ratio = pd.DataFrame({
        'timestamp': merged['timestamp'],
        'alt_symbol': alt_symbol,
        'open': merged['open_alt'] / merged['open_btc'],
        'high': merged['high_alt'] / merged['low_btc'],
        'low': merged['low_alt'] / merged['high_btc'],
        'close': merged['close_alt'] / merged['close_btc'],
        'volume': merged['volume_alt'],
        'turnover': merged['turnover_alt'],
        'alt_usdt_price': merged['close_alt'],
        'btc_usdt_price': merged['close_btc'],
    }).sort_values('timestamp').reset_index(drop=True)

    if enricher is not None:
        enriched = enricher.enrich(ratio)
        if len(enriched) != len(ratio):
            raise SchemaValidationError(
                f"[{alt_symbol}/BTC] Enricher returned {len(enriched)} rows for {len(ratio)} candles."
            )
        ratio = enriched.reset_index(drop=True)

    if funding_rates is not None and not funding_rates.empty:
        funding_rates = normalize_funding_rates(funding_rates, context=f"{alt_symbol} funding")
        stamps = funding_rates['funding_rate_timestamp']
        values = funding_rates['funding_rate'].to_numpy()
        ratio['alt_funding_rate'] = [
            float(values[nearest_index(stamps, ts)]) for ts in ratio['timestamp']
        ]

    return ratio


def build_all_alt_btc_candles(
    provider: MarketDataProvider,
    alt_symbols: Sequence[str],
    timeframe: str,
    enricher: Optional[IndicatorEnricher] = None,
    btc_symbol: str = 'BTCUSDT',
) -> Dict[str, pd.DataFrame]:
    """
    Build ratio frames for every alt, skipping those without data.

    Returns:
        alt_symbol -> ratio frame, insertion-ordered like `alt_symbols`.
    """
    btc_candles = provider.load_candles(btc_symbol, timeframe)
    if btc_candles is None or btc_candles.empty:
        logger.warning("No %s %s candles; no ratio series can be built.", btc_symbol, timeframe)
        return {}

    result: Dict[str, pd.DataFrame] = {}
    for alt_symbol in alt_symbols:
        ratio = build_alt_btc_candles(
            alt_symbol,
            btc_candles,
            provider.load_candles(alt_symbol, timeframe),
            funding_rates=load_funding_rates(provider, alt_symbol),
            enricher=enricher,
        )
        if ratio is None or ratio.empty:
            logger.warning("No %s/BTC ratio candles for %s, skipping.", alt_symbol, timeframe)
            continue
        result[alt_symbol] = ratio
    return result


def calculate_avg_ratio_trend(
    series: Mapping[str, pd.DataFrame],
    timestamp: pd.Timestamp,
    lookback_days: float,
) -> float:
    """
    Average % change of the ratio close across alts over a lookback.

    **Mathematical**: For each alt, take the close of the candle nearest
    `timestamp - lookback_days` (start) and of the candle nearest
    `timestamp` (end); change = (end - start) / start * 100. The result is
    the mean over alts whose start is non-zero and both closes are finite.

    Returns:
        Mean % change, or 0.0 when no alt qualifies.
    """
    start_ts = timestamp - pd.Timedelta(days=lookback_days)
    changes = []

    for candles in series.values():
        if candles is None or candles.empty:
            continue
        stamps = candles['timestamp']
        start = float(candles['close'].iloc[nearest_index(stamps, start_ts)])
        end = float(candles['close'].iloc[nearest_index(stamps, timestamp)])
        if start == 0 or not math.isfinite(start) or not math.isfinite(end):
            continue
        changes.append((end - start) / start * 100.0)

    if not changes:
        return 0.0
    return float(np.mean(changes))
