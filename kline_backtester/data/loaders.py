"""
Market-data and indicator collaborators, and symbol loading for the engines.

**Conceptual**: Downloading and caching candles, and computing indicators,
live outside this package. The engines only see two small protocols:
  - MarketDataProvider: `load_candles(symbol, timeframe)` and
    `load_funding_rates(symbol)`, each returning a DataFrame or None.
  - IndicatorEnricher: `enrich(candles)` returning the same rows with
    indicator columns attached (one-to-one, same order).

`load_symbol_series` is the single place that turns those collaborators into
the per-symbol frames the engines replay. Missing data is never fatal: a
symbol with no candles is skipped with a warning and the run continues.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Protocol, Sequence, Tuple

import pandas as pd

from kline_backtester.data.schemas import (
    SchemaValidationError,
    normalize_candles,
    normalize_funding_rates,
    validate_candle_schema,
    validate_funding_rate_schema,
)

logger = logging.getLogger(__name__)


class MarketDataProvider(Protocol):
    """Source of historical candles and funding rates."""

    def load_candles(self, symbol: str, timeframe: str) -> Optional[pd.DataFrame]:
        ...

    def load_funding_rates(self, symbol: str) -> Optional[pd.DataFrame]:
        ...


class IndicatorEnricher(Protocol):
    """Attaches indicator columns to a candle frame (same length, same order)."""

    def enrich(self, candles: pd.DataFrame) -> pd.DataFrame:
        ...


class PassthroughEnricher:
    """
    Enricher for frames that already carry their indicator columns.

    Used when indicators were precomputed upstream (or in tests). Columns the
    engine reads, such as `atr`, are added as NaN when missing so the
    trailing-stop rule simply stays inactive.
    """

    def __init__(self, ensure_columns: Sequence[str] = ('atr',)):
        self.ensure_columns = tuple(ensure_columns)

    def enrich(self, candles: pd.DataFrame) -> pd.DataFrame:
        missing = [c for c in self.ensure_columns if c not in candles.columns]
        if not missing:
            return candles
        out = candles.copy()
        for column in missing:
            out[column] = float('nan')
        return out


class InMemoryMarketDataProvider:
    """
    Dict-backed MarketDataProvider.

    Args:
        candles: {(symbol, timeframe): DataFrame}.
        funding_rates: {symbol: DataFrame}.
    """

    def __init__(
        self,
        candles: Optional[Mapping[Tuple[str, str], pd.DataFrame]] = None,
        funding_rates: Optional[Mapping[str, pd.DataFrame]] = None,
    ):
        self._candles = dict(candles or {})
        self._funding_rates = dict(funding_rates or {})

    def add_candles(self, symbol: str, timeframe: str, df: pd.DataFrame) -> None:
        self._candles[(symbol, timeframe)] = df

    def add_funding_rates(self, symbol: str, df: pd.DataFrame) -> None:
        self._funding_rates[symbol] = df

    def load_candles(self, symbol: str, timeframe: str) -> Optional[pd.DataFrame]:
        return self._candles.get((symbol, timeframe))

    def load_funding_rates(self, symbol: str) -> Optional[pd.DataFrame]:
        return self._funding_rates.get(symbol)


@dataclass(frozen=True)
class SymbolSeries:
    """
    Everything the USD engine needs for one symbol.

    Attributes:
        symbol: Instrument symbol.
        candles: Enriched primary-timeframe frame (ascending).
        multi_timeframe: timeframe -> enriched frame (includes the primary
                         timeframe when auxiliary timeframes were requested).
        funding_rates: Funding-rate frame or None.
    """
    symbol: str
    candles: pd.DataFrame
    multi_timeframe: Dict[str, pd.DataFrame] = field(default_factory=dict)
    funding_rates: Optional[pd.DataFrame] = None


def load_enriched_candles(
    provider: MarketDataProvider,
    enricher: IndicatorEnricher,
    symbol: str,
    timeframe: str,
) -> Optional[pd.DataFrame]:
    """
    Load, normalise, validate and enrich one symbol/timeframe.

    Returns:
        Enriched frame, or None when the provider has no candles for it.

    Raises:
        SchemaValidationError: If the provider or enricher breaks the frame contract.
    """
    raw = provider.load_candles(symbol, timeframe)
    if raw is None or raw.empty:
        return None

    context = f"{symbol} {timeframe}"
    candles = normalize_candles(raw, context=context)
    validate_candle_schema(candles, context=context)

    enriched = enricher.enrich(candles)
    if len(enriched) != len(candles):
        raise SchemaValidationError(
            f"[{context}] Enricher returned {len(enriched)} rows for {len(candles)} candles."
        )
    return enriched.reset_index(drop=True)


def load_funding_rates(provider: MarketDataProvider, symbol: str) -> Optional[pd.DataFrame]:
    """Load and normalise funding rates, or None when there are none."""
    raw = provider.load_funding_rates(symbol)
    if raw is None or raw.empty:
        return None
    rates = normalize_funding_rates(raw, context=symbol)
    validate_funding_rate_schema(rates, context=symbol)
    return rates


def load_symbol_series(
    provider: MarketDataProvider,
    enricher: IndicatorEnricher,
    symbols: Sequence[str],
    timeframe: str,
    required_timeframes: Sequence[str] = (),
) -> Dict[str, SymbolSeries]:
    """
    Load every symbol for a USD backtest, skipping those without data.

    Args:
        provider: Market-data source.
        enricher: Indicator source.
        symbols: Symbols in visiting order.
        timeframe: Primary timeframe.
        required_timeframes: Auxiliary timeframes declared by the strategy.

    Returns:
        symbol -> SymbolSeries, insertion-ordered like `symbols`, missing
        symbols omitted.
    """
    loaded: Dict[str, SymbolSeries] = {}

    for symbol in symbols:
        candles = load_enriched_candles(provider, enricher, symbol, timeframe)
        if candles is None:
            logger.warning("No candle data for %s %s, skipping.", symbol, timeframe)
            continue

        multi_tf: Dict[str, pd.DataFrame] = {}
        if required_timeframes:
            multi_tf[timeframe] = candles
            for tf in required_timeframes:
                if tf == timeframe:
                    continue
                aux = load_enriched_candles(provider, enricher, symbol, tf)
                if aux is None:
                    logger.warning("No %s candles for %s; strategy will see it missing.", tf, symbol)
                    continue
                multi_tf[tf] = aux

        loaded[symbol] = SymbolSeries(
            symbol=symbol,
            candles=candles,
            multi_timeframe=multi_tf,
            funding_rates=load_funding_rates(provider, symbol),
        )

    return loaded
