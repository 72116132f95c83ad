"""
Batch runs: every strategy at every leverage, and every rotation strategy.

**Conceptual**: A single backtest answers "how did this strategy do?". The
grid answers "which strategy, at which leverage?" by running the same data
through each combination with otherwise identical settings, so results are
directly comparable.

Strategies that declare auxiliary timeframes (`required_timeframes`) are
multi-timeframe strategies and run on the 15m series regardless of the
grid's timeframe.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from kline_backtester.backtesting.btc_engine import simulate_btc_backtest
from kline_backtester.backtesting.engine import run_backtest
from kline_backtester.backtesting.results import BacktestResult, BtcBacktestResult
from kline_backtester.config.settings import SYMBOLS, BacktestConfig, BtcBacktestConfig
from kline_backtester.data.altbtc import build_all_alt_btc_candles
from kline_backtester.data.loaders import IndicatorEnricher, MarketDataProvider
from kline_backtester.strategies.base import BtcStrategy, Strategy

logger = logging.getLogger(__name__)

DEFAULT_LEVERAGES = (3, 5)
MULTI_TIMEFRAME_BASE = '15m'


def run_all_backtests(
    provider: MarketDataProvider,
    strategies: Sequence[Strategy],
    symbols: Sequence[str] = SYMBOLS,
    timeframe: str = '1h',
    leverages: Sequence[float] = DEFAULT_LEVERAGES,
    enricher: Optional[IndicatorEnricher] = None,
    base_config: Optional[BacktestConfig] = None,
) -> List[BacktestResult]:
    """
    Run each strategy at each leverage.

    Args:
        provider: Market-data source shared by all runs.
        strategies: Strategies to evaluate, in output order.
        symbols: Symbols traded by every run.
        timeframe: Primary timeframe for single-timeframe strategies.
        leverages: Leverage values to sweep.
        enricher: Indicator source.
        base_config: Settings other than symbols/timeframe/leverage
                     (defaults to BacktestConfig()).

    Returns:
        Results ordered strategy-major, leverage-minor.
    """
    base = base_config or BacktestConfig()
    results = []

    for strategy in strategies:
        tf = MULTI_TIMEFRAME_BASE if getattr(strategy, 'required_timeframes', ()) else timeframe
        for leverage in leverages:
            config = replace(base, symbols=tuple(symbols), timeframe=tf, leverage=leverage)
            result = run_backtest(strategy, provider, config, enricher)
            logger.info(
                "%s %s %sx: %d trades, PnL %.2f (%.2f%%), max DD %.2f%%",
                strategy.name, tf, leverage, result.total_trades, result.total_pnl,
                result.statistics.total_pnl_percent, result.max_drawdown_percent,
            )
            results.append(result)

    return results


def run_all_btc_backtests(
    provider: MarketDataProvider,
    strategies: Sequence[BtcStrategy],
    config: Optional[BtcBacktestConfig] = None,
    enricher: Optional[IndicatorEnricher] = None,
) -> List[BtcBacktestResult]:
    """
    Run each rotation strategy against the same ratio series.

    The ratio frames are built once and shared by every run.
    """
    config = config or BtcBacktestConfig()
    ratios = build_all_alt_btc_candles(
        provider, config.alt_symbols, config.timeframe, enricher, btc_symbol=config.btc_symbol
    )
    return [simulate_btc_backtest(strategy, ratios, config) for strategy in strategies]
