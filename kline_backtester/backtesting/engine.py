"""
USD-margined futures backtest engine.

**Conceptual**: The engine is the orchestrator that brings together the
market data, the strategy and the position ledger, and replays history one
timestamp at a time. It owns no trading rules of its own: exits are decided
by `exits`, entries and sizing by `entries`, money by `execution.accounting`.
What the engine owns is *order*:

  for each timestamp of the merged timeline (ascending):
      for each symbol, in the configured order, that has a candle now:
          1. run the exit cascade on every open position of that symbol
          2. consider a new entry on that symbol
      sample equity every N timestamps (and on the first and last)
  force-close whatever is still open at each symbol's last candle

**Why exits before entries?**
  A position stopped out on this candle frees its slot (and its symbol)
  before the strategy is asked about a new one, so a stop and a re-entry can
  happen on the same candle but never the other way round.

**Teaching note**: The loop is deliberately plain Python rather than
vectorised. Path-dependent logic (partial closes, breakeven stops, trailing
stops, the concurrency cap) is much easier to get right one candle at a time,
and the same inputs always produce the same trades.
"""

import logging
from typing import Dict, List, Mapping, Optional

from kline_backtester.backtesting.entries import evaluate_usd_entry
from kline_backtester.backtesting.exits import (
    REASON_FORCED_CLOSE,
    apply_usd_exit,
    evaluate_usd_exit,
)
from kline_backtester.backtesting.results import BacktestResult, build_backtest_result
from kline_backtester.backtesting.timeline import build_timeline
from kline_backtester.config.settings import BacktestConfig
from kline_backtester.data.loaders import (
    IndicatorEnricher,
    MarketDataProvider,
    PassthroughEnricher,
    SymbolSeries,
    load_symbol_series,
)
from kline_backtester.execution.accounting import close_position, realized_pnl, unrealized_pnl
from kline_backtester.execution.ledger import PositionLedger
from kline_backtester.execution.models import EquityPoint, Position, Trade
from kline_backtester.strategies.base import Strategy, StrategyContext

logger = logging.getLogger(__name__)


def run_backtest(
    strategy: Strategy,
    provider: MarketDataProvider,
    config: Optional[BacktestConfig] = None,
    enricher: Optional[IndicatorEnricher] = None,
) -> BacktestResult:
    """
    Load data for `config.symbols` and run a USD futures backtest.

    Symbols without candles are skipped with a warning. When no symbol has
    data, the result is empty: no trades, no equity curve, final equity
    equal to the starting capital.

    Args:
        strategy: Object implementing the Strategy protocol.
        provider: Market-data source.
        config: Run settings (defaults to BacktestConfig()).
        enricher: Indicator source (defaults to PassthroughEnricher()).

    Returns:
        BacktestResult.

    Raises:
        SchemaValidationError: If the provider returns malformed frames.
    """
    config = config or BacktestConfig()
    enricher = enricher or PassthroughEnricher()

    series = load_symbol_series(
        provider,
        enricher,
        config.symbols,
        config.timeframe,
        required_timeframes=tuple(getattr(strategy, 'required_timeframes', ()) or ()),
    )
    return simulate_backtest(strategy, series, config)


def simulate_backtest(
    strategy: Strategy,
    series: Mapping[str, SymbolSeries],
    config: BacktestConfig,
) -> BacktestResult:
    """
    Replay already-loaded symbol series through the strategy.

    Args:
        strategy: Object implementing the Strategy protocol.
        series: symbol -> SymbolSeries (see `load_symbol_series`).
        config: Run settings. Symbols are visited in `config.symbols` order.

    Returns:
        BacktestResult.
    """
    symbols = [s for s in config.symbols if s in series]
    timeline = build_timeline({s: series[s].candles for s in symbols}, symbols=symbols)

    if timeline.is_empty:
        logger.warning("No candle data for any of %s; returning an empty result.", list(config.symbols))
        return build_backtest_result(strategy.name, config, (), ())

    logger.info(
        "Backtest %s: %d symbols, %d timestamps, %s leverage %.1fx",
        strategy.name, len(timeline.symbols), len(timeline), config.timeframe, config.leverage,
    )

    contexts = {
        symbol: StrategyContext(
            symbol=symbol,
            timeframe=config.timeframe,
            multi_timeframe=series[symbol].multi_timeframe,
            funding_rates=series[symbol].funding_rates,
        )
        for symbol in timeline.symbols
    }

    ledger: PositionLedger[Position, Trade] = PositionLedger(config.max_concurrent_positions)
    equity_curve: List[EquityPoint] = []
    equity = config.starting_capital
    last_close: Dict[str, float] = {}
    opened = 0
    last_step = len(timeline)

    for step, ts in enumerate(timeline.timestamps, start=1):
        for symbol in timeline.symbols:
            index = timeline.index_of(symbol, ts)
            if index is None:
                continue

            candles = series[symbol].candles
            context = contexts[symbol]
            last_close[symbol] = float(candles['close'].iloc[index])

            for position in ledger.open_positions(symbol):
                outcome = evaluate_usd_exit(position, candles, index, strategy, context, config)
                apply_usd_exit(ledger, position, outcome, ts, config)

            position = evaluate_usd_entry(
                candles, index, strategy, context, ledger, equity, config,
                position_id=f"{symbol}-{opened}",
            )
            if position is not None:
                ledger.add(position)
                opened += 1
                logger.debug(
                    "Opened %s %s size=%.2f @ %.6f", position.id, position.side,
                    position.size, position.entry_price,
                )

        if step % config.equity_sample_interval == 0 or step == 1 or step == last_step:
            equity = mark_equity(config.starting_capital, ledger, last_close)
            equity_curve.append(EquityPoint(timestamp=ts, equity=equity))

    force_close_all(ledger, series, config)

    final_equity = config.starting_capital + realized_pnl(ledger.trades)
    if not equity_curve or equity_curve[-1].equity != final_equity:
        equity_curve.append(EquityPoint(timestamp=timeline.timestamps[-1], equity=final_equity))

    result = build_backtest_result(strategy.name, config, ledger.trades, equity_curve)
    logger.info(
        "Backtest %s finished: %d trades, win rate %.1f%%, final equity %.2f",
        strategy.name, result.total_trades, result.win_rate, result.final_equity,
    )
    return result


def mark_equity(
    starting_capital: float,
    ledger: PositionLedger,
    last_close: Mapping[str, float],
) -> float:
    """
    starting capital + realised pnl + unrealised pnl of every open position.

    Open positions are marked at the last close seen for their symbol.
    """
    realised = realized_pnl(ledger.trades)
    unrealised = 0.0
    for position in ledger.open_positions():
        mark = last_close.get(position.symbol)
        if mark is not None:
            unrealised += unrealized_pnl(position, mark)
    return starting_capital + realised + unrealised


def force_close_all(
    ledger: PositionLedger,
    series: Mapping[str, SymbolSeries],
    config: BacktestConfig,
) -> None:
    """Close every open position at the close of its symbol's last candle."""
    for position in ledger.open_positions():
        candles = series[position.symbol].candles
        last = candles.iloc[-1]
        trade = close_position(
            position,
            float(last['close']),
            last['timestamp'],
            REASON_FORCED_CLOSE,
            config.slippage_rate,
            config.commission_rate,
        )
        ledger.close(position.id, trade)
