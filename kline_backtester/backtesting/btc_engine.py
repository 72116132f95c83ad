"""
BTC-denominated ALT/BTC rotation backtest engine.

**Conceptual**: Same architecture as the USD engine, different unit of
account. The portfolio starts with a pool of BTC. Entries move BTC out of
the pool into an ALT/BTC position; exits move the BTC a position returns
back into the pool. The question the backtest answers is "did rotating
through alts end with more BTC than simply holding it?".

Per timestamp of the merged ratio timeline:
  - compute the 7-day average ratio trend (handed to the strategy) and the
    1-day trend (the dominance exit),
  - for each alt with a ratio candle, in configured order: exit cascade on
    its open position, then a possible entry,
  - sample BTC equity (pool + mark-to-market of open positions) every N
    timestamps and on the first and last.
At the end every open position is closed at its alt's last ratio.

**Teaching note**: Mark-to-market uses the most recent ratio *at or before*
the timestamp for each open alt (binary search), so a position on an alt
without a candle at this instant keeps its last known value instead of
dropping out of equity.
"""

import logging
from bisect import bisect_right
from typing import Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from kline_backtester.backtesting.entries import evaluate_btc_entry
from kline_backtester.backtesting.exits import (
    BTC_REASON_FORCED_CLOSE,
    apply_btc_exit,
    evaluate_btc_exit,
)
from kline_backtester.backtesting.results import BtcBacktestResult, build_btc_backtest_result
from kline_backtester.backtesting.timeline import build_timeline
from kline_backtester.config.settings import BtcBacktestConfig
from kline_backtester.data.altbtc import build_all_alt_btc_candles, calculate_avg_ratio_trend
from kline_backtester.data.loaders import IndicatorEnricher, MarketDataProvider
from kline_backtester.execution.accounting import btc_mark_to_market, close_btc_position
from kline_backtester.execution.ledger import PositionLedger
from kline_backtester.execution.models import BtcEquityPoint, BtcPosition, BtcTrade
from kline_backtester.strategies.base import BtcStrategy

logger = logging.getLogger(__name__)

DOMINANCE_LOOKBACK_DAYS = 1


class RatioMarks:
    """Last-known ratio lookup per alt (binary search over timestamps)."""

    def __init__(self, ratios: Mapping[str, pd.DataFrame]):
        self._stamps: Dict[str, List[pd.Timestamp]] = {}
        self._closes: Dict[str, np.ndarray] = {}
        for alt, candles in ratios.items():
            self._stamps[alt] = list(candles['timestamp'])
            self._closes[alt] = candles['close'].to_numpy(dtype=float)

    def ratio_at(self, alt: str, timestamp: pd.Timestamp) -> Optional[float]:
        stamps = self._stamps.get(alt)
        if not stamps:
            return None
        pos = bisect_right(stamps, timestamp) - 1
        if pos < 0:
            return None
        return float(self._closes[alt][pos])

    def open_value(self, ledger: PositionLedger, timestamp: pd.Timestamp) -> float:
        """BTC value of every open position marked at `timestamp`."""
        total = 0.0
        for position in ledger.open_positions():
            mark = self.ratio_at(position.alt_symbol, timestamp)
            if mark is None:
                total += position.btc_allocated
            else:
                total += btc_mark_to_market(position, mark)
        return total


def run_btc_backtest(
    strategy: BtcStrategy,
    provider: MarketDataProvider,
    config: Optional[BtcBacktestConfig] = None,
    enricher: Optional[IndicatorEnricher] = None,
) -> BtcBacktestResult:
    """
    Build ALT/BTC ratio series from the provider and run a rotation backtest.

    Args:
        strategy: Object implementing the BtcStrategy protocol.
        provider: Market-data source (must supply `config.btc_symbol` too).
        config: Run settings (defaults to BtcBacktestConfig()).
        enricher: Optional indicator source for the ratio series.

    Returns:
        BtcBacktestResult; zeroed (final_btc == starting_btc, no trades)
        when no ratio series could be built.
    """
    config = config or BtcBacktestConfig()
    ratios = build_all_alt_btc_candles(
        provider, config.alt_symbols, config.timeframe, enricher, btc_symbol=config.btc_symbol
    )
    return simulate_btc_backtest(strategy, ratios, config)


def simulate_btc_backtest(
    strategy: BtcStrategy,
    ratios: Mapping[str, pd.DataFrame],
    config: BtcBacktestConfig,
) -> BtcBacktestResult:
    """
    Replay prebuilt ratio frames through a rotation strategy.

    Args:
        strategy: Rotation strategy.
        ratios: alt_symbol -> ratio frame (see `build_alt_btc_candles`).
        config: Run settings. Alts are visited in `config.alt_symbols` order.
    """
    leverage = strategy.leverage
    alts = [a for a in config.alt_symbols if a in ratios]
    timeline = build_timeline({a: ratios[a] for a in alts}, symbols=alts)

    if timeline.is_empty:
        logger.warning("No ALT/BTC ratio data; returning a zeroed result.")
        return build_btc_backtest_result(strategy.name, leverage, config, (), ())

    profile = config.risk_profile_for(leverage)
    active = {a: ratios[a] for a in timeline.symbols}
    marks = RatioMarks(active)

    logger.info(
        "BTC backtest %s: %d alts, %d timestamps, %s leverage %.1fx",
        strategy.name, len(timeline.symbols), len(timeline), config.timeframe, leverage,
    )

    ledger: PositionLedger[BtcPosition, BtcTrade] = PositionLedger(config.max_concurrent_positions)
    equity_curve: List[BtcEquityPoint] = []
    available_btc = config.starting_btc
    start_btc_price = 0.0
    end_btc_price = 0.0
    opened = 0
    last_step = len(timeline)

    for step, ts in enumerate(timeline.timestamps, start=1):
        trend = calculate_avg_ratio_trend(active, ts, config.trend_lookback_days)
        dominance_trend = calculate_avg_ratio_trend(active, ts, DOMINANCE_LOOKBACK_DAYS)
        current_btc_price = 0.0

        for alt in timeline.symbols:
            index = timeline.index_of(alt, ts)
            if index is None:
                continue

            candles = active[alt]
            btc_price = float(candles['btc_usdt_price'].iloc[index])
            if current_btc_price == 0:
                current_btc_price = btc_price
            if start_btc_price == 0:
                start_btc_price = btc_price
            end_btc_price = btc_price

            for position in ledger.open_positions(alt):
                outcome = evaluate_btc_exit(
                    position, candles, index, strategy, trend, dominance_trend, profile, config
                )
                _, released = apply_btc_exit(ledger, position, outcome, ts, profile)
                available_btc += released

            total_btc = available_btc + marks.open_value(ledger, ts)
            position = evaluate_btc_entry(
                candles, index, alt, strategy, trend, ledger, total_btc, available_btc, config,
                position_id=f"btc-pos-{opened + 1}",
            )
            if position is not None:
                ledger.add(position)
                available_btc -= position.btc_allocated
                opened += 1
                logger.debug(
                    "Opened %s on %s: %.8f BTC @ %.8f", position.id, alt,
                    position.btc_allocated, position.entry_ratio,
                )

        sample_due = step % config.equity_sample_interval == 0 or step == 1 or step == last_step
        if sample_due and current_btc_price > 0:
            btc_equity = available_btc + marks.open_value(ledger, ts)
            equity_curve.append(BtcEquityPoint(
                timestamp=ts,
                btc_equity=btc_equity,
                usdt_equity=btc_equity * current_btc_price,
            ))

    last_ts = timeline.timestamps[-1]
    for position in ledger.open_positions():
        exit_ratio = float(active[position.alt_symbol]['close'].iloc[-1])
        trade, released = close_btc_position(
            position, exit_ratio, last_ts, BTC_REASON_FORCED_CLOSE, profile.commission_rate
        )
        ledger.close(position.id, trade)
        available_btc += released

    final_btc = available_btc
    if not equity_curve or equity_curve[-1].btc_equity != final_btc:
        equity_curve.append(BtcEquityPoint(
            timestamp=last_ts,
            btc_equity=final_btc,
            usdt_equity=final_btc * end_btc_price,
        ))

    result = build_btc_backtest_result(
        strategy.name,
        leverage,
        config,
        ledger.trades,
        equity_curve,
        final_btc=final_btc,
        start_btc_price=start_btc_price,
        end_btc_price=end_btc_price,
    )
    logger.info(
        "BTC backtest %s finished: %d trades, final %.8f BTC (%+.2f%%)",
        strategy.name, result.total_trades, result.final_btc, result.btc_profit_percent,
    )
    return result
