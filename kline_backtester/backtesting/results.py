"""
Backtest result aggregates for both simulator variants.

**Conceptual**: A result is the single value a backtest hands to the outside
world (reports, persistence, dashboards). It packages the config echo, every
closed trade, the sampled equity curve and all derived statistics, and is
immutable once built. `to_dict()` produces plain Python values (floats,
strings, lists, dicts) so callers can serialise it however they like. The
only non-JSON values are `inf` profit factors when there were no losses.

Results are built by `build_backtest_result` / `build_btc_backtest_result`,
which run the statistics once. Building from identical inputs produces an
identical result.
"""

from dataclasses import asdict, dataclass
from typing import Optional, Sequence, Tuple

import pandas as pd

from kline_backtester.analytics.risk_metrics import (
    compute_daily_sharpe_ratio,
    compute_max_drawdown,
    equity_curve_to_series,
)
from kline_backtester.analytics.trade_stats import (
    MonthlyReturn,
    SymbolBreakdown,
    TradeStatistics,
    compute_alt_breakdown,
    compute_monthly_returns,
    compute_symbol_breakdown,
    compute_trade_statistics,
)
from kline_backtester.config.settings import BacktestConfig, BtcBacktestConfig
from kline_backtester.execution.models import BtcEquityPoint, BtcTrade, EquityPoint, Trade


@dataclass(frozen=True)
class BacktestResult:
    """
    Outcome of a USD futures backtest.

    Attributes:
        strategy_name: Name of the strategy that was run.
        config: The BacktestConfig that produced this result.
        trades: Closed trades in closing order.
        equity_curve: Sampled equity points.
        statistics: Trade-level statistics.
        max_drawdown: Worst peak-to-trough equity loss in USD.
        max_drawdown_percent: Same, as % of the peak at that point (0-100).
        sharpe_ratio: Annualised daily Sharpe ratio.
        monthly_returns: Per UTC month, sorted.
        symbol_breakdown: Per symbol, sorted by symbol.
        final_equity: starting_capital + total realised pnl.
    """
    strategy_name: str
    config: BacktestConfig
    trades: Tuple[Trade, ...]
    equity_curve: Tuple[EquityPoint, ...]
    statistics: TradeStatistics
    max_drawdown: float
    max_drawdown_percent: float
    sharpe_ratio: float
    monthly_returns: Tuple[MonthlyReturn, ...]
    symbol_breakdown: Tuple[SymbolBreakdown, ...]
    final_equity: float

    @property
    def starting_capital(self) -> float:
        return self.config.starting_capital

    @property
    def leverage(self) -> float:
        return self.config.leverage

    @property
    def total_trades(self) -> int:
        return self.statistics.total_trades

    @property
    def win_rate(self) -> float:
        return self.statistics.win_rate

    @property
    def total_pnl(self) -> float:
        return self.statistics.total_pnl

    @property
    def profit_factor(self) -> float:
        return self.statistics.profit_factor

    def to_dict(self) -> dict:
        config = asdict(self.config)
        config['symbols'] = list(self.config.symbols)
        return {
            'strategy_name': self.strategy_name,
            'config': config,
            'starting_capital': self.starting_capital,
            'final_equity': self.final_equity,
            'leverage': self.leverage,
            **self.statistics.to_dict(),
            'max_drawdown': self.max_drawdown,
            'max_drawdown_percent': self.max_drawdown_percent,
            'sharpe_ratio': self.sharpe_ratio,
            'monthly_returns': [m.to_dict() for m in self.monthly_returns],
            'symbol_breakdown': [s.to_dict() for s in self.symbol_breakdown],
            'trades': [t.to_dict() for t in self.trades],
            'equity_curve': [p.to_dict() for p in self.equity_curve],
        }


def build_backtest_result(
    strategy_name: str,
    config: BacktestConfig,
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
) -> BacktestResult:
    """Derive every statistic and freeze the USD result."""
    series = equity_curve_to_series(equity_curve)
    max_dd, max_dd_pct = compute_max_drawdown(series)
    statistics = compute_trade_statistics(trades, config.starting_capital)

    return BacktestResult(
        strategy_name=strategy_name,
        config=config,
        trades=tuple(trades),
        equity_curve=tuple(equity_curve),
        statistics=statistics,
        max_drawdown=max_dd,
        max_drawdown_percent=max_dd_pct,
        sharpe_ratio=compute_daily_sharpe_ratio(series),
        monthly_returns=tuple(compute_monthly_returns(trades, config.starting_capital)),
        symbol_breakdown=tuple(compute_symbol_breakdown(trades)),
        final_equity=config.starting_capital + statistics.total_pnl,
    )


@dataclass(frozen=True)
class BtcBacktestResult:
    """
    Outcome of a BTC rotation backtest. All P&L figures are in BTC.

    Attributes:
        strategy_name / leverage / config: What was run.
        trades: Closed rotations in closing order.
        equity_curve: Sampled BTC (and USDT-equivalent) equity.
        statistics: Trade-level statistics on total BTC pnl per rotation.
        final_btc: BTC held after every position was closed.
        start_btc_price / end_btc_price: First and last BTC/USDT close seen.
        max_drawdown / max_drawdown_percent: On the BTC equity curve.
        sharpe_ratio: Annualised daily Sharpe ratio of the BTC equity curve.
        monthly_returns: Per UTC month, % of starting BTC.
        per_alt_breakdown: Per alt, best BTC pnl first.
    """
    strategy_name: str
    leverage: float
    config: BtcBacktestConfig
    trades: Tuple[BtcTrade, ...]
    equity_curve: Tuple[BtcEquityPoint, ...]
    statistics: TradeStatistics
    final_btc: float
    start_btc_price: float
    end_btc_price: float
    max_drawdown: float
    max_drawdown_percent: float
    sharpe_ratio: float
    monthly_returns: Tuple[MonthlyReturn, ...]
    per_alt_breakdown: Tuple[SymbolBreakdown, ...]

    @property
    def starting_btc(self) -> float:
        return self.config.starting_btc

    @property
    def btc_profit(self) -> float:
        return self.final_btc - self.starting_btc

    @property
    def btc_profit_percent(self) -> float:
        return self.btc_profit / self.starting_btc * 100.0

    @property
    def usdt_value_start(self) -> float:
        return self.starting_btc * self.start_btc_price

    @property
    def usdt_value_end(self) -> float:
        return self.final_btc * self.end_btc_price

    @property
    def hold_only_usdt_end(self) -> float:
        """USDT value at the end had the starting BTC simply been held."""
        return self.starting_btc * self.end_btc_price

    @property
    def avg_hold_time(self) -> pd.Timedelta:
        return self.statistics.avg_trade_duration

    @property
    def total_trades(self) -> int:
        return self.statistics.total_trades

    @property
    def win_rate(self) -> float:
        return self.statistics.win_rate

    def to_dict(self) -> dict:
        config = asdict(self.config)
        config['alt_symbols'] = list(self.config.alt_symbols)
        return {
            'strategy_name': self.strategy_name,
            'leverage': self.leverage,
            'config': config,
            'starting_btc': self.starting_btc,
            'final_btc': self.final_btc,
            'btc_profit': self.btc_profit,
            'btc_profit_percent': self.btc_profit_percent,
            'start_btc_price': self.start_btc_price,
            'end_btc_price': self.end_btc_price,
            'usdt_value_start': self.usdt_value_start,
            'usdt_value_end': self.usdt_value_end,
            'hold_only_usdt_end': self.hold_only_usdt_end,
            'avg_hold_time_seconds': self.avg_hold_time.total_seconds(),
            **self.statistics.to_dict(),
            'max_drawdown': self.max_drawdown,
            'max_drawdown_percent': self.max_drawdown_percent,
            'sharpe_ratio': self.sharpe_ratio,
            'monthly_returns': [m.to_dict() for m in self.monthly_returns],
            'per_alt_breakdown': [a.to_dict() for a in self.per_alt_breakdown],
            'trades': [t.to_dict() for t in self.trades],
            'equity_curve': [p.to_dict() for p in self.equity_curve],
        }


def build_btc_backtest_result(
    strategy_name: str,
    leverage: float,
    config: BtcBacktestConfig,
    trades: Sequence[BtcTrade],
    equity_curve: Sequence[BtcEquityPoint],
    final_btc: Optional[float] = None,
    start_btc_price: float = 0.0,
    end_btc_price: float = 0.0,
) -> BtcBacktestResult:
    """
    Derive every statistic and freeze the rotation result.

    `final_btc` defaults to the starting BTC, which is the zeroed result
    returned when no ratio data could be built.
    """
    series = equity_curve_to_series(equity_curve, value='btc_equity')
    max_dd, max_dd_pct = compute_max_drawdown(series)

    return BtcBacktestResult(
        strategy_name=strategy_name,
        leverage=leverage,
        config=config,
        trades=tuple(trades),
        equity_curve=tuple(equity_curve),
        statistics=compute_trade_statistics(trades, config.starting_btc),
        final_btc=config.starting_btc if final_btc is None else final_btc,
        start_btc_price=start_btc_price,
        end_btc_price=end_btc_price,
        max_drawdown=max_dd,
        max_drawdown_percent=max_dd_pct,
        sharpe_ratio=compute_daily_sharpe_ratio(series),
        monthly_returns=tuple(compute_monthly_returns(trades, config.starting_btc)),
        per_alt_breakdown=tuple(compute_alt_breakdown(trades)),
    )
