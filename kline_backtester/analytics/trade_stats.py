"""
Trade-list statistics: win rate, profit factor, monthly and per-symbol views.

**Conceptual**: Where risk_metrics looks at the *path* of equity, this
module looks at the *outcomes* of individual trades. It works for both
simulator variants because it only reads a few attributes every closed
trade exposes: `pnl` (USD, or total BTC for rotations), `symbol`,
`exit_time` and `duration`.

**Conventions** (shared by every function here):
  - A win is a trade with pnl > 0; everything else (including exactly 0)
    counts as a loss.
  - Profit factor = sum(wins) / |sum(losses)|, and +inf when there are no
    losses at all (including the no-trade case).
  - Percentages are on a 0-100 scale and relative to the starting capital
    (or starting BTC).
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import pandas as pd


@dataclass(frozen=True)
class TradeStatistics:
    """Aggregate outcome of a list of closed trades."""
    total_trades: int
    wins: int
    losses: int
    win_rate: float
    total_pnl: float
    total_pnl_percent: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    best_trade: Optional[object]
    worst_trade: Optional[object]
    avg_trade_duration: pd.Timedelta

    def to_dict(self) -> dict:
        return {
            'total_trades': self.total_trades,
            'wins': self.wins,
            'losses': self.losses,
            'win_rate': self.win_rate,
            'total_pnl': self.total_pnl,
            'total_pnl_percent': self.total_pnl_percent,
            'avg_win': self.avg_win,
            'avg_loss': self.avg_loss,
            'profit_factor': self.profit_factor,
            'best_trade': self.best_trade.to_dict() if self.best_trade is not None else None,
            'worst_trade': self.worst_trade.to_dict() if self.worst_trade is not None else None,
            'avg_trade_duration_seconds': self.avg_trade_duration.total_seconds(),
        }


@dataclass(frozen=True)
class MonthlyReturn:
    month: str  # 'YYYY-MM', UTC
    pnl: float
    pnl_percent: float
    trades: int
    win_rate: float

    def to_dict(self) -> dict:
        return {
            'month': self.month,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'trades': self.trades,
            'win_rate': self.win_rate,
        }


@dataclass(frozen=True)
class SymbolBreakdown:
    symbol: str
    trades: int
    pnl: float
    win_rate: float
    profit_factor: float

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'trades': self.trades,
            'pnl': self.pnl,
            'win_rate': self.win_rate,
            'profit_factor': self.profit_factor,
        }


def compute_win_rate(pnls: Sequence[float]) -> float:
    """Share of winning trades in percent (0.0 for no trades)."""
    if not pnls:
        return 0.0
    wins = sum(1 for p in pnls if p > 0)
    return wins / len(pnls) * 100.0


def compute_profit_factor(pnls: Sequence[float]) -> float:
    """
    Gross profit divided by gross loss.

    **Interpretation**: Above 1.0 the strategy made more on its winners than
    it gave back on its losers. A factor of 2.5 means every dollar lost was
    matched by 2.50 won.

    Returns:
        sum(pnl > 0) / |sum(pnl <= 0)|, or +inf if the loss sum is zero.
    """
    gross_win = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p <= 0))
    if gross_loss == 0:
        return float('inf')
    return gross_win / gross_loss


def compute_trade_statistics(trades: Sequence, starting_capital: float) -> TradeStatistics:
    """
    Summarise a list of closed trades.

    Args:
        trades: Closed trades in the order they were produced.
        starting_capital: Denominator for `total_pnl_percent`.

    Returns:
        TradeStatistics. Best/worst keep the first trade on ties.
    """
    pnls = [t.pnl for t in trades]
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]
    total_pnl = sum(pnls)

    best = worst = None
    for trade in trades:
        if best is None or trade.pnl > best.pnl:
            best = trade
        if worst is None or trade.pnl < worst.pnl:
            worst = trade

    if trades:
        avg_duration = sum((t.duration for t in trades), pd.Timedelta(0)) / len(trades)
    else:
        avg_duration = pd.Timedelta(0)

    return TradeStatistics(
        total_trades=len(trades),
        wins=len(winners),
        losses=len(losers),
        win_rate=compute_win_rate(pnls),
        total_pnl=total_pnl,
        total_pnl_percent=total_pnl / starting_capital * 100.0 if starting_capital else 0.0,
        avg_win=sum(winners) / len(winners) if winners else 0.0,
        avg_loss=sum(losers) / len(losers) if losers else 0.0,
        profit_factor=compute_profit_factor(pnls),
        best_trade=best,
        worst_trade=worst,
        avg_trade_duration=avg_duration,
    )


def compute_monthly_returns(trades: Sequence, starting_capital: float) -> List[MonthlyReturn]:
    """
    Group trades by the UTC year-month of their exit time.

    Returns:
        One MonthlyReturn per month that had a closing trade, sorted by month.
    """
    grouped: Dict[str, List[float]] = {}
    for trade in trades:
        exit_time = pd.Timestamp(trade.exit_time)
        if exit_time.tzinfo is not None:
            exit_time = exit_time.tz_convert('UTC')
        grouped.setdefault(exit_time.strftime('%Y-%m'), []).append(trade.pnl)

    months = []
    for month in sorted(grouped):
        pnls = grouped[month]
        pnl = sum(pnls)
        months.append(MonthlyReturn(
            month=month,
            pnl=pnl,
            pnl_percent=pnl / starting_capital * 100.0 if starting_capital else 0.0,
            trades=len(pnls),
            win_rate=compute_win_rate(pnls),
        ))
    return months


def _group_by_symbol(trades: Sequence) -> Dict[str, List[float]]:
    grouped: Dict[str, List[float]] = {}
    for trade in trades:
        grouped.setdefault(trade.symbol, []).append(trade.pnl)
    return grouped


def _breakdown(symbol: str, pnls: List[float]) -> SymbolBreakdown:
    return SymbolBreakdown(
        symbol=symbol,
        trades=len(pnls),
        pnl=sum(pnls),
        win_rate=compute_win_rate(pnls),
        profit_factor=compute_profit_factor(pnls),
    )


def compute_symbol_breakdown(trades: Sequence) -> List[SymbolBreakdown]:
    """Per-symbol trade count, pnl, win rate and profit factor, sorted by symbol."""
    grouped = _group_by_symbol(trades)
    return [_breakdown(symbol, grouped[symbol]) for symbol in sorted(grouped)]


def compute_alt_breakdown(trades: Sequence) -> List[SymbolBreakdown]:
    """
    Per-alt breakdown for rotation trades, best performer first.

    Sorted by pnl descending; alts with equal pnl are ordered by symbol.
    """
    grouped = _group_by_symbol(trades)
    rows = [_breakdown(symbol, pnls) for symbol, pnls in grouped.items()]
    return sorted(rows, key=lambda row: (-row.pnl, row.symbol))
