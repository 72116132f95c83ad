"""
Tests for kline_backtester/analytics/trade_stats.py

Covers:
- Win rate and profit factor conventions (zero pnl is a loss, no losses -> inf)
- Aggregate statistics incl. best/worst trade and average duration
- Monthly grouping by UTC exit month
- Per-symbol (alphabetical) and per-alt (best first) breakdowns
"""

import math
from types import SimpleNamespace

import pandas as pd
import pytest

from kline_backtester.analytics.trade_stats import (
    compute_alt_breakdown,
    compute_monthly_returns,
    compute_profit_factor,
    compute_symbol_breakdown,
    compute_trade_statistics,
    compute_win_rate,
)


def make_trade(pnl: float, symbol: str = "BTCUSDT", exit_time: str = "2024-01-15",
               hours: float = 2.0) -> SimpleNamespace:
    """Minimal closed-trade stand-in: the statistics only read these fields."""
    return SimpleNamespace(
        pnl=pnl,
        symbol=symbol,
        exit_time=pd.Timestamp(exit_time, tz="UTC"),
        duration=pd.Timedelta(hours=hours),
        to_dict=lambda: {"pnl": pnl, "symbol": symbol},
    )


def test_profit_factor_and_win_rate():
    """
    Scenario: one winner of +50, one loser of -20.

    Expected: profit factor 50 / 20 = 2.5, win rate 50%.
    """
    pnls = [50.0, -20.0]
    assert compute_profit_factor(pnls) == pytest.approx(2.5)
    assert compute_win_rate(pnls) == pytest.approx(50.0)


def test_conventions_for_edge_cases():
    assert compute_win_rate([]) == 0.0
    assert math.isinf(compute_profit_factor([]))
    assert math.isinf(compute_profit_factor([10.0, 5.0]))
    # Break-even trades count as losses
    assert compute_win_rate([10.0, 0.0]) == pytest.approx(50.0)
    assert compute_profit_factor([10.0, 0.0, -5.0]) == pytest.approx(2.0)


def test_trade_statistics():
    trades = [
        make_trade(50.0, hours=1),
        make_trade(-20.0, hours=3),
        make_trade(30.0, hours=2),
    ]
    stats = compute_trade_statistics(trades, starting_capital=500.0)

    assert stats.total_trades == 3
    assert stats.wins == 2
    assert stats.losses == 1
    assert stats.win_rate == pytest.approx(200.0 / 3)
    assert stats.total_pnl == pytest.approx(60.0)
    assert stats.total_pnl_percent == pytest.approx(12.0)
    assert stats.avg_win == pytest.approx(40.0)
    assert stats.avg_loss == pytest.approx(-20.0)
    assert stats.profit_factor == pytest.approx(4.0)
    assert stats.best_trade is trades[0]
    assert stats.worst_trade is trades[1]
    assert stats.avg_trade_duration == pd.Timedelta(hours=2)

    as_dict = stats.to_dict()
    assert as_dict["best_trade"] == {"pnl": 50.0, "symbol": "BTCUSDT"}
    assert as_dict["avg_trade_duration_seconds"] == pytest.approx(7200.0)


def test_trade_statistics_without_trades():
    stats = compute_trade_statistics([], starting_capital=500.0)

    assert stats.total_trades == 0
    assert stats.win_rate == 0.0
    assert stats.total_pnl == 0
    assert stats.best_trade is None
    assert stats.avg_trade_duration == pd.Timedelta(0)
    assert stats.to_dict()["worst_trade"] is None


def test_monthly_returns_grouped_by_exit_month():
    trades = [
        make_trade(50.0, exit_time="2024-01-31 23:00"),
        make_trade(-20.0, exit_time="2024-02-01 00:00"),
        make_trade(10.0, exit_time="2024-01-02"),
    ]
    months = compute_monthly_returns(trades, starting_capital=500.0)

    assert [m.month for m in months] == ["2024-01", "2024-02"]
    january, february = months
    assert january.pnl == pytest.approx(60.0)
    assert january.pnl_percent == pytest.approx(12.0)
    assert january.trades == 2
    assert january.win_rate == pytest.approx(100.0)
    assert february.win_rate == 0.0


def test_symbol_breakdown_alphabetical():
    trades = [
        make_trade(-5.0, symbol="SOLUSDT"),
        make_trade(20.0, symbol="BTCUSDT"),
        make_trade(-10.0, symbol="BTCUSDT"),
    ]
    rows = compute_symbol_breakdown(trades)

    assert [r.symbol for r in rows] == ["BTCUSDT", "SOLUSDT"]
    assert rows[0].trades == 2
    assert rows[0].pnl == pytest.approx(10.0)
    assert rows[0].profit_factor == pytest.approx(2.0)
    assert rows[1].win_rate == 0.0


def test_alt_breakdown_best_performer_first():
    trades = [
        make_trade(-0.001, symbol="ADAUSDT"),
        make_trade(0.002, symbol="SOLUSDT"),
        make_trade(0.004, symbol="ETHUSDT"),
        make_trade(0.002, symbol="AVAXUSDT"),
    ]
    rows = compute_alt_breakdown(trades)

    assert [r.symbol for r in rows] == ["ETHUSDT", "AVAXUSDT", "SOLUSDT", "ADAUSDT"]
