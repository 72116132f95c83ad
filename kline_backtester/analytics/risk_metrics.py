"""
Equity-curve risk metrics for intraday backtests.

This module turns the sampled equity curve of a backtest (a list of
EquityPoint / BtcEquityPoint records) into the two path-dependent metrics
reported with every result:
  - Drawdown: worst peak-to-trough loss, absolute and as a % of the peak.
  - Sharpe ratio: annualised from one return per UTC calendar day.

The equity curve is sampled irregularly (every N processed timestamps plus
first and last), so both metrics work on the samples themselves and never
assume a fixed spacing. Crypto trades every day of the year, hence the
default of 365 periods per year.
"""

from typing import Iterable, Tuple

import numpy as np
import pandas as pd


def equity_curve_to_series(points: Iterable, value: str = 'equity') -> pd.Series:
    """
    Convert equity point records into a pandas Series indexed by timestamp.

    **Functionally**:
    - Input: iterable of objects with `timestamp` and a `value` attribute
      (`equity` for USD points; `btc_equity` or `usdt_equity` for BTC points).
    - Output: float Series, same order as the input (duplicates kept).

    Args:
        points: Equity samples in chronological order.
        value: Attribute to read from each point.

    Returns:
        Series named `value`. Empty input gives an empty Series.
    """
    points = list(points)
    index = pd.DatetimeIndex([p.timestamp for p in points], name='timestamp')
    return pd.Series([float(getattr(p, value)) for p in points], index=index, name=value, dtype=float)


def compute_drawdown_series(equity_curve: pd.Series) -> pd.Series:
    """
    Compute the absolute drawdown at every sample.

    **Conceptual**: For a trader, drawdown is the money given back since the
    best point so far. The running peak only ever rises, so the drawdown is
    zero at every new high and positive below it.

    **Mathematical**:
        peak_t = max(equity_0 .. equity_t)
        drawdown_t = peak_t - equity_t   (>= 0)

    Args:
        equity_curve: Equity samples in chronological order.

    Returns:
        Series of drawdowns (values >= 0), same index as input.
    """
    cumulative_peak = equity_curve.cummax()
    return cumulative_peak - equity_curve


def compute_max_drawdown(equity_curve: pd.Series) -> Tuple[float, float]:
    """
    Compute the maximum drawdown in absolute and percentage terms.

    **Conceptual**: Max drawdown is the single worst loss from a peak. The
    percentage is measured against the peak *at the sample where the largest
    absolute drawdown occurs*, so a later, smaller drop from a higher peak
    never replaces it even if it is larger in percent.

    **Functionally**:
    - Ties keep the first occurrence (the drawdown must strictly exceed the
      previous maximum to replace it).
    - The percentage is clamped to [0, 100]; a non-positive peak reports 0%.

    **Edge cases**:
    - Empty or monotonically rising curve: (0.0, 0.0).

    Args:
        equity_curve: Equity samples in chronological order.

    Returns:
        (max_drawdown, max_drawdown_percent).
    """
    if equity_curve.empty:
        return 0.0, 0.0

    drawdown = compute_drawdown_series(equity_curve)
    values = drawdown.to_numpy()
    worst = int(np.argmax(values))  # first occurrence
    max_drawdown = float(values[worst])
    if max_drawdown <= 0:
        return 0.0, 0.0

    peak = float(equity_curve.cummax().iloc[worst])
    if peak <= 0:
        return max_drawdown, 0.0

    percent = min(max_drawdown / peak * 100.0, 100.0)
    return max_drawdown, percent


def compute_daily_returns(equity_curve: pd.Series) -> pd.Series:
    """
    One simple return per UTC calendar day, from each day's last sample.

    **Functionally**:
    - Samples are grouped by UTC date; the last sample of each day is that
      day's close.
    - return_d = (close_d - close_{d-1}) / close_{d-1} between consecutive
      days that have samples.
    - Pairs whose previous close is exactly zero are skipped.

    Returns:
        Series of daily returns indexed by the later day (may be empty).
    """
    if equity_curve.empty:
        return pd.Series(dtype=float)

    index = equity_curve.index
    if index.tz is not None:
        index = index.tz_convert('UTC')
    day_close = equity_curve.groupby(index.normalize()).last()

    previous = day_close.shift(1).iloc[1:]
    current = day_close.iloc[1:]
    valid = previous != 0
    return ((current[valid] - previous[valid]) / previous[valid]).rename('daily_return')


def compute_daily_sharpe_ratio(equity_curve: pd.Series, periods_per_year: int = 365) -> float:
    """
    Compute the annualised Sharpe ratio from daily equity returns.

    **Mathematical**:
        Sharpe = mean(r_d) / std(r_d, ddof=1) * sqrt(periods_per_year)
    with no risk-free rate.

    **Edge cases**:
    - Fewer than 2 daily returns: 0.0.
    - Zero standard deviation (flat equity): 0.0.

    Args:
        equity_curve: Equity samples in chronological order.
        periods_per_year: Annualisation factor (365 for crypto).

    Returns:
        Sharpe ratio as a scalar (0.0 when undefined).
    """
    returns = compute_daily_returns(equity_curve)
    if len(returns) < 2:
        return 0.0

    vol = returns.std(ddof=1)
    if not vol > 0:
        return 0.0

    return float(returns.mean() / vol * np.sqrt(periods_per_year))

