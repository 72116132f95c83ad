"""
Configuration for the USD futures and BTC rotation simulators.

**Conceptual**: This module provides strongly-typed, frozen configuration
objects. Every numeric policy of a run (capital, leverage, costs, risk limits,
sampling cadence) lives here, is validated once at construction, and is echoed
into the result so a backtest can be reproduced from its output alone.

**Why frozen dataclasses?**
  - A run cannot change its own settings halfway through.
  - Validation happens in `__post_init__`: a bad value fails fast with a clear
    message instead of producing a silently wrong backtest.
  - Easy to sweep: `dataclasses.replace(config, leverage=5)`.

**Environment loading**: `from_env()` reads `BACKTEST_*` / `BTC_BACKTEST_*`
variables (after loading a `.env` file from the project root, if present) for
scripted runs. Tests construct configs directly.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# Project root is 2 levels up from kline_backtester/config/settings.py
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

TIMEFRAMES = ('1m', '5m', '15m', '1h', '4h', '1d')

SYMBOLS = (
    'BTCUSDT', 'ETHUSDT', 'SOLUSDT', 'BNBUSDT', 'XRPUSDT',
    'ADAUSDT', 'DOGEUSDT', 'AVAXUSDT', 'LINKUSDT', 'SUIUSDT',
)

ALT_SYMBOLS = SYMBOLS[1:]


def _check_timeframe(timeframe: str) -> None:
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"Unknown timeframe '{timeframe}', expected one of {TIMEFRAMES}")


def _check_rate(name: str, value: float) -> None:
    if not 0.0 <= value < 1.0:
        raise ValueError(f"{name} must be in [0, 1), got: {value}")


@dataclass(frozen=True)
class BacktestConfig:
    """
    Settings for a USD-margined futures backtest.

    Attributes:
        starting_capital: Account equity in USD at the start. Must be positive.
        leverage: Maximum notional as a multiple of equity (caps position size).
        commission_rate: Fraction of notional charged per leg (0.0006 = 0.06%).
        slippage_rate: Fraction of price lost per fill (0.0003 = 0.03%).
        risk_per_trade: Fraction of equity lost if the stop is hit (0.04 = 4%).
        max_concurrent_positions: Cap on simultaneously open positions.
        symbols: Symbols to trade, in the order they are visited each tick.
        timeframe: Primary candle timeframe.
        warmup_candles: Entries are rejected while fewer candles than this
                        precede the current one.
        equity_sample_interval: Equity is sampled every N processed timestamps
                               (plus first and last).
        trailing_atr_trigger: Favourable move, in ATRs, that activates the trailing stop.
        trailing_atr_multiplier: Trailing level = entry +/- multiplier * ATR.
        tp1_close_fraction: Fraction of the remaining size closed at TP1 when a TP2 exists.
    """
    starting_capital: float = 500.0
    leverage: float = 3.0
    commission_rate: float = 0.0006
    slippage_rate: float = 0.0003
    risk_per_trade: float = 0.04
    max_concurrent_positions: int = 3
    symbols: Tuple[str, ...] = SYMBOLS
    timeframe: str = '1h'
    warmup_candles: int = 1
    equity_sample_interval: int = 100
    trailing_atr_trigger: float = 1.0
    trailing_atr_multiplier: float = 0.5
    tp1_close_fraction: float = 0.5

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.starting_capital <= 0:
            raise ValueError(f"starting_capital must be positive, got: {self.starting_capital}")
        if self.leverage <= 0:
            raise ValueError(f"leverage must be positive, got: {self.leverage}")
        _check_rate("commission_rate", self.commission_rate)
        _check_rate("slippage_rate", self.slippage_rate)
        if not 0.0 < self.risk_per_trade <= 1.0:
            raise ValueError(f"risk_per_trade must be in (0, 1], got: {self.risk_per_trade}")
        if self.max_concurrent_positions < 1:
            raise ValueError(
                f"max_concurrent_positions must be >= 1, got: {self.max_concurrent_positions}"
            )
        if self.warmup_candles < 0:
            raise ValueError(f"warmup_candles must be >= 0, got: {self.warmup_candles}")
        if self.equity_sample_interval < 1:
            raise ValueError(
                f"equity_sample_interval must be >= 1, got: {self.equity_sample_interval}"
            )
        if self.trailing_atr_trigger <= 0:
            raise ValueError(f"trailing_atr_trigger must be positive, got: {self.trailing_atr_trigger}")
        if self.trailing_atr_multiplier <= 0:
            raise ValueError(
                f"trailing_atr_multiplier must be positive, got: {self.trailing_atr_multiplier}"
            )
        if not 0.0 < self.tp1_close_fraction < 1.0:
            raise ValueError(f"tp1_close_fraction must be in (0, 1), got: {self.tp1_close_fraction}")
        if len(set(self.symbols)) != len(self.symbols):
            raise ValueError(f"symbols must be unique, got: {self.symbols}")
        _check_timeframe(self.timeframe)
        # Accept any sequence but store a tuple so the config stays hashable.
        object.__setattr__(self, 'symbols', tuple(self.symbols))

    @classmethod
    def from_env(cls) -> "BacktestConfig":
        """
        Load a config from environment variables.

        **Environment variables** (all optional, defaults as in the dataclass):
          - BACKTEST_STARTING_CAPITAL, BACKTEST_LEVERAGE,
            BACKTEST_COMMISSION_RATE, BACKTEST_SLIPPAGE_RATE,
            BACKTEST_RISK_PER_TRADE, BACKTEST_MAX_CONCURRENT_POSITIONS,
            BACKTEST_TIMEFRAME, BACKTEST_SYMBOLS (comma-separated).

        Raises:
            ValueError: If a variable cannot be parsed or fails validation.
        """
        load_dotenv(dotenv_path=PROJECT_ROOT / ".env")
        defaults = cls()
        return cls(
            starting_capital=_env_float("BACKTEST_STARTING_CAPITAL", defaults.starting_capital),
            leverage=_env_float("BACKTEST_LEVERAGE", defaults.leverage),
            commission_rate=_env_float("BACKTEST_COMMISSION_RATE", defaults.commission_rate),
            slippage_rate=_env_float("BACKTEST_SLIPPAGE_RATE", defaults.slippage_rate),
            risk_per_trade=_env_float("BACKTEST_RISK_PER_TRADE", defaults.risk_per_trade),
            max_concurrent_positions=_env_int(
                "BACKTEST_MAX_CONCURRENT_POSITIONS", defaults.max_concurrent_positions
            ),
            symbols=_env_symbols("BACKTEST_SYMBOLS", defaults.symbols),
            timeframe=os.getenv("BACKTEST_TIMEFRAME", defaults.timeframe),
        )


@dataclass(frozen=True)
class BtcRiskProfile:
    """
    Hard exit rules for a rotation position, chosen by leverage.

    Spot rotations tolerate deeper drawdowns and hold longer; leveraged
    rotations use tighter stops, nearer targets and shorter holds.
    """
    stop_loss_pct: float
    tp1_pct: float
    tp2_pct: float
    max_hold_days: float
    commission_rate: float

    @classmethod
    def for_leverage(cls, leverage: float) -> "BtcRiskProfile":
        if leverage <= 1:
            return SPOT_RISK_PROFILE
        return FUTURES_RISK_PROFILE


SPOT_RISK_PROFILE = BtcRiskProfile(
    stop_loss_pct=0.15,
    tp1_pct=0.30,
    tp2_pct=0.50,
    max_hold_days=21,
    commission_rate=0.001,
)

FUTURES_RISK_PROFILE = BtcRiskProfile(
    stop_loss_pct=0.10,
    tp1_pct=0.15,
    tp2_pct=0.30,
    max_hold_days=14,
    commission_rate=0.0006,
)


@dataclass(frozen=True)
class BtcBacktestConfig:
    """
    Settings for a BTC-denominated ALT/BTC rotation backtest.

    Attributes:
        starting_btc: BTC available at the start.
        max_concurrent_positions: Cap on simultaneously open rotations.
        alt_symbols: Alts to rotate into, in visiting order.
        btc_symbol: Symbol of the BTC/USDT series used to build ratios.
        timeframe: Candle timeframe.
        dominance_threshold: 1-day average ratio trend (%) above which every
                             open rotation is closed.
        trend_lookback_days: Lookback of the trend handed to the strategy.
        min_btc_allocation: Entries smaller than this are rejected.
        equity_sample_interval: BTC equity sampled every N timestamps.
        warmup_candles: Entries rejected while fewer candles precede the current one.
        tp1_sell_fraction: Fraction of the allocation sold at TP1.
        risk_profile: Overrides the leverage-derived profile when set.
    """
    starting_btc: float = 0.05
    max_concurrent_positions: int = 3
    alt_symbols: Tuple[str, ...] = ALT_SYMBOLS
    btc_symbol: str = 'BTCUSDT'
    timeframe: str = '4h'
    dominance_threshold: float = 2.0
    trend_lookback_days: float = 7
    min_btc_allocation: float = 0.0001
    equity_sample_interval: int = 10
    warmup_candles: int = 1
    tp1_sell_fraction: float = 0.5
    risk_profile: Optional[BtcRiskProfile] = field(default=None)

    def __post_init__(self):
        if self.starting_btc <= 0:
            raise ValueError(f"starting_btc must be positive, got: {self.starting_btc}")
        if self.max_concurrent_positions < 1:
            raise ValueError(
                f"max_concurrent_positions must be >= 1, got: {self.max_concurrent_positions}"
            )
        if self.btc_symbol in self.alt_symbols:
            raise ValueError(f"btc_symbol '{self.btc_symbol}' cannot also be an alt symbol")
        if self.min_btc_allocation < 0:
            raise ValueError(f"min_btc_allocation must be >= 0, got: {self.min_btc_allocation}")
        if self.equity_sample_interval < 1:
            raise ValueError(
                f"equity_sample_interval must be >= 1, got: {self.equity_sample_interval}"
            )
        if not 0.0 < self.tp1_sell_fraction < 1.0:
            raise ValueError(f"tp1_sell_fraction must be in (0, 1), got: {self.tp1_sell_fraction}")
        _check_timeframe(self.timeframe)
        object.__setattr__(self, 'alt_symbols', tuple(self.alt_symbols))

    def risk_profile_for(self, leverage: float) -> BtcRiskProfile:
        if self.risk_profile is not None:
            return self.risk_profile
        return BtcRiskProfile.for_leverage(leverage)

    @classmethod
    def from_env(cls) -> "BtcBacktestConfig":
        """
        Load from BTC_BACKTEST_STARTING_BTC, BTC_BACKTEST_TIMEFRAME,
        BTC_BACKTEST_MAX_CONCURRENT_POSITIONS and BTC_BACKTEST_ALT_SYMBOLS.
        """
        load_dotenv(dotenv_path=PROJECT_ROOT / ".env")
        defaults = cls()
        return cls(
            starting_btc=_env_float("BTC_BACKTEST_STARTING_BTC", defaults.starting_btc),
            max_concurrent_positions=_env_int(
                "BTC_BACKTEST_MAX_CONCURRENT_POSITIONS", defaults.max_concurrent_positions
            ),
            alt_symbols=_env_symbols("BTC_BACKTEST_ALT_SYMBOLS", defaults.alt_symbols),
            timeframe=os.getenv("BTC_BACKTEST_TIMEFRAME", defaults.timeframe),
        )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw}")


def _env_symbols(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(s.strip().upper() for s in raw.split(",") if s.strip())
