"""
Position and trade records for both simulator variants.

**Conceptual**: A position is the only mutable record in the simulation. It is
created by the entry evaluator, mutated by the exit evaluator (partial closes,
stop adjustments) and frozen into a trade the instant it closes. Trades,
partial closes and equity points are immutable once created.

**Units**:
  - USD variant: `size` is notional in USD (not contracts). P&L is computed as
    the percentage move of the price applied to that notional.
  - BTC variant: `btc_allocated` is margin/spot capital in BTC, prices are
    synthetic ALT/BTC ratios.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

LONG = "long"
SHORT = "short"
SIDES = (LONG, SHORT)


@dataclass(frozen=True)
class PartialClose:
    """A slice of a position closed before the final exit."""
    price: float
    size: float
    pnl: float
    timestamp: pd.Timestamp
    reason: str
    commission: float = 0.0

    def to_dict(self) -> dict:
        return {
            'price': self.price,
            'size': self.size,
            'pnl': self.pnl,
            'commission': self.commission,
            'timestamp': self.timestamp.isoformat(),
            'reason': self.reason,
        }


@dataclass
class Position:
    """
    An open USD-margined position.

    Attributes:
        id: Deterministic identifier, e.g. "BTCUSDT-0".
        symbol: Instrument symbol.
        side: "long" or "short".
        entry_price: Fill price after slippage.
        size: Original notional in USD.
        leverage: Leverage the position was opened with (informational).
        stop_loss: Current stop level. Moves to breakeven after TP1 and
                   ratchets with the trailing stop.
        take_profit: First take-profit level.
        take_profit_2: Optional second take-profit level.
        entry_time: Timestamp of the entry candle.
        commission: Commission accrued so far (entry + partial legs).
        reason: Entry reason reported by the strategy.
        partial_closes: Ordered partial closes, never removed.
        trailing_stop: Trailing level once activated.
        breakeven: True once the stop was moved to the entry price.
        tp1_hit: True once the first take-profit was taken.
    """
    id: str
    symbol: str
    side: str
    entry_price: float
    size: float
    leverage: float
    stop_loss: float
    take_profit: float
    entry_time: pd.Timestamp
    commission: float = 0.0
    reason: str = ""
    take_profit_2: Optional[float] = None
    partial_closes: List[PartialClose] = field(default_factory=list)
    trailing_stop: Optional[float] = None
    breakeven: bool = False
    tp1_hit: bool = False

    def __post_init__(self):
        if self.side not in SIDES:
            raise ValueError(f"side must be 'long' or 'short', got: {self.side}")

    @property
    def is_long(self) -> bool:
        return self.side == LONG

    @property
    def remaining_size(self) -> float:
        """Notional still open after partial closes."""
        return self.size - sum(pc.size for pc in self.partial_closes)

    @property
    def partial_pnl(self) -> float:
        """P&L already realised by partial closes."""
        return sum(pc.pnl for pc in self.partial_closes)

    @property
    def partial_commission(self) -> float:
        """Commission charged by partial closes (already netted out of their pnl)."""
        return sum(pc.commission for pc in self.partial_closes)


@dataclass(frozen=True)
class Trade:
    """
    A closed USD position.

    `pnl` is the full result of the position: every partial close plus the
    final leg, net of all commission. `final_size` is the notional closed by
    the final leg, so `sum(partial sizes) + final_size == size`.
    """
    id: str
    symbol: str
    side: str
    entry_price: float
    size: float
    leverage: float
    stop_loss: float
    take_profit: float
    take_profit_2: Optional[float]
    entry_time: pd.Timestamp
    exit_time: pd.Timestamp
    exit_price: float
    final_size: float
    pnl: float
    commission: float
    duration: pd.Timedelta
    reason: str
    exit_reason: str
    partial_closes: tuple = ()
    trailing_stop: Optional[float] = None
    breakeven: bool = False
    tp1_hit: bool = False

    def to_dict(self) -> dict:
        """Plain-Python representation (timestamps as ISO strings)."""
        return {
            'id': self.id,
            'symbol': self.symbol,
            'side': self.side,
            'entry_price': self.entry_price,
            'size': self.size,
            'leverage': self.leverage,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'take_profit_2': self.take_profit_2,
            'entry_time': self.entry_time.isoformat(),
            'exit_time': self.exit_time.isoformat(),
            'exit_price': self.exit_price,
            'final_size': self.final_size,
            'pnl': self.pnl,
            'commission': self.commission,
            'duration_seconds': self.duration.total_seconds(),
            'reason': self.reason,
            'exit_reason': self.exit_reason,
            'partial_closes': [pc.to_dict() for pc in self.partial_closes],
            'trailing_stop': self.trailing_stop,
            'breakeven': self.breakeven,
            'tp1_hit': self.tp1_hit,
        }


@dataclass(frozen=True)
class EquityPoint:
    timestamp: pd.Timestamp
    equity: float

    def to_dict(self) -> dict:
        return {'timestamp': self.timestamp.isoformat(), 'equity': self.equity}


# ============================================================================
# BTC-denominated rotation records
# ============================================================================

@dataclass(frozen=True)
class BtcPartialExit:
    """BTC returned by selling part of an allocation before the final exit."""
    ratio: float
    btc_allocated: float
    btc_returned: float
    timestamp: pd.Timestamp
    reason: str

    @property
    def btc_pnl(self) -> float:
        return self.btc_returned - self.btc_allocated

    def to_dict(self) -> dict:
        return {
            'ratio': self.ratio,
            'btc_allocated': self.btc_allocated,
            'btc_returned': self.btc_returned,
            'btc_pnl': self.btc_pnl,
            'timestamp': self.timestamp.isoformat(),
            'reason': self.reason,
        }


@dataclass
class BtcPosition:
    """
    An open ALT/BTC rotation position.

    `btc_allocated` is the BTC still at work; it shrinks on partial exits
    while `initial_btc_allocated` keeps the amount committed at entry.
    """
    id: str
    alt_symbol: str
    entry_ratio: float
    btc_allocated: float
    entry_time: pd.Timestamp
    leverage: float = 1.0
    reason: str = ""
    tp1_hit: bool = False
    initial_btc_allocated: float = 0.0
    partial_exits: List[BtcPartialExit] = field(default_factory=list)

    def __post_init__(self):
        if not self.initial_btc_allocated:
            self.initial_btc_allocated = self.btc_allocated

    @property
    def symbol(self) -> str:
        return self.alt_symbol


@dataclass(frozen=True)
class BtcTrade:
    """
    A closed rotation position.

    `btc_pnl` covers the final leg only (BTC returned minus the allocation
    still open at the close); `total_btc_pnl` adds the partial exits.
    """
    id: str
    alt_symbol: str
    entry_ratio: float
    exit_ratio: float
    btc_allocated: float
    initial_btc_allocated: float
    entry_time: pd.Timestamp
    exit_time: pd.Timestamp
    btc_pnl: float
    duration: pd.Timedelta
    leverage: float
    reason: str
    exit_reason: str
    tp1_hit: bool = False
    partial_exits: tuple = ()

    @property
    def symbol(self) -> str:
        return self.alt_symbol

    @property
    def pnl(self) -> float:
        # statistics judge a rotation by everything it returned
        return self.total_btc_pnl

    @property
    def total_btc_pnl(self) -> float:
        return self.btc_pnl + sum(pe.btc_pnl for pe in self.partial_exits)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'alt_symbol': self.alt_symbol,
            'entry_ratio': self.entry_ratio,
            'exit_ratio': self.exit_ratio,
            'btc_allocated': self.btc_allocated,
            'initial_btc_allocated': self.initial_btc_allocated,
            'entry_time': self.entry_time.isoformat(),
            'exit_time': self.exit_time.isoformat(),
            'btc_pnl': self.btc_pnl,
            'total_btc_pnl': self.total_btc_pnl,
            'duration_seconds': self.duration.total_seconds(),
            'leverage': self.leverage,
            'reason': self.reason,
            'exit_reason': self.exit_reason,
            'tp1_hit': self.tp1_hit,
            'partial_exits': [pe.to_dict() for pe in self.partial_exits],
        }


@dataclass(frozen=True)
class BtcEquityPoint:
    timestamp: pd.Timestamp
    btc_equity: float
    usdt_equity: float

    @property
    def equity(self) -> float:
        return self.btc_equity

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'btc_equity': self.btc_equity,
            'usdt_equity': self.usdt_equity,
        }
