"""
Position ledger: the single mutable store of open positions and closed trades.

**Conceptual**: The ledger owns every open position by id and keeps closed
trades in the order they were produced. It replaces the "splice the array
while looping over it" pattern with two rules:
  - Iteration always goes over a snapshot (`open_positions()` returns a new
    tuple), so removing a position mid-pass never skips or repeats another.
  - Removal happens by id through `close()`, which atomically drops the open
    position and appends the trade.

**Invariants enforced here**:
  - At most one open position per symbol.
  - Number of open positions never exceeds `max_open`.
  - A position id is closed at most once.

The same ledger serves both variants: anything with `id` and `symbol`
attributes can be stored (Position, BtcPosition) and anything can be
recorded as the closed trade (Trade, BtcTrade).
"""

import logging
from typing import Any, Dict, Generic, List, Tuple, TypeVar

logger = logging.getLogger(__name__)

P = TypeVar("P")
T = TypeVar("T")


class LedgerError(Exception):
    """Raised when a caller breaks a ledger invariant (programmer error)."""
    pass


class PositionLedger(Generic[P, T]):
    """Open positions keyed by id (insertion-ordered) plus the closed-trade list."""

    def __init__(self, max_open: int):
        if max_open <= 0:
            raise ValueError(f"max_open must be positive, got {max_open}")
        self.max_open = max_open
        self._open: Dict[str, P] = {}
        self._by_symbol: Dict[str, str] = {}  # symbol -> position id
        self._trades: List[T] = []

    @property
    def open_count(self) -> int:
        return len(self._open)

    @property
    def is_full(self) -> bool:
        return len(self._open) >= self.max_open

    @property
    def trades(self) -> Tuple[T, ...]:
        return tuple(self._trades)

    def has_position(self, symbol: str) -> bool:
        return symbol in self._by_symbol

    def open_positions(self, symbol: str | None = None) -> Tuple[P, ...]:
        """
        Snapshot of open positions in opening order.

        Args:
            symbol: If given, only positions on this symbol.
        """
        if symbol is None:
            return tuple(self._open.values())
        return tuple(p for p in self._open.values() if _symbol_of(p) == symbol)

    def add(self, position: P) -> None:
        """Insert a freshly opened position."""
        position_id = _id_of(position)
        symbol = _symbol_of(position)
        if position_id in self._open:
            raise LedgerError(f"Position id '{position_id}' is already open")
        if symbol in self._by_symbol:
            raise LedgerError(f"Symbol '{symbol}' already has an open position")
        if self.is_full:
            raise LedgerError(
                f"Cannot open '{position_id}': {self.open_count} positions open "
                f"(max {self.max_open})"
            )
        self._open[position_id] = position
        self._by_symbol[symbol] = position_id

    def close(self, position_id: str, trade: T) -> P:
        """Remove an open position and record the trade that replaces it."""
        try:
            position = self._open.pop(position_id)
        except KeyError:
            raise LedgerError(f"Position id '{position_id}' is not open") from None
        del self._by_symbol[_symbol_of(position)]
        self._trades.append(trade)
        logger.debug("Closed %s: %s", position_id, getattr(trade, "exit_reason", ""))
        return position


def _id_of(position: Any) -> str:
    return position.id


def _symbol_of(position: Any) -> str:
    return position.symbol
