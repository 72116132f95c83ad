"""
Merged multi-symbol timeline.

**Conceptual**: Each symbol has its own candle series, and the series may
start at different times, have gaps, or not line up at all. The engines need
one clock: the ascending union of every timestamp seen on any symbol. At each
tick of that clock, a symbol either has a candle (found in O(1) through its
timestamp -> row index map) or is skipped.

**Determinism**: The union is a set merge followed by a sort, so the result
does not depend on the order symbols were loaded in. The order symbols are
*visited* at each tick comes from the caller's explicit symbol list, never
from dict iteration order.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import pandas as pd


@dataclass(frozen=True)
class Timeline:
    """
    Output of `build_timeline`.

    Attributes:
        timestamps: Ascending unique timestamps across all symbols.
        symbols: Symbols that had at least one candle, in visiting order.
        index_maps: symbol -> {timestamp -> row position in that symbol's frame}.
    """
    timestamps: Tuple[pd.Timestamp, ...] = ()
    symbols: Tuple[str, ...] = ()
    index_maps: Dict[str, Dict[pd.Timestamp, int]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.timestamps)

    @property
    def is_empty(self) -> bool:
        return len(self.timestamps) == 0

    def index_of(self, symbol: str, timestamp: pd.Timestamp) -> Optional[int]:
        """Row position of `symbol`'s candle at `timestamp`, or None if it has none."""
        index_map = self.index_maps.get(symbol)
        if index_map is None:
            return None
        return index_map.get(timestamp)


def build_timeline(
    series: Mapping[str, pd.DataFrame],
    symbols: Optional[Sequence[str]] = None,
) -> Timeline:
    """
    Merge per-symbol candle frames into one ascending timeline.

    Args:
        series: symbol -> DataFrame with a `timestamp` column, ascending.
                Symbols mapped to None or an empty frame are dropped silently.
        symbols: Visiting order. Defaults to the sorted keys of `series`.
                 Symbols listed here but absent from `series` are dropped.

    Returns:
        Timeline with merged timestamps and per-symbol index maps.
    """
    order = list(symbols) if symbols is not None else sorted(series)

    kept = []
    index_maps: Dict[str, Dict[pd.Timestamp, int]] = {}
    all_timestamps = set()

    for symbol in order:
        if symbol in index_maps:
            continue
        df = series.get(symbol)
        if df is None or df.empty:
            continue
        stamps = list(df['timestamp'])
        index_maps[symbol] = {ts: i for i, ts in enumerate(stamps)}
        all_timestamps.update(stamps)
        kept.append(symbol)

    return Timeline(
        timestamps=tuple(sorted(all_timestamps)),
        symbols=tuple(kept),
        index_maps=index_maps,
    )
