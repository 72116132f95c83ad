"""
Candle and funding-rate frame contracts, with validation.

**Conceptual**: The engines consume pandas DataFrames produced by external
collaborators (a market-data provider and an indicator library). This module
is the gatekeeper at that boundary: a frame that breaks the contract is a
programmer error and fails fast with a SchemaValidationError, while a frame
that is merely *empty* is a data-sparsity condition the engines tolerate.

**Schema philosophy**:
  - `timestamp` column of tz-aware UTC pandas Timestamps.
  - Strictly ascending by timestamp (oldest first, no duplicates); the
    simulation replays time forwards.
  - Column names are snake_case.
  - Indicator columns are optional and may hold NaN during warm-up.
"""

from typing import Optional

import pandas as pd


class SchemaValidationError(Exception):
    """
    Raised when a DataFrame does not conform to the expected schema.

    Should include enough context (symbol, timeframe, specific issue) for
    quick remediation.
    """
    pass


CANDLE_REQUIRED_COLUMNS = [
    'timestamp',
    'open',
    'high',
    'low',
    'close',
    'volume',
]

CANDLE_OPTIONAL_COLUMNS = [
    'turnover',
]

FUNDING_RATE_REQUIRED_COLUMNS = [
    'funding_rate_timestamp',
    'funding_rate',
]


def _prefix(context: Optional[str]) -> str:
    return f"[{context}] " if context else ""


def _require_columns(df: pd.DataFrame, required, kind: str, context: Optional[str]) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaValidationError(
            f"{_prefix(context)}Missing required {kind} columns: {missing}. "
            f"Found columns: {list(df.columns)}"
        )


def validate_candle_schema(df: pd.DataFrame, context: Optional[str] = None) -> None:
    """
    Validate that a DataFrame is a usable candle series.

    **Functionally**:
      - All of timestamp/open/high/low/close/volume are present.
      - `timestamp` is a datetime column.
      - Timestamps are strictly ascending (no ties).

    An empty frame with the right columns passes.

    Args:
        df: Candle frame (raw or enriched).
        context: Optional description (e.g. "ETHUSDT 1h") for error messages.

    Raises:
        SchemaValidationError: On any violation.
    """
    prefix = _prefix(context)
    _require_columns(df, CANDLE_REQUIRED_COLUMNS, "candle", context)

    if df.empty:
        return

    if not pd.api.types.is_datetime64_any_dtype(df['timestamp']):
        raise SchemaValidationError(
            f"{prefix}Column 'timestamp' must be datetime64, got dtype {df['timestamp'].dtype}. "
            f"Use normalize_candles() to convert epoch milliseconds."
        )

    if not df['timestamp'].is_monotonic_increasing or df['timestamp'].duplicated().any():
        raise SchemaValidationError(
            f"{prefix}Timestamps must be strictly ascending (oldest first, no duplicates)."
        )


def validate_funding_rate_schema(df: pd.DataFrame, context: Optional[str] = None) -> None:
    """Validate a funding-rate frame: required columns, ascending timestamps."""
    prefix = _prefix(context)
    _require_columns(df, FUNDING_RATE_REQUIRED_COLUMNS, "funding-rate", context)

    if not df.empty and not df['funding_rate_timestamp'].is_monotonic_increasing:
        raise SchemaValidationError(
            f"{prefix}Funding-rate timestamps must be ascending."
        )


def normalize_candles(df: pd.DataFrame, context: Optional[str] = None) -> pd.DataFrame:
    """
    Return a copy in canonical form: UTC timestamps, ascending, unique, 0..n-1 index.

    Integer timestamps are read as epoch milliseconds. Duplicate timestamps
    keep the last row. Adds a zero `turnover` column when absent.

    Raises:
        SchemaValidationError: If a required candle column is missing.
    """
    _require_columns(df, CANDLE_REQUIRED_COLUMNS, "candle", context)
    out = df.copy()
    if pd.api.types.is_numeric_dtype(out['timestamp']):
        out['timestamp'] = pd.to_datetime(out['timestamp'], unit='ms', utc=True)
    else:
        out['timestamp'] = pd.to_datetime(out['timestamp'], utc=True)

    if 'turnover' not in out.columns:
        out['turnover'] = 0.0

    out = (
        out.sort_values('timestamp', kind='mergesort')
        .drop_duplicates(subset='timestamp', keep='last')
        .reset_index(drop=True)
    )
    return out


def normalize_funding_rates(df: pd.DataFrame, context: Optional[str] = None) -> pd.DataFrame:
    """Same as normalize_candles, for funding-rate frames."""
    _require_columns(df, FUNDING_RATE_REQUIRED_COLUMNS, "funding-rate", context)
    out = df.copy()
    if pd.api.types.is_numeric_dtype(out['funding_rate_timestamp']):
        out['funding_rate_timestamp'] = pd.to_datetime(out['funding_rate_timestamp'], unit='ms', utc=True)
    else:
        out['funding_rate_timestamp'] = pd.to_datetime(out['funding_rate_timestamp'], utc=True)
    return out.sort_values('funding_rate_timestamp', kind='mergesort').reset_index(drop=True)
