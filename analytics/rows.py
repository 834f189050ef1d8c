"""
rows.py — Row Set Primitives

A row set is an ordered list of flat records (dict[str, scalar]), the
shape produced by parsing a CSV/Excel/JSON upload. These helpers define,
once for every module, what counts as missing, numeric, or date-like.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

Row = Mapping[str, Any]
RowSet = Sequence[Row]


# =============================================================================
# CONSTANTS
# =============================================================================

# Integer/decimal strings that standardization converts to numbers
NUMERIC_PATTERN = re.compile(r"^-?\d+\.?\d*$")

# Looser pattern used when judging whether a value "looks numeric"
NUMBER_LIKE_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

# Date-like strings: anything starting with YYYY-MM-DD
DATE_PREFIX_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")

UNKNOWN_LABEL = "Unknown"


# =============================================================================
# VALUE PREDICATES
# =============================================================================

def is_missing(value: Any) -> bool:
    """True for None, NaN/NaT and the empty string."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (float, np.floating)):
        return math.isnan(value)
    if value is pd.NaT:
        return True
    return False


def is_number(value: Any) -> bool:
    """True for finite int/float values (booleans excluded)."""
    if isinstance(value, (bool, np.bool_)):
        return False
    if isinstance(value, (int, np.integer)):
        return True
    if isinstance(value, (float, np.floating)):
        return math.isfinite(value)
    return False


def to_number(value: Any) -> float | int | None:
    """
    Coerce a numeric-looking value to a number.

    Numbers pass through; strings such as " 12.5 " or "-3" are parsed.
    Anything else (including booleans, "nan", "inf") returns None.
    """
    if is_number(value):
        if isinstance(value, np.integer):
            return int(value)
        if isinstance(value, np.floating):
            return float(value)
        return value
    if isinstance(value, str):
        text = value.strip()
        if NUMBER_LIKE_PATTERN.match(text):
            parsed = float(text)
            return parsed if math.isfinite(parsed) else None
    return None


def is_date_like(value: Any) -> bool:
    """True for date/datetime objects and strings starting with YYYY-MM-DD."""
    if isinstance(value, (date, datetime)):
        return True
    if isinstance(value, str):
        return bool(DATE_PREFIX_PATTERN.match(value.strip()))
    return False


def value_type(value: Any) -> str:
    """
    Storage-level type name of a non-missing value.

    Returns one of: "boolean", "number", "date", "string", or the Python
    type name for anything more exotic.
    """
    if isinstance(value, (bool, np.bool_)):
        return "boolean"
    if isinstance(value, (int, float, np.integer, np.floating)):
        return "number"
    if isinstance(value, (date, datetime)):
        return "date"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


def value_key(value: Any) -> tuple[str, Any]:
    """Hashable, type-aware key so that True and 1 are counted separately."""
    kind = value_type(value)
    if kind == "number":
        number = to_number(value)
        return kind, number if number is not None else repr(value)
    try:
        hash(value)
    except TypeError:
        return kind, repr(value)
    return kind, value


# =============================================================================
# ROW SET HELPERS
# =============================================================================

def column_names(rows: Iterable[Row]) -> list[str]:
    """Union of keys across all rows, in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row.keys():
            if key not in seen:
                seen[key] = None
    return list(seen)


def copy_rows(rows: Iterable[Row]) -> list[dict[str, Any]]:
    """Shallow-copy every row so callers never share dicts with the input."""
    return [dict(row) for row in rows]


def column_values(rows: Iterable[Row], column: str) -> list[Any]:
    """Values of one column (None where the key is absent)."""
    return [row.get(column) for row in rows]


def row_label(index: int) -> str:
    """Human-readable 1-based row label."""
    return f"Row {index + 1}"


def group_label(values: Iterable[Any], separator: str = " | ") -> str:
    """Join key values into a display label, substituting "Unknown" for missing."""
    return separator.join(
        UNKNOWN_LABEL if is_missing(v) else str(v) for v in values
    )
