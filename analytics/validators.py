# validators.py — Input sanitization & validation
# Row-set shape checks, option guards, JSON-safe output
"""
validators.py — Input Sanitization & Validation

Production implementation for:
- Row set validation (shape and size)
- Option sanitization (periods, column lists)
- JSON-safe conversion of analysis results
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping

import numpy as np
import pandas as pd

from config.settings import get_config

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

VALID_PERIODS = ("daily", "weekly", "monthly", "quarterly", "annually")

# Loose spellings hosts tend to send
PERIOD_ALIASES = {
    "day": "daily",
    "week": "weekly",
    "month": "monthly",
    "quarter": "quarterly",
    "year": "annually",
    "yearly": "annually",
    "annual": "annually",
}

CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


# =============================================================================
# ROW SET VALIDATION
# =============================================================================

def validate_rows(rows: Any, max_rows: int | None = None) -> tuple[bool, str | None]:
    """
    Validate that a row set is suitable for analysis.

    Args:
        rows: Candidate row set (list of flat dicts)
        max_rows: Size guard; defaults to the configured max_rows

    Returns:
        (is_valid, error_message)
    """
    if rows is None:
        return False, "No data provided"

    if isinstance(rows, (str, bytes)) or not hasattr(rows, "__len__"):
        return False, "Data is not a valid row set"

    if len(rows) == 0:
        return False, "Row set is empty"

    limit = max_rows if max_rows is not None else get_config().max_rows
    if len(rows) > limit:
        return False, f"Row set exceeds {limit:,} row limit ({len(rows):,} rows)"

    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            return False, f"Row {index + 1} is not a key-value record"
        if any(not isinstance(key, str) for key in row.keys()):
            return False, f"Row {index + 1} has non-string column names"

    if not any(len(row) for row in rows):
        return False, "Row set has no columns"

    return True, None


# =============================================================================
# OPTION SANITIZATION
# =============================================================================

def sanitize_period(period: str | None, default: str = "monthly") -> str:
    """
    Sanitize a time-bucket granularity.

    Returns:
        One of: "daily", "weekly", "monthly", "quarterly", "annually".
        Unrecognized input is returned lower-cased so the aggregator can
        reject it with a descriptive error.
    """
    if not period:
        return default

    period_lower = str(period).lower().strip()
    if period_lower in VALID_PERIODS:
        return period_lower

    return PERIOD_ALIASES.get(period_lower, period_lower)


def sanitize_column_list(columns: Any, available: list[str] | None = None) -> list[str]:
    """
    Normalize a column argument into a list of column names.

    Accepts a single name or any iterable of names; drops blanks and
    duplicates, and (when `available` is given) names not in the row set.
    """
    if columns is None:
        return []

    if isinstance(columns, str):
        columns = [columns]

    cleaned = []
    for col in columns:
        if col is None:
            continue
        name = str(col).strip()
        if not name or name in cleaned:
            continue
        if available is not None and name not in available:
            continue
        cleaned.append(name)

    return cleaned


def sanitize_option_keys(
    options: Mapping[str, Any],
    allowed: Iterable[str],
    option: str = "option",
) -> dict:
    """
    Normalize host option keys to field names.

    camelCase keys ("groupBy", "calculateGrowth") map to snake_case;
    keys that match no allowed field are dropped with a warning.
    """
    allowed = set(allowed)
    result = {}
    for key, value in (options or {}).items():
        name = CAMEL_BOUNDARY.sub("_", str(key)).lower()
        if name not in allowed:
            logger.warning("Ignoring unknown %s %r", option, key)
            continue
        result[name] = value
    return result


# =============================================================================
# JSON SANITIZATION
# =============================================================================

def sanitize_dict_for_json(obj: Any) -> Any:
    """
    Recursively sanitize a dict/list for JSON serialization.
    Handles numpy types, NaN, Inf, dates, tuples, etc.
    """
    if obj is None:
        return None

    if isinstance(obj, dict):
        return {str(k): sanitize_dict_for_json(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [sanitize_dict_for_json(v) for v in obj]

    if isinstance(obj, np.ndarray):
        return sanitize_dict_for_json(obj.tolist())

    if isinstance(obj, (bool, np.bool_)):
        return bool(obj)

    if isinstance(obj, np.integer):
        return int(obj)

    if isinstance(obj, (float, np.floating)):
        value = float(obj)
        if math.isnan(value) or math.isinf(value):
            return None
        return value

    if obj is pd.NaT:
        return None

    if isinstance(obj, pd.Timestamp):
        return obj.isoformat()

    if isinstance(obj, (datetime, date)):
        return obj.isoformat()

    return obj
