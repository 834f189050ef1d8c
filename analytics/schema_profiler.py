"""
schema_profiler.py — Schema Profiling & Data Quality Report

Production implementation of the profiling step.
Implements: Column Type Inference, Column Profiles, Quality Report
(missing values, mixed types, outliers, low cardinality), Recommendations.

Profiles are derived values: recomputed from the row set on every call,
never cached.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

import numpy as np
import pandas as pd

from analytics.rows import (
    RowSet,
    column_names,
    is_date_like,
    is_missing,
    is_number,
    row_label,
    to_number,
    value_key,
    value_type,
)
from config.settings import AnalyticsConfig, get_config

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

ISSUE_TYPES = ("missing_values", "mixed_types", "outliers", "low_cardinality")

# Tie-break order for majority-vote type inference
TYPE_PRECEDENCE = ("number", "date", "boolean", "string")

MAX_MISSING_EXAMPLES = 3
MAX_OUTLIER_EXAMPLES = 3
MAX_CARDINALITY_EXAMPLES = 5

RECOMMENDATIONS = {
    "missing_values": "Consider filling missing values with defaults or using interpolation",
    "mixed_types": "Standardize data types within columns for consistent analysis",
    "outliers": "Review outliers - they may be errors or significant insights",
    "low_cardinality": "Low-cardinality columns might be good candidates for grouping or categorization",
}


# =============================================================================
# TYPE INFERENCE
# =============================================================================

def infer_value_type(value: Any) -> str:
    """
    Infer the semantic type of a single non-missing value.

    Numeric-looking strings count as "number" and YYYY-MM-DD strings as
    "date". The cleaner's standardize step uses the same rules, so the
    profiled type always matches what cleaning stores.

    Returns one of: "number", "date", "boolean", "string"
    """
    kind = value_type(value)
    if kind in ("boolean", "number", "date"):
        return kind
    if isinstance(value, str):
        if to_number(value) is not None:
            return "number"
        if is_date_like(value):
            return "date"
    return "string"


def infer_column_type(values: list[Any]) -> str:
    """Majority vote over the non-missing values of a column."""
    counts = Counter(infer_value_type(v) for v in values)
    if not counts:
        return "string"

    best = max(counts.values())
    for kind in TYPE_PRECEDENCE:
        if counts.get(kind, 0) == best:
            return kind
    return "string"


def column_mode(values: list[Any]) -> Any:
    """Most frequent value; the first-seen value wins ties."""
    if not values:
        return None

    counts: dict[tuple, int] = {}
    first_value: dict[tuple, Any] = {}
    for v in values:
        key = value_key(v)
        if key not in counts:
            counts[key] = 0
            first_value[key] = v
        counts[key] += 1

    best_key = max(counts, key=lambda k: counts[k])  # max() keeps the first maximum
    return first_value[best_key]


# =============================================================================
# COLUMN PROFILES
# =============================================================================

def profile_columns(rows: RowSet) -> list[dict]:
    """
    Profile every column of a row set.

    Args:
        rows: Input row set

    Returns:
        list of dicts:
        [{
            name: str,
            inferred_type: "number" | "string" | "boolean" | "date",
            null_count: int,
            unique_count: int,
            mode: Any
        }, ...]
    """
    if not rows:
        return []

    profiles = []
    for col in column_names(rows):
        values = [row.get(col) for row in rows]
        present = [v for v in values if not is_missing(v)]

        profiles.append({
            "name": col,
            "inferred_type": infer_column_type(present),
            "null_count": len(values) - len(present),
            "unique_count": len({value_key(v) for v in present}),
            "mode": column_mode(present),
        })

    return profiles


# =============================================================================
# DATA QUALITY REPORT
# =============================================================================

def _numeric_outliers(values: list[Any], std_threshold: float) -> list[Any]:
    """Numeric values more than `std_threshold` population std devs from the mean."""
    numbers = [v for v in values if is_number(v)]
    if not numbers:
        return []

    numeric = np.array(numbers, dtype=float)
    mean = numeric.mean()
    std = numeric.std()  # population (ddof=0)
    mask = np.abs(numeric - mean) > std_threshold * std
    return [numbers[i] for i in np.flatnonzero(mask)]


def _column_issues(
    col: str,
    series: pd.Series,
    missing_mask: pd.Series,
    row_count: int,
    config: AnalyticsConfig,
) -> list[dict]:
    """Compute all quality issues for one column."""
    issues = []
    present = series[~missing_mask].tolist()

    # Missing values
    null_count = int(missing_mask.sum())
    if null_count > 0:
        missing_positions = np.flatnonzero(missing_mask.to_numpy())[:MAX_MISSING_EXAMPLES]
        issues.append({
            "column": col,
            "issue_type": "missing_values",
            "count": null_count,
            "examples": [row_label(int(i)) for i in missing_positions],
        })

    # Mixed storage types
    types = list(dict.fromkeys(value_type(v) for v in present))
    if len(types) > 1:
        issues.append({
            "column": col,
            "issue_type": "mixed_types",
            "count": len(types),
            "examples": types,
        })

    # Numeric outliers
    outliers = _numeric_outliers(present, config.outlier_std_threshold)
    if outliers:
        issues.append({
            "column": col,
            "issue_type": "outliers",
            "count": len(outliers),
            "examples": outliers[:MAX_OUTLIER_EXAMPLES],
        })

    # Low cardinality (likely categorical / groupable)
    unique_values: dict[tuple, Any] = {}
    for v in present:
        unique_values.setdefault(value_key(v), v)
    unique_count = len(unique_values)
    if 0 < unique_count < row_count * config.low_cardinality_ratio:
        issues.append({
            "column": col,
            "issue_type": "low_cardinality",
            "count": unique_count,
            "examples": list(unique_values.values())[:MAX_CARDINALITY_EXAMPLES],
        })

    return issues


def profile(rows: RowSet, config: AnalyticsConfig | None = None) -> dict:
    """
    Build a data quality report for a row set.

    Args:
        rows: Input row set
        config: Thresholds (defaults to get_config())

    Returns:
        quality report dict:
        {
            total_rows: int,
            clean_rows: int,
            issues: list[{column, issue_type, count, examples}],
            recommendations: list[str]
        }
    """
    if not rows:
        return {
            "total_rows": 0,
            "clean_rows": 0,
            "issues": [],
            "recommendations": [],
        }

    config = config or get_config()
    row_count = len(rows)
    columns = column_names(rows)

    issues = []
    complete = np.ones(row_count, dtype=bool)

    for col in columns:
        series = pd.Series([row.get(col) for row in rows], dtype=object)
        missing_mask = series.map(is_missing).astype(bool)
        complete &= ~missing_mask.to_numpy()
        issues.extend(_column_issues(col, series, missing_mask, row_count, config))

    # Clean rows: every column present and non-missing
    clean_rows = int(complete.sum())

    observed = {issue["issue_type"] for issue in issues}
    recommendations = [
        RECOMMENDATIONS[issue_type]
        for issue_type in ISSUE_TYPES
        if issue_type in observed
    ]

    logger.debug(
        "Profiled %d rows x %d columns: %d issues, %d clean rows",
        row_count, len(columns), len(issues), clean_rows,
    )

    return {
        "total_rows": row_count,
        "clean_rows": clean_rows,
        "issues": issues,
        "recommendations": recommendations,
    }
