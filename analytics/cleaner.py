"""
cleaner.py — Row Set Cleaning

Production implementation of configurable cleaning:
- Fill missing values (mean for numeric columns, mode otherwise)
- Remove 3-sigma outlier rows
- Standardize types (numeric strings -> numbers, dates -> ISO strings)
- Remove exact duplicate rows
- Normalize text (trim, title-case name/category columns)
- Rule-based transformations (clean, parse, convert, normalize, fill)

Copy-on-write: the input row set and its rows are never modified.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping

import numpy as np

from analytics.errors import UnsupportedOptionError
from analytics.rows import (
    NUMERIC_PATTERN,
    RowSet,
    column_names,
    copy_rows,
    is_missing,
    is_number,
    to_number,
)
from analytics.schema_profiler import column_mode, infer_column_type, profile
from config.settings import AnalyticsConfig, get_config

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

OUTLIER_STRATEGIES = ("union", "sequential")
TRANSFORMATION_OPERATIONS = ("clean", "parse", "convert", "normalize", "fill")

# Columns whose text values get title-cased by normalize_text
TITLE_CASE_MARKERS = ("name", "category")

# Characters kept by the "clean" transformation
CLEAN_PATTERN = re.compile(r"[^\w\s.-]")
CURRENCY_SYMBOLS = re.compile(r"[$,]")
INTEGER_PATTERN = re.compile(r"^-?\d+$")

UNIT_MULTIPLIERS = {
    ("millions", "units"): 1_000_000,
    ("thousands", "units"): 1_000,
}

# Host payloads often use camelCase flags
OPTION_ALIASES = {
    "fillMissing": "fill_missing",
    "removeOutliers": "remove_outliers",
    "standardizeTypes": "standardize_types",
    "removeDuplicates": "remove_duplicates",
    "normalizeText": "normalize_text",
    "outlierStrategy": "outlier_strategy",
}


# =============================================================================
# OPTIONS
# =============================================================================

@dataclass(frozen=True)
class CleaningOptions:
    """Independently toggleable cleaning steps (all off by default)."""
    fill_missing: bool = False
    remove_outliers: bool = False
    standardize_types: bool = False
    remove_duplicates: bool = False
    normalize_text: bool = False
    outlier_strategy: str = "union"

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> "CleaningOptions":
        """Build options from a host payload (snake_case or camelCase keys)."""
        if not options:
            return cls()

        values = {}
        for key, value in options.items():
            name = OPTION_ALIASES.get(key, key)
            if name == "outlier_strategy":
                values[name] = str(value)
            elif name in cls.__dataclass_fields__:
                values[name] = bool(value)
        return cls(**values)

    @property
    def any_enabled(self) -> bool:
        return any([
            self.fill_missing,
            self.remove_outliers,
            self.standardize_types,
            self.remove_duplicates,
            self.normalize_text,
        ])


@dataclass(frozen=True)
class TransformationRule:
    """A single column transformation applied after cleaning."""
    column: str
    operation: str
    params: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# CLEANING STEPS
# =============================================================================

def _fill_missing(rows: list[dict]) -> tuple[list[dict], int]:
    """Fill missing cells per column; returns (rows, filled_cell_count)."""
    filled = 0
    fill_values = {}

    for col in column_names(rows):
        present = [row.get(col) for row in rows if not is_missing(row.get(col))]
        if not present:
            continue

        numeric = [n for n in (to_number(v) for v in present) if n is not None]
        if len(numeric) * 2 > len(present):
            fill_values[col] = round(float(np.mean(numeric)), 2)
        else:
            fill_values[col] = column_mode(present)

    result = []
    for row in rows:
        new_row = dict(row)
        for col, fill_value in fill_values.items():
            if is_missing(new_row.get(col)):
                new_row[col] = fill_value
                filled += 1
        result.append(new_row)

    return result, filled


def _numeric_columns(rows: list[dict]) -> list[str]:
    """Columns whose non-missing values are mostly numeric."""
    numeric_cols = []
    for col in column_names(rows):
        present = [row.get(col) for row in rows if not is_missing(row.get(col))]
        if present and infer_column_type(present) == "number":
            numeric_cols.append(col)
    return numeric_cols


def _outlier_positions(rows: list[dict], col: str, std_threshold: float) -> set[int]:
    """Indices of rows whose value in `col` lies beyond the std threshold."""
    positions = []
    numbers = []
    for i, row in enumerate(rows):
        number = to_number(row.get(col))
        if number is not None:
            positions.append(i)
            numbers.append(number)

    if not numbers:
        return set()

    values = np.array(numbers, dtype=float)
    mean = values.mean()
    std = values.std()
    mask = np.abs(values - mean) > std_threshold * std
    return {positions[i] for i in np.flatnonzero(mask)}


def _remove_outliers(
    rows: list[dict],
    strategy: str,
    std_threshold: float,
) -> tuple[list[dict], int]:
    """Drop outlier rows; returns (rows, removed_count)."""
    original_length = len(rows)
    numeric_cols = _numeric_columns(rows)

    if strategy == "union":
        # Every column judged against the same input, then dropped together
        drop = set()
        for col in numeric_cols:
            drop |= _outlier_positions(rows, col, std_threshold)
        rows = [row for i, row in enumerate(rows) if i not in drop]
    else:
        for col in numeric_cols:
            drop = _outlier_positions(rows, col, std_threshold)
            if drop:
                rows = [row for i, row in enumerate(rows) if i not in drop]

    removed = original_length - len(rows)
    if removed:
        logger.debug("Removed %d outlier rows (%s strategy)", removed, strategy)
    return rows, removed


def standardize_value(value: Any) -> Any:
    """
    Standardize one cell.

    Integer/decimal strings become numbers, date-like strings stay ISO
    strings, date objects become ISO strings, other strings are trimmed.
    Booleans become "true"/"false". Numbers and missing values are
    returned unchanged.
    """
    if is_missing(value):
        return value
    if isinstance(value, (bool, np.bool_)):
        return "true" if value else "false"
    if isinstance(value, (int, float, np.number)):
        return value

    if isinstance(value, str):
        text = value.strip()
        if NUMERIC_PATTERN.match(text):
            return int(text) if INTEGER_PATTERN.match(text) else float(text)
        # Date-like strings (DATE_PREFIX_PATTERN) stay strings; the profiler
        # reports them as "date"
        return text

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    return str(value).strip()


def _standardize_types(rows: list[dict]) -> tuple[list[dict], int]:
    """Standardize every cell; returns (rows, changed_row_count)."""
    changed = 0
    result = []
    for row in rows:
        new_row = {key: standardize_value(value) for key, value in row.items()}
        if any(
            type(new_row[key]) is not type(value) or new_row[key] != value
            for key, value in row.items()
            if not is_missing(value)
        ):
            changed += 1
        result.append(new_row)
    return result, changed


def _row_signature(row: Mapping[str, Any]) -> str:
    """Key-order-independent structural signature of a row."""
    return json.dumps(row, sort_keys=True, default=str)


def _remove_duplicates(rows: list[dict]) -> tuple[list[dict], int]:
    """Keep the first occurrence of each distinct row."""
    seen = set()
    result = []
    for row in rows:
        signature = _row_signature(row)
        if signature in seen:
            continue
        seen.add(signature)
        result.append(row)
    return result, len(rows) - len(result)


def _title_case(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in text.split(" "))


def _normalize_text(rows: list[dict]) -> list[dict]:
    """Trim strings; title-case columns named like *name* or *category*."""
    result = []
    for row in rows:
        new_row = dict(row)
        for key, value in row.items():
            if not isinstance(value, str):
                continue
            text = value.strip()
            if any(marker in key.lower() for marker in TITLE_CASE_MARKERS):
                text = _title_case(text)
            new_row[key] = text
        result.append(new_row)
    return result


# =============================================================================
# PUBLIC API
# =============================================================================

def _validate_options(options: CleaningOptions) -> None:
    if options.outlier_strategy not in OUTLIER_STRATEGIES:
        raise UnsupportedOptionError(
            "outlier strategy", options.outlier_strategy, OUTLIER_STRATEGIES
        )


def run_cleaning(
    rows: RowSet,
    options: CleaningOptions | Mapping[str, Any] | None = None,
    config: AnalyticsConfig | None = None,
) -> dict:
    """
    Clean a row set and report what changed.

    Steps run in fixed order: fill_missing -> remove_outliers ->
    standardize_types -> remove_duplicates -> normalize_text.

    Args:
        rows: Input row set (never modified)
        options: CleaningOptions or a host payload mapping
        config: Thresholds (defaults to get_config())

    Returns:
        {
            rows: list[dict],         # cleaned row set
            cleaned_rows: int,        # rows remaining
            fixed_issues: int,        # filled cells + removed rows + standardized rows
            data_quality: dict        # profile() of the cleaned rows
        }

    Raises:
        UnsupportedOptionError: unknown outlier_strategy
    """
    config = config or get_config()
    data, fixed_issues = _run_steps(rows, options, config)

    logger.debug(
        "Cleaning kept %d of %d rows, fixed %d issues",
        len(data), len(rows or []), fixed_issues,
    )

    return {
        "rows": data,
        "cleaned_rows": len(data),
        "fixed_issues": fixed_issues,
        "data_quality": profile(data, config),
    }


def clean(
    rows: RowSet,
    options: CleaningOptions | Mapping[str, Any] | None = None,
    config: AnalyticsConfig | None = None,
) -> list[dict]:
    """
    Apply the selected cleaning steps and return a new row set.

    With every option disabled the result is a copy equal to the input.
    """
    data, _ = _run_steps(rows, options, config or get_config())
    return data


def _run_steps(
    rows: RowSet,
    options: CleaningOptions | Mapping[str, Any] | None,
    config: AnalyticsConfig,
) -> tuple[list[dict], int]:
    if not isinstance(options, CleaningOptions):
        options = CleaningOptions.from_mapping(options)
    _validate_options(options)

    data = copy_rows(rows or [])
    fixed_issues = 0

    if options.fill_missing:
        data, filled = _fill_missing(data)
        fixed_issues += filled

    if options.remove_outliers:
        data, removed = _remove_outliers(
            data, options.outlier_strategy, config.outlier_std_threshold
        )
        fixed_issues += removed

    if options.standardize_types:
        data, changed = _standardize_types(data)
        fixed_issues += changed

    if options.remove_duplicates:
        data, duplicates = _remove_duplicates(data)
        fixed_issues += duplicates

    if options.normalize_text:
        data = _normalize_text(data)

    return data, fixed_issues


# =============================================================================
# RULE-BASED TRANSFORMATIONS
# =============================================================================

def _apply_rule(value: Any, rule: TransformationRule) -> Any:
    params = rule.params or {}

    if rule.operation == "clean":
        if isinstance(value, str):
            return CLEAN_PATTERN.sub("", value)

    elif rule.operation == "parse":
        if params.get("type") == "currency" and isinstance(value, str):
            parsed = to_number(CURRENCY_SYMBOLS.sub("", value))
            return parsed if parsed is not None else value

    elif rule.operation == "convert":
        multiplier = UNIT_MULTIPLIERS.get((params.get("from"), params.get("to")))
        if multiplier and is_number(value):
            return value * multiplier

    elif rule.operation == "normalize":
        if isinstance(value, str):
            return value.lower().strip()

    elif rule.operation == "fill":
        if is_missing(value):
            fill_value = params.get("value")
            return 0 if fill_value is None else fill_value

    return value


def apply_transformations(
    rows: RowSet,
    rules: list[TransformationRule | Mapping[str, Any]],
) -> list[dict]:
    """
    Apply column transformation rules in order.

    Args:
        rows: Input row set (never modified)
        rules: TransformationRule objects or {column, operation, params} dicts

    Returns:
        New row set with every rule applied to its column

    Raises:
        UnsupportedOptionError: a rule names an unknown operation
    """
    parsed_rules = []
    for rule in rules or []:
        if not isinstance(rule, TransformationRule):
            rule = TransformationRule(
                column=rule["column"],
                operation=rule["operation"],
                params=dict(rule.get("params") or {}),
            )
        if rule.operation not in TRANSFORMATION_OPERATIONS:
            raise UnsupportedOptionError("transformation", rule.operation, TRANSFORMATION_OPERATIONS)
        parsed_rules.append(rule)

    data = copy_rows(rows or [])
    for rule in parsed_rules:
        for row in data:
            if rule.column in row or rule.operation == "fill":
                row[rule.column] = _apply_rule(row.get(rule.column), rule)
    return data
