"""
aggregator.py — Group-By, Time Series, Pivot & Cohort Aggregation

Production implementation of the aggregation layer.
Implements: Group-By Aggregation, Level Summaries, Time-Bucketed Series
(with growth rates and CAGR), Pivot Tables, Monthly Cohorts.

All functions take a row set and return new JSON-ready structures;
group order is always first-seen unless stated otherwise.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping

import numpy as np
import pandas as pd

from analytics.errors import UnsupportedOptionError
from analytics.rows import (
    UNKNOWN_LABEL,
    Row,
    RowSet,
    group_label,
    is_missing,
    is_number,
    to_number,
    value_key,
)
from analytics.validators import sanitize_option_keys

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

AGGREGATE_OPS = ("sum", "avg", "count", "min", "max")
PIVOT_AGGREGATIONS = ("sum", "average", "count", "min", "max")
PERIODS = ("daily", "weekly", "monthly", "quarterly", "annually")
COHORT_PERIOD_TYPES = ("days", "weeks", "months")

# Columns searched (case-sensitively, in order) for a row's date
DATE_FIELDS = ("date", "Date", "month", "Month", "period", "Period")

# Metrics whose headline value is an average rather than a sum
AVERAGED_METRIC_MARKERS = ("margin", "rate", "percent")

# Bare integers in this range are read as calendar years
YEAR_RANGE = (1800, 2200)

DAYS_PER_YEAR = 365
PIVOT_SEPARATOR = " | "
TOTAL_LABEL = "Total"


# =============================================================================
# OPTION TYPES
# =============================================================================

@dataclass(frozen=True)
class MetricSpec:
    """One aggregation request: `op` applied to `column`."""
    column: str
    op: str = "sum"

    @classmethod
    def coerce(cls, metric: "MetricSpec | Mapping[str, Any] | str") -> "MetricSpec":
        if isinstance(metric, MetricSpec):
            return metric
        if isinstance(metric, str):
            return cls(column=metric)
        op = metric.get("op") or metric.get("operation") or "sum"
        return cls(column=str(metric["column"]), op=str(op).lower())


@dataclass(frozen=True)
class TimeSeriesOptions:
    """Options for create_time_series()."""
    metric: str
    period: str = "monthly"
    group_by: list[str] = field(default_factory=list)
    start_date: Any = None
    end_date: Any = None
    calculate_growth: bool = True
    fill_missing: bool = False
    date_field: str | None = None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "TimeSeriesOptions":
        """Build options from a host payload (snake_case or camelCase keys)."""
        return cls(**sanitize_option_keys(options, cls.__dataclass_fields__, "time series option"))


# =============================================================================
# SHARED HELPERS
# =============================================================================

def _numeric_values(rows: Iterable[Row], column: str) -> list[float | int]:
    values = (to_number(row.get(column)) for row in rows)
    return [v for v in values if v is not None]


def _apply_op(values: list[float | int], op: str) -> float | int:
    """Apply an aggregation; empty input gives 0 (or a count of 0)."""
    if op == "count":
        return len(values)
    if not values:
        return 0
    if op == "sum":
        return sum(values)
    if op in ("avg", "average"):
        return sum(values) / len(values)
    if op == "min":
        return min(values)
    if op == "max":
        return max(values)
    raise UnsupportedOptionError("aggregation", op, AGGREGATE_OPS)


def _group_rows(rows: RowSet, group_by: list[str]) -> dict[tuple, tuple[list[Any], list[Row]]]:
    """
    Partition rows by their group-by values, preserving first-seen order.

    Returns:
        {key: (display_values, member_rows)}; missing values display as "Unknown"
    """
    groups: dict[tuple, tuple[list[Any], list[Row]]] = {}
    for row in rows:
        display = []
        key = []
        for col in group_by:
            value = row.get(col)
            if is_missing(value):
                display.append(UNKNOWN_LABEL)
                key.append(("string", UNKNOWN_LABEL))
            else:
                display.append(value)
                key.append(value_key(value))
        entry = groups.get(tuple(key))
        if entry is None:
            entry = groups[tuple(key)] = (display, [])
        entry[1].append(row)
    return groups


def _as_list(columns: str | Iterable[str] | None) -> list[str]:
    if columns is None:
        return []
    if isinstance(columns, str):
        return [columns]
    return list(columns)


# =============================================================================
# GROUP-BY AGGREGATION
# =============================================================================

def aggregate(
    rows: RowSet,
    group_by: str | list[str] | None,
    metrics: list[MetricSpec | Mapping[str, Any]],
) -> list[dict]:
    """
    Aggregate numeric metrics per distinct group-by tuple.

    Args:
        rows: Input row set
        group_by: Column name(s) to group on (empty -> one overall record)
        metrics: MetricSpec or {column, op} dicts; op in sum/avg/count/min/max

    Returns:
        One record per group in first-seen order:
        [{<group col>: value, ..., "<column>_<op>": number, ...}, ...]

    Unknown ops are skipped and produce no key.
    """
    if not rows:
        return []

    group_cols = _as_list(group_by)
    selected = []
    for metric in metrics or []:
        metric = MetricSpec.coerce(metric)
        if metric.op not in AGGREGATE_OPS:
            logger.warning("Skipping unknown aggregation op %r for column %r", metric.op, metric.column)
            continue
        selected.append(metric)

    results = []
    for display_values, members in _group_rows(rows, group_cols).values():
        record = dict(zip(group_cols, display_values))
        for metric in selected:
            values = _numeric_values(members, metric.column)
            record[f"{metric.column}_{metric.op}"] = _apply_op(values, metric.op)
        results.append(record)

    logger.debug("Aggregated %d rows into %d groups", len(rows), len(results))
    return results


def summarize_by_level(
    rows: RowSet,
    level: str,
    group_by: str | list[str] | None,
    metrics: list[str],
) -> list[dict]:
    """
    Summarize every metric at a reporting level (company, segment, market...).

    For each metric the record carries a headline value (average for
    margin/rate/percent metrics, sum otherwise) plus _sum/_avg/_min/_max/_count,
    and the metadata fields _level and _row_count.
    """
    if not rows:
        return []

    group_cols = _as_list(group_by)
    results = []

    for display_values, members in _group_rows(rows, group_cols).values():
        record: dict[str, Any] = dict(zip(group_cols, display_values))

        for metric in metrics:
            values = _numeric_values(members, metric)
            is_averaged = any(marker in metric.lower() for marker in AVERAGED_METRIC_MARKERS)

            record[metric] = _apply_op(values, "avg" if is_averaged else "sum")
            record[f"{metric}_sum"] = _apply_op(values, "sum")
            record[f"{metric}_avg"] = _apply_op(values, "avg")
            record[f"{metric}_min"] = _apply_op(values, "min")
            record[f"{metric}_max"] = _apply_op(values, "max")
            record[f"{metric}_count"] = sum(1 for row in members if not is_missing(row.get(metric)))

        record["_level"] = level
        record["_row_count"] = len(members)
        results.append(record)

    return results


# =============================================================================
# DATE HANDLING
# =============================================================================

def parse_date(value: Any) -> pd.Timestamp | None:
    """
    Parse a cell into a timezone-naive Timestamp.

    Accepts date/datetime objects, parseable strings, and bare integer
    years, all within YEAR_RANGE. Returns None for anything else.
    """
    if is_missing(value) or isinstance(value, (bool, np.bool_)):
        return None

    if is_number(value):
        if float(value).is_integer() and YEAR_RANGE[0] <= value <= YEAR_RANGE[1]:
            return pd.Timestamp(year=int(value), month=1, day=1)
        return None

    try:
        if isinstance(value, (date, datetime)):
            parsed = pd.Timestamp(value)
        else:
            parsed = pd.to_datetime(str(value).strip(), errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None

    if parsed is None or pd.isna(parsed):
        return None
    # Strings without a year ("March") parse to year 1
    if not YEAR_RANGE[0] <= parsed.year <= YEAR_RANGE[1]:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert(None)
    return parsed


def date_from_row(row: Row, date_field: str | None = None) -> pd.Timestamp | None:
    """First parseable date among the candidate date columns of a row."""
    fields = (date_field,) if date_field else DATE_FIELDS
    for name in fields:
        value = row.get(name)
        if is_missing(value):
            continue
        parsed = parse_date(value)
        if parsed is not None:
            return parsed
    return None


def _add_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def period_bucket(timestamp: pd.Timestamp | date, period: str) -> tuple[str, date]:
    """
    Bucket a date into a period.

    Returns:
        (label, period_start) e.g. ("2024-W05", date(2024, 1, 29)),
        ("2024-03", date(2024, 3, 1)), ("2024-Q1", date(2024, 1, 1))
    """
    day = timestamp.date() if isinstance(timestamp, datetime) else timestamp

    if period == "daily":
        return day.isoformat(), day
    if period == "weekly":
        iso_year, week, _ = day.isocalendar()
        return f"{iso_year:04d}-W{week:02d}", date.fromisocalendar(iso_year, week, 1)
    if period == "monthly":
        return f"{day.year:04d}-{day.month:02d}", date(day.year, day.month, 1)
    if period == "quarterly":
        quarter = (day.month - 1) // 3 + 1
        return f"{day.year:04d}-Q{quarter}", date(day.year, 3 * (quarter - 1) + 1, 1)
    if period == "annually":
        return f"{day.year:04d}", date(day.year, 1, 1)
    raise UnsupportedOptionError("period", period, PERIODS)


def next_period_start(start: date, period: str) -> date:
    """Start of the bucket following the one beginning at `start`."""
    if period == "daily":
        return start + timedelta(days=1)
    if period == "weekly":
        return start + timedelta(days=7)
    if period == "monthly":
        return _add_months(start, 1)
    if period == "quarterly":
        return _add_months(start, 3)
    if period == "annually":
        return date(start.year + 1, 1, 1)
    raise UnsupportedOptionError("period", period, PERIODS)


# =============================================================================
# TIME SERIES
# =============================================================================

def _bucket_point(
    metric: str,
    label: str,
    start: date,
    group_by: list[str],
    group_values: list[Any],
    members: list[Row],
) -> dict:
    values = _numeric_values(members, metric)
    point = {
        "period": label,
        "date": start.isoformat(),
        metric: _apply_op(values, "sum"),
        f"{metric}_avg": _apply_op(values, "avg"),
        "count": len(members),
    }
    point.update(zip(group_by, group_values))
    return point


def _filled_point(metric: str, start: date, period: str, group_by: list[str], group_values: list[Any]) -> dict:
    label, _ = period_bucket(start, period)
    point = {
        "period": label,
        "date": start.isoformat(),
        metric: 0,
        f"{metric}_avg": 0,
        "count": 0,
        "filled": True,
    }
    point.update(zip(group_by, group_values))
    return point


def _annotate_growth(points: list[dict], starts: list[date], metric: str) -> None:
    """Add period-over-period growth and CAGR to one group's ordered points."""
    for i in range(1, len(points)):
        current = points[i][metric]
        previous = points[i - 1][metric]
        if previous:
            points[i][f"{metric}_growth"] = round((current - previous) / previous * 100, 4)
            points[i][f"{metric}_growth_abs"] = current - previous

    if len(points) < 3:
        return

    first = points[0][metric]
    last = points[-1][metric]
    years = (starts[-1] - starts[0]).days / DAYS_PER_YEAR
    if not first or first <= 0 or years <= 0 or last < 0:
        return

    try:
        cagr = ((last / first) ** (1 / years) - 1) * 100
    except OverflowError:
        return
    if not math.isfinite(cagr):
        return

    for point in points:
        point[f"{metric}_cagr"] = round(cagr, 4)


def create_time_series(
    rows: RowSet,
    options: TimeSeriesOptions | Mapping[str, Any],
) -> list[dict]:
    """
    Build a period-bucketed series of one metric.

    Args:
        rows: Input row set
        options: TimeSeriesOptions (or a mapping of its fields)

    Returns:
        Points sorted by period start:
        [{
            period: str, date: str (ISO period start),
            <metric>: sum, <metric>_avg: mean, count: int,
            <group col>: value, ...,
            <metric>_growth?: pct, <metric>_growth_abs?: number,
            <metric>_cagr?: pct, filled?: True
        }, ...]

    Growth and CAGR are computed within each group's own series.

    Raises:
        UnsupportedOptionError: unknown period
    """
    if not isinstance(options, TimeSeriesOptions):
        options = TimeSeriesOptions.from_mapping(options)

    period = options.period
    if period not in PERIODS:
        raise UnsupportedOptionError("period", period, PERIODS)

    metric = options.metric
    group_cols = _as_list(options.group_by)
    start_bound = parse_date(options.start_date) if options.start_date is not None else None
    end_bound = parse_date(options.end_date) if options.end_date is not None else None

    # Bucket rows: (label, group key) -> bucket
    buckets: dict[tuple, dict] = {}
    group_order: dict[tuple, tuple[int, list[Any]]] = {}
    skipped = 0

    for row in rows or []:
        timestamp = date_from_row(row, options.date_field)
        if timestamp is None:
            skipped += 1
            continue
        if start_bound is not None and timestamp < start_bound:
            continue
        if end_bound is not None and timestamp > end_bound:
            continue

        label, start = period_bucket(timestamp, period)
        group_values = [
            UNKNOWN_LABEL if is_missing(row.get(col)) else row.get(col)
            for col in group_cols
        ]
        group_key = tuple(value_key(v) for v in group_values)
        if group_key not in group_order:
            group_order[group_key] = (len(group_order), group_values)

        bucket = buckets.setdefault(
            (label, group_key),
            {"label": label, "start": start, "group_key": group_key, "rows": []},
        )
        bucket["rows"].append(row)

    if skipped:
        logger.debug("Time series skipped %d rows without a parseable date", skipped)

    # Per-group ordered series
    series_by_group: dict[tuple, list[tuple[date, dict]]] = {key: [] for key in group_order}
    for bucket in buckets.values():
        _, group_values = group_order[bucket["group_key"]]
        point = _bucket_point(metric, bucket["label"], bucket["start"], group_cols, group_values, bucket["rows"])
        series_by_group[bucket["group_key"]].append((bucket["start"], point))

    for group_key, entries in series_by_group.items():
        entries.sort(key=lambda entry: entry[0])

        if options.fill_missing and entries:
            _, group_values = group_order[group_key]
            present = {start for start, _ in entries}
            cursor = entries[0][0]
            last = entries[-1][0]
            while cursor < last:
                if cursor not in present:
                    entries.append((cursor, _filled_point(metric, cursor, period, group_cols, group_values)))
                cursor = next_period_start(cursor, period)
            entries.sort(key=lambda entry: entry[0])

        if options.calculate_growth:
            _annotate_growth([p for _, p in entries], [s for s, _ in entries], metric)

    # Merge groups: by period start, then group first-seen order
    merged = [
        (start, group_order[group_key][0], point)
        for group_key, entries in series_by_group.items()
        for start, point in entries
    ]
    merged.sort(key=lambda entry: (entry[0], entry[1]))
    return [point for _, _, point in merged]


# =============================================================================
# PIVOT
# =============================================================================

def pivot(
    rows: RowSet,
    row_keys: str | list[str],
    column_keys: str | list[str],
    value_column: str,
    aggregation: str = "sum",
) -> dict:
    """
    Cross-tabulate a value column by row-key and column-key tuples.

    Args:
        rows: Input row set
        row_keys: Column(s) forming the pivot rows
        column_keys: Column(s) forming the pivot columns
        value_column: Column aggregated into each cell
        aggregation: "sum" | "average" | "count" | "min" | "max"

    Returns:
        {
            columns: list[str],   # sorted union of column labels
            rows: [{_row: label, <column label>: value, ..., _total: value}, ...,
                   {_row: "Total", ...}]
        }
        Labels join key values with " | "; empty cells are 0.

    Raises:
        UnsupportedOptionError: unknown aggregation
    """
    if aggregation not in PIVOT_AGGREGATIONS:
        raise UnsupportedOptionError("pivot aggregation", aggregation, PIVOT_AGGREGATIONS)

    row_cols = _as_list(row_keys)
    col_cols = _as_list(column_keys)
    op = "avg" if aggregation == "average" else aggregation

    def cell_value(record: Row) -> Any:
        value = record.get(value_column)
        if op == "count":
            return None if is_missing(value) else value
        return to_number(value)

    cells: dict[str, dict[str, list]] = {}
    all_values = []
    for record in rows or []:
        row_label = group_label((record.get(k) for k in row_cols), PIVOT_SEPARATOR)
        col_label = group_label((record.get(k) for k in col_cols), PIVOT_SEPARATOR)
        bucket = cells.setdefault(row_label, {}).setdefault(col_label, [])
        value = cell_value(record)
        if value is not None:
            bucket.append(value)
            all_values.append(value)

    columns = sorted({col for row_cells in cells.values() for col in row_cells})

    result_rows = []
    for row_label, row_cells in cells.items():
        out = {"_row": row_label}
        for col in columns:
            out[col] = _apply_op(row_cells.get(col, []), op)
        out["_total"] = _apply_op([v for col in columns for v in row_cells.get(col, [])], op)
        result_rows.append(out)

    totals = {"_row": TOTAL_LABEL}
    for col in columns:
        totals[col] = _apply_op([v for row_cells in cells.values() for v in row_cells.get(col, [])], op)
    totals["_total"] = _apply_op(all_values, op)
    result_rows.append(totals)

    return {"columns": columns, "rows": result_rows}


# =============================================================================
# COHORTS
# =============================================================================

def _period_offset(cohort_start: date, activity: date, period_type: str) -> int:
    if period_type == "days":
        return (activity - cohort_start).days
    if period_type == "weeks":
        return (activity - cohort_start).days // 7
    return (activity.year - cohort_start.year) * 12 + (activity.month - cohort_start.month)


def calculate_cohorts(
    rows: RowSet,
    cohort_by: str,
    metric_by: str,
    periods: int,
    period_type: str = "months",
    activity_field: str | None = None,
    member_field: str | None = None,
) -> list[dict]:
    """
    Group rows into monthly cohorts and track them over later periods.

    Args:
        rows: Input row set
        cohort_by: Date column defining cohort membership (bucketed by month)
        metric_by: Numeric column summed per period
        periods: Number of periods to report (0..periods-1)
        period_type: "days" | "weeks" | "months"
        activity_field: Date column of the activity; when omitted every member
            counts as retained in every period
        member_field: Column identifying members (defaults to one member per row)

    Returns:
        Cohorts in chronological order:
        [{cohort: "YYYY-MM", cohort_size: int,
          periods: [{period, retained, retention_rate, <metric_by>}, ...]}, ...]

    Raises:
        UnsupportedOptionError: unknown period_type
    """
    if period_type not in COHORT_PERIOD_TYPES:
        raise UnsupportedOptionError("cohort period type", period_type, COHORT_PERIOD_TYPES)

    cohorts: dict[str, tuple[date, list[Row]]] = {}
    for row in rows or []:
        cohort_date = date_from_row(row, cohort_by)
        if cohort_date is None:
            continue
        label, start = period_bucket(cohort_date, "monthly")
        cohorts.setdefault(label, (start, []))[1].append(row)

    def members_of(group: list[Row]) -> int:
        if member_field is None:
            return len(group)
        return len({value_key(row.get(member_field)) for row in group if not is_missing(row.get(member_field))})

    results = []
    for label in sorted(cohorts):
        start, members = cohorts[label]
        cohort_size = members_of(members)
        analysis = {"cohort": label, "cohort_size": cohort_size, "periods": []}

        for period in range(max(int(periods), 0)):
            if activity_field is None:
                active = members
            else:
                active = []
                for row in members:
                    activity = date_from_row(row, activity_field)
                    if activity is not None and _period_offset(start, activity.date(), period_type) == period:
                        active.append(row)

            retained = members_of(active)
            analysis["periods"].append({
                "period": period,
                "retained": retained,
                "retention_rate": round(retained / cohort_size * 100, 2) if cohort_size else 0.0,
                metric_by: _apply_op(_numeric_values(active, metric_by), "sum"),
            })

        results.append(analysis)

    return results
