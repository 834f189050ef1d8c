"""
stats_engine.py — Statistical Analysis Engine

Production implementation of the statistics layer.
Implements: Descriptive Statistics, Pearson Correlation, Welch's t-test,
Chi-square Test, Linear/Polynomial Regression, Z-score/IQR/Averaged
Z-score Anomaly Detection, Seasonal Decomposition, AR(1) Forecast,
Trend Detection, Comprehensive Column Analysis.

No function raises on empty or degenerate data; every result is finite.
Only unknown model types and invalid degrees raise UnsupportedOptionError.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any, Iterable

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import gammaincc

from analytics.aggregator import parse_date
from analytics.errors import UnsupportedOptionError
from analytics.rows import (
    RowSet,
    column_names,
    is_date_like,
    is_missing,
    is_number,
    row_label,
    to_number,
    value_key,
)
from analytics.schema_profiler import column_mode
from config.settings import get_config

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

MODEL_TYPES = ("linear", "polynomial")

SEVERITY_HIGH_Z = 3.0
SEVERITY_MEDIUM_Z = 2.0

TREND_SLOPE_THRESHOLD = 0.1
TREND_FORECAST_STEPS = 3
SEASONALITY_PATTERN_LENGTH = 12
SEASONALITY_MATCH_RATIO = 0.7

# Comprehensive analysis insight thresholds
HIGH_NULL_RATE = 0.3
RECOMMEND_IMPUTE_NULL_RATE = 0.2
HIGH_VARIABILITY_CV = 0.5
STRONG_CORRELATION = 0.7
VERY_STRONG_CORRELATION = 0.9
NUMERIC_LIKE_RATIO = 0.8
WIDE_RANGE_FACTOR = 10
MIN_CORRELATION_PAIRS = 3

# Linear forecast confidence bands
HISTORY_BAND = 0.1
FUTURE_BAND = 0.2
BASE_CONFIDENCE = 0.95
MIN_CONFIDENCE = 0.7
CONFIDENCE_DECAY = 0.02

TTEST_DIFFERENT = "There is a statistically significant difference between the two groups"
TTEST_SAME = "No statistically significant difference found between the groups"
CHI_DIFFERENT = "The observed frequencies differ significantly from expected frequencies"
CHI_SAME = "No significant difference between observed and expected frequencies"


def _finite(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


# =============================================================================
# DESCRIPTIVE STATISTICS
# =============================================================================

def numeric_values(values: Iterable[Any]) -> list[float | int]:
    """Numeric-looking values only (numbers and numeric strings)."""
    result = []
    for v in values or []:
        number = to_number(v)
        if number is not None:
            result.append(number)
    return result


def column_values(rows: RowSet, column: str) -> list[float | int]:
    """Numeric-looking values of one column across a row set."""
    return numeric_values(row.get(column) for row in rows or [])


def mean(values: Iterable[Any]) -> float:
    nums = numeric_values(values)
    return _finite(np.mean(nums)) if nums else 0.0


def median(values: Iterable[Any]) -> float:
    nums = numeric_values(values)
    return _finite(np.median(nums)) if nums else 0.0


def mode(values: Iterable[Any]) -> float | int | None:
    """Most frequent numeric value; first-seen wins ties; None when empty."""
    return column_mode(numeric_values(values))


def variance(values: Iterable[Any]) -> float:
    """Population variance."""
    nums = numeric_values(values)
    return _finite(np.var(nums)) if nums else 0.0


def std_dev(values: Iterable[Any]) -> float:
    """Population standard deviation."""
    nums = numeric_values(values)
    return _finite(np.std(nums)) if nums else 0.0


def minimum(values: Iterable[Any]) -> float | int:
    nums = numeric_values(values)
    return min(nums) if nums else 0


def maximum(values: Iterable[Any]) -> float | int:
    nums = numeric_values(values)
    return max(nums) if nums else 0


# =============================================================================
# CORRELATION
# =============================================================================

def correlation(a: Iterable[Any], b: Iterable[Any]) -> float:
    """
    Pearson correlation over positions where both values are numeric.

    Returns 0.0 for fewer than 2 pairs or zero variance.
    """
    pairs = [
        (x, y)
        for x, y in zip((to_number(v) for v in a), (to_number(v) for v in b))
        if x is not None and y is not None
    ]
    if len(pairs) < 2:
        return 0.0

    x = np.array([p[0] for p in pairs], dtype=float)
    y = np.array([p[1] for p in pairs], dtype=float)
    if x.std() == 0 or y.std() == 0:
        return 0.0

    return _finite(np.corrcoef(x, y)[0, 1])


def _numeric_columns(rows: RowSet) -> list[str]:
    """Columns whose non-missing values are all numeric-looking (and not all missing)."""
    numeric = []
    for col in column_names(rows):
        present = [row.get(col) for row in rows if not is_missing(row.get(col))]
        if present and all(to_number(v) is not None for v in present):
            numeric.append(col)
    return numeric


def correlation_matrix(rows: RowSet, columns: list[str] | None = None) -> dict[str, dict[str, float]]:
    """
    Pairwise Pearson correlations.

    Args:
        rows: Input row set
        columns: Columns to correlate (defaults to every numeric column)

    Returns:
        {col_a: {col_b: r, ...}, ...} rounded to 4 decimals
    """
    if not rows:
        return {}

    columns = columns if columns is not None else _numeric_columns(rows)
    series = {col: [row.get(col) for row in rows] for col in columns}

    matrix: dict[str, dict[str, float]] = {col: {} for col in columns}
    for i, col_a in enumerate(columns):
        for col_b in columns[i:]:
            r = round(correlation(series[col_a], series[col_b]), 4)
            matrix[col_a][col_b] = r
            matrix[col_b][col_a] = r
    return matrix


# =============================================================================
# HYPOTHESIS TESTS
# =============================================================================

def t_test(
    sample_a: Iterable[Any],
    sample_b: Iterable[Any],
    significance_level: float | None = None,
) -> dict:
    """
    Welch's t-test (unequal variances).

    `p_value` is the two-tailed normal approximation 2 * (1 - Phi(|t|)) and
    drives `significant`; `exact_p_value` uses the Student t distribution
    with Welch-Satterthwaite degrees of freedom.

    Returns:
        {test, statistic, degrees_of_freedom, p_value, exact_p_value,
         significant, interpretation}
    """
    alpha = significance_level if significance_level is not None else get_config().significance_level
    a = np.array(numeric_values(sample_a), dtype=float)
    b = np.array(numeric_values(sample_b), dtype=float)

    result = {
        "test": "Welch's t-test",
        "statistic": 0.0,
        "degrees_of_freedom": 0.0,
        "p_value": 1.0,
        "exact_p_value": 1.0,
        "significant": False,
        "interpretation": TTEST_SAME,
    }

    n1, n2 = len(a), len(b)
    if n1 < 2 or n2 < 2:
        return result

    se_a = a.var(ddof=1) / n1
    se_b = b.var(ddof=1) / n2
    se_sq = se_a + se_b
    if se_sq <= 0:
        return result

    t = (a.mean() - b.mean()) / math.sqrt(se_sq)
    df = se_sq ** 2 / (se_a ** 2 / (n1 - 1) + se_b ** 2 / (n2 - 1))
    p_value = _finite(2 * stats.norm.sf(abs(t)), 1.0)
    exact_p = _finite(2 * stats.t.sf(abs(t), df), 1.0)
    significant = p_value < alpha

    result.update({
        "statistic": round(_finite(t), 4),
        "degrees_of_freedom": round(_finite(df), 4),
        "p_value": round(p_value, 6),
        "exact_p_value": round(exact_p, 6),
        "significant": bool(significant),
        "interpretation": TTEST_DIFFERENT if significant else TTEST_SAME,
    })
    return result


def chi_square_test(
    observed: Iterable[Any],
    expected: Iterable[Any],
    significance_level: float | None = None,
) -> dict:
    """
    Pearson chi-square goodness of fit.

    Cells with a non-positive or non-numeric expectation are skipped.
    The p-value is the regularized upper incomplete gamma Q(df/2, chi2/2).

    Returns:
        {test, statistic, degrees_of_freedom, p_value, significant, interpretation}
    """
    alpha = significance_level if significance_level is not None else get_config().significance_level

    cells = []
    for o, e in zip(observed, expected):
        o_num, e_num = to_number(o), to_number(e)
        if o_num is None or e_num is None or e_num <= 0:
            continue
        cells.append((o_num, e_num))

    result = {
        "test": "Chi-square test",
        "statistic": 0.0,
        "degrees_of_freedom": 0,
        "p_value": 1.0,
        "significant": False,
        "interpretation": CHI_SAME,
    }
    if len(cells) < 2:
        return result

    chi2 = sum((o - e) ** 2 / e for o, e in cells)
    df = len(cells) - 1
    p_value = _finite(gammaincc(df / 2, chi2 / 2), 1.0)
    significant = p_value < alpha

    result.update({
        "statistic": round(_finite(chi2), 4),
        "degrees_of_freedom": df,
        "p_value": round(p_value, 6),
        "significant": bool(significant),
        "interpretation": CHI_DIFFERENT if significant else CHI_SAME,
    })
    return result


def chi_square_uniformity(rows: RowSet, column: str, significance_level: float | None = None) -> dict:
    """Chi-square test of a column's category counts against a uniform split."""
    counts: dict[tuple, int] = {}
    for row in rows or []:
        value = row.get(column)
        if is_missing(value):
            continue
        key = value_key(value)
        counts[key] = counts.get(key, 0) + 1

    observed = list(counts.values())
    total = sum(observed)
    expected = [total / len(observed)] * len(observed) if observed else []

    result = chi_square_test(observed, expected, significance_level)
    result["categories"] = len(observed)
    return result


# =============================================================================
# REGRESSION
# =============================================================================

def _regression_points(points: Iterable[Any]) -> tuple[np.ndarray, np.ndarray]:
    """Accept (x, y) pairs or {"x", "y"} mappings; drop non-numeric pairs."""
    xs, ys = [], []
    for point in points or []:
        if isinstance(point, Mapping):
            x, y = point.get("x"), point.get("y")
        else:
            try:
                x, y = point
            except (TypeError, ValueError):
                continue
        x_num, y_num = to_number(x), to_number(y)
        if x_num is None or y_num is None:
            continue
        xs.append(x_num)
        ys.append(y_num)
    return np.array(xs, dtype=float), np.array(ys, dtype=float)


def _model_result(
    model_type: str,
    degree: int,
    coefficients: Any,
    x: np.ndarray,
    y: np.ndarray,
    predicted: np.ndarray,
) -> dict:
    """Assemble predictions, RMSE and accuracy = 1 - rmse / std(y)."""
    if len(y):
        rmse = _finite(np.sqrt(np.mean((y - predicted) ** 2)))
        spread = float(y.std())
    else:
        rmse, spread = 0.0, 0.0

    if spread > 0:
        accuracy = 1 - rmse / spread
    else:
        accuracy = 1.0 if rmse < 1e-9 else 0.0

    return {
        "type": model_type,
        "degree": degree,
        "coefficients": coefficients,
        "predictions": [
            {"x": float(xi), "y": float(yi), "predicted": _finite(pi)}
            for xi, yi, pi in zip(x, y, predicted)
        ],
        "rmse": round(rmse, 6),
        "accuracy": round(_finite(accuracy), 6),
    }


def linear_regression_model(points: Iterable[Any]) -> dict:
    """
    Least-squares line y = slope * x + intercept.

    Fewer than 2 points or constant x gives a flat line at mean(y).
    """
    x, y = _regression_points(points)

    if len(x) < 2 or np.ptp(x) == 0:
        intercept = float(y.mean()) if len(y) else 0.0
        coefficients = {"slope": 0.0, "intercept": intercept, "r_squared": 0.0}
        return _model_result("linear", 1, coefficients, x, y, np.full(len(x), intercept))

    fit = stats.linregress(x, y)
    slope, intercept = float(fit.slope), float(fit.intercept)
    coefficients = {
        "slope": slope,
        "intercept": intercept,
        "r_squared": round(_finite(fit.rvalue) ** 2, 6),
    }
    return _model_result("linear", 1, coefficients, x, y, slope * x + intercept)


def polynomial_regression_model(points: Iterable[Any], degree: int = 2) -> dict:
    """
    Polynomial least squares via the normal equations (X'X) b = X'y.

    Coefficients are ordered by power: [b0, b1, ..., b_degree]. The normal
    equations are unregularized and become ill-conditioned for high degrees
    or wide x ranges. A singular system gives a flat fit at mean(y).

    Raises:
        UnsupportedOptionError: degree < 1
    """
    if isinstance(degree, bool) or not isinstance(degree, (int, np.integer)) or degree < 1:
        raise UnsupportedOptionError("polynomial degree", degree, ("integer >= 1",))
    degree = int(degree)

    x, y = _regression_points(points)
    flat = [float(y.mean()) if len(y) else 0.0] + [0.0] * degree

    if len(x) < degree + 1:
        return _model_result("polynomial", degree, flat, x, y, np.full(len(x), flat[0]))

    design = np.vander(x, degree + 1, increasing=True)
    try:
        coefficients = np.linalg.solve(design.T @ design, design.T @ y)
    except np.linalg.LinAlgError:
        logger.debug("Singular normal equations for degree %d; using flat fit", degree)
        return _model_result("polynomial", degree, flat, x, y, np.full(len(x), flat[0]))

    if not np.all(np.isfinite(coefficients)):
        return _model_result("polynomial", degree, flat, x, y, np.full(len(x), flat[0]))

    return _model_result(
        "polynomial", degree, [float(c) for c in coefficients], x, y, design @ coefficients,
    )


def build_regression_model(points: Iterable[Any], model_type: str = "linear", degree: int = 2) -> dict:
    """
    Fit a regression model by name.

    Raises:
        UnsupportedOptionError: unknown model type or invalid degree
    """
    if model_type == "linear":
        return linear_regression_model(points)
    if model_type == "polynomial":
        return polynomial_regression_model(points, degree)
    raise UnsupportedOptionError("model type", model_type, MODEL_TYPES)


# =============================================================================
# ANOMALY DETECTION
# =============================================================================

def _indexed_numbers(values: Iterable[Any]) -> list[tuple[int, float | int]]:
    indexed = []
    for index, v in enumerate(values or []):
        number = to_number(v)
        if number is not None:
            indexed.append((index, number))
    return indexed


def detect_anomalies_zscore(values: Iterable[Any], threshold: float | None = None) -> dict:
    """
    Flag values with |z| > threshold (population std).

    Returns:
        {method, threshold, anomalies: [{index, value, z_score}], total_anomalies}
    """
    threshold = threshold if threshold is not None else get_config().zscore_threshold
    indexed = _indexed_numbers(values)

    anomalies = []
    if indexed:
        numeric = np.array([v for _, v in indexed], dtype=float)
        center, spread = numeric.mean(), numeric.std()
        if spread > 0:
            for (index, value), z in zip(indexed, np.abs(numeric - center) / spread):
                if z > threshold:
                    anomalies.append({"index": index, "value": value, "z_score": round(float(z), 4)})

    return {
        "method": "z-score",
        "threshold": threshold,
        "anomalies": anomalies,
        "total_anomalies": len(anomalies),
    }


def detect_anomalies_iqr(values: Iterable[Any], multiplier: float | None = None) -> dict:
    """
    Flag values outside [Q1 - k*IQR, Q3 + k*IQR].

    Returns:
        {method, threshold, bounds: {lower, upper}, anomalies: [{index, value}], total_anomalies}
    """
    multiplier = multiplier if multiplier is not None else get_config().iqr_multiplier
    indexed = _indexed_numbers(values)

    if not indexed:
        return {
            "method": "iqr",
            "threshold": multiplier,
            "bounds": {"lower": 0.0, "upper": 0.0},
            "anomalies": [],
            "total_anomalies": 0,
        }

    numeric = np.array([v for _, v in indexed], dtype=float)
    q1, q3 = np.percentile(numeric, [25, 75])
    iqr = q3 - q1
    lower, upper = float(q1 - multiplier * iqr), float(q3 + multiplier * iqr)

    anomalies = [
        {"index": index, "value": value}
        for index, value in indexed
        if value < lower or value > upper
    ]

    return {
        "method": "iqr",
        "threshold": multiplier,
        "bounds": {"lower": lower, "upper": upper},
        "anomalies": anomalies,
        "total_anomalies": len(anomalies),
    }


def averaged_zscore_anomalies(
    rows: RowSet,
    features: list[str],
    threshold: float | None = None,
) -> dict:
    """
    Multivariate screening: score each row by the mean |z| across features.

    Features without numeric spread contribute nothing; the score is still
    averaged over every requested feature.

    Returns:
        {method, threshold, anomalies: [{index, score, row}], total_anomalies}
    """
    threshold = threshold if threshold is not None else get_config().multivariate_threshold
    rows = rows or []
    features = list(features or [])

    moments = {}
    for feature in features:
        nums = column_values(rows, feature)
        if nums:
            spread = float(np.std(nums))
            if spread > 0:
                moments[feature] = (float(np.mean(nums)), spread)

    anomalies = []
    if features and moments:
        for index, row in enumerate(rows):
            total = 0.0
            for feature, (center, spread) in moments.items():
                value = to_number(row.get(feature))
                if value is not None:
                    total += abs(value - center) / spread
            score = total / len(features)
            if score > threshold:
                anomalies.append({"index": index, "score": round(score, 4), "row": dict(row)})

    return {
        "method": "averaged z-score",
        "threshold": threshold,
        "anomalies": anomalies,
        "total_anomalies": len(anomalies),
    }


def _severity(z: float) -> str:
    if z > SEVERITY_HIGH_Z:
        return "high"
    if z > SEVERITY_MEDIUM_Z:
        return "medium"
    return "low"


def detect_metric_anomalies(
    rows: RowSet,
    column: str,
    threshold: float = 2.0,
    label_fields: tuple[str, ...] = ("company", "name"),
    higher_is_better: bool = False,
) -> list[dict]:
    """
    Per-row anomaly records for one metric column.

    Args:
        rows: Input row set
        column: Metric column
        threshold: |z| above which a row is reported
        label_fields: Columns tried in order for the record label ("Row N" fallback)
        higher_is_better: When False, values above the mean are "declining"
            (cost-style metrics); when True the mapping is reversed

    Returns:
        [{label, metric, observed, expected, deviation, z_score, severity, trend}, ...]
    """
    indexed = _indexed_numbers(row.get(column) for row in rows or [])
    if not indexed:
        return []

    numeric = np.array([v for _, v in indexed], dtype=float)
    center, spread = float(numeric.mean()), float(numeric.std())
    if spread == 0:
        return []

    records = []
    for index, value in indexed:
        z = abs(value - center) / spread
        if z <= threshold:
            continue

        row = rows[index]
        label = next(
            (row.get(f) for f in label_fields if not is_missing(row.get(f))),
            row_label(index),
        )
        deviation = value - center
        above = deviation > 0
        trend = "improving" if above == higher_is_better else "declining"

        records.append({
            "label": label,
            "metric": column,
            "observed": value,
            "expected": round(center, 4),
            "deviation": round(deviation, 4),
            "z_score": round(z, 4),
            "severity": _severity(z),
            "trend": trend,
        })

    logger.debug("Found %d anomalies in %r (threshold %.2f)", len(records), column, threshold)
    return records


# =============================================================================
# TIME SERIES
# =============================================================================

def seasonal_decompose(values: Iterable[Any], period: int | None = None) -> dict:
    """
    Additive decomposition: original = trend + seasonal + residual.

    Trend is a trailing moving average over `period` points (None until the
    window fills). Where the trend is undefined the series mean stands in.
    Seasonal indices are per-phase means of the detrended series, centered
    to sum to zero.

    Returns:
        {period, original, trend, seasonal, seasonal_indices, residual}
    """
    period = int(period) if period is not None else get_config().seasonal_period
    series = [float(v) for v in numeric_values(values)]
    if not series or period < 1:
        return {
            "period": period,
            "original": series,
            "trend": [],
            "seasonal": [],
            "seasonal_indices": [],
            "residual": [],
        }

    center = float(np.mean(series))
    rolling = pd.Series(series).rolling(window=period).mean()
    trend = [None if pd.isna(t) else float(t) for t in rolling]
    baseline = [center if t is None else t for t in trend]
    detrended = [v - b for v, b in zip(series, baseline)]

    phase_means = {}
    for phase in range(period):
        phase_values = detrended[phase::period]
        if phase_values:
            phase_means[phase] = float(np.mean(phase_values))
    offset = float(np.mean(list(phase_means.values())))
    indices = [phase_means[p] - offset if p in phase_means else 0.0 for p in range(period)]

    seasonal = [indices[i % period] for i in range(len(series))]
    residual = [v - b - s for v, b, s in zip(series, baseline, seasonal)]

    return {
        "period": period,
        "original": series,
        "trend": trend,
        "seasonal": seasonal,
        "seasonal_indices": indices,
        "residual": residual,
    }


def ar1_naive_forecast(values: Iterable[Any], horizon: int, phi: float | None = None) -> list[float]:
    """
    Single-lag forecast decaying toward the series mean:
        next = mean + phi * (previous - mean)
    """
    phi = phi if phi is not None else get_config().ar_phi
    series = numeric_values(values)
    if not series or horizon <= 0:
        return []

    center = float(np.mean(series))
    previous = float(series[-1])
    forecast = []
    for _ in range(int(horizon)):
        previous = center + phi * (previous - center)
        forecast.append(previous)
    return forecast


def _sorted_by_time(rows: RowSet, time_column: str) -> list:
    """Rows ordered by parsed time; rows without a parseable time go last."""
    keyed = []
    for row in rows or []:
        parsed = parse_date(row.get(time_column))
        keyed.append((parsed is None, parsed if parsed is not None else pd.Timestamp.min, row))
    keyed.sort(key=lambda item: (item[0], item[1]))
    return [row for _, _, row in keyed]


def _index_fit(values: list[float]) -> tuple[float, float]:
    """Least-squares slope and intercept of values against their index."""
    if len(values) < 2:
        return 0.0, float(values[0]) if values else 0.0
    fit = stats.linregress(np.arange(len(values), dtype=float), np.array(values, dtype=float))
    return _finite(fit.slope), _finite(fit.intercept)


def _has_repeating_pattern(values: list[float]) -> bool:
    """True when >70% of period-over-period change signs repeat one cycle later."""
    length = SEASONALITY_PATTERN_LENGTH
    if len(values) < length * 2:
        return False

    changes = np.sign(np.diff(values))
    compared = min(length, len(changes) - length)
    matches = sum(1 for i in range(compared) if changes[i] == changes[i + length])
    return matches > length * SEASONALITY_MATCH_RATIO


def detect_trends(rows: RowSet, time_column: str, value_column: str) -> dict:
    """
    Direction, change and short forecast of a metric ordered by time.

    Non-numeric values count as 0.

    Returns:
        {
            trend: "increasing" | "decreasing" | "stable",
            slope: float,
            change_percent: float,   # last vs first point
            forecast: [float, float, float],
            seasonality: bool
        }
    """
    ordered = _sorted_by_time(rows, time_column)
    values = [float(to_number(row.get(value_column)) or 0) for row in ordered]

    if not values:
        return {"trend": "stable", "slope": 0.0, "change_percent": 0.0, "forecast": [], "seasonality": False}

    slope, intercept = _index_fit(values)
    if slope > TREND_SLOPE_THRESHOLD:
        trend = "increasing"
    elif slope < -TREND_SLOPE_THRESHOLD:
        trend = "decreasing"
    else:
        trend = "stable"

    first = values[0] or 1
    last = values[-1] or 1
    n = len(values)

    return {
        "trend": trend,
        "slope": round(slope, 4),
        "change_percent": round((last - first) / first * 100, 4),
        "forecast": [slope * (n - 1 + step) + intercept for step in range(1, TREND_FORECAST_STEPS + 1)],
        "seasonality": _has_repeating_pattern(values),
    }


def linear_forecast(rows: RowSet, time_column: str, value_column: str, horizon: int = 12) -> list[dict]:
    """
    Fitted line over time-ordered history plus `horizon` future points.

    History points carry ±10% bands at 0.95 confidence; future points carry
    ±20% bands with confidence decaying by 0.02 per step (floor 0.7).
    """
    history = [
        (row.get(time_column), to_number(row.get(value_column)))
        for row in _sorted_by_time(rows, time_column)
    ]
    history = [(period, value) for period, value in history if value is not None]
    if not history:
        return []

    slope, intercept = _index_fit([float(v) for _, v in history])

    def banded(fitted: float, band: float) -> tuple[float, float]:
        low, high = fitted * (1 - band), fitted * (1 + band)
        return min(low, high), max(low, high)

    points = []
    for i, (period, value) in enumerate(history):
        fitted = intercept + slope * i
        lower, upper = banded(fitted, HISTORY_BAND)
        points.append({
            "period": period,
            "actual": value,
            "forecast": fitted,
            "lower": lower,
            "upper": upper,
            "confidence": BASE_CONFIDENCE,
        })

    n = len(history)
    for step in range(1, max(int(horizon), 0) + 1):
        fitted = intercept + slope * (n - 1 + step)
        lower, upper = banded(fitted, FUTURE_BAND)
        points.append({
            "period": f"Period {n + step}",
            "forecast": fitted,
            "lower": lower,
            "upper": upper,
            "confidence": round(max(MIN_CONFIDENCE, BASE_CONFIDENCE - step * CONFIDENCE_DECAY), 2),
        })

    return points


# =============================================================================
# COMPREHENSIVE ANALYSIS
# =============================================================================

def _classify_columns(rows: RowSet, columns: list[str]) -> dict[str, list[str]]:
    """Classify columns by their first non-missing value."""
    numeric, categorical, dates = [], [], []
    for col in columns:
        sample = next((row.get(col) for row in rows if not is_missing(row.get(col))), None)
        if is_date_like(sample):
            dates.append(col)
        elif is_number(sample):
            numeric.append(col)
        else:
            categorical.append(col)
    return {"numeric_columns": numeric, "categorical_columns": categorical, "date_columns": dates}


def _column_statistics(rows: RowSet, col: str, is_numeric: bool) -> dict:
    present = [row.get(col) for row in rows if not is_missing(row.get(col))]
    stat: dict[str, Any] = {"null_count": len(rows) - len(present)}
    if not present:
        return stat

    if is_numeric:
        nums = [v for v in present if is_number(v)]
        if nums:
            stat.update({
                "mean": round(mean(nums), 4),
                "median": round(median(nums), 4),
                "std_dev": round(std_dev(nums), 4),
                "min": minimum(nums),
                "max": maximum(nums),
            })

    stat["unique_values"] = len({value_key(v) for v in present})
    stat["mode"] = column_mode(present)
    return stat


def _pairwise_correlations(rows: RowSet, numeric_columns: list[str]) -> list[dict]:
    correlations = []
    for i, col_a in enumerate(numeric_columns):
        for col_b in numeric_columns[i + 1:]:
            pairs = [
                (row.get(col_a), row.get(col_b))
                for row in rows
                if is_number(row.get(col_a)) and is_number(row.get(col_b))
            ]
            if len(pairs) >= MIN_CORRELATION_PAIRS:
                r = correlation([p[0] for p in pairs], [p[1] for p in pairs])
                correlations.append({"columns": [col_a, col_b], "correlation": round(r, 4)})
    return correlations


def _generate_insights(rows: RowSet, summary: dict, statistics: dict, correlations: list[dict]) -> list[str]:
    insights = []
    total_rows = summary["total_rows"]

    total_cells = total_rows * summary["total_columns"]
    null_cells = sum(stat["null_count"] for stat in statistics.values())
    completeness = (total_cells - null_cells) / total_cells * 100 if total_cells else 0.0
    insights.append(f"Data completeness: {completeness:.1f}% of cells contain valid data")

    for col, stat in statistics.items():
        null_rate = stat["null_count"] / total_rows
        if null_rate > HIGH_NULL_RATE:
            insights.append(f'Column "{col}" has {null_rate * 100:.1f}% missing values')

    for col in summary["numeric_columns"]:
        stat = statistics[col]
        center, spread = stat.get("mean"), stat.get("std_dev")
        if center and spread and spread > abs(center) * HIGH_VARIABILITY_CV:
            insights.append(f'High variability in "{col}" (CV: {spread / center:.2f})')

    for entry in correlations:
        r = entry["correlation"]
        if abs(r) > STRONG_CORRELATION:
            col_a, col_b = entry["columns"]
            strength = "Very strong" if abs(r) > VERY_STRONG_CORRELATION else "Strong"
            direction = "positive" if r > 0 else "negative"
            insights.append(f'{strength} {direction} correlation between "{col_a}" and "{col_b}" ({r:.2f})')

    for col in summary["categorical_columns"]:
        present = [row.get(col) for row in rows if not is_missing(row.get(col))]
        if not present:
            continue
        numeric_like = sum(1 for v in present if to_number(v) is not None) / len(present)
        if numeric_like > NUMERIC_LIKE_RATIO:
            insights.append(f'Column "{col}" appears to contain mostly numeric values but is treated as text')

    return insights


def _generate_recommendations(summary: dict, statistics: dict, correlations: list[dict]) -> list[str]:
    recommendations = []
    total_rows = summary["total_rows"]

    high_null = [
        col for col, stat in statistics.items()
        if stat["null_count"] > total_rows * RECOMMEND_IMPUTE_NULL_RATE
    ]
    if high_null:
        recommendations.append(f"Consider removing or imputing missing values in: {', '.join(high_null)}")

    if summary["date_columns"]:
        recommendations.append(
            "Extract time-based features (month, quarter, day of week) from date columns for trend analysis"
        )

    redundant = [
        f"{entry['columns'][0]}/{entry['columns'][1]}"
        for entry in correlations
        if abs(entry["correlation"]) > VERY_STRONG_CORRELATION
    ]
    if redundant:
        recommendations.append(f"Consider removing redundant features due to high correlation: {', '.join(redundant)}")

    if len(summary["numeric_columns"]) >= 2:
        recommendations.append("Perform regression analysis to predict key metrics")

    if summary["categorical_columns"] and summary["numeric_columns"]:
        recommendations.append("Create pivot tables to analyze metrics by categories")

    wide = any(
        statistics[col].get("mean", 0) > 0
        and statistics[col]["max"] - statistics[col]["min"] > statistics[col]["mean"] * WIDE_RANGE_FACTOR
        for col in summary["numeric_columns"]
    )
    if wide:
        recommendations.append("Consider normalizing numeric columns with wide value ranges")

    return recommendations


def comprehensive_analysis(rows: RowSet) -> dict:
    """
    One-shot overview of a row set.

    Returns:
        {
            summary: {total_rows, total_columns, numeric_columns,
                      categorical_columns, date_columns},
            statistics: {column: {null_count, unique_values, mode,
                                  mean?, median?, std_dev?, min?, max?}},
            correlations: [{columns: [a, b], correlation: r}, ...],
            insights: list[str],
            recommendations: list[str]
        }
    """
    if not rows:
        return {
            "summary": {
                "total_rows": 0,
                "total_columns": 0,
                "numeric_columns": [],
                "categorical_columns": [],
                "date_columns": [],
            },
            "statistics": {},
            "correlations": [],
            "insights": [],
            "recommendations": [],
        }

    columns = column_names(rows)
    summary = {"total_rows": len(rows), "total_columns": len(columns), **_classify_columns(rows, columns)}
    numeric_set = set(summary["numeric_columns"])

    statistics = {col: _column_statistics(rows, col, col in numeric_set) for col in columns}
    correlations = _pairwise_correlations(rows, summary["numeric_columns"])

    return {
        "summary": summary,
        "statistics": statistics,
        "correlations": correlations,
        "insights": _generate_insights(rows, summary, statistics, correlations),
        "recommendations": _generate_recommendations(summary, statistics, correlations),
    }
