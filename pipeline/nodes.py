# nodes.py — Pipeline steps (individual graph node functions)
# Steps: validate → profile → clean → aggregate → statistics → payload
"""
nodes.py — LangGraph Pipeline Nodes

Each node is a pure function that takes AnalysisState and returns state
updates.

Node Responsibilities:
- validate_input_node: Check the row set shape and size
- profile_data_node: Column profiles and the data quality report
- clean_data_node: Optional cleaning and rule-based transformations
- aggregate_data_node: Group-by aggregation, time series, pivot
- analyze_statistics_node: Column analysis, anomalies, regression
- build_payload_node: Assemble the JSON-ready result
- handle_error_node: Turn a failure into an error payload

Unsupported options become UNSUPPORTED_OPTION errors; nodes never raise
into the graph.
"""

from __future__ import annotations

import logging

from analytics.aggregator import aggregate, create_time_series, pivot
from analytics.cleaner import apply_transformations, run_cleaning
from analytics.errors import UnsupportedOptionError
from analytics.rows import column_names, copy_rows
from analytics.schema_profiler import profile, profile_columns
from analytics.stats_engine import (
    build_regression_model,
    comprehensive_analysis,
    detect_metric_anomalies,
)
from analytics.validators import sanitize_dict_for_json, validate_rows
from pipeline.state import AnalysisRequest

logger = logging.getLogger(__name__)


# =============================================================================
# PROGRESS HELPERS
# =============================================================================

def _emit_progress(
    state: dict,
    node: str,
    progress: float,
    message: str,
    status: str = "running",
) -> None:
    """
    Emit a progress update via the callback if available.

    Args:
        state: Current pipeline state
        node: Current node name
        progress: Progress value (0.0 - 1.0)
        message: Human-readable progress message
        status: "running" | "complete" | "failed"
    """
    callback = state.get("progress_callback")
    if callback and callable(callback):
        try:
            callback({
                "node": node,
                "status": status,
                "progress": progress,
                "message": message,
            })
        except Exception:
            logger.warning("Progress callback failed in %s", node, exc_info=True)


def _create_error_state(
    state: dict,
    node: str,
    error_msg: str,
    error_type: str,
    recovery_hint: str,
) -> dict:
    """
    Create state update for error routing.
    """
    return {
        "error": error_msg,
        "error_type": error_type,
        "failed_node": node,
        "recovery_hint": recovery_hint,
        "current_node": node,
        "partial_results": _has_partial_results(state),
    }


def _unsupported_option_state(state: dict, node: str, exc: UnsupportedOptionError) -> dict:
    return _create_error_state(
        state, node,
        str(exc),
        "UNSUPPORTED_OPTION",
        f"Choose one of: {', '.join(exc.allowed)}.",
    )


def _analysis_failed_state(state: dict, node: str, step: str, exc: Exception) -> dict:
    logger.exception("%s failed in %s", step, node)
    return _create_error_state(
        state, node,
        f"{step} failed: {exc}",
        "ANALYSIS_FAILED",
        "The data could not be analyzed. Check for malformed columns.",
    )


def _has_partial_results(state: dict) -> bool:
    """Check if state has any usable partial results."""
    return any([
        state.get("quality_report"),
        state.get("cleaning_summary"),
        state.get("aggregation"),
        state.get("time_series"),
        state.get("pivot_table"),
    ])


def _request(state: dict) -> AnalysisRequest:
    return state.get("request") or AnalysisRequest()


def _working_rows(state: dict) -> list[dict]:
    cleaned = state.get("cleaned_rows")
    return cleaned if cleaned is not None else (state.get("rows") or [])


# =============================================================================
# NODE: VALIDATE INPUT
# =============================================================================

def validate_input_node(state: dict) -> dict:
    """
    Validate the row set handed in by the host.

    Input state:
        - rows: list[dict] (required)

    Output state updates:
        - row_count: int
        - col_count: int

    On error:
        - error, error_type, failed_node, recovery_hint
    """
    node_name = "validate_input"
    _emit_progress(state, node_name, 0.02, "Checking your data...")

    rows = state.get("rows")
    if rows is None:
        return _create_error_state(
            state, node_name,
            "No data provided",
            "DATA_MISSING",
            "Provide a row set (a list of records) to analyze.",
        )

    is_valid, error = validate_rows(rows)
    if not is_valid:
        return _create_error_state(
            state, node_name,
            error,
            "DATA_INVALID",
            "Each row must be a flat record of column name to value.",
        )

    col_count = len(column_names(rows))
    _emit_progress(state, node_name, 0.10, "Data accepted", "complete")

    return {
        "row_count": len(rows),
        "col_count": col_count,
        "current_node": node_name,
        "progress": 0.10,
        "progress_message": f"Received {len(rows):,} rows × {col_count} columns",
    }


# =============================================================================
# NODE: PROFILE DATA
# =============================================================================

def profile_data_node(state: dict) -> dict:
    """
    Profile columns and build the data quality report.

    Output state updates:
        - column_profiles: list[dict]
        - quality_report: dict
    """
    node_name = "profile_data"
    _emit_progress(state, node_name, 0.15, "Profiling columns...")

    rows = state.get("rows") or []
    try:
        column_profiles = profile_columns(rows)
        quality_report = profile(rows)
    except Exception as e:
        return _analysis_failed_state(state, node_name, "Profiling", e)

    issue_count = len(quality_report["issues"])
    _emit_progress(state, node_name, 0.25, f"Found {issue_count} quality issues", "complete")

    return {
        "column_profiles": column_profiles,
        "quality_report": quality_report,
        "current_node": node_name,
        "progress": 0.25,
        "progress_message": f"{quality_report['clean_rows']:,} of {len(rows):,} rows are complete",
    }


# =============================================================================
# NODE: CLEAN DATA
# =============================================================================

def clean_data_node(state: dict) -> dict:
    """
    Apply the requested cleaning options and transformation rules.

    Without any cleaning request the working rows are a copy of the input.

    Output state updates:
        - cleaned_rows: list[dict]
        - cleaning_summary: dict | None
    """
    node_name = "clean_data"
    request = _request(state)
    rows = state.get("rows") or []

    cleaning = request.cleaning
    if not (cleaning and cleaning.any_enabled) and not request.transformations:
        return {
            "cleaned_rows": copy_rows(rows),
            "current_node": node_name,
            "progress": 0.45,
            "progress_message": "No cleaning requested",
        }

    _emit_progress(state, node_name, 0.30, "Cleaning data...")

    try:
        result = run_cleaning(rows, cleaning)
        data = result["rows"]
        if request.transformations:
            _emit_progress(state, node_name, 0.40, "Applying transformations...")
            data = apply_transformations(data, request.transformations)
    except UnsupportedOptionError as e:
        return _unsupported_option_state(state, node_name, e)
    except Exception as e:
        return _analysis_failed_state(state, node_name, "Cleaning", e)

    summary = {
        "cleaned_rows": len(data),
        "fixed_issues": result["fixed_issues"],
        "data_quality": result["data_quality"] if not request.transformations else profile(data),
    }

    _emit_progress(state, node_name, 0.45, f"Fixed {summary['fixed_issues']} issues", "complete")

    return {
        "cleaned_rows": data,
        "cleaning_summary": summary,
        "current_node": node_name,
        "progress": 0.45,
        "progress_message": f"{len(data):,} rows after cleaning",
    }


# =============================================================================
# NODE: AGGREGATE DATA
# =============================================================================

def aggregate_data_node(state: dict) -> dict:
    """
    Run the requested group-by aggregation, time series and pivot.

    Output state updates:
        - aggregation: list[dict] | None
        - time_series: list[dict] | None
        - pivot_table: dict | None
    """
    node_name = "aggregate_data"
    request = _request(state)
    rows = _working_rows(state)
    updates: dict = {}

    try:
        if request.aggregation is not None:
            _emit_progress(state, node_name, 0.50, "Aggregating metrics...")
            updates["aggregation"] = aggregate(
                rows, request.aggregation.group_by, request.aggregation.metrics,
            )

        if request.time_series is not None:
            _emit_progress(state, node_name, 0.55, "Building time series...")
            updates["time_series"] = create_time_series(rows, request.time_series)

        if request.pivot is not None:
            _emit_progress(state, node_name, 0.60, "Building pivot table...")
            table = request.pivot
            updates["pivot_table"] = pivot(
                rows, table.row_keys, table.column_keys, table.value_column, table.aggregation,
            )
    except UnsupportedOptionError as e:
        return _unsupported_option_state(state, node_name, e)
    except Exception as e:
        return _analysis_failed_state(state, node_name, "Aggregation", e)

    _emit_progress(state, node_name, 0.65, "Aggregation complete", "complete")

    updates.update({
        "current_node": node_name,
        "progress": 0.65,
        "progress_message": "Aggregation complete",
    })
    return updates


# =============================================================================
# NODE: ANALYZE STATISTICS
# =============================================================================

def analyze_statistics_node(state: dict) -> dict:
    """
    Column analysis, per-metric anomalies and the requested regression.

    Output state updates:
        - comprehensive: dict | None
        - anomalies: dict[str, list[dict]] | None
        - regression: dict | None
        - warnings: list[str]
    """
    node_name = "analyze_statistics"
    request = _request(state)
    rows = _working_rows(state)
    warnings = list(state.get("warnings", []))
    updates: dict = {}

    try:
        if request.comprehensive:
            _emit_progress(state, node_name, 0.70, "Analyzing columns...")
            updates["comprehensive"] = comprehensive_analysis(rows)

        if request.anomaly_columns:
            _emit_progress(state, node_name, 0.75, "Detecting anomalies...")
            available = set(column_names(rows))
            anomalies = {}
            for col in request.anomaly_columns:
                if col not in available:
                    warnings.append(f'Anomaly column "{col}" not found')
                    continue
                anomalies[col] = detect_metric_anomalies(rows, col)
            updates["anomalies"] = anomalies

        if request.regression is not None:
            _emit_progress(state, node_name, 0.80, "Fitting regression model...")
            model_request = request.regression
            points = [(row.get(model_request.x_column), row.get(model_request.y_column)) for row in rows]
            model = build_regression_model(points, model_request.model_type, model_request.degree)
            if len(model["predictions"]) < 3:
                warnings.append(
                    f'Only {len(model["predictions"])} numeric points for '
                    f'{model_request.y_column} ~ {model_request.x_column}; model is unreliable'
                )
            updates["regression"] = model
    except UnsupportedOptionError as e:
        return _unsupported_option_state(state, node_name, e)
    except Exception as e:
        return _analysis_failed_state(state, node_name, "Statistical analysis", e)

    _emit_progress(state, node_name, 0.85, "Statistics complete", "complete")

    updates.update({
        "warnings": warnings,
        "current_node": node_name,
        "progress": 0.85,
        "progress_message": "Statistics complete",
    })
    return updates


# =============================================================================
# NODE: BUILD PAYLOAD
# =============================================================================

def _build_payload(state: dict) -> dict:
    """Build the JSON-ready result payload."""
    return {
        "row_count": state.get("row_count", 0),
        "col_count": state.get("col_count", 0),
        "column_profiles": state.get("column_profiles"),
        "quality_report": state.get("quality_report"),
        "cleaning": state.get("cleaning_summary"),
        "rows": state.get("cleaned_rows"),
        "aggregation": state.get("aggregation"),
        "time_series": state.get("time_series"),
        "pivot": state.get("pivot_table"),
        "analysis": state.get("comprehensive"),
        "anomalies": state.get("anomalies"),
        "regression": state.get("regression"),
        "warnings": state.get("warnings", []),
    }


def build_payload_node(state: dict) -> dict:
    """
    Assemble the final payload.

    Output state updates:
        - payload: dict (JSON-safe)
    """
    node_name = "build_payload"
    _emit_progress(state, node_name, 0.95, "Preparing results...")

    payload = sanitize_dict_for_json(_build_payload(state))
    payload["is_error"] = False

    _emit_progress(state, node_name, 1.0, "Analysis complete!", "complete")

    return {
        "payload": payload,
        "current_node": node_name,
        "progress": 1.0,
        "progress_message": "Analysis complete",
    }


# =============================================================================
# NODE: HANDLE ERROR
# =============================================================================

def handle_error_node(state: dict) -> dict:
    """
    Prepare the error payload.

    Input state:
        - error: str
        - error_type: str
        - failed_node: str
        - recovery_hint: str
        - partial_results: bool

    Output state updates:
        - payload: dict (error payload)
    """
    node_name = "handle_error"
    _emit_progress(state, node_name, 0.99, "Handling error...", "failed")

    error = state.get("error", "An unknown error occurred")
    error_type = state.get("error_type", "UNKNOWN")
    failed_node = state.get("failed_node", "unknown")
    recovery_hint = state.get("recovery_hint", "Please check the request and try again.")
    has_partial = state.get("partial_results", False)

    logger.info("Pipeline failed at %s (%s): %s", failed_node, error_type, error)

    error_payload = {
        "is_error": True,
        "error_message": error,
        "error_type": error_type,
        "failed_node": failed_node,
        "recovery_hint": recovery_hint,
        "has_partial_results": has_partial,
    }

    if has_partial:
        error_payload["partial_results"] = {
            "quality_report": state.get("quality_report"),
            "cleaning": state.get("cleaning_summary"),
            "aggregation": state.get("aggregation"),
            "time_series": state.get("time_series"),
            "pivot": state.get("pivot_table"),
            "warnings": state.get("warnings", []) + [f"Analysis incomplete: {error}"],
        }

    return {
        "payload": sanitize_dict_for_json(error_payload),
        "current_node": node_name,
        "progress": 1.0,
        "progress_message": f"Error: {error_type}",
    }
