# state.py — Shared AnalysisState schema
# TypedDict definition for state passed between pipeline nodes
"""
state.py — Pipeline State Schema

Defines the analysis request handed in by the host and the TypedDict
structure for state passed between LangGraph nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, TypedDict

from analytics.aggregator import MetricSpec, TimeSeriesOptions
from analytics.cleaner import CleaningOptions, TransformationRule
from analytics.validators import sanitize_option_keys


# =============================================================================
# REQUEST
# =============================================================================

@dataclass
class AggregationRequest:
    """Group-by aggregation: metrics computed per distinct group_by tuple."""
    group_by: list[str] = field(default_factory=list)
    metrics: list[MetricSpec] = field(default_factory=list)


@dataclass
class PivotRequest:
    row_keys: list[str]
    column_keys: list[str]
    value_column: str
    aggregation: str = "sum"


@dataclass
class RegressionRequest:
    x_column: str
    y_column: str
    model_type: str = "linear"
    degree: int = 2


def _request_from_mapping(cls, data: Mapping[str, Any], option: str):
    return cls(**sanitize_option_keys(data, cls.__dataclass_fields__, option))


@dataclass
class AnalysisRequest:
    """
    Everything the host asks the pipeline to compute for one row set.

    Every part is optional; profiling always runs, and the comprehensive
    column analysis runs unless `comprehensive` is False.
    """
    cleaning: CleaningOptions | None = None
    transformations: list[TransformationRule | Mapping[str, Any]] = field(default_factory=list)
    aggregation: AggregationRequest | None = None
    time_series: TimeSeriesOptions | None = None
    pivot: PivotRequest | None = None
    anomaly_columns: list[str] = field(default_factory=list)
    regression: RegressionRequest | None = None
    comprehensive: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "AnalysisRequest":
        """
        Build a request from plain JSON-style dicts (snake_case or camelCase
        keys), e.g.
            {"cleaning": {"fillMissing": true},
             "aggregation": {"group_by": ["region"], "metrics": [{"column": "rev", "op": "sum"}]},
             "time_series": {"metric": "value", "period": "monthly"}}
        """
        if not data:
            return cls()

        data = sanitize_option_keys(data, cls.__dataclass_fields__, "analysis option")
        cleaning = data.get("cleaning")
        aggregation = data.get("aggregation")
        if aggregation:
            aggregation = sanitize_option_keys(aggregation, ("group_by", "metrics"), "aggregation option")
        time_series = data.get("time_series")
        pivot = data.get("pivot")
        regression = data.get("regression")

        return cls(
            cleaning=CleaningOptions.from_mapping(cleaning) if cleaning is not None else None,
            transformations=list(data.get("transformations") or []),
            aggregation=AggregationRequest(
                group_by=list(aggregation.get("group_by") or []),
                metrics=[MetricSpec.coerce(m) for m in aggregation.get("metrics") or []],
            ) if aggregation else None,
            time_series=TimeSeriesOptions.from_mapping(time_series) if time_series else None,
            pivot=_request_from_mapping(PivotRequest, pivot, "pivot option") if pivot else None,
            anomaly_columns=list(data.get("anomaly_columns") or []),
            regression=(
                _request_from_mapping(RegressionRequest, regression, "regression option")
                if regression else None
            ),
            comprehensive=bool(data.get("comprehensive", True)),
        )


# =============================================================================
# STATE
# =============================================================================

class AnalysisState(TypedDict, total=False):
    """
    Shared state passed between all pipeline nodes.

    All fields are optional (total=False) to support partial updates.
    """

    # =========================================================================
    # INPUT LAYER
    # =========================================================================
    rows: list[dict] | None  # Row set supplied by the host (never mutated)
    request: AnalysisRequest | None

    # =========================================================================
    # DATA LAYER
    # =========================================================================
    row_count: int
    col_count: int
    column_profiles: list[dict] | None  # Output from profile_columns()
    quality_report: dict | None  # Output from profile() on the input rows

    # =========================================================================
    # CLEANING LAYER
    # =========================================================================
    cleaned_rows: list[dict] | None
    cleaning_summary: dict | None  # {cleaned_rows, fixed_issues, data_quality}

    # =========================================================================
    # AGGREGATION LAYER
    # =========================================================================
    aggregation: list[dict] | None
    time_series: list[dict] | None
    pivot_table: dict | None

    # =========================================================================
    # STATISTICS LAYER
    # =========================================================================
    comprehensive: dict | None
    anomalies: dict[str, list[dict]] | None
    regression: dict | None
    warnings: list[str]

    # =========================================================================
    # OUTPUT LAYER
    # =========================================================================
    payload: dict | None  # JSON-ready result handed back to the host

    # =========================================================================
    # CONTROL LAYER
    # =========================================================================
    current_node: str | None
    progress: float  # 0.0 - 1.0
    progress_message: str | None

    # =========================================================================
    # ERROR LAYER
    # =========================================================================
    error: str | None
    error_type: str | None  # DATA_MISSING | DATA_INVALID | UNSUPPORTED_OPTION | ANALYSIS_FAILED
    failed_node: str | None
    partial_results: bool
    recovery_hint: str | None

    # =========================================================================
    # CALLBACKS (not persisted)
    # =========================================================================
    progress_callback: Callable[[dict], None] | None


def create_initial_state(
    rows: list[dict] | None = None,
    request: AnalysisRequest | Mapping[str, Any] | None = None,
    progress_callback: Callable[[dict], None] | None = None,
) -> AnalysisState:
    """
    Create a fresh AnalysisState with default values.

    Args:
        rows: Row set to analyze
        request: AnalysisRequest (or its dict form)
        progress_callback: Optional callback for progress updates

    Returns:
        Initialized AnalysisState dict
    """
    if not isinstance(request, AnalysisRequest):
        request = AnalysisRequest.from_mapping(request)

    return AnalysisState(
        # Input
        rows=rows,
        request=request,

        # Data
        row_count=0,
        col_count=0,
        column_profiles=None,
        quality_report=None,

        # Cleaning
        cleaned_rows=None,
        cleaning_summary=None,

        # Aggregation
        aggregation=None,
        time_series=None,
        pivot_table=None,

        # Statistics
        comprehensive=None,
        anomalies=None,
        regression=None,
        warnings=[],

        # Output
        payload=None,

        # Control
        current_node=None,
        progress=0.0,
        progress_message=None,

        # Error
        error=None,
        error_type=None,
        failed_node=None,
        partial_results=False,
        recovery_hint=None,

        # Callbacks
        progress_callback=progress_callback,
    )
