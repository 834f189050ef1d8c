# graph.py — LangGraph workflow definition
# Defines state machine, node edges, and conditional routing
"""
graph.py — LangGraph Workflow Definition

Wires the analytics steps into a single graph with error routing.

Flow:
    START → validate_input → profile_data → clean_data → aggregate_data
          → analyze_statistics → build_payload → END
                  ↓              ↓             ↓              ↓                ↓
               [ERROR] ───────────────────────────────────────────────→ handle_error → END

Any node that sets state["error"] routes to handle_error_node.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Literal, Mapping

from langgraph.graph import END, START, StateGraph

from pipeline.nodes import (
    aggregate_data_node,
    analyze_statistics_node,
    build_payload_node,
    clean_data_node,
    handle_error_node,
    profile_data_node,
    validate_input_node,
)
from pipeline.state import AnalysisRequest, AnalysisState, create_initial_state

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

# Happy path, in execution order
PIPELINE_STEPS = (
    ("validate_input", validate_input_node),
    ("profile_data", profile_data_node),
    ("clean_data", clean_data_node),
    ("aggregate_data", aggregate_data_node),
    ("analyze_statistics", analyze_statistics_node),
    ("build_payload", build_payload_node),
)


# =============================================================================
# CONDITIONAL ROUTING
# =============================================================================

def route_after_node(state: AnalysisState) -> Literal["continue", "error"]:
    """
    Conditional router: check if error occurred, route accordingly.

    Returns:
        "error" if state has error, "continue" otherwise
    """
    if state.get("error"):
        return "error"
    return "continue"


# =============================================================================
# GRAPH BUILDER
# =============================================================================

def build_pipeline_graph() -> StateGraph:
    """
    Build the LangGraph workflow for one analysis run.

    Returns:
        Uncompiled StateGraph
    """
    workflow = StateGraph(AnalysisState)

    for name, node in PIPELINE_STEPS:
        workflow.add_node(name, node)
    workflow.add_node("handle_error", handle_error_node)

    # START → first step
    workflow.add_edge(START, PIPELINE_STEPS[0][0])

    # each step → next step OR handle_error; the last step → END
    for (name, _), (next_name, _) in zip(PIPELINE_STEPS, PIPELINE_STEPS[1:]):
        workflow.add_conditional_edges(
            name,
            route_after_node,
            {
                "continue": next_name,
                "error": "handle_error",
            },
        )

    workflow.add_conditional_edges(
        PIPELINE_STEPS[-1][0],
        route_after_node,
        {
            "continue": END,
            "error": "handle_error",
        },
    )

    # handle_error → END (terminal node)
    workflow.add_edge("handle_error", END)

    return workflow


def compile_pipeline_graph():
    """
    Build and compile the pipeline graph.

    Returns:
        Compiled graph ready for .invoke() or .stream()
    """
    return build_pipeline_graph().compile()


# =============================================================================
# GRAPH EXECUTION
# =============================================================================

# Compiled graph singleton (lazy initialization)
_compiled_graph = None


def get_compiled_graph():
    """
    Get or create the compiled graph singleton.

    Returns:
        Compiled StateGraph
    """
    global _compiled_graph
    if _compiled_graph is None:
        _compiled_graph = compile_pipeline_graph()
    return _compiled_graph


def run_pipeline(
    rows: list[dict] | None,
    request: AnalysisRequest | Mapping[str, Any] | None = None,
    progress_callback: Callable[[dict], None] | None = None,
) -> dict:
    """
    Run the complete analysis workflow.

    This is the main entry point for hosts.

    Args:
        rows: Row set to analyze (never modified)
        request: AnalysisRequest or its dict form
        progress_callback: Optional callback for progress updates

    Returns:
        Final AnalysisState dict with `payload` containing results or error

    Example:
        result = run_pipeline(
            rows,
            {"aggregation": {"group_by": ["region"],
                             "metrics": [{"column": "rev", "op": "sum"}]}},
        )

        if result["payload"]["is_error"]:
            log.error(result["payload"]["error_message"])
        else:
            render(result["payload"]["aggregation"])
    """
    initial_state = create_initial_state(
        rows=rows,
        request=request,
        progress_callback=progress_callback,
    )

    graph = get_compiled_graph()
    final_state = graph.invoke(initial_state)

    logger.debug("Pipeline finished at %s", final_state.get("current_node"))
    return final_state


def stream_pipeline(
    rows: list[dict] | None,
    request: AnalysisRequest | Mapping[str, Any] | None = None,
    progress_callback: Callable[[dict], None] | None = None,
) -> Iterator[tuple[str, dict]]:
    """
    Stream the analysis workflow, yielding state after each node.

    Args:
        rows: Row set to analyze
        request: AnalysisRequest or its dict form
        progress_callback: Optional callback for progress updates

    Yields:
        Tuple of (node_name, accumulated_state) after each node execution

    Example:
        for node_name, state in stream_pipeline(rows, request):
            print(f"Completed: {node_name} ({state['progress']:.0%})")
    """
    initial_state = create_initial_state(
        rows=rows,
        request=request,
        progress_callback=progress_callback,
    )

    graph = get_compiled_graph()
    accumulated_state = dict(initial_state)

    for event in graph.stream(initial_state):
        # event maps node_name to that node's state update
        for node_name, state_update in event.items():
            accumulated_state.update(state_update or {})
            yield node_name, accumulated_state


# =============================================================================
# GRAPH VISUALIZATION (Development Only)
# =============================================================================

def get_graph_mermaid() -> str:
    """
    Get Mermaid diagram representation of the graph.

    Returns:
        Mermaid diagram string
    """
    graph = get_compiled_graph()
    try:
        return graph.get_graph().draw_mermaid()
    except Exception:
        logger.debug("draw_mermaid unavailable; using static diagram", exc_info=True)
        lines = ["graph TD", f"    START --> {PIPELINE_STEPS[0][0]}"]
        for (name, _), (next_name, _) in zip(PIPELINE_STEPS, PIPELINE_STEPS[1:]):
            lines.append(f"    {name} -->|success| {next_name}")
        lines.append(f"    {PIPELINE_STEPS[-1][0]} -->|success| END")
        for name, _ in PIPELINE_STEPS:
            lines.append(f"    {name} -->|error| handle_error")
        lines.append("    handle_error --> END")
        return "\n".join(lines) + "\n"
