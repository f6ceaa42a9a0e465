"""LangGraph builder for the per-turn pipeline.

This module ONLY assembles the graph - node logic lives in ``nodes.py``.

    START -> extract -> (cancelled?) -> evaluate -> (escalate?) -> plan -> END
"""

import logging

from langgraph.graph import END, START, StateGraph

from clinical_core.engine.decision_engine import DecisionEngine
from clinical_core.graph.nodes import (
    PipelineConfig,
    create_evaluate_node,
    create_extract_node,
    create_plan_node,
    route_after_evaluation,
    route_after_extraction,
)
from clinical_core.graph.state import TurnState
from clinical_core.soap.merger import SOAPStateMerger

logger = logging.getLogger(__name__)


def build_turn_graph(
    engine: DecisionEngine,
    merger: SOAPStateMerger,
    config: PipelineConfig,
):
    """Build and compile the turn pipeline graph.

    Args:
        engine: Decision engine used for extraction and planning requests (required)
        merger: SOAP merger folding documentation output (required)
        config: Iteration budget, thresholds and planning kinds

    Returns:
        Compiled LangGraph ready for ``ainvoke``
    """
    assert engine is not None, "engine is required"
    assert merger is not None, "merger is required"

    builder = StateGraph(TurnState)

    builder.add_node("extract", create_extract_node(engine, config))
    builder.add_node("evaluate", create_evaluate_node(config))
    builder.add_node("plan", create_plan_node(engine, merger, config))

    builder.add_edge(START, "extract")
    builder.add_conditional_edges(
        "extract",
        route_after_extraction,
        {"evaluate": "evaluate", "end": END},
    )
    builder.add_conditional_edges(
        "evaluate",
        route_after_evaluation,
        {"plan": "plan", "end": END},
    )
    builder.add_edge("plan", END)

    # No checkpointer: state carries live objects and sessions persist in the store
    graph = builder.compile()

    logger.info("✅ Turn pipeline graph compiled")
    return graph
