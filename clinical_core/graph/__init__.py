"""Per-turn pipeline graph."""

from clinical_core.graph.builder import build_turn_graph
from clinical_core.graph.nodes import PipelineConfig

__all__ = ["build_turn_graph", "PipelineConfig"]
