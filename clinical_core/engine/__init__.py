"""Provider gateway and decision payloads."""

from clinical_core.engine.decision_engine import (
    DecisionEngine,
    DecisionOptions,
    DecisionResponse,
    EngineConfig,
)
from clinical_core.engine.decisions import DecisionKind, fallback_decision, parse_payload

__all__ = [
    "DecisionEngine",
    "DecisionOptions",
    "DecisionResponse",
    "EngineConfig",
    "DecisionKind",
    "fallback_decision",
    "parse_payload",
]
