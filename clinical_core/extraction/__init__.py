"""
Extraction record handling.

Flow per turn: provider record -> merge() into the accumulated record ->
score_breakdown() / evaluate_stop_condition() -> validate_extraction().
"""

from clinical_core.extraction.accumulator import merge
from clinical_core.extraction.completeness import (
    StopAction,
    StopDecision,
    evaluate_stop_condition,
    generate_follow_up_questions,
    score,
    score_breakdown,
)
from clinical_core.extraction.models import UNKNOWN, ExtractionRecord, is_known
from clinical_core.extraction.validation import ValidationResult, validate_extraction

__all__ = [
    "merge",
    "StopAction",
    "StopDecision",
    "evaluate_stop_condition",
    "generate_follow_up_questions",
    "score",
    "score_breakdown",
    "UNKNOWN",
    "ExtractionRecord",
    "is_known",
    "ValidationResult",
    "validate_extraction",
]
