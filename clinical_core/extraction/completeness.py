"""
Completeness scoring and stop-condition evaluation for extraction records.

Scoring (0-100):
    demographics  40  (age 20, gender 20)
    clinical      30  (chief complaint 15, non-empty symptom list 15)
    context       30  (six indicators, 5 points each)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from clinical_core.extraction.models import ExtractionMetadata, ExtractionRecord, is_known

logger = logging.getLogger(__name__)

DEFAULT_READY_THRESHOLD = 80
DEFAULT_CONFIRMATION_THRESHOLD = 60
DEFAULT_MAX_ITERATIONS = 5

DEMOGRAPHIC_WEIGHT = 40
CLINICAL_WEIGHT = 30
CONTEXT_WEIGHT = 30

COMPLIANCE_FIELDS = ["patient_age_years", "patient_gender", "chief_complaint"]

FOLLOW_UP_QUESTIONS = {
    "patient_age_years": "How old is the patient?",
    "patient_gender": "Is the patient male or female?",
    "chief_complaint": "What is the main reason for the consultation?",
    "duration_description": "How long has the patient had these symptoms?",
    "pain_intensity_scale": "On a scale from 1 to 10, how intense is the pain?",
}
MAX_FOLLOW_UP_QUESTIONS = 3


class StopAction(str, Enum):
    CONTINUE_EXTRACTION = "continue_extraction"
    USER_CONFIRMATION = "user_confirmation"
    PROCEED_TO_NEXT_STAGE = "proceed_to_next_stage"
    MANUAL_REVIEW = "manual_review"


@dataclass
class CompletenessBreakdown:
    demographic_score: int
    clinical_score: int
    context_score: int
    total_score: int
    context_fields_present: int
    missing_fields: List[str] = field(default_factory=list)
    compliant: bool = False
    has_critical_issues: bool = False
    ready_to_escalate: bool = False


@dataclass
class StopDecision:
    action: StopAction
    reason: str
    score: int
    compliant: bool
    iteration: int
    max_iterations: int


def _context_indicators(record: ExtractionRecord) -> List[bool]:
    ctx = record.symptom_characteristics
    return [
        is_known(ctx.duration_description),
        ctx.pain_intensity_scale is not None,
        is_known(ctx.pain_characteristics),
        is_known(ctx.aggravating_factors),
        is_known(ctx.relieving_factors),
        is_known(ctx.temporal_pattern),
    ]


def is_compliant(record: ExtractionRecord) -> bool:
    """Age, gender and chief complaint are all known."""
    return (
        is_known(record.demographics.patient_age_years)
        and is_known(record.demographics.patient_gender)
        and is_known(record.clinical_presentation.chief_complaint)
    )


def has_critical_issues(record: ExtractionRecord) -> bool:
    """Unresolved anatomical contradictions or logical inconsistencies."""
    validation = record.medical_validation
    return bool(validation.anatomical_contradictions or validation.logical_inconsistencies)


def missing_fields(record: ExtractionRecord) -> List[str]:
    demo = record.demographics
    clinical = record.clinical_presentation
    ctx = record.symptom_characteristics

    missing = []
    if not is_known(demo.patient_age_years):
        missing.append("patient_age_years")
    if not is_known(demo.patient_gender):
        missing.append("patient_gender")
    if not is_known(clinical.chief_complaint):
        missing.append("chief_complaint")
    if not is_known(clinical.primary_symptoms):
        missing.append("primary_symptoms")
    if not is_known(ctx.duration_description):
        missing.append("duration_description")
    if ctx.pain_intensity_scale is None:
        missing.append("pain_intensity_scale")
    return missing


def score_breakdown(
    record: ExtractionRecord,
    ready_threshold: int = DEFAULT_READY_THRESHOLD,
) -> CompletenessBreakdown:
    """Weighted completeness with per-section scores and readiness flags."""
    demo = record.demographics
    clinical = record.clinical_presentation

    demographic_score = 0
    if is_known(demo.patient_age_years):
        demographic_score += DEMOGRAPHIC_WEIGHT // 2
    if is_known(demo.patient_gender):
        demographic_score += DEMOGRAPHIC_WEIGHT // 2

    clinical_score = 0
    if is_known(clinical.chief_complaint):
        clinical_score += CLINICAL_WEIGHT // 2
    if is_known(clinical.primary_symptoms):
        clinical_score += CLINICAL_WEIGHT // 2

    indicators = _context_indicators(record)
    present = sum(indicators)
    raw_context = present / len(indicators) * CONTEXT_WEIGHT

    total = round(demographic_score + clinical_score + raw_context)
    total = max(0, min(100, total))

    compliant = is_compliant(record)
    critical = has_critical_issues(record)

    return CompletenessBreakdown(
        demographic_score=demographic_score,
        clinical_score=clinical_score,
        context_score=round(raw_context),
        total_score=total,
        context_fields_present=present,
        missing_fields=missing_fields(record),
        compliant=compliant,
        has_critical_issues=critical,
        ready_to_escalate=compliant and total >= ready_threshold and not critical,
    )


def score(record: ExtractionRecord) -> int:
    return score_breakdown(record).total_score


def recompute_metadata(
    record: ExtractionRecord,
    iteration: int,
    timestamp: Optional[datetime],
    ready_threshold: int = DEFAULT_READY_THRESHOLD,
) -> ExtractionMetadata:
    """Derive the metadata block from the record's data sections."""
    breakdown = score_breakdown(record, ready_threshold)
    return ExtractionMetadata(
        overall_completeness_percentage=breakdown.total_score,
        demographic_complete=breakdown.demographic_score == DEMOGRAPHIC_WEIGHT,
        clinical_complete=breakdown.clinical_score == CLINICAL_WEIGHT,
        context_complete=breakdown.context_fields_present >= 2,
        compliant=breakdown.compliant,
        ready_to_escalate=breakdown.ready_to_escalate,
        missing_critical_fields=breakdown.missing_fields,
        iteration=iteration,
        extraction_timestamp=timestamp,
    )


def evaluate_stop_condition(
    record: ExtractionRecord,
    iteration: int,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ready_threshold: int = DEFAULT_READY_THRESHOLD,
    confirmation_threshold: int = DEFAULT_CONFIRMATION_THRESHOLD,
    blocking_issue: bool = False,
) -> StopDecision:
    """Decide the next step of the extraction loop. First matching rule wins.

    Args:
        record: Accumulated extraction record
        iteration: Number of extraction iterations completed so far
        max_iterations: Iteration budget
        ready_threshold: Minimum completeness to escalate
        confirmation_threshold: Minimum completeness to ask for confirmation
        blocking_issue: Extra blocker on top of the record's own critical
            issues; the evaluate node passes whether validation found one

    Returns:
        StopDecision with the chosen action and a human-readable reason
    """
    breakdown = score_breakdown(record, ready_threshold)
    total = breakdown.total_score
    compliant = breakdown.compliant
    blocked = breakdown.has_critical_issues or blocking_issue

    def decide(action: StopAction, reason: str) -> StopDecision:
        return StopDecision(action, reason, total, compliant, iteration, max_iterations)

    if iteration >= max_iterations:
        return decide(
            StopAction.MANUAL_REVIEW,
            f"Maximum iterations reached ({max_iterations})",
        )

    if total >= ready_threshold and compliant and not blocked:
        return decide(
            StopAction.PROCEED_TO_NEXT_STAGE,
            f"Ready to escalate: {total}% complete and compliant",
        )

    if compliant and total >= confirmation_threshold:
        return decide(
            StopAction.USER_CONFIRMATION,
            f"Borderline completeness ({total}%), confirmation required",
        )

    missing_compliance = [f for f in breakdown.missing_fields if f in COMPLIANCE_FIELDS]
    if missing_compliance:
        return decide(
            StopAction.CONTINUE_EXTRACTION,
            f"Missing compliance fields: {', '.join(missing_compliance)}",
        )

    return decide(
        StopAction.CONTINUE_EXTRACTION,
        f"Completeness below threshold: {total}% < {ready_threshold}%",
    )


def generate_follow_up_questions(record: ExtractionRecord) -> List[str]:
    """Questions for missing fields, compliance fields first, at most three."""
    missing = set(missing_fields(record))
    questions = [
        question for field_name, question in FOLLOW_UP_QUESTIONS.items()
        if field_name in missing
    ]
    return questions[:MAX_FOLLOW_UP_QUESTIONS]


def confirmation_prompt(record: ExtractionRecord) -> str:
    demo = record.demographics
    clinical = record.clinical_presentation
    breakdown = score_breakdown(record)
    return (
        f"Please confirm: {demo.patient_age_years}-year-old {demo.patient_gender} "
        f"presenting with {clinical.chief_complaint} "
        f"({breakdown.total_score}% complete). Proceed with clinical planning?"
    )
