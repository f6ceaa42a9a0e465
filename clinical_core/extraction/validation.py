"""Layered validation of the accumulated extraction record.

Four independent layers produce issues that are returned as data, never
raised: compliance fields, value ranges, completeness, iteration budget.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from clinical_core.extraction.completeness import (
    DEFAULT_CONFIRMATION_THRESHOLD,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_READY_THRESHOLD,
    CompletenessBreakdown,
    StopAction,
    score_breakdown,
)
from clinical_core.extraction.models import ExtractionRecord, is_known

LOW_CONFIDENCE = 0.7
MIN_AGE, MAX_AGE = 0, 150
MIN_PAIN, MAX_PAIN = 1, 10


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ValidationIssue:
    severity: Severity
    field: str
    message: str
    suggested_action: str


@dataclass
class ValidationResult:
    is_valid: bool
    confidence: float
    recommendation: StopAction
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def critical_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == Severity.CRITICAL)

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == Severity.WARNING)


# ============================================================================
# Layers
# ============================================================================


def check_compliance_fields(record: ExtractionRecord) -> List[ValidationIssue]:
    issues = []
    if not is_known(record.demographics.patient_age_years):
        issues.append(ValidationIssue(
            Severity.CRITICAL, "patient_age_years",
            "Patient age is required",
            "Ask the patient's age directly",
        ))
    if not is_known(record.demographics.patient_gender):
        issues.append(ValidationIssue(
            Severity.CRITICAL, "patient_gender",
            "Patient gender is required",
            "Confirm whether the patient is male or female",
        ))
    if not is_known(record.clinical_presentation.chief_complaint):
        issues.append(ValidationIssue(
            Severity.CRITICAL, "chief_complaint",
            "Chief complaint is required",
            "Identify the main symptom or problem",
        ))
    return issues


def check_value_ranges(record: ExtractionRecord) -> List[ValidationIssue]:
    issues = []
    age = record.demographics.patient_age_years
    if isinstance(age, int) and not MIN_AGE <= age <= MAX_AGE:
        issues.append(ValidationIssue(
            Severity.WARNING, "patient_age_years",
            f"Age out of range: {age}",
            "Verify the patient's age",
        ))

    pain = record.symptom_characteristics.pain_intensity_scale
    if pain is not None and not MIN_PAIN <= pain <= MAX_PAIN:
        issues.append(ValidationIssue(
            Severity.WARNING, "pain_intensity_scale",
            f"Pain scale out of range ({MIN_PAIN}-{MAX_PAIN}): {pain}",
            "Verify pain intensity on a 1-10 scale",
        ))

    confidences = [
        ("demographics", record.demographics.confidence_demographic, "Confirm age and gender"),
        ("clinical_presentation", record.clinical_presentation.confidence_symptoms,
         "Clarify the presenting symptoms"),
        ("symptom_characteristics", record.symptom_characteristics.confidence_context,
         "Clarify duration and character of symptoms"),
    ]
    for section, value, action in confidences:
        if value < LOW_CONFIDENCE:
            issues.append(ValidationIssue(
                Severity.WARNING, section,
                f"Low confidence in {section.replace('_', ' ')}: {round(value * 100)}%",
                action,
            ))
    return issues


def check_completeness(breakdown: CompletenessBreakdown) -> List[ValidationIssue]:
    issues = []
    total = breakdown.total_score
    if total < 30:
        issues.append(ValidationIssue(
            Severity.CRITICAL, "overall_completeness",
            f"Completeness very low: {total}%",
            "Gather more information from the patient",
        ))
    elif total < 60:
        issues.append(ValidationIssue(
            Severity.WARNING, "overall_completeness",
            f"Completeness insufficient: {total}%",
            "Ask about additional symptoms and context",
        ))

    if breakdown.demographic_score < 20:
        issues.append(ValidationIssue(
            Severity.WARNING, "demographics",
            "Demographic data incomplete",
            "Confirm age and gender",
        ))
    if breakdown.clinical_score < 15:
        issues.append(ValidationIssue(
            Severity.WARNING, "clinical_presentation",
            "Clinical presentation incomplete",
            "Ask for more detail about the symptoms",
        ))
    return issues


def check_iteration_budget(
    breakdown: CompletenessBreakdown, iteration: int, max_iterations: int
) -> List[ValidationIssue]:
    total = breakdown.total_score
    if iteration >= max_iterations:
        if total < 50:
            return [ValidationIssue(
                Severity.CRITICAL, "iteration_limit",
                f"Iteration limit reached with low completeness: {total}%",
                "Review manually and complete missing information",
            )]
        return [ValidationIssue(
            Severity.INFO, "iteration_limit",
            f"Iteration limit reached. Completeness: {total}%",
            "Proceed with the available data",
        )]
    if iteration >= max_iterations - 1:
        return [ValidationIssue(
            Severity.WARNING, "iteration_limit",
            f"Last iteration available. Current completeness: {total}%",
            "Focus on missing critical data",
        )]
    return []


# ============================================================================
# Aggregation
# ============================================================================


def validation_confidence(
    record: ExtractionRecord, breakdown: CompletenessBreakdown, issues: List[ValidationIssue]
) -> float:
    mean_field_confidence = (
        record.demographics.confidence_demographic
        + record.clinical_presentation.confidence_symptoms
        + record.symptom_characteristics.confidence_context
    ) / 3
    critical = sum(1 for i in issues if i.severity == Severity.CRITICAL)
    warnings = sum(1 for i in issues if i.severity == Severity.WARNING)

    value = (breakdown.total_score / 100 + mean_field_confidence) / 2
    value -= 0.3 * critical + 0.1 * warnings
    return round(max(0.1, min(1.0, value)), 2)


def determine_recommendation(
    breakdown: CompletenessBreakdown,
    issues: List[ValidationIssue],
    iteration: int,
    max_iterations: int,
    ready_threshold: int = DEFAULT_READY_THRESHOLD,
    confirmation_threshold: int = DEFAULT_CONFIRMATION_THRESHOLD,
) -> StopAction:
    """Same priority order as the stop-condition evaluator; any critical issue blocks escalation."""
    if iteration >= max_iterations:
        return StopAction.MANUAL_REVIEW

    blocked = breakdown.has_critical_issues or any(i.severity == Severity.CRITICAL for i in issues)
    if blocked:
        return StopAction.CONTINUE_EXTRACTION

    if breakdown.compliant and breakdown.total_score >= ready_threshold:
        return StopAction.PROCEED_TO_NEXT_STAGE

    if breakdown.compliant and breakdown.total_score >= confirmation_threshold:
        return StopAction.USER_CONFIRMATION

    return StopAction.CONTINUE_EXTRACTION


def validate_extraction(
    record: ExtractionRecord,
    iteration: int,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ready_threshold: int = DEFAULT_READY_THRESHOLD,
    confirmation_threshold: int = DEFAULT_CONFIRMATION_THRESHOLD,
) -> ValidationResult:
    """Run all four layers and derive confidence and a recommendation."""
    breakdown = score_breakdown(record, ready_threshold)

    issues: List[ValidationIssue] = []
    issues.extend(check_compliance_fields(record))
    issues.extend(check_value_ranges(record))
    issues.extend(check_completeness(breakdown))
    issues.extend(check_iteration_budget(breakdown, iteration, max_iterations))

    return ValidationResult(
        is_valid=not any(i.severity == Severity.CRITICAL for i in issues),
        confidence=validation_confidence(record, breakdown, issues),
        recommendation=determine_recommendation(
            breakdown, issues, iteration, max_iterations, ready_threshold, confirmation_threshold
        ),
        issues=issues,
    )
