"""
Decision kinds and their payload models.

Every kind has a pydantic payload model tagged with a ``kind`` literal; the
models are joined into one discriminated union so consumers can match on the
concrete type. Each kind also has a deterministic fallback payload and a
completeness-based confidence heuristic (0-100).
"""

from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from clinical_core.extraction.completeness import score_breakdown
from clinical_core.extraction.models import DATA_SECTIONS, ExtractionRecord

HUMAN_REVIEW = "requires human review"


class DecisionKind(str, Enum):
    EXTRACTION = "extraction"
    DIAGNOSIS = "diagnosis"
    TRIAGE = "triage"
    VALIDATION = "validation"
    TREATMENT = "treatment"
    DOCUMENTATION = "documentation"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ============================================================================
# Payload models
# ============================================================================


class ExtractionDecision(_Payload):
    kind: Literal["extraction"] = "extraction"
    record: ExtractionRecord

    @model_validator(mode="before")
    @classmethod
    def require_record_sections(cls, data: Any) -> Any:
        # An object with none of the record's sections is not an extraction
        record = data.get("record") if isinstance(data, dict) else None
        if isinstance(record, dict) and not any(section in record for section in DATA_SECTIONS):
            raise ValueError("Extraction reply contains no record sections")
        return data


class Differential(_Payload):
    condition: str
    icd10: Optional[str] = None
    probability: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)


class DiagnosisDecision(_Payload):
    kind: Literal["diagnosis"] = "diagnosis"
    differentials: List[Differential]
    tests_recommended: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    urgency_level: int = Field(ge=1, le=5)
    next_steps: List[str] = Field(default_factory=list)


class TriageDecision(_Payload):
    kind: Literal["triage"] = "triage"
    acuity_level: int = Field(ge=1, le=5)
    disposition: Literal["immediate", "urgent", "semi_urgent", "standard", "non_urgent"]
    time_to_physician: Literal["immediate", "15min", "1hour", "2hours", "routine"] = "routine"
    required_resources: List[str] = Field(default_factory=list)
    warning_signs: List[str] = Field(default_factory=list)


class RiskAssessment(_Payload):
    level: Literal["low", "moderate", "high", "critical"]
    factors: List[str] = Field(default_factory=list)


class ValidationDecision(_Payload):
    kind: Literal["validation"] = "validation"
    valid: bool
    concerns: List[str] = Field(default_factory=list)
    risk_assessment: RiskAssessment
    requires_human_review: bool = False
    recommendations: List[str] = Field(default_factory=list)


class Medication(_Payload):
    drug: str
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    contraindications: List[str] = Field(default_factory=list)


class TreatmentDecision(_Payload):
    kind: Literal["treatment"] = "treatment"
    medications: List[Medication]
    procedures: List[str] = Field(default_factory=list)
    lifestyle_modifications: List[str] = Field(default_factory=list)
    monitoring_plan: List[str] = Field(default_factory=list)


class SoapNote(_Payload):
    subjective: str = Field(min_length=1)
    objective: str = Field(min_length=1)
    assessment: str = Field(min_length=1)
    plan: str = Field(min_length=1)


class DocumentationDecision(_Payload):
    kind: Literal["documentation"] = "documentation"
    soap: SoapNote
    icd10_codes: List[str] = Field(default_factory=list)
    billing_codes: List[str] = Field(default_factory=list)
    follow_up_required: bool = False


DecisionPayload = Annotated[
    Union[
        ExtractionDecision,
        DiagnosisDecision,
        TriageDecision,
        ValidationDecision,
        TreatmentDecision,
        DocumentationDecision,
    ],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER = TypeAdapter(DecisionPayload)


def parse_payload(kind: DecisionKind, data: Dict[str, Any]) -> DecisionPayload:
    """Validate a parsed provider reply as the payload for ``kind``.

    Providers answer an extraction request with the bare record; every other
    kind is answered with the payload fields directly.

    Raises:
        pydantic.ValidationError: If the reply does not match the kind's model
    """
    if kind == DecisionKind.EXTRACTION:
        return _PAYLOAD_ADAPTER.validate_python({"kind": kind.value, "record": data})
    return _PAYLOAD_ADAPTER.validate_python({**data, "kind": kind.value})


# ============================================================================
# Fallbacks
# ============================================================================


def fallback_decision(kind: DecisionKind) -> DecisionPayload:
    """Deterministic payload used when every provider is exhausted."""
    if kind == DecisionKind.EXTRACTION:
        record = ExtractionRecord.model_validate({
            "medical_validation": {"medical_alerts": [f"Extraction unavailable - {HUMAN_REVIEW}"]},
        })
        return ExtractionDecision(record=record)

    if kind == DecisionKind.DIAGNOSIS:
        return DiagnosisDecision(
            differentials=[Differential(
                condition=f"Unable to determine - {HUMAN_REVIEW}",
                probability=1.0,
                evidence=["System error - fallback response"],
            )],
            tests_recommended=["Complete clinical evaluation"],
            red_flags=["System unable to process - immediate human review required"],
            urgency_level=2,
            next_steps=["Immediate physician consultation required"],
        )

    if kind == DecisionKind.TRIAGE:
        return TriageDecision(
            acuity_level=2,
            disposition="urgent",
            time_to_physician="15min",
            required_resources=["physician evaluation"],
            warning_signs=[f"System error - {HUMAN_REVIEW}"],
        )

    if kind == DecisionKind.VALIDATION:
        return ValidationDecision(
            valid=False,
            concerns=[f"System unable to validate - {HUMAN_REVIEW}"],
            risk_assessment=RiskAssessment(
                level="high", factors=["System error", "Unable to process decision"]
            ),
            requires_human_review=True,
            recommendations=["Immediate human validation required"],
        )

    if kind == DecisionKind.TREATMENT:
        return TreatmentDecision(
            medications=[],
            lifestyle_modifications=["Consult with physician for treatment plan"],
            monitoring_plan=["Immediate physician consultation required"],
        )

    if kind == DecisionKind.DOCUMENTATION:
        return DocumentationDecision(
            soap=SoapNote(
                subjective="System error - unable to process",
                objective="Documentation requires human input",
                assessment=f"System fallback - {HUMAN_REVIEW}",
                plan="Complete documentation with physician oversight",
            ),
            follow_up_required=True,
        )

    raise ValueError(f"Unknown decision kind: {kind}")


# ============================================================================
# Confidence heuristics
# ============================================================================

BASE_CONFIDENCE = 50
# Every payload that validated has its kind's required fields
REQUIRED_FIELDS_BONUS = 10


def _extraction_confidence(payload: ExtractionDecision) -> int:
    breakdown = score_breakdown(payload.record)
    bonus = 10 if breakdown.compliant else 0
    return BASE_CONFIDENCE + round(breakdown.total_score * 0.3) + bonus


def _diagnosis_confidence(payload: DiagnosisDecision) -> int:
    score = BASE_CONFIDENCE
    if payload.differentials:
        score += 20
    if payload.tests_recommended:
        score += 10
    if payload.next_steps:
        score += 10
    return score


def _triage_confidence(payload: TriageDecision) -> int:
    score = BASE_CONFIDENCE
    if payload.required_resources:
        score += 20
    if payload.warning_signs:
        score += 10
    return score


def _validation_confidence(payload: ValidationDecision) -> int:
    score = BASE_CONFIDENCE
    if payload.risk_assessment.factors:
        score += 20
    if payload.recommendations:
        score += 10
    return score


def _treatment_confidence(payload: TreatmentDecision) -> int:
    score = BASE_CONFIDENCE
    if payload.medications or payload.procedures:
        score += 20
    if payload.monitoring_plan:
        score += 10
    if payload.lifestyle_modifications:
        score += 10
    return score


def _documentation_confidence(payload: DocumentationDecision) -> int:
    score = BASE_CONFIDENCE + 20
    if payload.icd10_codes:
        score += 10
    return score


_CONFIDENCE: Dict[str, Callable[[Any], int]] = {
    DecisionKind.EXTRACTION.value: _extraction_confidence,
    DecisionKind.DIAGNOSIS.value: _diagnosis_confidence,
    DecisionKind.TRIAGE.value: _triage_confidence,
    DecisionKind.VALIDATION.value: _validation_confidence,
    DecisionKind.TREATMENT.value: _treatment_confidence,
    DecisionKind.DOCUMENTATION.value: _documentation_confidence,
}


def confidence_score(payload: DecisionPayload) -> int:
    """Payload completeness heuristic, clamped to [0, 100]."""
    score = _CONFIDENCE[payload.kind](payload) + REQUIRED_FIELDS_BONUS
    return max(0, min(100, score))
