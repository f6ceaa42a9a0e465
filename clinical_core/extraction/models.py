"""Pydantic schema for the accumulated clinical extraction record.

Providers return records in this shape (extra keys ignored). Unknown scalar
values use the ``"unknown"`` sentinel; list fields use ``None`` for "no data"
and ``[]`` for "confirmed empty".
"""

from datetime import datetime
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN = "unknown"

# Provider spellings seen in the wild for each normalised gender value
_GENDER_ALIASES = {
    "male": {"male", "m", "man", "masculino", "hombre", "masc"},
    "female": {"female", "f", "woman", "femenino", "mujer", "fem"},
}


def is_known(value: Any) -> bool:
    """Whether a field holds real data (not None, "unknown", blank, or an empty list)."""
    if value is None:
        return False
    if isinstance(value, str):
        stripped = value.strip().lower()
        return bool(stripped) and stripped != UNKNOWN
    if isinstance(value, list):
        return len(value) > 0
    return True


def _unknown_if_blank(value: Any) -> Any:
    if value is None:
        return UNKNOWN
    if isinstance(value, str) and not value.strip():
        return UNKNOWN
    return value


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Demographics(_Section):
    patient_age_years: Union[int, Literal["unknown"]] = UNKNOWN
    patient_gender: Literal["male", "female", "unknown"] = UNKNOWN
    confidence_demographic: float = 0.0

    @field_validator("patient_age_years", mode="before")
    @classmethod
    def normalize_age(cls, v: Any) -> Any:
        v = _unknown_if_blank(v)
        if isinstance(v, float):
            return int(v)
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.lstrip("-").isdigit():
                return int(stripped)
            return UNKNOWN
        return v

    @field_validator("patient_gender", mode="before")
    @classmethod
    def normalize_gender(cls, v: Any) -> str:
        if not isinstance(v, str):
            return UNKNOWN
        lowered = v.strip().lower()
        for gender, aliases in _GENDER_ALIASES.items():
            if lowered in aliases:
                return gender
        return UNKNOWN


class ClinicalPresentation(_Section):
    chief_complaint: str = UNKNOWN
    primary_symptoms: Optional[List[str]] = None
    anatomical_location: str = UNKNOWN
    confidence_symptoms: float = 0.0

    @field_validator("chief_complaint", "anatomical_location", mode="before")
    @classmethod
    def blank_to_unknown(cls, v: Any) -> Any:
        return _unknown_if_blank(v)


class SymptomCharacteristics(_Section):
    duration_description: str = UNKNOWN
    pain_intensity_scale: Optional[int] = None
    pain_characteristics: Optional[List[str]] = None
    aggravating_factors: Optional[List[str]] = None
    relieving_factors: Optional[List[str]] = None
    associated_symptoms: Optional[List[str]] = None
    temporal_pattern: str = UNKNOWN
    confidence_context: float = 0.0

    @field_validator("duration_description", "temporal_pattern", mode="before")
    @classmethod
    def blank_to_unknown(cls, v: Any) -> Any:
        return _unknown_if_blank(v)

    @field_validator("pain_intensity_scale", mode="before")
    @classmethod
    def normalize_pain_scale(cls, v: Any) -> Any:
        if isinstance(v, str):
            stripped = v.strip()
            return int(stripped) if stripped.isdigit() else None
        if isinstance(v, float):
            return int(round(v))
        return v


class MedicalValidation(_Section):
    anatomical_contradictions: List[str] = Field(default_factory=list)
    logical_inconsistencies: List[str] = Field(default_factory=list)
    requires_clarification: List[str] = Field(default_factory=list)
    medical_alerts: List[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class ExtractionMetadata(_Section):
    """Derived from the record; recomputed after every merge."""

    overall_completeness_percentage: int = Field(default=0, ge=0, le=100)
    demographic_complete: bool = False
    clinical_complete: bool = False
    context_complete: bool = False
    compliant: bool = False
    ready_to_escalate: bool = False
    missing_critical_fields: List[str] = Field(default_factory=list)
    iteration: int = 0
    extraction_timestamp: Optional[datetime] = None


class ExtractionRecord(_Section):
    demographics: Demographics = Field(default_factory=Demographics)
    clinical_presentation: ClinicalPresentation = Field(default_factory=ClinicalPresentation)
    symptom_characteristics: SymptomCharacteristics = Field(default_factory=SymptomCharacteristics)
    medical_validation: MedicalValidation = Field(default_factory=MedicalValidation)
    extraction_metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)


# Sections whose fields carry extracted data (metadata is derived, not merged)
DATA_SECTIONS = {
    "demographics": Demographics,
    "clinical_presentation": ClinicalPresentation,
    "symptom_characteristics": SymptomCharacteristics,
    "medical_validation": MedicalValidation,
}
