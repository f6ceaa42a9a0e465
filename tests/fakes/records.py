"""Builders for extraction records and provider payloads used across tests."""

from typing import Any, Dict, List, Optional, Union

from clinical_core.extraction.models import ExtractionRecord


def record_payload(
    age: Union[int, str] = "unknown",
    gender: str = "unknown",
    complaint: str = "unknown",
    symptoms: Optional[List[str]] = None,
    duration: str = "unknown",
    pain: Optional[int] = None,
    pain_characteristics: Optional[List[str]] = None,
    aggravating: Optional[List[str]] = None,
    contradictions: Optional[List[str]] = None,
    confidence: float = 0.9,
) -> Dict[str, Any]:
    """Provider-shaped extraction reply."""
    return {
        "demographics": {
            "patient_age_years": age,
            "patient_gender": gender,
            "confidence_demographic": confidence,
        },
        "clinical_presentation": {
            "chief_complaint": complaint,
            "primary_symptoms": symptoms,
            "anatomical_location": "unknown",
            "confidence_symptoms": confidence,
        },
        "symptom_characteristics": {
            "duration_description": duration,
            "pain_intensity_scale": pain,
            "pain_characteristics": pain_characteristics,
            "aggravating_factors": aggravating,
            "relieving_factors": None,
            "associated_symptoms": None,
            "temporal_pattern": "unknown",
            "confidence_context": confidence,
        },
        "medical_validation": {
            "anatomical_contradictions": contradictions or [],
            "logical_inconsistencies": [],
            "requires_clarification": [],
            "medical_alerts": [],
        },
    }


def make_record(**kwargs) -> ExtractionRecord:
    return ExtractionRecord.model_validate(record_payload(**kwargs))


def chest_pain_record(**overrides) -> ExtractionRecord:
    """42 y/o male, chest pain for 2 hours: 75% complete and compliant."""
    fields = dict(
        age=42,
        gender="male",
        complaint="chest pain",
        symptoms=["chest pain"],
        duration="2 hours",
    )
    fields.update(overrides)
    return make_record(**fields)
