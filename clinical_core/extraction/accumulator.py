"""
Accumulates partial extraction records across turns.

Every data field has an explicit merge rule in ``MERGE_RULES``; a field added
to the schema without a rule fails at import time. Metadata is never merged,
it is recomputed from the merged data.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from clinical_core.extraction.completeness import DEFAULT_READY_THRESHOLD, recompute_metadata
from clinical_core.extraction.models import DATA_SECTIONS, ExtractionRecord, is_known

logger = logging.getLogger(__name__)

MergeRule = Callable[[Any, Any], Any]


def keep_known(existing: Any, incoming: Any) -> Any:
    """Incoming replaces existing only when it carries a known value."""
    return incoming if is_known(incoming) else existing


def max_confidence(existing: float, incoming: float) -> float:
    return max(existing or 0.0, incoming or 0.0)


def union_list(existing: Optional[List[str]], incoming: Optional[List[str]]) -> Optional[List[str]]:
    """Case-insensitive de-duplicated union; first spelling wins.

    None + None stays None so "no data" is distinguishable from "confirmed empty".
    """
    if existing is None and incoming is None:
        return None
    merged: List[str] = []
    seen = set()
    for item in (existing or []) + (incoming or []):
        key = item.strip().lower()
        if key and key not in seen:
            seen.add(key)
            merged.append(item.strip())
    return merged


def latest_view(existing: List[str], incoming: List[str]) -> List[str]:
    """Provider's current view replaces the old one so issues can be resolved."""
    return list(incoming)


MERGE_RULES: Dict[Tuple[str, str], MergeRule] = {
    ("demographics", "patient_age_years"): keep_known,
    ("demographics", "patient_gender"): keep_known,
    ("demographics", "confidence_demographic"): max_confidence,
    ("clinical_presentation", "chief_complaint"): keep_known,
    ("clinical_presentation", "primary_symptoms"): union_list,
    ("clinical_presentation", "anatomical_location"): keep_known,
    ("clinical_presentation", "confidence_symptoms"): max_confidence,
    ("symptom_characteristics", "duration_description"): keep_known,
    ("symptom_characteristics", "pain_intensity_scale"): keep_known,
    ("symptom_characteristics", "pain_characteristics"): union_list,
    ("symptom_characteristics", "aggravating_factors"): union_list,
    ("symptom_characteristics", "relieving_factors"): union_list,
    ("symptom_characteristics", "associated_symptoms"): union_list,
    ("symptom_characteristics", "temporal_pattern"): keep_known,
    ("symptom_characteristics", "confidence_context"): max_confidence,
    ("medical_validation", "anatomical_contradictions"): latest_view,
    ("medical_validation", "logical_inconsistencies"): latest_view,
    ("medical_validation", "requires_clarification"): union_list,
    ("medical_validation", "medical_alerts"): union_list,
}


def _check_merge_rules() -> None:
    declared = set(MERGE_RULES)
    expected = {
        (section, field_name)
        for section, model in DATA_SECTIONS.items()
        for field_name in model.model_fields
    }
    missing = expected - declared
    unknown = declared - expected
    assert not missing, f"Extraction fields without a merge rule: {sorted(missing)}"
    assert not unknown, f"Merge rules for unknown fields: {sorted(unknown)}"


_check_merge_rules()


def merge(
    existing: Optional[ExtractionRecord],
    incoming: ExtractionRecord,
    iteration: Optional[int] = None,
    ready_threshold: int = DEFAULT_READY_THRESHOLD,
) -> ExtractionRecord:
    """
    Merge an incoming partial extraction into the accumulated record.

    Args:
        existing: Accumulated record, or None on the first turn
        incoming: Record returned by the provider for this turn
        iteration: Iteration number to stamp into metadata
            (default: the larger of the two records' iterations)
        ready_threshold: Completeness required for ``ready_to_escalate``

    Returns:
        New record with recomputed metadata. Inputs are not modified.
    """
    if existing is None:
        base = incoming.model_copy(deep=True)
        # Lists get the same clean-up a later union would apply
        for (section, field_name), rule in MERGE_RULES.items():
            if rule is union_list:
                part = getattr(base, section)
                setattr(part, field_name, union_list(None, getattr(part, field_name)))
        meta_iteration = incoming.extraction_metadata.iteration if iteration is None else iteration
        base.extraction_metadata = recompute_metadata(
            base, meta_iteration, incoming.extraction_metadata.extraction_timestamp, ready_threshold
        )
        return base

    sections: Dict[str, Dict[str, Any]] = {}
    for section, model in DATA_SECTIONS.items():
        old = getattr(existing, section)
        new = getattr(incoming, section)
        sections[section] = {
            field_name: MERGE_RULES[(section, field_name)](
                getattr(old, field_name), getattr(new, field_name)
            )
            for field_name in model.model_fields
        }

    merged = ExtractionRecord.model_validate(sections)

    if iteration is None:
        iteration = max(
            existing.extraction_metadata.iteration, incoming.extraction_metadata.iteration
        )
    timestamp = (
        incoming.extraction_metadata.extraction_timestamp
        or existing.extraction_metadata.extraction_timestamp
    )
    merged.extraction_metadata = recompute_metadata(merged, iteration, timestamp, ready_threshold)

    before = existing.extraction_metadata.overall_completeness_percentage
    after = merged.extraction_metadata.overall_completeness_percentage
    logger.debug(f"Merged extraction: completeness {before}% -> {after}% (iteration {iteration})")
    return merged
