"""
SOAP note merging.

Each section has a strategy deciding whether and how new text is folded
into the current text:

- nothing yet            -> initialise (truncated)
- already contains text  -> unchanged
- current is placeholder -> replace with real text
- placeholder new text   -> only initialises an empty section
- otherwise              -> append under the section's update marker
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from clinical_core.core.session_store import PatientInfo, SOAPState

logger = logging.getLogger(__name__)

MAX_SECTION_LENGTH = 5000
TRUNCATION_MARKER = "\n\n[...truncated]"

BASE_PLACEHOLDERS = ["pending", "to be determined", "to be completed"]

UPDATE_MARKERS = {
    "subjective": "📝 UPDATE",
    "objective": "📊 UPDATE",
    "analysis": "🧠 DDx UPDATE",
    "plan": "📋 PLAN UPDATE",
}

SECTIONS = ("subjective", "objective", "analysis", "plan")


class SectionStrategy:
    """Update rules for one SOAP section."""

    def __init__(
        self,
        section: str,
        placeholders: Optional[List[str]] = None,
        max_length: int = MAX_SECTION_LENGTH,
    ):
        assert section in UPDATE_MARKERS, f"Unknown SOAP section: {section}"
        self.section = section
        self.placeholders = placeholders or list(BASE_PLACEHOLDERS)
        self.max_length = max_length

    def is_placeholder(self, text: str) -> bool:
        lowered = text.lower()
        return any(p in lowered for p in self.placeholders)

    def can_update(self, new: str, current: Optional[str] = None) -> bool:
        if not new or not new.strip():
            return False
        if self.is_placeholder(new):
            return not current
        return True

    def update(self, new: str, current: Optional[str] = None) -> str:
        if not current:
            return self.truncate(new)

        if new in current:
            return current

        if self.is_placeholder(current) and not self.is_placeholder(new):
            return self.truncate(new)

        marker = UPDATE_MARKERS[self.section]
        return self.truncate(f"{current}\n\n{marker}: {new}")

    def truncate(self, text: str) -> str:
        if len(text) <= self.max_length:
            return text
        logger.warning(
            f"SOAP section '{self.section}' truncated: {len(text)} > {self.max_length} chars"
        )
        return text[: self.max_length] + TRUNCATION_MARKER


def default_strategies(max_length: int = MAX_SECTION_LENGTH) -> Dict[str, SectionStrategy]:
    return {
        "subjective": SectionStrategy("subjective", max_length=max_length),
        "objective": SectionStrategy(
            "objective",
            BASE_PLACEHOLDERS + ["to be evaluated", "evaluation required", "exam required"],
            max_length,
        ),
        "analysis": SectionStrategy(
            "analysis",
            BASE_PLACEHOLDERS + ["clinical syndrome"],
            max_length,
        ),
        "plan": SectionStrategy(
            "plan",
            BASE_PLACEHOLDERS + ["requires completion"],
            max_length,
        ),
    }


class SOAPStateMerger:
    """Folds documentation output into a session's SOAP state."""

    def __init__(self, max_section_length: int = MAX_SECTION_LENGTH):
        self.strategies = default_strategies(max_section_length)

    def merge_section(self, state: SOAPState, section: str, new: Optional[str]) -> Tuple[SOAPState, bool]:
        """Apply one section update. Returns (new_state, changed)."""
        if new is None:
            return state, False
        strategy = self.strategies[section]
        current = getattr(state, section)
        if not strategy.can_update(new, current):
            return state, False
        updated = strategy.update(new, current)
        if updated == current:
            return state, False
        return replace(state, **{section: updated}), True

    def apply(
        self,
        state: SOAPState,
        documentation: Dict[str, Optional[str]],
        fallback_subjective: Optional[str] = None,
    ) -> Tuple[SOAPState, List[str]]:
        """
        Fold a documentation payload into all four sections.

        Args:
            state: Current SOAP state (not modified)
            documentation: Mapping with subjective/objective/assessment/plan text
            fallback_subjective: Used when the payload has no subjective text
                (typically the clinician's latest message)

        Returns:
            Tuple of (updated state, names of sections that changed)
        """
        incoming = {
            "subjective": documentation.get("subjective") or fallback_subjective,
            "objective": documentation.get("objective"),
            "analysis": documentation.get("assessment") or documentation.get("analysis"),
            "plan": documentation.get("plan"),
        }

        changed: List[str] = []
        for section in SECTIONS:
            state, did_change = self.merge_section(state, section, incoming[section])
            if did_change:
                changed.append(section)

        if changed:
            logger.debug(f"SOAP sections updated: {', '.join(changed)}")
        return state, changed

    def is_filled(self, state: SOAPState, section: str) -> bool:
        text = getattr(state, section)
        return bool(text) and not self.strategies[section].is_placeholder(text)

    def progress(self, state: SOAPState) -> int:
        """25 points per section holding real (non-placeholder) content."""
        return sum(25 for section in SECTIONS if self.is_filled(state, section))

    def identify_gaps(self, state: SOAPState, patient_info: PatientInfo) -> List[str]:
        """List note content still missing, in note order."""
        gaps: List[str] = []

        if not state.subjective or len(state.subjective) < 30:
            gaps.append("Detailed chief complaint")
            gaps.append("History of present illness (onset, course, aggravating/relieving factors)")
        if not patient_info.medical_history:
            gaps.append("Past medical history")
        if not patient_info.duration:
            gaps.append("Symptom duration")

        if not self.is_filled(state, "objective"):
            gaps.append("Complete vital signs (BP, HR, RR, temperature, SpO2)")
            gaps.append("Focused physical examination")

        if not self.is_filled(state, "analysis") and not gaps:
            gaps.append("Clinical analysis and differential diagnosis")

        if self.is_filled(state, "analysis") and not self.is_filled(state, "plan"):
            gaps.append("Treatment plan and follow-up")

        if patient_info.age is None:
            gaps.append("Patient age")
        if not patient_info.gender:
            gaps.append("Patient sex")

        return gaps
