"""State definition for the per-turn pipeline graph."""

import asyncio
from typing import Dict, List, Optional, TypedDict

from clinical_core.core.session_store import DiagnosticState, SOAPState, UrgencyAssessment
from clinical_core.engine.decision_engine import DecisionResponse
from clinical_core.extraction.completeness import StopDecision
from clinical_core.extraction.models import ExtractionRecord
from clinical_core.extraction.validation import ValidationResult


class TurnState(TypedDict, total=False):
    """State for one turn through the pipeline.

    Holds live objects (cancel event, pydantic models), so the graph is
    compiled without a checkpointer; the session store owns persistence.

    Attributes:
        session_id: Conversation identifier
        text: Clinician's message for this turn
        confirm: Caller confirmed a borderline record
        cancel_event: Request-wide cancellation signal
        existing_record: Accumulated record before this turn
        iteration: Extraction iteration number for this turn
        recent_context: Last few conversation messages ("role: text")
        soap_state / diagnostic_state: Session state the planning stage folds into
        extraction: Gateway response for the extraction request
        record: Accumulated record after this turn
        validation / stop_decision / follow_up_questions: Evaluation output
        cancelled: Turn aborted by the cancel signal
        planning: Gateway responses per planning kind
        urgency: Urgency assessment derived from triage
        soap_changed: SOAP sections updated this turn
    """

    session_id: str
    text: str
    confirm: bool
    cancel_event: Optional[asyncio.Event]
    existing_record: Optional[ExtractionRecord]
    iteration: int
    recent_context: List[str]
    soap_state: SOAPState
    diagnostic_state: DiagnosticState

    extraction: DecisionResponse
    record: Optional[ExtractionRecord]
    validation: ValidationResult
    stop_decision: StopDecision
    follow_up_questions: List[str]
    cancelled: bool

    planning: Dict[str, DecisionResponse]
    urgency: Optional[UrgencyAssessment]
    soap_changed: List[str]
