"""Pydantic models for the session boundary API and HTTP requests/responses."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from clinical_core.core.session_store import (
    ActionEvent,
    ConversationMessage,
    DiagnosticState,
    PatientInfo,
    Phase,
    SOAPState,
    UrgencyAssessment,
)
from clinical_core.engine.decision_engine import DecisionResponse
from clinical_core.extraction.completeness import StopDecision
from clinical_core.extraction.models import ExtractionRecord
from clinical_core.extraction.validation import ValidationResult


class TurnRequest(BaseModel):
    """Request model for submitting a clinician turn."""

    text: str = Field(..., min_length=1, description="Clinician message")
    confirm: bool = Field(default=False, description="Confirm a borderline record and escalate")


class TurnResult(BaseModel):
    """Outcome of one turn."""

    session_id: str
    iteration: int
    record: Optional[ExtractionRecord] = Field(default=None, description="Accumulated extraction record")
    stop_decision: Optional[StopDecision] = None
    follow_up_questions: List[str] = Field(default_factory=list)
    validation: Optional[ValidationResult] = None
    urgency: Optional[UrgencyAssessment] = None
    soap_state: SOAPState = Field(default_factory=SOAPState)
    assistant_message: str = ""
    extraction_succeeded: bool = False
    cancelled: bool = False
    planning: Dict[str, DecisionResponse] = Field(
        default_factory=dict, description="Planning responses by decision kind"
    )


class SessionSnapshot(BaseModel):
    """Read-only view of a session."""

    session_id: str
    phase: Phase
    iteration: int
    completeness: int
    soap_progress: int
    messages: List[ConversationMessage]
    patient_info: PatientInfo
    diagnostic_state: DiagnosticState
    soap_state: SOAPState
    urgency_assessment: Optional[UrgencyAssessment] = None
    record: Optional[ExtractionRecord] = None
    action_count: int = 0
    recent_actions: List[ActionEvent] = Field(default_factory=list)
    soap_gaps: List[str] = Field(default_factory=list)


class StatsResponse(BaseModel):
    total: int
    active: int
    idle: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str = "0.1.0"
    providers: Dict[str, Dict] = Field(default_factory=dict)
    circuits: Dict[str, Dict] = Field(default_factory=dict)
