"""Node factories for the turn pipeline.

Nodes need the decision engine and SOAP merger, which are not serializable,
so each node is built by a factory that closes over its dependencies.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from clinical_core.config import Settings
from clinical_core.core.session_store import (
    DiagnosticState,
    UrgencyAssessment,
    UrgencyLevel,
)
from clinical_core.engine.decision_engine import DecisionEngine, DecisionOptions, DecisionResponse
from clinical_core.engine.decisions import (
    DecisionKind,
    DiagnosisDecision,
    DocumentationDecision,
    TreatmentDecision,
    TriageDecision,
)
from clinical_core.extraction.accumulator import merge
from clinical_core.extraction.completeness import (
    StopAction,
    confirmation_prompt,
    evaluate_stop_condition,
    generate_follow_up_questions,
)
from clinical_core.extraction.models import ExtractionRecord, is_known
from clinical_core.extraction.validation import validate_extraction
from clinical_core.graph.state import TurnState
from clinical_core.soap.merger import SOAPStateMerger
from clinical_core.utils.logger import SessionLogger

logger = logging.getLogger(__name__)

ADULT_AGE_THRESHOLD = 18

# ESI acuity level -> urgency
ACUITY_URGENCY = {
    1: UrgencyLevel.CRITICAL,
    2: UrgencyLevel.HIGH,
    3: UrgencyLevel.MODERATE,
    4: UrgencyLevel.LOW,
    5: UrgencyLevel.LOW,
}


@dataclass
class PipelineConfig:
    max_iterations: int = 5
    ready_threshold: int = 80
    confirmation_threshold: int = 60
    planning_kinds: List[str] = field(
        default_factory=lambda: ["documentation", "diagnosis", "triage", "treatment"]
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        return cls(
            max_iterations=settings.max_iterations,
            ready_threshold=settings.ready_threshold,
            confirmation_threshold=settings.confirmation_threshold,
            planning_kinds=list(settings.planning_kinds),
        )


NodeFn = Callable[[TurnState], Any]


# ============================================================================
# Extraction
# ============================================================================


def build_extraction_request(state: TurnState, max_iterations: int) -> str:
    """Serialize the extraction request sent to providers as the user message."""
    existing = state.get("existing_record")
    request = {
        "free_text": state["text"],
        "existing_record": existing.model_dump(mode="json") if existing is not None else None,
        "iteration_number": state["iteration"],
        "max_iterations": max_iterations,
        "recent_context": state.get("recent_context", []),
    }
    return json.dumps(request, ensure_ascii=False)


def create_extract_node(engine: DecisionEngine, config: PipelineConfig) -> NodeFn:
    async def extract_node(state: TurnState) -> Dict[str, Any]:
        log = SessionLogger(state["session_id"], "extraction")
        response = await engine.decide(
            DecisionKind.EXTRACTION,
            build_extraction_request(state, config.max_iterations),
            DecisionOptions(cancel_event=state.get("cancel_event")),
        )

        existing = state.get("existing_record")
        if response.cancelled:
            log.info("Turn cancelled during extraction")
            return {"extraction": response, "record": existing, "cancelled": True}

        if not response.success:
            # Fallback payload is never merged; keep the accumulated record as is
            log.warning(f"Extraction failed, record unchanged: {response.error}")
            return {"extraction": response, "record": existing, "cancelled": False}

        record = merge(
            existing,
            response.decision.record,
            iteration=state["iteration"],
            ready_threshold=config.ready_threshold,
        )
        log.info(
            f"Extraction merged via '{response.provider}': "
            f"{record.extraction_metadata.overall_completeness_percentage}% complete"
        )
        return {"extraction": response, "record": record, "cancelled": False}

    return extract_node


# ============================================================================
# Evaluation
# ============================================================================


def create_evaluate_node(config: PipelineConfig) -> NodeFn:
    def evaluate_node(state: TurnState) -> Dict[str, Any]:
        log = SessionLogger(state["session_id"], "evaluation")
        record = state.get("record")
        if record is None:
            # No successful extraction yet: score an empty record
            record = ExtractionRecord()

        iteration = state["iteration"]
        validation = validate_extraction(
            record,
            iteration,
            config.max_iterations,
            config.ready_threshold,
            config.confirmation_threshold,
        )
        decision = evaluate_stop_condition(
            record,
            iteration,
            config.max_iterations,
            config.ready_threshold,
            config.confirmation_threshold,
            blocking_issue=validation.critical_count > 0,
        )

        if decision.action == StopAction.USER_CONFIRMATION and state.get("confirm"):
            decision = replace(
                decision,
                action=StopAction.PROCEED_TO_NEXT_STAGE,
                reason=f"Confirmed by clinician at {decision.score}% completeness",
            )

        if decision.action == StopAction.CONTINUE_EXTRACTION:
            questions = generate_follow_up_questions(record)
        elif decision.action == StopAction.USER_CONFIRMATION:
            questions = [confirmation_prompt(record)]
        else:
            questions = []

        if validation.recommendation != decision.action:
            log.debug(f"Validation recommended {validation.recommendation.value}")

        log.info(
            f"Stop decision: {decision.action.value} ({decision.reason}); "
            f"{validation.critical_count} critical / {validation.warning_count} warning issues"
        )
        return {
            "validation": validation,
            "stop_decision": decision,
            "follow_up_questions": questions,
        }

    return evaluate_node


def route_after_evaluation(state: TurnState) -> str:
    """Escalated turns go to planning; everything else ends the turn."""
    if state["stop_decision"].action == StopAction.PROCEED_TO_NEXT_STAGE:
        return "plan"
    return "end"


def route_after_extraction(state: TurnState) -> str:
    return "end" if state.get("cancelled") else "evaluate"


# ============================================================================
# Planning
# ============================================================================


def known_age(record: ExtractionRecord) -> Optional[int]:
    age = record.demographics.patient_age_years
    return age if is_known(age) else None


def urgency_from_triage(triage: TriageDecision, patient_age: Optional[int]) -> UrgencyAssessment:
    reasoning = "; ".join(triage.warning_signs) or None
    return UrgencyAssessment(
        level=ACUITY_URGENCY[triage.acuity_level],
        protocol=f"ESI {triage.acuity_level}: {triage.disposition} (physician: {triage.time_to_physician})",
        actions=list(triage.required_resources),
        pediatric_flag=patient_age is not None and patient_age < ADULT_AGE_THRESHOLD,
        reasoning=reasoning,
    )


def fold_diagnosis(state: DiagnosticState, diagnosis: DiagnosisDecision) -> DiagnosticState:
    return replace(
        state,
        differential_diagnosis=[d.condition for d in diagnosis.differentials],
        recommended_tests=list(diagnosis.tests_recommended),
        urgency_level=ACUITY_URGENCY[diagnosis.urgency_level].value,
    )


def fold_treatment(state: DiagnosticState, treatment: TreatmentDecision) -> DiagnosticState:
    plan = []
    for med in treatment.medications:
        details = " ".join(part for part in [med.dosage, med.frequency, med.duration] if part)
        plan.append(f"{med.drug} {details}".strip())
    plan.extend(treatment.procedures)
    plan.extend(treatment.lifestyle_modifications)
    return replace(state, treatment_plan=plan)


def create_plan_node(engine: DecisionEngine, merger: SOAPStateMerger, config: PipelineConfig) -> NodeFn:
    async def plan_node(state: TurnState) -> Dict[str, Any]:
        log = SessionLogger(state["session_id"], "planning")
        record = state["record"]
        request = json.dumps(
            {
                "clinical_record": record.model_dump(mode="json", exclude={"extraction_metadata"}),
                "latest_message": state["text"],
            },
            ensure_ascii=False,
        )
        options = DecisionOptions(cancel_event=state.get("cancel_event"))
        kinds = [DecisionKind(k) for k in config.planning_kinds]

        results = await asyncio.gather(
            *(engine.decide(kind, request, options) for kind in kinds),
            return_exceptions=True,
        )

        planning: Dict[str, DecisionResponse] = {}
        for kind, result in zip(kinds, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                log.error(f"❌ {kind.value} planning raised {type(result).__name__}: {result}")
                continue
            planning[kind.value] = result

        soap_state = state["soap_state"]
        diagnostic_state = state["diagnostic_state"]
        urgency = None
        soap_changed: List[str] = []

        for kind_name, response in planning.items():
            if not response.success:
                log.warning(f"{kind_name} planning fell back: {response.error}")
                continue
            payload = response.decision
            if isinstance(payload, DocumentationDecision):
                soap_state, soap_changed = merger.apply(
                    soap_state, payload.soap.model_dump(), fallback_subjective=state["text"]
                )
            elif isinstance(payload, DiagnosisDecision):
                diagnostic_state = fold_diagnosis(diagnostic_state, payload)
            elif isinstance(payload, TreatmentDecision):
                diagnostic_state = fold_treatment(diagnostic_state, payload)
            elif isinstance(payload, TriageDecision):
                urgency = urgency_from_triage(payload, known_age(record))

        log.info(
            f"Planning complete: {sum(r.success for r in planning.values())}/{len(kinds)} "
            f"kinds succeeded, SOAP sections updated: {soap_changed or 'none'}"
        )
        return {
            "planning": planning,
            "soap_state": soap_state,
            "diagnostic_state": diagnostic_state,
            "urgency": urgency,
            "soap_changed": soap_changed,
        }

    return plan_node
