"""
Session boundary API.

``ConversationOrchestrator`` runs one clinician turn end to end:

1. fetch or create the session (refreshes its TTL)
2. run the turn pipeline graph (extract -> evaluate -> optional plan)
3. fold the results into the session and its action history
4. write the session back to the store

Turns on the same session id are serialized with a per-session lock;
different sessions run concurrently.
"""

import asyncio
import logging
import weakref
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from clinical_core.config import Settings
from clinical_core.core.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from clinical_core.core.session_store import (
    ActionEvent,
    ActionType,
    ConversationMessage,
    EvictionEvent,
    InMemorySessionStore,
    PatientInfo,
    Phase,
    Session,
    SessionStore,
    StateSnapshot,
)
from clinical_core.engine.decision_engine import DecisionEngine, EngineConfig
from clinical_core.extraction.completeness import StopAction, StopDecision
from clinical_core.extraction.models import ExtractionRecord, is_known
from clinical_core.graph.builder import build_turn_graph
from clinical_core.graph.nodes import PipelineConfig
from clinical_core.llm.base import Provider
from clinical_core.llm.factory import create_providers
from clinical_core.models import SessionSnapshot, TurnResult
from clinical_core.soap.merger import SOAPStateMerger
from clinical_core.utils.logger import SessionLogger

logger = logging.getLogger(__name__)

RECENT_CONTEXT_MESSAGES = 5
RECENT_ACTIONS_COUNT = 5

PHASE_FOR_ACTION = {
    StopAction.CONTINUE_EXTRACTION: Phase.EXTRACTION,
    StopAction.USER_CONFIRMATION: Phase.CONFIRMATION,
    StopAction.PROCEED_TO_NEXT_STAGE: Phase.PLANNING,
    StopAction.MANUAL_REVIEW: Phase.MANUAL_REVIEW,
}


class ConversationOrchestrator:
    """Runs turns against injected services. Holds no global state."""

    def __init__(
        self,
        store: SessionStore,
        engine: DecisionEngine,
        config: Optional[PipelineConfig] = None,
        merger: Optional[SOAPStateMerger] = None,
    ):
        self.store = store
        self.engine = engine
        self.config = config or PipelineConfig()
        self.merger = merger or SOAPStateMerger()
        self._graph = build_turn_graph(engine, self.merger, self.config)
        # Idle locks are dropped automatically once no turn holds them
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

        if isinstance(store, InMemorySessionStore):
            store.add_eviction_listener(self._on_eviction)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_turn(
        self,
        session_id: str,
        text: str,
        confirm: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TurnResult:
        """
        Process one clinician message.

        Args:
            session_id: Caller-assigned session id (created on first use)
            text: Clinician's free-text message
            confirm: Escalate if the record is at the confirmation stage
            cancel_event: Aborts in-flight provider calls; a cancelled turn
                leaves the session untouched

        Returns:
            TurnResult with the accumulated record, stop decision and follow-ups
        """
        assert session_id, "session_id cannot be empty"
        lock = self._lock_for(session_id)
        async with lock:
            return await self._run_turn(session_id, text, confirm, cancel_event)

    async def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        session = await self.store.get(session_id)
        if session is None:
            return None
        return self._snapshot(session)

    async def delete_session(self, session_id: str) -> bool:
        deleted = await self.store.delete(session_id)
        self._locks.pop(session_id, None)
        return deleted

    async def get_stats(self) -> Dict[str, int]:
        return await self.store.stats()

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _on_eviction(self, event: EvictionEvent) -> None:
        self._locks.pop(event.session_id, None)
        logger.debug(f"Dropped turn lock for evicted session {event.session_id} ({event.reason})")

    async def _run_turn(
        self,
        session_id: str,
        text: str,
        confirm: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> TurnResult:
        session = await self.store.get_or_create(session_id)
        log = SessionLogger(session_id, session.phase.value)

        if not session.action_history:
            self._record(session, ActionType.SESSION_INIT, {"session_id": session_id})

        iteration = session.iteration + 1
        recent_context = [
            f"{m.role}: {m.content}" for m in session.messages[-RECENT_CONTEXT_MESSAGES:]
        ]

        state = {
            "session_id": session_id,
            "text": text,
            "confirm": confirm,
            "cancel_event": cancel_event,
            "existing_record": session.extraction,
            "iteration": iteration,
            "recent_context": recent_context,
            "soap_state": session.soap_state,
            "diagnostic_state": session.diagnostic_state,
        }
        log.info(f"Turn {iteration}/{self.config.max_iterations} started")
        result = await self._graph.ainvoke(state)

        if result.get("cancelled"):
            log.info("Turn cancelled; session left unchanged")
            return TurnResult(
                session_id=session_id,
                iteration=session.iteration,
                record=session.extraction,
                soap_state=session.soap_state,
                cancelled=True,
            )

        session.messages.append(ConversationMessage(role="user", content=text))
        session.iteration = iteration
        self._record(session, ActionType.MESSAGE_RECEIVED, {"text": text, "iteration": iteration})

        extraction = result["extraction"]
        if extraction.success:
            session.extraction = result["record"]
            session.patient_info = self._patient_info(session.patient_info, session.extraction)
            self._record(session, ActionType.EXTRACTION_MERGED, {
                "provider": extraction.provider,
                "confidence": extraction.confidence,
                "completeness": self._completeness(session),
            })
        else:
            self._record(session, ActionType.EXTRACTION_FAILED, {
                "error": extraction.error,
                "raw_response": extraction.raw_response,
            })

        decision: StopDecision = result["stop_decision"]
        previous_phase = session.phase
        session.phase = PHASE_FOR_ACTION[decision.action]
        if session.phase != previous_phase:
            log.set_phase(session.phase.value)
            log.info(f"Phase changed from {previous_phase.value} to {session.phase.value}")
        self._record(session, ActionType.STOP_CONDITION_EVALUATED, {
            "action": decision.action.value,
            "reason": decision.reason,
            "score": decision.score,
        })

        planning = result.get("planning", {})
        if planning:
            self._fold_planning(session, result)

        reply = self._compose_reply(decision, result.get("follow_up_questions", []), result)
        session.messages.append(ConversationMessage(role="assistant", content=reply))
        self._record(session, ActionType.RESPONSE_GENERATED, {"length": len(reply)})

        await self.store.update(session_id, session)
        log.info(f"Turn {iteration} complete: {decision.action.value}")

        return TurnResult(
            session_id=session_id,
            iteration=iteration,
            record=session.extraction,
            stop_decision=decision,
            follow_up_questions=result.get("follow_up_questions", []),
            validation=result.get("validation"),
            urgency=result.get("urgency"),
            soap_state=session.soap_state,
            assistant_message=reply,
            extraction_succeeded=extraction.success,
            planning=planning,
        )

    def _fold_planning(self, session: Session, result: Dict[str, Any]) -> None:
        for kind, response in result["planning"].items():
            self._record(session, ActionType.DECISION_GENERATED, {
                "kind": kind,
                "success": response.success,
                "provider": response.provider,
                "confidence": response.confidence,
            })

        session.diagnostic_state = result["diagnostic_state"]
        session.soap_state = result["soap_state"]
        if result.get("soap_changed"):
            self._record(session, ActionType.SOAP_UPDATED, {"sections": result["soap_changed"]})

        urgency = result.get("urgency")
        if urgency is not None:
            session.urgency_assessment = urgency
            session.diagnostic_state = replace(
                session.diagnostic_state, urgency_level=urgency.level.value
            )
            self._record(session, ActionType.URGENCY_DETECTED, {
                "level": urgency.level.value,
                "pediatric_flag": urgency.pediatric_flag,
            })

    @staticmethod
    def _patient_info(current: PatientInfo, record: ExtractionRecord) -> PatientInfo:
        demo = record.demographics
        clinical = record.clinical_presentation
        ctx = record.symptom_characteristics
        return replace(
            current,
            age=demo.patient_age_years if is_known(demo.patient_age_years) else current.age,
            gender=demo.patient_gender if is_known(demo.patient_gender) else current.gender,
            symptoms=list(clinical.primary_symptoms or current.symptoms),
            duration=ctx.duration_description if is_known(ctx.duration_description) else current.duration,
        )

    @staticmethod
    def _compose_reply(decision: StopDecision, questions: List[str], result: Dict[str, Any]) -> str:
        lines: List[str] = []
        if not result["extraction"].success:
            lines.append("Automatic extraction is unavailable for this message; it requires human review.")

        if decision.action == StopAction.CONTINUE_EXTRACTION:
            lines.append(f"Record {decision.score}% complete. I still need:")
            lines.extend(f"- {q}" for q in questions)
        elif decision.action == StopAction.USER_CONFIRMATION:
            lines.extend(questions)
        elif decision.action == StopAction.PROCEED_TO_NEXT_STAGE:
            lines.append(f"Record {decision.score}% complete. Clinical planning generated.")
            urgency = result.get("urgency")
            if urgency is not None:
                lines.append(f"Urgency: {urgency.level.value}")
        else:
            lines.append(f"{decision.reason}. The case is flagged for manual review.")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @staticmethod
    def _completeness(session: Session) -> int:
        if session.extraction is None:
            return 0
        return session.extraction.extraction_metadata.overall_completeness_percentage

    def _record(self, session: Session, action: ActionType, payload: Dict[str, Any]) -> None:
        snapshot = StateSnapshot(
            message_count=len(session.messages),
            completeness=self._completeness(session),
            phase=session.phase,
            soap_progress=self.merger.progress(session.soap_state),
        )
        session.action_history.append(ActionEvent(type=action, payload=payload, snapshot=snapshot))

    def _snapshot(self, session: Session) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=session.session_id,
            phase=session.phase,
            iteration=session.iteration,
            completeness=self._completeness(session),
            soap_progress=self.merger.progress(session.soap_state),
            messages=session.messages,
            patient_info=session.patient_info,
            diagnostic_state=session.diagnostic_state,
            soap_state=session.soap_state,
            urgency_assessment=session.urgency_assessment,
            record=session.extraction,
            action_count=len(session.action_history),
            recent_actions=session.action_history[-RECENT_ACTIONS_COUNT:],
            soap_gaps=self.merger.identify_gaps(session.soap_state, session.patient_info),
        )


def build_orchestrator(
    settings: Settings,
    providers: Optional[Dict[str, Provider]] = None,
) -> Tuple[ConversationOrchestrator, InMemorySessionStore]:
    """Assemble store, breakers, engine and orchestrator from settings.

    The caller owns the store lifecycle (``await store.start()`` / ``shutdown()``).
    """
    providers = providers if providers is not None else create_providers(settings)

    store = InMemorySessionStore(
        ttl_seconds=settings.session_ttl_seconds,
        max_sessions=settings.max_sessions,
        sweep_interval_seconds=settings.session_sweep_interval_seconds,
        idle_threshold_seconds=settings.session_idle_threshold_seconds,
    )
    breakers = CircuitBreakerRegistry(
        known_ids=providers.keys(),
        config=CircuitBreakerConfig(
            failure_threshold=settings.breaker_failure_threshold,
            base_cooldown_seconds=settings.breaker_base_cooldown_seconds,
            max_cooldown_seconds=settings.breaker_max_cooldown_seconds,
        ),
    )
    engine = DecisionEngine(providers, breakers, EngineConfig.from_settings(settings))
    orchestrator = ConversationOrchestrator(
        store,
        engine,
        PipelineConfig.from_settings(settings),
        SOAPStateMerger(settings.soap_max_section_length),
    )
    return orchestrator, store
