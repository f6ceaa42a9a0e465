"""Session data model, abstract session store interface and the in-memory implementation."""

import asyncio
import copy
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from clinical_core.extraction.models import ExtractionRecord

logger = logging.getLogger(__name__)


# ============================================================================
# Session data model
# ============================================================================


class UrgencyLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


class ActionType(str, Enum):
    """Typed events recorded in a session's action history."""

    SESSION_INIT = "SESSION_INIT"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    EXTRACTION_MERGED = "EXTRACTION_MERGED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    STOP_CONDITION_EVALUATED = "STOP_CONDITION_EVALUATED"
    DECISION_GENERATED = "DECISION_GENERATED"
    SOAP_UPDATED = "SOAP_UPDATED"
    URGENCY_DETECTED = "URGENCY_DETECTED"
    RESPONSE_GENERATED = "RESPONSE_GENERATED"


class Phase(str, Enum):
    EXTRACTION = "EXTRACTION"
    CONFIRMATION = "CONFIRMATION"
    PLANNING = "PLANNING"
    MANUAL_REVIEW = "MANUAL_REVIEW"


@dataclass
class ConversationMessage:
    role: str  # "user" | "assistant"
    content: str
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class PatientInfo:
    age: Optional[int] = None
    gender: Optional[str] = None
    symptoms: List[str] = field(default_factory=list)
    duration: Optional[str] = None
    medical_history: List[str] = field(default_factory=list)


@dataclass
class DiagnosticState:
    differential_diagnosis: List[str] = field(default_factory=list)
    recommended_tests: List[str] = field(default_factory=list)
    treatment_plan: List[str] = field(default_factory=list)
    urgency_level: Optional[str] = None


@dataclass
class SOAPState:
    """The four free-text sections of the clinical note."""

    subjective: Optional[str] = None
    objective: Optional[str] = None
    analysis: Optional[str] = None
    plan: Optional[str] = None


@dataclass
class UrgencyAssessment:
    level: UrgencyLevel
    protocol: Optional[str] = None
    actions: List[str] = field(default_factory=list)
    pediatric_flag: bool = False
    reasoning: Optional[str] = None


@dataclass
class StateSnapshot:
    """Derived state captured alongside every action event."""

    message_count: int
    completeness: int
    phase: Phase
    soap_progress: int = 0


@dataclass
class ActionEvent:
    type: ActionType
    payload: Dict
    snapshot: StateSnapshot
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Session:
    """Session data container.

    Owned by the session store; callers work on copies and write them back
    with ``update``.
    """

    session_id: str
    messages: List[ConversationMessage] = field(default_factory=list)
    patient_info: PatientInfo = field(default_factory=PatientInfo)
    diagnostic_state: DiagnosticState = field(default_factory=DiagnosticState)
    soap_state: SOAPState = field(default_factory=SOAPState)
    urgency_assessment: Optional[UrgencyAssessment] = None
    action_history: List[ActionEvent] = field(default_factory=list)
    extraction: Optional[ExtractionRecord] = None
    iteration: int = 0
    phase: Phase = Phase.EXTRACTION
    created_at: float = field(default_factory=time.time)
    last_access: float = field(default_factory=time.time)


@dataclass(frozen=True)
class EvictionEvent:
    session_id: str
    reason: str  # "expired" | "capacity"
    idle_seconds: float


EvictionListener = Callable[[EvictionEvent], None]


def sweep(
    now: float,
    sessions: Dict[str, Session],
    ttl_seconds: float,
) -> Tuple[Dict[str, Session], List[str]]:
    """Split sessions into survivors and expired ids.

    Pure function shared by the access-time sweep and the background task.

    Args:
        now: Current clock reading (same clock as ``Session.last_access``)
        sessions: Mapping of session_id -> Session (not modified)
        ttl_seconds: Idle time after which a session expires

    Returns:
        Tuple of (survivors, evicted_ids)
    """
    survivors: Dict[str, Session] = {}
    evicted: List[str] = []
    for sid, session in sessions.items():
        if now - session.last_access > ttl_seconds:
            evicted.append(sid)
        else:
            survivors[sid] = session
    return survivors, evicted


# ============================================================================
# Store interface
# ============================================================================


class SessionStore(ABC):
    """Abstract interface for session persistence."""

    @abstractmethod
    async def get_or_create(self, session_id: str) -> Session:
        """Return the session, creating an empty one if absent."""
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Retrieve session by ID, or None if absent or expired."""
        pass

    @abstractmethod
    async def update(self, session_id: str, session: Session) -> None:
        """Save or replace session data."""
        pass

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete session data. Returns True if a session was removed."""
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        """Return {total, active, idle} counts."""
        pass


class InMemorySessionStore(SessionStore):
    """Bounded, TTL-expiring in-memory session store.

    Note: Data will be lost on application restart.

    Expired sessions are swept on every ``get``/``get_or_create`` and by a
    background task started with ``start()``. Both paths use ``sweep()``.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_sessions: int = 1000,
        sweep_interval_seconds: float = 300,
        idle_threshold_seconds: float = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize in-memory store.

        Args:
            ttl_seconds: Idle time-to-live for sessions in seconds
            max_sessions: Capacity; creating beyond it evicts the least recently accessed session
            sweep_interval_seconds: Period of the background expiry sweep
            idle_threshold_seconds: Sessions idle longer than this count as "idle" in stats
            clock: Time source in seconds (injectable for tests)
        """
        assert max_sessions > 0, "max_sessions must be positive"
        self._store: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self._max_sessions = max_sessions
        self._sweep_interval_seconds = sweep_interval_seconds
        self._idle_threshold_seconds = idle_threshold_seconds
        self._clock = clock
        self._listeners: List[EvictionListener] = []
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background expiry sweep."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(
            f"Session store sweeper started: interval={self._sweep_interval_seconds}s, "
            f"ttl={self._ttl_seconds}s, max_sessions={self._max_sessions}"
        )

    async def shutdown(self) -> None:
        """Stop the background sweep. Stored sessions are kept."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("Session store sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_seconds)
            cleared = self.clear_expired_sessions()
            if cleared:
                logger.debug(f"Background sweep cleared {cleared} sessions")

    def add_eviction_listener(self, listener: EvictionListener) -> None:
        """Register a callback invoked for every expired or evicted session."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # SessionStore API
    # ------------------------------------------------------------------

    async def get_or_create(self, session_id: str) -> Session:
        """Return a copy of the session, creating it if absent. Refreshes last access."""
        events: List[EvictionEvent] = []
        with self._lock:
            now = self._clock()
            events.extend(self._sweep_locked(now))

            session = self._store.get(session_id)
            if session is None:
                if len(self._store) >= self._max_sessions:
                    events.append(self._evict_oldest_locked(now))
                session = Session(session_id=session_id, created_at=now, last_access=now)
                self._store[session_id] = session
                logger.info(f"🆕 Session created: {session_id} (total={len(self._store)})")
            else:
                session.last_access = now
            result = copy.deepcopy(session)

        self._notify(events)
        return result

    async def get(self, session_id: str) -> Optional[Session]:
        """Retrieve a copy of the session by ID. Refreshes last access."""
        with self._lock:
            now = self._clock()
            events = self._sweep_locked(now)
            session = self._store.get(session_id)
            if session is not None:
                session.last_access = now
                session = copy.deepcopy(session)

        self._notify(events)
        return session

    async def update(self, session_id: str, session: Session) -> None:
        """Save or replace session data."""
        with self._lock:
            session.last_access = self._clock()
            self._store[session_id] = copy.deepcopy(session)

    async def delete(self, session_id: str) -> bool:
        """Delete session data."""
        with self._lock:
            removed = self._store.pop(session_id, None) is not None
            remaining = len(self._store)
        if removed:
            logger.info(f"🗑️ Session deleted: {session_id} (total={remaining})")
        return removed

    async def stats(self) -> Dict[str, int]:
        """Return {total, active, idle} counts."""
        with self._lock:
            now = self._clock()
            active = sum(
                1 for s in self._store.values()
                if now - s.last_access < self._idle_threshold_seconds
            )
            total = len(self._store)
        return {"total": total, "active": active, "idle": total - active}

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def clear_expired_sessions(self) -> int:
        """Clear all expired sessions. Returns count of cleared sessions."""
        with self._lock:
            events = self._sweep_locked(self._clock())
        self._notify(events)
        return len(events)

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _sweep_locked(self, now: float) -> List[EvictionEvent]:
        survivors, evicted = sweep(now, self._store, self._ttl_seconds)
        if not evicted:
            return []
        events = [
            EvictionEvent(sid, "expired", now - self._store[sid].last_access)
            for sid in evicted
        ]
        self._store = survivors
        logger.info(
            f"⏳ {len(evicted)} sessions expired and cleaned up "
            f"(remaining={len(self._store)})"
        )
        return events

    def _evict_oldest_locked(self, now: float) -> EvictionEvent:
        oldest_id = min(self._store, key=lambda sid: self._store[sid].last_access)
        oldest = self._store.pop(oldest_id)
        logger.warning(
            f"⚠️ Session evicted due to capacity limit: {oldest_id} "
            f"(max_sessions={self._max_sessions})"
        )
        return EvictionEvent(oldest_id, "capacity", now - oldest.last_access)

    def _notify(self, events: List[EvictionEvent]) -> None:
        for event in events:
            for listener in self._listeners:
                listener(event)
