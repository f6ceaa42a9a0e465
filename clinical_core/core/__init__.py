"""Core services: session store, circuit breakers, error taxonomy."""

from clinical_core.core.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry, CircuitState
from clinical_core.core.errors import (
    CircuitOpenError,
    EngineError,
    ExtractionParseError,
    ProviderError,
    RequestCancelledError,
)
from clinical_core.core.session_store import InMemorySessionStore, Session, SessionStore, sweep

__all__ = [
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitOpenError",
    "EngineError",
    "ExtractionParseError",
    "ProviderError",
    "RequestCancelledError",
    "InMemorySessionStore",
    "Session",
    "SessionStore",
    "sweep",
]
