"""Pytest configuration and fixtures."""

# CRITICAL: Set TESTING environment variable BEFORE any clinical_core imports
# This ensures FakeChatModel is used instead of ChatOpenAI
import os
os.environ["TESTING"] = "true"

import logging
from typing import Dict, List, Optional

import pytest

from clinical_core.core.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from clinical_core.core.session_store import InMemorySessionStore
from clinical_core.engine.decision_engine import DecisionEngine, EngineConfig
from clinical_core.graph.nodes import PipelineConfig
from clinical_core.orchestrator import ConversationOrchestrator
from tests.fakes.scripted_provider import ScriptedProvider

logger = logging.getLogger(__name__)


# Pytest hook to show test duration after each test completes
@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Add test duration to terminal output after each test."""
    outcome = yield
    report = outcome.get_result()

    # Only show timing for test call phase (not setup/teardown)
    if report.when == "call":
        duration = getattr(report, "duration", 0)
        if duration > 0:
            report.sections.append(("Test Duration", f"{duration:.2f}s"))

    return report


class FakeClock:
    """Manually advanced time source for TTL and cooldown tests."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_session_store(clock) -> InMemorySessionStore:
    """Create in-memory session store driven by the fake clock."""
    return InMemorySessionStore(ttl_seconds=3600, max_sessions=1000, clock=clock)


@pytest.fixture
def zero_delay_config() -> EngineConfig:
    """Retry policy without backoff sleeps."""
    return EngineConfig(
        default_provider="primary",
        fallback_providers=["secondary"],
        max_retries=2,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
    )


@pytest.fixture
def make_engine(clock, zero_delay_config):
    """Factory: DecisionEngine over scripted providers with a fake-clock breaker registry."""

    def _make(
        providers: List[ScriptedProvider],
        config: Optional[EngineConfig] = None,
        breaker_config: Optional[CircuitBreakerConfig] = None,
    ) -> DecisionEngine:
        by_name: Dict[str, ScriptedProvider] = {p.name: p for p in providers}
        breakers = CircuitBreakerRegistry(by_name.keys(), breaker_config, clock=clock)
        return DecisionEngine(by_name, breakers, config or zero_delay_config)

    return _make


@pytest.fixture
def make_orchestrator(mock_session_store):
    """Factory: orchestrator over a given engine and the fake-clock store."""

    def _make(engine: DecisionEngine, config: Optional[PipelineConfig] = None) -> ConversationOrchestrator:
        return ConversationOrchestrator(mock_session_store, engine, config or PipelineConfig())

    return _make
