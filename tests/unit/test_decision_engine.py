"""Unit tests for the provider gateway: retry, fallback, circuit breaking, cancellation."""

import asyncio
import json

import pytest

from clinical_core.core.circuit_breaker import CircuitState
from clinical_core.engine.decision_engine import DecisionOptions, EngineConfig
from clinical_core.engine.decisions import (
    DecisionKind,
    ExtractionDecision,
    TriageDecision,
)
from tests.fakes.records import record_payload
from tests.fakes.response_registry import PLANNING_RESPONSES
from tests.fakes.scripted_provider import ScriptedProvider, fail, ok

TRIAGE = PLANNING_RESPONSES["triage"]


@pytest.mark.asyncio
async def test_success_on_default_provider(make_engine):
    primary = ScriptedProvider("primary", [ok(TRIAGE)])
    secondary = ScriptedProvider("secondary")
    engine = make_engine([primary, secondary])

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.success is True
    assert response.provider == "primary"
    assert isinstance(response.decision, TriageDecision)
    assert response.decision.acuity_level == 2
    assert response.attempts == 1
    assert 0 <= response.confidence <= 100
    assert secondary.call_count == 0


@pytest.mark.asyncio
async def test_system_prompt_names_decision_kind(make_engine):
    primary = ScriptedProvider("primary", [ok(TRIAGE)])
    engine = make_engine([primary])

    await engine.decide("triage", "chest pain")

    system_instruction, user_input = primary.calls[0]
    assert "Decision kind: triage" in system_instruction
    assert user_input == "chest pain"


@pytest.mark.asyncio
async def test_context_is_appended_to_user_input(make_engine):
    primary = ScriptedProvider("primary", [ok(TRIAGE)])
    engine = make_engine([primary])

    await engine.decide("triage", "chest pain", DecisionOptions(context={"age": 42}))

    _, user_input = primary.calls[0]
    assert user_input.startswith("chest pain")
    assert '"age": 42' in user_input


@pytest.mark.asyncio
async def test_retries_then_succeeds(make_engine):
    primary = ScriptedProvider("primary", [fail(), fail(), ok(TRIAGE)])
    engine = make_engine([primary, ScriptedProvider("secondary")])

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.success is True
    assert response.provider == "primary"
    assert response.attempts == 3
    assert engine.breakers.state("primary") == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_falls_back_after_retries_exhausted(make_engine):
    primary = ScriptedProvider("primary", default=fail())
    secondary = ScriptedProvider("secondary", [ok(TRIAGE)])
    engine = make_engine([primary, secondary])

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.success is True
    assert response.provider == "secondary"
    assert primary.call_count == 3  # max_retries=2 -> 3 attempts
    assert response.attempts == 4
    assert engine.breakers.snapshot()["primary"]["failures"] == 1


@pytest.mark.asyncio
async def test_permanent_error_skips_retries(make_engine):
    primary = ScriptedProvider("primary", default=fail("401 Unauthorized", retryable=False))
    secondary = ScriptedProvider("secondary", [ok(TRIAGE)])
    engine = make_engine([primary, secondary])

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.provider == "secondary"
    assert primary.call_count == 1


@pytest.mark.asyncio
async def test_provider_exception_is_treated_as_failure(make_engine):
    primary = ScriptedProvider("primary", [RuntimeError("boom")], default=ok(TRIAGE))
    engine = make_engine([primary])

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.success is True
    assert response.attempts == 2


@pytest.mark.asyncio
async def test_all_providers_fail_returns_fallback(make_engine):
    engine = make_engine([ScriptedProvider("primary"), ScriptedProvider("secondary")])

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.success is False
    assert response.provider == "fallback"
    assert response.confidence == 0
    assert isinstance(response.decision, TriageDecision)
    assert response.decision.acuity_level == 2
    assert "requires human review" in response.decision.warning_signs[0]
    assert response.error == "503 Service Unavailable"
    assert response.attempts == 6


@pytest.mark.asyncio
async def test_no_available_providers_returns_fallback(make_engine):
    primary = ScriptedProvider("primary", available=False)
    engine = make_engine([primary])

    response = await engine.decide(DecisionKind.DIAGNOSIS, "chest pain")

    assert response.success is False
    assert response.error == "No available providers"
    assert primary.call_count == 0


@pytest.mark.asyncio
async def test_malformed_reply_is_retried_and_raw_text_preserved(make_engine):
    primary = ScriptedProvider("primary", default=ok("I think the patient is fine."))
    secondary = ScriptedProvider("secondary", default=ok("Still not JSON"))
    engine = make_engine([primary, secondary])

    response = await engine.decide(DecisionKind.EXTRACTION, "{}")

    assert response.success is False
    assert primary.call_count == 3
    assert response.raw_response == "Still not JSON"
    assert "parsing_error" in response.error
    # Extraction fallback is a human-review record
    assert isinstance(response.decision, ExtractionDecision)
    assert response.decision.record.demographics.patient_age_years == "unknown"


@pytest.mark.asyncio
async def test_schema_mismatch_counts_as_parse_failure(make_engine):
    primary = ScriptedProvider("primary", [ok({"acuity_level": 9, "disposition": "urgent"})],
                               default=ok(TRIAGE))
    engine = make_engine([primary])

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.success is True
    assert response.attempts == 2


@pytest.mark.asyncio
async def test_fenced_extraction_reply_is_parsed(make_engine):
    fenced = "Here it is:\n```json\n" + json.dumps(
        record_payload(age=42, gender="male", complaint="chest pain")
    ) + "\n```"
    engine = make_engine([ScriptedProvider("primary", [ok(fenced)])])

    response = await engine.decide(DecisionKind.EXTRACTION, "{}")

    assert response.success is True
    assert response.decision.record.demographics.patient_age_years == 42


@pytest.mark.asyncio
async def test_preferred_provider_goes_first(make_engine):
    primary = ScriptedProvider("primary", default=ok(TRIAGE))
    secondary = ScriptedProvider("secondary", default=ok(TRIAGE))
    engine = make_engine([primary, secondary])

    response = await engine.decide(
        DecisionKind.TRIAGE, "chest pain", DecisionOptions(preferred_provider="secondary")
    )

    assert response.provider == "secondary"
    assert primary.call_count == 0


def test_candidates_are_deduplicated(make_engine):
    engine = make_engine([ScriptedProvider("primary"), ScriptedProvider("secondary")])
    assert engine.candidates() == ["primary", "secondary"]
    assert engine.candidates("secondary") == ["secondary"]


@pytest.mark.asyncio
async def test_repeated_failures_open_circuit_and_route_to_fallback(make_engine, clock):
    """After consecutive failures the open breaker skips the provider entirely."""
    config = EngineConfig(max_retries=0, retry_base_delay_seconds=0, retry_max_delay_seconds=0)
    primary = ScriptedProvider("primary", default=fail())
    secondary = ScriptedProvider("secondary", default=ok(TRIAGE))
    engine = make_engine([primary, secondary], config=config)

    for _ in range(4):
        response = await engine.decide(DecisionKind.TRIAGE, "chest pain")
        assert response.provider == "secondary"

    assert engine.breakers.state("primary") == CircuitState.OPEN
    calls_before = primary.call_count
    assert calls_before == 3

    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.success is True
    assert response.provider == "secondary"
    assert primary.call_count == calls_before


@pytest.mark.asyncio
async def test_open_circuit_recovers_after_cooldown(make_engine, clock):
    config = EngineConfig(max_retries=0, retry_base_delay_seconds=0, retry_max_delay_seconds=0)
    primary = ScriptedProvider("primary", [fail(), fail(), fail()], default=ok(TRIAGE))
    engine = make_engine([primary, ScriptedProvider("secondary", default=ok(TRIAGE))], config=config)

    for _ in range(3):
        await engine.decide(DecisionKind.TRIAGE, "chest pain")
    assert engine.breakers.state("primary") == CircuitState.OPEN

    clock.advance(30)
    response = await engine.decide(DecisionKind.TRIAGE, "chest pain")

    assert response.provider == "primary"
    assert engine.breakers.state("primary") == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_cancel_before_call(make_engine):
    primary = ScriptedProvider("primary", default=ok(TRIAGE))
    engine = make_engine([primary])
    cancel_event = asyncio.Event()
    cancel_event.set()

    response = await engine.decide(
        DecisionKind.TRIAGE, "chest pain", DecisionOptions(cancel_event=cancel_event)
    )

    assert response.cancelled is True
    assert response.success is False
    assert response.decision is None
    assert primary.call_count == 0


@pytest.mark.asyncio
async def test_cancel_during_call_skips_retry_and_fallback(make_engine):
    primary = ScriptedProvider("primary", default=ok(TRIAGE), delay=5.0)
    secondary = ScriptedProvider("secondary", default=ok(TRIAGE))
    engine = make_engine([primary, secondary])
    cancel_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel_event.set)

    response = await engine.decide(
        DecisionKind.TRIAGE, "chest pain", DecisionOptions(cancel_event=cancel_event)
    )

    assert response.cancelled is True
    assert primary.call_count == 1
    assert secondary.call_count == 0
    # Cancellation is not a provider failure
    assert engine.breakers.snapshot()["primary"]["failures"] == 0


@pytest.mark.asyncio
async def test_cancel_during_backoff(make_engine):
    config = EngineConfig(max_retries=2, retry_base_delay_seconds=5.0, retry_max_delay_seconds=5.0)
    primary = ScriptedProvider("primary", default=fail())
    secondary = ScriptedProvider("secondary", default=ok(TRIAGE))
    engine = make_engine([primary, secondary], config=config)
    cancel_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel_event.set)

    response = await engine.decide(
        DecisionKind.TRIAGE, "chest pain", DecisionOptions(cancel_event=cancel_event)
    )

    assert response.cancelled is True
    assert primary.call_count == 1
    assert secondary.call_count == 0


@pytest.mark.asyncio
async def test_system_health(make_engine):
    engine = make_engine([
        ScriptedProvider("primary", healthy=True),
        ScriptedProvider("secondary", available=False),
    ])

    health = await engine.system_health()

    assert health["primary"] == {"available": True, "healthy": True, "circuit": "closed"}
    assert health["secondary"]["available"] is False
    assert health["secondary"]["healthy"] is False


@pytest.mark.asyncio
async def test_task_cancel_during_trial_call_releases_breaker_slot(make_engine, clock):
    config = EngineConfig(max_retries=0, retry_base_delay_seconds=0, retry_max_delay_seconds=0)
    primary = ScriptedProvider("primary", default=ok(TRIAGE), delay=5.0)
    engine = make_engine([primary], config=config)
    for _ in range(3):
        engine.breakers.record_failure("primary")
    clock.advance(30)

    task = asyncio.create_task(engine.decide(DecisionKind.TRIAGE, "chest pain"))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert primary.call_count == 1
    assert engine.breakers.state("primary") == CircuitState.HALF_OPEN
    assert engine.breakers.snapshot()["primary"]["half_open_in_flight"] is False
    assert engine.breakers.can_call("primary") is True
