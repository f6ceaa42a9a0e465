"""Integration tests for the turn pipeline graph routing."""

import asyncio
import json

import pytest

from clinical_core.core.session_store import DiagnosticState, SOAPState, UrgencyLevel
from clinical_core.extraction.completeness import StopAction
from clinical_core.graph.builder import build_turn_graph
from clinical_core.graph.nodes import PipelineConfig, build_extraction_request
from clinical_core.soap.merger import SOAPStateMerger
from tests.fakes.records import chest_pain_record, record_payload
from tests.fakes.response_registry import PLANNING_RESPONSES
from tests.fakes.scripted_provider import ScriptedProvider, fail, ok


def _state(text="42 year old male with chest pain for 2 hours", **overrides):
    state = {
        "session_id": "graph-test",
        "text": text,
        "confirm": False,
        "cancel_event": None,
        "existing_record": None,
        "iteration": 1,
        "recent_context": [],
        "soap_state": SOAPState(),
        "diagnostic_state": DiagnosticState(),
    }
    state.update(overrides)
    return state


class _KindRouter(ScriptedProvider):
    """Answers each decision kind from a per-kind reply table."""

    def __init__(self, name, replies):
        super().__init__(name)
        self.replies = replies

    async def make_request(self, system_instruction, user_input, cancel_event=None):
        self.calls.append((system_instruction, user_input))
        for kind, reply in self.replies.items():
            if f"Decision kind: {kind}" in system_instruction:
                return reply
        return fail("no scripted reply")


def _router(extraction, **planning):
    replies = {"extraction": ok(extraction)}
    for kind in ["diagnosis", "triage", "treatment", "documentation"]:
        replies[kind] = planning.get(kind, ok(PLANNING_RESPONSES[kind]))
    return _KindRouter("primary", replies)


@pytest.mark.integration
async def test_borderline_turn_skips_planning(make_engine):
    provider = _router(record_payload(age=42, gender="male", complaint="chest pain",
                                      symptoms=["chest pain"], duration="2 hours"))
    graph = build_turn_graph(make_engine([provider]), SOAPStateMerger(), PipelineConfig())

    result = await graph.ainvoke(_state())

    assert result["stop_decision"].action == StopAction.USER_CONFIRMATION
    assert "planning" not in result
    assert provider.call_count == 1


@pytest.mark.integration
async def test_ready_turn_runs_planning_in_parallel(make_engine):
    provider = _router(record_payload(age=42, gender="male", complaint="chest pain",
                                      symptoms=["chest pain"], duration="2 hours", pain=7))
    graph = build_turn_graph(make_engine([provider]), SOAPStateMerger(), PipelineConfig())

    result = await graph.ainvoke(_state())

    assert result["stop_decision"].action == StopAction.PROCEED_TO_NEXT_STAGE
    assert set(result["planning"]) == {"documentation", "diagnosis", "triage", "treatment"}
    assert provider.call_count == 5
    assert result["urgency"].level == UrgencyLevel.HIGH
    assert result["soap_changed"] == ["subjective", "objective", "analysis", "plan"]


@pytest.mark.integration
async def test_failed_planning_kind_is_not_folded(make_engine):
    provider = _router(
        record_payload(age=42, gender="male", complaint="chest pain",
                       symptoms=["chest pain"], duration="2 hours", pain=7),
        documentation=fail("no documentation today"),
    )
    graph = build_turn_graph(make_engine([provider]), SOAPStateMerger(), PipelineConfig())

    result = await graph.ainvoke(_state())

    assert result["planning"]["documentation"].success is False
    assert result["planning"]["documentation"].provider == "fallback"
    assert result["soap_state"] == SOAPState()
    assert result["soap_changed"] == []
    assert result["diagnostic_state"].differential_diagnosis == ["Acute coronary syndrome",
                                                                 "Gastroesophageal reflux disease"]


@pytest.mark.integration
async def test_critical_triage_maps_to_critical_urgency(make_engine):
    triage = dict(PLANNING_RESPONSES["triage"], acuity_level=1, disposition="immediate")
    provider = _router(
        record_payload(age=42, gender="male", complaint="chest pain",
                       symptoms=["chest pain"], duration="2 hours", pain=9),
        triage=ok(triage),
    )
    graph = build_turn_graph(make_engine([provider]), SOAPStateMerger(), PipelineConfig())

    result = await graph.ainvoke(_state())

    assert result["urgency"].level == UrgencyLevel.CRITICAL


@pytest.mark.integration
async def test_existing_record_is_merged(make_engine):
    provider = _router(record_payload(pain=7))
    graph = build_turn_graph(make_engine([provider]), SOAPStateMerger(), PipelineConfig())

    result = await graph.ainvoke(_state(text="pain 7/10", existing_record=chest_pain_record(), iteration=2))

    record = result["record"]
    assert record.demographics.patient_age_years == 42
    assert record.symptom_characteristics.pain_intensity_scale == 7
    assert record.extraction_metadata.iteration == 2


@pytest.mark.integration
async def test_cancelled_extraction_ends_graph(make_engine):
    provider = ScriptedProvider("primary", default=ok(record_payload()), delay=5.0)
    graph = build_turn_graph(make_engine([provider]), SOAPStateMerger(), PipelineConfig())
    cancel_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel_event.set)

    result = await graph.ainvoke(_state(cancel_event=cancel_event))

    assert result["cancelled"] is True
    assert "stop_decision" not in result


def test_extraction_request_shape():
    request = json.loads(build_extraction_request(
        _state(existing_record=chest_pain_record(), recent_context=["user: hi"]), max_iterations=5
    ))

    assert request["free_text"].startswith("42 year old")
    assert request["existing_record"]["demographics"]["patient_age_years"] == 42
    assert request["iteration_number"] == 1
    assert request["max_iterations"] == 5
    assert request["recent_context"] == ["user: hi"]


@pytest.mark.integration
async def test_pediatric_flag_uses_this_turns_record(make_engine):
    provider = _router(record_payload(age=7, gender="female", complaint="fever",
                                      symptoms=["fever"], duration="3 days", pain=4))
    graph = build_turn_graph(make_engine([provider]), SOAPStateMerger(), PipelineConfig())

    result = await graph.ainvoke(_state(text="7 year old female with fever for 3 days"))

    assert result["stop_decision"].action == StopAction.PROCEED_TO_NEXT_STAGE
    assert result["urgency"].pediatric_flag is True
