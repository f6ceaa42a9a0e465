"""Unit tests for the chat-model-backed provider and the provider factory."""

import asyncio
import json

import pytest
from langchain_core.language_models import BaseChatModel

from clinical_core.config import Settings
from clinical_core.core.errors import RequestCancelledError
from clinical_core.llm.chat_model_provider import ChatModelProvider
from clinical_core.llm.factory import create_llm, create_providers
from clinical_core.utils.prompts import build_system_prompt
from tests.fakes.fake_chat_model import FakeChatModel


class _FailingModel(FakeChatModel):
    status_code: int = 500

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        error = RuntimeError(f"HTTP {self.status_code}")
        error.status_code = self.status_code
        raise error


class _SlowModel(FakeChatModel):
    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs):
        await asyncio.sleep(5)
        return self._generate(messages, stop=stop, **kwargs)


def test_factory_returns_fake_model_in_tests():
    llm = create_llm("any-model", 0.0, Settings(_env_file=None))
    assert isinstance(llm, FakeChatModel)
    assert isinstance(llm, BaseChatModel)


def test_create_providers_registers_primary_and_secondary():
    providers = create_providers(Settings(_env_file=None))

    assert set(providers) == {"primary", "secondary"}
    assert all(p.is_available for p in providers.values())


def test_create_providers_rejects_unknown_routing(monkeypatch):
    monkeypatch.setenv("DEFAULT_PROVIDER", "tertiary")
    with pytest.raises(AssertionError, match="tertiary"):
        create_providers(Settings(_env_file=None))


@pytest.mark.asyncio
async def test_extraction_request_round_trip():
    provider = ChatModelProvider("primary", FakeChatModel())
    request = json.dumps({"free_text": "42 year old male with chest pain for 2 hours"})

    reply = await provider.make_request(build_system_prompt("extraction"), request)

    assert reply.success is True
    assert '"patient_age_years": 42' in reply.content
    assert '"chief_complaint": "chest pain"' in reply.content


@pytest.mark.asyncio
async def test_health_check():
    assert await ChatModelProvider("primary", FakeChatModel()).health_check() is True
    assert await ChatModelProvider("primary", FakeChatModel(), available=False).health_check() is False


@pytest.mark.asyncio
async def test_model_errors_become_failed_replies():
    provider = ChatModelProvider("primary", _FailingModel(status_code=503))

    reply = await provider.make_request(build_system_prompt("triage"), "chest pain")

    assert reply.success is False
    assert "HTTP 503" in reply.error
    assert reply.retryable is True


@pytest.mark.asyncio
async def test_client_errors_are_permanent():
    provider = ChatModelProvider("primary", _FailingModel(status_code=401))

    reply = await provider.make_request(build_system_prompt("triage"), "chest pain")

    assert reply.retryable is False


@pytest.mark.asyncio
async def test_cancel_raises():
    provider = ChatModelProvider("primary", _SlowModel())
    event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.01, event.set)

    with pytest.raises(RequestCancelledError):
        await provider.make_request(build_system_prompt("triage"), "chest pain", event)
