"""Provider factory functions.

Creates chat-model-backed providers with automatic test/production mode
switching based on the TESTING environment variable.
"""

import logging
import os
from typing import Dict, Optional

from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from clinical_core.config import Settings, settings as default_settings
from clinical_core.llm.base import Provider
from clinical_core.llm.chat_model_provider import ChatModelProvider

logger = logging.getLogger(__name__)


def _is_testing() -> bool:
    return os.getenv("TESTING", "false").lower() == "true"


def create_llm(model: str, temperature: float, config: Settings) -> BaseChatModel:
    """Create the chat model behind a provider.

    In test environment (TESTING=true), returns FakeChatModel:
    deterministic replies, no API calls, offline.

    Args:
        model: Model identifier on the OpenAI-compatible endpoint
        temperature: Sampling temperature (ignored by FakeChatModel)
        config: Settings holding endpoint and credentials

    Returns:
        BaseChatModel: FakeChatModel for tests, ChatOpenAI for production
    """
    if _is_testing():
        from tests.fakes.fake_chat_model import FakeChatModel

        return FakeChatModel()

    return ChatOpenAI(
        base_url=config.openai_api_base,
        api_key=SecretStr(config.openai_api_key),
        model=model,
        temperature=temperature,
        disable_streaming=True,
        tags=["clinical-core"],
    )


def create_provider(
    name: str,
    model: str,
    config: Optional[Settings] = None,
) -> Provider:
    """Create one named provider.

    A production provider is only available when an API key is configured.
    """
    config = config or default_settings
    assert name, "Provider name cannot be empty"
    assert model, f"Model for provider '{name}' cannot be empty"

    llm = create_llm(model, config.provider_temperature, config)
    available = _is_testing() or bool(config.openai_api_key)
    if not available:
        logger.warning(f"⚠️ Provider '{name}' unavailable: OPENAI_API_KEY not set")

    logger.info(f"🚀 Provider '{name}' -> {type(llm).__name__} ({model})")
    return ChatModelProvider(name, llm, available=available)


def create_providers(config: Optional[Settings] = None) -> Dict[str, Provider]:
    """Create the primary and secondary providers from settings."""
    config = config or default_settings
    models = {
        "primary": config.primary_model,
        "secondary": config.secondary_model,
    }
    providers = {name: create_provider(name, model, config) for name, model in models.items()}

    for name in [config.default_provider, *config.fallback_providers]:
        assert name in providers, (
            f"Routing references unknown provider '{name}'. "
            f"Known providers: {', '.join(providers)}"
        )
    return providers
