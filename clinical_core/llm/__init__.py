"""Provider layer.

Public API:
    - Provider, ProviderReply: contract consumed by the decision engine
    - ChatModelProvider: adapter over a LangChain chat model
    - create_provider / create_providers: factories with test/production switching
"""

from clinical_core.llm.base import Provider, ProviderReply
from clinical_core.llm.chat_model_provider import ChatModelProvider
from clinical_core.llm.factory import create_provider, create_providers

__all__ = ["Provider", "ProviderReply", "ChatModelProvider", "create_provider", "create_providers"]
