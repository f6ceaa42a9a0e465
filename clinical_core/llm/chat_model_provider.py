"""Provider backed by a LangChain chat model."""

import asyncio
import logging
from typing import Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from clinical_core.core.errors import RequestCancelledError
from clinical_core.llm.base import Provider, ProviderReply
from clinical_core.utils.retry import is_retryable, run_cancellable

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT_SECONDS = 10.0


def _message_text(content) -> str:
    # Chat models may return a list of content blocks instead of a string
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ChatModelProvider(Provider):
    """Adapts any ``BaseChatModel`` (ChatOpenAI in production, FakeChatModel in tests)."""

    def __init__(self, name: str, llm: BaseChatModel, available: bool = True):
        assert name, "Provider name cannot be empty"
        self._name = name
        self._llm = llm
        self._available = available

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_available(self) -> bool:
        return self._available

    async def make_request(
        self,
        system_instruction: str,
        user_input: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProviderReply:
        messages = [SystemMessage(content=system_instruction), HumanMessage(content=user_input)]
        try:
            response = await run_cancellable(self._llm.ainvoke(messages), cancel_event)
        except Exception as e:
            logger.warning(f"Provider '{self._name}' request failed: {type(e).__name__}: {e}")
            return ProviderReply(
                content="",
                success=False,
                error=f"{type(e).__name__}: {e}",
                retryable=is_retryable(e),
            )

        if response is None:
            raise RequestCancelledError(f"Request to '{self._name}' cancelled")

        text = _message_text(response.content)
        if not text.strip():
            return ProviderReply(content="", success=False, error="Empty response")
        return ProviderReply(content=text, success=True)

    async def health_check(self) -> bool:
        if not self._available:
            return False
        try:
            reply = await asyncio.wait_for(
                self.make_request("Health check. Reply with OK.", "ping"),
                timeout=HEALTH_CHECK_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Health check timed out for provider '{self._name}'")
            return False
        return reply.success
