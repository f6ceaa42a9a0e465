"""
Provider ABC - Abstract base class for generative-text providers.

The decision engine only depends on this contract; how a provider produces
``content`` is opaque to it.

Design Decision: ABC over Protocol
- Fail-fast at import time (not runtime or type-check time)
- Explicit inheritance makes intent clear
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class ProviderReply:
    """Outcome of one provider request.

    ``retryable`` is False for permanent failures (bad request, auth) so the
    engine moves to the next provider instead of retrying.
    """

    content: str
    success: bool
    error: Optional[str] = None
    retryable: bool = True


class Provider(ABC):
    """Abstract base class for interchangeable providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier used for routing and circuit breaking."""
        pass

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider is configured and may be called."""
        pass

    @abstractmethod
    async def make_request(
        self,
        system_instruction: str,
        user_input: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProviderReply:
        """
        Send one request to the provider.

        Args:
            system_instruction: System prompt for the decision kind
            user_input: Serialized request payload
            cancel_event: Signal that aborts the in-flight call

        Returns:
            ProviderReply. Failures are reported in the reply, not raised.

        Raises:
            RequestCancelledError: If cancel_event fired during the call
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Cheap liveness probe."""
        pass
