"""
Provider gateway.

``DecisionEngine.decide`` routes one decision request through the configured
providers:

1. Candidates: preferred (or default) provider, then fallbacks, deduplicated.
   Unregistered, unavailable and circuit-open providers are skipped.
2. Each candidate gets up to ``max_retries + 1`` attempts with exponential
   backoff between them.
3. The first structurally valid payload wins and closes the breaker.
4. An exhausted candidate records one breaker failure.
5. When every candidate is exhausted a deterministic fallback payload is
   returned with ``success=False``.

A cancel signal aborts immediately: no retry, no fallback.
``decide`` never raises.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from clinical_core.config import Settings
from clinical_core.core.circuit_breaker import CircuitBreakerRegistry
from clinical_core.core.errors import (
    CircuitOpenError,
    ExtractionParseError,
    ProviderError,
    RequestCancelledError,
)
from clinical_core.engine.decisions import (
    DecisionKind,
    DecisionPayload,
    confidence_score,
    fallback_decision,
    parse_payload,
)
from clinical_core.llm.base import Provider, ProviderReply
from clinical_core.utils.prompts import build_system_prompt
from clinical_core.utils.retry import backoff_delay, sleep_or_cancel
from clinical_core.utils.text_utils import is_parsing_error, parse_structured_reply

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = "fallback"


@dataclass
class EngineConfig:
    default_provider: str = "primary"
    fallback_providers: List[str] = field(default_factory=lambda: ["secondary"])
    max_retries: int = 2
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            default_provider=settings.default_provider,
            fallback_providers=list(settings.fallback_providers),
            max_retries=settings.max_retries,
            retry_base_delay_seconds=settings.retry_base_delay_seconds,
            retry_max_delay_seconds=settings.retry_max_delay_seconds,
        )


@dataclass
class DecisionOptions:
    preferred_provider: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    cancel_event: Optional[asyncio.Event] = None


class DecisionResponse(BaseModel):
    """Structured gateway outcome. Returned for every request, never raised."""

    success: bool
    kind: DecisionKind
    decision: Optional[DecisionPayload] = None
    confidence: int = 0
    latency_ms: float = 0.0
    provider: Optional[str] = None
    error: Optional[str] = None
    cancelled: bool = False
    attempts: int = 0
    # Unparseable provider text from the last failed attempt
    raw_response: Optional[str] = None


class _Attempts:
    """Mutable bookkeeping for one decide() call."""

    def __init__(self):
        self.count = 0
        self.last_error: Optional[str] = None
        self.raw_response: Optional[str] = None


class DecisionEngine:
    """Routes decision requests across providers with retry, fallback and circuit breaking."""

    def __init__(
        self,
        providers: Dict[str, Provider],
        breakers: CircuitBreakerRegistry,
        config: Optional[EngineConfig] = None,
    ):
        self._providers = dict(providers)
        self._breakers = breakers
        self._config = config or EngineConfig()
        assert self._config.max_retries >= 0, "max_retries must be >= 0"

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    def candidates(self, preferred: Optional[str] = None) -> List[str]:
        """Ordered, deduplicated provider ids to try."""
        ordered = [preferred or self._config.default_provider, *self._config.fallback_providers]
        seen = set()
        result = []
        for provider_id in ordered:
            if provider_id not in seen:
                seen.add(provider_id)
                result.append(provider_id)
        return result

    async def decide(
        self,
        kind: Union[DecisionKind, str],
        user_input: str,
        options: Optional[DecisionOptions] = None,
    ) -> DecisionResponse:
        """
        Route one decision request.

        Args:
            kind: Decision kind (selects system prompt, payload model and fallback)
            user_input: Request text sent as the user message
            options: Preferred provider, extra context and cancel signal

        Returns:
            DecisionResponse (success, fallback, or cancelled)
        """
        kind = DecisionKind(kind)
        options = options or DecisionOptions()
        started = time.perf_counter()
        system_instruction = build_system_prompt(kind.value)
        request_text = self._render_input(user_input, options.context)
        state = _Attempts()

        for provider_id in self.candidates(options.preferred_provider):
            provider = self._providers.get(provider_id)
            if provider is None:
                logger.warning(f"⚠️ Skipping unregistered provider '{provider_id}'")
                continue
            if not provider.is_available:
                logger.info(f"Skipping unavailable provider '{provider_id}'")
                continue
            if not self._breakers.can_call(provider_id):
                logger.info(f"Skipping provider: {CircuitOpenError(provider_id)}")
                continue

            try:
                payload = await self._call_with_retries(
                    provider, kind, system_instruction, request_text, options.cancel_event, state
                )
            except asyncio.CancelledError:
                self._breakers.release(provider_id)
                logger.info(f"🛑 {kind.value} task cancelled during '{provider_id}'")
                raise
            except RequestCancelledError:
                self._breakers.release(provider_id)
                logger.info(f"🛑 {kind.value} request cancelled during '{provider_id}'")
                return DecisionResponse(
                    success=False,
                    kind=kind,
                    latency_ms=self._elapsed_ms(started),
                    provider=provider_id,
                    error="Request cancelled",
                    cancelled=True,
                    attempts=state.count,
                    raw_response=state.raw_response,
                )

            latency_ms = self._elapsed_ms(started)
            if payload is not None:
                self._breakers.record_success(provider_id, latency_ms)
                return DecisionResponse(
                    success=True,
                    kind=kind,
                    decision=payload,
                    confidence=confidence_score(payload),
                    latency_ms=latency_ms,
                    provider=provider_id,
                    attempts=state.count,
                )

            self._breakers.record_failure(provider_id, latency_ms)
            logger.warning(
                f"⚠️ Provider '{provider_id}' exhausted for {kind.value}: {state.last_error}"
            )

        logger.error(f"❌ All providers exhausted for {kind.value}, returning fallback decision")
        return DecisionResponse(
            success=False,
            kind=kind,
            decision=fallback_decision(kind),
            confidence=0,
            latency_ms=self._elapsed_ms(started),
            provider=FALLBACK_PROVIDER,
            error=state.last_error or "No available providers",
            attempts=state.count,
            raw_response=state.raw_response,
        )

    async def _call_with_retries(
        self,
        provider: Provider,
        kind: DecisionKind,
        system_instruction: str,
        request_text: str,
        cancel_event: Optional[asyncio.Event],
        state: _Attempts,
    ) -> Optional[DecisionPayload]:
        """Attempt one provider. Returns the payload, or None once attempts are exhausted.

        Raises:
            RequestCancelledError: If the cancel signal fires
        """
        max_attempts = self._config.max_retries + 1
        for attempt in range(max_attempts):
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelledError()

            state.count += 1
            retryable = True
            try:
                reply = await provider.make_request(system_instruction, request_text, cancel_event)
                retryable = reply.retryable
                return self._interpret(kind, provider.name, reply)
            except RequestCancelledError:
                raise
            except ProviderError as e:
                state.last_error = str(e)
                if isinstance(e, ExtractionParseError):
                    state.raw_response = e.raw_response
            except Exception as e:
                # Providers report failures in the reply; anything raised is a provider bug
                state.last_error = f"{type(e).__name__}: {e}"
                logger.error(f"❌ Provider '{provider.name}' raised: {state.last_error}")

            if not retryable:
                logger.warning(f"Permanent error from '{provider.name}', not retrying: {state.last_error}")
                return None

            if attempt + 1 < max_attempts:
                delay = backoff_delay(
                    attempt,
                    self._config.retry_base_delay_seconds,
                    self._config.retry_max_delay_seconds,
                )
                logger.warning(
                    f"⚠️  {kind.value} via '{provider.name}' failed "
                    f"(attempt {attempt + 1}/{max_attempts}): {state.last_error}"
                )
                logger.info(f"⏳ Retrying in {delay:.1f}s...")
                if await sleep_or_cancel(delay, cancel_event):
                    raise RequestCancelledError()

        return None

    def _interpret(self, kind: DecisionKind, provider_id: str, reply: ProviderReply) -> DecisionPayload:
        if not reply.success:
            raise ProviderError(reply.error or "Unsuccessful reply", provider_id)

        parsed = parse_structured_reply(reply.content)
        if is_parsing_error(parsed):
            raise ExtractionParseError(reply.content, provider_id)

        try:
            return parse_payload(kind, parsed)
        except ValidationError as e:
            raise ExtractionParseError(reply.content, provider_id) from e

    @staticmethod
    def _render_input(user_input: str, context: Optional[Dict[str, Any]]) -> str:
        if not context:
            return user_input
        return f"{user_input}\n\nContext:\n{json.dumps(context, default=str, ensure_ascii=False)}"

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    async def system_health(self) -> Dict[str, Dict[str, Any]]:
        """Availability, health probe result and breaker state for every provider."""
        names = list(self._providers)

        async def probe(provider: Provider) -> bool:
            if not provider.is_available:
                return False
            return await provider.health_check()

        results = await asyncio.gather(
            *(probe(self._providers[name]) for name in names), return_exceptions=True
        )
        snapshot = self._breakers.snapshot()

        health = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            health[name] = {
                "available": self._providers[name].is_available,
                "healthy": result is True,
                "circuit": snapshot.get(name, {}).get("state", "closed"),
            }
        return health
