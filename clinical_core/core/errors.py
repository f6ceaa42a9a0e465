"""Exception taxonomy for the orchestration core.

None of these reach callers of the gateway or the orchestrator: the decision
engine converts them into a structured ``DecisionResponse``.
"""

from typing import Optional


class EngineError(Exception):
    """Base exception for orchestration errors"""
    pass


class ProviderError(EngineError):
    """Provider call failed (network, timeout, unsuccessful or malformed reply)"""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ExtractionParseError(ProviderError):
    """Provider reply could not be interpreted as structured data"""

    def __init__(self, raw_response: str, provider: Optional[str] = None):
        self.raw_response = raw_response
        preview = raw_response[:80].replace("\n", " ")
        super().__init__(f"parsing_error: unstructured reply ({preview!r})", provider)


class CircuitOpenError(EngineError):
    """Circuit breaker refused the call"""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Circuit open for provider '{provider}'")


class RequestCancelledError(EngineError):
    """Cancellation signal fired during a provider call or backoff wait"""
    pass
