"""
Per-provider circuit breakers.

Each provider id gets an independent breaker:

    closed ──(failures >= threshold)──> open
    open ──(can_call after next_retry)──> half_open   (one trial call)
    half_open ──(success)──> closed
    half_open ──(failure)──> open, with a doubled cooldown

Cooldown after the n-th consecutive failure (n >= threshold) is
``base_cooldown * 2 ** (n - threshold)``, capped at ``max_cooldown``.
A half-open trial that never reports an outcome frees its slot after one
cooldown.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 3
    base_cooldown_seconds: float = 30.0
    max_cooldown_seconds: float = 600.0

    def cooldown_for(self, failures: int) -> float:
        exponent = max(failures - self.failure_threshold, 0)
        return min(self.base_cooldown_seconds * (2 ** exponent), self.max_cooldown_seconds)


@dataclass
class ProviderMetrics:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    avg_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.successful_calls / self.total_calls

    def record(self, success: bool, latency_ms: Optional[float]) -> None:
        self.total_calls += 1
        if success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
        if latency_ms is not None:
            # Running mean over every call that reported a latency
            self.avg_latency_ms += (latency_ms - self.avg_latency_ms) / self.total_calls


@dataclass
class CircuitBreakerState:
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    last_failure: Optional[float] = None
    next_retry: Optional[float] = None
    half_open_in_flight: bool = False
    trial_started: Optional[float] = None
    metrics: ProviderMetrics = field(default_factory=ProviderMetrics)


class CircuitBreakerRegistry:
    """Circuit breakers keyed by provider id.

    Breakers for ``known_ids`` are created up-front; any other id gets a
    breaker with the default config on first use.
    """

    def __init__(
        self,
        known_ids: Iterable[str] = (),
        config: Optional[CircuitBreakerConfig] = None,
        overrides: Optional[Dict[str, CircuitBreakerConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._default_config = config or CircuitBreakerConfig()
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreakerState] = {}
        for provider_id in known_ids:
            self._breakers[provider_id] = CircuitBreakerState()

    def config_for(self, provider_id: str) -> CircuitBreakerConfig:
        return self._overrides.get(provider_id, self._default_config)

    def _get(self, provider_id: str) -> CircuitBreakerState:
        breaker = self._breakers.get(provider_id)
        if breaker is None:
            breaker = CircuitBreakerState()
            self._breakers[provider_id] = breaker
        return breaker

    def can_call(self, provider_id: str) -> bool:
        """Whether a call may be attempted now.

        Moves an open breaker to half_open once its cooldown has elapsed and
        reserves the single trial slot for the caller.
        """
        with self._lock:
            breaker = self._get(provider_id)
            now = self._clock()

            if breaker.state == CircuitState.CLOSED:
                return True

            if breaker.state == CircuitState.OPEN:
                if breaker.next_retry is not None and now >= breaker.next_retry:
                    breaker.state = CircuitState.HALF_OPEN
                    breaker.half_open_in_flight = True
                    breaker.trial_started = now
                    logger.info(f"🔄 Circuit half-open for '{provider_id}', allowing trial call")
                    return True
                return False

            # HALF_OPEN: only one trial at a time, unless the current one went stale
            if breaker.half_open_in_flight:
                cooldown = self.config_for(provider_id).cooldown_for(breaker.failures)
                if breaker.trial_started is None or now - breaker.trial_started < cooldown:
                    return False
                logger.warning(f"⚠️ Trial call for '{provider_id}' never reported back, allowing a new one")
            breaker.half_open_in_flight = True
            breaker.trial_started = now
            return True

    def record_success(self, provider_id: str, latency_ms: Optional[float] = None) -> None:
        with self._lock:
            breaker = self._get(provider_id)
            if breaker.state != CircuitState.CLOSED:
                logger.info(f"✅ Circuit closed for '{provider_id}'")
            breaker.state = CircuitState.CLOSED
            breaker.failures = 0
            breaker.next_retry = None
            breaker.half_open_in_flight = False
            breaker.trial_started = None
            breaker.metrics.record(True, latency_ms)

    def record_failure(self, provider_id: str, latency_ms: Optional[float] = None) -> None:
        with self._lock:
            breaker = self._get(provider_id)
            config = self.config_for(provider_id)
            now = self._clock()

            breaker.failures += 1
            breaker.last_failure = now
            breaker.half_open_in_flight = False
            breaker.trial_started = None
            breaker.metrics.record(False, latency_ms)

            if breaker.failures >= config.failure_threshold:
                cooldown = config.cooldown_for(breaker.failures)
                breaker.state = CircuitState.OPEN
                breaker.next_retry = now + cooldown
                logger.warning(
                    f"⚠️ Circuit open for '{provider_id}' after {breaker.failures} "
                    f"consecutive failures (retry in {cooldown:.0f}s)"
                )

    def release(self, provider_id: str) -> None:
        """Give back a half-open trial slot without recording an outcome."""
        with self._lock:
            breaker = self._get(provider_id)
            breaker.half_open_in_flight = False
            breaker.trial_started = None

    def reset(self, provider_id: str) -> None:
        with self._lock:
            self._breakers[provider_id] = CircuitBreakerState()
        logger.info(f"Circuit reset for '{provider_id}'")

    def state(self, provider_id: str) -> CircuitState:
        with self._lock:
            return self._get(provider_id).state

    def snapshot(self) -> Dict[str, Dict]:
        """Breaker state and call metrics for every known provider."""
        with self._lock:
            result = {}
            for provider_id, breaker in self._breakers.items():
                entry = asdict(breaker)
                entry["state"] = breaker.state.value
                entry["metrics"]["success_rate"] = round(breaker.metrics.success_rate, 3)
                result[provider_id] = entry
            return result
