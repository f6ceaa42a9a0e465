"""
Retry and cancellation helpers for provider calls.

The decision engine owns the retry loop; these helpers compute the backoff
schedule, classify exceptions, and wait in a way a cancel signal can
interrupt.

Usage:
    from clinical_core.utils.retry import backoff_delay, sleep_or_cancel

    for attempt in range(max_retries + 1):
        ...
        if await sleep_or_cancel(backoff_delay(attempt, 1.0, 8.0), cancel_event):
            return cancelled_response
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

import httpx
import openai

logger = logging.getLogger(__name__)

T = TypeVar("T")


# Transient network errors that should be retried
TRANSIENT_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
)


def is_retryable(exc: BaseException) -> bool:
    """Whether a provider exception is worth another attempt.

    Client errors (HTTP 4xx except 429: bad request, auth, not found) are
    permanent; everything else is treated as transient.
    """
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    status_code: Any = getattr(exc, "status_code", None)
    if isinstance(status_code, int) and 400 <= status_code < 500 and status_code != 429:
        return False
    return True


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff: base * 2^attempt, capped at max_delay.

    Schedule with base_delay=1s, max_delay=8s: 1s, 2s, 4s, 8s, 8s, ...
    """
    return min(base_delay * (2 ** attempt), max_delay)


async def sleep_or_cancel(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
    """Sleep for ``delay`` seconds unless the cancel signal fires first.

    Returns:
        True if cancelled, False if the full delay elapsed
    """
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False


async def run_cancellable(
    awaitable: Awaitable[T], cancel_event: Optional[asyncio.Event]
) -> Optional[T]:
    """Await ``awaitable`` unless the cancel signal fires first.

    On cancellation the pending call is cancelled and None is returned.
    Exceptions raised by the awaitable propagate.
    """
    if cancel_event is None:
        return await awaitable

    call = asyncio.ensure_future(awaitable)
    if cancel_event.is_set():
        call.cancel()
        return None
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        call.cancel()
        waiter.cancel()
        raise

    if call in done:
        waiter.cancel()
        return call.result()

    call.cancel()
    try:
        await call
    except asyncio.CancelledError:
        pass
    logger.debug("Provider call cancelled by request signal")
    return None
