"""
Retry with exponential backoff for provider calls.

Only transient provider errors are retried. Auth, not-found and
circuit-open errors propagate on the first occurrence.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from edgefinder.errors import ProviderError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff schedule.

    ``max_attempts`` counts every attempt including the first one; the delay
    before retry n (0-based) is ``base_delay * 2**n`` capped at ``max_delay``.
    """
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


async def retry_with_backoff(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, float, ProviderError], None]] = None,
) -> T:
    """
    Retry an async provider call with exponential backoff.

    Args:
        call: Zero-argument coroutine factory
        policy: Attempts and delays
        sleep: Awaitable sleep (injectable for tests)
        on_retry: Called with (attempt_number, delay, error) before sleeping

    Returns:
        The result of the first successful call

    Raises:
        ProviderError: the first non-retryable error, or the last transient
            error once attempts are exhausted
    """
    attempts = max(1, policy.max_attempts)

    for attempt in range(attempts):
        try:
            return await call()
        except ProviderError as e:
            if not e.retryable or attempt == attempts - 1:
                raise
            delay = policy.delay_for(attempt)
            if on_retry:
                on_retry(attempt + 1, delay, e)
            else:
                logger.debug(
                    "Retrying provider call",
                    provider=e.provider,
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(e),
                )
            await sleep(delay)

    raise RuntimeError("retry loop exited without result")  # pragma: no cover
