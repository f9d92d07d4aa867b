"""
Circuit Breaker for provider connections.

Stops hammering a provider that keeps failing. One breaker exists per
provider and is shared by every concurrent caller for that provider.

States:
- CLOSED: normal operation, consecutive failures are counted
- OPEN: every call fails fast with ProviderError(UNAVAILABLE), no I/O
- HALF_OPEN: exactly one trial call is admitted; its outcome decides
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from edgefinder.errors import ProviderError, ProviderErrorKind

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerState:
    """Current state of the circuit breaker."""
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    trial_in_flight: bool = False
    total_trips: int = 0
    short_circuited: int = 0
    last_error: str = ""


class ProviderCircuitBreaker:
    """
    Per-provider circuit breaker.

    Transitions (all synchronous, so they cannot interleave inside the
    event loop):
    - CLOSED -> OPEN after ``failure_threshold`` consecutive failures
    - OPEN -> HALF_OPEN once ``timeout_seconds`` have elapsed
    - HALF_OPEN -> CLOSED on trial success, -> OPEN on trial failure

    Usage:
        breaker = ProviderCircuitBreaker("pinnacle", failure_threshold=5, timeout_seconds=30)
        payload = await breaker.call(lambda: client.fetch(...))
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds
        self._clock = clock

        self.state = CircuitBreakerState()
        self.logger = logger.bind(component="circuit_breaker", provider=provider)

    @property
    def current_state(self) -> CircuitState:
        return self.state.state

    def reconfigure(self, failure_threshold: int, timeout_seconds: float) -> None:
        """Apply new tunables without resetting the state machine."""
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds

    # =========================================================================
    # State machine
    # =========================================================================

    def before_call(self) -> None:
        """
        Gate a call.

        Raises:
            ProviderError(UNAVAILABLE): if the circuit is open, or half-open
                with the single trial already in flight
        """
        st = self.state

        if st.state == CircuitState.OPEN:
            elapsed = self._clock() - (st.opened_at or 0.0)
            if elapsed < self.timeout_seconds:
                st.short_circuited += 1
                raise ProviderError.unavailable(
                    self.provider,
                    f"circuit open ({self.timeout_seconds - elapsed:.1f}s remaining)",
                )
            st.state = CircuitState.HALF_OPEN
            st.trial_in_flight = True
            self.logger.info("circuit_half_open", elapsed=round(elapsed, 3))
            return

        if st.state == CircuitState.HALF_OPEN:
            if st.trial_in_flight:
                st.short_circuited += 1
                raise ProviderError.unavailable(self.provider, "circuit half-open, trial in flight")
            st.trial_in_flight = True

    def record_success(self) -> None:
        st = self.state
        if st.state == CircuitState.HALF_OPEN:
            st.state = CircuitState.CLOSED
            st.opened_at = None
            self.logger.info("circuit_closed")
        st.trial_in_flight = False
        st.consecutive_failures = 0

    def record_failure(self, error: str = "") -> None:
        st = self.state
        st.last_error = error

        if st.state == CircuitState.HALF_OPEN:
            st.trial_in_flight = False
            self._trip(reason="trial call failed")
            return

        st.consecutive_failures += 1
        if st.state == CircuitState.CLOSED and st.consecutive_failures >= self.failure_threshold:
            self._trip(reason=f"{st.consecutive_failures} consecutive failures")

    def release_trial(self) -> None:
        """Give back a half-open trial that never completed (cancelled call)."""
        st = self.state
        if st.state == CircuitState.HALF_OPEN and st.trial_in_flight:
            st.trial_in_flight = False
            st.state = CircuitState.OPEN
            # Next caller may trial immediately
            st.opened_at = self._clock() - self.timeout_seconds

    def _trip(self, reason: str) -> None:
        st = self.state
        st.state = CircuitState.OPEN
        st.opened_at = self._clock()
        st.total_trips += 1
        self.logger.warning(
            "circuit_opened",
            reason=reason,
            last_error=st.last_error,
            timeout_seconds=self.timeout_seconds,
        )

    def reset(self) -> None:
        """Manually close the circuit."""
        self.state = CircuitBreakerState(total_trips=self.state.total_trips)
        self.logger.info("Circuit breaker manually reset")

    # =========================================================================
    # Guarded call
    # =========================================================================

    @staticmethod
    def counts_as_failure(error: ProviderError) -> bool:
        """A provider that answered 'not found' is still up."""
        return error.kind != ProviderErrorKind.NOT_FOUND

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run one provider call through the breaker."""
        self.before_call()
        try:
            result = await func()
        except ProviderError as e:
            if self.counts_as_failure(e):
                self.record_failure(str(e))
            else:
                self.record_success()
            raise
        except Exception as e:
            self.record_failure(f"{type(e).__name__}: {e}")
            raise
        except BaseException:
            # Cancellation: no verdict on the provider
            self.release_trial()
            raise
        self.record_success()
        return result

    def get_status(self) -> dict:
        """Get current circuit breaker status."""
        st = self.state
        remaining = 0.0
        if st.state == CircuitState.OPEN and st.opened_at is not None:
            remaining = max(0.0, self.timeout_seconds - (self._clock() - st.opened_at))
        return {
            "provider": self.provider,
            "state": st.state.value,
            "consecutive_failures": st.consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "total_trips": st.total_trips,
            "short_circuited": st.short_circuited,
            "remaining_open_seconds": round(remaining, 3),
            "last_error": st.last_error,
        }
