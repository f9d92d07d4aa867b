"""Utility modules."""

from edgefinder.utils.logging import setup_logging
from edgefinder.utils.alerts import AlertSink, DiscordAlerter, LogAlertSink, MemoryAlertSink
from edgefinder.utils.circuit_breaker import CircuitState, ProviderCircuitBreaker
from edgefinder.utils.rate_limiter import SlidingWindowRateLimiter
from edgefinder.utils.retry import RetryPolicy, retry_with_backoff

__all__ = [
    "setup_logging",
    "AlertSink",
    "DiscordAlerter",
    "LogAlertSink",
    "MemoryAlertSink",
    "CircuitState",
    "ProviderCircuitBreaker",
    "SlidingWindowRateLimiter",
    "RetryPolicy",
    "retry_with_backoff",
]
