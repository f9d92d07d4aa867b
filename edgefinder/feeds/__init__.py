"""Odds provider feeds: clients, normalizers and the resilient fetcher."""

from typing import Optional

from config.settings import ProviderSettings
from edgefinder.errors import ConfigurationError
from edgefinder.feeds.base import ProviderClient, ProviderPage
from edgefinder.feeds.fetcher import ResilientFetcher
from edgefinder.feeds.normalizers import (
    FlatFeedNormalizer,
    NormalizedBatch,
    OddsAPINormalizer,
    QuoteNormalizer,
    get_normalizer,
)
from edgefinder.feeds.odds_api import OddsAPIClient
from edgefinder.feeds.static import StaticProviderClient
from edgefinder.utils.circuit_breaker import ProviderCircuitBreaker
from edgefinder.utils.rate_limiter import SlidingWindowRateLimiter
from edgefinder.utils.retry import RetryPolicy


def retry_policy_from(settings: ProviderSettings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry.max_attempts,
        base_delay=settings.retry.base_delay,
        max_delay=settings.retry.max_delay,
    )


def build_provider_client(name: str, settings: ProviderSettings) -> ProviderClient:
    """Create the client for a configured provider connection."""
    if settings.kind == "odds_api":
        return OddsAPIClient(
            name,
            api_key=settings.api_key,
            base_url=settings.base_url,
            regions=settings.regions,
            markets=settings.markets,
            bookmakers=settings.bookmakers,
            odds_format=settings.odds_format,
            timeout=settings.request_timeout,
        )
    if settings.kind == "static":
        return StaticProviderClient(name, payload_file=settings.payload_file)
    raise ConfigurationError(f"unknown provider kind '{settings.kind}' for {name}")


def build_fetcher(
    name: str,
    settings: ProviderSettings,
    client: Optional[ProviderClient] = None,
) -> ResilientFetcher:
    """Wire a client, its normalizer and its protections together."""
    return ResilientFetcher(
        client=client or build_provider_client(name, settings),
        normalizer=get_normalizer(settings.normalizer, name, settings.odds_format),
        rate_limiter=SlidingWindowRateLimiter(
            max_requests=settings.rate_limit.max_requests,
            window_seconds=settings.rate_limit.window_seconds,
            name=name,
        ),
        breaker=ProviderCircuitBreaker(
            name,
            failure_threshold=settings.breaker.failure_threshold,
            timeout_seconds=settings.breaker.timeout_seconds,
        ),
        retry_policy=retry_policy_from(settings),
    )


__all__ = [
    "ProviderClient",
    "ProviderPage",
    "ResilientFetcher",
    "QuoteNormalizer",
    "NormalizedBatch",
    "OddsAPINormalizer",
    "FlatFeedNormalizer",
    "get_normalizer",
    "OddsAPIClient",
    "StaticProviderClient",
    "build_provider_client",
    "build_fetcher",
    "retry_policy_from",
]
