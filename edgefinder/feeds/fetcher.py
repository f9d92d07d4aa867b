"""
Resilient fetcher: one provider connection wrapped in its protections.

Every page request goes circuit breaker -> rate limiter -> client, with
transient failures retried under the breaker's watch. An open breaker fails
the request before any I/O or rate-limit slot is spent.
"""

import time
from typing import Any, AsyncIterator, Mapping, Optional

import structlog

from edgefinder.errors import ProviderError
from edgefinder.feeds.base import ProviderClient, ProviderPage
from edgefinder.feeds.normalizers import NormalizedBatch, QuoteNormalizer
from edgefinder.utils.circuit_breaker import ProviderCircuitBreaker
from edgefinder.utils.rate_limiter import SlidingWindowRateLimiter
from edgefinder.utils.retry import RetryPolicy, retry_with_backoff

logger = structlog.get_logger()


class ResilientFetcher:
    """
    Fetches and normalizes odds for one provider.

    The breaker and limiter are owned here and shared by every concurrent
    cycle that uses this provider.
    """

    def __init__(
        self,
        client: ProviderClient,
        normalizer: QuoteNormalizer,
        rate_limiter: SlidingWindowRateLimiter,
        breaker: ProviderCircuitBreaker,
        retry_policy: Optional[RetryPolicy] = None,
        max_pages: int = 50,
    ):
        self.client = client
        self.normalizer = normalizer
        self.rate_limiter = rate_limiter
        self.breaker = breaker
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_pages = max_pages

        self.logger = logger.bind(component="fetcher", provider=client.name)

        # Health counters
        self._calls_ok = 0
        self._calls_failed = 0
        self._retries = 0
        self._pages = 0
        self._quotes = 0
        self._last_error = ""
        self._last_latency_ms = 0.0

    @property
    def provider(self) -> str:
        return self.client.name

    def reconfigure(
        self,
        max_requests: int,
        window_seconds: float,
        failure_threshold: int,
        timeout_seconds: float,
        retry_policy: RetryPolicy,
    ) -> None:
        """Swap tunables; applies to calls started after this returns."""
        self.rate_limiter.reconfigure(max_requests, window_seconds)
        self.breaker.reconfigure(failure_threshold, timeout_seconds)
        self.retry_policy = retry_policy

    # =========================================================================
    # Fetching
    # =========================================================================

    async def _guarded_fetch(
        self,
        sport: str,
        filters: Mapping[str, Any],
        page: Optional[str],
    ) -> ProviderPage:
        """One attempt: breaker gate, then a rate-limit slot, then the call."""

        async def attempt() -> ProviderPage:
            await self.rate_limiter.acquire()
            return await self.client.fetch(sport, filters, page)

        return await self.breaker.call(attempt)

    def _on_retry(self, attempt: int, delay: float, error: ProviderError) -> None:
        self._retries += 1
        self.logger.info(
            "provider_call_retry",
            attempt=attempt,
            delay=delay,
            kind=error.kind.value,
            error=error.message,
        )

    async def fetch_page(
        self,
        sport: str,
        filters: Mapping[str, Any],
        page: Optional[str] = None,
    ) -> ProviderPage:
        """
        Fetch one page with breaker, rate limit and retry applied.

        Raises:
            ProviderError: once retries are exhausted or on a non-transient error
        """
        start = time.perf_counter()
        try:
            result = await retry_with_backoff(
                lambda: self._guarded_fetch(sport, filters, page),
                self.retry_policy,
                on_retry=self._on_retry,
            )
        except ProviderError as e:
            self._calls_failed += 1
            self._last_error = str(e)
            self.logger.warning(
                "provider_call_failed",
                sport=sport,
                page=page,
                kind=e.kind.value,
                status_code=e.status_code,
                error=e.message,
                breaker=self.breaker.current_state.value,
            )
            raise

        self._calls_ok += 1
        self._last_latency_ms = (time.perf_counter() - start) * 1000
        self.logger.info(
            "provider_call_succeeded",
            sport=sport,
            page=page,
            latency_ms=round(self._last_latency_ms, 1),
        )
        return result

    async def stream(
        self,
        sport: str,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> AsyncIterator[NormalizedBatch]:
        """
        Yield one normalized batch per provider page.

        Raises:
            ProviderError: a page could not be fetched
            NormalizationError: a page was structurally malformed
        """
        filters = filters or {}
        page: Optional[str] = None
        for _ in range(self.max_pages):
            raw = await self.fetch_page(sport, filters, page)
            batch = self.normalizer.normalize(raw.payload, sport, raw.received_at)
            self._pages += 1
            self._quotes += len(batch.quotes)
            yield batch

            page = raw.next_page
            if page is None:
                return

        self.logger.warning("Page limit reached", sport=sport, max_pages=self.max_pages)

    async def fetch_all(
        self,
        sport: str,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> NormalizedBatch:
        """Drain ``stream`` into a single batch."""
        merged = NormalizedBatch(provider=self.provider)
        async for batch in self.stream(sport, filters):
            merged.events.extend(batch.events)
            merged.quotes.extend(batch.quotes)
        return merged

    async def close(self) -> None:
        await self.client.close()

    def get_metrics(self) -> dict:
        return {
            "provider": self.provider,
            "calls_ok": self._calls_ok,
            "calls_failed": self._calls_failed,
            "retries": self._retries,
            "pages": self._pages,
            "quotes": self._quotes,
            "last_latency_ms": round(self._last_latency_ms, 1),
            "last_error": self._last_error,
            "breaker": self.breaker.get_status(),
            "rate_limiter": self.rate_limiter.get_metrics(),
        }
