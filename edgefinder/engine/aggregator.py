"""
Odds aggregator.

Fans out one fetch task per provider (bounded parallelism, individual
timeouts), joins them all, and merges whatever came back into one immutable
OddsSnapshot. A slow or failing provider degrades to STALE; it never fails
the cycle. Cancelling the cycle cancels every fetch and returns nothing.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Sequence

import structlog

from edgefinder.engine.registry import EventRegistry
from edgefinder.errors import NormalizationError, ProviderError
from edgefinder.feeds.fetcher import ResilientFetcher
from edgefinder.feeds.normalizers import NormalizedBatch
from edgefinder.models.schemas import (
    OddsQuote,
    OddsSnapshot,
    ProviderState,
    ProviderStatus,
    utcnow,
)

logger = structlog.get_logger()


@dataclass
class _FetchOutcome:
    provider: str
    batch: Optional[NormalizedBatch] = None
    error: Optional[str] = None
    timed_out: bool = False


@dataclass
class MergeResult:
    """Latest-wins merge of quotes from several batches."""
    quotes: dict[str, list[OddsQuote]] = field(default_factory=dict)
    replaced: int = 0
    ignored: int = 0


def merge_quotes(batches: Sequence[NormalizedBatch]) -> MergeResult:
    """
    Keep the newest quote per (event, provider, market, selection, line).

    Batches are walked in order; on equal ``captured_at`` the first-seen
    quote stays.
    """
    latest: dict[tuple, OddsQuote] = {}
    result = MergeResult()

    for batch in batches:
        for quote in batch.quotes:
            key = quote.merge_key
            current = latest.get(key)
            if current is None:
                latest[key] = quote
            elif quote.captured_at > current.captured_at:
                latest[key] = quote
                result.replaced += 1
            else:
                result.ignored += 1

    for quote in latest.values():
        result.quotes.setdefault(quote.event_id, []).append(quote)
    return result


class OddsAggregator:
    """
    Builds per-sport snapshots from the configured provider fetchers.

    Usage:
        aggregator = OddsAggregator(fetchers, registry, max_parallelism=4, fetch_timeout=20)
        snapshot = await aggregator.build_snapshot("basketball_nba", ["odds_api"], {})
    """

    def __init__(
        self,
        fetchers: Mapping[str, ResilientFetcher],
        registry: Optional[EventRegistry] = None,
        max_parallelism: int = 4,
        fetch_timeout: float = 20.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_parallelism < 1:
            raise ValueError("max_parallelism must be >= 1")
        self.fetchers = dict(fetchers)
        self.registry = registry or EventRegistry()
        self.max_parallelism = max_parallelism
        self.fetch_timeout = fetch_timeout
        self._clock = clock

        self.logger = logger.bind(component="aggregator")
        self._last_success: dict[str, datetime] = {}
        self._snapshots_built = 0

    def reconfigure(self, max_parallelism: int, fetch_timeout: float) -> None:
        self.max_parallelism = max(1, max_parallelism)
        self.fetch_timeout = fetch_timeout

    async def _fetch_one(
        self,
        provider: str,
        sport: str,
        filters: Mapping[str, Any],
        semaphore: asyncio.Semaphore,
    ) -> _FetchOutcome:
        fetcher = self.fetchers[provider]
        async with semaphore:
            try:
                batch = await asyncio.wait_for(fetcher.fetch_all(sport, filters), self.fetch_timeout)
            except asyncio.TimeoutError:
                return _FetchOutcome(provider, error=f"timed out after {self.fetch_timeout}s", timed_out=True)
            except (ProviderError, NormalizationError) as e:
                return _FetchOutcome(provider, error=str(e))
            except Exception as e:
                self.logger.error(
                    "Unexpected fetch error",
                    provider=provider,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return _FetchOutcome(provider, error=f"{type(e).__name__}: {e}")
        return _FetchOutcome(provider, batch=batch)

    async def build_snapshot(
        self,
        sport: str,
        providers: Sequence[str],
        filters: Optional[Mapping[str, Any]] = None,
        cycle_id: str = "",
    ) -> OddsSnapshot:
        """
        Fetch every provider for a sport and merge into a snapshot.

        Args:
            sport: Sport key
            providers: Provider names requested for this sport, in merge order
            filters: Provider query filters
            cycle_id: Correlation id recorded on the snapshot

        Returns:
            OddsSnapshot (possibly empty) with a status per requested provider

        Raises:
            asyncio.CancelledError: the cycle was cancelled; no snapshot is produced
        """
        filters = filters or {}
        semaphore = asyncio.Semaphore(self.max_parallelism)
        statuses: dict[str, ProviderStatus] = {}

        runnable = []
        for provider in providers:
            if provider in self.fetchers:
                runnable.append(provider)
            else:
                statuses[provider] = ProviderStatus(
                    provider=provider,
                    state=ProviderState.MISSING,
                    error="no fetcher configured",
                )

        # gather() cancels every child task if this coroutine is cancelled
        outcomes: list[_FetchOutcome] = await asyncio.gather(
            *(self._fetch_one(p, sport, filters, semaphore) for p in runnable)
        )

        batches = []
        for outcome in outcomes:
            if outcome.batch is None:
                statuses[outcome.provider] = ProviderStatus(
                    provider=outcome.provider,
                    state=ProviderState.STALE,
                    error=outcome.error,
                    last_success_at=self._last_success.get(outcome.provider),
                )
                self.logger.warning(
                    "Provider stale for cycle",
                    sport=sport,
                    provider=outcome.provider,
                    timed_out=outcome.timed_out,
                    error=outcome.error,
                )
                continue

            now = self._clock()
            self._last_success[outcome.provider] = now
            statuses[outcome.provider] = ProviderStatus(
                provider=outcome.provider,
                state=ProviderState.FRESH,
                quote_count=len(outcome.batch.quotes),
                last_success_at=now,
            )
            batches.append(outcome.batch)

        taken_at = self._clock()
        ordered_statuses = {p: statuses[p] for p in providers}

        for batch in batches:
            self.registry.observe_all(batch.events, seen_at=taken_at)

        merged = merge_quotes(batches)
        self._snapshots_built += 1

        if not merged.quotes:
            self.logger.info(
                "Empty snapshot",
                sport=sport,
                cycle_id=cycle_id,
                stale=[p for p, s in ordered_statuses.items() if not s.is_fresh],
            )
            return OddsSnapshot.empty(sport, taken_at, ordered_statuses, cycle_id)

        events = {}
        for event_id in merged.quotes:
            event = self.registry.get(event_id)
            if event is not None:
                events[event_id] = event

        snapshot = OddsSnapshot.build(
            sport=sport,
            taken_at=taken_at,
            events=events,
            quotes=merged.quotes,
            providers=ordered_statuses,
            cycle_id=cycle_id,
        )
        self.logger.info(
            "Snapshot built",
            sport=sport,
            cycle_id=cycle_id,
            events=len(events),
            quotes=snapshot.quote_count,
            replaced=merged.replaced,
            fresh=sorted(snapshot.fresh_providers),
            stale=sorted(snapshot.stale_providers),
        )
        return snapshot

    async def close(self) -> None:
        for fetcher in self.fetchers.values():
            await fetcher.close()

    def get_metrics(self) -> dict:
        return {
            "snapshots_built": self._snapshots_built,
            "max_parallelism": self.max_parallelism,
            "fetch_timeout": self.fetch_timeout,
            "registry": self.registry.get_stats(),
            "providers": {name: f.get_metrics() for name, f in self.fetchers.items()},
        }
