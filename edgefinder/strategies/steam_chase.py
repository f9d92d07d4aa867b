"""
Steam chasing.

When several books shorten the same outcome together inside a short
window, sharp money is moving the market. Books that have not moved yet
still offer the old price; betting the laggard at the new consensus
probability is the edge.

History is the only cross-cycle state of any strategy. It is bounded per
series (deque maxlen), keyed by (event, market, selection, line) and then
provider, and evicted once an event finishes or drops out of the feed for
longer than the window.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from edgefinder.models.odds import kelly_fraction
from edgefinder.models.schemas import (
    BettingOpportunity,
    MarketType,
    OddsQuote,
    OddsSnapshot,
    OpportunityLeg,
)
from edgefinder.strategies.base import Strategy, register_strategy

SeriesKey = tuple[str, MarketType, str, Optional[Decimal]]


@dataclass(frozen=True)
class PricePoint:
    at: datetime
    probability: Decimal
    odds: Decimal
    quote_id: str


class SteamHistory:
    """Rolling implied-probability history per market outcome and provider."""

    def __init__(self, max_points: int = 20):
        self.max_points = max_points
        self._series: dict[SeriesKey, dict[str, deque[PricePoint]]] = {}

    def __len__(self) -> int:
        return len(self._series)

    def record(self, quote: OddsQuote, at: datetime) -> bool:
        """
        Append one point for ``quote`` at snapshot time ``at``.

        Returns:
            False if this series already has a point at or after ``at``
        """
        key: SeriesKey = (quote.event_id, quote.market, quote.selection, quote.line)
        by_provider = self._series.setdefault(key, {})
        series = by_provider.get(quote.provider)
        if series is None:
            series = deque(maxlen=self.max_points)
            by_provider[quote.provider] = series
        if series and series[-1].at >= at:
            return False
        series.append(PricePoint(at, quote.implied_probability, quote.odds, quote.quote_id))
        return True

    def series(self, key: SeriesKey) -> dict[str, deque[PricePoint]]:
        return self._series.get(key, {})

    def keys(self) -> list[SeriesKey]:
        return list(self._series)

    def evict_events(self, event_ids: Iterable[str]) -> int:
        ids = frozenset(event_ids)
        doomed = [key for key in self._series if key[0] in ids]
        for key in doomed:
            del self._series[key]
        return len(doomed)

    def prune_idle(self, now: datetime, idle: timedelta) -> int:
        """Drop series whose newest point is older than ``idle``."""
        cutoff = now - idle
        doomed = [
            key for key, by_provider in self._series.items()
            if all(not s or s[-1].at < cutoff for s in by_provider.values())
        ]
        for key in doomed:
            del self._series[key]
        return len(doomed)


@register_strategy("steam_chase")
class SteamChaseStrategy(Strategy):
    """
    Params:
        min_move: Minimum rise in implied probability per book (default 0.03)
        window_seconds: Look-back window for the move (default 300)
        min_books: Books that must move together (default 2)
        min_edge: Minimum expected value at the lagging book (default 0.01)
        max_history: Points kept per provider series (default 20)
        max_quote_age_seconds: Ignore older prices (default 120)
        markets: Market types tracked (default moneyline, spread, total)
    """

    def __init__(self, config, state):
        super().__init__(config, state)
        self.min_move = config.decimal_param("min_move", "0.03")
        self.window = timedelta(seconds=float(config.param("window_seconds", 300)))
        self.min_books = int(config.param("min_books", 2))
        self.min_edge = config.decimal_param("min_edge", "0.01")
        self.max_quote_age_seconds = float(config.param("max_quote_age_seconds", 120))
        self.markets = frozenset(
            MarketType(m) for m in config.param("markets", ["moneyline", "spread", "total"])
        )

        max_history = int(config.param("max_history", 20))
        self.history: SteamHistory = state.get_or_create(
            f"steam_history:{config.name}", lambda: SteamHistory(max_history)
        )
        self.history.max_points = max_history

    def _track(self, snapshot: OddsSnapshot) -> None:
        terminal = [eid for eid, ev in snapshot.events.items() if ev.status.is_terminal]
        if terminal:
            self.history.evict_events(terminal)

        for event in self.tradable_events(snapshot):
            for quote in snapshot.quotes_for(event.event_id):
                if quote.market not in self.markets:
                    continue
                if self.quote_age_seconds(quote, snapshot) > self.max_quote_age_seconds:
                    continue
                self.history.record(quote, snapshot.taken_at)

        self.history.prune_idle(snapshot.taken_at, self.window)

    def _move(self, series: deque[PricePoint], now: datetime) -> Optional[tuple[Decimal, PricePoint]]:
        """(probability rise within window, current point) for a series quoted at ``now``."""
        in_window = [p for p in series if now - self.window <= p.at <= now]
        if len(in_window) < 2 or in_window[-1].at != now:
            return None
        return in_window[-1].probability - in_window[0].probability, in_window[-1]

    def evaluate(self, snapshot: OddsSnapshot) -> list[BettingOpportunity]:
        self._track(snapshot)
        now = snapshot.taken_at
        opportunities = []

        for event in self.tradable_events(snapshot):
            current = {
                (q.market, q.selection, q.line, q.provider): q
                for q in snapshot.quotes_for(event.event_id)
                if q.market in self.markets
            }
            keys = sorted(
                {(m, s, ln) for (m, s, ln, _) in current},
                key=lambda k: (k[0].value, k[1], Decimal("0") if k[2] is None else k[2]),
            )

            for market, selection, line in keys:
                by_provider = self.history.series((event.event_id, market, selection, line))

                movers: dict[str, PricePoint] = {}
                moves: dict[str, Decimal] = {}
                for provider in sorted(by_provider):
                    result = self._move(by_provider[provider], now)
                    if result is not None and result[0] >= self.min_move:
                        moves[provider] = result[0]
                        movers[provider] = result[1]

                if len(movers) < self.min_books:
                    continue

                consensus = sum((p.probability for p in movers.values()), Decimal("0")) / len(movers)

                laggards = [
                    q for (m, s, ln, provider), q in current.items()
                    if (m, s, ln) == (market, selection, line)
                    and provider not in movers
                    and self.quote_age_seconds(q, snapshot) <= self.max_quote_age_seconds
                ]
                if not laggards:
                    continue
                lag = min(laggards, key=lambda q: (-q.odds, q.provider))

                edge = consensus * lag.odds - 1
                if edge < self.min_edge:
                    continue

                leg = OpportunityLeg(
                    provider=lag.provider,
                    selection=lag.selection,
                    odds=lag.odds,
                    quote_id=lag.quote_id,
                    line=lag.line,
                )
                opportunities.append(self.opportunity(
                    snapshot,
                    event.event_id,
                    market,
                    (leg,),
                    edge=edge,
                    kelly_fraction=kelly_fraction(consensus, lag.odds),
                    details={
                        "consensus_probability": str(consensus),
                        "movers": sorted(movers),
                        "moves": {p: str(m) for p, m in sorted(moves.items())},
                        "window_seconds": self.window.total_seconds(),
                    },
                ))

        return opportunities

    def validate(self, opportunity: BettingOpportunity) -> bool:
        return super().validate(opportunity) and len(opportunity.legs) == 1
