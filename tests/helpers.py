"""Builders shared across test files."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from edgefinder.feeds.base import ProviderClient, ProviderPage
from edgefinder.models.schemas import (
    BettingOpportunity,
    EventStatus,
    MarketType,
    OddsQuote,
    OddsSnapshot,
    OpportunityLeg,
    ProviderState,
    ProviderStatus,
    SportEvent,
    StrategyConfig,
    frozen_mapping,
)
from edgefinder.feeds.normalizers import make_participants

T0 = datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc)
SPORT = "basketball_nba"
EVENT_ID = "basketball_nba:20260302:celtics@lakers"


class Clock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_event(
    event_id: str = EVENT_ID,
    status: EventStatus = EventStatus.SCHEDULED,
    sport: str = SPORT,
) -> SportEvent:
    return SportEvent(
        event_id=event_id,
        sport=sport,
        participants=make_participants(sport, "Lakers", "Celtics"),
        start_time=datetime(2026, 3, 2, 0, 30, tzinfo=timezone.utc),
        status=status,
    )


def make_quote(
    provider: str,
    selection: str,
    odds: str,
    market: MarketType = MarketType.MONEYLINE,
    line: Optional[str] = None,
    event_id: str = EVENT_ID,
    captured_at: datetime = T0,
    source: Optional[str] = None,
) -> OddsQuote:
    price = Decimal(odds)
    line_value = None if line is None else Decimal(line)
    return OddsQuote(
        quote_id=OddsQuote.make_id(provider, event_id, market, selection, line_value, price, captured_at),
        event_id=event_id,
        provider=provider,
        market=market,
        selection=selection,
        odds=price,
        captured_at=captured_at,
        line=line_value,
        metadata=frozen_mapping({"source": source or provider}),
    )


def make_snapshot(
    quotes: Iterable[OddsQuote],
    events: Optional[Iterable[SportEvent]] = None,
    taken_at: datetime = T0,
    stale: Iterable[str] = (),
    sport: str = SPORT,
) -> OddsSnapshot:
    """Snapshot with every quoted source FRESH unless listed in ``stale``."""
    quotes = list(quotes)
    by_event: dict[str, list[OddsQuote]] = {}
    for q in quotes:
        by_event.setdefault(q.event_id, []).append(q)

    if events is None:
        events = [make_event(eid, sport=sport) for eid in by_event]

    stale = set(stale)
    sources = {q.metadata.get("source", q.provider) for q in quotes} | stale
    providers = {
        name: ProviderStatus(
            provider=name,
            state=ProviderState.STALE if name in stale else ProviderState.FRESH,
        )
        for name in sorted(sources)
    }
    return OddsSnapshot.build(
        sport=sport,
        taken_at=taken_at,
        events={ev.event_id: ev for ev in events},
        quotes=by_event,
        providers=providers,
    )


def make_opportunity(
    strategy: str = "value",
    event_id: str = EVENT_ID,
    market: MarketType = MarketType.MONEYLINE,
    legs: Optional[tuple[OpportunityLeg, ...]] = None,
    edge: str = "0.05",
    snapshot_at: datetime = T0,
    sport: str = SPORT,
    kelly_fraction: Optional[str] = None,
) -> BettingOpportunity:
    if legs is None:
        legs = (OpportunityLeg(provider="pinnacle", selection="home", odds=Decimal("2.10"), quote_id="q-1"),)
    return BettingOpportunity(
        opportunity_id=BettingOpportunity.make_id(strategy, event_id, market, legs, snapshot_at),
        strategy=strategy,
        event_id=event_id,
        sport=sport,
        market=market,
        legs=legs,
        edge=Decimal(edge),
        detected_at=snapshot_at,
        snapshot_at=snapshot_at,
        kelly_fraction=None if kelly_fraction is None else Decimal(kelly_fraction),
    )


def make_config(name: str, type_: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> StrategyConfig:
    return StrategyConfig(name=name, type=type_, params=frozen_mapping(params), **kwargs)


def odds_api_event(
    bookmakers: list[dict],
    home: str = "Los Angeles Lakers",
    away: str = "Boston Celtics",
    commence_time: str = "2026-03-02T00:30:00Z",
    event_id: str = "e1",
) -> dict:
    """One event in The Odds API v4 layout."""
    return {
        "id": event_id,
        "sport_key": SPORT,
        "sport_title": "NBA",
        "commence_time": commence_time,
        "home_team": home,
        "away_team": away,
        "bookmakers": bookmakers,
    }


def h2h_book(key: str, home_price: Any, away_price: Any, last_update: str = "2026-03-01T19:00:00Z") -> dict:
    return {
        "key": key,
        "title": key.title(),
        "last_update": last_update,
        "markets": [{
            "key": "h2h",
            "last_update": last_update,
            "outcomes": [
                {"name": "Los Angeles Lakers", "price": home_price},
                {"name": "Boston Celtics", "price": away_price},
            ],
        }],
    }


class ScriptedClient(ProviderClient):
    """
    Provider client that plays back a script of pages and errors.

    Each entry is either a payload (returned as a page) or an exception
    instance (raised). The last entry repeats once the script runs out.
    """

    def __init__(self, name: str, script: list, delay: float = 0.0):
        super().__init__(name)
        self.script = list(script)
        self.delay = delay
        self.calls = 0
        self.cancelled = False
        self.closed = False

    async def fetch(self, sport, filters, page=None) -> ProviderPage:
        index = min(self.calls, len(self.script) - 1)
        self.calls += 1
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        entry = self.script[index]
        if isinstance(entry, Exception):
            raise entry
        return ProviderPage(payload=entry)

    async def close(self) -> None:
        self.closed = True
