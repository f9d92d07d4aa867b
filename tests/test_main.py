"""End-to-end tests for the EdgeFinder runner."""

from decimal import Decimal

import pytest

from config.settings import (
    AggregatorSettings,
    ProviderSettings,
    RetrySettings,
    RiskSettings,
    Settings,
    SportSettings,
    StrategySettings,
)
from edgefinder.config_store import ConfigStore
from edgefinder.errors import ProviderError
from edgefinder.main import EdgeFinder, build_mode
from edgefinder.models.schemas import BetStatus
from edgefinder.modes import AlertMode, LiveMode, ShadowMode
from edgefinder.storage import MemoryJournal
from edgefinder.utils.alerts import MemoryAlertSink
from helpers import SPORT, Clock, ScriptedClient


def row(selection, odds):
    return {
        "event_id": "G1",
        "home": "Lakers",
        "away": "Celtics",
        "start_time": "2026-03-02T00:30:00Z",
        "market": "moneyline",
        "selection": selection,
        "odds": odds,
        "captured_at": "2026-03-01T19:00:00Z",
    }


def static_provider():
    return ProviderSettings(kind="static", normalizer="flat", retry=RetrySettings(max_attempts=1))


def settings(**overrides):
    values = {
        "providers": {"book_a": static_provider(), "book_b": static_provider()},
        "sports": {SPORT: SportSettings(poll_interval_seconds=1)},
        "strategies": [StrategySettings(name="arb", type="arbitrage")],
        "risk": RiskSettings(correlation_rules=[]),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clients():
    return {
        "book_a": ScriptedClient("book_a", [[row("Lakers", "2.10"), row("Celtics", "1.80")]]),
        "book_b": ScriptedClient("book_b", [[row("Lakers", "1.80"), row("Celtics", "2.10")]]),
    }


@pytest.fixture
def finder(clients):
    store = ConfigStore(initial=settings())
    return EdgeFinder(
        store,
        clients=clients,
        journal=MemoryJournal(),
        alerts=MemoryAlertSink(),
        mode=ShadowMode(),
        clock=Clock(),
    )


class TestRunCycle:

    @pytest.mark.asyncio
    async def test_cycle_places_arbitrage(self, finder):
        report = await finder.run_cycle(SPORT)

        assert report.providers == {"book_a": "fresh", "book_b": "fresh"}
        assert report.quotes == 4
        assert report.new_opportunities == 1
        assert report.approved == 1
        assert report.orders_placed == 2
        assert report.strategy_failures == {}

        orders = finder.journal.open_orders()
        assert {(o.provider, o.selection) for o in orders} == {("book_a", "home"), ("book_b", "away")}
        assert sum(o.stake for o in orders) == Decimal("100")
        assert finder.risk.ledger.total_exposure == Decimal("100")
        assert finder.journal.count("quotes") == 4
        assert finder.journal.count("opportunities") == 1

    @pytest.mark.asyncio
    async def test_unchanged_snapshot_is_not_dispatched_twice(self, finder):
        await finder.run_cycle(SPORT)
        second = await finder.run_cycle(SPORT)

        assert second.opportunities == 1
        assert second.new_opportunities == 0
        assert second.approved == 0
        assert len(finder.journal.open_orders()) == 2

    @pytest.mark.asyncio
    async def test_failing_provider_degrades_cycle(self, clients):
        clients["book_b"] = ScriptedClient("book_b", [ProviderError.transient("book_b", "HTTP 502")])
        finder = EdgeFinder(
            ConfigStore(initial=settings()),
            clients=clients,
            journal=MemoryJournal(),
            alerts=MemoryAlertSink(),
            mode=ShadowMode(),
            clock=Clock(),
        )

        report = await finder.run_cycle(SPORT)

        assert report.providers == {"book_a": "fresh", "book_b": "stale"}
        assert report.quotes == 2
        assert report.new_opportunities == 0

    @pytest.mark.asyncio
    async def test_disabled_sport(self, finder):
        report = await finder.run_cycle("icehockey_nhl")

        assert report.quotes == 0
        assert report.snapshot_at is None

    @pytest.mark.asyncio
    async def test_rejections_are_counted(self, clients):
        store = ConfigStore(initial=settings(risk=RiskSettings(max_event_exposure=Decimal("50"), correlation_rules=[])))
        finder = EdgeFinder(store, clients=clients, journal=MemoryJournal(), mode=ShadowMode(), clock=Clock())

        report = await finder.run_cycle(SPORT)

        assert report.approved == 0
        assert report.rejected == {"max_event_exposure": 1}
        assert finder.journal.count("decisions") == 1


class TestConfiguration:

    @pytest.mark.asyncio
    async def test_new_config_applies_next_cycle(self, finder, clients):
        clients["book_c"] = ScriptedClient("book_c", [[row("Lakers", "2.50")]])
        finder._clients.update(clients)

        providers = {"book_a": static_provider(), "book_b": static_provider(), "book_c": static_provider()}
        finder.config_store.apply(settings(providers=providers))
        report = await finder.run_cycle(SPORT)

        assert "book_c" in finder.fetchers
        assert report.providers["book_c"] == "fresh"
        assert report.config_version == 2

    def test_failed_reload_keeps_config(self, clients):
        def broken():
            raise ValueError("unreadable")

        store = ConfigStore(loader=broken, initial=settings())
        finder = EdgeFinder(store, clients=clients, journal=MemoryJournal(), mode=ShadowMode())

        finder.reload_config()

        assert store.current.version == 1

    def test_build_mode(self, clients):
        from config.settings import DispatchMode

        sink = MemoryAlertSink()
        assert isinstance(build_mode(DispatchMode.SHADOW, sink, clients), ShadowMode)
        assert isinstance(build_mode(DispatchMode.ALERT, sink, clients), AlertMode)
        live = build_mode(DispatchMode.LIVE, sink, clients)
        assert isinstance(live, LiveMode)
        assert set(live.clients) == {"book_a", "book_b"}


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_stop_closes_clients(self, finder, clients):
        await finder.run_cycle(SPORT)
        await finder.stop()

        assert clients["book_a"].closed and clients["book_b"].closed
        assert finder.get_metrics()["cycles"] == 1

    @pytest.mark.asyncio
    async def test_finished_and_idle_events_are_forgotten(self):
        final = dict(row("Lakers", "2.10"), status="final")
        clients = {
            "book_a": ScriptedClient("book_a", [[row("Lakers", "2.10"), row("Celtics", "1.80")], [final], []]),
            "book_b": ScriptedClient("book_b", [[row("Lakers", "1.80"), row("Celtics", "2.10")], []]),
        }
        clock = Clock()
        finder = EdgeFinder(ConfigStore(initial=settings()), clients=clients, journal=MemoryJournal(), mode=ShadowMode(), clock=clock)

        await finder.run_cycle(SPORT)
        assert len(finder.registry) == 1

        # Tip-off was 00:30; the final whistle is reported at 01:00
        clock.advance(hours=6)
        await finder.run_cycle(SPORT)
        assert len(finder.registry) == 1
        assert finder._evicted == set(finder.registry.terminal_ids())
        assert len(finder._evicted) == 1

        clock.advance(hours=7)
        await finder.run_cycle(SPORT)
        assert len(finder.registry) == 0
        assert finder._evicted == set()

    @pytest.mark.asyncio
    async def test_event_that_stops_being_quoted_is_forgotten(self):
        clients = {
            "book_a": ScriptedClient("book_a", [[row("Lakers", "2.10")], []]),
            "book_b": ScriptedClient("book_b", [[row("Celtics", "2.10")], []]),
        }
        clock = Clock()
        store = ConfigStore(initial=settings(aggregator=AggregatorSettings(event_retention_hours=1)))
        finder = EdgeFinder(store, clients=clients, journal=MemoryJournal(), mode=ShadowMode(), clock=clock)

        await finder.run_cycle(SPORT)
        clock.advance(hours=6)
        await finder.run_cycle(SPORT)
        assert len(finder.registry) == 1

        clock.advance(hours=1, minutes=1)
        await finder.run_cycle(SPORT)
        assert len(finder.registry) == 0
        assert finder.registry.get_stats()["pruned"] == 1

    @pytest.mark.asyncio
    async def test_open_orders_survive_into_a_new_runner(self, clients):
        journal = MemoryJournal()
        first = EdgeFinder(ConfigStore(initial=settings()), clients=clients, journal=journal, mode=ShadowMode(), clock=Clock())
        await first.run_cycle(SPORT)

        second = EdgeFinder(ConfigStore(initial=settings()), clients=clients, journal=journal, mode=ShadowMode(), clock=Clock())
        restored = await second.risk.hydrate(journal.open_orders())

        assert restored == 2
        assert second.risk.ledger.total_exposure == Decimal("100")
        assert all(o.status == BetStatus.PLACED for o in journal.open_orders())
