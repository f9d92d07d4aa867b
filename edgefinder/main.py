"""
EdgeFinder - Main Entry Point.

Runs one detection loop per enabled sport:
1. Fetch odds from every configured provider (rate limited, retried, breaker-guarded)
2. Merge into an immutable snapshot
3. Evaluate strategies (arbitrage, value, steam chase)
4. Size, risk-check and dispatch new opportunities

Usage:
    python -m edgefinder.main

Environment Variables:
    EDGE_CONFIG_FILE        - JSON file with providers/sports/strategies/risk
    EDGE_DISPATCH__MODE     - shadow|alert|live (default: shadow)
    EDGE_LOG_LEVEL          - DEBUG|INFO|WARNING|ERROR
    EDGE_ALERTS__DISCORD_WEBHOOK_URL - Discord webhook for alerts

Signals:
    SIGHUP           - reload configuration (applies from the next cycle)
    SIGINT / SIGTERM - stop; in-flight cycles are cancelled
"""

import asyncio
import signal
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

import structlog

from config.settings import DispatchMode, Settings, SportSettings
from edgefinder.config_store import ConfigSnapshot, ConfigStore
from edgefinder.engine.aggregator import OddsAggregator
from edgefinder.engine.dispatcher import OpportunityDispatcher
from edgefinder.engine.registry import EventRegistry
from edgefinder.engine.strategy_engine import StrategyEngine
from edgefinder.errors import ConfigurationError
from edgefinder.feeds import build_fetcher, retry_policy_from
from edgefinder.feeds.base import ProviderClient
from edgefinder.feeds.fetcher import ResilientFetcher
from edgefinder.models.schemas import BetStatus, utcnow
from edgefinder.modes import AlertMode, ExecutionMode, LiveMode, ShadowMode
from edgefinder.risk import RiskLimits, RiskManager, StakeSizer
from edgefinder.storage import Journal, build_journal
from edgefinder.strategies import ProbabilityModel, StrategyStateStore
from edgefinder.utils.alerts import AlertSink, DiscordAlerter, LogAlertSink
from edgefinder.utils.logging import setup_logging

logger = structlog.get_logger()


@dataclass
class CycleReport:
    """Summary of one sport cycle."""
    sport: str
    cycle_id: str
    config_version: int
    snapshot_at: Optional[datetime] = None
    providers: dict[str, str] = field(default_factory=dict)
    quotes: int = 0
    opportunities: int = 0
    new_opportunities: int = 0
    approved: int = 0
    rejected: dict[str, int] = field(default_factory=dict)
    orders_placed: int = 0
    orders_failed: int = 0
    strategy_failures: dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0


def build_mode(
    mode: DispatchMode,
    alerts: AlertSink,
    clients: Mapping[str, ProviderClient],
) -> ExecutionMode:
    if mode == DispatchMode.ALERT:
        return AlertMode(alerts)
    if mode == DispatchMode.LIVE:
        return LiveMode(clients)
    return ShadowMode()


class EdgeFinder:
    """
    Edge-discovery runner.

    Owns every long-lived component. Sport loops run concurrently; the
    risk manager's ledger is the only state they share.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        clients: Optional[Mapping[str, ProviderClient]] = None,
        models: Optional[Mapping[str, ProbabilityModel]] = None,
        journal: Optional[Journal] = None,
        alerts: Optional[AlertSink] = None,
        mode: Optional[ExecutionMode] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config_store = config_store
        self.logger = logger.bind(component="edgefinder")
        self._clients = dict(clients or {})
        self._clock = clock

        snapshot = config_store.current
        settings = snapshot.settings

        self.fetchers: dict[str, ResilientFetcher] = {}
        self._sync_fetchers(settings)

        self.registry = EventRegistry()
        self.aggregator = OddsAggregator(
            self.fetchers,
            self.registry,
            max_parallelism=settings.aggregator.max_parallelism,
            fetch_timeout=settings.aggregator.fetch_timeout_seconds,
            clock=clock,
        )
        self.engine = StrategyEngine(StrategyStateStore(models), history_size=settings.emitted_history_size)
        self.risk = RiskManager(clock=clock)
        self.journal = journal or build_journal(settings.journal)

        if alerts is None:
            webhook = settings.alerts.discord_webhook_url
            alerts = DiscordAlerter(webhook) if webhook else LogAlertSink()
        self.alerts = alerts

        self.mode = mode or build_mode(
            settings.dispatch.mode,
            alerts,
            {name: f.client for name, f in self.fetchers.items()},
        )
        self.dispatcher = OpportunityDispatcher(
            self.risk,
            self.mode,
            self.journal,
            alerts,
            min_edge_for_alert=settings.alerts.min_edge_for_alert,
        )

        self._applied_version = snapshot.version
        self._evicted: set[str] = set()
        self._tasks: dict[str, asyncio.Task] = {}
        self._stop_event = asyncio.Event()
        self._cycles = 0
        self._start_time = 0.0

    # =========================================================================
    # Configuration
    # =========================================================================

    def _sync_fetchers(self, settings: Settings) -> None:
        """Create fetchers for new providers, retune existing ones."""
        for name, provider in settings.enabled_providers().items():
            fetcher = self.fetchers.get(name)
            if fetcher is None:
                self.fetchers[name] = build_fetcher(name, provider, client=self._clients.get(name))
                continue
            fetcher.reconfigure(
                max_requests=provider.rate_limit.max_requests,
                window_seconds=provider.rate_limit.window_seconds,
                failure_threshold=provider.breaker.failure_threshold,
                timeout_seconds=provider.breaker.timeout_seconds,
                retry_policy=retry_policy_from(provider),
            )

    def _apply_config(self, snapshot: ConfigSnapshot) -> None:
        """Bring shared components in line with a newer config snapshot."""
        if snapshot.version == self._applied_version:
            return
        settings = snapshot.settings
        self._sync_fetchers(settings)
        self.aggregator.fetchers.update(self.fetchers)
        self.aggregator.reconfigure(
            settings.aggregator.max_parallelism,
            settings.aggregator.fetch_timeout_seconds,
        )
        self.engine.history_size = settings.emitted_history_size
        self._applied_version = snapshot.version

    @staticmethod
    def providers_for(settings: Settings, sport: SportSettings) -> list[str]:
        if sport.providers:
            return list(sport.providers)
        return list(settings.enabled_providers())

    def reload_config(self) -> None:
        """Reload (SIGHUP). Invalid config keeps the current one."""
        try:
            self.config_store.reload()
        except ConfigurationError as e:
            self.logger.error("Keeping previous configuration", error=str(e))
            return
        if not self._stop_event.is_set():
            self._start_sport_loops()

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self, sport: str) -> CycleReport:
        """
        One pass for a sport: snapshot -> evaluate -> size -> assess -> dispatch.

        The config snapshot is captured once, here, and used for the whole cycle.
        """
        config = self.config_store.current
        self._apply_config(config)
        settings = config.settings

        cycle_id = uuid.uuid4().hex[:12]
        report = CycleReport(sport=sport, cycle_id=cycle_id, config_version=config.version)
        sport_settings = settings.sports.get(sport)
        if sport_settings is None or not sport_settings.enabled:
            self.logger.warning("Sport not enabled, skipping cycle", sport=sport)
            return report

        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(sport=sport, cycle_id=cycle_id):
            snapshot = await self.aggregator.build_snapshot(
                sport,
                self.providers_for(settings, sport_settings),
                sport_settings.filters,
                cycle_id=cycle_id,
            )
            report.snapshot_at = snapshot.taken_at
            report.providers = {p: s.state.value for p, s in snapshot.providers.items()}
            report.quotes = snapshot.quote_count
            for quotes in snapshot.quotes.values():
                self.journal.append_quotes(quotes)

            evaluation = self.engine.evaluate(snapshot, config.strategies)
            report.opportunities = len(evaluation.opportunities)
            report.new_opportunities = len(evaluation.new_opportunities)
            report.strategy_failures = dict(evaluation.failures)

            limits = RiskLimits.from_settings(settings.risk)
            sizer = StakeSizer(
                bankroll=settings.risk.bankroll,
                unit_stake=settings.risk.unit_stake,
                kelly_multiplier=settings.risk.kelly_multiplier,
                max_stake=limits.max_bet,
            )

            for opportunity in evaluation.new_opportunities:
                self.journal.append_opportunity(opportunity)
                decision = await self.risk.assess(opportunity, sizer.size(opportunity), limits)
                orders = await self.dispatcher.dispatch(opportunity, decision)
                if not decision.approved:
                    reason = decision.reason.value if decision.reason else "unknown"
                    report.rejected[reason] = report.rejected.get(reason, 0) + 1
                    continue
                report.approved += 1
                report.orders_placed += sum(1 for o in orders if o.status == BetStatus.PLACED)
                report.orders_failed += sum(1 for o in orders if o.status == BetStatus.FAILED)

            self._evict_finished(settings)

        report.duration_ms = round((time.perf_counter() - started) * 1000, 1)
        self._cycles += 1
        self.logger.info(
            "Cycle complete",
            sport=sport,
            cycle_id=cycle_id,
            quotes=report.quotes,
            new=report.new_opportunities,
            approved=report.approved,
            rejected=report.rejected,
            duration_ms=report.duration_ms,
        )
        return report

    def _evict_finished(self, settings: Settings) -> None:
        finished = self.registry.terminal_ids() - self._evicted
        if finished:
            evicted = self.engine.forget_events(finished)
            self._evicted |= finished
            self.logger.debug("Evicted strategy state", events=len(finished), entries=evicted)

        # Idle records leave the registry; _evicted only tracks ids still in it
        retention = timedelta(hours=settings.aggregator.event_retention_hours)
        pruned = self.registry.prune(self._clock(), retention)
        if pruned:
            evicted = self.engine.forget_events(pruned)
            self._evicted.difference_update(pruned)
            self.logger.debug("Forgot idle events", events=len(pruned), entries=evicted)

    # =========================================================================
    # Loops
    # =========================================================================

    async def _sport_loop(self, sport: str) -> None:
        self.logger.info("Starting sport loop", sport=sport)
        while not self._stop_event.is_set():
            sport_settings = self.config_store.current.settings.sports.get(sport)
            if sport_settings is None or not sport_settings.enabled:
                self.logger.info("Sport disabled, loop exiting", sport=sport)
                return

            started = time.monotonic()
            try:
                await self.run_cycle(sport)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Cycle failed", sport=sport, error=str(e), exc_info=True)

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, sport_settings.poll_interval_seconds - elapsed))

    def _start_sport_loops(self) -> None:
        for sport in self.config_store.current.settings.enabled_sports():
            task = self._tasks.get(sport)
            if task is None or task.done():
                self._tasks[sport] = asyncio.create_task(self._sport_loop(sport), name=f"sport:{sport}")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.shutdown)
            loop.add_signal_handler(signal.SIGTERM, self.shutdown)
            if hasattr(signal, "SIGHUP"):
                loop.add_signal_handler(signal.SIGHUP, self.reload_config)
        except NotImplementedError:
            self.logger.warning("Signal handlers not supported on this platform")

    async def start(self) -> None:
        """Run every enabled sport until shutdown."""
        settings = self.config_store.current.settings
        self.logger.info(
            "Starting EdgeFinder",
            mode=self.mode.name,
            sports=list(settings.enabled_sports()),
            providers=list(self.fetchers),
            strategies=[c.name for c in self.config_store.current.strategies if c.enabled],
        )
        self._start_time = time.time()

        now = self._clock()
        window = RiskLimits.from_settings(settings.risk).window
        await self.risk.hydrate(self.journal.open_orders(), self.journal.settled_orders(now - window, now))

        self._install_signal_handlers()
        self._start_sport_loops()

        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            self.logger.info("EdgeFinder cancelled")

        await self.stop()

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        self.logger.info("Shutdown requested")
        self._stop_event.set()

    async def stop(self) -> None:
        """Cancel sport loops and release resources."""
        self._stop_event.set()
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self.aggregator.close()
        await self.alerts.close()
        self.journal.close()

        runtime = time.time() - self._start_time if self._start_time else 0.0
        self.logger.info("EdgeFinder stopped", cycles=self._cycles, runtime_minutes=round(runtime / 60, 1))

    def get_metrics(self) -> dict:
        return {
            "cycles": self._cycles,
            "config_version": self.config_store.current.version,
            "aggregator": self.aggregator.get_metrics(),
            "engine": self.engine.get_metrics(),
            "risk": self.risk.get_metrics(),
            "dispatcher": self.dispatcher.get_metrics(),
            "mode": self.mode.get_metrics(),
        }


def main():
    """Main entry point."""
    try:
        store = ConfigStore()
    except (ConfigurationError, OSError, ValueError) as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    settings = store.current.settings
    setup_logging(settings.log_level, settings.json_logs)

    async def run() -> None:
        bot = EdgeFinder(store)
        await bot.start()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\n⚠️ Interrupted")


if __name__ == "__main__":
    main()
