"""
Strategy engine.

Runs every enabled strategy over one frozen snapshot, in configuration
order. Strategies never see each other's output. A strategy that raises is
logged and counted as having found nothing; the others still run.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import structlog

from edgefinder.errors import ValidationError
from edgefinder.models.schemas import BettingOpportunity, OddsSnapshot, StrategyConfig
from edgefinder.strategies import StrategyStateStore, build_strategy

logger = structlog.get_logger()


@dataclass
class CycleEvaluation:
    """Output of one engine pass."""
    opportunities: list[BettingOpportunity] = field(default_factory=list)
    new_opportunities: list[BettingOpportunity] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)      # strategy -> error
    rejected: list[ValidationError] = field(default_factory=list)


class StrategyEngine:
    """
    Evaluates snapshots against the configured strategies.

    ``new_opportunities`` holds only opportunities whose key was never
    emitted before, so re-running an unchanged snapshot produces the same
    ``opportunities`` but no new work downstream. The memory of emitted keys
    is bounded (oldest forgotten first).
    """

    def __init__(self, state: StrategyStateStore, history_size: int = 50_000):
        self.state = state
        self.history_size = history_size
        self._emitted: OrderedDict[tuple, str] = OrderedDict()
        self.logger = logger.bind(component="strategy_engine")

        self._evaluations = 0
        self._faults = 0

    def _remember(self, opportunity: BettingOpportunity) -> bool:
        """Record an emitted key. Returns False if it was already known."""
        key = opportunity.dedup_key
        if key in self._emitted:
            self._emitted.move_to_end(key)
            return False
        self._emitted[key] = opportunity.opportunity_id
        while len(self._emitted) > self.history_size:
            self._emitted.popitem(last=False)
        return True

    def was_emitted(self, opportunity: BettingOpportunity) -> bool:
        return opportunity.dedup_key in self._emitted

    def evaluate(self, snapshot: OddsSnapshot, configs: Sequence[StrategyConfig]) -> CycleEvaluation:
        """
        Run enabled strategies over a snapshot.

        Args:
            snapshot: Frozen snapshot for one sport
            configs: Strategy configs captured at the start of the cycle

        Returns:
            CycleEvaluation with all valid opportunities in strategy order
        """
        self._evaluations += 1
        result = CycleEvaluation()

        for config in configs:
            if not config.enabled:
                continue

            try:
                strategy = build_strategy(config, self.state)
                found = [(o, strategy.validate(o)) for o in strategy.evaluate(snapshot)]
            except Exception as e:
                self._faults += 1
                result.failures[config.name] = f"{type(e).__name__}: {e}"
                self.logger.error(
                    "Strategy failed, skipping for this cycle",
                    strategy=config.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                continue

            for opportunity, valid in found:
                if not valid:
                    err = ValidationError(config.name, opportunity.opportunity_id, "failed strategy sanity check")
                    result.rejected.append(err)
                    self.logger.warning("Opportunity failed validation", error=str(err))
                    continue
                result.opportunities.append(opportunity)
                if self._remember(opportunity):
                    result.new_opportunities.append(opportunity)

        if result.opportunities:
            self.logger.info(
                "Strategies evaluated",
                sport=snapshot.sport,
                found=len(result.opportunities),
                new=len(result.new_opportunities),
                failed=sorted(result.failures),
            )
        return result

    def forget_events(self, event_ids: Iterable[str]) -> int:
        """Evict cross-cycle strategy state for finished events."""
        return self.state.evict_events(event_ids)

    def get_metrics(self) -> dict:
        return {
            "evaluations": self._evaluations,
            "faults": self._faults,
            "remembered_keys": len(self._emitted),
        }
