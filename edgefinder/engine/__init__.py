"""Pipeline engine: registry, aggregation, strategy evaluation, dispatch."""

from edgefinder.engine.aggregator import OddsAggregator, merge_quotes
from edgefinder.engine.dispatcher import OpportunityDispatcher, split_stake
from edgefinder.engine.registry import EventRegistry
from edgefinder.engine.strategy_engine import CycleEvaluation, StrategyEngine

__all__ = [
    "OddsAggregator",
    "merge_quotes",
    "OpportunityDispatcher",
    "split_stake",
    "EventRegistry",
    "CycleEvaluation",
    "StrategyEngine",
]
