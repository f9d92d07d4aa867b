"""
Opportunity strategies.

Importing this package registers every built-in variant:
- arbitrage: cross-book guaranteed-return combinations
- value: model probability vs market price
- steam_chase: bet books lagging a coordinated line move
"""

from edgefinder.strategies.base import (
    STRATEGY_REGISTRY,
    ProbabilityModel,
    StaticProbabilityModel,
    Strategy,
    StrategyStateStore,
    build_strategy,
    register_strategy,
)
from edgefinder.strategies.arbitrage import ArbitrageStrategy
from edgefinder.strategies.steam_chase import SteamChaseStrategy, SteamHistory
from edgefinder.strategies.value_bet import ValueBetStrategy

__all__ = [
    "STRATEGY_REGISTRY",
    "ProbabilityModel",
    "StaticProbabilityModel",
    "Strategy",
    "StrategyStateStore",
    "build_strategy",
    "register_strategy",
    "ArbitrageStrategy",
    "SteamChaseStrategy",
    "SteamHistory",
    "ValueBetStrategy",
]
