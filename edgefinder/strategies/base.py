"""
Strategy interface and registry.

Strategies are a closed set of tagged variants. A new strategy is a class
decorated with ``@register_strategy("tag")``; configuration names the tag,
nothing is injected at runtime.

Strategy instances are cheap and rebuilt every cycle from that cycle's
config. Anything that must survive between cycles (steam history, model
handles) lives in the StrategyStateStore passed to the constructor.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, TypeVar

import structlog

from edgefinder.errors import ConfigurationError
from edgefinder.models.schemas import (
    BettingOpportunity,
    MarketType,
    OddsQuote,
    OddsSnapshot,
    OpportunityLeg,
    SportEvent,
    StrategyConfig,
    frozen_mapping,
)

logger = structlog.get_logger()

T = TypeVar("T")


class ProbabilityModel(Protocol):
    """
    External win-probability model.

    ``predict`` returns a probability per selection key for the event
    ("home", "away", "over@215.5", ...). Selections the model has no view
    on are simply absent.
    """

    def predict(self, event: SportEvent) -> Mapping[str, Decimal]:
        ...


class StaticProbabilityModel:
    """Probabilities supplied up front, keyed by event id."""

    def __init__(self, predictions: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self._predictions: dict[str, dict[str, Decimal]] = {}
        for event_id, probs in (predictions or {}).items():
            self.update(event_id, probs)

    def update(self, event_id: str, probabilities: Mapping[str, Any]) -> None:
        self._predictions[event_id] = {
            sel: p if isinstance(p, Decimal) else Decimal(str(p))
            for sel, p in probabilities.items()
        }

    def predict(self, event: SportEvent) -> Mapping[str, Decimal]:
        return self._predictions.get(event.event_id, {})


class StrategyStateStore:
    """Cross-cycle state owned on behalf of strategies, keyed by strategy name."""

    def __init__(self, models: Optional[Mapping[str, ProbabilityModel]] = None):
        self.models: dict[str, ProbabilityModel] = dict(models or {})
        self._state: dict[str, Any] = {}

    def get_or_create(self, key: str, factory: Callable[[], T]) -> T:
        if key not in self._state:
            self._state[key] = factory()
        return self._state[key]

    def evict_events(self, event_ids: Iterable[str]) -> int:
        """Tell every stateful object an event is gone. Returns entries evicted."""
        ids = frozenset(event_ids)
        if not ids:
            return 0
        evicted = 0
        for state in self._state.values():
            evict = getattr(state, "evict_events", None)
            if evict is not None:
                evicted += evict(ids)
        return evicted


# =============================================================================
# Strategy base
# =============================================================================

class Strategy(ABC):
    """
    Base class for opportunity evaluators.

    ``evaluate`` must be a pure function of the snapshot (plus, for stateful
    strategies, the history held in the state store). No wall clock, no
    randomness: the snapshot's ``taken_at`` is the only notion of "now".
    """

    strategy_type: str = ""

    def __init__(self, config: StrategyConfig, state: StrategyStateStore):
        self.config = config
        self.state = state
        self.logger = logger.bind(component="strategy", strategy=config.name)

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    def evaluate(self, snapshot: OddsSnapshot) -> list[BettingOpportunity]:
        """Detect opportunities in one snapshot."""

    def validate(self, opportunity: BettingOpportunity) -> bool:
        """
        Strategy-local sanity check.

        Checks shared by all strategies: at least one leg, every price above 1,
        a positive edge and stake weights summing to one.
        """
        if not opportunity.legs:
            return False
        if any(leg.odds <= 1 for leg in opportunity.legs):
            return False
        if opportunity.edge <= 0:
            return False
        total_weight = sum((leg.stake_weight for leg in opportunity.legs), Decimal("0"))
        return abs(total_weight - 1) <= Decimal("1e-12")

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def tradable_events(snapshot: OddsSnapshot) -> list[SportEvent]:
        """Events in the snapshot that can still be bet, in id order."""
        return [
            snapshot.events[eid]
            for eid in sorted(snapshot.events)
            if not snapshot.events[eid].status.is_terminal
        ]

    @staticmethod
    def quote_age_seconds(quote: OddsQuote, snapshot: OddsSnapshot) -> float:
        return (snapshot.taken_at - quote.captured_at).total_seconds()

    def opportunity(
        self,
        snapshot: OddsSnapshot,
        event_id: str,
        market: MarketType,
        legs: tuple[OpportunityLeg, ...],
        edge: Decimal,
        kelly_fraction: Optional[Decimal] = None,
        details: Optional[Mapping[str, Any]] = None,
    ) -> BettingOpportunity:
        """Build an opportunity stamped with this strategy's name and config version."""
        return BettingOpportunity(
            opportunity_id=BettingOpportunity.make_id(self.name, event_id, market, legs, snapshot.taken_at),
            strategy=self.name,
            event_id=event_id,
            sport=snapshot.sport,
            market=market,
            legs=legs,
            edge=edge,
            detected_at=snapshot.taken_at,
            snapshot_at=snapshot.taken_at,
            config_version=self.config.version,
            kelly_fraction=kelly_fraction,
            details=frozen_mapping(details),
        )


# =============================================================================
# Registry
# =============================================================================

STRATEGY_REGISTRY: dict[str, type[Strategy]] = {}


def register_strategy(tag: str) -> Callable[[type[Strategy]], type[Strategy]]:
    """Class decorator adding a strategy variant under ``tag``."""

    def decorator(cls: type[Strategy]) -> type[Strategy]:
        if tag in STRATEGY_REGISTRY and STRATEGY_REGISTRY[tag] is not cls:
            raise ConfigurationError(f"strategy type '{tag}' registered twice")
        cls.strategy_type = tag
        STRATEGY_REGISTRY[tag] = cls
        return cls

    return decorator


def build_strategy(config: StrategyConfig, state: StrategyStateStore) -> Strategy:
    """Instantiate the registered variant for a config."""
    cls = STRATEGY_REGISTRY.get(config.type)
    if cls is None:
        raise ConfigurationError(
            f"unknown strategy type '{config.type}' for {config.name} "
            f"(known: {', '.join(sorted(STRATEGY_REGISTRY))})"
        )
    return cls(config, state)
