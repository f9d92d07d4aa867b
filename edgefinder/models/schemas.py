"""
Core data models for the edge-discovery pipeline.

Defines the core data structures for:
- Sports events and their participants
- Normalized odds quotes and point-in-time snapshots
- Betting opportunities produced by strategies
- Bet orders and their lifecycle
- Versioned strategy configuration

Money and odds are always ``decimal.Decimal``. Quotes, snapshots and
opportunities are frozen once created; new readings create new objects.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from edgefinder.errors import InvalidTransitionError

# Namespace for content-derived identifiers (quotes, opportunities)
EDGEFINDER_NAMESPACE = uuid.UUID("3f0c9a52-6f43-4d1e-9a57-2f1f6c1e8b10")

ZERO = Decimal("0")
ONE = Decimal("1")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def frozen_mapping(data: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    """Read-only copy of a mapping."""
    return MappingProxyType(dict(data or {}))


# =============================================================================
# Enums
# =============================================================================

class OddsFormat(str, Enum):
    """Odds format types."""
    AMERICAN = "american"      # +150, -200
    DECIMAL = "decimal"        # 2.50, 1.50
    FRACTIONAL = "fractional"  # 3/2, 1/2


class MarketType(str, Enum):
    """Canonical market vocabulary."""
    MONEYLINE = "moneyline"
    SPREAD = "spread"
    TOTAL = "total"
    PROP = "prop"
    OTHER = "other"


class EventStatus(str, Enum):
    """Lifecycle of a sporting event."""
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.COMPLETED, EventStatus.CANCELLED)


# Allowed forward moves; anything else is a regression
_EVENT_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.SCHEDULED: frozenset({EventStatus.LIVE, EventStatus.COMPLETED, EventStatus.CANCELLED}),
    EventStatus.LIVE: frozenset({EventStatus.COMPLETED, EventStatus.CANCELLED}),
    EventStatus.COMPLETED: frozenset(),
    EventStatus.CANCELLED: frozenset(),
}


class ProviderState(str, Enum):
    """Freshness of one provider within a snapshot."""
    FRESH = "fresh"        # Fetched successfully this cycle
    STALE = "stale"        # Failed or timed out this cycle
    MISSING = "missing"    # Requested but no fetcher configured


class BetStatus(str, Enum):
    PROPOSED = "proposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    PLACED = "placed"
    SETTLED = "settled"
    FAILED = "failed"


class BetResult(str, Enum):
    WIN = "win"
    LOSS = "loss"
    PUSH = "push"
    VOID = "void"
    PENDING = "pending"


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class Participant:
    """A team or player taking part in an event."""
    participant_id: str
    name: str
    role: str  # Free-form tag: "home", "away", "player1"


@dataclass
class SportEvent:
    """
    A single sports event (game/match).

    Created on first sighting from any provider. Status only moves forward;
    once COMPLETED or CANCELLED only the metadata may still change.
    """
    event_id: str
    sport: str
    participants: tuple[Participant, ...]
    start_time: datetime
    status: EventStatus = EventStatus.SCHEDULED
    metadata: dict[str, Any] = field(default_factory=dict)

    def advance(self, status: EventStatus) -> bool:
        """
        Move to a new status.

        Returns:
            True if the status changed, False if it was already there

        Raises:
            InvalidTransitionError: on a regression or a change to a terminal event
        """
        if status == self.status:
            return False
        if status not in _EVENT_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"event {self.event_id}: {self.status.value} -> {status.value} not allowed"
            )
        self.status = status
        return True

    def enrich(self, metadata: Mapping[str, Any]) -> None:
        """Merge sport-specific metadata (allowed in every state)."""
        self.metadata.update(metadata)

    def participant(self, role: str) -> Optional[Participant]:
        for p in self.participants:
            if p.role == role:
                return p
        return None

    def get_display_name(self) -> str:
        """Get human-readable event name."""
        home = self.participant("home")
        away = self.participant("away")
        if home and away:
            return f"{away.name} @ {home.name}"
        return " vs ".join(p.name for p in self.participants) or self.event_id


# =============================================================================
# Quotes and snapshots
# =============================================================================

@dataclass(frozen=True)
class OddsQuote:
    """
    One price reading from one provider.

    Immutable: a new reading is a new quote. ``odds`` is canonical decimal odds.
    """
    quote_id: str
    event_id: str
    provider: str
    market: MarketType
    selection: str
    odds: Decimal
    captured_at: datetime
    line: Optional[Decimal] = None
    metadata: Mapping[str, Any] = field(default_factory=frozen_mapping)

    @property
    def implied_probability(self) -> Decimal:
        return ONE / self.odds

    @property
    def merge_key(self) -> tuple:
        """Identity of the price being quoted, independent of time."""
        return (self.event_id, self.provider, self.market, self.selection, self.line)

    @staticmethod
    def make_id(
        provider: str,
        event_id: str,
        market: MarketType,
        selection: str,
        line: Optional[Decimal],
        odds: Decimal,
        captured_at: datetime,
    ) -> str:
        """Content-derived quote id: the same reading always gets the same id."""
        raw = "|".join([
            provider, event_id, market.value, selection,
            "" if line is None else str(line), str(odds), captured_at.isoformat(),
        ])
        return str(uuid.uuid5(EDGEFINDER_NAMESPACE, raw))


@dataclass(frozen=True)
class ProviderStatus:
    """Per-provider freshness flag recorded in a snapshot."""
    provider: str
    state: ProviderState
    quote_count: int = 0
    error: Optional[str] = None
    last_success_at: Optional[datetime] = None

    @property
    def is_fresh(self) -> bool:
        return self.state == ProviderState.FRESH


@dataclass(frozen=True)
class OddsSnapshot:
    """
    Immutable point-in-time view of the latest quotes for one sport.

    Built by the aggregator, consumed read-only by strategies.
    """
    sport: str
    taken_at: datetime
    events: Mapping[str, SportEvent]
    quotes: Mapping[str, tuple[OddsQuote, ...]]
    providers: Mapping[str, ProviderStatus]
    cycle_id: str = ""

    @classmethod
    def build(
        cls,
        sport: str,
        taken_at: datetime,
        events: Mapping[str, SportEvent],
        quotes: Mapping[str, list[OddsQuote]],
        providers: Mapping[str, ProviderStatus],
        cycle_id: str = "",
    ) -> "OddsSnapshot":
        # Events are copied so later registry updates never leak into the snapshot
        frozen_events = {
            eid: replace(ev, metadata=dict(ev.metadata)) for eid, ev in events.items()
        }
        return cls(
            sport=sport,
            taken_at=taken_at,
            events=MappingProxyType(frozen_events),
            quotes=MappingProxyType({eid: tuple(qs) for eid, qs in quotes.items()}),
            providers=MappingProxyType(dict(providers)),
            cycle_id=cycle_id,
        )

    @classmethod
    def empty(
        cls,
        sport: str,
        taken_at: datetime,
        providers: Optional[Mapping[str, ProviderStatus]] = None,
        cycle_id: str = "",
    ) -> "OddsSnapshot":
        return cls.build(sport, taken_at, {}, {}, providers or {}, cycle_id)

    def quotes_for(self, event_id: str) -> tuple[OddsQuote, ...]:
        return self.quotes.get(event_id, ())

    @property
    def fresh_providers(self) -> frozenset[str]:
        return frozenset(p for p, s in self.providers.items() if s.is_fresh)

    @property
    def stale_providers(self) -> frozenset[str]:
        return frozenset(p for p, s in self.providers.items() if not s.is_fresh)

    @property
    def is_empty(self) -> bool:
        return not any(self.quotes.values())

    @property
    def quote_count(self) -> int:
        return sum(len(qs) for qs in self.quotes.values())


# =============================================================================
# Opportunities
# =============================================================================

@dataclass(frozen=True)
class OpportunityLeg:
    """One selection at one provider that makes up an opportunity."""
    provider: str
    selection: str
    odds: Decimal
    quote_id: str
    line: Optional[Decimal] = None
    stake_weight: Decimal = ONE  # Share of the opportunity stake on this leg


@dataclass(frozen=True)
class BettingOpportunity:
    """
    A detected edge, produced by a strategy evaluator.

    The id is derived from (strategy, event, market, set of selection and
    provider pairs, snapshot time) so re-evaluating an unchanged snapshot
    yields the same id while two books on the same outcomes stay distinct.
    """
    opportunity_id: str
    strategy: str
    event_id: str
    sport: str
    market: MarketType
    legs: tuple[OpportunityLeg, ...]
    edge: Decimal             # Expected profit per unit stake
    detected_at: datetime
    snapshot_at: datetime
    config_version: int = 1
    kelly_fraction: Optional[Decimal] = None
    details: Mapping[str, Any] = field(default_factory=frozen_mapping)

    @property
    def selections(self) -> tuple[str, ...]:
        return tuple(leg.selection for leg in self.legs)

    @property
    def providers(self) -> tuple[str, ...]:
        return tuple(leg.provider for leg in self.legs)

    @property
    def quote_ids(self) -> tuple[str, ...]:
        return tuple(leg.quote_id for leg in self.legs)

    @property
    def dedup_key(self) -> tuple:
        return self.key_for(self.strategy, self.event_id, self.market, leg_keys(self.legs), self.snapshot_at)

    @property
    def selection_keys(self) -> tuple[str, ...]:
        return tuple(selection_key(leg.selection, leg.line) for leg in self.legs)

    @staticmethod
    def key_for(
        strategy: str,
        event_id: str,
        market: MarketType,
        legs: tuple[str, ...],
        snapshot_at: datetime,
    ) -> tuple:
        return (strategy, event_id, market.value, tuple(sorted(legs)), snapshot_at.isoformat())

    @classmethod
    def make_id(
        cls,
        strategy: str,
        event_id: str,
        market: MarketType,
        legs: tuple[OpportunityLeg, ...],
        snapshot_at: datetime,
    ) -> str:
        key = cls.key_for(strategy, event_id, market, leg_keys(legs), snapshot_at)
        return str(uuid.uuid5(EDGEFINDER_NAMESPACE, repr(key)))


def selection_key(selection: str, line: Optional[Decimal]) -> str:
    return selection if line is None else f"{selection}@{format(line.normalize(), 'f')}"


def leg_keys(legs: tuple[OpportunityLeg, ...]) -> tuple[str, ...]:
    return tuple(f"{selection_key(leg.selection, leg.line)}|{leg.provider}" for leg in legs)


# =============================================================================
# Orders
# =============================================================================

@dataclass(frozen=True)
class Confirmation:
    """Receipt from the execution boundary."""
    order_id: str
    reference: str
    channel: str  # "shadow", "alert", "live"
    confirmed_at: datetime = field(default_factory=utcnow)


@dataclass
class BetOrder:
    """
    A stake committed against one leg of an approved opportunity.

    Created APPROVED by the dispatcher, then PLACED or FAILED by the
    execution boundary and finally SETTLED by external feedback.
    """
    order_id: str
    opportunity_id: str
    strategy: str
    event_id: str
    sport: str
    market: MarketType
    provider: str
    selection: str
    stake: Decimal
    odds: Decimal
    line: Optional[Decimal] = None
    status: BetStatus = BetStatus.PROPOSED
    result: BetResult = BetResult.PENDING
    profit_loss: Decimal = ZERO
    created_at: datetime = field(default_factory=utcnow)
    settled_at: Optional[datetime] = None
    confirmation: Optional[Confirmation] = None
    failure: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in (BetStatus.APPROVED, BetStatus.PLACED)

    def mark_placed(self, confirmation: Confirmation) -> None:
        if self.status != BetStatus.APPROVED:
            raise InvalidTransitionError(f"order {self.order_id}: cannot place from {self.status.value}")
        self.status = BetStatus.PLACED
        self.confirmation = confirmation

    def mark_failed(self, reason: str) -> None:
        if self.status != BetStatus.APPROVED:
            raise InvalidTransitionError(f"order {self.order_id}: cannot fail from {self.status.value}")
        self.status = BetStatus.FAILED
        self.failure = reason

    def settle(self, result: BetResult, settled_at: Optional[datetime] = None) -> Decimal:
        """
        Apply a settlement result and compute exact profit/loss.

        Returns:
            Profit (positive) or loss (negative) on this order
        """
        if self.status != BetStatus.PLACED:
            raise InvalidTransitionError(f"order {self.order_id}: cannot settle from {self.status.value}")
        if result == BetResult.PENDING:
            raise InvalidTransitionError(f"order {self.order_id}: PENDING is not a settlement result")

        if result == BetResult.WIN:
            pnl = self.stake * (self.odds - ONE)
        elif result == BetResult.LOSS:
            pnl = -self.stake
        else:
            pnl = ZERO

        self.status = BetStatus.SETTLED
        self.result = result
        self.profit_loss = pnl
        self.settled_at = settled_at or utcnow()
        return pnl


# =============================================================================
# Strategy configuration
# =============================================================================

@dataclass(frozen=True)
class StrategyConfig:
    """
    Versioned configuration of one strategy instance.

    Opportunities record the version that produced them; changing params
    creates a new version rather than mutating the old one.
    """
    name: str
    type: str
    enabled: bool = True
    params: Mapping[str, Any] = field(default_factory=frozen_mapping)
    version: int = 1

    def param(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)

    def decimal_param(self, key: str, default: str) -> Decimal:
        value = self.params.get(key, default)
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(str(value))

    def same_definition(self, other: "StrategyConfig") -> bool:
        return (
            self.type == other.type
            and self.enabled == other.enabled
            and dict(self.params) == dict(other.params)
        )
