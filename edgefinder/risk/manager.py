"""
Risk & exposure manager.

Decides Approved / Rejected for each proposed opportunity. Checks run in a
fixed order and the first failure names the rejection:

1. per_bet_limit       stake <= bankroll * per_bet_limit
2. daily_loss_limit    realized loss + pending loss (+ this stake) within limit;
                       once at/over the limit everything is rejected until the
                       rolling window moves on
3. max_event_exposure  post-commit event exposure <= limit
4. max_sport_exposure  post-commit sport exposure <= limit
5. max_total_exposure  post-commit global exposure <= limit
6. correlation         no open position matched by a correlation rule

All checks and the ledger commit happen under one asyncio.Lock, so
concurrent cycles for different sports always see each other's approvals.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional

import structlog

from config.settings import RiskSettings
from edgefinder.errors import RejectionReason, RiskRejection
from edgefinder.models.schemas import BettingOpportunity, BetOrder, MarketType, ZERO, utcnow
from edgefinder.risk.ledger import ExposureLedger, LedgerEntry, Position

logger = structlog.get_logger()


@dataclass(frozen=True)
class CorrelationRule:
    """Markets that must not be held together (on one event, or across a sport)."""
    name: str
    markets: frozenset[MarketType]
    same_event: bool = True

    def matches(self, opportunity: BettingOpportunity, position: Position) -> bool:
        if opportunity.market not in self.markets or position.market not in self.markets:
            return False
        if self.same_event:
            return position.event_id == opportunity.event_id
        return position.sport == opportunity.sport


@dataclass(frozen=True)
class RiskLimits:
    """Limits in force for one decision (captured per cycle)."""
    bankroll: Decimal
    per_bet_limit: Decimal          # Fraction of bankroll
    daily_loss_limit: Decimal
    max_event_exposure: Decimal
    max_sport_exposure: Decimal
    max_total_exposure: Decimal
    window: timedelta = timedelta(hours=24)
    allow_downsize: bool = False
    min_stake: Decimal = Decimal("0.01")
    correlation_rules: tuple[CorrelationRule, ...] = ()

    @property
    def max_bet(self) -> Decimal:
        return self.bankroll * self.per_bet_limit

    @classmethod
    def from_settings(cls, settings: RiskSettings) -> "RiskLimits":
        return cls(
            bankroll=settings.bankroll,
            per_bet_limit=settings.per_bet_limit,
            daily_loss_limit=settings.daily_loss_limit,
            max_event_exposure=settings.max_event_exposure,
            max_sport_exposure=settings.max_sport_exposure,
            max_total_exposure=settings.max_total_exposure,
            window=timedelta(hours=settings.window_hours),
            allow_downsize=settings.allow_downsize,
            min_stake=settings.min_stake,
            correlation_rules=tuple(
                CorrelationRule(
                    name=rule.name,
                    markets=frozenset(MarketType(m) for m in rule.markets),
                    same_event=rule.same_event,
                )
                for rule in settings.correlation_rules
            ),
        )


@dataclass(frozen=True)
class RiskDecision:
    """Terminal outcome of an assessment."""
    opportunity_id: str
    approved: bool
    stake: Decimal = ZERO
    requested_stake: Decimal = ZERO
    reason: Optional[RejectionReason] = None
    detail: str = ""
    decided_at: datetime = field(default_factory=utcnow)

    @property
    def downsized(self) -> bool:
        return self.approved and self.stake < self.requested_stake

    @property
    def rejection(self) -> Optional[RiskRejection]:
        if self.approved or self.reason is None:
            return None
        return RiskRejection(self.reason, self.detail)


class RiskManager:
    """
    Single owner of the exposure ledger.

    Usage:
        manager = RiskManager()
        decision = await manager.assess(opportunity, Decimal("150"), limits)
        if decision.approved:
            ...
        await manager.release(opportunity.opportunity_id, Decimal("75"))
    """

    def __init__(
        self,
        ledger: Optional[ExposureLedger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger or ExposureLedger()
        self._lock = asyncio.Lock()
        self._clock = clock
        self.logger = logger.bind(component="risk_manager")

        self._approved = 0
        self._rejected: dict[str, int] = {}

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Assessment
    # =========================================================================

    def _check(
        self,
        opportunity: BettingOpportunity,
        stake: Decimal,
        limits: RiskLimits,
        now: datetime,
    ) -> Decimal:
        """
        Run the ordered checks against the current ledger.

        Returns:
            The stake to commit (smaller than requested only when downsized)

        Raises:
            RiskRejection: first failing check
        """
        ledger = self.ledger

        if ledger.has(opportunity.opportunity_id):
            raise RiskRejection(RejectionReason.DUPLICATE, "opportunity already committed")
        if stake <= ZERO or stake < limits.min_stake:
            raise RiskRejection(RejectionReason.INVALID_STAKE, f"stake {stake} below minimum {limits.min_stake}")

        # 1. Per-bet
        if stake > limits.max_bet:
            raise RiskRejection(
                RejectionReason.PER_BET_LIMIT,
                f"stake {stake} > {limits.max_bet} ({limits.per_bet_limit} of {limits.bankroll})",
            )

        # 2. Rolling daily loss
        at_risk = ledger.realized_loss(now, limits.window) + ledger.pending_loss()
        if at_risk >= limits.daily_loss_limit:
            raise RiskRejection(
                RejectionReason.DAILY_LOSS_LIMIT,
                f"halted: realized+pending loss {at_risk} >= {limits.daily_loss_limit}",
            )
        if at_risk + stake > limits.daily_loss_limit:
            raise RiskRejection(
                RejectionReason.DAILY_LOSS_LIMIT,
                f"realized+pending loss would reach {at_risk + stake} > {limits.daily_loss_limit}",
            )

        # 3-5. Exposure caps (optionally downsized to remaining headroom)
        caps = (
            (RejectionReason.EVENT_EXPOSURE, ledger.event_exposure(opportunity.event_id), limits.max_event_exposure),
            (RejectionReason.SPORT_EXPOSURE, ledger.sport_exposure(opportunity.sport), limits.max_sport_exposure),
            (RejectionReason.TOTAL_EXPOSURE, ledger.total_exposure, limits.max_total_exposure),
        )
        for reason, current, cap in caps:
            if current + stake <= cap:
                continue
            headroom = cap - current
            if limits.allow_downsize and headroom >= limits.min_stake:
                stake = headroom
                continue
            raise RiskRejection(reason, f"exposure {current} + {stake} > {cap}")

        # 6. Correlation
        for rule in limits.correlation_rules:
            for position in ledger.open_positions():
                if rule.matches(opportunity, position):
                    raise RiskRejection(
                        RejectionReason.CORRELATION,
                        f"rule {rule.name}: open {position.market.value} position {position.opportunity_id}",
                    )

        return stake

    async def assess(
        self,
        opportunity: BettingOpportunity,
        stake: Decimal,
        limits: RiskLimits,
    ) -> RiskDecision:
        """
        Approve or reject one opportunity, committing approved stake atomically.

        Returns:
            RiskDecision (a rejection is an outcome, not an exception)
        """
        async with self._lock:
            now = self._clock()
            try:
                approved_stake = self._check(opportunity, stake, limits, now)
            except RiskRejection as rejection:
                self._rejected[rejection.reason.value] = self._rejected.get(rejection.reason.value, 0) + 1
                decision = RiskDecision(
                    opportunity_id=opportunity.opportunity_id,
                    approved=False,
                    requested_stake=stake,
                    reason=rejection.reason,
                    detail=rejection.detail,
                    decided_at=now,
                )
                self.logger.info(
                    "Opportunity rejected",
                    opportunity_id=opportunity.opportunity_id,
                    strategy=opportunity.strategy,
                    event_id=opportunity.event_id,
                    stake=str(stake),
                    reason=rejection.reason.value,
                    detail=rejection.detail,
                )
                return decision

            self.ledger.commit(Position(
                opportunity_id=opportunity.opportunity_id,
                strategy=opportunity.strategy,
                event_id=opportunity.event_id,
                sport=opportunity.sport,
                market=opportunity.market,
                stake=approved_stake,
                committed_at=now,
            ))
            self._approved += 1

        decision = RiskDecision(
            opportunity_id=opportunity.opportunity_id,
            approved=True,
            stake=approved_stake,
            requested_stake=stake,
            decided_at=now,
        )
        self.logger.info(
            "Opportunity approved",
            opportunity_id=opportunity.opportunity_id,
            strategy=opportunity.strategy,
            event_id=opportunity.event_id,
            stake=str(approved_stake),
            downsized=decision.downsized,
        )
        return decision

    # =========================================================================
    # Compensation / settlement
    # =========================================================================

    async def release(self, opportunity_id: str, amount: Optional[Decimal] = None) -> Decimal:
        """Give stake back after a failed placement."""
        async with self._lock:
            released = self.ledger.release(opportunity_id, amount)
        if released:
            self.logger.info("Stake released", opportunity_id=opportunity_id, amount=str(released))
        return released

    async def settle(self, order: BetOrder) -> None:
        """Book a settled order: its stake leaves exposure, its P/L enters the window."""
        async with self._lock:
            self.ledger.settle(
                order.opportunity_id,
                order.stake,
                order.profit_loss,
                order.settled_at or self._clock(),
            )

    async def hydrate(self, open_orders: Iterable[BetOrder], realized: Iterable[BetOrder] = ()) -> int:
        """
        Restore ledger state from persisted orders at start-up.

        Returns:
            Number of open orders restored
        """
        positions = [
            Position(
                opportunity_id=o.opportunity_id,
                strategy=o.strategy,
                event_id=o.event_id,
                sport=o.sport,
                market=o.market,
                stake=o.stake,
                committed_at=o.created_at,
            )
            for o in open_orders
            if o.is_open and o.stake > ZERO
        ]
        entries = [
            LedgerEntry(o.settled_at, o.opportunity_id, o.profit_loss)
            for o in realized
            if o.settled_at is not None
        ]
        async with self._lock:
            self.ledger.restore(positions, entries)
        self.logger.info("Ledger restored", open_orders=len(positions), settled=len(entries))
        return len(positions)

    def get_metrics(self) -> dict:
        return {
            "approved": self._approved,
            "rejected": dict(self._rejected),
            "ledger": self.ledger.get_state(),
        }
