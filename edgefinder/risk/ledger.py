"""
Exposure ledger.

Running totals of committed stake per opportunity, event, sport and
globally, plus a rolling window of realized profit/loss. The ledger itself
does no locking: it is owned by the RiskManager, which serializes every
mutation.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from edgefinder.models.schemas import MarketType, ZERO, utcnow


@dataclass
class Position:
    """Open stake committed against one approved opportunity."""
    opportunity_id: str
    strategy: str
    event_id: str
    sport: str
    market: MarketType
    stake: Decimal
    committed_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class LedgerEntry:
    at: datetime
    opportunity_id: str
    amount: Decimal


class ExposureLedger:
    """
    Committed stake and realized P/L.

    Exposure totals always equal the sum of open position stakes; they are
    maintained incrementally so checks never scan positions.
    """

    def __init__(self):
        self._positions: dict[str, Position] = {}
        self._by_event: dict[str, Decimal] = {}
        self._by_sport: dict[str, Decimal] = {}
        self._total = ZERO

        # Rolling windows, oldest first
        self._commitments: deque[LedgerEntry] = deque()
        self._realized: deque[LedgerEntry] = deque()

    # =========================================================================
    # Reads
    # =========================================================================

    def has(self, opportunity_id: str) -> bool:
        return opportunity_id in self._positions

    def position(self, opportunity_id: str) -> Optional[Position]:
        return self._positions.get(opportunity_id)

    def open_positions(self) -> list[Position]:
        return list(self._positions.values())

    def event_exposure(self, event_id: str) -> Decimal:
        return self._by_event.get(event_id, ZERO)

    def sport_exposure(self, sport: str) -> Decimal:
        return self._by_sport.get(sport, ZERO)

    @property
    def total_exposure(self) -> Decimal:
        return self._total

    def pending_loss(self) -> Decimal:
        """Worst case on open positions: every open stake lost."""
        return self._total

    def _prune(self, now: datetime, window: timedelta) -> None:
        cutoff = now - window
        for entries in (self._commitments, self._realized):
            while entries and entries[0].at < cutoff:
                entries.popleft()

    def realized_pnl(self, now: datetime, window: timedelta) -> Decimal:
        self._prune(now, window)
        return sum((e.amount for e in self._realized), ZERO)

    def realized_loss(self, now: datetime, window: timedelta) -> Decimal:
        """Net realized loss inside the window (0 if net positive)."""
        return max(ZERO, -self.realized_pnl(now, window))

    def committed_in_window(self, now: datetime, window: timedelta) -> Decimal:
        self._prune(now, window)
        return sum((e.amount for e in self._commitments), ZERO)

    # =========================================================================
    # Mutations (RiskManager only)
    # =========================================================================

    def _adjust(self, position: Position, delta: Decimal) -> None:
        self._by_event[position.event_id] = self._by_event.get(position.event_id, ZERO) + delta
        self._by_sport[position.sport] = self._by_sport.get(position.sport, ZERO) + delta
        self._total += delta
        if self._by_event[position.event_id] == ZERO:
            del self._by_event[position.event_id]
        if self._by_sport[position.sport] == ZERO:
            del self._by_sport[position.sport]

    def commit(self, position: Position) -> None:
        if position.opportunity_id in self._positions:
            raise ValueError(f"opportunity {position.opportunity_id} already committed")
        if position.stake <= ZERO:
            raise ValueError("stake must be positive")
        self._positions[position.opportunity_id] = position
        self._adjust(position, position.stake)
        self._commitments.append(LedgerEntry(position.committed_at, position.opportunity_id, position.stake))

    def release(self, opportunity_id: str, amount: Optional[Decimal] = None) -> Decimal:
        """
        Return stake to the budget (failed placement, cancelled bet).

        Returns:
            Amount actually released
        """
        position = self._positions.get(opportunity_id)
        if position is None:
            return ZERO
        released = position.stake if amount is None else min(amount, position.stake)
        position.stake -= released
        self._adjust(position, -released)
        if position.stake == ZERO:
            del self._positions[opportunity_id]
        return released

    def settle(self, opportunity_id: str, stake: Decimal, pnl: Decimal, at: datetime) -> Decimal:
        """Move settled stake out of open exposure and book its P/L."""
        released = self.release(opportunity_id, stake)
        self._realized.append(LedgerEntry(at, opportunity_id, pnl))
        return released

    def restore(self, positions: Iterable[Position], realized: Iterable[LedgerEntry] = ()) -> None:
        """Rebuild state from persisted records (start-up only)."""
        for position in positions:
            existing = self._positions.get(position.opportunity_id)
            if existing is not None:
                existing.stake += position.stake
                self._adjust(existing, position.stake)
            else:
                self.commit(position)
        for entry in sorted(realized, key=lambda e: e.at):
            self._realized.append(entry)

    def get_state(self) -> dict:
        return {
            "open_positions": len(self._positions),
            "total_exposure": str(self._total),
            "by_sport": {k: str(v) for k, v in sorted(self._by_sport.items())},
            "events_exposed": len(self._by_event),
        }
