"""
Append-only journal of quotes, opportunities, risk decisions and orders.

Orders are appended again on every status change; the latest record per
order id wins. Two time-ordered indexes (creation and settlement) answer
the rolling-window queries the risk side needs with a bisect over the
window instead of a scan of all history.
"""

import bisect
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Optional

import orjson
import structlog
from pydantic import TypeAdapter

from edgefinder.models.schemas import (
    BetOrder,
    BetStatus,
    BettingOpportunity,
    OddsQuote,
    ZERO,
)

logger = structlog.get_logger()

ORDER_ADAPTER = TypeAdapter(BetOrder)


def _default(obj: Any) -> Any:
    """orjson fallback for types it does not serialize natively."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, MappingProxyType):
        return dict(obj)
    raise TypeError(f"not JSON serializable: {type(obj).__name__}")


def dumps(obj: Any) -> bytes:
    return orjson.dumps(obj, default=_default)


class Journal(ABC):
    """
    Persistence boundary.

    Subclasses only decide where records go; order state and the time
    indexes are kept here.
    """

    def __init__(self):
        self._orders: dict[str, BetOrder] = {}
        self._created_index: list[tuple[datetime, str]] = []
        self._settled_index: list[tuple[datetime, str]] = []
        self.logger = logger.bind(component="journal")

    @abstractmethod
    def _write(self, kind: str, payload: bytes) -> None:
        """Persist one serialized record of the given kind."""

    # =========================================================================
    # Appends
    # =========================================================================

    def append_quotes(self, quotes: Iterable[OddsQuote]) -> int:
        count = 0
        for quote in quotes:
            self._write("quotes", dumps(quote))
            count += 1
        return count

    def append_opportunity(self, opportunity: BettingOpportunity) -> None:
        self._write("opportunities", dumps(opportunity))

    def append_decision(self, decision: Any) -> None:
        """Record a risk decision (approvals and rejections) for audit."""
        self._write("decisions", dumps(decision))

    def append_order(self, order: BetOrder) -> None:
        self._write("orders", ORDER_ADAPTER.dump_json(order))
        self._index_order(order)

    def _index_order(self, order: BetOrder) -> None:
        # Store a copy so later in-place transitions are only seen once journaled
        snapshot = replace(order)
        known = self._orders.get(order.order_id)
        self._orders[order.order_id] = snapshot
        if known is None:
            bisect.insort(self._created_index, (snapshot.created_at, snapshot.order_id))
        if snapshot.settled_at is not None and (known is None or known.settled_at is None):
            bisect.insort(self._settled_index, (snapshot.settled_at, snapshot.order_id))

    # =========================================================================
    # Reads
    # =========================================================================

    def get_order(self, order_id: str) -> Optional[BetOrder]:
        order = self._orders.get(order_id)
        return replace(order) if order is not None else None

    def open_orders(self) -> list[BetOrder]:
        return [replace(o) for o in self._orders.values() if o.is_open]

    @staticmethod
    def _window(index: list[tuple[datetime, str]], start: datetime, end: datetime) -> list[str]:
        lo = bisect.bisect_left(index, (start, ""))
        hi = bisect.bisect_left(index, (end, ""))
        return [order_id for _, order_id in index[lo:hi]]

    @staticmethod
    def _matches(
        order: BetOrder,
        strategy: Optional[str],
        event_id: Optional[str],
        sport: Optional[str],
    ) -> bool:
        return (
            (strategy is None or order.strategy == strategy)
            and (event_id is None or order.event_id == event_id)
            and (sport is None or order.sport == sport)
        )

    def stake_sum(
        self,
        start: datetime,
        end: datetime,
        strategy: Optional[str] = None,
        event_id: Optional[str] = None,
        sport: Optional[str] = None,
    ) -> Decimal:
        """
        Committed stake of orders created in [start, end).

        Failed and rejected orders committed nothing and are excluded.
        """
        total = ZERO
        for order_id in self._window(self._created_index, start, end):
            order = self._orders[order_id]
            if order.status in (BetStatus.FAILED, BetStatus.REJECTED):
                continue
            if self._matches(order, strategy, event_id, sport):
                total += order.stake
        return total

    def settled_orders(self, start: datetime, end: datetime) -> list[BetOrder]:
        return [replace(self._orders[oid]) for oid in self._window(self._settled_index, start, end)]

    def realized_pnl(
        self,
        start: datetime,
        end: datetime,
        strategy: Optional[str] = None,
        event_id: Optional[str] = None,
        sport: Optional[str] = None,
    ) -> Decimal:
        """Profit/loss of orders settled in [start, end)."""
        return sum(
            (o.profit_loss for o in self.settled_orders(start, end) if self._matches(o, strategy, event_id, sport)),
            ZERO,
        )

    def close(self) -> None:
        return None


class MemoryJournal(Journal):
    """Keeps records in memory. Quote history is bounded."""

    def __init__(self, max_records: int = 100_000):
        super().__init__()
        self.records: dict[str, deque[bytes]] = {}
        self.max_records = max_records

    def _write(self, kind: str, payload: bytes) -> None:
        bucket = self.records.get(kind)
        if bucket is None:
            bucket = deque(maxlen=self.max_records)
            self.records[kind] = bucket
        bucket.append(payload)

    def count(self, kind: str) -> int:
        return len(self.records.get(kind, ()))


class JsonlJournal(Journal):
    """
    One JSON-lines file per record kind under a directory.

    On open, orders.jsonl is replayed so open positions and the time
    indexes survive a restart.
    """

    KINDS = ("quotes", "opportunities", "decisions", "orders")

    def __init__(self, directory: str):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._replay_orders()
        self._files = {kind: open(self.directory / f"{kind}.jsonl", "ab") for kind in self.KINDS}

    def _replay_orders(self) -> None:
        path = self.directory / "orders.jsonl"
        if not path.exists():
            return
        replayed = 0
        with open(path, "rb") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    order = ORDER_ADAPTER.validate_json(line)
                except ValueError as e:
                    self.logger.warning("Skipping unreadable order record", line=line_no, error=str(e))
                    continue
                self._index_order(order)
                replayed += 1
        self.logger.info("Journal replayed", path=str(path), orders=replayed, open=len(self.open_orders()))

    def _write(self, kind: str, payload: bytes) -> None:
        f = self._files[kind]
        f.write(payload + b"\n")
        f.flush()

    def close(self) -> None:
        for f in self._files.values():
            f.close()
