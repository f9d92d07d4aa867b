"""
Alert Mode - Human-in-the-loop betting.

Each order becomes an alert; the human places the bet. A confirmation
means "delivered to the human", not "bet struck".
"""

from edgefinder.errors import PlacementError
from edgefinder.models.schemas import BetOrder, Confirmation
from edgefinder.modes.base import ExecutionMode
from edgefinder.utils.alerts import AlertSink


class AlertMode(ExecutionMode):
    """Publishes orders to an alert sink."""

    def __init__(self, sink: AlertSink):
        super().__init__("alert")
        self.sink = sink

    @staticmethod
    def build_event(order: BetOrder) -> dict:
        return {
            "type": "bet_order",
            "order_id": order.order_id,
            "opportunity_id": order.opportunity_id,
            "strategy": order.strategy,
            "event_id": order.event_id,
            "sport": order.sport,
            "market": order.market.value,
            "provider": order.provider,
            "selection": order.selection,
            "line": None if order.line is None else str(order.line),
            "odds": str(order.odds),
            "stake": str(order.stake),
        }

    async def place_or_alert(self, order: BetOrder) -> Confirmation:
        delivered = await self.sink.publish(self.build_event(order))
        if not delivered:
            self._failed += 1
            raise PlacementError(order.order_id, "alert delivery failed")

        self._handled += 1
        return Confirmation(
            order_id=order.order_id,
            reference=f"alert-{order.order_id}",
            channel="alert",
        )
