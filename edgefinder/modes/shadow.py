"""
Shadow Mode - Simulate placement and collect data.
"""

from decimal import Decimal

from edgefinder.models.schemas import BetOrder, Confirmation, ZERO
from edgefinder.modes.base import ExecutionMode


class ShadowMode(ExecutionMode):
    """
    Shadow mode for dry runs.

    Every order is "placed" instantly with a simulated confirmation, so the
    whole pipeline (exposure, settlement, P/L) runs without real money.
    """

    def __init__(self):
        super().__init__("shadow")
        self._would_be_staked = ZERO

    async def place_or_alert(self, order: BetOrder) -> Confirmation:
        self._handled += 1
        self._would_be_staked += order.stake
        self.logger.info(
            "Shadow placement",
            order_id=order.order_id,
            provider=order.provider,
            selection=order.selection,
            stake=str(order.stake),
            odds=str(order.odds),
        )
        return Confirmation(
            order_id=order.order_id,
            reference=f"shadow-{order.order_id}",
            channel="shadow",
        )

    @property
    def would_be_staked(self) -> Decimal:
        return self._would_be_staked

    def get_metrics(self) -> dict:
        metrics = super().get_metrics()
        metrics["would_be_staked"] = str(self._would_be_staked)
        return metrics
