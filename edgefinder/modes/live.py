"""
Live Mode - Automated placement through provider clients.
"""

from typing import Mapping

from edgefinder.errors import PlacementError, ProviderError
from edgefinder.feeds.base import ProviderClient
from edgefinder.models.schemas import BetOrder, Confirmation
from edgefinder.modes.base import ExecutionMode


class LiveMode(ExecutionMode):
    """
    Routes each order to the client registered for its provider.

    Provider failures surface as PlacementError so the dispatcher can
    release the stake.
    """

    def __init__(self, clients: Mapping[str, ProviderClient]):
        super().__init__("live")
        self.clients = dict(clients)

    async def place_or_alert(self, order: BetOrder) -> Confirmation:
        client = self.clients.get(order.provider)
        if client is None:
            self._failed += 1
            raise PlacementError(order.order_id, f"no placement client for provider {order.provider}")

        try:
            confirmation = await client.place_bet(order)
        except ProviderError as e:
            self._failed += 1
            self.logger.warning(
                "Live placement failed",
                order_id=order.order_id,
                provider=order.provider,
                kind=e.kind.value,
                error=e.message,
            )
            raise PlacementError(order.order_id, str(e)) from e

        self._handled += 1
        self.logger.info(
            "Live placement confirmed",
            order_id=order.order_id,
            provider=order.provider,
            reference=confirmation.reference,
        )
        return confirmation
