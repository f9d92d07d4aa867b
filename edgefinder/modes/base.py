"""
Base mode class for the execution boundary.
"""

from abc import ABC, abstractmethod

import structlog

from edgefinder.models.schemas import BetOrder, Confirmation

logger = structlog.get_logger()


class ExecutionMode(ABC):
    """
    Abstract base class for execution modes.

    Modes:
    - Shadow: Simulate placement, log everything
    - Alert: Send notifications for a human to act on
    - Live: Automated placement through the provider
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logger.bind(mode=name)

        self._handled = 0
        self._failed = 0

    @abstractmethod
    async def place_or_alert(self, order: BetOrder) -> Confirmation:
        """
        Hand one order to the outside world.

        Args:
            order: APPROVED order for a single leg

        Returns:
            Confirmation from the boundary

        Raises:
            PlacementError: the order could not be placed or alerted
        """

    def get_metrics(self) -> dict:
        """Get mode-specific metrics."""
        return {
            "mode": self.name,
            "handled": self._handled,
            "failed": self._failed,
        }
