"""
Provider boundary.

Every odds source implements ProviderClient. A fetch returns one page of
raw payload; providers that paginate hand back a ``next_page`` token and
the fetcher keeps asking until it is None.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from edgefinder.errors import ProviderError
from edgefinder.models.schemas import BetOrder, Confirmation, utcnow


@dataclass
class ProviderPage:
    """One raw page of provider payload."""
    payload: Any
    next_page: Optional[str] = None
    received_at: datetime = field(default_factory=utcnow)
    headers: Mapping[str, str] = field(default_factory=dict)


class ProviderClient(ABC):
    """
    Abstract odds provider connection.

    Subclasses raise ProviderError for every failure so the resilience
    layer can classify it.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def fetch(
        self,
        sport: str,
        filters: Mapping[str, Any],
        page: Optional[str] = None,
    ) -> ProviderPage:
        """
        Fetch one page of odds for a sport.

        Args:
            sport: Sport key (e.g. "basketball_nba")
            filters: Provider-specific query filters
            page: Continuation token from the previous page

        Raises:
            ProviderError: on any failure
        """

    async def place_bet(self, order: BetOrder) -> Confirmation:
        """Submit an order. Read-only feeds do not support placement."""
        raise ProviderError.unavailable(self.name, "bet placement not supported")

    async def close(self) -> None:
        return None
