"""
Static provider: replays recorded payloads.

Used for shadow runs against captured data and for wiring tests. Pages per
sport come either from memory or from a JSON file shaped like
{"basketball_nba": [page, page, ...]}.
"""

from pathlib import Path
from typing import Any, Mapping, Optional

import orjson

from edgefinder.errors import ProviderError, ProviderErrorKind
from edgefinder.feeds.base import ProviderClient, ProviderPage
from edgefinder.models.schemas import BetOrder, Confirmation


class StaticProviderClient(ProviderClient):
    """Serves fixed payload pages; optionally accepts bets in simulation."""

    def __init__(
        self,
        name: str,
        pages: Optional[Mapping[str, list[Any]]] = None,
        payload_file: str = "",
        accept_bets: bool = False,
    ):
        super().__init__(name)
        self._payload_file = payload_file
        self._pages: dict[str, list[Any]] = dict(pages or {})
        self.accept_bets = accept_bets
        self.calls = 0
        if payload_file:
            self.reload()

    def reload(self) -> None:
        """Re-read the payload file."""
        data = orjson.loads(Path(self._payload_file).read_bytes())
        if not isinstance(data, dict):
            raise ValueError(f"{self._payload_file}: expected an object keyed by sport")
        self._pages = {sport: list(pages) for sport, pages in data.items()}

    def set_pages(self, sport: str, pages: list[Any]) -> None:
        self._pages[sport] = list(pages)

    async def fetch(
        self,
        sport: str,
        filters: Mapping[str, Any],
        page: Optional[str] = None,
    ) -> ProviderPage:
        self.calls += 1
        pages = self._pages.get(sport)
        if pages is None:
            raise ProviderError(ProviderErrorKind.NOT_FOUND, self.name, f"no data for sport {sport}")
        if not pages:
            return ProviderPage(payload=[])

        index = int(page) if page else 0
        if index >= len(pages):
            raise ProviderError(ProviderErrorKind.NOT_FOUND, self.name, f"page {index} out of range")
        next_page = str(index + 1) if index + 1 < len(pages) else None
        return ProviderPage(payload=pages[index], next_page=next_page)

    async def place_bet(self, order: BetOrder) -> Confirmation:
        if not self.accept_bets:
            return await super().place_bet(order)
        return Confirmation(
            order_id=order.order_id,
            reference=f"{self.name}-{order.order_id[:8]}",
            channel="live",
        )
