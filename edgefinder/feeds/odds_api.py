"""
The Odds API client.

Aggregates odds from 40+ sportsbooks including Pinnacle, Betfair, DraftKings.
API Docs: https://the-odds-api.com/liveapi/guides/v4/

Only the odds endpoint is used: /sports/{sport}/odds. The API is read-only,
so bet placement stays unsupported.
"""

import ssl
from typing import Any, Mapping, Optional

import certifi
import httpx
import structlog

from edgefinder.errors import ProviderError
from edgefinder.feeds.base import ProviderClient, ProviderPage

logger = structlog.get_logger()


class OddsAPIClient(ProviderClient):
    """
    HTTP client for The Odds API v4.

    Usage:
        client = OddsAPIClient("odds_api", api_key="your_key")
        page = await client.fetch("basketball_nba", {})
        await client.close()
    """

    def __init__(
        self,
        name: str,
        api_key: str,
        base_url: str = "https://api.the-odds-api.com/v4",
        regions: Optional[list[str]] = None,
        markets: Optional[list[str]] = None,
        bookmakers: Optional[list[str]] = None,
        odds_format: str = "decimal",
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.regions = regions or ["us", "eu", "uk"]
        self.markets = markets or ["h2h", "spreads", "totals"]
        self.bookmakers = bookmakers or []
        self.odds_format = odds_format
        self.timeout = timeout

        self.logger = logger.bind(feed="odds_api", provider=name)
        self._http_client = http_client

        # Quota tracking from response headers
        self.requests_remaining: Optional[int] = None
        self.requests_used: Optional[int] = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._http_client = httpx.AsyncClient(
                verify=ssl_context,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._http_client

    def _params(self, filters: Mapping[str, Any]) -> dict[str, Any]:
        params: dict[str, Any] = {
            "apiKey": self.api_key,
            "regions": ",".join(self.regions),
            "markets": ",".join(self.markets),
            "oddsFormat": self.odds_format,
            "dateFormat": "iso",
        }
        if self.bookmakers:
            params["bookmakers"] = ",".join(self.bookmakers)
        for key, value in filters.items():
            params[key] = ",".join(value) if isinstance(value, (list, tuple)) else value
        return params

    async def fetch(
        self,
        sport: str,
        filters: Mapping[str, Any],
        page: Optional[str] = None,
    ) -> ProviderPage:
        url = f"{self.base_url}/sports/{sport}/odds"

        try:
            response = await self._client().get(url, params=self._params(filters))
        except httpx.TimeoutException as e:
            raise ProviderError.transient(self.name, f"timeout: {type(e).__name__}") from e
        except httpx.TransportError as e:
            raise ProviderError.transient(self.name, f"transport error: {e}") from e

        if "x-requests-remaining" in response.headers:
            self.requests_remaining = int(float(response.headers["x-requests-remaining"]))
        if "x-requests-used" in response.headers:
            self.requests_used = int(float(response.headers["x-requests-used"]))

        if response.status_code != 200:
            raise ProviderError.from_status(self.name, response.status_code, response.text[:200])

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError.transient(self.name, "response body is not JSON") from e

        self.logger.debug(
            "API request",
            sport=sport,
            events=len(payload) if isinstance(payload, list) else None,
            remaining=self.requests_remaining,
        )
        return ProviderPage(payload=payload, headers=dict(response.headers))

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
