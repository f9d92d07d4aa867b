"""
Alert delivery for approved opportunities and settled bets.

The dispatcher publishes one structured event per approved opportunity and
per settled bet. Delivery is pluggable: structured log lines, or a Discord
webhook using a persistent HTTP client.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger()


class AlertSink(ABC):
    """Destination for structured alert events."""

    @abstractmethod
    async def publish(self, event: dict[str, Any]) -> bool:
        """Deliver one event. Returns True if delivered."""

    async def close(self) -> None:
        return None


class LogAlertSink(AlertSink):
    """Writes alert events to the structured log."""

    def __init__(self):
        self.logger = logger.bind(component="alerts")
        self.published: int = 0

    async def publish(self, event: dict[str, Any]) -> bool:
        self.published += 1
        self.logger.info("alert", **event)
        return True


class MemoryAlertSink(AlertSink):
    """Keeps events in memory (shadow runs and tests)."""

    def __init__(self):
        self.events: list[dict[str, Any]] = []

    async def publish(self, event: dict[str, Any]) -> bool:
        self.events.append(event)
        return True


class DiscordAlerter(AlertSink):
    """
    Discord webhook alerter.

    Features:
    - Persistent HTTP client with connection pooling
    - Progressive backoff on connection errors
    - Honors Discord 429 retry_after
    """

    MAX_RETRIES = 3
    RETRY_DELAYS = [1.0, 2.0, 5.0]

    # Embed colors
    COLOR_OPPORTUNITY = 0x00FF00
    COLOR_WIN = 0x2ECC71
    COLOR_LOSS = 0xE74C3C
    COLOR_NEUTRAL = 0x95A5A6

    def __init__(self, webhook_url: str, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self.logger = logger.bind(component="discord_alerter")
        self._rate_limit_until: float = 0
        self._consecutive_failures = 0
        self._client = client
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the persistent HTTP client."""
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(15.0, read=20.0),
                    limits=httpx.Limits(
                        max_keepalive_connections=3,
                        max_connections=5,
                        keepalive_expiry=30.0,
                    ),
                    follow_redirects=True,
                )
                self.logger.debug("Created new Discord HTTP client")
            return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _reset_client(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                try:
                    await self._client.aclose()
                except Exception as e:
                    self.logger.debug("Discord client close failed", error=str(e))
                self._client = None

    @staticmethod
    def _retry_after(response: httpx.Response) -> float:
        try:
            return float(response.json().get("retry_after", 5))
        except (ValueError, TypeError, AttributeError):
            return 5.0

    async def _send_with_retry(self, payload: dict) -> bool:
        if not self.webhook_url:
            return False

        if time.time() < self._rate_limit_until:
            return False

        for attempt in range(self.MAX_RETRIES):
            try:
                client = await self._get_client()
                response = await client.post(self.webhook_url, json=payload)

                if response.status_code == 429:
                    retry_after = self._retry_after(response)
                    self._rate_limit_until = time.time() + retry_after
                    self.logger.debug("Discord rate limited", retry_after=retry_after)
                    return False

                response.raise_for_status()
                self._consecutive_failures = 0
                return True

            except httpx.TransportError as e:
                self._consecutive_failures += 1
                self.logger.debug(
                    "Discord send failed",
                    error_type=type(e).__name__,
                    attempt=attempt + 1,
                )
                if attempt < self.MAX_RETRIES - 1:
                    await asyncio.sleep(self.RETRY_DELAYS[min(attempt, len(self.RETRY_DELAYS) - 1)])

            except httpx.HTTPStatusError as e:
                self._consecutive_failures += 1
                self.logger.warning("Discord rejected alert", status=e.response.status_code)
                return False

            except Exception as e:
                self._consecutive_failures += 1
                self.logger.warning("Discord send error", error_type=type(e).__name__, error=str(e))
                # Force client recreation
                await self._reset_client()
                return False

        self.logger.warning("Discord connectivity issues", failures=self._consecutive_failures)
        return False

    async def send_message(self, content: str) -> bool:
        return await self._send_with_retry({"content": content})

    async def publish(self, event: dict[str, Any]) -> bool:
        return await self._send_with_retry({"embeds": [self.build_embed(event)]})

    # ==========================================================================
    # Embeds
    # ==========================================================================

    def build_embed(self, event: dict[str, Any]) -> dict:
        """Render an alert event as a Discord embed."""
        kind = event.get("type", "event")

        if kind == "opportunity_approved":
            legs = "\n".join(
                f"**{leg['selection']}** @ {leg['odds']} ({leg['provider']}) stake {leg['stake']}"
                for leg in event.get("legs", [])
            )
            return {
                "title": f"🎯 {event.get('strategy', '').upper()} opportunity",
                "description": f"{event.get('event_id')} | {event.get('market')}",
                "color": self.COLOR_OPPORTUNITY,
                "fields": [
                    {"name": "Edge", "value": str(event.get("edge")), "inline": True},
                    {"name": "Stake", "value": str(event.get("stake")), "inline": True},
                    {"name": "Legs", "value": legs or "-", "inline": False},
                ],
                "footer": {"text": f"Opportunity {event.get('opportunity_id')}"},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        if kind == "bet_order":
            line = f" {event['line']}" if event.get("line") else ""
            return {
                "title": f"📋 Place bet: {event.get('provider')}",
                "description": (
                    f"**{event.get('selection')}{line}** @ {event.get('odds')}\n"
                    f"{event.get('event_id')} | {event.get('market')}"
                ),
                "color": self.COLOR_OPPORTUNITY,
                "fields": [
                    {"name": "Stake", "value": str(event.get("stake")), "inline": True},
                    {"name": "Strategy", "value": str(event.get("strategy")), "inline": True},
                ],
                "footer": {"text": f"Order {event.get('order_id')}"},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        if kind == "bet_settled":
            result = event.get("result", "")
            color = {
                "win": self.COLOR_WIN,
                "loss": self.COLOR_LOSS,
            }.get(result, self.COLOR_NEUTRAL)
            return {
                "title": f"Bet settled: {result.upper()}",
                "description": f"{event.get('selection')} @ {event.get('odds')} ({event.get('provider')})",
                "color": color,
                "fields": [
                    {"name": "Stake", "value": str(event.get("stake")), "inline": True},
                    {"name": "P/L", "value": str(event.get("profit_loss")), "inline": True},
                ],
                "footer": {"text": f"Order {event.get('order_id')}"},
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        return {
            "title": kind,
            "description": ", ".join(f"{k}={v}" for k, v in event.items() if k != "type"),
            "color": self.COLOR_NEUTRAL,
        }
