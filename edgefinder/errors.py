"""
Error taxonomy for the edge-discovery pipeline.

Provider failures are split by kind so the fetcher can decide what to retry:
only TRANSIENT errors are retried, everything else propagates immediately.
A RiskRejection is an expected outcome rather than a fault; it subclasses
EdgeFinderError only so it can be raised and caught where convenient.
"""

from enum import Enum
from typing import Optional


class EdgeFinderError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(EdgeFinderError):
    """Invalid or inconsistent configuration."""


class InvalidTransitionError(EdgeFinderError):
    """A state machine was asked to move backwards or out of a terminal state."""


# =============================================================================
# Provider boundary
# =============================================================================

class ProviderErrorKind(str, Enum):
    """Classification of provider failures."""
    TRANSIENT = "transient"      # Timeouts, 5xx, 429 - worth retrying
    AUTH = "auth"                # 401/403 - bad credentials
    NOT_FOUND = "not_found"      # 404 and other non-retryable 4xx
    UNAVAILABLE = "unavailable"  # Circuit open or provider disabled


class ProviderError(EdgeFinderError):
    """Failure talking to an odds provider."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        provider: str,
        message: str = "",
        status_code: Optional[int] = None,
    ):
        self.kind = kind
        self.provider = provider
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{provider}] {kind.value}: {message}")

    @property
    def retryable(self) -> bool:
        return self.kind == ProviderErrorKind.TRANSIENT

    @classmethod
    def from_status(cls, provider: str, status_code: int, message: str = "") -> "ProviderError":
        """Map an HTTP status code onto the error taxonomy."""
        if status_code in (401, 403):
            kind = ProviderErrorKind.AUTH
        elif status_code in (408, 425, 429) or status_code >= 500:
            kind = ProviderErrorKind.TRANSIENT
        else:
            kind = ProviderErrorKind.NOT_FOUND
        return cls(kind, provider, message or f"HTTP {status_code}", status_code=status_code)

    @classmethod
    def transient(cls, provider: str, message: str) -> "ProviderError":
        return cls(ProviderErrorKind.TRANSIENT, provider, message)

    @classmethod
    def unavailable(cls, provider: str, message: str) -> "ProviderError":
        return cls(ProviderErrorKind.UNAVAILABLE, provider, message)


class NormalizationError(EdgeFinderError):
    """A provider payload is structurally malformed (missing required field)."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"[{provider}] malformed payload: {message}")


# =============================================================================
# Strategy / risk / execution
# =============================================================================

class ValidationError(EdgeFinderError):
    """An opportunity failed its strategy's own sanity check."""

    def __init__(self, strategy: str, opportunity_id: str, reason: str):
        self.strategy = strategy
        self.opportunity_id = opportunity_id
        self.reason = reason
        super().__init__(f"[{strategy}] {opportunity_id}: {reason}")


class RejectionReason(str, Enum):
    """Why the risk manager turned an opportunity down."""
    PER_BET_LIMIT = "per_bet_limit"
    DAILY_LOSS_LIMIT = "daily_loss_limit"
    EVENT_EXPOSURE = "max_event_exposure"
    SPORT_EXPOSURE = "max_sport_exposure"
    TOTAL_EXPOSURE = "max_total_exposure"
    CORRELATION = "correlation"
    INVALID_STAKE = "invalid_stake"
    DUPLICATE = "duplicate"


class RiskRejection(EdgeFinderError):
    """Terminal rejection of an opportunity by the risk manager."""

    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class PlacementError(EdgeFinderError):
    """The execution boundary could not place or alert an order."""

    def __init__(self, order_id: str, message: str):
        self.order_id = order_id
        self.message = message
        super().__init__(f"order {order_id}: {message}")
