"""Data models and odds math."""

from edgefinder.models.schemas import (
    BetOrder,
    BetResult,
    BetStatus,
    BettingOpportunity,
    Confirmation,
    EventStatus,
    MarketType,
    OddsFormat,
    OddsQuote,
    OddsSnapshot,
    OpportunityLeg,
    Participant,
    ProviderState,
    ProviderStatus,
    SportEvent,
    StrategyConfig,
)

__all__ = [
    "BetOrder",
    "BetResult",
    "BetStatus",
    "BettingOpportunity",
    "Confirmation",
    "EventStatus",
    "MarketType",
    "OddsFormat",
    "OddsQuote",
    "OddsSnapshot",
    "OpportunityLeg",
    "Participant",
    "ProviderState",
    "ProviderStatus",
    "SportEvent",
    "StrategyConfig",
]
