"""Bankroll, exposure and stake sizing."""

from edgefinder.risk.ledger import ExposureLedger, LedgerEntry, Position
from edgefinder.risk.manager import CorrelationRule, RiskDecision, RiskLimits, RiskManager
from edgefinder.risk.sizing import StakeSizer

__all__ = [
    "ExposureLedger",
    "LedgerEntry",
    "Position",
    "CorrelationRule",
    "RiskDecision",
    "RiskLimits",
    "RiskManager",
    "StakeSizer",
]
