"""
Stake sizing.

Opportunities that carry a Kelly fraction (value, steam) are sized at a
fraction of Kelly; everything else (arbitrage) gets the flat unit stake.
Stakes are rounded down to cents and capped at the per-bet limit, so a
large edge is sized down rather than rejected.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from edgefinder.models.schemas import BettingOpportunity, ZERO

CENT = Decimal("0.01")


@dataclass(frozen=True)
class StakeSizer:
    bankroll: Decimal
    unit_stake: Decimal = Decimal("100")
    kelly_multiplier: Decimal = Decimal("0.25")
    max_stake: Decimal = Decimal("0")  # 0 = uncapped

    def size(self, opportunity: BettingOpportunity) -> Decimal:
        if opportunity.kelly_fraction is not None:
            raw = self.bankroll * opportunity.kelly_fraction * self.kelly_multiplier
        else:
            raw = self.unit_stake
        if self.max_stake > ZERO:
            raw = min(raw, self.max_stake)
        return max(ZERO, raw.quantize(CENT, rounding=ROUND_DOWN))
