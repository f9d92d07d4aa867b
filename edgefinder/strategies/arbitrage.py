"""
Cross-book arbitrage.

For every event and market, picks one price per outcome across providers.
When the implied probabilities sum below 1, staking each outcome in
proportion to its inverse odds pays the same amount whatever happens:

    S = sum(1 / odds_i)           (< 1 for an arb)
    profit per unit staked = 1 / S - 1
    stake weight of leg i  = (1 / odds_i) / S

Example: 2.10 / 2.10 -> S = 0.952..., profit = 5%.

Profit is computed with exact rationals and only converted to Decimal at
the end, so the closed form holds without rounding drift.
"""

import itertools
from collections import defaultdict
from decimal import Decimal
from fractions import Fraction
from typing import Optional

from edgefinder.models.schemas import (
    BettingOpportunity,
    MarketType,
    OddsQuote,
    OddsSnapshot,
    OpportunityLeg,
)
from edgefinder.strategies.base import Strategy, register_strategy

DEFAULT_MARKETS = ("moneyline", "spread", "total")


def _to_decimal(value: Fraction) -> Decimal:
    return Decimal(value.numerator) / Decimal(value.denominator)


def line_group(quote: OddsQuote) -> Optional[Decimal]:
    """
    Line shared by complementary outcomes.

    Spreads are expressed from the home side (home -3.5 pairs with away
    +3.5), totals share the number directly.
    """
    if quote.line is None:
        return None
    if quote.market == MarketType.SPREAD and quote.selection == "away":
        return -quote.line
    return quote.line


@register_strategy("arbitrage")
class ArbitrageStrategy(Strategy):
    """
    Params:
        min_profit_pct: Minimum guaranteed return (fraction, default 0.01)
        max_skew_seconds: Max capture-time spread between legs (default 30)
        max_quote_age_seconds: Max age of any leg at snapshot time (default 120)
        max_combinations: Cap on opportunities per market group, 0 = every
            qualifying combination (default 0)
        max_candidates: Best prices considered per outcome (default 5)
        require_fresh_providers: Skip legs from providers stale this cycle (default True)
        markets: Market types evaluated (default moneyline, spread, total)
    """

    def __init__(self, config, state):
        super().__init__(config, state)
        self.min_profit_pct = config.decimal_param("min_profit_pct", "0.01")
        self.max_skew_seconds = float(config.param("max_skew_seconds", 30))
        self.max_quote_age_seconds = float(config.param("max_quote_age_seconds", 120))
        self.max_combinations = int(config.param("max_combinations", 0))
        self.max_candidates = int(config.param("max_candidates", 5))
        self.require_fresh = bool(config.param("require_fresh_providers", True))
        self.markets = frozenset(MarketType(m) for m in config.param("markets", DEFAULT_MARKETS))

    def _usable(self, quote: OddsQuote, snapshot: OddsSnapshot) -> bool:
        age = self.quote_age_seconds(quote, snapshot)
        if age > self.max_quote_age_seconds:
            return False
        if self.require_fresh:
            # Quotes are tagged by bookmaker; freshness is tracked per connection
            source = quote.metadata.get("source", quote.provider)
            status = snapshot.providers.get(source)
            if status is not None and not status.is_fresh:
                return False
        return True

    def evaluate(self, snapshot: OddsSnapshot) -> list[BettingOpportunity]:
        opportunities: list[BettingOpportunity] = []

        for event in self.tradable_events(snapshot):
            # Outcomes come from every quote; usability only narrows the prices
            outcomes: dict[tuple, set[str]] = defaultdict(set)
            groups: dict[tuple, dict[str, list[OddsQuote]]] = defaultdict(lambda: defaultdict(list))
            for quote in snapshot.quotes_for(event.event_id):
                if quote.market not in self.markets:
                    continue
                key = (quote.market, line_group(quote))
                outcomes[key].add(quote.selection)
                if self._usable(quote, snapshot):
                    groups[key][quote.selection].append(quote)

            for (market, line), selections in sorted(outcomes.items(), key=_group_sort_key):
                if len(selections) < 2:
                    continue
                by_selection = groups.get((market, line), {})
                uncovered = sorted(selections - set(by_selection))
                if uncovered:
                    self.logger.debug(
                        "Outcome without usable price, group skipped",
                        event_id=event.event_id,
                        market=market.value,
                        uncovered=uncovered,
                    )
                    continue
                opportunities.extend(
                    self._evaluate_group(snapshot, event.event_id, market, line, by_selection)
                )

        return opportunities

    def _evaluate_group(
        self,
        snapshot: OddsSnapshot,
        event_id: str,
        market: MarketType,
        line: Optional[Decimal],
        by_selection: dict[str, list[OddsQuote]],
    ) -> list[BettingOpportunity]:
        selections = sorted(by_selection)
        candidates = [
            sorted(by_selection[sel], key=lambda q: (-q.odds, q.provider))[: self.max_candidates]
            for sel in selections
        ]

        found = []
        for combo in itertools.product(*candidates):
            stamps = [q.captured_at for q in combo]
            skew = (max(stamps) - min(stamps)).total_seconds()
            if skew > self.max_skew_seconds:
                continue

            inverse = [Fraction(1) / Fraction(q.odds) for q in combo]
            implied_sum = sum(inverse, Fraction(0))
            if implied_sum >= 1:
                continue

            profit = Fraction(1) / implied_sum - 1
            if _to_decimal(profit) < self.min_profit_pct:
                continue
            found.append((profit, combo, inverse, implied_sum, skew))

        # Best first; provider names break ties deterministically
        found.sort(key=lambda f: (-f[0], tuple(q.provider for q in f[1])))

        if self.max_combinations > 0:
            found = found[: self.max_combinations]

        opportunities = []
        for profit, combo, inverse, implied_sum, skew in found:
            legs = tuple(
                OpportunityLeg(
                    provider=q.provider,
                    selection=q.selection,
                    odds=q.odds,
                    quote_id=q.quote_id,
                    line=q.line,
                    stake_weight=_to_decimal(inv / implied_sum),
                )
                for q, inv in zip(combo, inverse)
            )
            opportunities.append(self.opportunity(
                snapshot,
                event_id,
                market,
                legs,
                edge=_to_decimal(profit),
                details={
                    "implied_sum": str(_to_decimal(implied_sum)),
                    "profit_pct": str(_to_decimal(profit * 100)),
                    "skew_seconds": skew,
                    "line": None if line is None else str(line),
                },
            ))
        return opportunities

    def validate(self, opportunity: BettingOpportunity) -> bool:
        if not super().validate(opportunity):
            return False
        if len(opportunity.legs) < 2 or len(set(opportunity.selections)) != len(opportunity.legs):
            return False
        implied_sum = sum((Fraction(1) / Fraction(leg.odds) for leg in opportunity.legs), Fraction(0))
        return implied_sum < 1


def _group_sort_key(item: tuple) -> tuple:
    (market, line), _ = item
    return (market.value, Decimal("0") if line is None else line, line is None)
