"""
Value betting against an external probability model.

    edge = model_probability * decimal_odds - 1

i.e. expected profit per unit staked. The model is consumed, never
computed here; selections it has no probability for are skipped.
"""

from decimal import Decimal

from edgefinder.errors import ConfigurationError
from edgefinder.models.odds import kelly_fraction
from edgefinder.models.schemas import (
    BettingOpportunity,
    MarketType,
    OddsQuote,
    OddsSnapshot,
    OpportunityLeg,
    selection_key,
)
from edgefinder.strategies.base import ProbabilityModel, Strategy, register_strategy


@register_strategy("value")
class ValueBetStrategy(Strategy):
    """
    Params:
        model: Name of the probability model in the state store (default "default")
        edge_threshold: Minimum expected value per unit (default 0.02)
        max_quote_age_seconds: Ignore older prices (default 120)
        min_odds / max_odds: Price band (default 1.01 / 20)
        markets: Market types evaluated (default moneyline)
    """

    def __init__(self, config, state):
        super().__init__(config, state)
        self.edge_threshold = config.decimal_param("edge_threshold", "0.02")
        self.max_quote_age_seconds = float(config.param("max_quote_age_seconds", 120))
        self.min_odds = config.decimal_param("min_odds", "1.01")
        self.max_odds = config.decimal_param("max_odds", "20")
        self.markets = frozenset(MarketType(m) for m in config.param("markets", ["moneyline"]))

        model_name = config.param("model", "default")
        model = state.models.get(model_name)
        if model is None:
            raise ConfigurationError(f"{config.name}: no probability model named '{model_name}'")
        self.model: ProbabilityModel = model

    def _best_prices(self, quotes: tuple[OddsQuote, ...], snapshot: OddsSnapshot) -> dict[tuple, OddsQuote]:
        """Highest price per (market, selection key) among usable quotes."""
        best: dict[tuple, OddsQuote] = {}
        for quote in quotes:
            if quote.market not in self.markets:
                continue
            if self.quote_age_seconds(quote, snapshot) > self.max_quote_age_seconds:
                continue
            if not self.min_odds <= quote.odds <= self.max_odds:
                continue
            key = (quote.market, selection_key(quote.selection, quote.line))
            current = best.get(key)
            if current is None or quote.odds > current.odds or (
                quote.odds == current.odds and quote.provider < current.provider
            ):
                best[key] = quote
        return best

    def evaluate(self, snapshot: OddsSnapshot) -> list[BettingOpportunity]:
        opportunities = []

        for event in self.tradable_events(snapshot):
            probabilities = self.model.predict(event)
            if not probabilities:
                continue

            best = self._best_prices(snapshot.quotes_for(event.event_id), snapshot)
            for (market, sel_key), quote in sorted(best.items(), key=lambda kv: (kv[0][0].value, kv[0][1])):
                probability = probabilities.get(sel_key)
                if probability is None or not Decimal("0") < probability < Decimal("1"):
                    continue

                edge = probability * quote.odds - 1
                if edge < self.edge_threshold:
                    continue

                leg = OpportunityLeg(
                    provider=quote.provider,
                    selection=quote.selection,
                    odds=quote.odds,
                    quote_id=quote.quote_id,
                    line=quote.line,
                )
                opportunities.append(self.opportunity(
                    snapshot,
                    event.event_id,
                    market,
                    (leg,),
                    edge=edge,
                    kelly_fraction=kelly_fraction(probability, quote.odds),
                    details={
                        "model_probability": str(probability),
                        "implied_probability": str(quote.implied_probability),
                    },
                ))

        return opportunities

    def validate(self, opportunity: BettingOpportunity) -> bool:
        return (
            super().validate(opportunity)
            and len(opportunity.legs) == 1
            and opportunity.kelly_fraction is not None
            and opportunity.kelly_fraction > 0
        )
