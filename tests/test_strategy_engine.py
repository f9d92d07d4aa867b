"""Tests for the strategy engine."""

from datetime import timedelta
from decimal import Decimal

import pytest

from edgefinder.engine.strategy_engine import StrategyEngine
from edgefinder.models.schemas import MarketType, OpportunityLeg
from edgefinder.strategies import Strategy, register_strategy
from helpers import T0, make_config, make_quote, make_snapshot


@register_strategy("exploding")
class ExplodingStrategy(Strategy):
    """Fails every evaluation."""

    def evaluate(self, snapshot):
        raise RuntimeError("model server down")


@register_strategy("negative_edge")
class NegativeEdgeStrategy(Strategy):
    """Emits an opportunity its own validation refuses."""

    def evaluate(self, snapshot):
        leg = OpportunityLeg(provider="book_a", selection="home", odds=Decimal("1.5"), quote_id="q")
        event_id = next(iter(snapshot.events))
        return [self.opportunity(snapshot, event_id, MarketType.MONEYLINE, (leg,), edge=Decimal("-0.1"))]


@pytest.fixture
def arb_snapshot():
    return make_snapshot([make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")])


@pytest.fixture
def engine(state):
    return StrategyEngine(state)


class TestStrategyEngine:

    def test_failing_strategy_is_contained(self, engine, arb_snapshot):
        configs = [make_config("boom", "exploding"), make_config("arb", "arbitrage")]

        result = engine.evaluate(arb_snapshot, configs)

        assert "boom" in result.failures
        assert "model server down" in result.failures["boom"]
        assert [o.strategy for o in result.opportunities] == ["arb"]
        assert engine.get_metrics()["faults"] == 1

    def test_configuration_error_is_contained(self, engine, arb_snapshot):
        configs = [make_config("value", "value", {"model": "missing"}), make_config("arb", "arbitrage")]

        result = engine.evaluate(arb_snapshot, configs)

        assert "value" in result.failures
        assert len(result.opportunities) == 1

    def test_unknown_strategy_type_is_contained(self, engine, arb_snapshot):
        result = engine.evaluate(arb_snapshot, [make_config("x", "martingale")])
        assert "x" in result.failures

    def test_same_snapshot_emits_once(self, engine, arb_snapshot):
        configs = [make_config("arb", "arbitrage")]

        first = engine.evaluate(arb_snapshot, configs)
        second = engine.evaluate(arb_snapshot, configs)

        assert len(first.new_opportunities) == 1
        assert second.new_opportunities == []
        assert [o.opportunity_id for o in second.opportunities] == [o.opportunity_id for o in first.opportunities]
        assert engine.was_emitted(first.opportunities[0])

    def test_new_snapshot_is_new_work(self, engine):
        configs = [make_config("arb", "arbitrage")]
        later = T0 + timedelta(seconds=30)

        engine.evaluate(make_snapshot([make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")]), configs)
        result = engine.evaluate(
            make_snapshot(
                [
                    make_quote("book_a", "home", "2.10", captured_at=later),
                    make_quote("book_b", "away", "2.10", captured_at=later),
                ],
                taken_at=later,
            ),
            configs,
        )

        assert len(result.new_opportunities) == 1

    def test_invalid_opportunity_rejected(self, engine, arb_snapshot):
        result = engine.evaluate(arb_snapshot, [make_config("neg", "negative_edge")])

        assert result.opportunities == []
        assert len(result.rejected) == 1
        assert result.rejected[0].strategy == "neg"

    def test_disabled_strategy_skipped(self, engine, arb_snapshot):
        result = engine.evaluate(arb_snapshot, [make_config("boom", "exploding", enabled=False)])
        assert result.failures == {}

    def test_config_version_recorded(self, engine, arb_snapshot):
        result = engine.evaluate(arb_snapshot, [make_config("arb", "arbitrage", version=3)])
        assert result.opportunities[0].config_version == 3

    def test_emitted_memory_is_bounded(self, state):
        engine = StrategyEngine(state, history_size=1)
        configs = [make_config("arb", "arbitrage")]
        first_snapshot = make_snapshot([make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")])
        first = engine.evaluate(first_snapshot, configs)

        later = T0 + timedelta(seconds=1)
        engine.evaluate(
            make_snapshot(
                [
                    make_quote("book_a", "home", "2.10", captured_at=later),
                    make_quote("book_b", "away", "2.10", captured_at=later),
                ],
                taken_at=later,
            ),
            configs,
        )

        assert not engine.was_emitted(first.opportunities[0])
        assert engine.get_metrics()["remembered_keys"] == 1

    def test_two_books_on_the_same_outcome_are_both_new(self, engine):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "2.10"),
            make_quote("book_c", "home", "2.05"),
            make_quote("book_b", "away", "2.10"),
        ])

        result = engine.evaluate(snapshot, [make_config("arb", "arbitrage")])

        ids = {o.opportunity_id for o in result.opportunities}
        assert len(result.opportunities) == 2
        assert len(ids) == 2
        assert {o.opportunity_id for o in result.new_opportunities} == ids
