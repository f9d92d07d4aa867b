"""Tests for the arbitrage, value and steam-chase strategies."""

from datetime import timedelta
from decimal import Decimal

import pytest

from edgefinder.errors import ConfigurationError
from edgefinder.models.schemas import EventStatus, MarketType
from edgefinder.strategies import (
    ArbitrageStrategy,
    StaticProbabilityModel,
    SteamChaseStrategy,
    StrategyStateStore,
    ValueBetStrategy,
    build_strategy,
)
from helpers import EVENT_ID, T0, make_config, make_event, make_quote, make_snapshot


def arbitrage(state, **params):
    return build_strategy(make_config("arb", "arbitrage", params), state)


class TestArbitrage:

    def test_two_way_arb_exact_profit(self, state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "2.10"),
            make_quote("book_a", "away", "1.80"),
            make_quote("book_b", "home", "1.80"),
            make_quote("book_b", "away", "2.10"),
        ])
        strategy = arbitrage(state)

        (opp,) = strategy.evaluate(snapshot)

        assert isinstance(strategy, ArbitrageStrategy)
        assert opp.edge == Decimal("0.05")
        assert {(leg.provider, leg.selection) for leg in opp.legs} == {("book_a", "home"), ("book_b", "away")}
        assert [leg.stake_weight for leg in opp.legs] == [Decimal("0.5"), Decimal("0.5")]
        assert opp.details["profit_pct"] == "5"
        assert strategy.validate(opp)

    def test_no_arb_when_book_is_balanced(self, state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "1.90"),
            make_quote("book_b", "away", "1.90"),
        ])
        assert arbitrage(state).evaluate(snapshot) == []

    def test_min_profit_threshold(self, state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "2.03"),
            make_quote("book_b", "away", "2.03"),
        ])
        assert len(arbitrage(state, min_profit_pct="0.01").evaluate(snapshot)) == 1
        assert arbitrage(state, min_profit_pct="0.02").evaluate(snapshot) == []

    def test_skewed_quotes_rejected(self, state):
        snapshot = make_snapshot(
            [
                make_quote("book_a", "home", "2.10", captured_at=T0),
                make_quote("book_b", "away", "2.10", captured_at=T0 + timedelta(seconds=45)),
            ],
            taken_at=T0 + timedelta(seconds=50),
        )
        assert arbitrage(state, max_skew_seconds=30).evaluate(snapshot) == []
        assert len(arbitrage(state, max_skew_seconds=60).evaluate(snapshot)) == 1

    def test_old_quotes_ignored(self, state):
        snapshot = make_snapshot(
            [make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")],
            taken_at=T0 + timedelta(minutes=5),
        )
        assert arbitrage(state).evaluate(snapshot) == []

    def test_stale_source_excluded(self, state):
        snapshot = make_snapshot(
            [make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")],
            stale=["book_b"],
        )
        assert arbitrage(state).evaluate(snapshot) == []
        assert len(arbitrage(state, require_fresh_providers=False).evaluate(snapshot)) == 1

    def test_spread_sides_pair_on_home_line(self, state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "2.10", market=MarketType.SPREAD, line="-3.5"),
            make_quote("book_b", "away", "2.10", market=MarketType.SPREAD, line="3.5"),
            # Different number, must not pair with the -3.5 home side
            make_quote("book_c", "away", "3.00", market=MarketType.SPREAD, line="1.5"),
        ])

        (opp,) = arbitrage(state).evaluate(snapshot)

        assert opp.market == MarketType.SPREAD
        assert opp.details["line"] == "-3.5"
        assert opp.selection_keys == ("away@3.5", "home@-3.5")

    def test_three_way_market(self, state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "3.00"),
            make_quote("book_b", "draw", "3.60"),
            make_quote("book_c", "away", "3.60"),
        ])

        (opp,) = arbitrage(state).evaluate(snapshot)

        # 1/3 + 2/3.6 = 8/9 -> profit 1/8
        assert opp.edge == Decimal("0.125")
        assert sum(leg.stake_weight for leg in opp.legs) == 1

    def test_three_way_market_with_unusable_draw_is_skipped(self, state):
        home_away = [make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")]
        old_draw = make_quote("book_c", "draw", "3.40", captured_at=T0 - timedelta(seconds=600))

        assert arbitrage(state).evaluate(make_snapshot(home_away + [old_draw])) == []

        stale_draw = make_quote("book_c", "draw", "3.40")
        assert arbitrage(state).evaluate(make_snapshot(home_away + [stale_draw], stale=["book_c"])) == []

    def test_three_way_market_needs_every_outcome(self, state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "2.10"),
            make_quote("book_b", "away", "2.10"),
            make_quote("book_c", "draw", "30.0"),
        ])

        (opp,) = arbitrage(state).evaluate(snapshot)

        assert {leg.selection for leg in opp.legs} == {"home", "draw", "away"}

    def test_every_qualifying_combination_gets_its_own_id(self, state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "2.10"),
            make_quote("book_c", "home", "2.05"),
            make_quote("book_b", "away", "2.10"),
        ])

        found = arbitrage(state).evaluate(snapshot)
        capped = arbitrage(state, max_combinations=1).evaluate(snapshot)

        assert len(found) == 2
        assert len({o.opportunity_id for o in found}) == 2
        assert {leg.provider for o in found for leg in o.legs if leg.selection == "home"} == {"book_a", "book_c"}
        # The cap keeps the most profitable combination
        assert [o.opportunity_id for o in capped] == [found[0].opportunity_id]
        assert capped[0].edge == Decimal("0.05")

    def test_terminal_events_skipped(self, state):
        quotes = [make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")]
        snapshot = make_snapshot(quotes, events=[make_event(status=EventStatus.COMPLETED)])
        assert arbitrage(state).evaluate(snapshot) == []

    def test_same_snapshot_same_ids(self, state):
        snapshot = make_snapshot([make_quote("book_a", "home", "2.10"), make_quote("book_b", "away", "2.10")])
        first = arbitrage(state).evaluate(snapshot)
        second = arbitrage(state).evaluate(snapshot)
        assert [o.opportunity_id for o in first] == [o.opportunity_id for o in second]


class TestValueBet:

    @pytest.fixture
    def model_state(self):
        model = StaticProbabilityModel({EVENT_ID: {"home": "0.55"}})
        return StrategyStateStore({"default": model})

    def test_best_price_beats_model(self, model_state):
        snapshot = make_snapshot([
            make_quote("book_a", "home", "2.00"),
            make_quote("book_b", "home", "2.05"),
            make_quote("book_b", "away", "1.90"),
        ])
        strategy = build_strategy(make_config("value", "value"), model_state)

        (opp,) = strategy.evaluate(snapshot)

        assert isinstance(strategy, ValueBetStrategy)
        assert opp.legs[0].provider == "book_b"
        assert opp.edge == Decimal("0.55") * Decimal("2.05") - 1
        assert opp.kelly_fraction > 0
        assert strategy.validate(opp)

    def test_edge_threshold(self, model_state):
        snapshot = make_snapshot([make_quote("book_a", "home", "1.85")])
        strategy = build_strategy(make_config("value", "value", {"edge_threshold": "0.02"}), model_state)
        # 0.55 * 1.85 - 1 = 0.0175
        assert strategy.evaluate(snapshot) == []

    def test_odds_band(self, model_state):
        snapshot = make_snapshot([make_quote("book_a", "home", "2.05")])
        strategy = build_strategy(make_config("value", "value", {"max_odds": "2.0"}), model_state)
        assert strategy.evaluate(snapshot) == []

    def test_missing_model_is_configuration_error(self, state):
        with pytest.raises(ConfigurationError):
            build_strategy(make_config("value", "value", {"model": "elo"}), state)


class TestSteamChase:

    CONFIG = make_config("steam", "steam_chase", {"min_move": "0.03", "window_seconds": 300, "min_books": 2})

    def _cycle(self, at, prices, status=EventStatus.SCHEDULED):
        quotes = [make_quote(book, "home", odds, captured_at=at) for book, odds in prices.items()]
        return make_snapshot(quotes, events=[make_event(status=status)], taken_at=at)

    def test_detects_laggard_after_coordinated_move(self, state):
        build_strategy(self.CONFIG, state).evaluate(
            self._cycle(T0, {"book_a": "2.10", "book_b": "2.10", "book_c": "2.10"})
        )
        moved = self._cycle(T0 + timedelta(seconds=60), {"book_a": "1.90", "book_b": "1.90", "book_c": "2.10"})

        strategy = build_strategy(self.CONFIG, state)
        (opp,) = strategy.evaluate(moved)

        assert isinstance(strategy, SteamChaseStrategy)
        assert opp.legs[0].provider == "book_c"
        assert opp.legs[0].odds == Decimal("2.10")
        consensus = Decimal(1) / Decimal("1.90")
        assert opp.edge == consensus * Decimal("2.10") - 1
        assert opp.details["movers"] == ["book_a", "book_b"]

    def test_single_mover_is_not_steam(self, state):
        build_strategy(self.CONFIG, state).evaluate(self._cycle(T0, {"book_a": "2.10", "book_b": "2.10"}))
        moved = self._cycle(T0 + timedelta(seconds=60), {"book_a": "1.90", "book_b": "2.10"})
        assert build_strategy(self.CONFIG, state).evaluate(moved) == []

    def test_move_outside_window_ignored(self, state):
        build_strategy(self.CONFIG, state).evaluate(
            self._cycle(T0, {"book_a": "2.10", "book_b": "2.10", "book_c": "2.10"})
        )
        late = self._cycle(T0 + timedelta(minutes=10), {"book_a": "1.90", "book_b": "1.90", "book_c": "2.10"})
        assert build_strategy(self.CONFIG, state).evaluate(late) == []

    def test_re_evaluating_a_snapshot_is_idempotent(self, state):
        build_strategy(self.CONFIG, state).evaluate(
            self._cycle(T0, {"book_a": "2.10", "book_b": "2.10", "book_c": "2.10"})
        )
        moved = self._cycle(T0 + timedelta(seconds=60), {"book_a": "1.90", "book_b": "1.90", "book_c": "2.10"})

        first = build_strategy(self.CONFIG, state).evaluate(moved)
        second = build_strategy(self.CONFIG, state).evaluate(moved)

        assert [o.opportunity_id for o in first] == [o.opportunity_id for o in second]
        history = state.get_or_create("steam_history:steam", lambda: None)
        series = history.series((EVENT_ID, MarketType.MONEYLINE, "home", None))
        assert len(series["book_a"]) == 2

    def test_history_evicted_when_event_finishes(self, state):
        strategy = build_strategy(self.CONFIG, state)
        strategy.evaluate(self._cycle(T0, {"book_a": "2.10", "book_b": "2.10"}))
        assert len(strategy.history) == 1

        build_strategy(self.CONFIG, state).evaluate(
            self._cycle(T0 + timedelta(seconds=30), {"book_a": "2.10"}, status=EventStatus.COMPLETED)
        )
        assert len(strategy.history) == 0

    def test_store_eviction_reaches_history(self, state):
        strategy = build_strategy(self.CONFIG, state)
        strategy.evaluate(self._cycle(T0, {"book_a": "2.10"}))

        assert state.evict_events([EVENT_ID]) == 1
        assert len(strategy.history) == 0

    def test_history_is_bounded(self, state):
        config = make_config("steam", "steam_chase", {"max_history": 3, "window_seconds": 3600})
        for i in range(10):
            build_strategy(config, state).evaluate(
                self._cycle(T0 + timedelta(seconds=10 * i), {"book_a": "2.10"})
            )
        history = state.get_or_create("steam_history:steam", lambda: None)
        assert len(history.series((EVENT_ID, MarketType.MONEYLINE, "home", None))["book_a"]) == 3

    def test_old_laggard_quote_is_not_chased(self, state):
        build_strategy(self.CONFIG, state).evaluate(
            self._cycle(T0, {"book_a": "2.10", "book_b": "2.10", "book_c": "2.10"})
        )
        at = T0 + timedelta(seconds=60)
        moved = make_snapshot(
            [
                make_quote("book_a", "home", "1.90", captured_at=at),
                make_quote("book_b", "home", "1.90", captured_at=at),
                # Last reported long before this snapshot
                make_quote("book_c", "home", "2.10", captured_at=T0 - timedelta(minutes=10)),
            ],
            events=[make_event()],
            taken_at=at,
        )

        assert build_strategy(self.CONFIG, state).evaluate(moved) == []
