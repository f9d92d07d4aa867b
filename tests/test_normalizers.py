"""Tests for provider payload normalization."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from edgefinder.errors import ConfigurationError, NormalizationError
from edgefinder.feeds.normalizers import (
    FlatFeedNormalizer,
    OddsAPINormalizer,
    canonical_event_id,
    format_quote,
    get_normalizer,
    odds_api_market,
    parse_timestamp,
)
from edgefinder.models.schemas import EventStatus, MarketType, OddsFormat
from helpers import T0, h2h_book, odds_api_event

RECEIVED = datetime(2026, 3, 1, 19, 0, 5, tzinfo=timezone.utc)
CELTICS_AT_LAKERS = "basketball_nba:20260302:boston-celtics@los-angeles-lakers"


class TestOddsAPINormalizer:

    @pytest.fixture
    def normalizer(self):
        return OddsAPINormalizer("odds_api")

    def test_h2h_event(self, normalizer):
        payload = [odds_api_event([h2h_book("pinnacle", 2.10, 1.80), h2h_book("draftkings", 2.05, 1.85)])]

        batch = normalizer.normalize(payload, "basketball_nba", RECEIVED)

        assert [e.event_id for e in batch.events] == [CELTICS_AT_LAKERS]
        assert len(batch.quotes) == 4
        home = [q for q in batch.quotes if q.selection == "home"]
        assert {q.provider for q in home} == {"pinnacle", "draftkings"}
        pinnacle_home = next(q for q in home if q.provider == "pinnacle")
        assert pinnacle_home.odds == Decimal("2.1")
        assert pinnacle_home.market == MarketType.MONEYLINE
        assert pinnacle_home.captured_at == T0
        assert pinnacle_home.metadata["source"] == "odds_api"
        assert pinnacle_home.metadata["raw_name"] == "Los Angeles Lakers"

    def test_american_prices(self):
        normalizer = OddsAPINormalizer("odds_api", OddsFormat.AMERICAN)
        payload = [odds_api_event([h2h_book("fanduel", 150, -200)])]

        batch = normalizer.normalize(payload, "basketball_nba", RECEIVED)

        prices = {q.selection: q.odds for q in batch.quotes}
        assert prices == {"home": Decimal("2.5"), "away": Decimal("1.5")}
        assert format_quote(batch.quotes[0], OddsFormat.AMERICAN) == "+150"

    def test_spreads_and_totals_carry_lines(self, normalizer):
        book = {
            "key": "pinnacle",
            "last_update": "2026-03-01T19:00:00Z",
            "markets": [
                {"key": "spreads", "outcomes": [
                    {"name": "Los Angeles Lakers", "price": 1.91, "point": -3.5},
                    {"name": "Boston Celtics", "price": 1.95, "point": 3.5},
                ]},
                {"key": "totals", "outcomes": [
                    {"name": "Over", "price": 1.90, "point": 221.5},
                    {"name": "Under", "price": 1.92, "point": 221.5},
                ]},
            ],
        }
        batch = normalizer.normalize([odds_api_event([book])], "basketball_nba", RECEIVED)

        spread = {q.selection: q.line for q in batch.quotes if q.market == MarketType.SPREAD}
        assert spread == {"home": Decimal("-3.5"), "away": Decimal("3.5")}
        totals = {q.selection for q in batch.quotes if q.market == MarketType.TOTAL}
        assert totals == {"over", "under"}

    def test_unknown_market_becomes_other(self, normalizer):
        book = {"key": "bet365", "markets": [{"key": "h2h_q1", "outcomes": [{"name": "Boston Celtics", "price": 2.0}]}]}
        batch = normalizer.normalize([odds_api_event([book])], "basketball_nba", RECEIVED)

        assert batch.quotes[0].market == MarketType.OTHER
        # No timestamps anywhere: receive time is used
        assert batch.quotes[0].captured_at == RECEIVED

    def test_player_prop_selection_scoped_by_player(self, normalizer):
        book = {"key": "fanduel", "markets": [{"key": "player_points", "outcomes": [
            {"name": "Over", "description": "LeBron James", "price": 1.87, "point": 27.5},
        ]}]}
        batch = normalizer.normalize([odds_api_event([book])], "basketball_nba", RECEIVED)

        quote = batch.quotes[0]
        assert quote.market == MarketType.PROP
        assert quote.selection == "lebron-james:over"

    def test_missing_required_field(self, normalizer):
        event = odds_api_event([])
        del event["home_team"]
        with pytest.raises(NormalizationError, match="home_team"):
            normalizer.normalize([event], "basketball_nba", RECEIVED)

    def test_bad_price_is_malformed(self, normalizer):
        payload = [odds_api_event([h2h_book("pinnacle", "abc", 1.8)])]
        with pytest.raises(NormalizationError):
            normalizer.normalize(payload, "basketball_nba", RECEIVED)

    def test_non_list_payload(self, normalizer):
        with pytest.raises(NormalizationError):
            normalizer.normalize({"message": "quota"}, "basketball_nba", RECEIVED)


class TestFlatFeedNormalizer:

    @pytest.fixture
    def normalizer(self):
        return FlatFeedNormalizer("exchange")

    def _row(self, **overrides):
        row = {
            "event_id": "X-1",
            "home": "Los Angeles Lakers",
            "away": "Boston Celtics",
            "start_time": "2026-03-02T00:30:00Z",
            "market": "moneyline",
            "selection": "Boston Celtics",
            "odds": "1.95",
        }
        row.update(overrides)
        return row

    def test_rows_share_canonical_event(self, normalizer):
        payload = {"quotes": [self._row(), self._row(selection="Los Angeles Lakers", odds="2.0")]}

        batch = normalizer.normalize(payload, "basketball_nba", RECEIVED)

        assert len(batch.events) == 1
        assert batch.events[0].event_id == CELTICS_AT_LAKERS
        assert {q.selection for q in batch.quotes} == {"home", "away"}
        assert all(q.provider == "exchange" for q in batch.quotes)

    def test_per_row_odds_format(self, normalizer):
        batch = normalizer.normalize(
            [self._row(odds="5/2", odds_format="fractional"), self._row(selection="Draw", odds="+300", odds_format="american")],
            "soccer_epl",
            RECEIVED,
        )
        prices = {q.selection: q.odds for q in batch.quotes}
        assert prices == {"away": Decimal("3.5"), "draw": Decimal("4")}

    def test_status_mapping(self, normalizer):
        batch = normalizer.normalize([self._row(status="final")], "basketball_nba", RECEIVED)
        assert batch.events[0].status == EventStatus.COMPLETED

    def test_epoch_millis_capture_time(self, normalizer):
        batch = normalizer.normalize([self._row(captured_at=1772391600000)], "basketball_nba", RECEIVED)
        assert batch.quotes[0].captured_at == T0

    def test_unknown_odds_format(self, normalizer):
        with pytest.raises(NormalizationError, match="odds_format"):
            normalizer.normalize([self._row(odds_format="hongkong")], "basketball_nba", RECEIVED)

    def test_missing_odds(self, normalizer):
        row = self._row()
        del row["odds"]
        with pytest.raises(NormalizationError, match="odds"):
            normalizer.normalize([row], "basketball_nba", RECEIVED)


class TestHelpers:

    def test_canonical_event_id_uses_utc_date(self):
        late = datetime(2026, 3, 1, 21, 0, tzinfo=timezone.utc)
        assert canonical_event_id("nba", late, "Lakers", "Celtics") == "nba:20260301:celtics@lakers"

    def test_parse_timestamp_forms(self):
        assert parse_timestamp("2026-03-01T19:00:00Z") == T0
        assert parse_timestamp(1772391600) == T0
        with pytest.raises(ValueError):
            parse_timestamp("")

    def test_market_lookup(self):
        assert odds_api_market("h2h") == MarketType.MONEYLINE
        assert odds_api_market("batter_home_runs") == MarketType.PROP
        assert odds_api_market("something_new") == MarketType.OTHER

    def test_normalizer_registry(self):
        assert isinstance(get_normalizer("flat", "x"), FlatFeedNormalizer)
        with pytest.raises(ConfigurationError):
            get_normalizer("xml", "x")
        with pytest.raises(ConfigurationError):
            get_normalizer("flat", "x", odds_format="malay")
