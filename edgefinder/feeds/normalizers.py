"""
Quote normalizers: provider payload -> canonical events and quotes.

One interface, one small adapter per provider layout, picked by name from
configuration. Every adapter:
- maps provider market vocabulary through an explicit lookup table; a
  present but unrecognised market becomes MarketType.OTHER
- converts American / Decimal / Fractional prices to canonical decimal odds
- rewrites selection names to role tags ("home", "away", "draw", "over",
  "under") so the same outcome lines up across books
- raises NormalizationError only when a required field is missing or
  unreadable, never on business-rule mismatches
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

import structlog

from edgefinder.errors import ConfigurationError, NormalizationError
from edgefinder.models.odds import format_odds, to_decimal, to_decimal_odds
from edgefinder.models.schemas import (
    EventStatus,
    MarketType,
    OddsFormat,
    OddsQuote,
    Participant,
    SportEvent,
    frozen_mapping,
)

logger = structlog.get_logger()


@dataclass
class NormalizedBatch:
    """Events and quotes decoded from one provider page."""
    provider: str
    events: list[SportEvent] = field(default_factory=list)
    quotes: list[OddsQuote] = field(default_factory=list)


# =============================================================================
# Shared helpers
# =============================================================================

_SLUG_RE = re.compile(r"[^a-z0-9]+")

DRAW_NAMES = frozenset({"draw", "tie", "x"})
OVER_NAMES = frozenset({"over", "o"})
UNDER_NAMES = frozenset({"under", "u"})


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", text.lower()).strip("-")


def canonical_event_id(sport: str, start_time: datetime, home: str, away: str) -> str:
    """Provider-independent event id, so the same game merges across books."""
    return f"{sport}:{start_time.astimezone(timezone.utc):%Y%m%d}:{slugify(away)}@{slugify(home)}"


def parse_timestamp(value: Any) -> datetime:
    """Parse ISO-8601 strings or epoch seconds/milliseconds into aware UTC."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 10**11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"unreadable timestamp: {value!r}")


def canonical_selection(name: str, home: str, away: str) -> str:
    """Map a provider outcome name to a role tag where one applies."""
    cleaned = name.strip()
    lowered = cleaned.lower()
    if cleaned == home or lowered == home.lower():
        return "home"
    if cleaned == away or lowered == away.lower():
        return "away"
    if lowered in DRAW_NAMES:
        return "draw"
    if lowered in OVER_NAMES:
        return "over"
    if lowered in UNDER_NAMES:
        return "under"
    return lowered


def make_participants(sport: str, home: str, away: str) -> tuple[Participant, ...]:
    return (
        Participant(participant_id=f"{sport}:{slugify(home)}", name=home, role="home"),
        Participant(participant_id=f"{sport}:{slugify(away)}", name=away, role="away"),
    )


def format_quote(quote: OddsQuote, fmt: OddsFormat) -> str:
    """Render a canonical quote's price back into a provider format."""
    return format_odds(quote.odds, fmt)


# =============================================================================
# Interface
# =============================================================================

class QuoteNormalizer(ABC):
    """Pure payload -> NormalizedBatch conversion for one provider."""

    kind: str = ""

    def __init__(self, provider: str, odds_format: OddsFormat = OddsFormat.DECIMAL):
        self.provider = provider
        self.odds_format = odds_format

    @abstractmethod
    def normalize(self, payload: Any, sport: str, received_at: datetime) -> NormalizedBatch:
        """
        Decode one raw page.

        Args:
            payload: Raw provider payload (already JSON-decoded)
            sport: Sport key the page was fetched for
            received_at: Local receive time, used when the provider omits timestamps

        Raises:
            NormalizationError: on structurally malformed input
        """

    def _fail(self, message: str) -> NormalizationError:
        return NormalizationError(self.provider, message)

    def _require(self, data: Mapping[str, Any], key: str, where: str) -> Any:
        if not isinstance(data, Mapping):
            raise self._fail(f"{where}: expected an object, got {type(data).__name__}")
        value = data.get(key)
        if value is None or value == "":
            raise self._fail(f"{where}: missing required field '{key}'")
        return value

    def _odds(self, value: Any, fmt: OddsFormat, where: str) -> Decimal:
        try:
            return to_decimal_odds(value, fmt)
        except ValueError as e:
            raise self._fail(f"{where}: {e}") from e

    def _timestamp(self, value: Any, where: str) -> datetime:
        try:
            return parse_timestamp(value)
        except ValueError as e:
            raise self._fail(f"{where}: {e}") from e

    def _line(self, value: Any, where: str) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            return to_decimal(value)
        except ValueError as e:
            raise self._fail(f"{where}: bad line: {e}") from e


# =============================================================================
# The Odds API layout
# =============================================================================

ODDS_API_MARKETS: dict[str, MarketType] = {
    "h2h": MarketType.MONEYLINE,
    "spreads": MarketType.SPREAD,
    "alternate_spreads": MarketType.SPREAD,
    "totals": MarketType.TOTAL,
    "alternate_totals": MarketType.TOTAL,
    "team_totals": MarketType.PROP,
    "alternate_team_totals": MarketType.PROP,
    "btts": MarketType.PROP,
    "h2h_lay": MarketType.OTHER,
    "h2h_3_way": MarketType.OTHER,
    "draw_no_bet": MarketType.OTHER,
    "outrights": MarketType.OTHER,
}

ODDS_API_PROP_PREFIXES = ("player_", "batter_", "pitcher_")


def odds_api_market(key: str) -> MarketType:
    """Total lookup: table first, then prop prefixes, then OTHER."""
    market = ODDS_API_MARKETS.get(key)
    if market is not None:
        return market
    if key.startswith(ODDS_API_PROP_PREFIXES):
        return MarketType.PROP
    return MarketType.OTHER


class OddsAPINormalizer(QuoteNormalizer):
    """
    Decodes The Odds API event layout.

    Each bookmaker inside an event becomes the quote's provider tag; the
    connection name is kept as ``metadata["source"]``.
    """

    kind = "odds_api"

    def normalize(self, payload: Any, sport: str, received_at: datetime) -> NormalizedBatch:
        if not isinstance(payload, list):
            raise self._fail(f"expected a list of events, got {type(payload).__name__}")

        batch = NormalizedBatch(provider=self.provider)
        for index, event_data in enumerate(payload):
            where = f"event[{index}]"
            provider_event_id = self._require(event_data, "id", where)
            home = self._require(event_data, "home_team", where)
            away = self._require(event_data, "away_team", where)
            start = self._timestamp(self._require(event_data, "commence_time", where), where)

            event_id = canonical_event_id(sport, start, home, away)
            batch.events.append(SportEvent(
                event_id=event_id,
                sport=sport,
                participants=make_participants(sport, home, away),
                start_time=start,
                metadata={
                    f"{self.provider}_id": provider_event_id,
                    "league": event_data.get("sport_title", ""),
                },
            ))

            for book in event_data.get("bookmakers") or []:
                batch.quotes.extend(self._bookmaker_quotes(book, event_id, home, away, received_at, where))

        return batch

    def _bookmaker_quotes(
        self,
        book: Mapping[str, Any],
        event_id: str,
        home: str,
        away: str,
        received_at: datetime,
        where: str,
    ) -> list[OddsQuote]:
        bookmaker = self._require(book, "key", f"{where}.bookmaker")
        book_where = f"{where}.{bookmaker}"
        book_update = book.get("last_update")

        quotes = []
        for market_data in book.get("markets") or []:
            market_key = self._require(market_data, "key", f"{book_where}.market")
            market = odds_api_market(market_key)
            stamp = market_data.get("last_update") or book_update
            captured_at = self._timestamp(stamp, book_where) if stamp else received_at

            for outcome in market_data.get("outcomes") or []:
                outcome_where = f"{book_where}.{market_key}"
                name = str(self._require(outcome, "name", outcome_where))
                odds = self._odds(self._require(outcome, "price", outcome_where), self.odds_format, outcome_where)
                line = self._line(outcome.get("point"), outcome_where)

                selection = canonical_selection(name, home, away)
                if market == MarketType.PROP and outcome.get("description"):
                    selection = f"{slugify(str(outcome['description']))}:{selection}"

                quotes.append(OddsQuote(
                    quote_id=OddsQuote.make_id(bookmaker, event_id, market, selection, line, odds, captured_at),
                    event_id=event_id,
                    provider=bookmaker,
                    market=market,
                    selection=selection,
                    odds=odds,
                    captured_at=captured_at,
                    line=line,
                    metadata=frozen_mapping({
                        "source": self.provider,
                        "market_key": market_key,
                        "raw_name": name,
                    }),
                ))
        return quotes


# =============================================================================
# Flat row layout
# =============================================================================

FLAT_MARKETS: dict[str, MarketType] = {
    "moneyline": MarketType.MONEYLINE,
    "ml": MarketType.MONEYLINE,
    "1x2": MarketType.MONEYLINE,
    "match_winner": MarketType.MONEYLINE,
    "winner": MarketType.MONEYLINE,
    "spread": MarketType.SPREAD,
    "point_spread": MarketType.SPREAD,
    "handicap": MarketType.SPREAD,
    "asian_handicap": MarketType.SPREAD,
    "run_line": MarketType.SPREAD,
    "puck_line": MarketType.SPREAD,
    "total": MarketType.TOTAL,
    "totals": MarketType.TOTAL,
    "over_under": MarketType.TOTAL,
    "prop": MarketType.PROP,
    "player_prop": MarketType.PROP,
}

FLAT_STATUSES: dict[str, EventStatus] = {
    "scheduled": EventStatus.SCHEDULED,
    "pre": EventStatus.SCHEDULED,
    "not_started": EventStatus.SCHEDULED,
    "live": EventStatus.LIVE,
    "in_play": EventStatus.LIVE,
    "inplay": EventStatus.LIVE,
    "completed": EventStatus.COMPLETED,
    "final": EventStatus.COMPLETED,
    "finished": EventStatus.COMPLETED,
    "closed": EventStatus.COMPLETED,
    "cancelled": EventStatus.CANCELLED,
    "canceled": EventStatus.CANCELLED,
    "abandoned": EventStatus.CANCELLED,
    "postponed": EventStatus.CANCELLED,
}


class FlatFeedNormalizer(QuoteNormalizer):
    """
    Decodes a flat list of quote rows.

    Row fields: event_id, home, away, start_time, market, selection, odds
    (required); odds_format, line, status, captured_at, sport (optional).
    The payload may be the list itself or {"quotes": [...]}.
    """

    kind = "flat"

    def normalize(self, payload: Any, sport: str, received_at: datetime) -> NormalizedBatch:
        rows = payload.get("quotes") if isinstance(payload, Mapping) else payload
        if not isinstance(rows, list):
            raise self._fail("expected a list of quote rows")

        batch = NormalizedBatch(provider=self.provider)
        seen_events: dict[str, SportEvent] = {}

        for index, row in enumerate(rows):
            where = f"row[{index}]"
            provider_event_id = str(self._require(row, "event_id", where))
            home = str(self._require(row, "home", where))
            away = str(self._require(row, "away", where))
            start = self._timestamp(self._require(row, "start_time", where), where)
            row_sport = str(row.get("sport") or sport)
            event_id = canonical_event_id(row_sport, start, home, away)

            if event_id not in seen_events:
                status = FLAT_STATUSES.get(str(row.get("status", "scheduled")).lower(), EventStatus.SCHEDULED)
                event = SportEvent(
                    event_id=event_id,
                    sport=row_sport,
                    participants=make_participants(row_sport, home, away),
                    start_time=start,
                    status=status,
                    metadata={f"{self.provider}_id": provider_event_id},
                )
                seen_events[event_id] = event
                batch.events.append(event)

            market_name = str(self._require(row, "market", where))
            market = FLAT_MARKETS.get(market_name.lower(), MarketType.OTHER)
            name = str(self._require(row, "selection", where))

            fmt_name = str(row.get("odds_format") or self.odds_format.value).lower()
            try:
                fmt = OddsFormat(fmt_name)
            except ValueError as e:
                raise self._fail(f"{where}: unknown odds_format '{fmt_name}'") from e

            odds = self._odds(self._require(row, "odds", where), fmt, where)
            line = self._line(row.get("line"), where)
            captured_at = self._timestamp(row["captured_at"], where) if row.get("captured_at") else received_at
            selection = canonical_selection(name, home, away)

            batch.quotes.append(OddsQuote(
                quote_id=OddsQuote.make_id(self.provider, event_id, market, selection, line, odds, captured_at),
                event_id=event_id,
                provider=self.provider,
                market=market,
                selection=selection,
                odds=odds,
                captured_at=captured_at,
                line=line,
                metadata=frozen_mapping({
                    "source": self.provider,
                    "market_key": market_name,
                    "raw_name": name,
                    "raw_odds": str(row["odds"]),
                    "odds_format": fmt.value,
                }),
            ))

        return batch


# =============================================================================
# Registry
# =============================================================================

NORMALIZERS: dict[str, type[QuoteNormalizer]] = {
    OddsAPINormalizer.kind: OddsAPINormalizer,
    FlatFeedNormalizer.kind: FlatFeedNormalizer,
}


def get_normalizer(kind: str, provider: str, odds_format: str = "decimal") -> QuoteNormalizer:
    """Build the configured normalizer for a provider."""
    cls = NORMALIZERS.get(kind)
    if cls is None:
        raise ConfigurationError(f"unknown normalizer '{kind}' for provider {provider}")
    try:
        fmt = OddsFormat(odds_format.lower())
    except ValueError as e:
        raise ConfigurationError(f"unknown odds format '{odds_format}' for provider {provider}") from e
    return cls(provider, fmt)
