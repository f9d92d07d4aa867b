"""
Event registry.

Keeps one SportEvent per canonical event id across cycles. Providers only
ever report what they see; the registry decides what the event's status
is. Status regressions (a lagging book still calling a finished game
"live") are logged and ignored.

Records are not kept forever: ``prune`` drops events nobody has reported
for a retention window past their start time, finished or not.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

import structlog

from edgefinder.errors import InvalidTransitionError
from edgefinder.models.schemas import SportEvent

logger = structlog.get_logger()


class EventRegistry:
    """Owner of SportEvent records for every sport."""

    def __init__(self):
        self._events: dict[str, SportEvent] = {}
        self._terminal: set[str] = set()
        self._last_seen: dict[str, datetime] = {}
        self.logger = logger.bind(component="event_registry")

        self._ignored_regressions = 0
        self._pruned = 0

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._events

    def __len__(self) -> int:
        return len(self._events)

    def get(self, event_id: str) -> Optional[SportEvent]:
        return self._events.get(event_id)

    def observe(self, sighting: SportEvent, seen_at: Optional[datetime] = None) -> SportEvent:
        """
        Record one provider's view of an event.

        Creates the event on first sighting, otherwise advances its status
        and merges metadata.

        Args:
            sighting: The provider's version of the event
            seen_at: When it was reported; keeps the record from being pruned

        Returns:
            The registry's (authoritative) record
        """
        if seen_at is not None:
            self._last_seen[sighting.event_id] = seen_at

        event = self._events.get(sighting.event_id)
        if event is None:
            event = SportEvent(
                event_id=sighting.event_id,
                sport=sighting.sport,
                participants=sighting.participants,
                start_time=sighting.start_time,
                status=sighting.status,
                metadata=dict(sighting.metadata),
            )
            self._events[event.event_id] = event
            if event.status.is_terminal:
                self._terminal.add(event.event_id)
            return event

        event.enrich(sighting.metadata)
        try:
            if event.advance(sighting.status) and event.status.is_terminal:
                self._terminal.add(event.event_id)
                self.logger.info("Event finished", event_id=event.event_id, status=event.status.value)
        except InvalidTransitionError as e:
            self._ignored_regressions += 1
            self.logger.debug("Ignoring status regression", event_id=event.event_id, error=str(e))
        return event

    def observe_all(self, sightings: Iterable[SportEvent], seen_at: Optional[datetime] = None) -> list[SportEvent]:
        return [self.observe(s, seen_at) for s in sightings]

    def events_for(self, sport: str, include_terminal: bool = True) -> dict[str, SportEvent]:
        return {
            eid: ev for eid, ev in self._events.items()
            if ev.sport == sport and (include_terminal or not ev.status.is_terminal)
        }

    def terminal_ids(self) -> frozenset[str]:
        return frozenset(self._terminal)

    def forget(self, event_id: str) -> None:
        """Drop an event record (after downstream state has been evicted)."""
        self._events.pop(event_id, None)
        self._terminal.discard(event_id)
        self._last_seen.pop(event_id, None)

    def prune(self, now: datetime, retention: timedelta) -> list[str]:
        """
        Forget events idle for longer than ``retention``.

        An event is idle from the later of its start time and its last
        sighting. A finished event that books keep reporting stays, so a
        lagging "live" cannot bring it back while it is still around.

        Returns:
            Ids of the forgotten events
        """
        expired = []
        for event_id, event in self._events.items():
            last_seen = self._last_seen.get(event_id, event.start_time)
            if now - max(last_seen, event.start_time) > retention:
                expired.append(event_id)

        for event_id in expired:
            self.forget(event_id)
        if expired:
            self._pruned += len(expired)
            self.logger.debug("Pruned idle events", events=len(expired), remaining=len(self._events))
        return expired

    def get_stats(self) -> dict:
        return {
            "events": len(self._events),
            "terminal": len(self._terminal),
            "ignored_regressions": self._ignored_regressions,
            "pruned": self._pruned,
        }
