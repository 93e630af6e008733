from __future__ import annotations

import logging
from datetime import timedelta
from typing import Mapping

from icswatch.differ import changed_properties
from icswatch.errors import IdentityError
from icswatch.identity import resolve_identity
from icswatch.models import (
    DEFAULT_TTL,
    EMPTY_SNAPSHOT,
    ChangeEvent,
    Created,
    Deleted,
    Occurrence,
    ParsedCalendar,
    PropertyChange,
    Setup,
    Snapshot,
    Updated,
    freeze_snapshot,
    parse_published_ttl,
)

logger = logging.getLogger(__name__)

CALENDAR_NAME = "X-WR-CALNAME"
CALENDAR_DESCRIPTION = "X-WR-CALDESC"
PUBLISHED_TTL = "X-PUBLISHED-TTL"


class ChangeDetector:
    """Tracks one calendar and classifies what changed since the last cycle.

    Until the first compare (or a restored snapshot) every occurrence is
    reported as ``Setup``; afterwards occurrences are reported as
    ``Created``, ``Updated`` or ``Deleted`` against the previous snapshot.
    """

    def __init__(self) -> None:
        self.name: str | None = None
        self.description: str | None = None
        self.ttl: timedelta = DEFAULT_TTL
        self._previous: Snapshot = EMPTY_SNAPSHOT
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def state(self) -> Snapshot:
        return self._previous

    def set_state(self, state: Mapping[str, Occurrence]) -> None:
        self._previous = freeze_snapshot(state)
        self._initialized = True

    def _refresh_metadata(self, calendar: ParsedCalendar) -> None:
        self.name = calendar.get_value(CALENDAR_NAME)
        self.description = calendar.get_value(CALENDAR_DESCRIPTION)
        self.ttl = parse_published_ttl(calendar.get_value(PUBLISHED_TTL))

    def _identify(self, calendar: ParsedCalendar) -> list[tuple[str, Occurrence]]:
        identified: list[tuple[str, Occurrence]] = []
        for index, occurrence in enumerate(calendar.occurrences):
            try:
                key = resolve_identity(occurrence)
            except IdentityError as exc:
                logger.warning(
                    "Skipping occurrence #%d (%r): %s", index, occurrence.summary, exc
                )
                continue
            identified.append((key, occurrence))
        return identified

    def compare(self, calendar: ParsedCalendar) -> list[ChangeEvent]:
        self._refresh_metadata(calendar)

        identified = self._identify(calendar)
        current: dict[str, Occurrence] = {}
        for key, occurrence in identified:
            current[key] = occurrence

        previous = self._previous
        events: list[ChangeEvent] = []
        for key, occurrence in identified:
            if not self._initialized:
                events.append(Setup(uid=key, occurrence=occurrence))
                continue
            prev_occurrence = previous.get(key)
            if prev_occurrence is None:
                events.append(Created(uid=key, occurrence=occurrence))
                continue
            changed = changed_properties(prev_occurrence, occurrence)
            if not changed:
                continue
            changes = tuple(
                PropertyChange(
                    key=name,
                    before=prev_occurrence.get_property(name),
                    after=current[key].get_property(name),
                )
                for name in sorted(changed)
            )
            events.append(Updated(uid=key, occurrence=occurrence, changes=changes))

        for key, stale in previous.items():
            if key not in current:
                events.append(Deleted(uid=key, occurrence=stale))

        self._previous = freeze_snapshot(current)
        self._initialized = True
        logger.debug(
            "Compared %d occurrences of %s: %d events", len(current), self.name or "unnamed calendar", len(events)
        )
        return events
