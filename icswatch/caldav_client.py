from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

import caldav
from caldav.lib.error import NotFoundError
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent
from icalendar.prop import vDDDTypes, vText

from icswatch.models import (
    CalDAVConfig,
    ChangeEvent,
    Deleted,
    Occurrence,
    Updated,
    parse_ical_datetime,
)

logger = logging.getLogger(__name__)

# Matches [AB1234] or (AB1234) course ids.
COURSE_ID_PATTERN = re.compile(r"\[([A-Z]{2}\d{4})\]|\(([A-Z]{2}\d{4})\)")
KEEP_DELETED_AFTER = timedelta(days=7)
TEXT_FIELDS = ("DESCRIPTION", "LOCATION", "URL", "STATUS")
DATETIME_FIELDS = ("DTSTART", "DTEND")
MIRRORED_FIELDS = ("SUMMARY",) + TEXT_FIELDS + DATETIME_FIELDS


@dataclass(frozen=True)
class ReplacementTable:
    """Title rewrites applied longest match first."""

    pairs: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ReplacementTable":
        data = data or {}
        pairs = [(str(key), str(value)) for key, value in data.items() if str(key)]
        pairs.sort(key=lambda item: (-len(item[0]), item[0]))
        return cls(pairs=tuple(pairs))

    @classmethod
    def load(cls, path: str | Path) -> "ReplacementTable":
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.info("No title replacements loaded from %s: %s", path, exc)
            return cls()
        if not isinstance(raw, dict):
            logger.warning("Ignoring replacements file %s: root must be an object", path)
            return cls()
        return cls.from_dict(raw)

    def apply(self, text: str) -> str:
        result = text
        for source, target in self.pairs:
            result = result.replace(source, target)
        return COURSE_ID_PATTERN.sub("", result).strip()


def _text_value(occurrence: Occurrence, name: str) -> str:
    value = occurrence.get_value(name)
    if value is None:
        return ""
    return str(vText.from_ical(value)).strip()


def _datetime_value(occurrence: Occurrence, name: str) -> Any:
    prop = occurrence.get_property(name)
    if prop is None or prop.value is None:
        return None
    tzid = (prop.params or {}).get("TZID") or [None]
    return vDDDTypes.from_ical(prop.value, timezone=tzid[0])


def build_vevent(uid: str, occurrence: Occurrence, replacements: ReplacementTable) -> ICEvent:
    vevent = ICEvent()
    vevent.add("UID", uid)
    summary = _text_value(occurrence, "SUMMARY")
    vevent.add("SUMMARY", replacements.apply(summary) if summary else "Untitled")
    for name in TEXT_FIELDS:
        text = _text_value(occurrence, name)
        if text:
            vevent.add(name, text)
    for name in DATETIME_FIELDS:
        value = _datetime_value(occurrence, name)
        if value is not None:
            vevent.add(name, value)
    vevent.add("DTSTAMP", datetime.now(timezone.utc))
    return vevent


def build_event_ical(uid: str, occurrence: Occurrence, replacements: ReplacementTable) -> str:
    calendar_obj = ICalendar()
    calendar_obj.add("PRODID", "-//icswatch//Calendar Mirror//EN")
    calendar_obj.add("VERSION", "2.0")
    calendar_obj.add_component(build_vevent(uid, occurrence, replacements))
    return calendar_obj.to_ical().decode("utf-8")


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def _first_vevent(calendar_obj: ICalendar) -> ICEvent | None:
    for component in calendar_obj.walk("VEVENT"):
        return component
    return None


def _extract_uid_from_raw_ical(raw_data: Any) -> str:
    try:
        calendar_obj = ICalendar.from_ical(_decode_raw_ical(raw_data))
    except ValueError:
        return ""
    vevent = _first_vevent(calendar_obj)
    if vevent is None:
        return ""
    return str(vevent.get("UID", "")).strip()


class CalDAVService:
    def __init__(self, config: CalDAVConfig) -> None:
        self.config = config
        self._client: Any = None
        self._principal: Any = None
        self._calendar: Any = None

    def _connect(self) -> None:
        if self._principal is not None:
            return
        if not self.config.base_url or not self.config.username:
            raise RuntimeError("CalDAV config is incomplete.")
        self._client = caldav.DAVClient(
            url=self.config.base_url,
            username=self.config.username,
            password=self.config.password,
        )
        self._principal = self._client.principal()

    def _get_calendar(self) -> Any:
        if self._calendar is not None:
            return self._calendar
        self._connect()
        wanted = self.config.calendar_id.rstrip("/")
        for calendar in self._principal.calendars():
            if str(calendar.url).rstrip("/") == wanted or getattr(calendar, "name", "") == wanted:
                self._calendar = calendar
                return calendar
        raise RuntimeError(f"Calendar not found: {self.config.calendar_id}")

    def _find_resource_by_uid(self, calendar: Any, uid: str) -> Any:
        try:
            return calendar.event_by_uid(uid)
        except NotFoundError:
            pass
        for resource in calendar.events():
            if _extract_uid_from_raw_ical(getattr(resource, "data", "")) == uid:
                return resource
        return None

    def upsert_event(self, uid: str, raw_ical: str) -> None:
        calendar = self._get_calendar()
        existing = self._find_resource_by_uid(calendar, uid)
        if existing is not None:
            existing.data = raw_ical
            existing.save()
            return
        calendar.save_event(raw_ical)

    def patch_event(self, uid: str, source: ICEvent, keys: Iterable[str]) -> bool:
        """Copy ``keys`` from ``source`` onto the remote event, keeping its other fields.

        Keys missing from ``source`` are removed remotely. Returns ``False``
        when no remote event has this UID.
        """
        calendar = self._get_calendar()
        resource = self._find_resource_by_uid(calendar, uid)
        if resource is None:
            return False
        calendar_obj = ICalendar.from_ical(_decode_raw_ical(resource.data))
        vevent = _first_vevent(calendar_obj)
        if vevent is None:
            raise RuntimeError("VEVENT missing in calendar resource.")
        for key in list(keys) + ["DTSTAMP"]:
            vevent.pop(key, None)
            if key in source:
                vevent[key] = source[key]
        resource.data = calendar_obj.to_ical().decode("utf-8")
        resource.save()
        return True

    def delete_event(self, uid: str) -> bool:
        calendar = self._get_calendar()
        resource = self._find_resource_by_uid(calendar, uid)
        if resource is None:
            return False
        resource.delete()
        return True


class CalDAVMirror:
    """Callback mirroring every change into one CalDAV calendar.

    Updates only touch the fields that changed upstream, so edits made in the
    target calendar survive. Deletions of occurrences that ended more than a
    week ago are ignored.
    """

    def __init__(self, service: CalDAVService, replacements: ReplacementTable | None = None) -> None:
        self.service = service
        self.replacements = replacements or ReplacementTable()

    def _is_long_past(self, occurrence: Occurrence, now: datetime) -> bool:
        end = parse_ical_datetime(occurrence.get_value("DTEND"))
        return end is not None and end < now - KEEP_DELETED_AFTER

    def _apply(self, event: ChangeEvent, now: datetime) -> None:
        if isinstance(event, Deleted):
            if self._is_long_past(event.occurrence, now):
                logger.debug("Keeping past occurrence %s", event.uid)
                return
            self.service.delete_event(event.uid)
            return
        if isinstance(event, Updated):
            keys = [key for key in event.changed_keys if key in MIRRORED_FIELDS]
            if not keys:
                logger.debug("No mirrored field changed for %s", event.uid)
                return
            source = build_vevent(event.uid, event.occurrence, self.replacements)
            if not self.service.patch_event(event.uid, source, keys):
                logger.warning("Updating %s not possible as event is not present anymore", event.uid)
            return
        self.service.upsert_event(event.uid, build_event_ical(event.uid, event.occurrence, self.replacements))

    def __call__(self, name: str | None, description: str | None, events: list[ChangeEvent]) -> None:
        now = datetime.now(timezone.utc)
        failures = 0
        for event in events:
            try:
                self._apply(event, now)
            except Exception:
                failures += 1
                logger.exception("Error on syncing %s event %s", event.kind, event.uid)
        logger.info(
            "Mirrored %d of %d changes of %s", len(events) - failures, len(events), name or "Unnamed Calendar"
        )
