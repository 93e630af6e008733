from __future__ import annotations

import logging
from typing import Any

import requests
from icalendar import Calendar as ICalendar
from icalendar import Component

from icswatch.errors import FetchError, ParseError
from icswatch.models import Occurrence, ParsedCalendar, Property, SourceConfig

logger = logging.getLogger(__name__)


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def _convert_params(raw_params: Any) -> dict[str, list[str]] | None:
    if not raw_params:
        return None
    params: dict[str, list[str]] = {}
    for name, value in raw_params.items():
        if isinstance(value, (list, tuple)):
            params[str(name).upper()] = [str(item) for item in value]
        else:
            params[str(name).upper()] = [str(value)]
    return params


def _convert_property(name: str, value: Any) -> Property:
    raw = value.to_ical() if hasattr(value, "to_ical") else value
    text = _decode_raw_ical(raw)
    return Property(
        name=str(name).upper(),
        value=text if text != "" else None,
        params=_convert_params(getattr(value, "params", None)),
    )


def _component_properties(component: Component) -> tuple[Property, ...]:
    properties: list[Property] = []
    for name in component.keys():
        values = component[name]
        if isinstance(values, list):
            properties.extend(_convert_property(name, item) for item in values)
        else:
            properties.append(_convert_property(name, values))
    return tuple(properties)


def parse_calendar(raw_ical: str | bytes) -> ParsedCalendar:
    """Parse ICS text into the first calendar it contains."""
    text = _decode_raw_ical(raw_ical)
    try:
        components = ICalendar.from_ical(text, multiple=True)
    except (ValueError, IndexError, KeyError) as exc:
        raise ParseError(f"calendar body could not be parsed: {exc}") from exc
    calendar_obj = next((c for c in components if c.name == "VCALENDAR"), None)
    if calendar_obj is None:
        raise ParseError("No calendar present")
    occurrences = [
        Occurrence(properties=_component_properties(vevent)) for vevent in calendar_obj.walk("VEVENT")
    ]
    return ParsedCalendar(occurrences=occurrences, properties=_component_properties(calendar_obj))


class IcsFeedClient:
    def __init__(self, config: SourceConfig) -> None:
        self.config = config

    def fetch_text(self) -> str:
        if not self.config.url:
            raise FetchError("source url is not configured")
        try:
            response = requests.get(self.config.url, timeout=self.config.timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"failed to fetch {self.config.url}: {exc}") from exc
        return _decode_raw_ical(response.content)

    def fetch_calendar(self) -> ParsedCalendar:
        calendar = parse_calendar(self.fetch_text())
        logger.info("Fetched %d occurrences from %s", len(calendar.occurrences), self.config.url)
        return calendar
