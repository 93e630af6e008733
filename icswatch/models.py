from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Union


DEFAULT_TTL = timedelta(hours=1)
DURATION_UNITS = {
    "W": 7 * 24 * 60 * 60,
    "D": 24 * 60 * 60,
    "H": 60 * 60,
    "M": 60,
    "S": 1,
}


def parse_published_ttl(value: str | None) -> timedelta:
    """Parse an ``X-PUBLISHED-TTL`` duration such as ``PT1H`` or ``P1W2DT3H``.

    Digits are accumulated until a unit letter is seen; unknown characters are
    ignored. A missing value or a zero-length result falls back to one hour.
    """
    if not value:
        return DEFAULT_TTL
    text = str(value).strip().upper().lstrip("-+").lstrip("P").replace("T", "")
    total = 0
    number = ""
    for char in text:
        if char.isdigit():
            number += char
        elif char in DURATION_UNITS:
            total += int(number or 0) * DURATION_UNITS[char]
            number = ""
    if total <= 0:
        return DEFAULT_TTL
    return timedelta(seconds=total)


@dataclass(frozen=True)
class Property:
    name: str
    value: str | None = None
    params: dict[str, list[str]] | None = None

    # params is an unhashable dict; hash a sorted tuple view of it.
    def __hash__(self) -> int:
        params = tuple(sorted((key, tuple(values)) for key, values in (self.params or {}).items()))
        return hash((self.name, self.value, params))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Property":
        raw_params = data.get("params")
        params: dict[str, list[str]] | None = None
        if isinstance(raw_params, Mapping):
            params = {str(key): [str(item) for item in values] for key, values in raw_params.items()}
        value = data.get("value")
        return cls(
            name=str(data.get("name", "")),
            value=None if value is None else str(value),
            params=params,
        )


def _first_property(properties: tuple[Property, ...], name: str) -> Property | None:
    for prop in properties:
        if prop.name == name:
            return prop
    return None


@dataclass(frozen=True)
class Occurrence:
    properties: tuple[Property, ...] = ()

    def get_property(self, name: str) -> Property | None:
        return _first_property(self.properties, name)

    def get_value(self, name: str) -> str | None:
        prop = self.get_property(name)
        return prop.value if prop is not None else None

    @property
    def summary(self) -> str:
        return self.get_value("SUMMARY") or ""

    def to_list(self) -> list[dict[str, Any]]:
        return [prop.to_dict() for prop in self.properties]

    @classmethod
    def from_list(cls, data: list[Mapping[str, Any]]) -> "Occurrence":
        return cls(properties=tuple(Property.from_dict(item) for item in data))


@dataclass(frozen=True)
class ParsedCalendar:
    occurrences: list[Occurrence] = field(default_factory=list)
    properties: tuple[Property, ...] = ()

    def get_property(self, name: str) -> Property | None:
        return _first_property(self.properties, name)

    def get_value(self, name: str) -> str | None:
        prop = self.get_property(name)
        return prop.value if prop is not None else None


Snapshot = Mapping[str, Occurrence]


def freeze_snapshot(entries: Mapping[str, Occurrence]) -> Snapshot:
    return MappingProxyType(dict(entries))


EMPTY_SNAPSHOT: Snapshot = MappingProxyType({})


@dataclass(frozen=True)
class PropertyChange:
    key: str
    before: Property | None = None
    after: Property | None = None

    @property
    def before_value(self) -> str | None:
        return self.before.value if self.before is not None else None

    @property
    def after_value(self) -> str | None:
        return self.after.value if self.after is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "before": self.before.to_dict() if self.before is not None else None,
            "after": self.after.to_dict() if self.after is not None else None,
        }


@dataclass(frozen=True)
class Setup:
    kind: ClassVar[str] = "setup"
    uid: str
    occurrence: Occurrence


@dataclass(frozen=True)
class Created:
    kind: ClassVar[str] = "created"
    uid: str
    occurrence: Occurrence


@dataclass(frozen=True)
class Updated:
    kind: ClassVar[str] = "updated"
    uid: str
    occurrence: Occurrence
    changes: tuple[PropertyChange, ...] = ()

    @property
    def changed_keys(self) -> list[str]:
        return [change.key for change in self.changes]


@dataclass(frozen=True)
class Deleted:
    kind: ClassVar[str] = "deleted"
    uid: str
    occurrence: Occurrence


ChangeEvent = Union[Setup, Created, Updated, Deleted]


@dataclass
class SourceConfig:
    url: str = ""
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SourceConfig":
        data = data or {}
        return cls(
            url=str(data.get("url", "")).strip(),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class WatchConfig:
    backup_name: str = ""
    backup_dir: str = ".backups"
    manual_update: bool = False
    manual_interval_seconds: int = 60
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "WatchConfig":
        data = data or {}
        return cls(
            backup_name=str(data.get("backup_name", "") or "").strip(),
            backup_dir=str(data.get("backup_dir", ".backups") or "").strip() or ".backups",
            manual_update=bool(data.get("manual_update", False)),
            manual_interval_seconds=max(1, int(data.get("manual_interval_seconds", 60))),
            log_level=str(data.get("log_level", "INFO") or "").strip().upper() or "INFO",
        )


@dataclass
class CalDAVConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""
    calendar_id: str = ""
    replacements_path: str = "replacements.json"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalDAVConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip(),
            username=str(data.get("username", "")).strip(),
            password=str(data.get("password", "")).strip(),
            calendar_id=str(data.get("calendar_id", "")).strip(),
            replacements_path=str(data.get("replacements_path", "replacements.json") or "").strip(),
        )

    def is_configured(self) -> bool:
        return bool(self.base_url and self.username and self.calendar_id)


@dataclass
class AppConfig:
    source: SourceConfig = field(default_factory=SourceConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            source=SourceConfig.from_dict(data.get("source")),
            watch=WatchConfig.from_dict(data.get("watch")),
            caldav=CalDAVConfig.from_dict(data.get("caldav")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


ICAL_DATETIME_PATTERN = re.compile(r"^(\d{8}T\d{6})")


def parse_ical_datetime(value: str | None) -> datetime | None:
    """Read the leading ``YYYYMMDDTHHMMSS`` of an iCalendar date-time as UTC."""
    if not value:
        return None
    match = ICAL_DATETIME_PATTERN.match(value.strip())
    if not match:
        return None
    return datetime.strptime(match.group(1), "%Y%m%dT%H%M%S").replace(tzinfo=timezone.utc)
