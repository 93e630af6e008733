from __future__ import annotations

import enum
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping, Optional, Protocol

from icswatch.change_detector import ChangeDetector
from icswatch.errors import CallbackError, PersistenceError
from icswatch.models import ChangeEvent, Occurrence, ParsedCalendar, Snapshot
from icswatch.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

CalendarCallback = Callable[[Optional[str], Optional[str], list[ChangeEvent]], None]

DEFAULT_MANUAL_INTERVAL = timedelta(seconds=60)


class CalendarProvider(Protocol):
    def fetch_calendar(self) -> ParsedCalendar: ...


class WatcherPhase(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    COMPARING = "comparing"
    DISPATCHING = "dispatching"
    PERSISTING = "persisting"
    SLEEPING = "sleeping"
    FAILED = "failed"
    STOPPED = "stopped"


def _callback_name(callback: CalendarCallback) -> str:
    return getattr(callback, "__qualname__", None) or type(callback).__name__


class Watcher:
    """Polls one calendar source and reports its changes to callbacks.

    ``run`` loops fetch -> compare -> dispatch -> persist -> sleep until a
    fetch or backup write fails (the error is raised) or ``stop`` is called.
    Callback failures are logged and never interrupt a cycle.
    """

    def __init__(
        self,
        provider: CalendarProvider,
        callbacks: Iterable[CalendarCallback] = (),
        *,
        snapshot_store: SnapshotStore | None = None,
        manual_update: bool = False,
        manual_interval: timedelta = DEFAULT_MANUAL_INTERVAL,
    ) -> None:
        self.provider = provider
        self.callbacks: list[CalendarCallback] = list(callbacks)
        self.snapshot_store = snapshot_store or SnapshotStore()
        self.manual_update = manual_update
        self.manual_interval = manual_interval
        self.change_detector = ChangeDetector()
        self.phase = WatcherPhase.IDLE
        self.cycles = 0
        self.last_events_count = 0
        self.last_run_at: datetime | None = None
        self.last_error: str | None = None
        self._wake_event = threading.Event()
        self._stop_event = threading.Event()

    def add_callback(self, callback: CalendarCallback) -> None:
        self.callbacks.append(callback)

    @property
    def calendar_name(self) -> str | None:
        return self.change_detector.name

    @property
    def calendar_description(self) -> str | None:
        return self.change_detector.description

    @property
    def ttl(self) -> timedelta:
        return self.change_detector.ttl

    @property
    def initialized(self) -> bool:
        return self.change_detector.initialized

    def get_state(self) -> Snapshot:
        return self.change_detector.state

    def restore_state(self, state: Mapping[str, Occurrence]) -> None:
        self.change_detector.set_state(state)

    def create_backup(self, name: str) -> None:
        path = self.snapshot_store.save(name, self.get_state())
        logger.debug("Wrote backup of %d occurrences to %s", len(self.get_state()), path)

    def load_backup(self, name: str) -> None:
        state = self.snapshot_store.load(name)
        self.restore_state(state)
        logger.info("Restored %d occurrences from backup %r", len(state), name)

    def try_load_backup(self, name: str) -> bool:
        try:
            self.load_backup(name)
        except PersistenceError as exc:
            logger.warning("Starting without backup: %s", exc)
            return False
        return True

    def _dispatch(self, events: list[ChangeEvent]) -> None:
        self.phase = WatcherPhase.DISPATCHING
        for callback in self.callbacks:
            try:
                callback(self.calendar_name, self.calendar_description, list(events))
            except Exception as exc:
                error = CallbackError(_callback_name(callback), exc)
                logger.error("Error in callback: %s", error, exc_info=exc)

    def update(self) -> list[ChangeEvent]:
        try:
            self.phase = WatcherPhase.FETCHING
            calendar = self.provider.fetch_calendar()
            self.phase = WatcherPhase.COMPARING
            events = self.change_detector.compare(calendar)
        except Exception as exc:
            self._fail(exc)
            raise
        if events:
            self._dispatch(events)
        self.cycles += 1
        self.last_events_count = len(events)
        self.last_run_at = datetime.now(timezone.utc)
        self.phase = WatcherPhase.IDLE
        logger.info(
            "Cycle %d of %s: %d events", self.cycles, self.calendar_name or "Unnamed Calendar", len(events)
        )
        return events

    def _fail(self, exc: BaseException) -> None:
        self.phase = WatcherPhase.FAILED
        self.last_error = f"{type(exc).__name__}: {exc}"

    def _sleep_interval(self) -> timedelta:
        return self.manual_interval if self.manual_update else self.ttl

    def trigger(self) -> None:
        self._wake_event.set()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()

    def run(self, backup: str | None = None) -> None:
        self._stop_event.clear()
        self._wake_event.clear()
        while not self._stop_event.is_set():
            self.update()
            if backup:
                self.phase = WatcherPhase.PERSISTING
                try:
                    self.create_backup(backup)
                except PersistenceError as exc:
                    self._fail(exc)
                    raise
            if self._stop_event.is_set():
                break
            interval = self._sleep_interval()
            self.phase = WatcherPhase.SLEEPING
            logger.info("Refreshing in %s", interval)
            self._wake_event.wait(timeout=interval.total_seconds())
            self._wake_event.clear()
        self.phase = WatcherPhase.STOPPED
