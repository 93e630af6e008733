from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Optional

from icswatch.caldav_client import CalDAVMirror, CalDAVService, ReplacementTable
from icswatch.callbacks import log_events
from icswatch.ics_client import IcsFeedClient
from icswatch.models import AppConfig
from icswatch.snapshot_store import SnapshotStore
from icswatch.watcher import Watcher

logger = logging.getLogger(__name__)


def build_watcher(config: AppConfig) -> Watcher:
    watcher = Watcher(
        IcsFeedClient(config.source),
        [log_events],
        snapshot_store=SnapshotStore(config.watch.backup_dir),
        manual_update=config.watch.manual_update,
        manual_interval=timedelta(seconds=config.watch.manual_interval_seconds),
    )
    if config.caldav.is_configured():
        replacements = ReplacementTable.load(config.caldav.replacements_path)
        watcher.add_callback(CalDAVMirror(CalDAVService(config.caldav), replacements))
    if config.watch.backup_name:
        watcher.try_load_backup(config.watch.backup_name)
    return watcher


class WatchScheduler:
    """Runs a watcher loop on a daemon thread and keeps its terminal error."""

    def __init__(self, watcher: Watcher, backup_name: str = "") -> None:
        self.watcher = watcher
        self.backup_name = backup_name
        self.last_error: str | None = None
        self._thread: Optional[threading.Thread] = None

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.is_running():
            return
        self.last_error = None
        self._thread = threading.Thread(target=self._loop, name="icswatch-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self.watcher.stop()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self.watcher.trigger()

    def _loop(self) -> None:
        try:
            self.watcher.run(self.backup_name or None)
        except Exception as exc:
            self.last_error = f"{type(exc).__name__}: {exc}"
            logger.exception("Watcher stopped")
