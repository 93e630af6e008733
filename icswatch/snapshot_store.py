from __future__ import annotations

import json
import os
import re
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

from icswatch.errors import PersistenceError
from icswatch.fileio import TMP_SUFFIX, replace_file, tmp_path_for
from icswatch.models import Occurrence


BACKUP_EXTENSION = ".sqlite3"
FORMAT_VERSION = "1"
MAX_FILENAME_BYTES = 255
WINDOWS_RESERVED = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._ -]")


def sanitize_backup_name(name: str) -> str:
    cleaned = UNSAFE_CHARS.sub("_", str(name or "")).strip().lstrip(".").strip()
    if not cleaned:
        return "_"
    if WINDOWS_RESERVED.match(cleaned):
        cleaned = f"_{cleaned}"
    limit = MAX_FILENAME_BYTES - len(BACKUP_EXTENSION + TMP_SUFFIX)
    return cleaned.encode("utf-8")[:limit].decode("utf-8", errors="ignore")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SnapshotStore:
    def __init__(self, directory: str | os.PathLike[str] = ".backups") -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{sanitize_backup_name(name)}{BACKUP_EXTENSION}"

    def _write_database(self, path: Path, snapshot: Mapping[str, Occurrence]) -> None:
        if path.exists():
            path.unlink()
        with closing(sqlite3.connect(path)) as conn:
            with conn:
                conn.executescript(
                    """
                    CREATE TABLE snapshot (
                        position INTEGER PRIMARY KEY,
                        identity_key TEXT NOT NULL UNIQUE,
                        payload TEXT NOT NULL
                    );

                    CREATE TABLE snapshot_meta (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    );
                    """
                )
                conn.executemany(
                    "INSERT INTO snapshot(position, identity_key, payload) VALUES (?, ?, ?)",
                    (
                        (position, key, json.dumps(occurrence.to_list(), ensure_ascii=False))
                        for position, (key, occurrence) in enumerate(snapshot.items())
                    ),
                )
                conn.executemany(
                    "INSERT INTO snapshot_meta(key, value) VALUES (?, ?)",
                    [("format_version", FORMAT_VERSION), ("saved_at", _utc_now())],
                )

    def save(self, name: str, snapshot: Mapping[str, Occurrence]) -> Path:
        target = self.path_for(name)
        tmp_path = tmp_path_for(target)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._write_database(tmp_path, snapshot)
            replace_file(tmp_path, target)
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"failed to write backup {target}: {exc}") from exc
        return target

    def load(self, name: str) -> dict[str, Occurrence]:
        path = self.path_for(name)
        if not path.is_file():
            raise PersistenceError(f"backup not found: {path}")
        try:
            with closing(sqlite3.connect(path)) as conn:
                rows = conn.execute(
                    "SELECT identity_key, payload FROM snapshot ORDER BY position"
                ).fetchall()
            return {key: Occurrence.from_list(json.loads(payload)) for key, payload in rows}
        except (OSError, sqlite3.Error, ValueError, TypeError, AttributeError) as exc:
            raise PersistenceError(f"failed to read backup {path}: {exc}") from exc
