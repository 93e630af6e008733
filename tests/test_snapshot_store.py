import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from icswatch.change_detector import ChangeDetector
from icswatch.errors import PersistenceError
from icswatch.models import Occurrence, ParsedCalendar, Property
from icswatch.snapshot_store import SnapshotStore, sanitize_backup_name


def _calendar() -> ParsedCalendar:
    return ParsedCalendar(
        occurrences=[
            Occurrence(
                properties=(
                    Property("UID", "lecture-1"),
                    Property("DTSTAMP", "20240101T000000Z"),
                    Property("SUMMARY", "Analysis 1 (MA1001)"),
                    Property("DTSTART", "20240115T100000", {"TZID": ["Europe/Berlin"]}),
                )
            ),
            Occurrence(
                properties=(
                    Property("UID", "lecture-1"),
                    Property("RECURRENCE-ID", "20240122T100000"),
                    Property("SUMMARY", "Analysis 1 moved"),
                    Property("DESCRIPTION", None),
                )
            ),
        ]
    )


class SanitizeBackupNameTests(unittest.TestCase):
    def test_keeps_plain_names(self) -> None:
        self.assertEqual(sanitize_backup_name("TUM Calendar"), "TUM Calendar")

    def test_replaces_separators_and_leading_dots(self) -> None:
        self.assertEqual(sanitize_backup_name("../etc/passwd"), "_etc_passwd")
        self.assertEqual(sanitize_backup_name("a:b*c?"), "a_b_c_")

    def test_reserved_and_empty(self) -> None:
        self.assertEqual(sanitize_backup_name("CON"), "_CON")
        self.assertEqual(sanitize_backup_name("   "), "_")

    def test_long_names_leave_room_for_tmp_file(self) -> None:
        name = sanitize_backup_name("ü" * 300)
        self.assertLessEqual(len(f"{name}.sqlite3.tmp".encode("utf-8")), 255)


class SnapshotStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = SnapshotStore(Path(self.temp_dir.name) / "backups")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_path_for_uses_sanitized_name(self) -> None:
        path = self.store.path_for("My/Calendar")
        self.assertEqual(path.name, "My_Calendar.sqlite3")
        self.assertEqual(path.parent, self.store.directory)

    def test_save_and_load_round_trip(self) -> None:
        detector = ChangeDetector()
        detector.compare(_calendar())
        path = self.store.save("Lectures", detector.state)
        self.assertTrue(path.is_file())
        self.assertFalse(path.with_suffix(path.suffix + ".tmp").exists())
        self.assertEqual(self.store.load("Lectures"), dict(detector.state))

    def test_save_overwrites_previous_file(self) -> None:
        self.store.save("Lectures", {"a": Occurrence((Property("UID", "a"),))})
        self.store.save("Lectures", {"b": Occurrence((Property("UID", "b"),))})
        self.assertEqual(list(self.store.load("Lectures")), ["b"])

    def test_save_and_load_with_very_long_name(self) -> None:
        name = "c" * 300
        path = self.store.save(name, {"a": Occurrence((Property("UID", "a"),))})
        self.assertTrue(path.is_file())
        self.assertEqual(list(self.store.load(name)), ["a"])

    def test_restored_detector_reports_no_changes(self) -> None:
        detector = ChangeDetector()
        detector.compare(_calendar())
        self.store.save("Lectures", detector.state)

        restored = ChangeDetector()
        restored.set_state(self.store.load("Lectures"))
        self.assertEqual(restored.compare(_calendar()), [])

    def test_load_missing_raises(self) -> None:
        with self.assertRaises(PersistenceError):
            self.store.load("missing")

    def test_load_corrupt_file_raises(self) -> None:
        path = self.store.path_for("broken")
        path.parent.mkdir(parents=True)
        path.write_bytes(b"not a database at all, definitely not sqlite")
        with self.assertRaises(PersistenceError):
            self.store.load("broken")

    def test_save_failure_raises_persistence_error(self) -> None:
        blocker = Path(self.temp_dir.name) / "file"
        blocker.write_text("x", encoding="utf-8")
        store = SnapshotStore(blocker / "backups")
        with self.assertRaises(PersistenceError):
            store.save("Lectures", {})

    def test_save_falls_back_when_replace_ebusy(self) -> None:
        original_replace = Path.replace

        def replace_side_effect(self: Path, target: Path) -> Path:
            if str(self).endswith(".tmp"):
                raise OSError(errno.EBUSY, "Device or resource busy")
            return original_replace(self, target)

        with mock.patch("pathlib.Path.replace", new=replace_side_effect):
            self.store.save("Lectures", {"a": Occurrence((Property("UID", "a"),))})

        self.assertEqual(list(self.store.load("Lectures")), ["a"])


if __name__ == "__main__":
    unittest.main()
