import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from icswatch.config_manager import ConfigManager
from icswatch.models import AppConfig


class ConfigManagerTests(unittest.TestCase):
    def test_creates_default_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "nested" / "config.yaml"
            manager = ConfigManager(str(config_path))
            self.assertTrue(config_path.exists())
            self.assertEqual(manager.load().watch.backup_dir, ".backups")

    def test_save_fallback_when_replace_ebusy(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.yaml"
            manager = ConfigManager(str(config_path))
            config = AppConfig.from_dict(
                {
                    "source": {"url": "https://calendar.example.com/feed.ics"},
                    "caldav": {"base_url": "https://dav.example.com", "username": "u", "password": "p"},
                }
            )

            original_replace = Path.replace

            def replace_side_effect(self: Path, target: Path) -> Path:
                if str(self).endswith(".tmp"):
                    raise OSError(errno.EBUSY, "Device or resource busy")
                return original_replace(self, target)

            with mock.patch("pathlib.Path.replace", new=replace_side_effect):
                manager.save(config)

            self.assertTrue(config_path.exists())
            data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
            self.assertEqual(data["source"]["url"], "https://calendar.example.com/feed.ics")
            self.assertEqual(data["caldav"]["password"], "p")

    def test_update_merges_and_masks(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            manager = ConfigManager(Path(temp_dir) / "config.yaml")
            manager.update({"caldav": {"username": "u", "password": "secret"}})
            updated = manager.update({"watch": {"backup_name": "Lectures"}})
            self.assertEqual(updated.caldav.password, "secret")
            self.assertEqual(updated.watch.backup_name, "Lectures")
            self.assertEqual(manager.masked()["caldav"]["password"], "***")


if __name__ == "__main__":
    unittest.main()
