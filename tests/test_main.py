import json
import logging
import sys
import unittest

from icswatch.main import JsonFormatter, setup_logging


class LoggingSetupTests(unittest.TestCase):
    def tearDown(self) -> None:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        root_logger.setLevel(logging.WARNING)

    def test_setup_logging_installs_single_json_handler(self) -> None:
        setup_logging("debug")
        root_logger = logging.getLogger()
        self.assertEqual(root_logger.level, logging.DEBUG)
        self.assertEqual(len(root_logger.handlers), 1)
        self.assertIsInstance(root_logger.handlers[0].formatter, JsonFormatter)

    def test_json_formatter_includes_exception(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("icswatch.watcher", logging.ERROR, __file__, 1, "failed %s", ("x",), sys.exc_info())
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["message"], "failed x")
        self.assertEqual(payload["logger"], "icswatch.watcher")
        self.assertIn("RuntimeError: boom", payload["exception"])


if __name__ == "__main__":
    unittest.main()
