from __future__ import annotations

import json
import logging
import os

import uvicorn

from icswatch.config_manager import ConfigManager
from icswatch.scheduler import build_watcher


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(log_level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def run_headless(config_path: str) -> None:
    config = ConfigManager(config_path).load()
    watcher = build_watcher(config)
    watcher.run(config.watch.backup_name or None)


def main() -> None:
    config_path = os.getenv("ICSWATCH_CONFIG_PATH", "config.yaml")
    setup_logging(ConfigManager(config_path).load().watch.log_level)
    if os.getenv("ICSWATCH_HEADLESS", "").strip().lower() in {"1", "true", "yes"}:
        run_headless(config_path)
        return
    host = os.getenv("ICSWATCH_HOST", "0.0.0.0")
    port = int(os.getenv("ICSWATCH_PORT", "8080"))
    uvicorn.run("icswatch.web_admin:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
