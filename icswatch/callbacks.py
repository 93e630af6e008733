from __future__ import annotations

import logging

from icswatch.models import ChangeEvent, Updated

logger = logging.getLogger(__name__)


def describe_event(event: ChangeEvent) -> str:
    if isinstance(event, Updated):
        return f"Updated {event.uid}: {', '.join(event.changed_keys)}"
    return f"{event.kind.capitalize()} {event.uid}: {event.occurrence.summary!r}"


def log_events(name: str | None, description: str | None, events: list[ChangeEvent]) -> None:
    """Callback that writes every captured change to the log."""
    suffix = f" ({description})" if description else ""
    logger.info("Captured changes of %s%s:", name or "Unnamed Calendar", suffix)
    for event in events:
        logger.info("%s", describe_event(event))
