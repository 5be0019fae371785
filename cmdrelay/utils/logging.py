# cmdrelay/utils/logging.py
"""Log setup for the relay process.

Each inbound callback gets a correlation id held in a ContextVar, so every
line logged while the event is handled (extraction, authorization, filter
decisions) can be joined back to that request. Session and queue item ids
passed through ``extra=`` become top-level JSON fields.
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

_request_id: ContextVar[str] = ContextVar("request_id", default="")

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def set_request_id(request_id: str) -> None:
    """Bind a correlation id to the current async context."""
    _request_id.set(request_id)


def get_request_id() -> str:
    return _request_id.get()


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line.

    Non-ASCII text (Chinese replies from the chat) is written as-is.
    """

    RELAY_FIELDS = ("session_id", "command_id")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if request_id := get_request_id():
            entry["request_id"] = request_id

        entry.update(
            {
                name: getattr(record, name)
                for name in self.RELAY_FIELDS
                if getattr(record, name, None)
            }
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


def configure_logging(level: int | str = logging.INFO, json_output: bool = True) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Level number or name such as "DEBUG".
        json_output: Use StructuredFormatter; otherwise a plain text format.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter() if json_output else logging.Formatter(PLAIN_FORMAT)
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
