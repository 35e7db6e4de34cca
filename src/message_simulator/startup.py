"""Logging setup for the CLI and the server.

Human-readable lines on the console, JSON lines in a rotating file under
the simulator home. Library modules only create loggers; this is the one
place handlers get installed.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from message_simulator import conventions
from message_simulator.config import simulator_home
from message_simulator.models import format_iso


def log_file_path() -> Path:
    return simulator_home() / conventions.LOG_DIR / conventions.LOG_FILE


# LogRecord attributes copied into the JSON entry when a call passes them
# via ``extra=``.
CONTEXT_FIELDS = ("thread_id", "operation")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, timestamps in the store's ISO-ms shape."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": format_iso(datetime.fromtimestamp(record.created, tz=UTC)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: int | str = logging.INFO,
    log_file: Path | None = None,
    *,
    to_file: bool = True,
) -> None:
    """Configure console logging, plus JSON file logging when *to_file*.

    Calling it again replaces the handlers installed by the previous call
    instead of stacking duplicates.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, "_msgsim", False):
            root.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    console_handler._msgsim = True  # type: ignore[attr-defined]
    root.addHandler(console_handler)

    if not to_file:
        return

    log_file = log_file or log_file_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        str(log_file), maxBytes=5 * 1024 * 1024, backupCount=3
    )
    file_handler.setFormatter(JSONFormatter())
    file_handler._msgsim = True  # type: ignore[attr-defined]
    root.addHandler(file_handler)
