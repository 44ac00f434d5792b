# src/carelog/logging_setup.py

"""
Logging for a care log that shares its terminal with the caregiver prompt.

Records about a single occurrence or queued action pass the id as `extra`
(occurrence_id=..., action_id=...). The context filter turns those into a short
tag, so both handlers can show which dose or queued change a line is about
without every message repeating the id.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "carelog.log"
LOG_FILE_MAX_BYTES = 1_000_000
LOG_FILE_BACKUPS = 3

# Chatty components that only matter on the console when something goes wrong.
_QUIET_ON_CONSOLE = ("carelog.storage.", "carelog.care.reminders")

_CONTEXT_KEYS = (("occurrence_id", "occ"), ("action_id", "action"), ("record_id", "record"))


class _CareContextFilter(logging.Filter):
    """Adds `record.care`: '[occ=1a2b3c4d] ' style tag from the ids passed as extra, or ''."""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = []
        for key, label in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value:
                parts.append(f"{label}={str(value)[:8]}")
        record.care = f"[{' '.join(parts)}] " if parts else ""
        return True


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable next to the prompt:
    - carelog logs pass, except storage and reminder timers below WARNING
    - Python warnings (captured as 'py.warnings') and other libraries only at ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("carelog."):
            if name.startswith(_QUIET_ON_CONSOLE):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """'debug' -> logging.DEBUG; unknown names fall back to default."""
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(
    *,
    log_dir: str | Path = ".local/carelog",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console gets short, filtered lines; carelog.log (rotated) gets everything with
    logger names. Call once, before the first log line. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    context = _CareContextFilter()

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(logging.Formatter(fmt="%(asctime)s %(levelname)s %(care)s%(message)s", datefmt="%H:%M:%S"))
    ch.addFilter(_ConsoleNoiseFilter())
    ch.addFilter(context)
    root.addHandler(ch)

    fh = RotatingFileHandler(
        str(log_file),
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    fh.setLevel(file_level)
    fh.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(care)s%(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    fh.addFilter(context)
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file
