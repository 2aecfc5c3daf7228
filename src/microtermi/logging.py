"""Logging for the CLI and the window.

Console output stays short. The debug file lives in ``logs/`` beside the
config file and rotates at ``LOG_MAX_BYTES``. Records emitted for a terminal
session carry its id in ``session``; everything else shows ``-`` there.
"""

from __future__ import annotations

import logging as py_logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from microtermi.config import get_config_path

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
LOG_FILE_NAME = "microtermi.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3
NO_SESSION = "-"
_CONSOLE_FORMAT = "%(levelname)s %(name)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d session=%(session)s %(message)s"


def resolve_level(level: str | None) -> int:
    if not level:
        return py_logging.INFO
    normalized = level.strip().upper()
    if normalized == "WARNING":
        normalized = "WARN"
    return LOG_LEVELS.get(normalized, py_logging.INFO)


def default_log_path(config_path: str | Path | None = None) -> Path:
    return get_config_path(config_path).parent / "logs" / LOG_FILE_NAME


def session_extra(session_id: int) -> dict[str, object]:
    """``extra=`` payload tying a log record to a terminal session."""
    return {"session": session_id}


class SessionContextFilter(py_logging.Filter):
    def filter(self, record: py_logging.LogRecord) -> bool:
        if not hasattr(record, "session"):
            record.session = NO_SESSION
        return True


def _file_handler(log_file: str | Path) -> RotatingFileHandler | None:
    log_path = Path(log_file).expanduser().resolve()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        return None
    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(py_logging.Formatter(_FILE_FORMAT))
    return handler


def configure_logging(
    level: str | None = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    resolved = resolve_level(level)
    logger = py_logging.getLogger("microtermi")
    logger.setLevel(resolved)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = py_logging.StreamHandler(stream or sys.stderr)
    console.setLevel(resolved)
    console.setFormatter(py_logging.Formatter(_CONSOLE_FORMAT))
    console.addFilter(SessionContextFilter())
    logger.addHandler(console)
    logger.propagate = False

    if log_file:
        file_handler = _file_handler(log_file)
        if file_handler is None:
            logger.warning("log-file unavailable path=%s", log_file)
        else:
            file_handler.addFilter(SessionContextFilter())
            logger.addHandler(file_handler)
    return logger
