# src/taskpulse/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that would otherwise write a line per HTTP request.
CHATTY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

# Background parts of the client: they print from another thread while the prompt is open.
_BACKGROUND_PREFIXES = ("taskpulse.tasks.", "taskpulse.api.client")


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console filter for the interactive client and the server.

    taskpulse.*         everything, except background sync/feed/client below WARNING
    uvicorn.error       INFO+ ("Uvicorn running on ...", startup/shutdown)
    py.warnings, rest   ERROR+
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("taskpulse."):
            if name.startswith(_BACKGROUND_PREFIXES):
                return record.levelno >= logging.WARNING
            return True

        if name == "uvicorn.error":
            return record.levelno >= logging.INFO

        return record.levelno >= logging.ERROR


def _console_handler(level: int, fmt: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.addFilter(_ConsoleNoiseFilter())
    return handler


def _file_handler(log_file: Path, level: int, fmt: logging.Formatter) -> logging.Handler:
    # The server can run for a long time; keep a few MB of history.
    handler = RotatingFileHandler(str(log_file), maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(fmt)
    return handler


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskpulse",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure root logging: a filtered stderr handler plus a full log file
    at <log_dir>/taskpulse.log. Returns the log file path.

    Call once, before the first log line. Calling again replaces the handlers.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskpulse.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    root.addHandler(_console_handler(console_level, fmt))
    root.addHandler(_file_handler(log_file, file_level, fmt))

    # warnings.warn(...) -> 'py.warnings' logger
    logging.captureWarnings(True)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file
