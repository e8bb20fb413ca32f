"""
Logging configuration — central setup for the CLI process.

Called once at startup by main.py.  Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  DI_LOG_LEVEL env var  >  config ``installer.log_level``  >  INFO

The installer speaks five levels: DEBUG < INFO < WARN < ERROR < FATAL.
WARN and FATAL are the stdlib WARNING and CRITICAL under their
installer names.

Each session attaches its own file sink (``attach_file_handler``) so the
full log of a run survives on disk next to the error log.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn, TextIO

import click

# ── Format strings ──────────────────────────────────────────────

# WARN and above on the console: just the message, with a level tag
_FMT_MINIMAL = "%(levelname)s %(message)s"

# INFO: timestamped
_FMT_VERBOSE = "%(asctime)s %(levelname)-5s %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG: full diagnostic with component and line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File output: always full detail
_FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

LOG_FORMATS = ("standard", "json")

_LEVEL_ALIASES = {
    "WARN": logging.WARNING,
    "FATAL": logging.CRITICAL,
}

_LEVEL_COLORS = {
    logging.DEBUG: "cyan",
    logging.INFO: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}

_NOISY_LOGGERS = ("urllib3", "charset_normalizer")

logger = logging.getLogger(__name__)


class ColorFormatter(logging.Formatter):
    """Colour the level tag. Only installed on TTY streams."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = _LEVEL_COLORS.get(record.levelno)
        if color is None:
            return text
        tag = record.levelname
        return text.replace(
            tag,
            click.style(tag, fg=color, bold=record.levelno >= logging.CRITICAL),
            1,
        )


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, _DATEFMT_FILE),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_file_level: str | None = None,
    log_format: str = "standard",
    stream: TextIO | None = None,
    color: bool | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Console level (DEBUG, INFO, WARN, ERROR, FATAL).
        log_file: Optional extra file sink for the whole process.
        log_file_level: Level for ``log_file``; defaults to ``level``.
        log_format: ``standard`` or ``json``.
        stream: Console stream (default: stderr).
        color: Force colour on/off; default is "only when a TTY".
        quiet_third_party: Keep noisy library loggers at WARNING
            unless we're at DEBUG.
    """
    logging.addLevelName(logging.WARNING, "WARN")
    logging.addLevelName(logging.CRITICAL, "FATAL")

    numeric_level = parse_level(level)
    stream = stream if stream is not None else sys.stderr
    if color is None:
        color = bool(getattr(stream, "isatty", lambda: False)())

    # ── Console handler ─────────────────────────────────────────
    console = logging.StreamHandler(stream)
    console.setLevel(numeric_level)
    console.setFormatter(_console_formatter(numeric_level, log_format, color))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(console)

    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)
        root.addHandler(_file_handler(log_file, file_level, log_format))

    root.setLevel(effective_level)

    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def attach_file_handler(
    path: str,
    level: str = "DEBUG",
    log_format: str = "standard",
) -> logging.Handler:
    """Add a file sink to the root logger and return it for later removal.

    The root level is lowered if needed so records reach the file; the
    console handler keeps its own threshold.
    """
    numeric = parse_level(level)
    handler = _file_handler(path, numeric, log_format)
    root = logging.getLogger()
    root.addHandler(handler)
    if root.level == logging.NOTSET or root.level > numeric:
        root.setLevel(numeric)
    logger.debug("Logging to file %s at %s", path, logging.getLevelName(numeric))
    return handler


def detach_handler(handler: logging.Handler) -> None:
    """Remove and close a handler added by ``attach_file_handler``."""
    logging.getLogger().removeHandler(handler)
    handler.close()


def die(message: str, code: int = 1, log: logging.Logger | None = None) -> NoReturn:
    """Log ``message`` at FATAL and terminate with ``code``."""
    (log or logger).critical(message)
    sys.exit(code if code != 0 else 1)


def parse_level(level: str | None) -> int:
    """Convert a level name to its numeric constant (default INFO)."""
    if not level:
        return logging.INFO
    name = level.strip().upper()
    if name in _LEVEL_ALIASES:
        return _LEVEL_ALIASES[name]
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


def _console_formatter(numeric_level: int, log_format: str, color: bool) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    cls = ColorFormatter if color else logging.Formatter
    return cls(fmt, datefmt=datefmt)


def _file_handler(path: str, numeric_level: int, log_format: str) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(path, encoding="utf-8")
    fh.setLevel(numeric_level)
    if log_format == "json":
        fh.setFormatter(JsonFormatter())
    else:
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
    return fh
