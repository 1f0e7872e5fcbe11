# groundcontrol/logging_config.py
"""
Logging setup for groundcontrol.

The library itself only logs through module loggers under the
"groundcontrol" namespace; setup_logging() is for applications (and the CLI)
that want console and/or file output without configuring logging themselves.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "groundcontrol"
LOG_FILE = Path(".groundcontrol") / "logs" / "groundcontrol.log"

FORMATS = {
    "simple": "[%(asctime)s] %(message)s",
    "detailed": "%(asctime)s %(levelname)-8s %(name)s (%(filename)s:%(lineno)d) %(message)s",
}
DATE_FORMAT = "%H:%M:%S"

_RED = "\033[31m"
_YELLOW = "\033[33m"
_RESET = "\033[0m"

_handlers: list[logging.Handler] = []


class ColorFormatter(logging.Formatter):
    """Colour WARNING yellow and ERROR/CRITICAL red."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno >= logging.ERROR:
            return f"{_RED}{message}{_RESET}"
        if record.levelno >= logging.WARNING:
            return f"{_YELLOW}{message}{_RESET}"
        return message


def get_log_file_path() -> Path:
    """Absolute path of the log file written when setup_logging(file=True)."""
    return LOG_FILE.resolve()


def _clear_handlers(logger: logging.Logger) -> None:
    for handler in _handlers:
        logger.removeHandler(handler)
        handler.close()
    _handlers.clear()


def setup_logging(
    level: str | int = "INFO",
    *,
    console: bool = True,
    file: bool = False,
    format: str = "simple",
    format_string: str | None = None,
    propagate: bool = True,
) -> logging.Logger:
    """
    Configure the "groundcontrol" logger.

    Args:
        level: Level name or number
        console: Log to stderr (coloured when stderr is a terminal)
        file: Also log to .groundcontrol/logs/groundcontrol.log
        format: "simple" or "detailed" (adds level, logger name and file:line)
        format_string: Custom format, overrides `format`
        propagate: Pass records on to the root logger as well

    Calling it again replaces the handlers installed by the previous call.
    """
    if format_string is None and format not in FORMATS:
        raise ValueError(f"Unknown log format '{format}'. Use one of: {', '.join(FORMATS)}")
    fmt = format_string or FORMATS[format]

    logger = logging.getLogger(PACKAGE_LOGGER)
    _clear_handlers(logger)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.propagate = propagate
    logger.disabled = False

    if console:
        handler = logging.StreamHandler(sys.stderr)
        formatter_cls = ColorFormatter if sys.stderr.isatty() else logging.Formatter
        handler.setFormatter(formatter_cls(fmt, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        _handlers.append(handler)

    if file:
        path = get_log_file_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(FORMATS["detailed"]))
        logger.addHandler(handler)
        _handlers.append(handler)

    return logger


def disable_logging() -> None:
    """Silence all groundcontrol logging (useful in tests)."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    _clear_handlers(logger)
    # Child loggers still propagate to a disabled parent, so cut propagation too
    handler = logging.NullHandler()
    logger.addHandler(handler)
    _handlers.append(handler)
    logger.propagate = False
    logger.disabled = True
