"""
Central logging configuration for familycal.

Suppresses verbose debug logs from third-party libraries while keeping the
engine's own diagnostics, and stamps every record with the calendar id of the
sync currently running in that task (see :func:`bind_calendar`).
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
from collections.abc import Iterator
from contextvars import ContextVar
from typing import Optional

import colorlog

_current_calendar_id: ContextVar[str] = ContextVar("familycal_calendar_id", default="-")

LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s [%(calendar_id)s] %(name)s: %(message)s"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

# Third-party loggers that are noisy at DEBUG
_QUIET_LOGGERS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "charset_normalizer": logging.WARNING,
    "icalendar": logging.INFO,
}


class CalendarIdFilter(logging.Filter):
    """Add the calendar id bound to the current task to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.calendar_id = _current_calendar_id.get()
        return True


@contextlib.contextmanager
def bind_calendar(calendar_id: str) -> Iterator[None]:
    """Bind a calendar id to log records emitted inside the block.

    The binding lives in a context variable, so concurrent asyncio tasks each
    see their own value.
    """
    token = _current_calendar_id.set(calendar_id)
    try:
        yield
    finally:
        _current_calendar_id.reset(token)


def current_calendar_id() -> str:
    """Return the calendar id bound to the current context ("-" when unbound)."""
    return _current_calendar_id.get()


def configure_logging(
    level_name: Optional[str] = None,
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
) -> None:
    """
    Configure console logging for familycal.

    Args:
        level_name: Requested root level name (e.g. "INFO"); ignored when debug is forced
        debug_mode: Whether to enable debug logging for familycal modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        FAMILYCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        FAMILYCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("FAMILYCAL_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")
    env_log_level = os.getenv("FAMILYCAL_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.INFO
    if isinstance(level_name, str):
        root_level = getattr(logging, level_name.upper(), logging.INFO)
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)
    if final_debug:
        root_level = logging.DEBUG

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    calendar_filter = CalendarIdFilter()

    # Only install a handler once to avoid duplicate output on repeated calls
    if not root_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(
            colorlog.ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS)
        )
        handler.addFilter(calendar_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, CalendarIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(calendar_filter)

    for logger_name, level in _QUIET_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger("familycal").setLevel(logging.DEBUG if final_debug else root_level)

    logging.getLogger(__name__).debug(
        "Logging initialized at level %s (debug=%s)",
        logging.getLevelName(root_level),
        final_debug,
    )


def get_logging_status() -> dict[str, str]:
    """Return the current level of the root logger and the key library loggers."""
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("familycal", "httpx", "aiohttp.access", "asyncio"):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
