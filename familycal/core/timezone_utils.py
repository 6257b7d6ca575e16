"""Time helpers for familycal: overridable "now" and local-date conversion."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"


@lru_cache(maxsize=32)
def _zone(tz_name: str) -> zoneinfo.ZoneInfo:
    return zoneinfo.ZoneInfo(tz_name)


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via the FAMILYCAL_TEST_TIME environment
    variable (ISO 8601, e.g. "2024-06-01T08:00:00+00:00"). Naive values are
    taken as UTC.
    """
    test_time = os.environ.get("FAMILYCAL_TEST_TIME")
    if test_time:
        try:
            from dateutil import parser as date_parser

            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                return dt.astimezone(datetime.UTC)
            return dt.replace(tzinfo=datetime.UTC)
        except ValueError as e:
            logger.warning("Failed to parse FAMILYCAL_TEST_TIME=%r: %s", test_time, e)

    return datetime.datetime.now(datetime.UTC)


def get_default_timezone(fallback: str = DEFAULT_TIMEZONE) -> str:
    """Return FAMILYCAL_DEFAULT_TIMEZONE when it names a valid zone, else ``fallback``."""
    timezone = os.environ.get("FAMILYCAL_DEFAULT_TIMEZONE", fallback)
    try:
        _zone(timezone)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid timezone %r, falling back to %s", timezone, fallback)
        return fallback
    return timezone


def to_local(value: datetime.datetime, tz_name: str) -> datetime.datetime:
    """Convert an aware datetime into ``tz_name``; naive (floating) values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(_zone(tz_name))


def local_date(value: datetime.date | datetime.datetime, tz_name: str) -> datetime.date:
    """Return the calendar day ``value`` falls on in ``tz_name``."""
    if isinstance(value, datetime.datetime):
        return to_local(value, tz_name).date()
    return value


def local_now(tz_name: str, now: datetime.datetime | None = None) -> datetime.datetime:
    """Return "now" (or ``now``) expressed in ``tz_name``."""
    current = now if now is not None else now_utc()
    if current.tzinfo is None:
        current = current.replace(tzinfo=datetime.UTC)
    return current.astimezone(_zone(tz_name))


def start_of_day(day: datetime.date, tz_name: str) -> datetime.datetime:
    """Return local midnight of ``day`` in ``tz_name`` as an aware datetime."""
    return datetime.datetime.combine(day, datetime.time(), tzinfo=_zone(tz_name))
