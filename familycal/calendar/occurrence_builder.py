"""Build display-ready EventOccurrence records from raw events."""

from __future__ import annotations

import datetime
import hashlib
import logging
from typing import Optional

from familycal.core.timezone_utils import DEFAULT_TIMEZONE, to_local

from .feed_models import (
    OCCURRENCE_SOURCE_TAG,
    CalendarFeed,
    DateOrDateTime,
    EventOccurrence,
    RawEvent,
)

logger = logging.getLogger(__name__)

ALL_DAY_LABEL = "All day"
MULTI_DAY_LABEL = "All day (Multi-day)"
RECURRING_SUFFIX = " (Recurring)"
TIME_FORMAT = "%I:%M %p"
ID_PREFIX = "occ_"
ID_HASH_LENGTH = 16


def format_time_label(
    start: DateOrDateTime,
    end: Optional[DateOrDateTime],
    is_date_only: bool,
    is_multi_day: bool,
    is_recurring: bool,
) -> str:
    """Return the human label shown next to an occurrence.

    Examples: ``"All day"``, ``"09:00 AM - 10:30 AM"``,
    ``"All day (Multi-day) (Recurring)"``.
    """
    if is_multi_day:
        label = MULTI_DAY_LABEL
    elif is_date_only or not isinstance(start, datetime.datetime):
        label = ALL_DAY_LABEL
    else:
        label = start.strftime(TIME_FORMAT)
        if isinstance(end, datetime.datetime):
            label = f"{label} - {end.strftime(TIME_FORMAT)}"
    if is_recurring:
        label += RECURRING_SUFFIX
    return label


class OccurrenceBuilder:
    """Creates occurrences for one sync pass.

    Ids are derived from the calendar id, source uid, occurrence instant and
    span flag, so re-syncing unchanged data yields the same ids. The builder
    remembers every id it issued; a repeated key gets a numeric suffix so ids
    stay unique across the whole result set.
    """

    def __init__(self, timezone: Optional[str] = None) -> None:
        self.timezone = timezone or DEFAULT_TIMEZONE
        self._issued: dict[str, int] = {}

    def _local(self, value: DateOrDateTime) -> DateOrDateTime:
        if isinstance(value, datetime.datetime):
            return to_local(value, self.timezone)
        return value

    def local_day(self, when: DateOrDateTime) -> datetime.date:
        """Calendar day ``when`` falls on in the builder's timezone."""
        local = self._local(when)
        if isinstance(local, datetime.datetime):
            return local.date()
        return local

    def _make_id(self, calendar_id: str, uid: str, when: DateOrDateTime, is_multi_day: bool) -> str:
        key = "|".join((calendar_id, uid, when.isoformat(), "MD" if is_multi_day else "SD"))
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:ID_HASH_LENGTH]
        base = f"{ID_PREFIX}{digest}"

        count = self._issued.get(base, 0)
        self._issued[base] = count + 1
        if count == 0:
            return base
        logger.debug("Occurrence id collision for %s (uid=%s), suffixing", base, uid)
        return f"{base}-{count}"

    def build(
        self,
        raw: RawEvent,
        feed: CalendarFeed,
        when: DateOrDateTime,
        is_recurring: bool = False,
        is_multi_day: bool = False,
    ) -> EventOccurrence:
        """Create one occurrence of ``raw`` starting at ``when``."""
        local_start = self._local(when)
        local_end: Optional[DateOrDateTime] = None
        if isinstance(when, datetime.datetime):
            local_end = self._local(when + raw.duration)

        return EventOccurrence(
            id=self._make_id(feed.id, raw.uid, when, is_multi_day),
            title=raw.summary,
            time=format_time_label(local_start, local_end, raw.is_date_only, is_multi_day, is_recurring),
            location=raw.location,
            description=raw.description,
            organizer=feed.name,
            date=self.local_day(when),
            calendar_id=feed.id,
            calendar_name=feed.name,
            color=feed.color,
            source=OCCURRENCE_SOURCE_TAG,
            is_recurring=is_recurring,
            is_multi_day=is_multi_day,
        )
