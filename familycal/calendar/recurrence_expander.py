"""Expansion of raw events into bounded, per-day occurrences.

Every occurrence produced here falls inside the sync year window. Recurring
events are drawn from their RecurrenceSource up to a hard cap, and a failure
while expanding one event never affects the others.
"""

from __future__ import annotations

import datetime
import logging
import math
from typing import Any, Optional

from familycal.core.timezone_utils import DEFAULT_TIMEZONE, start_of_day

from .feed_models import (
    CalendarFeed,
    DateOrDateTime,
    EventOccurrence,
    RawEvent,
    RecurrenceSource,
    YearWindow,
)
from .occurrence_builder import OccurrenceBuilder

logger = logging.getLogger(__name__)

MAX_RECURRENCE_DRAWS = 366
ONE_DAY = datetime.timedelta(days=1)


def span_days(raw: RawEvent) -> int:
    """Number of calendar days a date-only event covers (end exclusive)."""
    if not raw.is_date_only:
        return 1
    return max(1, math.ceil(raw.duration / ONE_DAY))


class RecurrenceExpander:
    """Turn RawEvents into EventOccurrences within a YearWindow."""

    def __init__(self, settings: Any = None, max_draws: int = MAX_RECURRENCE_DRAWS) -> None:
        self.timezone = getattr(settings, "default_timezone", None) or DEFAULT_TIMEZONE
        self.max_draws = max_draws

    def expand(
        self,
        raw: RawEvent,
        feed: CalendarFeed,
        window: YearWindow,
        builder: Optional[OccurrenceBuilder] = None,
    ) -> list[EventOccurrence]:
        """Expand one raw event.

        Args:
            raw: Event as produced by the feed parser
            feed: Owning feed; its name and color are snapshotted
            window: Year window bounding every emitted occurrence
            builder: Builder shared across the sync pass (a fresh one otherwise)

        Returns:
            Occurrences in no particular order; never raises
        """
        builder = builder or OccurrenceBuilder(self.timezone)

        try:
            if raw.has_recurrence and raw.recurrence is not None:
                return self._expand_recurring(raw, raw.recurrence, feed, window, builder)
            return self._expand_single(raw, feed, window, builder)
        except Exception as e:
            logger.warning(
                "Failed to expand event %r (uid=%s), falling back to its start: %s",
                raw.summary,
                raw.uid,
                e,
            )
            return self._fallback(raw, feed, window, builder)

    def _expand_single(
        self, raw: RawEvent, feed: CalendarFeed, window: YearWindow, builder: OccurrenceBuilder
    ) -> list[EventOccurrence]:
        span = span_days(raw)
        if span > 1:
            return self._expand_days(raw, feed, window, builder, raw.start, span, is_recurring=False)

        if not window.contains(builder.local_day(raw.start)):
            return []
        return [builder.build(raw, feed, raw.start)]

    def _expand_days(
        self,
        raw: RawEvent,
        feed: CalendarFeed,
        window: YearWindow,
        builder: OccurrenceBuilder,
        first: DateOrDateTime,
        span: int,
        is_recurring: bool,
    ) -> list[EventOccurrence]:
        """One multi-day occurrence per covered day; days outside the window are dropped."""
        occurrences = []
        for offset in range(span):
            when = first + offset * ONE_DAY
            if window.contains(builder.local_day(when)):
                occurrences.append(
                    builder.build(raw, feed, when, is_recurring=is_recurring, is_multi_day=True)
                )
        return occurrences

    def _expand_recurring(
        self,
        raw: RawEvent,
        source: RecurrenceSource,
        feed: CalendarFeed,
        window: YearWindow,
        builder: OccurrenceBuilder,
    ) -> list[EventOccurrence]:
        ascending = bool(getattr(source, "ascending", False))
        span = span_days(raw)
        since = start_of_day(window.start, self.timezone)

        occurrences: list[EventOccurrence] = []
        draws = 0
        for when in source.iterate(since=since):
            if draws >= self.max_draws:
                logger.debug("Recurrence draw cap (%d) reached for uid=%s", self.max_draws, raw.uid)
                break
            draws += 1

            day = builder.local_day(when)
            if day > window.end:
                if ascending:
                    break
                continue
            if day < window.start:
                continue

            if span > 1:
                occurrences.extend(
                    self._expand_days(raw, feed, window, builder, when, span, is_recurring=True)
                )
            else:
                occurrences.append(builder.build(raw, feed, when, is_recurring=True))

        logger.debug(
            "Expanded recurring event uid=%s: %d draws, %d occurrences",
            raw.uid,
            draws,
            len(occurrences),
        )
        return occurrences

    def _fallback(
        self, raw: RawEvent, feed: CalendarFeed, window: YearWindow, builder: OccurrenceBuilder
    ) -> list[EventOccurrence]:
        try:
            if not window.contains(builder.local_day(raw.start)):
                return []
            return [builder.build(raw, feed, raw.start)]
        except Exception:
            logger.exception("Fallback occurrence failed for uid=%s, dropping event", raw.uid)
            return []

    def expand_all(
        self,
        events: list[RawEvent],
        feed: CalendarFeed,
        window: YearWindow,
        builder: Optional[OccurrenceBuilder] = None,
    ) -> list[EventOccurrence]:
        """Expand a whole feed's events with one shared builder."""
        builder = builder or OccurrenceBuilder(self.timezone)
        occurrences: list[EventOccurrence] = []
        for raw in events:
            occurrences.extend(self.expand(raw, feed, window, builder))
        return occurrences
