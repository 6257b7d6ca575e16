"""iCalendar feed parsing for familycal.

Grammar parsing is delegated to ``icalendar``; this module only turns VEVENT
components into :class:`RawEvent` records and wraps recurrence properties in a
``python-dateutil`` backed :class:`RecurrenceSource`.
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Iterator
from typing import Any, Optional

from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar, Event as ICalEvent

from .exceptions import ParseError
from .feed_models import DateOrDateTime, RawEvent

logger = logging.getLogger(__name__)

UNTITLED_EVENT = "Untitled Event"

# Instances before the window a recurrence may walk past before giving up
MAX_SKIPPED_INSTANCES = 3660

_FIXED_PERIODS = {
    "WEEKLY": datetime.timedelta(weeks=1),
    "DAILY": datetime.timedelta(days=1),
    "HOURLY": datetime.timedelta(hours=1),
    "MINUTELY": datetime.timedelta(minutes=1),
    "SECONDLY": datetime.timedelta(seconds=1),
}

_UNTIL_RE = re.compile(r"UNTIL=([0-9]{8})(T[0-9]{6})?(Z?)", re.IGNORECASE)


def _normalize_until(rule: str, anchor: datetime.datetime) -> str:
    """Make the UNTIL clause agree with DTSTART about timezone awareness.

    dateutil refuses an aware DTSTART with a floating UNTIL and vice versa;
    feeds in the wild mix the two freely.
    """

    def replace(match: re.Match[str]) -> str:
        day, clock, zulu = match.group(1), match.group(2), match.group(3)
        if anchor.tzinfo is not None:
            return f"UNTIL={day}{clock or 'T235959'}Z"
        return f"UNTIL={day}{clock or ''}"

    if anchor.tzinfo is None and not _UNTIL_RE.search(rule):
        return rule
    return _UNTIL_RE.sub(replace, rule)


def _align(value: DateOrDateTime, anchor: datetime.datetime) -> datetime.datetime:
    """Coerce a date/datetime so it can be compared with the rule's DTSTART."""
    if not isinstance(value, datetime.datetime):
        return datetime.datetime.combine(value, anchor.timetz())
    if anchor.tzinfo is not None and value.tzinfo is None:
        return value.replace(tzinfo=anchor.tzinfo)
    if anchor.tzinfo is None and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    return value


def _rule_parts(rule: str) -> dict[str, str]:
    """Split ``FREQ=DAILY;INTERVAL=2`` into upper-cased name/value pairs."""
    body = rule.split(":", 1)[1] if rule.upper().startswith("RRULE:") else rule
    parts: dict[str, str] = {}
    for item in body.split(";"):
        name, sep, value = item.partition("=")
        if sep:
            parts[name.strip().upper()] = value.strip().upper()
    return parts


class DateutilRecurrence:
    """RecurrenceSource built from RRULE / RDATE / EXDATE values.

    dateutil yields instants in ascending order, so expansion may stop early
    once it passes the window end. With a ``since`` hint, rules of a fixed
    period length start from the last period boundary before ``since``
    instead of DTSTART, and at most ``max_skipped`` earlier instants are
    walked past before iteration gives up.
    """

    ascending = True

    def __init__(
        self,
        start: DateOrDateTime,
        rules: list[str],
        rdates: Optional[list[DateOrDateTime]] = None,
        exdates: Optional[list[DateOrDateTime]] = None,
        max_skipped: int = MAX_SKIPPED_INSTANCES,
    ) -> None:
        self.date_only = not isinstance(start, datetime.datetime)
        if isinstance(start, datetime.datetime):
            self.anchor = start
        else:
            self.anchor = datetime.datetime.combine(start, datetime.time())
        self.rules = list(rules)
        self.rdates = list(rdates or [])
        self.exdates = list(exdates or [])
        self.max_skipped = max_skipped

    def rule_start(self, rule: str, since: Optional[datetime.datetime] = None) -> datetime.datetime:
        """DTSTART to expand ``rule`` from.

        Fixed-length frequencies without COUNT generate instants on a grid
        anchored at DTSTART, so moving DTSTART forward by whole periods leaves
        every instant from ``since`` onwards unchanged. Everything else keeps
        its DTSTART.
        """
        if since is None:
            return self.anchor
        parts = _rule_parts(rule)
        period = _FIXED_PERIODS.get(parts.get("FREQ", ""))
        if period is None or "COUNT" in parts:
            return self.anchor
        try:
            step = period * max(1, int(parts.get("INTERVAL", "1")))
        except ValueError:
            return self.anchor

        # Wall-clock gap, matching how dateutil steps through periods
        reference = _align(since, self.anchor)
        if self.anchor.tzinfo is not None:
            reference = reference.astimezone(self.anchor.tzinfo)
        gap = reference.replace(tzinfo=None) - self.anchor.replace(tzinfo=None)
        periods = gap // step
        if periods <= 0:
            return self.anchor
        return self.anchor + periods * step

    def build_ruleset(self, since: Optional[datetime.datetime] = None) -> rruleset:
        """Build the dateutil rule set; raises ValueError on malformed rules."""
        rule_set = rruleset()
        for rule in self.rules:
            rule_set.rrule(
                rrulestr(_normalize_until(rule, self.anchor), dtstart=self.rule_start(rule, since))
            )
        for rdate in self.rdates:
            rule_set.rdate(_align(rdate, self.anchor))
        for exdate in self.exdates:
            rule_set.exdate(_align(exdate, self.anchor))
        return rule_set

    def iterate(self, since: Optional[datetime.datetime] = None) -> Iterator[DateOrDateTime]:
        threshold = _align(since, self.anchor) if since is not None else None
        skipped = 0
        for instant in self.build_ruleset(since):
            if threshold is not None and instant < threshold:
                skipped += 1
                if skipped >= self.max_skipped:
                    logger.debug(
                        "Gave up after skipping %d instances before %s (%r)", skipped, threshold, self
                    )
                    return
                continue
            yield instant.date() if self.date_only else instant

    def __repr__(self) -> str:
        return f"DateutilRecurrence(anchor={self.anchor!r}, rules={self.rules!r})"


class FeedParser:
    """Convert calendar text into RawEvent records."""

    def __init__(self, settings: Any = None) -> None:
        self.settings = settings

    def _load_calendar(self, text: str) -> Calendar:
        try:
            calendar = Calendar.from_ical(text)
        except Exception as e:
            logger.warning("Calendar document failed to parse: %s", e)
            raise ParseError(f"Invalid calendar document: {e}", cause=e) from e

        # from_ical returns a list when the text holds several top-level components
        if isinstance(calendar, list):
            calendar = calendar[0] if calendar else None
        if calendar is None or getattr(calendar, "name", "") != "VCALENDAR":
            raise ParseError("Document does not contain a VCALENDAR component")
        return calendar

    def parse(self, text: str) -> list[RawEvent]:
        """Parse calendar text into raw events.

        Args:
            text: iCalendar document text

        Returns:
            One RawEvent per usable VEVENT, in document order

        Raises:
            ParseError: The text is not a structurally valid calendar document
        """
        if not isinstance(text, str) or not text.strip():
            raise ParseError("Empty calendar document")

        calendar = self._load_calendar(text)

        events: list[RawEvent] = []
        skipped = 0
        for index, component in enumerate(calendar.walk("VEVENT")):
            raw = self._to_raw_event(component, index)
            if raw is None:
                skipped += 1
                continue
            events.append(raw)

        logger.debug(
            "Parsed %d events (%d recurring, %d skipped)",
            len(events),
            sum(1 for e in events if e.has_recurrence),
            skipped,
        )
        return events

    def calendar_name(self, text: str) -> Optional[str]:
        """Return the X-WR-CALNAME of the document, if any.

        Raises:
            ParseError: The text is not a structurally valid calendar document
        """
        calendar = self._load_calendar(text)
        name = calendar.get("X-WR-CALNAME")
        if name is None:
            return None
        value = str(name).strip()
        return value or None

    def _to_raw_event(self, component: ICalEvent, index: int) -> Optional[RawEvent]:
        dtstart = component.get("DTSTART")
        if dtstart is None or not hasattr(dtstart, "dt"):
            logger.warning("Skipping VEVENT #%d without DTSTART (%r)", index, component.get("SUMMARY"))
            return None

        start = dtstart.dt
        is_date_only = not isinstance(start, datetime.datetime)
        end = self._resolve_end(component, start, is_date_only)

        uid_prop = component.get("UID")
        uid = str(uid_prop) if uid_prop else f"nouid-{index}"

        rules = self._collect_rules(component)
        rdates = self._collect_dates(component, "RDATE")
        has_recurrence = bool(rules or rdates)

        recurrence = None
        if has_recurrence:
            recurrence = DateutilRecurrence(
                start,
                rules,
                rdates=rdates,
                exdates=self._collect_dates(component, "EXDATE"),
            )

        return RawEvent(
            uid=uid,
            summary=self._text(component, "SUMMARY") or UNTITLED_EVENT,
            description=self._text(component, "DESCRIPTION"),
            location=self._text(component, "LOCATION"),
            start=start,
            end=end,
            is_date_only=is_date_only,
            has_recurrence=has_recurrence,
            recurrence=recurrence,
        )

    @staticmethod
    def _text(component: ICalEvent, name: str) -> str:
        value = component.get(name)
        if value is None:
            return ""
        return str(value).strip()

    @staticmethod
    def _resolve_end(
        component: ICalEvent, start: DateOrDateTime, is_date_only: bool
    ) -> Optional[DateOrDateTime]:
        dtend = component.get("DTEND")
        if dtend is not None and hasattr(dtend, "dt"):
            return dtend.dt

        duration = component.get("DURATION")
        if duration is not None and isinstance(getattr(duration, "dt", None), datetime.timedelta):
            return start + duration.dt

        # RFC 5545: a date-only event without an end lasts one day
        if is_date_only:
            return start + datetime.timedelta(days=1)
        return None

    @staticmethod
    def _as_list(value: Any) -> list[Any]:
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [value]

    def _collect_rules(self, component: ICalEvent) -> list[str]:
        rules = []
        for prop in self._as_list(component.get("RRULE")):
            if hasattr(prop, "to_ical"):
                raw = prop.to_ical()
                rules.append(raw.decode("utf-8") if isinstance(raw, bytes) else str(raw))
            else:
                rules.append(str(prop))
        return [rule for rule in rules if rule]

    def _collect_dates(self, component: ICalEvent, name: str) -> list[DateOrDateTime]:
        """Flatten EXDATE/RDATE properties (each may hold several values)."""
        values: list[DateOrDateTime] = []
        for prop in self._as_list(component.get(name)):
            for item in getattr(prop, "dts", []):
                value = getattr(item, "dt", None)
                # RDATE may carry PERIOD values; only plain instants are used
                if isinstance(value, (datetime.date, datetime.datetime)):
                    values.append(value)
        return values
