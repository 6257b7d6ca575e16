"""Data models for calendar feeds, raw events and expanded occurrences."""

from __future__ import annotations

import datetime
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer

DEFAULT_FEED_COLOR = "#3b82f6"
OCCURRENCE_SOURCE_TAG = "ical"

DateOrDateTime = Union[datetime.date, datetime.datetime]


class SyncStatus(str, Enum):
    """Per-calendar sync state. Re-enterable; there is no terminal state."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class CalendarFeed(BaseModel):
    """A remote iCalendar feed the user subscribed to."""

    id: str = Field(..., description="Stable opaque identifier")
    name: str = Field(..., description="Human-readable calendar name")
    url: str = Field(..., description="Feed URL, stored verbatim")
    color: str = Field(default=DEFAULT_FEED_COLOR, description="Display color")
    enabled: bool = Field(default=True, description="Included in sync-all and listings")
    last_sync: Optional[datetime.datetime] = Field(default=None, description="Last successful sync")
    event_count: int = Field(default=0, ge=0, description="Occurrences stored by the last sync")
    sync_frequency_per_day: int = Field(
        default=0, ge=0, description="Automatic syncs per day (0 = manual only)"
    )

    @field_serializer("last_sync", when_used="unless-none")
    def serialize_last_sync(self, dt: datetime.datetime) -> str:
        return dt.isoformat()


class CalendarFeedInput(BaseModel):
    """Payload for adding a feed. Name and URL are checked by the store."""

    name: str = ""
    url: str = ""
    color: str = DEFAULT_FEED_COLOR
    enabled: bool = True
    sync_frequency_per_day: int = Field(default=0, ge=0)


class CalendarFeedUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    url: Optional[str] = None
    color: Optional[str] = None
    enabled: Optional[bool] = None
    last_sync: Optional[datetime.datetime] = None
    event_count: Optional[int] = Field(default=None, ge=0)
    sync_frequency_per_day: Optional[int] = Field(default=None, ge=0)

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller provided."""
        return self.model_dump(exclude_unset=True)


class EventOccurrence(BaseModel):
    """One concrete calendar-day instance of an event, ready for display.

    ``calendar_name`` and ``color`` are a snapshot of the feed at sync time,
    not a live reference.
    """

    id: str = Field(..., description="Unique across the whole result set")
    title: str
    time: str = Field(..., description="Display label such as 'All day' or '09:00 AM - 10:00 AM'")
    location: str = ""
    description: str = ""
    organizer: str = ""
    date: datetime.date
    calendar_id: str
    calendar_name: str
    color: str
    source: str = OCCURRENCE_SOURCE_TAG
    is_recurring: bool = False
    is_multi_day: bool = False

    @field_serializer("date")
    def serialize_date(self, d: datetime.date) -> str:
        return d.isoformat()


class RecurrenceSource(Protocol):
    """Injected rule-engine capability producing a recurring event's start instants.

    ``iterate`` yields occurrence starts (dates for date-only events,
    datetimes otherwise). ``since`` is a hint: an engine may skip instants
    before it. ``ascending`` must only be True when the engine guarantees
    non-decreasing output.
    """

    ascending: bool

    def iterate(self, since: Optional[datetime.datetime] = None) -> Iterator[DateOrDateTime]: ...


@dataclass
class RawEvent:
    """Normalized VEVENT as produced by the feed parser."""

    uid: str
    summary: str
    start: DateOrDateTime
    end: Optional[DateOrDateTime] = None
    description: str = ""
    location: str = ""
    is_date_only: bool = False
    has_recurrence: bool = False
    recurrence: Optional[RecurrenceSource] = field(default=None, repr=False)

    @property
    def duration(self) -> datetime.timedelta:
        """Length of the event; zero when the end is missing or precedes the start."""
        if self.end is None:
            return datetime.timedelta(0)
        try:
            span = self.end - self.start  # type: ignore[operator]
        except TypeError:
            return datetime.timedelta(0)
        return span if span > datetime.timedelta(0) else datetime.timedelta(0)


@dataclass(frozen=True)
class YearWindow:
    """Inclusive [Jan 1, Dec 31] bound of the sync year."""

    start: datetime.date
    end: datetime.date

    @classmethod
    def for_year(cls, year: int) -> YearWindow:
        return cls(start=datetime.date(year, 1, 1), end=datetime.date(year, 12, 31))

    @property
    def year(self) -> int:
        return self.start.year

    def contains(self, day: datetime.date) -> bool:
        return self.start <= day <= self.end


class SyncEventKind(str, Enum):
    """Notification kinds published on the event bus."""

    STARTED = "sync_started"
    SUCCEEDED = "sync_succeeded"
    FAILED = "sync_failed"


@dataclass(frozen=True)
class SyncNotification:
    """Message published for every sync start, success and failure."""

    kind: SyncEventKind
    calendar_id: str
    occurrence_count: int = 0
    success: bool = False
    message: Optional[str] = None


class FeedValidationResult(BaseModel):
    """Result of checking a feed URL before subscribing to it."""

    url: str
    accessible: bool = False
    content_valid: bool = False
    parse_successful: bool = False
    calendar_name: Optional[str] = None
    event_count: int = 0
    fetched_via: Optional[str] = None
    errors: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.accessible and self.content_valid and self.parse_successful

    def add_error(self, error: str) -> None:
        self.errors.append(error)
