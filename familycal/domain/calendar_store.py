"""Persistent registry of calendar feeds and their synced occurrences.

Layout in the key-value backend:

    familycal:feeds                      -> {calendar_id: feed record}
    familycal:occurrences:<calendar_id>  -> [occurrence record, ...]

Occurrences live under one key per calendar, so replacing one calendar's set
never touches another's. Feed records share a single key; every
read-modify-write on it happens under an asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Any, Optional, Union

import pydantic

from familycal.calendar.exceptions import CalendarNotFoundError, ValidationError
from familycal.calendar.feed_fetcher import is_fetchable_url
from familycal.calendar.feed_models import (
    CalendarFeed,
    CalendarFeedInput,
    CalendarFeedUpdate,
    EventOccurrence,
)
from familycal.core.kv_store import KeyValueStore

from .sync_status import SyncStatusBoard

logger = logging.getLogger(__name__)

FEEDS_KEY = "familycal:feeds"
OCCURRENCES_KEY_PREFIX = "familycal:occurrences:"


def occurrences_key(calendar_id: str) -> str:
    return f"{OCCURRENCES_KEY_PREFIX}{calendar_id}"


def generate_calendar_id() -> str:
    """Return a new opaque id such as ``ical_1717228800000_3f9a1c2e``."""
    return f"ical_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _validate_payload(model: Any, data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise ValidationError(f"Invalid calendar data ({location}): {first.get('msg')}") from e


class CalendarStore:
    """CRUD for feeds plus per-calendar occurrence storage."""

    def __init__(self, kv: KeyValueStore, status_board: Optional[SyncStatusBoard] = None) -> None:
        """Initialize store.

        Args:
            kv: Async key-value backend
            status_board: Board whose entry is cleared when a calendar is removed
        """
        self.kv = kv
        self.status_board = status_board
        self._lock = asyncio.Lock()

    async def _load_feeds(self) -> dict[str, CalendarFeed]:
        raw = await self.kv.get(FEEDS_KEY) or {}
        feeds: dict[str, CalendarFeed] = {}
        for calendar_id, record in raw.items():
            try:
                feeds[calendar_id] = CalendarFeed.model_validate(record)
            except ValueError as e:
                logger.warning("Ignoring unreadable feed record %s: %s", calendar_id, e)
        return feeds

    async def _save_feeds(self, feeds: dict[str, CalendarFeed]) -> None:
        await self.kv.set(
            FEEDS_KEY, {calendar_id: feed.model_dump(mode="json") for calendar_id, feed in feeds.items()}
        )

    @staticmethod
    def _check_unique(
        feeds: dict[str, CalendarFeed], name: str, url: str, exclude_id: Optional[str] = None
    ) -> None:
        for feed in feeds.values():
            if feed.id == exclude_id:
                continue
            if feed.name.strip().lower() == name.lower():
                raise ValidationError(f"A calendar named {feed.name!r} already exists")
            if feed.url.strip().lower() == url.lower():
                raise ValidationError(f"This calendar URL is already added as {feed.name!r}")

    @staticmethod
    def _check_url(url: str) -> None:
        if not is_fetchable_url(url):
            raise ValidationError(f"Invalid calendar URL: {url!r} (expected http or https)")

    async def add(self, data: Union[CalendarFeedInput, dict[str, Any]]) -> CalendarFeed:
        """Create a feed.

        Raises:
            ValidationError: Name or URL missing, URL not http(s), or a feed with
                the same name or URL (case-insensitive) already exists
        """
        if isinstance(data, dict):
            data = _validate_payload(CalendarFeedInput, data)

        name = data.name.strip()
        url = data.url.strip()
        if not name or not url:
            raise ValidationError("Calendar name and URL are required")
        self._check_url(url)

        async with self._lock:
            feeds = await self._load_feeds()
            self._check_unique(feeds, name, url)

            feed = CalendarFeed(
                id=generate_calendar_id(),
                name=name,
                url=url,
                color=data.color,
                enabled=data.enabled,
                sync_frequency_per_day=data.sync_frequency_per_day,
            )
            feeds[feed.id] = feed
            await self._save_feeds(feeds)

        logger.info("Added calendar %s (%s)", feed.id, feed.name)
        return feed

    async def update(
        self, calendar_id: str, partial: Union[CalendarFeedUpdate, dict[str, Any]]
    ) -> CalendarFeed:
        """Merge the provided fields into a feed; omitted fields are kept.

        Raises:
            CalendarNotFoundError: Unknown calendar id
            ValidationError: The update would blank the name or URL, or collide
                with another feed
        """
        if isinstance(partial, dict):
            partial = _validate_payload(CalendarFeedUpdate, partial)
        changes = partial.changes()

        if "name" in changes:
            if changes["name"] is None or not changes["name"].strip():
                raise ValidationError("Calendar name cannot be empty")
            changes["name"] = changes["name"].strip()
        if "url" in changes:
            if changes["url"] is None or not changes["url"].strip():
                raise ValidationError("Calendar URL cannot be empty")
            changes["url"] = changes["url"].strip()
            self._check_url(changes["url"])
        for field_name in ("color", "enabled", "event_count", "sync_frequency_per_day"):
            if field_name in changes and changes[field_name] is None:
                del changes[field_name]

        async with self._lock:
            feeds = await self._load_feeds()
            current = feeds.get(calendar_id)
            if current is None:
                raise CalendarNotFoundError(calendar_id)

            if "name" in changes or "url" in changes:
                self._check_unique(
                    feeds,
                    changes.get("name", current.name).strip(),
                    changes.get("url", current.url).strip(),
                    exclude_id=calendar_id,
                )

            updated = current.model_copy(update=changes)
            feeds[calendar_id] = updated
            await self._save_feeds(feeds)

        logger.debug("Updated calendar %s: %s", calendar_id, sorted(changes))
        return updated

    async def remove(self, calendar_id: str) -> None:
        """Delete a feed together with its occurrences and status entry.

        Raises:
            CalendarNotFoundError: Unknown calendar id
        """
        async with self._lock:
            feeds = await self._load_feeds()
            if calendar_id not in feeds:
                raise CalendarNotFoundError(calendar_id)
            del feeds[calendar_id]
            await self._save_feeds(feeds)
            await self.kv.remove(occurrences_key(calendar_id))

        if self.status_board is not None:
            self.status_board.clear(calendar_id)
        logger.info("Removed calendar %s", calendar_id)

    async def get(self, calendar_id: str) -> CalendarFeed:
        """Raises CalendarNotFoundError for unknown ids."""
        feeds = await self._load_feeds()
        feed = feeds.get(calendar_id)
        if feed is None:
            raise CalendarNotFoundError(calendar_id)
        return feed

    async def list_feeds(self) -> list[CalendarFeed]:
        feeds = await self._load_feeds()
        return list(feeds.values())

    async def replace_occurrences(self, calendar_id: str, occurrences: list[EventOccurrence]) -> None:
        """Replace the calendar's stored occurrences wholesale.

        Raises:
            CalendarNotFoundError: The calendar was removed in the meantime
        """
        async with self._lock:
            feeds = await self._load_feeds()
            if calendar_id not in feeds:
                raise CalendarNotFoundError(calendar_id)
            await self.kv.set(
                occurrences_key(calendar_id), [o.model_dump(mode="json") for o in occurrences]
            )
        logger.debug("Stored %d occurrences for %s", len(occurrences), calendar_id)

    async def occurrences(self, calendar_id: Optional[str] = None) -> list[EventOccurrence]:
        """Stored occurrences for one calendar, or for every known calendar."""
        if calendar_id is not None:
            calendar_ids = [calendar_id]
        else:
            calendar_ids = list((await self._load_feeds()).keys())

        result: list[EventOccurrence] = []
        for cid in calendar_ids:
            for record in await self.kv.get(occurrences_key(cid)) or []:
                result.append(EventOccurrence.model_validate(record))
        return result
