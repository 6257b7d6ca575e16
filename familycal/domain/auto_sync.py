"""Periodic background sync of calendars with a per-day sync frequency.

Each calendar with ``sync_frequency_per_day > 0`` gets one pending timer
handle. When it fires the calendar is synced and a new timer is scheduled,
``86400 / sync_frequency_per_day`` seconds after the later of its last
successful sync and its last attempt.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from familycal.calendar.exceptions import CalendarNotFoundError
from familycal.calendar.feed_models import CalendarFeed
from familycal.core.timezone_utils import now_utc

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

FeedLoader = Callable[[str], Awaitable[CalendarFeed]]
FeedSyncer = Callable[[CalendarFeed], Awaitable[Any]]
CallLater = Callable[..., Any]


def sync_interval_seconds(sync_frequency_per_day: int) -> Optional[float]:
    """Seconds between automatic syncs, or None for manual-only calendars."""
    if sync_frequency_per_day <= 0:
        return None
    return SECONDS_PER_DAY / sync_frequency_per_day


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


class AutoSyncScheduler:
    """Owns the ``calendar_id -> timer handle`` map for background syncs."""

    def __init__(
        self,
        load_feed: FeedLoader,
        sync_feed: FeedSyncer,
        clock: Callable[[], datetime.datetime] = now_utc,
        call_later: Optional[CallLater] = None,
    ) -> None:
        """Initialize scheduler.

        Args:
            load_feed: Returns the current feed record; raises CalendarNotFoundError
            sync_feed: Runs one sync of the given feed
            clock: Source of "now"
            call_later: ``(delay, callback, *args) -> handle with cancel()``;
                defaults to the running loop's ``call_later``
        """
        self._load_feed = load_feed
        self._sync_feed = sync_feed
        self._clock = clock
        self._call_later = call_later
        self._handles: dict[str, Any] = {}
        self._last_attempt: dict[str, datetime.datetime] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def delay_for(self, feed: CalendarFeed) -> Optional[float]:
        """Seconds until ``feed`` is due, or None when it is not auto-synced."""
        interval = sync_interval_seconds(feed.sync_frequency_per_day)
        if interval is None or not feed.enabled:
            return None

        reference = feed.last_sync
        attempted = self._last_attempt.get(feed.id)
        if attempted is not None and (reference is None or _as_utc(attempted) > _as_utc(reference)):
            reference = attempted
        if reference is None:
            return 0.0

        elapsed = (_as_utc(self._clock()) - _as_utc(reference)).total_seconds()
        return max(0.0, interval - elapsed)

    def schedule(self, feed: CalendarFeed) -> bool:
        """(Re)schedule ``feed``. Returns False when it is not auto-synced."""
        self._cancel_handle(feed.id)
        delay = self.delay_for(feed)
        if delay is None:
            return False

        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._handles[feed.id] = call_later(delay, self._fire, feed.id)
        logger.debug("Scheduled auto-sync for %s in %.0fs", feed.id, delay)
        return True

    def cancel(self, calendar_id: str) -> None:
        """Stop auto-syncing ``calendar_id`` and forget its last attempt."""
        self._cancel_handle(calendar_id)
        self._last_attempt.pop(calendar_id, None)

    def _cancel_handle(self, calendar_id: str) -> None:
        handle = self._handles.pop(calendar_id, None)
        if handle is not None:
            handle.cancel()
            logger.debug("Cancelled auto-sync for %s", calendar_id)

    def cancel_all(self) -> None:
        for calendar_id in list(self._handles):
            self.cancel(calendar_id)
        for task in list(self._tasks):
            task.cancel()
        self._last_attempt.clear()

    def pending(self) -> list[str]:
        return sorted(self._handles)

    def refresh(self, feeds: list[CalendarFeed]) -> None:
        """Make the pending timers match ``feeds``."""
        known = {feed.id for feed in feeds}
        for calendar_id in list(self._handles):
            if calendar_id not in known:
                self.cancel(calendar_id)
        for feed in feeds:
            self.schedule(feed)

    def _fire(self, calendar_id: str) -> None:
        self._handles.pop(calendar_id, None)
        task = asyncio.ensure_future(self.run_once(calendar_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_once(self, calendar_id: str) -> None:
        """Sync one calendar now and schedule its next run."""
        try:
            feed = await self._load_feed(calendar_id)
        except CalendarNotFoundError:
            logger.debug("Auto-sync target %s no longer exists", calendar_id)
            return

        self._last_attempt[calendar_id] = self._clock()
        try:
            await self._sync_feed(feed)
        except Exception as e:
            logger.warning("Auto-sync of %s failed: %s", calendar_id, e)

        try:
            feed = await self._load_feed(calendar_id)
        except CalendarNotFoundError:
            self._last_attempt.pop(calendar_id, None)
            return
        self.schedule(feed)
