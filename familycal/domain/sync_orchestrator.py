"""Coordinates fetch, parse, expansion and persistence for calendar syncs.

One sync of one calendar runs the sync pipeline to completion, then records
the outcome: status board entry, bus notification and, on success, the feed's
``last_sync``/``event_count``. Previously stored occurrences are only replaced
when the whole pipeline succeeds. Syncs of the same calendar are serialized;
different calendars may sync concurrently.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from familycal.calendar.exceptions import (
    CalendarNotFoundError,
    FamilyCalError,
    FetchExhaustedError,
    ParseError,
)
from familycal.calendar.feed_fetcher import FeedFetcher, is_fetchable_url
from familycal.calendar.feed_models import (
    CalendarFeed,
    CalendarFeedUpdate,
    FeedValidationResult,
    SyncEventKind,
    SyncNotification,
    SyncStatus,
    YearWindow,
)
from familycal.calendar.feed_parser import FeedParser
from familycal.calendar.recurrence_expander import RecurrenceExpander
from familycal.core.event_bus import EventBus
from familycal.core.logging_config import bind_calendar
from familycal.core.timezone_utils import DEFAULT_TIMEZONE, local_now, now_utc

from .calendar_store import CalendarStore
from .pipeline import ProcessingContext
from .pipeline_stages import create_sync_pipeline
from .sync_status import SyncStatusBoard

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """Outcome of a sync-all batch."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    occurrence_count: int = 0

    @property
    def message(self) -> str:
        text = f"Synced {len(self.succeeded)} calendar{'s' if len(self.succeeded) != 1 else ''}"
        if self.failed:
            text += f", {len(self.failed)} failed"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "occurrence_count": self.occurrence_count,
            "message": self.message,
        }


class SyncOrchestrator:
    """Runs calendar syncs and records their outcome."""

    def __init__(
        self,
        store: CalendarStore,
        fetcher: FeedFetcher,
        parser: FeedParser,
        expander: RecurrenceExpander,
        bus: Optional[EventBus] = None,
        status_board: Optional[SyncStatusBoard] = None,
        settings: Any = None,
        time_provider: Callable[[], datetime.datetime] = now_utc,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.parser = parser
        self.expander = expander
        self.bus = bus or EventBus()
        self.status_board = status_board or store.status_board or SyncStatusBoard()
        self.timezone = getattr(settings, "default_timezone", None) or DEFAULT_TIMEZONE
        self.time_provider = time_provider
        self.pipeline = create_sync_pipeline(fetcher, parser, expander, store)
        # One sync at a time per calendar id
        self._sync_locks: dict[str, asyncio.Lock] = {}

    def current_window(self) -> YearWindow:
        """The sync window: the current calendar year in the configured timezone."""
        return YearWindow.for_year(local_now(self.timezone, self.time_provider()).year)

    async def sync_one(self, feed: CalendarFeed) -> int:
        """Sync one calendar and return the number of occurrences stored.

        Raises:
            ValidationError: The feed has no URL
            FetchExhaustedError: The feed could not be retrieved
            ParseError: The feed text is not a calendar document
        """
        lock = self._sync_locks.setdefault(feed.id, asyncio.Lock())
        if lock.locked():
            logger.debug("Sync already running for %s, waiting for it to finish", feed.id)
        async with lock:
            return await self._sync_locked(feed)

    def forget(self, calendar_id: str) -> None:
        """Drop the sync lock of a removed calendar unless a sync still holds it."""
        lock = self._sync_locks.get(calendar_id)
        if lock is not None and not lock.locked():
            del self._sync_locks[calendar_id]

    async def _sync_locked(self, feed: CalendarFeed) -> int:
        with bind_calendar(feed.id):
            self.status_board.set(feed.id, SyncStatus.SYNCING)
            await self.bus.publish(SyncNotification(kind=SyncEventKind.STARTED, calendar_id=feed.id))
            logger.info("Syncing calendar %s (%s)", feed.name, feed.url)

            context = ProcessingContext(feed=feed, window=self.current_window())
            result = await self.pipeline.process(context)

            if not result.success:
                error = result.exception or FamilyCalError("; ".join(result.errors) or "Sync failed")
                if isinstance(error, CalendarNotFoundError) and error.calendar_id == feed.id:
                    return self._discard_removed(feed)
                await self._record_failure(feed, error)
                raise error

            count = len(context.occurrences)
            try:
                await self.store.update(
                    feed.id, CalendarFeedUpdate(last_sync=self.time_provider(), event_count=count)
                )
            except CalendarNotFoundError:
                return self._discard_removed(feed)

            self.status_board.set(feed.id, SyncStatus.SUCCESS)
            await self.bus.publish(
                SyncNotification(
                    kind=SyncEventKind.SUCCEEDED,
                    calendar_id=feed.id,
                    occurrence_count=count,
                    success=True,
                )
            )
            logger.info(
                "Synced %s: %d occurrences from %s events (via %s)",
                feed.name,
                count,
                result.metadata.get("raw_event_count", "?"),
                context.fetched_via,
            )
            return count

    def _discard_removed(self, feed: CalendarFeed) -> int:
        logger.info("Calendar %s was removed during sync, discarding results", feed.id)
        self.status_board.clear(feed.id)
        self._sync_locks.pop(feed.id, None)
        return 0

    async def _record_failure(self, feed: CalendarFeed, error: BaseException) -> None:
        logger.warning("Sync failed for %s: %s", feed.name, error)
        self.status_board.set(feed.id, SyncStatus.ERROR, str(error))
        await self.bus.publish(
            SyncNotification(
                kind=SyncEventKind.FAILED,
                calendar_id=feed.id,
                success=False,
                message=str(error),
            )
        )

    async def sync_all(self) -> SyncSummary:
        """Sync every enabled calendar, one after another.

        A failing calendar is recorded in the summary and does not stop the
        batch.
        """
        summary = SyncSummary()
        feeds = [feed for feed in await self.store.list_feeds() if feed.enabled]
        logger.info("Syncing %d enabled calendars", len(feeds))

        for feed in feeds:
            try:
                summary.occurrence_count += await self.sync_one(feed)
                summary.succeeded.append(feed.id)
            except Exception as e:
                summary.failed[feed.id] = str(e)

        logger.info("%s", summary.message)
        return summary

    async def validate_feed(self, url: str) -> FeedValidationResult:
        """Fetch and parse ``url`` the way a sync would, without storing anything."""
        url = (url or "").strip()
        result = FeedValidationResult(url=url)

        if not is_fetchable_url(url):
            result.add_error("URL must be an http or https address")
            return result

        try:
            text, source = await self.fetcher.fetch_with_source(url)
        except FetchExhaustedError as e:
            result.add_error(str(e))
            return result

        # fetch_with_source only returns plausible calendar text
        result.accessible = True
        result.content_valid = True
        result.fetched_via = source

        try:
            events = self.parser.parse(text)
            result.calendar_name = self.parser.calendar_name(text)
        except ParseError as e:
            result.add_error(f"Calendar could not be parsed: {e}")
            return result

        result.parse_successful = True
        result.event_count = len(events)
        logger.debug("Validated %s: %d events via %s", url, len(events), source)
        return result
