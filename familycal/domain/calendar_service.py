"""Application facade over the calendar store, sync orchestrator and scheduler.

The HTTP routes and the CLI talk only to CalendarService.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Optional, Union

from familycal.calendar.feed_fetcher import FeedFetcher
from familycal.calendar.feed_models import (
    CalendarFeed,
    CalendarFeedInput,
    CalendarFeedUpdate,
    EventOccurrence,
    FeedValidationResult,
)
from familycal.calendar.feed_parser import FeedParser
from familycal.calendar.recurrence_expander import RecurrenceExpander
from familycal.core.event_bus import EventBus
from familycal.core.kv_store import JsonFileKeyValueStore, KeyValueStore, MemoryKeyValueStore

from .auto_sync import AutoSyncScheduler
from .calendar_store import CalendarStore
from .sync_orchestrator import SyncOrchestrator, SyncSummary
from .sync_status import SyncStatusBoard
from .sync_utils import format_last_sync, format_sync_status

logger = logging.getLogger(__name__)


class CalendarService:
    """Calendar management and sync operations for one user's calendars."""

    def __init__(
        self,
        store: CalendarStore,
        orchestrator: SyncOrchestrator,
        scheduler: Optional[AutoSyncScheduler] = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.scheduler = scheduler

    @classmethod
    def create(
        cls,
        settings: Any = None,
        kv: Optional[KeyValueStore] = None,
        fetcher: Optional[FeedFetcher] = None,
        bus: Optional[EventBus] = None,
        with_scheduler: bool = True,
    ) -> CalendarService:
        """Wire the default component graph.

        Args:
            settings: Settings object (``FamilyCalSettings`` or any object with
                the same attributes)
            kv: Key-value backend; defaults to JSON files under ``settings.data_dir``
                or memory when no data directory is configured
            fetcher: Feed fetcher override (tests)
            bus: Notification bus override
            with_scheduler: Create an AutoSyncScheduler
        """
        if kv is None:
            data_dir = getattr(settings, "data_dir", None)
            kv = JsonFileKeyValueStore(data_dir) if data_dir else MemoryKeyValueStore()

        status_board = SyncStatusBoard()
        store = CalendarStore(kv, status_board=status_board)
        orchestrator = SyncOrchestrator(
            store=store,
            fetcher=fetcher or FeedFetcher(settings),
            parser=FeedParser(settings),
            expander=RecurrenceExpander(settings),
            bus=bus or EventBus(),
            status_board=status_board,
            settings=settings,
        )
        scheduler = None
        if with_scheduler:
            scheduler = AutoSyncScheduler(
                load_feed=store.get,
                sync_feed=orchestrator.sync_one,
                clock=orchestrator.time_provider,
            )
        return cls(store, orchestrator, scheduler)

    @property
    def bus(self) -> EventBus:
        return self.orchestrator.bus

    @property
    def status_board(self) -> SyncStatusBoard:
        return self.orchestrator.status_board

    async def list_feeds(self) -> list[CalendarFeed]:
        return await self.store.list_feeds()

    async def get_feed(self, calendar_id: str) -> CalendarFeed:
        return await self.store.get(calendar_id)

    async def list_occurrences(
        self,
        calendar_id: Optional[str] = None,
        start: Optional[datetime.date] = None,
        end: Optional[datetime.date] = None,
        include_disabled: bool = False,
    ) -> list[EventOccurrence]:
        """Stored occurrences sorted by date, optionally limited to [start, end].

        Occurrences of disabled calendars are hidden unless a calendar id is
        given or ``include_disabled`` is set.
        """
        if calendar_id is not None:
            await self.store.get(calendar_id)
            occurrences = await self.store.occurrences(calendar_id)
        else:
            occurrences = await self.store.occurrences()
            if not include_disabled:
                enabled = {feed.id for feed in await self.store.list_feeds() if feed.enabled}
                occurrences = [o for o in occurrences if o.calendar_id in enabled]

        if start is not None:
            occurrences = [o for o in occurrences if o.date >= start]
        if end is not None:
            occurrences = [o for o in occurrences if o.date <= end]
        return sorted(occurrences, key=lambda o: (o.date, o.time, o.title))

    async def add(self, data: Union[CalendarFeedInput, dict[str, Any]]) -> CalendarFeed:
        feed = await self.store.add(data)
        if self.scheduler is not None:
            self.scheduler.schedule(feed)
        return feed

    async def update(
        self, calendar_id: str, partial: Union[CalendarFeedUpdate, dict[str, Any]]
    ) -> CalendarFeed:
        feed = await self.store.update(calendar_id, partial)
        if self.scheduler is not None:
            self.scheduler.schedule(feed)
        return feed

    async def toggle(self, calendar_id: str, enabled: Optional[bool] = None) -> CalendarFeed:
        """Enable or disable a calendar; flips the current state when ``enabled`` is None."""
        if enabled is None:
            enabled = not (await self.store.get(calendar_id)).enabled
        return await self.update(calendar_id, CalendarFeedUpdate(enabled=enabled))

    async def remove(self, calendar_id: str) -> None:
        await self.store.remove(calendar_id)
        self.orchestrator.forget(calendar_id)
        if self.scheduler is not None:
            self.scheduler.cancel(calendar_id)

    async def sync_one(self, calendar_id: str) -> int:
        """Sync the calendar with ``calendar_id``; errors propagate to the caller."""
        feed = await self.store.get(calendar_id)
        return await self.orchestrator.sync_one(feed)

    async def sync_all(self) -> SyncSummary:
        return await self.orchestrator.sync_all()

    async def validate_feed(self, url: str) -> FeedValidationResult:
        return await self.orchestrator.validate_feed(url)

    async def sync_statuses(self) -> list[dict[str, Any]]:
        """Per-calendar status rows for display."""
        now = self.orchestrator.time_provider()
        rows = []
        for feed in await self.store.list_feeds():
            status = self.status_board.get(feed.id)
            rows.append(
                {
                    "calendar_id": feed.id,
                    "name": feed.name,
                    "status": status.value,
                    "status_label": format_sync_status(status),
                    "last_sync": feed.last_sync.isoformat() if feed.last_sync else None,
                    "last_sync_label": format_last_sync(feed.last_sync, now),
                    "event_count": feed.event_count,
                    "error": self.status_board.message(feed.id),
                }
            )
        return rows

    async def start_auto_sync(self) -> None:
        """Schedule background syncs for every calendar that asks for them."""
        if self.scheduler is None:
            return
        self.scheduler.refresh(await self.store.list_feeds())
        logger.info("Auto-sync scheduled for %d calendars", len(self.scheduler.pending()))

    def stop_auto_sync(self) -> None:
        if self.scheduler is not None:
            self.scheduler.cancel_all()
