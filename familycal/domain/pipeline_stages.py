"""Concrete sync pipeline stages.

Each stage wraps one ingestion component into the SyncStage protocol. Stages
let component exceptions propagate; SyncPipeline records them on the result.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from familycal.calendar.exceptions import ValidationError
from familycal.calendar.occurrence_builder import OccurrenceBuilder
from familycal.domain.pipeline import ProcessingContext, ProcessingResult, SyncPipeline

if TYPE_CHECKING:
    from familycal.calendar.feed_fetcher import FeedFetcher
    from familycal.calendar.feed_parser import FeedParser
    from familycal.calendar.recurrence_expander import RecurrenceExpander
    from familycal.domain.calendar_store import CalendarStore

logger = logging.getLogger(__name__)


class FetchStage:
    """Retrieve the feed text through the fetch resilience layer."""

    def __init__(self, fetcher: FeedFetcher) -> None:
        self.fetcher = fetcher

    @property
    def name(self) -> str:
        return "Fetch"

    async def process(self, context: ProcessingContext) -> ProcessingResult:
        result = ProcessingResult(stage_name=self.name)

        url = (context.feed.url or "").strip()
        if not url:
            raise ValidationError(f"Calendar {context.feed.id} has no URL to sync from")

        text, source = await self.fetcher.fetch_with_source(url)
        context.raw_content = text
        context.fetched_via = source

        result.items_out = len(text)
        result.metadata["fetched_via"] = source
        logger.debug("Fetched %d chars via %s", len(text), source)
        return result


class ParseStage:
    """Parse the fetched text into raw events."""

    def __init__(self, parser: FeedParser) -> None:
        self.parser = parser

    @property
    def name(self) -> str:
        return "Parse"

    async def process(self, context: ProcessingContext) -> ProcessingResult:
        result = ProcessingResult(stage_name=self.name)
        context.raw_events = self.parser.parse(context.raw_content or "")
        result.items_out = len(context.raw_events)
        result.metadata["raw_event_count"] = result.items_out
        return result


class ExpansionStage:
    """Expand raw events into in-window occurrences with one builder per pass."""

    def __init__(self, expander: RecurrenceExpander) -> None:
        self.expander = expander

    @property
    def name(self) -> str:
        return "Expansion"

    async def process(self, context: ProcessingContext) -> ProcessingResult:
        result = ProcessingResult(stage_name=self.name, items_in=len(context.raw_events))

        builder = OccurrenceBuilder(self.expander.timezone)
        context.occurrences = self.expander.expand_all(
            context.raw_events, context.feed, context.window, builder
        )

        result.items_out = len(context.occurrences)
        result.metadata["occurrence_count"] = result.items_out
        logger.debug(
            "Expansion: %d raw events -> %d occurrences in %d",
            result.items_in,
            result.items_out,
            context.window.year,
        )
        return result


class PersistStage:
    """Replace the calendar's stored occurrences wholesale."""

    def __init__(self, store: CalendarStore) -> None:
        self.store = store

    @property
    def name(self) -> str:
        return "Persist"

    async def process(self, context: ProcessingContext) -> ProcessingResult:
        result = ProcessingResult(stage_name=self.name, items_in=len(context.occurrences))
        await self.store.replace_occurrences(context.feed.id, context.occurrences)
        result.items_out = len(context.occurrences)
        return result


def create_sync_pipeline(
    fetcher: FeedFetcher,
    parser: FeedParser,
    expander: RecurrenceExpander,
    store: CalendarStore,
) -> SyncPipeline:
    """Create the complete sync pipeline: fetch, parse, expand, persist.

    Returns:
        Configured pipeline ready for processing
    """
    return (
        SyncPipeline()
        .add_stage(FetchStage(fetcher))
        .add_stage(ParseStage(parser))
        .add_stage(ExpansionStage(expander))
        .add_stage(PersistStage(store))
    )
