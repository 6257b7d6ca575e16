"""Sync pipeline architecture for familycal.

A calendar sync is a fixed sequence of stages sharing one ProcessingContext:

    pipeline = SyncPipeline()
    pipeline.add_stage(FetchStage(fetcher))
    pipeline.add_stage(ParseStage(parser))
    pipeline.add_stage(ExpansionStage(expander))
    pipeline.add_stage(PersistStage(store))

    context = ProcessingContext(feed=feed, window=YearWindow.for_year(2024))
    result = await pipeline.process(context)

Each stage completes before the next starts. Stages fail by raising; the
first exception stops the pipeline and is kept on the result for the caller
to re-raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from familycal.calendar.feed_models import CalendarFeed, EventOccurrence, RawEvent, YearWindow

logger = logging.getLogger(__name__)


@dataclass
class ProcessingContext:
    """State passed between pipeline stages. Stages read from and write to it."""

    feed: CalendarFeed
    window: YearWindow

    # Processing state (modified by stages)
    raw_content: Optional[str] = None
    fetched_via: Optional[str] = None
    raw_events: list[RawEvent] = field(default_factory=list)
    occurrences: list[EventOccurrence] = field(default_factory=list)


@dataclass
class ProcessingResult:
    """Result from a stage or from the whole pipeline."""

    success: bool = True
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None

    items_in: int = 0
    items_out: int = 0
    stage_name: str = ""

    def add_error(self, message: str, exception: Optional[BaseException] = None) -> None:
        """Add an error message and mark as failed."""
        self.errors.append(message)
        self.success = False
        if exception is not None and self.exception is None:
            self.exception = exception
        logger.error("[%s] %s", self.stage_name, message)


class SyncStage(Protocol):
    """A single stage of the sync pipeline."""

    async def process(self, context: ProcessingContext) -> ProcessingResult:
        """Run this stage against ``context``."""
        ...

    @property
    def name(self) -> str:
        """Name of this stage for logging."""
        ...


class SyncPipeline:
    """Runs stages in sequence, stopping at the first failure."""

    def __init__(self) -> None:
        self.stages: list[SyncStage] = []

    def add_stage(self, stage: SyncStage) -> SyncPipeline:
        """Add a stage (builder pattern)."""
        self.stages.append(stage)
        logger.debug("Added stage to pipeline: %s", stage.name)
        return self

    async def process(self, context: ProcessingContext) -> ProcessingResult:
        """Execute all stages in order.

        Returns:
            Aggregated result; on failure ``exception`` holds the error that
            stopped the pipeline
        """
        logger.debug("Starting pipeline with %d stages for %s", len(self.stages), context.feed.id)

        aggregated = ProcessingResult(stage_name="Pipeline")

        for stage_num, stage in enumerate(self.stages, start=1):
            logger.debug("Executing stage %d/%d: %s", stage_num, len(self.stages), stage.name)

            try:
                stage_result = await stage.process(context)
            except Exception as e:
                aggregated.add_error(f"Stage {stage.name} raised exception: {e}", exception=e)
                logger.debug("Stage %s failed", stage.name, exc_info=True)
                return aggregated

            logger.debug(
                "Stage %s/%s (%s) completed: in=%s, out=%s",
                stage_num,
                len(self.stages),
                stage.name,
                stage_result.items_in,
                stage_result.items_out,
            )

            aggregated.metadata.update(stage_result.metadata)

        aggregated.success = True
        aggregated.items_out = len(context.occurrences)
        return aggregated

    def __repr__(self) -> str:
        stage_names = [stage.name for stage in self.stages]
        return f"SyncPipeline(stages={stage_names})"
