"""Ephemeral per-calendar sync status board."""

from __future__ import annotations

import logging
from typing import Optional

from familycal.calendar.feed_models import SyncStatus

logger = logging.getLogger(__name__)


class SyncStatusBoard:
    """Current SyncStatus of every calendar, keyed by calendar id.

    Unknown calendars read as IDLE. Nothing here is persisted.
    """

    def __init__(self) -> None:
        self._statuses: dict[str, SyncStatus] = {}
        self._messages: dict[str, str] = {}

    def get(self, calendar_id: str) -> SyncStatus:
        return self._statuses.get(calendar_id, SyncStatus.IDLE)

    def message(self, calendar_id: str) -> Optional[str]:
        """Last error message recorded for ``calendar_id``, if any."""
        return self._messages.get(calendar_id)

    def set(self, calendar_id: str, status: SyncStatus, message: Optional[str] = None) -> None:
        previous = self._statuses.get(calendar_id, SyncStatus.IDLE)
        self._statuses[calendar_id] = status
        if message:
            self._messages[calendar_id] = message
        else:
            self._messages.pop(calendar_id, None)
        if previous != status:
            logger.debug("Sync status %s: %s -> %s", calendar_id, previous.value, status.value)

    def clear(self, calendar_id: str) -> None:
        self._statuses.pop(calendar_id, None)
        self._messages.pop(calendar_id, None)

    def snapshot(self) -> dict[str, SyncStatus]:
        return dict(self._statuses)
