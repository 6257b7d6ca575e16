"""Small helpers for presenting and scheduling syncs."""

from __future__ import annotations

import datetime
from typing import Optional, Union

from familycal.calendar.feed_models import SyncStatus
from familycal.core.timezone_utils import now_utc

DEFAULT_SYNC_INTERVAL = datetime.timedelta(minutes=15)

_STATUS_LABELS = {
    SyncStatus.IDLE: "Ready to sync",
    SyncStatus.SYNCING: "Syncing...",
    SyncStatus.SUCCESS: "Sync successful",
    SyncStatus.ERROR: "Sync failed",
}


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value


def time_since_sync(
    last_sync: Optional[datetime.datetime], now: Optional[datetime.datetime] = None
) -> Optional[datetime.timedelta]:
    """Elapsed time since ``last_sync``; None when the calendar never synced."""
    if last_sync is None:
        return None
    current = _as_utc(now if now is not None else now_utc())
    return current - _as_utc(last_sync)


def should_sync(
    last_sync: Optional[datetime.datetime],
    interval: datetime.timedelta = DEFAULT_SYNC_INTERVAL,
    now: Optional[datetime.datetime] = None,
) -> bool:
    """True when the calendar never synced or its last sync is older than ``interval``."""
    elapsed = time_since_sync(last_sync, now)
    return elapsed is None or elapsed > interval


def format_sync_status(status: Union[SyncStatus, str]) -> str:
    try:
        return _STATUS_LABELS[SyncStatus(status)]
    except ValueError:
        return "Unknown status"


def format_last_sync(
    last_sync: Optional[datetime.datetime], now: Optional[datetime.datetime] = None
) -> str:
    """Relative label such as "Just now", "5 minutes ago" or "Never synced"."""
    elapsed = time_since_sync(last_sync, now)
    if elapsed is None:
        return "Never synced"

    seconds = int(elapsed.total_seconds())
    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    return f"{seconds // 86400} days ago"
