"""End-to-end sync through CalendarService with a fake calendar host."""

import datetime
from collections.abc import Callable
from typing import Any

import pytest

from familycal.calendar.exceptions import CalendarNotFoundError, FetchExhaustedError
from familycal.calendar.feed_models import SyncEventKind, SyncStatus
from familycal.domain.calendar_service import CalendarService

pytestmark = pytest.mark.integration


class TestEndToEndSync:
    """Add, sync, list, toggle and remove calendars."""

    async def test_sync_when_two_calendars_then_occurrences_merged_and_sorted(
        self, service: CalendarService, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """Occurrences from every enabled calendar come back in date order."""
        school = await service.add(add_payload("school", color="#ef4444"))
        sports = await service.add(add_payload("sports"))

        summary = await service.sync_all()

        assert summary.failed == {}
        assert summary.occurrence_count == 9
        occurrences = await service.list_occurrences()
        assert [o.date for o in occurrences] == sorted(o.date for o in occurrences)
        assert {o.calendar_id for o in occurrences} == {school.id, sports.id}
        assert len([o for o in occurrences if o.title == "Assembly"]) == 4
        assert all(o.color == "#ef4444" for o in occurrences if o.calendar_id == school.id)
        assert len({o.id for o in occurrences}) == 9

    async def test_list_when_date_range_given_then_filtered(
        self, service: CalendarService, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """start and end are inclusive."""
        school = await service.add(add_payload("school"))
        await service.sync_one(school.id)

        october = await service.list_occurrences(
            start=datetime.date(2024, 10, 1), end=datetime.date(2024, 10, 22)
        )

        assert [(o.title, o.date) for o in october] == [
            ("Term break", datetime.date(2024, 10, 21)),
            ("Term break", datetime.date(2024, 10, 22)),
        ]

    async def test_toggle_when_disabled_then_hidden_from_merged_listing(
        self, service: CalendarService, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """Disabled calendars keep their data but drop out of the merged view."""
        school = await service.add(add_payload("school"))
        await service.sync_one(school.id)

        toggled = await service.toggle(school.id)

        assert toggled.enabled is False
        assert await service.list_occurrences() == []
        assert len(await service.list_occurrences(calendar_id=school.id)) == 8
        assert len(await service.list_occurrences(include_disabled=True)) == 8

    async def test_sync_when_feed_down_then_error_status_and_relay_tried(
        self, service: CalendarService, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """The direct 503 and the relay's offline notice both count as failures."""
        down = await service.add(add_payload("down"))
        notifications = []
        service.bus.subscribe(notifications.append)

        with pytest.raises(FetchExhaustedError) as excinfo:
            await service.sync_one(down.id)

        assert excinfo.value.attempts == [("direct", "HTTP 503"), ("relay", "implausible content")]
        assert service.status_board.get(down.id) is SyncStatus.ERROR
        assert [n.kind for n in notifications] == [SyncEventKind.STARTED, SyncEventKind.FAILED]
        rows = await service.sync_statuses()
        assert rows[0]["status_label"] == "Sync failed"
        assert rows[0]["last_sync_label"] == "Never synced"

    async def test_remove_when_synced_then_occurrences_gone(
        self, service: CalendarService, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """Removal cascades to stored occurrences."""
        school = await service.add(add_payload("school"))
        await service.sync_one(school.id)

        await service.remove(school.id)

        assert await service.list_occurrences(include_disabled=True) == []
        assert school.id not in service.orchestrator._sync_locks
        with pytest.raises(CalendarNotFoundError):
            await service.sync_one(school.id)

    async def test_validate_when_feed_reachable_then_name_and_count(
        self, service: CalendarService, feed_url: Callable[[str], str]
    ) -> None:
        """Validation reports the calendar name and event count without storing anything."""
        result = await service.validate_feed(feed_url("school"))

        assert result.is_valid is True
        assert result.calendar_name == "School"
        assert result.event_count == 3
        assert await service.list_feeds() == []
