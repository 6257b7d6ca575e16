"""Integration tests for the familycal JSON API."""

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from aiohttp.test_utils import TestClient, TestServer

from familycal import __version__
from familycal.api.server import SERVICE_KEY, create_app
from familycal.domain.calendar_service import CalendarService


@pytest.fixture
async def test_client(service: CalendarService) -> AsyncIterator[TestClient]:
    """Create a test client for the app."""
    app = create_app(service)
    assert app[SERVICE_KEY] is service
    async with TestClient(TestServer(app)) as client:
        yield client


async def _add(client: TestClient, payload: dict[str, Any]) -> dict[str, Any]:
    response = await client.post("/api/calendars", json=payload)
    assert response.status == 201
    return (await response.json())["calendar"]


@pytest.mark.integration
class TestCalendarRoutes:
    """Calendar CRUD over HTTP."""

    async def test_health_when_called_then_ok_with_version(self, test_client: TestClient) -> None:
        response = await test_client.get("/api/health")

        assert response.status == 200
        data = await response.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["calendar_count"] == 0
        assert data["server_time_iso"].startswith("2024-06-01T12:00:00")

    async def test_add_when_valid_then_201_and_listed(
        self, test_client: TestClient, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """A created calendar is returned and shows up in the listing."""
        created = await _add(test_client, add_payload("school", sync_frequency_per_day=2))

        response = await test_client.get("/api/calendars")
        calendars = (await response.json())["calendars"]

        assert created["name"] == "School"
        assert created["last_sync"] is None
        assert [c["id"] for c in calendars] == [created["id"]]
        assert calendars[0]["sync_frequency_per_day"] == 2

    @pytest.mark.parametrize(
        "payload",
        [{"name": "No url"}, {"url": "https://feeds.example.com/x.ics"}, {"name": "Bad", "url": "webcal://x"}],
    )
    async def test_add_when_invalid_then_400(self, test_client: TestClient, payload: dict[str, Any]) -> None:
        """Validation failures map to 400 with an error message."""
        response = await test_client.post("/api/calendars", json=payload)

        assert response.status == 400
        assert "error" in await response.json()

    async def test_add_when_body_not_json_then_400(self, test_client: TestClient) -> None:
        response = await test_client.post("/api/calendars", data="not json")

        assert response.status == 400
        assert (await response.json())["error"] == "invalid json"

    async def test_patch_when_partial_then_other_fields_kept(
        self, test_client: TestClient, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        created = await _add(test_client, add_payload("school"))

        response = await test_client.patch(f"/api/calendars/{created['id']}", json={"enabled": False})

        assert response.status == 200
        updated = (await response.json())["calendar"]
        assert updated["enabled"] is False
        assert updated["url"] == created["url"]

    async def test_patch_and_delete_when_unknown_id_then_404(self, test_client: TestClient) -> None:
        patched = await test_client.patch("/api/calendars/missing", json={"name": "x"})
        deleted = await test_client.delete("/api/calendars/missing")

        assert patched.status == 404
        assert deleted.status == 404

    async def test_delete_when_known_then_removed(
        self, test_client: TestClient, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        created = await _add(test_client, add_payload("school"))

        response = await test_client.delete(f"/api/calendars/{created['id']}")

        assert response.status == 200
        assert await response.json() == {"removed": created["id"]}
        assert (await (await test_client.get("/api/calendars")).json())["calendars"] == []


@pytest.mark.integration
class TestSyncRoutes:
    """Sync, events, status and validation over HTTP."""

    async def test_sync_one_when_feed_good_then_events_listed(
        self, test_client: TestClient, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """A successful sync reports the count and the events become queryable."""
        created = await _add(test_client, add_payload("school"))

        response = await test_client.post(f"/api/calendars/{created['id']}/sync")

        assert response.status == 200
        assert await response.json() == {"calendar_id": created["id"], "event_count": 8, "success": True}

        events = (await (await test_client.get("/api/events", params={"start": "2024-06-01", "end": "2024-06-30"})).json())[
            "events"
        ]
        assert len(events) == 1
        assert events[0]["title"] == "Parent evening"
        assert events[0]["date"] == "2024-06-12"
        assert events[0]["time"] == "05:00 PM - 07:00 PM"
        assert events[0]["location"] == "Main hall"
        assert events[0]["calendar_name"] == "School"

    async def test_sync_one_when_feed_down_then_502(
        self, test_client: TestClient, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        created = await _add(test_client, add_payload("down"))

        response = await test_client.post(f"/api/calendars/{created['id']}/sync")

        assert response.status == 502
        assert "All fetch methods failed" in (await response.json())["error"]

        status = (await (await test_client.get("/api/sync-status")).json())["calendars"]
        assert status[0]["status"] == "error"
        assert status[0]["error"]

    async def test_sync_one_when_unknown_id_then_404(self, test_client: TestClient) -> None:
        response = await test_client.post("/api/calendars/missing/sync")
        assert response.status == 404

    async def test_sync_all_when_one_fails_then_summary(
        self, test_client: TestClient, add_payload: Callable[..., dict[str, Any]]
    ) -> None:
        """Sync-all always answers 200 with per-calendar outcomes."""
        school = await _add(test_client, add_payload("school"))
        down = await _add(test_client, add_payload("down"))

        response = await test_client.post("/api/sync")

        assert response.status == 200
        data = await response.json()
        assert data["succeeded"] == [school["id"]]
        assert list(data["failed"]) == [down["id"]]
        assert data["occurrence_count"] == 8
        assert data["message"] == "Synced 1 calendar, 1 failed"

    async def test_events_when_date_malformed_then_400(self, test_client: TestClient) -> None:
        response = await test_client.get("/api/events", params={"start": "June first"})
        assert response.status == 400

    async def test_events_when_calendar_unknown_then_404(self, test_client: TestClient) -> None:
        response = await test_client.get("/api/events", params={"calendar_id": "missing"})
        assert response.status == 404

    async def test_validate_when_url_good_or_bad_then_result(
        self, test_client: TestClient, feed_url: Callable[[str], str]
    ) -> None:
        """Validation always answers 200 and carries is_valid."""
        good = await (await test_client.post("/api/validate", json={"url": feed_url("sports")})).json()
        bad = await (await test_client.post("/api/validate", json={"url": feed_url("down")})).json()

        assert good["is_valid"] is True
        assert good["calendar_name"] == "Sports"
        assert good["fetched_via"] == "direct"
        assert bad["is_valid"] is False
        assert bad["errors"]
