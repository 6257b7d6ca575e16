"""Shared fixtures for familycal integration tests."""

from collections.abc import AsyncIterator, Callable
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from familycal.calendar.feed_fetcher import FeedFetcher, RelayStrategy
from familycal.core.kv_store import MemoryKeyValueStore
from familycal.domain.calendar_service import CalendarService

SCHOOL_EVENTS = (
    "UID:school-1\nSUMMARY:Parent evening\nLOCATION:Main hall\nDTSTART:20240612T170000Z\nDTEND:20240612T190000Z",
    "UID:school-2\nSUMMARY:Term break\nDTSTART;VALUE=DATE:20241021\nDTEND;VALUE=DATE:20241024",
    "UID:school-3\nSUMMARY:Assembly\nDTSTART:20240902T080000Z\nDTEND:20240902T083000Z\nRRULE:FREQ=WEEKLY;COUNT=4",
)

SPORTS_EVENTS = (
    "UID:sport-1\nSUMMARY:Match\nDTSTART:20240615T100000Z\nDTEND:20240615T120000Z",
)


@pytest.fixture
def frozen_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pin "now" to 2024-06-01 so the sync window is the 2024 year."""
    monkeypatch.setenv("FAMILYCAL_TEST_TIME", "2024-06-01T12:00:00+00:00")


@pytest.fixture
def feed_server(ics_document: Callable[..., str]) -> dict[str, httpx.Response]:
    """Responses served by the fake calendar host, keyed by URL path."""
    return {
        "/school.ics": httpx.Response(200, text=ics_document(*SCHOOL_EVENTS, name="School")),
        "/sports.ics": httpx.Response(200, text=ics_document(*SPORTS_EVENTS, name="Sports")),
        "/down.ics": httpx.Response(503, text="Service Unavailable"),
    }


@pytest.fixture
async def http_client(feed_server: dict[str, httpx.Response]) -> AsyncIterator[httpx.AsyncClient]:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "relay.test":
            return httpx.Response(200, text="Offline")
        return feed_server.get(request.url.path, httpx.Response(404, text="Not Found"))

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest.fixture
def service(
    frozen_clock: None, simple_settings: SimpleNamespace, http_client: httpx.AsyncClient
) -> CalendarService:
    """Service wired with in-memory storage and the fake calendar host."""
    fetcher = FeedFetcher(
        simple_settings,
        relays=(RelayStrategy("relay", lambda url: f"https://relay.test/?url={url}"),),
        client=http_client,
    )
    return CalendarService.create(
        simple_settings, kv=MemoryKeyValueStore(), fetcher=fetcher, with_scheduler=False
    )


@pytest.fixture
def feed_url() -> Callable[[str], str]:
    def _url(name: str) -> str:
        return f"https://feeds.example.com/{name}.ics"

    return _url


@pytest.fixture
def add_payload(feed_url: Callable[[str], str]) -> Callable[..., dict[str, Any]]:
    def _payload(name: str, **extra: Any) -> dict[str, Any]:
        return {"name": name.title(), "url": feed_url(name), **extra}

    return _payload
