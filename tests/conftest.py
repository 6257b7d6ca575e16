from collections.abc import AsyncIterator, Callable, Generator
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any

import pytest

from familycal.calendar.feed_models import CalendarFeed
from familycal.core.http_client import close_all_clients

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object used across tests.

    Fields mirror FamilyCalSettings; components read them with getattr so a
    SimpleNamespace is enough.
    """
    return SimpleNamespace(
        request_timeout=5.0,
        relays_enabled=True,
        relay_failure_threshold=3,
        relay_cooldown_seconds=300,
        default_timezone="UTC",
        data_dir=None,
    )


@pytest.fixture
def fixed_now() -> Callable[[], datetime]:
    """Time provider frozen at 2024-06-01 12:00 UTC."""
    return lambda: FIXED_NOW


@pytest.fixture
def make_feed() -> Callable[..., CalendarFeed]:
    """Factory for CalendarFeed records with sensible defaults."""

    def _make(**overrides: Any) -> CalendarFeed:
        data: dict[str, Any] = {
            "id": "cal-1",
            "name": "Family",
            "url": "https://calendar.example.com/family.ics",
            "color": "#10b981",
        }
        data.update(overrides)
        return CalendarFeed(**data)

    return _make


@pytest.fixture
def ics_document() -> Callable[..., str]:
    """Build a VCALENDAR document around the given VEVENT bodies."""

    def _build(*events: str, name: str | None = None) -> str:
        lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//familycal tests//EN"]
        if name:
            lines.append(f"X-WR-CALNAME:{name}")
        for body in events:
            lines.append("BEGIN:VEVENT")
            lines.extend(line.strip() for line in body.strip().splitlines() if line.strip())
            lines.append("END:VEVENT")
        lines.append("END:VCALENDAR")
        return "\r\n".join(lines) + "\r\n"

    return _build


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear familycal environment overrides before and after each test."""
    for name in ("FAMILYCAL_TEST_TIME", "FAMILYCAL_DEBUG", "FAMILYCAL_LOG_LEVEL", "FAMILYCAL_DEFAULT_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test to prevent resource leaks."""
    yield
    await close_all_clients()
