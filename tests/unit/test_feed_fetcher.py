"""Unit tests for familycal.calendar.feed_fetcher."""

from types import SimpleNamespace

import httpx
import pytest

from familycal.calendar.exceptions import FetchExhaustedError
from familycal.calendar.feed_fetcher import (
    DEFAULT_RELAYS,
    FeedFetcher,
    RelayHealthTracker,
    RelayStrategy,
    is_fetchable_url,
    is_plausible_calendar_text,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]

FEED_URL = "https://calendar.example.com/family.ics"
VALID_ICS = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nEND:VCALENDAR\r\n"

RELAYS = (
    RelayStrategy("relay-a", lambda url: f"https://relay-a.test/?url={url}"),
    RelayStrategy("relay-b", lambda url: f"https://relay-b.test/fetch/{url}"),
)


def _client(routes: dict[str, httpx.Response | Exception], calls: list[str] | None = None) -> httpx.AsyncClient:
    """Client whose responses are chosen by request host."""

    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if calls is not None:
            calls.append(host)
        outcome = routes.get(host, httpx.Response(404, text="not here"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestPlausibility:
    """Tests for the calendar text validity check."""

    def test_is_plausible_when_calendar_marker_then_true(self) -> None:
        """A document with BEGIN:VCALENDAR is accepted."""
        assert is_plausible_calendar_text(VALID_ICS) is True

    def test_is_plausible_when_marker_lowercase_then_true(self) -> None:
        """The marker check is case-insensitive."""
        assert is_plausible_calendar_text("begin:vcalendar\nend:vcalendar") is True

    def test_is_plausible_when_short_offline_notice_then_false(self) -> None:
        """A short relay notice such as 'Offline' is rejected."""
        assert is_plausible_calendar_text("Offline") is False

    def test_is_plausible_when_short_text_with_marker_and_indicator_then_false(self) -> None:
        """Short texts mentioning an error indicator are rejected even with the marker."""
        assert is_plausible_calendar_text("BEGIN:VCALENDAR error") is False

    def test_is_plausible_when_long_html_page_then_false(self) -> None:
        """Anything without the marker is rejected regardless of length."""
        assert is_plausible_calendar_text("<html>" + "x" * 500 + "</html>") is False

    def test_is_plausible_when_empty_then_false(self) -> None:
        """Empty or missing text is rejected."""
        assert is_plausible_calendar_text("") is False
        assert is_plausible_calendar_text(None) is False

    def test_is_fetchable_url_when_schemes_vary_then_only_http_allowed(self) -> None:
        """Only absolute http(s) URLs with a host are fetchable."""
        assert is_fetchable_url("https://example.com/a.ics") is True
        assert is_fetchable_url("http://example.com/a.ics") is True
        assert is_fetchable_url("webcal://example.com/a.ics") is False
        assert is_fetchable_url("ftp://example.com/a.ics") is False
        assert is_fetchable_url("not a url") is False


class TestFeedFetcher:
    """Tests for the direct-then-relay fetch chain."""

    @pytest.mark.asyncio
    async def test_fetch_when_direct_succeeds_then_relays_not_tried(self, simple_settings: SimpleNamespace) -> None:
        """A good direct response is returned without touching relays."""
        calls: list[str] = []
        client = _client({"calendar.example.com": httpx.Response(200, text=VALID_ICS)}, calls)
        fetcher = FeedFetcher(simple_settings, relays=RELAYS, client=client)

        text, source = await fetcher.fetch_with_source(FEED_URL)

        assert text == VALID_ICS
        assert source == "direct"
        assert calls == ["calendar.example.com"]

    @pytest.mark.asyncio
    async def test_fetch_when_direct_fails_then_first_good_relay_wins(self, simple_settings: SimpleNamespace) -> None:
        """Direct network failure falls through to the relays in order."""
        calls: list[str] = []
        client = _client(
            {
                "calendar.example.com": httpx.ConnectError("connection refused"),
                "relay-a.test": httpx.Response(200, text=VALID_ICS),
                "relay-b.test": httpx.Response(200, text=VALID_ICS),
            },
            calls,
        )
        fetcher = FeedFetcher(simple_settings, relays=RELAYS, client=client)

        text, source = await fetcher.fetch_with_source(FEED_URL)

        assert text == VALID_ICS
        assert source == "relay-a"
        assert calls == ["calendar.example.com", "relay-a.test"]

    @pytest.mark.asyncio
    async def test_fetch_when_relay_returns_offline_then_next_relay_used(self, simple_settings: SimpleNamespace) -> None:
        """A relay answering 200 'Offline' is treated as a failure."""
        client = _client(
            {
                "calendar.example.com": httpx.Response(503, text="down"),
                "relay-a.test": httpx.Response(200, text="Offline"),
                "relay-b.test": httpx.Response(200, text=VALID_ICS),
            }
        )
        fetcher = FeedFetcher(simple_settings, relays=RELAYS, client=client)

        assert await fetcher.fetch(FEED_URL) == VALID_ICS
        assert fetcher.relay_health.failure_count("relay-a") == 1

    @pytest.mark.asyncio
    async def test_fetch_when_all_attempts_fail_then_raises_with_attempt_log(
        self, simple_settings: SimpleNamespace
    ) -> None:
        """FetchExhaustedError lists every attempted path and its reason."""
        client = _client(
            {
                "calendar.example.com": httpx.ReadTimeout("slow"),
                "relay-a.test": httpx.Response(500, text="boom"),
                "relay-b.test": httpx.Response(200, text="Service unavailable"),
            }
        )
        fetcher = FeedFetcher(simple_settings, relays=RELAYS, client=client)

        with pytest.raises(FetchExhaustedError) as exc_info:
            await fetcher.fetch(FEED_URL)

        assert exc_info.value.url == FEED_URL
        assert exc_info.value.attempts == [
            ("direct", "timeout"),
            ("relay-a", "HTTP 500"),
            ("relay-b", "implausible content"),
        ]

    @pytest.mark.asyncio
    async def test_fetch_when_url_not_http_then_raises_without_request(self, simple_settings: SimpleNamespace) -> None:
        """Unsupported URLs fail immediately."""
        calls: list[str] = []
        fetcher = FeedFetcher(simple_settings, relays=RELAYS, client=_client({}, calls))

        with pytest.raises(FetchExhaustedError):
            await fetcher.fetch("file:///etc/passwd")
        assert calls == []

    @pytest.mark.asyncio
    async def test_fetch_when_relays_disabled_then_only_direct_attempted(self) -> None:
        """relays_enabled=False leaves the direct request as the only path."""
        calls: list[str] = []
        settings = SimpleNamespace(request_timeout=1.0, relays_enabled=False)
        client = _client({"calendar.example.com": httpx.Response(500)}, calls)
        fetcher = FeedFetcher(settings, relays=RELAYS, client=client)

        with pytest.raises(FetchExhaustedError):
            await fetcher.fetch(FEED_URL)
        assert calls == ["calendar.example.com"]

    @pytest.mark.asyncio
    async def test_fetch_when_relay_cooling_down_then_skipped(self, simple_settings: SimpleNamespace) -> None:
        """A relay past its failure threshold is skipped until the cooldown ends."""
        calls: list[str] = []
        health = RelayHealthTracker(failure_threshold=1, cooldown_seconds=60, clock=lambda: 100.0)
        health.record_failure("relay-a")
        client = _client(
            {
                "calendar.example.com": httpx.Response(500),
                "relay-a.test": httpx.Response(200, text=VALID_ICS),
                "relay-b.test": httpx.Response(200, text=VALID_ICS),
            },
            calls,
        )
        fetcher = FeedFetcher(simple_settings, relays=RELAYS, client=client, relay_health=health)

        _, source = await fetcher.fetch_with_source(FEED_URL)

        assert source == "relay-b"
        assert "relay-a.test" not in calls

    def test_default_relays_when_built_then_embed_feed_url(self) -> None:
        """Every default relay URL carries the original feed URL."""
        assert [relay.name for relay in DEFAULT_RELAYS] == [
            "codetabs",
            "cors-anywhere",
            "thingproxy",
            "cors-bridged",
        ]
        assert DEFAULT_RELAYS[0].build_url(FEED_URL).endswith(
            "quest=https%3A%2F%2Fcalendar.example.com%2Ffamily.ics"
        )
        for relay in DEFAULT_RELAYS[1:]:
            assert relay.build_url(FEED_URL).endswith(FEED_URL)


class TestRelayHealthTracker:
    """Tests for consecutive-failure bookkeeping."""

    def test_is_available_when_below_threshold_then_true(self) -> None:
        """Relays stay available until the threshold is reached."""
        tracker = RelayHealthTracker(failure_threshold=3, cooldown_seconds=10, clock=lambda: 0.0)
        tracker.record_failure("r")
        tracker.record_failure("r")
        assert tracker.is_available("r") is True

    def test_is_available_when_threshold_reached_then_false_until_cooldown(self) -> None:
        """After the cooldown the relay gets another chance."""
        now = [0.0]
        tracker = RelayHealthTracker(failure_threshold=2, cooldown_seconds=10, clock=lambda: now[0])
        tracker.record_failure("r")
        tracker.record_failure("r")
        assert tracker.is_available("r") is False

        now[0] = 10.5
        assert tracker.is_available("r") is True

    def test_record_success_when_failures_recorded_then_resets(self) -> None:
        """One success clears the failure count."""
        tracker = RelayHealthTracker(failure_threshold=1, cooldown_seconds=10, clock=lambda: 0.0)
        tracker.record_failure("r")
        tracker.record_success("r")
        assert tracker.failure_count("r") == 0
        assert tracker.is_available("r") is True
