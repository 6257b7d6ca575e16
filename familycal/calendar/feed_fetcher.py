"""Resilient retrieval of remote calendar feeds.

A feed is requested directly first. When that fails, or when the payload does
not look like a calendar document, the request is retried through an ordered
list of relay services. The first attempt whose response passes the
plausibility check wins; all intermediate failures are logged, never raised.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote, urlparse

import httpx

from familycal.core.http_client import get_shared_client

from .exceptions import FetchExhaustedError

logger = logging.getLogger(__name__)

DIRECT_ATTEMPT_NAME = "direct"

# Short relay bodies containing one of these are outage notices, not feeds
ERROR_INDICATORS: tuple[str, ...] = (
    "offline",
    "error",
    "not found",
    "404",
    "500",
    "503",
    "access denied",
    "forbidden",
    "unauthorized",
    "timeout",
    "maintenance",
    "unavailable",
)
SHORT_RESPONSE_THRESHOLD = 50
CALENDAR_MARKER = "begin:vcalendar"

DEFAULT_REQUEST_TIMEOUT = 15.0
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 300.0


@dataclass(frozen=True)
class RelayStrategy:
    """A relay service: a name for logs and a function mapping feed URL to relay URL."""

    name: str
    build_url: Callable[[str], str]


DEFAULT_RELAYS: tuple[RelayStrategy, ...] = (
    RelayStrategy("codetabs", lambda url: f"https://api.codetabs.com/v1/proxy?quest={quote(url, safe='')}"),
    RelayStrategy("cors-anywhere", lambda url: f"https://cors-anywhere.herokuapp.com/{url}"),
    RelayStrategy("thingproxy", lambda url: f"https://thingproxy.freeboard.io/fetch/{url}"),
    RelayStrategy("cors-bridged", lambda url: f"https://cors.bridged.cc/{url}"),
)


def is_plausible_calendar_text(text: Optional[str]) -> bool:
    """Return True when ``text`` looks like a calendar document.

    Short bodies mentioning an error indicator are rejected outright; anything
    else must contain the VCALENDAR opening marker.
    """
    if not text or not isinstance(text, str):
        return False

    lowered = text.strip().lower()

    if len(text) < SHORT_RESPONSE_THRESHOLD and any(
        indicator in lowered for indicator in ERROR_INDICATORS
    ):
        logger.debug("Payload looks like an error message: %r", text[:100])
        return False

    if CALENDAR_MARKER not in lowered:
        logger.debug("Payload does not contain BEGIN:VCALENDAR")
        return False

    return True


def is_fetchable_url(url: str) -> bool:
    """Only absolute http(s) URLs with a hostname are fetched."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


class RelayHealthTracker:
    """Consecutive-failure bookkeeping per relay.

    A relay that fails ``failure_threshold`` times in a row is skipped until
    ``cooldown_seconds`` have passed since its last failure. One success
    resets its count.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._health: dict[str, dict[str, float]] = {}

    def record_failure(self, name: str) -> None:
        health = self._health.setdefault(name, {"error_count": 0, "last_error_time": 0.0})
        health["error_count"] += 1
        health["last_error_time"] = self._clock()
        logger.debug("Relay %s failure count: %d", name, health["error_count"])

    def record_success(self, name: str) -> None:
        if name in self._health:
            self._health[name]["error_count"] = 0

    def is_available(self, name: str) -> bool:
        health = self._health.get(name)
        if health is None or health["error_count"] < self.failure_threshold:
            return True
        if self._clock() - health["last_error_time"] >= self.cooldown_seconds:
            # Cooldown elapsed: give the relay one more chance
            health["error_count"] = self.failure_threshold - 1
            return True
        return False

    def failure_count(self, name: str) -> int:
        return int(self._health.get(name, {}).get("error_count", 0))


class FeedFetcher:
    """Fetch calendar text over a direct request and a relay fallback chain."""

    def __init__(
        self,
        settings: Any = None,
        relays: Optional[tuple[RelayStrategy, ...] | list[RelayStrategy]] = None,
        client: Optional[httpx.AsyncClient] = None,
        relay_health: Optional[RelayHealthTracker] = None,
    ) -> None:
        """Initialize fetcher.

        Args:
            settings: Settings object; reads ``request_timeout``, ``relays_enabled``,
                ``relay_failure_threshold`` and ``relay_cooldown_seconds``
            relays: Ordered relay strategies (defaults to DEFAULT_RELAYS)
            client: Optional HTTP client; the shared pooled client is used otherwise
            relay_health: Optional tracker, mainly for tests
        """
        self.settings = settings
        self.request_timeout = float(getattr(settings, "request_timeout", DEFAULT_REQUEST_TIMEOUT))
        relays_enabled = bool(getattr(settings, "relays_enabled", True))
        self.relays: tuple[RelayStrategy, ...] = (
            tuple(relays if relays is not None else DEFAULT_RELAYS) if relays_enabled else ()
        )
        self.relay_health = relay_health or RelayHealthTracker(
            failure_threshold=int(
                getattr(settings, "relay_failure_threshold", DEFAULT_FAILURE_THRESHOLD)
            ),
            cooldown_seconds=float(
                getattr(settings, "relay_cooldown_seconds", DEFAULT_COOLDOWN_SECONDS)
            ),
        )
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client("feed_fetcher")

    async def fetch(self, url: str) -> str:
        """Return the text of the feed at ``url``.

        Raises:
            FetchExhaustedError: Every attempt failed or returned implausible content
        """
        text, _ = await self.fetch_with_source(url)
        return text

    async def fetch_with_source(self, url: str) -> tuple[str, str]:
        """Return ``(text, name of the path that served it)``.

        Raises:
            FetchExhaustedError: Every attempt failed or returned implausible content
        """
        attempts: list[tuple[str, str]] = []

        if not is_fetchable_url(url):
            logger.warning("Refusing to fetch non-http(s) URL: %r", url)
            attempts.append((DIRECT_ATTEMPT_NAME, "unsupported URL"))
            raise FetchExhaustedError(url, attempts)

        client = await self._get_client()

        logger.debug("Fetching feed directly from %s", url)
        text, reason = await self._attempt(client, url, DIRECT_ATTEMPT_NAME)
        if text is not None:
            return text, DIRECT_ATTEMPT_NAME
        attempts.append((DIRECT_ATTEMPT_NAME, reason))

        for index, relay in enumerate(self.relays, start=1):
            if not self.relay_health.is_available(relay.name):
                logger.debug("Skipping relay %s (cooling down after repeated failures)", relay.name)
                attempts.append((relay.name, "skipped: cooling down"))
                continue

            relay_url = relay.build_url(url)
            logger.debug("Trying relay %d/%d (%s): %s", index, len(self.relays), relay.name, relay_url)
            text, reason = await self._attempt(client, relay_url, relay.name)
            if text is not None:
                self.relay_health.record_success(relay.name)
                logger.info("Fetched %s via relay %s", url, relay.name)
                return text, relay.name

            self.relay_health.record_failure(relay.name)
            attempts.append((relay.name, reason))

        logger.error("All fetch methods failed for %s: %s", url, attempts)
        raise FetchExhaustedError(url, attempts)

    async def _attempt(
        self, client: httpx.AsyncClient, request_url: str, name: str
    ) -> tuple[Optional[str], str]:
        """Issue one GET with its own timeout.

        Returns:
            ``(text, "")`` when the response is usable, ``(None, reason)`` otherwise
        """
        try:
            response = await client.get(request_url, timeout=self.request_timeout)
        except httpx.TimeoutException as e:
            logger.info("%s attempt timed out after %.1fs: %s", name, self.request_timeout, e)
            return None, "timeout"
        except httpx.HTTPError as e:
            logger.info("%s attempt failed: %s", name, e)
            return None, f"network error: {e.__class__.__name__}"

        if not response.is_success:
            logger.info("%s attempt returned HTTP %d", name, response.status_code)
            return None, f"HTTP {response.status_code}"

        text = response.text
        if not is_plausible_calendar_text(text):
            logger.info("%s attempt returned implausible content (%d chars)", name, len(text))
            return None, "implausible content"

        logger.debug("%s attempt succeeded (%d chars)", name, len(text))
        return text, ""
