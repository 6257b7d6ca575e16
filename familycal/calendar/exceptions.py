"""Exception hierarchy for feed ingestion and calendar management.

Fetch and parse errors are calendar-level failures: they abort one
calendar's sync and leave its stored occurrences untouched. Validation and
not-found errors are raised before any sync work starts.
"""

from __future__ import annotations

from typing import Optional


class FamilyCalError(Exception):
    """Base exception for all familycal errors."""


class FetchExhaustedError(FamilyCalError):
    """Every direct and relay attempt failed or returned implausible content.

    Attributes:
        url: The feed URL that could not be retrieved
        attempts: ``(path name, failure reason)`` for each attempt made, in order
    """

    def __init__(self, url: str, attempts: Optional[list[tuple[str, str]]] = None):
        self.url = url
        self.attempts = list(attempts or [])
        tried = ", ".join(name for name, _ in self.attempts) or "none"
        super().__init__(
            f"All fetch methods failed for {url} (tried: {tried}). "
            "Please check that the calendar URL is publicly accessible."
        )


class ParseError(FamilyCalError):
    """The fetched text is not a structurally valid calendar document.

    The underlying grammar error is available as ``cause`` and ``__cause__``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ValidationError(FamilyCalError):
    """User input was rejected (missing name or URL, malformed URL, duplicate)."""


class CalendarNotFoundError(FamilyCalError, KeyError):
    """No calendar feed exists with the requested id."""

    def __init__(self, calendar_id: str):
        self.calendar_id = calendar_id
        super().__init__(f"Calendar not found: {calendar_id}")

    def __str__(self) -> str:
        return f"Calendar not found: {self.calendar_id}"
