"""JSON API routes for familycal."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from typing import Any, Optional

from aiohttp import web

from familycal import __version__
from familycal.calendar.exceptions import (
    CalendarNotFoundError,
    FetchExhaustedError,
    ParseError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _parse_date(value: Optional[str], name: str) -> Optional[datetime.date]:
    if not value:
        return None
    try:
        return datetime.date.fromisoformat(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {name} date {value!r} (expected YYYY-MM-DD)") from e


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as e:
        raise ValidationError("invalid json") from e
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _error_response(error: Exception) -> web.Response:
    if isinstance(error, CalendarNotFoundError):
        return web.json_response({"error": str(error)}, status=404)
    if isinstance(error, ValidationError):
        return web.json_response({"error": str(error)}, status=400)
    if isinstance(error, (FetchExhaustedError, ParseError)):
        return web.json_response({"error": str(error)}, status=502)
    logger.exception("Unhandled API error")
    return web.json_response({"error": "internal error"}, status=500)


def register_api_routes(
    app: web.Application,
    service: Any,
    time_provider: Callable[[], datetime.datetime],
) -> None:
    """Register the calendar API routes.

    Args:
        app: aiohttp web application
        service: CalendarService instance
        time_provider: Time provider callable (UTC aware datetimes)
    """

    async def health_check(_request: web.Request) -> web.Response:
        """Liveness endpoint with a short summary of the calendars."""
        feeds = await service.list_feeds()
        return web.json_response(
            {
                "status": "ok",
                "version": __version__,
                "server_time_iso": time_provider().isoformat(),
                "calendar_count": len(feeds),
                "auto_sync_pending": len(service.scheduler.pending()) if service.scheduler else 0,
            }
        )

    async def list_calendars(_request: web.Request) -> web.Response:
        feeds = await service.list_feeds()
        return web.json_response({"calendars": [feed.model_dump(mode="json") for feed in feeds]})

    async def add_calendar(request: web.Request) -> web.Response:
        try:
            data = await _read_json(request)
            feed = await service.add(data)
        except Exception as e:
            return _error_response(e)
        return web.json_response({"calendar": feed.model_dump(mode="json")}, status=201)

    async def update_calendar(request: web.Request) -> web.Response:
        calendar_id = request.match_info["calendar_id"]
        try:
            data = await _read_json(request)
            feed = await service.update(calendar_id, data)
        except Exception as e:
            return _error_response(e)
        return web.json_response({"calendar": feed.model_dump(mode="json")})

    async def delete_calendar(request: web.Request) -> web.Response:
        calendar_id = request.match_info["calendar_id"]
        try:
            await service.remove(calendar_id)
        except Exception as e:
            return _error_response(e)
        return web.json_response({"removed": calendar_id})

    async def sync_calendar(request: web.Request) -> web.Response:
        calendar_id = request.match_info["calendar_id"]
        try:
            count = await service.sync_one(calendar_id)
        except Exception as e:
            return _error_response(e)
        return web.json_response({"calendar_id": calendar_id, "event_count": count, "success": True})

    async def sync_all(_request: web.Request) -> web.Response:
        summary = await service.sync_all()
        return web.json_response(summary.to_dict())

    async def list_events(request: web.Request) -> web.Response:
        try:
            start = _parse_date(request.query.get("start"), "start")
            end = _parse_date(request.query.get("end"), "end")
            occurrences = await service.list_occurrences(
                calendar_id=request.query.get("calendar_id") or None,
                start=start,
                end=end,
            )
        except Exception as e:
            return _error_response(e)
        return web.json_response({"events": [o.model_dump(mode="json") for o in occurrences]})

    async def sync_status(_request: web.Request) -> web.Response:
        return web.json_response({"calendars": await service.sync_statuses()})

    async def validate_feed(request: web.Request) -> web.Response:
        try:
            data = await _read_json(request)
        except Exception as e:
            return _error_response(e)
        result = await service.validate_feed(str(data.get("url") or ""))
        body = result.model_dump(mode="json")
        body["is_valid"] = result.is_valid
        return web.json_response(body)

    app.router.add_get("/api/health", health_check)
    app.router.add_get("/api/calendars", list_calendars)
    app.router.add_post("/api/calendars", add_calendar)
    app.router.add_patch("/api/calendars/{calendar_id}", update_calendar)
    app.router.add_delete("/api/calendars/{calendar_id}", delete_calendar)
    app.router.add_post("/api/calendars/{calendar_id}/sync", sync_calendar)
    app.router.add_post("/api/sync", sync_all)
    app.router.add_get("/api/events", list_events)
    app.router.add_get("/api/sync-status", sync_status)
    app.router.add_post("/api/validate", validate_feed)
