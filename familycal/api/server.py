"""aiohttp server for the familycal API."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any, Optional

from aiohttp import web

from familycal.core.config_manager import get_config_value
from familycal.core.http_client import close_all_clients
from familycal.core.timezone_utils import now_utc
from familycal.domain.calendar_service import CalendarService

from .routes import register_api_routes

logger = logging.getLogger(__name__)

SERVICE_KEY: web.AppKey[CalendarService] = web.AppKey("familycal_service", CalendarService)


def create_app(service: CalendarService, auto_sync: bool = False) -> web.Application:
    """Create the web application around ``service``.

    Args:
        service: Calendar service the routes delegate to
        auto_sync: Start background syncs when the app starts and stop them on cleanup
    """
    app = web.Application()
    app[SERVICE_KEY] = service

    register_api_routes(app, service, time_provider=now_utc)

    if auto_sync:

        async def _start_auto_sync(_app: web.Application) -> None:
            await service.start_auto_sync()

        async def _stop_auto_sync(_app: web.Application) -> None:
            service.stop_auto_sync()

        app.on_startup.append(_start_auto_sync)
        app.on_cleanup.append(_stop_auto_sync)

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")

    app.on_shutdown.append(_shutdown)
    return app


async def _serve(settings: Any, external_stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the server until signalled to stop.

    Args:
        settings: FamilyCalSettings or equivalent object
        external_stop_event: When given the caller owns shutdown and no signal
            handlers are installed
    """
    stop_event = external_stop_event or asyncio.Event()

    service = CalendarService.create(settings)
    app = create_app(service, auto_sync=True)

    runner = web.AppRunner(app)
    await runner.setup()

    host = get_config_value(settings, "server_bind", "127.0.0.1")
    port = int(get_config_value(settings, "server_port", 8080))
    site = web.TCPSite(runner, host=host, port=port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", host, port)
        await runner.cleanup()
        raise

    logger.info("Server started on %s:%d", host, port)

    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    await runner.cleanup()

    try:
        await close_all_clients()
        logger.debug("Shared HTTP clients cleaned up")
    except Exception as e:
        logger.warning("Error cleaning up shared HTTP clients: %s", e)

    logger.info("Server shutdown complete")


def start_server(settings: Any) -> None:
    """Run the API server in a new event loop; blocks until SIGINT/SIGTERM."""
    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
