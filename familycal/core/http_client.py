"""Shared HTTP client manager for feed fetching.

One pooled ``httpx.AsyncClient`` per client id is reused across syncs so the
direct attempt and every relay attempt share connections. Clients are created
lazily and must be closed on shutdown with :func:`close_all_clients`.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_lock = asyncio.Lock()

DEFAULT_LIMITS = httpx.Limits(
    max_connections=8,
    max_keepalive_connections=4,
)

# Per-request timeouts are passed by the fetcher; this is only the fallback
DEFAULT_TIMEOUT = httpx.Timeout(
    connect=10.0,
    read=20.0,
    write=10.0,
    pool=20.0,
)

# Calendar hosts (and some relays) reject obviously automated clients
DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "Mozilla/5.0 (compatible; FamilyCal/0.1; +https://example.invalid/familycal)",
    "Accept": "text/calendar, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


def build_client(
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create a configured client (not registered as shared).

    Args:
        limits: Connection limits (defaults to DEFAULT_LIMITS)
        timeout: Timeout configuration (defaults to DEFAULT_TIMEOUT)
        transport: Optional transport, e.g. ``httpx.MockTransport`` in tests

    Returns:
        New httpx.AsyncClient; the caller owns and must close it
    """
    kwargs: dict = {
        "timeout": timeout or DEFAULT_TIMEOUT,
        "follow_redirects": True,
        "headers": DEFAULT_HEADERS,
    }
    if transport is not None:
        kwargs["transport"] = transport
    else:
        kwargs["limits"] = limits or DEFAULT_LIMITS
    return httpx.AsyncClient(**kwargs)


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (allows multiple clients if needed)
        limits: Custom connection limits
        timeout: Custom timeout configuration

    Returns:
        Shared httpx.AsyncClient

    Raises:
        RuntimeError: If client creation fails
    """
    async with _client_lock:
        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            try:
                client = build_client(limits=limits, timeout=timeout)
            except Exception as e:
                logger.exception("Failed to create shared HTTP client '%s'", client_id)
                raise RuntimeError(f"Failed to create shared HTTP client: {e}") from e
            _shared_clients[client_id] = client
            logger.debug("Created shared HTTP client '%s'", client_id)

        return client


async def close_all_clients() -> None:
    """Close all shared HTTP clients and clean up resources."""
    async with _client_lock:
        for client_id, client in _shared_clients.items():
            try:
                if not client.is_closed:
                    await client.aclose()
                    logger.debug("Closed shared HTTP client '%s'", client_id)
            except Exception as e:
                logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)

        _shared_clients.clear()
        logger.debug("All shared HTTP clients closed")
