"""Command-line entry for familycal.

Examples:
  python -m familycal add "School" https://example.com/school.ics
  python -m familycal sync
  python -m familycal events --start 2024-06-01 --end 2024-06-30
  python -m familycal serve --port 3000
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import sys
from collections.abc import Awaitable, Callable
from typing import Any, NoReturn

from . import _init_logging, run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the familycal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="familycal",
        description="familycal - family calendar aggregator for iCalendar feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-level", metavar="LEVEL", help="Override FAMILYCAL_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Subscribe to a calendar feed")
    add.add_argument("name", help="Display name of the calendar")
    add.add_argument("url", help="http(s) URL of the .ics feed")
    add.add_argument("--color", help="Display color, e.g. #3b82f6")
    add.add_argument(
        "--syncs-per-day", type=int, default=0, metavar="N", help="Automatic syncs per day (0 = manual)"
    )

    sub.add_parser("list", help="List subscribed calendars")

    remove = sub.add_parser("remove", help="Remove a calendar and its events")
    remove.add_argument("calendar_id")

    sync = sub.add_parser("sync", help="Sync one calendar, or all enabled calendars")
    sync.add_argument("calendar_id", nargs="?")

    events = sub.add_parser("events", help="Print stored events")
    events.add_argument("--calendar", dest="calendar_id")
    events.add_argument("--start", type=datetime.date.fromisoformat, metavar="YYYY-MM-DD")
    events.add_argument("--end", type=datetime.date.fromisoformat, metavar="YYYY-MM-DD")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--port", type=int, metavar="PORT", help="Port (default 8080 or FAMILYCAL_SERVER_PORT)")
    serve.add_argument("--host", metavar="HOST", help="Bind address (default 127.0.0.1)")

    return parser


async def _cmd_add(service: Any, args: argparse.Namespace) -> int:
    data: dict[str, Any] = {"name": args.name, "url": args.url, "sync_frequency_per_day": args.syncs_per_day}
    if args.color:
        data["color"] = args.color
    feed = await service.add(data)
    print(f"Added {feed.name} ({feed.id})")
    return 0


async def _cmd_list(service: Any, _args: argparse.Namespace) -> int:
    for row in await service.sync_statuses():
        print(
            f"{row['calendar_id']}  {row['name']}  [{row['status_label']}]  "
            f"{row['event_count']} events, last synced: {row['last_sync_label']}"
        )
    return 0


async def _cmd_remove(service: Any, args: argparse.Namespace) -> int:
    await service.remove(args.calendar_id)
    print(f"Removed {args.calendar_id}")
    return 0


async def _cmd_sync(service: Any, args: argparse.Namespace) -> int:
    if args.calendar_id:
        count = await service.sync_one(args.calendar_id)
        print(f"Synced {args.calendar_id}: {count} events")
        return 0

    summary = await service.sync_all()
    print(summary.message)
    for calendar_id, error in summary.failed.items():
        print(f"  {calendar_id}: {error}", file=sys.stderr)
    return 1 if summary.failed else 0


async def _cmd_events(service: Any, args: argparse.Namespace) -> int:
    occurrences = await service.list_occurrences(
        calendar_id=args.calendar_id, start=args.start, end=args.end
    )
    for occurrence in occurrences:
        line = f"{occurrence.date.isoformat()}  {occurrence.time:<28}  {occurrence.title}"
        if occurrence.location:
            line += f" @ {occurrence.location}"
        print(f"{line}  ({occurrence.calendar_name})")
    return 0


_COMMANDS: dict[str, Callable[[Any, argparse.Namespace], Awaitable[int]]] = {
    "add": _cmd_add,
    "list": _cmd_list,
    "remove": _cmd_remove,
    "sync": _cmd_sync,
    "events": _cmd_events,
}


async def _run_command(args: argparse.Namespace, settings: Any) -> int:
    from familycal.calendar.exceptions import FamilyCalError
    from familycal.core.http_client import close_all_clients
    from familycal.domain.calendar_service import CalendarService

    service = CalendarService.create(settings, with_scheduler=False)
    try:
        return await _COMMANDS[args.command](service, args)
    except FamilyCalError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await close_all_clients()


def main(argv: list[str] | None = None) -> NoReturn:
    """Run the familycal CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        run_server(args)
        sys.exit(0)

    from familycal.core.config_manager import ConfigManager

    settings = ConfigManager().load_settings()
    _init_logging(args.log_level or settings.log_level)
    sys.exit(asyncio.run(_run_command(args, settings)))


if __name__ == "__main__":
    main()
