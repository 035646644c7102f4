"""Command-line entry point ``itinerary-sync``.

Subcommands:

- ``serve``          -- webhook server plus the periodic workspace poll.
- ``poll``           -- one workspace reconciliation pass.
- ``sync-calendar``  -- one calendar reconciliation pass for a trip.
- ``edit``           -- direct canonical edit (propagates to the mirrors).
- ``create-trip``    -- bootstrap a trip document with its bindings.
- ``show``           -- print a trip document.
- ``init-config``    -- write a commented starter config file.
"""

import argparse
import asyncio
import json
import logging
import sys

from . import __version__
from .canonical.models import Trip
from .canonical.store import ItemNotFoundError, TripNotFoundError
from .config_loader import ensure_config
from .core.async_utils import init_semaphore
from .logger import setup_logging
from .runtime import SyncRuntime, load_runtime_config
from .sync.reporter import format_poll_summary, format_sync_report, report_to_json

logger = logging.getLogger(__name__)

EDIT_FIELDS = ("title", "date", "time", "location", "category")


def _print_reports(reports, as_json: bool) -> None:
    if as_json:
        print(json.dumps([report_to_json(r) for r in reports], indent=2))
        return
    for report in reports:
        print(format_sync_report(report))
        print()


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


def cmd_serve(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    import uvicorn

    from .webhook.app import create_app

    app = create_app(runtime, poll=not args.no_poll)
    uvicorn.run(
        app,
        host=args.host or runtime.config.host,
        port=args.port or runtime.config.port,
        log_config=None,
    )
    return 0


def cmd_poll(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    if runtime.runner.workspace is None:
        print("Workspace sync is disabled: set NOTION_TOKEN.", file=sys.stderr)
        return 1

    async def _poll():
        init_semaphore(runtime.config.max_parallel_trips)
        return await runtime.runner.run_workspace_poll(
            [args.trip] if args.trip else None
        )

    reports = asyncio.run(_poll())
    if args.json:
        _print_reports(reports, as_json=True)
    elif args.trip:
        _print_reports(reports, as_json=False)
    else:
        print(format_poll_summary(reports))
    return 0 if all(r.ok for r in reports) else 1


def cmd_sync_calendar(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    if runtime.runner.calendar is None:
        print(
            "Calendar sync is disabled: set the GOOGLE_* credentials.",
            file=sys.stderr,
        )
        return 1
    report = runtime.runner.sync_calendar(args.trip)
    _print_reports([report], as_json=args.json)
    return 0 if report.ok else 1


def cmd_edit(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    if args.archive:
        if not args.item:
            print("--archive needs --item", file=sys.stderr)
            return 2
        write = runtime.store.archive_item(args.trip, args.item)
    else:
        fields = {
            name: getattr(args, name)
            for name in EDIT_FIELDS
            if getattr(args, name) is not None
        }
        if not fields:
            print("Nothing to change: pass at least one field.", file=sys.stderr)
            return 2
        write = runtime.store.save_item(args.trip, fields, key=args.item)

    if not write.changed_fields and not write.created:
        print(f"Item {write.item.key}: no changes")
    else:
        verb = "created" if write.created else "updated"
        print(
            f"Item {write.item.key} {verb}: {', '.join(write.changed_fields)}"
        )
    return 0


def cmd_create_trip(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    trip = Trip(
        id=args.trip,
        title=args.title or "",
        timezone=args.timezone,
        external_workspace_page_id=args.workspace_page,
        external_workspace_database_id=args.workspace_database,
        external_calendar_id=args.calendar,
        external_calendar_channel_id=args.channel,
    )
    runtime.store.create_trip(trip)
    print(f"Trip {trip.id} created")
    return 0


def cmd_show(runtime: SyncRuntime, args: argparse.Namespace) -> int:
    trip = runtime.store.get_trip(args.trip)
    print(json.dumps(trip.to_document(), indent=2, ensure_ascii=False))
    return 0


# ------------------------------------------------------------------
# Parser
# ------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="itinerary-sync",
        description="Keep trip itineraries in sync across the canonical store, "
        "a Notion database and a Google Calendar",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve calendar webhooks and poll Notion every 10 minutes
  itinerary-sync serve --port 8080

  # One Notion pass for a single trip, as JSON
  itinerary-sync poll --trip tokyo-2026 --json

  # Move an entry (propagates to Notion and Google Calendar)
  itinerary-sync edit --trip tokyo-2026 --item d1-lunch --time 12:30
        """,
    )
    parser.add_argument(
        "--store-dir",
        help="Canonical store directory (overrides ITINERARY_STORE_DIR)",
    )
    parser.add_argument(
        "--notion-token",
        help="Notion integration token (prefer the NOTION_TOKEN env var)",
    )
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--version",
        action="version",
        version=f"itinerary-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the webhook server and poll loop")
    serve.add_argument("--host", help="Bind address (default from config)")
    serve.add_argument("--port", type=int, help="Port (default from config)")
    serve.add_argument(
        "--no-poll",
        action="store_true",
        help="Serve webhooks only, without the periodic workspace poll",
    )
    serve.set_defaults(func=cmd_serve)

    poll = sub.add_parser("poll", help="Reconcile Notion edits once")
    poll.add_argument("--trip", help="Only this trip")
    poll.add_argument("--json", action="store_true", help="JSON output")
    poll.set_defaults(func=cmd_poll)

    cal = sub.add_parser("sync-calendar", help="Reconcile calendar changes once")
    cal.add_argument("--trip", required=True)
    cal.add_argument("--json", action="store_true", help="JSON output")
    cal.set_defaults(func=cmd_sync_calendar)

    edit = sub.add_parser("edit", help="Edit an itinerary item directly")
    edit.add_argument("--trip", required=True)
    edit.add_argument("--item", help="Item key (omit to create a new item)")
    for name in EDIT_FIELDS:
        edit.add_argument(f"--{name}")
    edit.add_argument(
        "--archive", action="store_true", help="Archive (cancel) the item"
    )
    edit.set_defaults(func=cmd_edit)

    create = sub.add_parser("create-trip", help="Bootstrap a trip document")
    create.add_argument("--trip", required=True, help="Trip id")
    create.add_argument("--title")
    create.add_argument("--timezone", help="Event timezone for this trip")
    create.add_argument("--workspace-page", help="Notion trip page id")
    create.add_argument("--workspace-database", help="Notion itinerary database id")
    create.add_argument("--calendar", help="Google Calendar id")
    create.add_argument("--channel", help="Calendar watch channel id")
    create.set_defaults(func=cmd_create_trip)

    show = sub.add_parser("show", help="Print a trip document")
    show.add_argument("--trip", required=True)
    show.set_defaults(func=cmd_show)

    init = sub.add_parser(
        "init-config", help="Create .itinerary_sync/config.yml if missing"
    )
    init.set_defaults(func=None)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)
    if args.command == "init-config":
        print(f"Config file: {ensure_config()}")
        return 0

    overrides = {"debug": args.debug}
    if args.store_dir:
        overrides["store_dir"] = args.store_dir
    if args.notion_token:
        overrides["notion_token"] = args.notion_token

    try:
        config, unified = load_runtime_config(overrides)
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 1

    log_settings = unified.logging
    setup_logging(
        mode="server" if args.command == "serve" else "cli",
        debug=config.debug,
        log_file=args.log_file or log_settings.file,
        debug_format=log_settings.format,
        level=log_settings.level,
    )

    runtime = SyncRuntime.from_config(config)
    try:
        return args.func(runtime, args)
    except (TripNotFoundError, ItemNotFoundError) as e:
        print(f"ERROR: {e.args[0]}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
