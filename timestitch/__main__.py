"""CLI entry point for TimeStitch."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .app import TimeStitchApp
from .config import load_config
from .errors import EntityNotFoundError, TimeStitchError
from .export import create_backup, export_photo_book, export_to_csv
from .journal.views import ViewFilter, filter_memories


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _write_output(content: str, output: Path | None) -> None:
    if output is None:
        print(content)
    else:
        output.write_text(content, encoding="utf-8")
        print(f"Wrote {output}")


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the sync engine until interrupted."""
    config = load_config(args.config)

    print("Starting TimeStitch sync")
    print(f"Remote: {config.remote.url}")
    print(f"Database: {config.storage.db_path}")
    print(f"Sync interval: {config.sync.interval_seconds}s", end="")
    if not config.sync.enabled:
        print(" (disabled)")
    else:
        print()

    app = TimeStitchApp(config)
    try:
        await app.run_forever()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    except TimeStitchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await app.stop()

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show pending changes, last sync time and remote reachability."""
    config = load_config(args.config)
    app = TimeStitchApp(config)

    try:
        app.open()
        reachable = await app.remote.health_check()
        app.monitor.set_online(reachable)
        status_data = {
            "timestamp": datetime.now().isoformat(),
            "remote": {"url": config.remote.url, "reachable": reachable},
            "sync": app.engine.get_sync_status(),
            "entities": {
                "projects": len(app.journal.projects),
                "memories": len(app.journal.memories),
            },
        }
    finally:
        await app.stop()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    sync = status_data["sync"]
    print("TimeStitch Status")
    print("=================")
    print(f"Remote ({config.remote.url}): {'Reachable' if reachable else 'Not reachable'}")
    print(f"Pending changes: {sync['pending_count']}")
    print(f"Last sync: {sync['last_sync_at'] or 'never'}")
    if sync["last_error"]:
        print(f"Last error: {sync['last_error']}")
    print(f"Cached projects: {status_data['entities']['projects']}")
    print(f"Cached memories: {status_data['entities']['memories']}")
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Drain the pending change log once."""
    config = load_config(args.config)
    app = TimeStitchApp(config)

    try:
        app.open()
        if not await app.monitor.check(app.remote.health_check):
            print(f"Remote not reachable, {len(app.change_log)} changes still pending")
            return 1

        result = await app.engine.sync_now()
    finally:
        await app.stop()

    print(f"Applied: {result.applied}")
    print(f"Remaining: {result.remaining}")
    if result.error:
        print(f"Stopped at {result.failed_change_id}: {result.error}", file=sys.stderr)
        return 1
    return 0


async def cmd_pending(args: argparse.Namespace) -> int:
    """List queued changes in replay order."""
    config = load_config(args.config)
    app = TimeStitchApp(config)

    try:
        app.open()
        changes = app.change_log.read_all()
    finally:
        await app.stop()

    if args.json:
        print(json.dumps([c.to_dict() for c in changes], indent=2))
        return 0

    if not changes:
        print("No pending changes")
        return 0

    print(f"{len(changes)} pending changes:")
    for change in changes:
        print(
            f"  {change.id}  {change.enqueued_at.isoformat()}  "
            f"{change.kind.value} {change.entity_type.value} {change.entity_id}"
        )
    return 0


async def cmd_discard(args: argparse.Namespace) -> int:
    """Drop one queued change."""
    config = load_config(args.config)
    app = TimeStitchApp(config)

    try:
        app.open()
        removed = app.engine.discard(args.change_id)
    finally:
        await app.stop()

    if not removed:
        print(f"No pending change with id {args.change_id}", file=sys.stderr)
        return 1
    print(f"Discarded {args.change_id}")
    return 0


async def cmd_export(args: argparse.Namespace) -> int:
    """Export cached memories as CSV or a photo-book JSON document."""
    config = load_config(args.config)
    app = TimeStitchApp(config)

    try:
        app.open()
        journal = app.journal
        memories = filter_memories(journal.memories, ViewFilter(project_id=args.project))

        if args.format == "csv":
            content = export_to_csv(memories)
        else:
            if not args.project:
                print("Photo-book export needs --project", file=sys.stderr)
                return 1
            project = journal.get_project(args.project)
            content = json.dumps(export_photo_book(project, memories), indent=2)
    except EntityNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await app.stop()

    _write_output(content, args.output)
    return 0


async def cmd_backup(args: argparse.Namespace) -> int:
    """Dump the offline cache as JSON."""
    config = load_config(args.config)
    app = TimeStitchApp(config)

    try:
        app.open()
        content = create_backup(app.cache)
    finally:
        await app.stop()

    _write_output(content, args.output)
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="timestitch",
        description="Offline-first photo journal sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run background sync until interrupted")
    run_parser.set_defaults(func=cmd_run)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Replay pending changes now")
    sync_parser.set_defaults(func=cmd_sync)

    # Pending command
    pending_parser = subparsers.add_parser("pending", help="List pending changes")
    pending_parser.add_argument(
        "--json",
        action="store_true",
        help="Output changes as JSON",
    )
    pending_parser.set_defaults(func=cmd_pending)

    # Discard command
    discard_parser = subparsers.add_parser("discard", help="Drop a pending change")
    discard_parser.add_argument("change_id", help="Id of the change to drop")
    discard_parser.set_defaults(func=cmd_discard)

    # Export command
    export_parser = subparsers.add_parser("export", help="Export cached memories")
    export_parser.add_argument(
        "--format",
        choices=["csv", "photobook"],
        default="csv",
        help="Export format (default: csv)",
    )
    export_parser.add_argument(
        "--project",
        default=None,
        help="Only export memories of this project",
    )
    export_parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output file (default: stdout)",
    )
    export_parser.set_defaults(func=cmd_export)

    # Backup command
    backup_parser = subparsers.add_parser("backup", help="Dump cached data as JSON")
    backup_parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output file (default: stdout)",
    )
    backup_parser.set_defaults(func=cmd_backup)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
