"""Command line entry point for SalesBook synchronisation."""

from __future__ import annotations

import argparse
import logging
import sys
import time

import db
from core.auto_sync import AutoSyncController
from core.errors import SyncError
from core.logging_config import configure_logging, get_log_path
from core.sync_service import SyncService
from core.version import __version__
from settings import load_sync_settings


def _build_service() -> SyncService:
    return SyncService.from_settings(log_callback=print)


def command_init_db(args: argparse.Namespace) -> int:
    added = db.initialize_database()
    print(f"Database ready: {db.DB_PATH}")
    for column in added:
        print(f"Added column {column}")
    return 0


def command_pull(args: argparse.Namespace) -> int:
    try:
        result = _build_service().pull()
    except SyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Pulled {result.products_applied} products and {result.invoices_applied} invoices.")
    return 0


def command_push(args: argparse.Namespace) -> int:
    try:
        result = _build_service().push()
    except SyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Pushed {result.products_pushed} products and {result.invoices_pushed} invoices.")
    return 0


def command_sync(args: argparse.Namespace) -> int:
    try:
        result = _build_service().full_sync()
    except SyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Pulled {result.pulled} records, pushed {result.pushed} records.")
    return 0


def command_status(args: argparse.Namespace) -> int:
    settings = load_sync_settings()
    service = SyncService.from_settings(settings)
    online = service.check_connectivity()
    print(f"Server        : {settings.api_base_url}")
    print(f"Connection    : {'online' if online else 'offline'}")
    pending = service.pending_changes()
    print(f"Pending push  : {pending['products']} products, {pending['invoices']} invoices")
    print(f"Log file      : {get_log_path()}")
    return 0 if online else 1


def command_watch(args: argparse.Namespace) -> int:
    settings = load_sync_settings()
    interval = args.interval or settings.sync_interval_seconds

    def report(status: str, payload: dict) -> None:
        print(f"[{status}] {payload}" if payload else f"[{status}]")

    controller = AutoSyncController(
        SyncService.from_settings(settings),
        interval_seconds=interval,
        status_callback=report,
    )
    controller.start()
    print(f"Automatic sync every {interval}s. Press Ctrl+C to stop.")
    try:
        while controller.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        controller.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SalesBook synchronisation tool")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Log debug details")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create or migrate the local database")
    init_parser.set_defaults(func=command_init_db)

    pull_parser = subparsers.add_parser("pull", help="Apply the server snapshot locally")
    pull_parser.set_defaults(func=command_pull)

    push_parser = subparsers.add_parser("push", help="Send unsynced local changes")
    push_parser.set_defaults(func=command_push)

    sync_parser = subparsers.add_parser("sync", help="Pull then push")
    sync_parser.set_defaults(func=command_sync)

    status_parser = subparsers.add_parser("status", help="Check the server connection")
    status_parser.set_defaults(func=command_status)

    watch_parser = subparsers.add_parser("watch", help="Sync automatically in the foreground")
    watch_parser.add_argument("--interval", type=int, help="Seconds between sync sessions")
    watch_parser.set_defaults(func=command_watch)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    db.initialize_database()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
