#!/usr/bin/env python3

import argparse
from collections.abc import Sequence

from larder.domain.receipt import RECEIPT_STATUSES


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Receipt-to-inventory ingestion CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve [--host] [--port]    Start the receipt service
  scan <image>               Upload a receipt, review matches, add to inventory
  status <receipt id>        Show recognition and review progress
  history                    List past receipts, newest first
  delete <receipt id>        Delete a receipt that is not in inventory yet

Notes:
  Data lives under $LARDER_HOME (default ~/.larder).
  Client commands talk to $LARDER_API_URL unless --api-url is given.
""",
    )
    parser.add_argument("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--home", default=None, help="Data root (default: $LARDER_HOME or ~/.larder)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the receipt service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind to (default: 8080)")

    # client commands
    scan_parser = subparsers.add_parser("scan", help="Scan a receipt image")
    scan_parser.add_argument("image", help="Path to receipt image")
    scan_parser.add_argument("--no-review", action="store_true", help="Stop after recognition; review later")

    status_parser = subparsers.add_parser("status", help="Show receipt progress")
    status_parser.add_argument("receipt_id", help="Receipt id returned by scan")

    history_parser = subparsers.add_parser("history", help="List past receipts")
    history_parser.add_argument("--status", choices=RECEIPT_STATUSES, default=None, help="Only this status")
    history_parser.add_argument("--limit", type=int, default=20, help="Page size (default: 20)")
    history_parser.add_argument("--offset", type=int, default=0, help="Receipts to skip (default: 0)")

    delete_parser = subparsers.add_parser("delete", help="Delete a receipt")
    delete_parser.add_argument("receipt_id", help="Receipt id")

    for client_parser in (scan_parser, status_parser, history_parser, delete_parser):
        client_parser.add_argument("--api-url", default=None, help="Receipt service URL (default: from settings)")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.log_level:
        from larder.runtime.logging import level_from_name, set_log_level

        try:
            set_log_level(level_from_name(args.log_level))
        except ValueError as exc:
            print(str(exc))
            return 1

    if args.home:
        from pathlib import Path

        from larder.runtime import reset_settings, set_data_root

        set_data_root(Path(args.home).expanduser())
        reset_settings()

    if args.command == "serve":
        from larder.cli.receipt import cmd_serve

        return cmd_serve(args)
    elif args.command == "scan":
        from larder.cli.receipt import cmd_scan

        return cmd_scan(args)
    elif args.command == "status":
        from larder.cli.receipt import cmd_status

        return cmd_status(args)
    elif args.command == "history":
        from larder.cli.receipt import cmd_history

        return cmd_history(args)
    elif args.command == "delete":
        from larder.cli.receipt import cmd_delete

        return cmd_delete(args)

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
