#!/usr/bin/env python3
"""
Command-line interface for plugin-dashboard.
"""

import argparse
import json
import logging
import sys
from typing import Optional

from .app import create_controller
from .app import main as app_main
from .errors import ValidationFailure


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="plugin-dashboard",
        description="GitHub and bStats dashboard for an organization's plugins"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Sync command
    subparsers.add_parser("sync", help="Clear the caches and refetch all data")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start the dashboard server")
    server_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port to run the server on (default: 8080)"
    )
    server_parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Disable the periodic background refresh"
    )

    # bStats diagnostics
    test_parser = subparsers.add_parser("test-bstats", help="Check that the bStats API is reachable")
    test_parser.add_argument("--endpoint", default="/api/v1/plugins", help="API path to probe")
    test_parser.add_argument("--timeout-ms", type=int, default=10000, help="Timeout in milliseconds")

    # Manual mapping
    mapping_parser = subparsers.add_parser("mapping", help="Show or replace the repo -> bStats plugin mapping")
    mapping_sub = mapping_parser.add_subparsers(dest="mapping_command")
    mapping_sub.add_parser("show", help="Print the current mapping")
    set_parser = mapping_sub.add_parser("set", help="Replace the mapping with the JSON object in FILE")
    set_parser.add_argument("file", help="Path to a JSON file, or '-' for stdin")

    return parser


def _run_test_bstats(args) -> int:
    controller = create_controller()
    try:
        result = controller.test_bstats_api(args.endpoint, args.timeout_ms)
    finally:
        controller.context.store.close()
    if result.ok:
        print(f"bStats API OK: {result.status} {result.status_text}")
        return 0
    print(f"bStats API check failed: {result.error}", file=sys.stderr)
    return 1


def _run_mapping(args, parser) -> int:
    if args.mapping_command not in ("show", "set"):
        parser.print_help()
        return 1

    controller = create_controller()
    try:
        if args.mapping_command == "show":
            print(json.dumps(controller.context.mapping, indent=2))
            return 0

        if args.file == "-":
            raw = sys.stdin.read()
        else:
            with open(args.file, "r", encoding="utf-8") as f:
                raw = f.read()
        try:
            mapping = controller.context.save_mapping(raw)
        except ValidationFailure as e:
            print(f"Mapping not saved: {e}", file=sys.stderr)
            return 1
        print(f"Saved mapping with {len(mapping)} entries")
        return 0
    finally:
        controller.context.store.close()


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    if args.command == "sync":
        return app_main()
    elif args.command == "server":
        from .server import run_server
        try:
            run_server(port=args.port, enable_background_refresh=not args.no_refresh)
            return 0
        except KeyboardInterrupt:
            print("\nServer stopped by user")
            return 0
        except Exception as e:
            print(f"Server error: {e}", file=sys.stderr)
            return 1
    elif args.command == "test-bstats":
        return _run_test_bstats(args)
    elif args.command == "mapping":
        return _run_mapping(args, parser)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
