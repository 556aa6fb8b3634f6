"""
tipstore command line.

Inspect and follow the storage layer from a shell. Every command builds an
orchestrator from the environment (see config.py), runs one operation and
prints JSON on stdout.

Usage:
    python -m tipstore stats
    python -m tipstore events
    python -m tipstore event <event_id>
    python -m tipstore speakers [query]
    python -m tipstore tips <event_id> [--stats]
    python -m tipstore recent [--limit N]
    python -m tipstore watch <event_id> [--interval SECONDS]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Optional, Sequence

import json_log_formatter
from pydantic import BaseModel, ValidationError

from .config import StorageConfig
from .errors import TipStoreError
from .orchestrator import StorageOrchestrator, create_orchestrator
from .subscriptions import PollingUpdateChannel, TipUpdate

logger = logging.getLogger(__name__)


def setup_logging(config: StorageConfig) -> None:
    """Configure logging based on configuration.

    Logs go to stderr so stdout stays machine-readable.
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    if isinstance(value, TipUpdate):
        return {
            "event_id": value.event_id,
            "polled_at": value.polled_at,
            "tips": to_jsonable(value.tips),
        }
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def emit(value: Any) -> None:
    print(json.dumps(to_jsonable(value), indent=2))
    sys.stdout.flush()


def non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be non-negative, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tipstore", description="tipstore storage tool")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("stats", help="Show repository statistics")
    subparsers.add_parser("events", help="List events")

    event_parser = subparsers.add_parser("event", help="Show one event")
    event_parser.add_argument("event_id", help="Event id")

    speakers_parser = subparsers.add_parser("speakers", help="List or search speakers")
    speakers_parser.add_argument("query", nargs="?", default="", help="Search text")

    tips_parser = subparsers.add_parser("tips", help="Show an event's tip history")
    tips_parser.add_argument("event_id", help="Event id")
    tips_parser.add_argument(
        "--stats", action="store_true", help="Show aggregates over confirmed tips instead"
    )

    recent_parser = subparsers.add_parser("recent", help="Show recent tips across events")
    recent_parser.add_argument(
        "--limit", type=non_negative_int, default=50, help="Maximum tips (default: 50)"
    )

    watch_parser = subparsers.add_parser("watch", help="Poll an event's tips until interrupted")
    watch_parser.add_argument("event_id", help="Event id")
    watch_parser.add_argument(
        "--interval", type=float, default=None, help="Poll interval seconds (default: from config)"
    )
    return parser


async def run_command(orchestrator: StorageOrchestrator, args: argparse.Namespace) -> Any:
    """Run one non-streaming command and return its result."""
    if args.command == "stats":
        return await orchestrator.get_stats()
    if args.command == "events":
        return await orchestrator.get_events()
    if args.command == "event":
        return await orchestrator.get_event(args.event_id)
    if args.command == "speakers":
        return await orchestrator.search_speakers(args.query)
    if args.command == "tips":
        if args.stats:
            return await orchestrator.get_event_tip_stats(args.event_id)
        return await orchestrator.get_tip_history(args.event_id)
    if args.command == "recent":
        return await orchestrator.get_recent_tips(args.limit)
    raise ValueError(f"Unknown command: {args.command}")


async def watch(orchestrator: StorageOrchestrator, event_id: str, interval: Optional[float]) -> None:
    """Print tip updates for an event until SIGINT/SIGTERM."""
    if interval is not None:
        orchestrator.channel = PollingUpdateChannel(
            orchestrator.tips.retrieve_history, interval=interval
        )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    subscription = orchestrator.subscribe(event_id, emit)
    try:
        await stop.wait()
    finally:
        subscription.cancel()
        await subscription.wait_closed()


async def _run(config: StorageConfig, args: argparse.Namespace) -> int:
    orchestrator = create_orchestrator(config)
    try:
        await orchestrator.initialize()
        if args.command == "watch":
            await watch(orchestrator, args.event_id, args.interval)
        else:
            emit(await run_command(orchestrator, args))
        return 0
    finally:
        await orchestrator.close()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load configuration
    try:
        config = StorageConfig()
    except ValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    try:
        sys.exit(asyncio.run(_run(config, args)))
    except TipStoreError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
