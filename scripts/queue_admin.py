#!/usr/bin/env python3
"""Inspect, flush or clear the durable delivery queues."""

import sys
import asyncio
import argparse
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from courier.config import get, get_config
from courier.db import init_db
from courier.services import DatabaseStore, DeliveryPipeline, DeliverySettings, PersistentQueue, TransportMode

QUEUES = {
    "submission": ("submission", "endpoint_url", "delivery_mode"),
    "analytics": ("analytics", "endpoint", "send_mode"),
}


def _pipeline(name: str) -> DeliveryPipeline:
    section, endpoint_key, mode_key = QUEUES[name]
    init_db(get("database.path"))

    settings = DeliverySettings(
        endpoint_url=get(f"{section}.{endpoint_key}") or "",
        method=get(f"{section}.method", "POST"),
        timeout_ms=get(f"{section}.timeout_ms", 8000),
        mode=TransportMode.parse(get(f"{section}.{mode_key}", "confirmable")),
    )
    queue = PersistentQueue(DatabaseStore(), get(f"{section}.queue_key"))
    return DeliveryPipeline(queue, settings)


def show_queue(name: str):
    """Print queued items."""
    items = _pipeline(name).queue.peek()

    if not items:
        print(f"Queue '{name}' is empty.")
        return

    print(f"\nQueue '{name}': {len(items)} item(s)")
    print("=" * 60)
    for index, item in enumerate(items, 1):
        mode = item.mode.value if item.mode else "-"
        print(f" {index:>3}. {item.ts}  {item.kind.value:<10} mode={mode}")
        print(f"      {item.payload}")
    print("=" * 60)


def flush_queue(name: str):
    """Retry every queued item once."""
    pipeline = _pipeline(name)
    if not pipeline.has_destination:
        print(f"No destination configured for '{name}'; items stay queued.")
        return

    try:
        moved = asyncio.run(pipeline.flush())
    finally:
        pipeline.close()
    print(f"Attempted {moved} item(s); {len(pipeline.queue)} still queued.")


def clear_queue(name: str, yes: bool = False):
    """Drop every queued item."""
    pipeline = _pipeline(name)
    count = len(pipeline.queue)
    if count and not yes:
        answer = input(f"Delete {count} queued item(s) from '{name}'? [y/N] ")
        if answer.strip().lower() != "y":
            print("Aborted.")
            return
    pipeline.queue.clear()
    print(f"Cleared {count} item(s) from '{name}'.")


def main():
    parser = argparse.ArgumentParser(description="Manage durable delivery queues")
    parser.add_argument("--config", help="Path to config.yaml")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    for command in ("show", "flush", "clear"):
        sub = subparsers.add_parser(command, help=f"{command.capitalize()} a queue")
        sub.add_argument("queue", choices=sorted(QUEUES), help="Queue name")
        if command == "clear":
            sub.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.config:
        from courier.config import load_config
        load_config(args.config)
    else:
        get_config()

    if args.command == "show":
        show_queue(args.queue)
    elif args.command == "flush":
        flush_queue(args.queue)
    elif args.command == "clear":
        clear_queue(args.queue, yes=args.yes)


if __name__ == "__main__":
    main()
