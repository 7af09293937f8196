#!/usr/bin/env python3
"""Helper script for enqueuing catalog sync and order tasks to the Redis queue.

Usage:
    python scripts/enqueue_task.py sync --catalog-type full
    python scripts/enqueue_task.py sync --catalog-type segment --as-of 2026-10-18T09:00:00+09:00
    python scripts/enqueue_task.py order --order-file order.json
"""
import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from arq import ArqRedis
from arq.connections import RedisSettings, create_pool

from catalog_sync.config import get_settings
from catalog_sync.services.feed_fetcher import CATALOG_TYPES


async def enqueue(function: str, **kwargs: Any) -> Optional[str]:
    """Enqueue one job and return its arq job ID."""
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    print(f"Connecting to Redis: {settings.redis_url.split('@')[-1]}")

    pool: ArqRedis = await create_pool(redis_settings, default_queue_name=settings.queue_name)
    try:
        job = await pool.enqueue_job(function, **kwargs)
        if job is None:
            print("Job with the same ID is already queued")
            return None
        print("Task enqueued successfully!")
        print(f"   Function: {function}")
        print(f"   Job ID:   {job.job_id}")
        print(f"   Queue:    {settings.queue_name}")
        return job.job_id
    finally:
        await pool.close()


def _load_order(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not read order payload {path}: {e}")
        sys.exit(1)


def main():
    parser = argparse.ArgumentParser(
        description="Enqueue catalog sync or order placement tasks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Enqueue sync_catalog_task")
    sync_parser.add_argument("--catalog-type", choices=sorted(CATALOG_TYPES), default="segment")
    sync_parser.add_argument("--as-of", help="ISO timestamp selecting the feed file (default: now)")
    sync_parser.add_argument("--task-id", help="Lock holder ID (auto-generated if not provided)")

    order_parser = subparsers.add_parser("order", help="Enqueue process_order_task")
    order_parser.add_argument("--order-file", required=True, help="Path to an order event JSON file")

    parser.add_argument("--dry-run", action="store_true", help="Print task details without enqueuing")
    args = parser.parse_args()

    if args.command == "sync":
        timestamp = int(datetime.now(timezone.utc).timestamp())
        kwargs = {
            "catalog_type": args.catalog_type,
            "as_of": args.as_of,
            "task_id": args.task_id or f"catalog-{args.catalog_type}-manual-{timestamp}",
        }
        function = "sync_catalog_task"
    else:
        kwargs = {"order": _load_order(args.order_file)}
        function = "process_order_task"

    if args.dry_run:
        print("DRY RUN - Task details:")
        print(f"   Function: {function}")
        print(f"   Args:     {json.dumps(kwargs, default=str)[:500]}")
        return

    asyncio.run(enqueue(function, **kwargs))


if __name__ == "__main__":
    main()
