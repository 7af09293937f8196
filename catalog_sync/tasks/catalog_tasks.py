"""Queue tasks for the catalog sync pipeline.

This module implements:
    - run_catalog_sync: fetch -> parse -> reconcile for one feed
    - sync_catalog_task: arq task wrapping run_catalog_sync with a Redis lock
    - scheduled_full_sync_task / scheduled_segment_sync_task: cron wrappers
"""
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog
from arq.connections import ArqRedis

from catalog_sync.config import get_settings
from catalog_sync.errors import CatalogSyncError, InvalidInput
from catalog_sync.models import CatalogSyncReport
from catalog_sync.parsers import CatalogParser
from catalog_sync.services.catalog_reconciler import CatalogReconciler
from catalog_sync.services.feed_fetcher import FeedFetcher, feed_filename, validate_catalog_type
from catalog_sync.services.sync_lock import acquire_sync_lock, release_sync_lock

logger = structlog.get_logger(__name__)


def parse_as_of(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 as_of argument from a job payload."""
    if value is None or value == "":
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise InvalidInput(f"Invalid as_of timestamp {value!r}") from e


async def run_catalog_sync(
    fetcher: FeedFetcher,
    parser: CatalogParser,
    reconciler: CatalogReconciler,
    catalog_type: str,
    as_of: Optional[datetime] = None,
) -> CatalogSyncReport:
    """Fetch, parse and reconcile one catalog feed.

    The local CSV is removed afterwards whether or not reconciliation
    succeeded. A feed with no valid records is a successful no-op.

    Raises:
        InvalidCatalogType, ConfigurationError, FeedFetchError, ParserError,
        DatabaseError: batch-fatal errors
    """
    validate_catalog_type(catalog_type)
    local_as_of = fetcher.resolve_as_of(as_of)
    filename = feed_filename(catalog_type, local_as_of)
    log = logger.bind(catalog_type=catalog_type, filename=filename)
    log.info("catalog_sync_started")

    csv_path: Path = await fetcher.fetch(catalog_type, local_as_of)
    try:
        parsed = await parser.parse(csv_path)
        report = CatalogSyncReport(
            catalog_type=catalog_type,
            filename=filename,
            total_rows=parsed.total_rows,
            valid_records=parsed.valid_records,
        )
        if not parsed.records:
            log.warning("catalog_sync_no_valid_records", total_rows=parsed.total_rows)
            return report

        summary = await reconciler.sync_batch(parsed.records)
        report = report.model_copy(update=summary.model_dump())
    finally:
        try:
            csv_path.unlink(missing_ok=True)
            log.debug("catalog_csv_removed", path=str(csv_path))
        except OSError as e:
            log.warning("catalog_csv_cleanup_failed", path=str(csv_path), error=str(e))

    log.info("catalog_sync_completed", **report.model_dump(exclude={"catalog_type", "filename"}))
    return report


async def sync_catalog_task(
    ctx: Dict[str, Any],
    catalog_type: str = "segment",
    as_of: Optional[str] = None,
    task_id: Optional[str] = None,
    **kwargs
) -> Dict[str, Any]:
    """Run a catalog sync unless one of the same type is already running.

    Args:
        ctx: Worker context (redis connection and the pipeline components
            built in on_startup)
        catalog_type: "full" or "segment"
        as_of: Optional ISO timestamp selecting the feed date
        task_id: Identifier used as the lock holder

    Returns:
        Dictionary with status ("success", "skipped" or "error") and the
        sync report fields
    """
    task_id = task_id or f"catalog-{catalog_type}-{uuid4().hex[:12]}"
    settings = ctx.get("settings") or get_settings()
    log = logger.bind(task_id=task_id, catalog_type=catalog_type)
    start_time = time.time()

    redis: Optional[ArqRedis] = ctx.get("redis")
    if not redis:
        log.error("no_redis_connection")
        return {"task_id": task_id, "status": "error", "error": "No Redis connection available"}

    try:
        validate_catalog_type(catalog_type)
        as_of_dt = parse_as_of(as_of)
    except CatalogSyncError as e:
        log.error("sync_catalog_task_invalid_arguments", error=e.message)
        return {"task_id": task_id, "status": "error", "error": e.message}

    acquired, holder = await acquire_sync_lock(
        redis, catalog_type, task_id, ttl_seconds=settings.sync_lock_ttl_seconds
    )
    if not acquired:
        return {
            "task_id": task_id,
            "status": "skipped",
            "error": f"Catalog sync already in progress (task: {holder})",
        }

    try:
        report = await run_catalog_sync(
            ctx["feed_fetcher"],
            ctx["catalog_parser"],
            ctx["catalog_reconciler"],
            catalog_type,
            as_of_dt,
        )
    except CatalogSyncError as e:
        log.error(
            "sync_catalog_task_failed",
            error=e.message,
            error_type=type(e).__name__,
            duration_seconds=round(time.time() - start_time, 2),
        )
        return {
            "task_id": task_id,
            "status": "error",
            "error": e.message,
            "error_type": type(e).__name__,
        }
    finally:
        await release_sync_lock(redis, catalog_type, task_id)

    return {
        "task_id": task_id,
        "status": "success",
        "duration_seconds": round(time.time() - start_time, 2),
        **report.model_dump(),
    }


async def scheduled_full_sync_task(ctx: Dict[str, Any], **kwargs) -> Dict[str, Any]:
    """Cron wrapper: daily full catalog sync."""
    task_id = f"catalog-full-scheduled-{int(datetime.now(timezone.utc).timestamp())}"
    logger.info("scheduled_full_sync_task_started", task_id=task_id)
    return await sync_catalog_task(ctx, catalog_type="full", task_id=task_id)


async def scheduled_segment_sync_task(ctx: Dict[str, Any], **kwargs) -> Dict[str, Any]:
    """Cron wrapper: hourly segment catalog sync."""
    task_id = f"catalog-segment-scheduled-{int(datetime.now(timezone.utc).timestamp())}"
    logger.info("scheduled_segment_sync_task_started", task_id=task_id)
    return await sync_catalog_task(ctx, catalog_type="segment", task_id=task_id)
