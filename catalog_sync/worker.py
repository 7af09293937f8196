"""arq worker configuration for catalog sync and order placement.

This module configures the arq worker with:
    - sync_catalog_task: Fetch a catalog feed and reconcile it with the storefront
    - process_order_task: Place marketplace orders for a storefront order event
    - scheduled_full_sync_task: Cron job, daily full catalog
    - scheduled_segment_sync_task: Cron job, hourly segment catalog

Run with: `arq catalog_sync.worker.WorkerSettings`
"""
from pathlib import Path
from typing import Any, Dict

import httpx
import structlog
from arq import cron
from arq.connections import RedisSettings

from catalog_sync.config import (
    configure_logging,
    get_marketplace_settings,
    get_pricing_settings,
    get_settings,
    get_storefront_settings,
)
from catalog_sync.db import create_engine, create_session_maker
from catalog_sync.parsers import CatalogParser
from catalog_sync.services.catalog_reconciler import CatalogReconciler
from catalog_sync.services.exchange_rate import ExchangeRateProvider
from catalog_sync.services.feed_fetcher import FeedFetcher
from catalog_sync.services.marketplace_client import MarketplaceClient
from catalog_sync.services.order_ledger import OrderLedger
from catalog_sync.services.order_reconciler import OrderReconciler
from catalog_sync.services.product_transformer import ProductTransformer
from catalog_sync.services.storefront_client import StorefrontClient
from catalog_sync.services.sync_state import SyncStateStore
from catalog_sync.tasks import (
    process_order_task,
    scheduled_full_sync_task,
    scheduled_segment_sync_task,
    sync_catalog_task,
)

settings = get_settings()
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


async def on_startup(ctx: Dict[str, Any]) -> None:
    """Build the shared pipeline components into the worker context."""
    marketplace_settings = get_marketplace_settings()
    storefront_settings = get_storefront_settings()
    pricing_settings = get_pricing_settings()

    engine = create_engine(
        settings.database_url,
        pool_size=marketplace_settings.sync_concurrency + 2,
    )
    session_maker = create_session_maker(engine)
    rates_http = httpx.AsyncClient(timeout=10.0)

    storefront = StorefrontClient(storefront_settings)
    marketplace = MarketplaceClient(marketplace_settings)
    await storefront.__aenter__()
    await marketplace.__aenter__()

    rate_provider = ExchangeRateProvider(pricing_settings, http_client=rates_http)
    transformer = ProductTransformer(marketplace_settings, storefront_settings)

    ctx["settings"] = settings
    ctx["engine"] = engine
    ctx["rates_http"] = rates_http
    ctx["storefront"] = storefront
    ctx["marketplace"] = marketplace
    ctx["feed_fetcher"] = FeedFetcher(marketplace_settings, Path(settings.temp_dir))
    ctx["catalog_parser"] = CatalogParser(
        allowed_category_ids=marketplace_settings.filter_category_ids,
        chunk_size=marketplace_settings.parse_chunk_size,
    )
    ctx["catalog_reconciler"] = CatalogReconciler(
        store=SyncStateStore(session_maker),
        storefront=storefront,
        rate_provider=rate_provider,
        transformer=transformer,
        pricing=pricing_settings,
        concurrency=marketplace_settings.sync_concurrency,
        import_collection_id=storefront_settings.import_collection_id,
        force_resync=settings.force_resync_all,
    )
    ctx["order_reconciler"] = OrderReconciler(
        marketplace,
        storefront,
        ledger=OrderLedger(session_maker, stale_after_seconds=settings.order_claim_stale_seconds),
        rate_provider=rate_provider,
        pricing=pricing_settings,
        linked_sku_prefix=marketplace_settings.linked_sku_prefix,
        order_identifier_prefix=marketplace_settings.order_identifier_prefix,
    )
    logger.info(
        "worker_started",
        environment=settings.environment,
        queue_name=settings.queue_name,
        sync_concurrency=marketplace_settings.sync_concurrency,
    )


async def on_shutdown(ctx: Dict[str, Any]) -> None:
    """Close HTTP clients and dispose the database engine."""
    for key in ("storefront", "marketplace", "rates_http"):
        client = ctx.get(key)
        if client is not None:
            await client.aclose()
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()
    logger.info("worker_stopped")


async def on_job_end(ctx: Dict[str, Any]) -> None:
    """Hook called after each job ends (success or failure)."""
    job_try = ctx.get("job_try", 1)
    job_id = ctx.get("job_id", "unknown")
    if job_try >= WorkerSettings.max_tries:
        logger.debug("job_final_attempt_finished", job_id=job_id, job_try=job_try)
    else:
        logger.debug("job_finished", job_id=job_id, job_try=job_try)


class WorkerSettings:
    """arq worker configuration settings.

    Registered Tasks:
        - sync_catalog_task: Catalog sync for a given type and date
        - process_order_task: Order placement for one storefront order

    Cron Jobs:
        - scheduled_full_sync_task: Daily at FULL_CATALOG_HOUR_UTC
        - scheduled_segment_sync_task: Hourly at SEGMENT_CATALOG_MINUTE
    """

    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.queue_name
    max_jobs = settings.max_workers
    job_timeout = settings.job_timeout
    keep_result = 3600  # Keep results for 1 hour
    max_tries = 3

    functions = [
        sync_catalog_task,
        process_order_task,
    ]

    on_startup = on_startup
    on_shutdown = on_shutdown
    on_job_end = on_job_end

    cron_jobs = [
        cron(
            scheduled_full_sync_task,
            hour=settings.full_catalog_hour_utc,
            minute=0,
            unique=True,
            run_at_startup=False,
        ),
        cron(
            scheduled_segment_sync_task,
            minute=settings.segment_catalog_minute,
            unique=True,
            run_at_startup=False,
        ),
    ]
