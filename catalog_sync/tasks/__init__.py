"""arq tasks for catalog sync and order placement."""
from catalog_sync.tasks.catalog_tasks import (
    run_catalog_sync,
    sync_catalog_task,
    scheduled_full_sync_task,
    scheduled_segment_sync_task,
)
from catalog_sync.tasks.order_tasks import process_order_task

__all__ = [
    "run_catalog_sync",
    "sync_catalog_task",
    "scheduled_full_sync_task",
    "scheduled_segment_sync_task",
    "process_order_task",
]
