"""Queue task for placing marketplace orders from storefront order events."""
import time
from typing import Any, Dict

import structlog

from catalog_sync.errors import CatalogSyncError, InvalidOrder

logger = structlog.get_logger(__name__)


async def process_order_task(ctx: Dict[str, Any], order: Dict[str, Any], **kwargs) -> Dict[str, Any]:
    """Place marketplace orders for a storefront order-created event.

    Args:
        ctx: Worker context (contains the order reconciler)
        order: Raw order event payload

    Returns:
        Dictionary with status ("success", "failed", "duplicate" or "error"),
        the marketplace order IDs and a message
    """
    order_id = order.get("id") if isinstance(order, dict) else None
    log = logger.bind(order_id=order_id)
    start_time = time.time()
    log.info("process_order_task_started")

    try:
        result = await ctx["order_reconciler"].place_source_orders(order)
    except InvalidOrder as e:
        log.error("process_order_task_invalid_order", error=e.message)
        return {"order_id": order_id, "status": "error", "error": e.message}
    except CatalogSyncError as e:
        # Raised for ledger failures; arq retries the job
        log.error("process_order_task_failed", error=e.message, error_type=type(e).__name__)
        raise

    if result.already_processed:
        status = "duplicate"
    elif result.succeeded:
        status = "success"
    else:
        status = "failed"

    log.info(
        "process_order_task_completed",
        status=status,
        source_order_ids=result.source_order_ids,
        duration_seconds=round(time.time() - start_time, 2),
    )
    return {
        "order_id": order_id,
        "status": status,
        "source_order_ids": result.source_order_ids,
        "message": result.message,
    }
