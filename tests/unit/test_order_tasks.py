"""Unit tests for process_order_task."""
from unittest.mock import AsyncMock, Mock

import pytest

from catalog_sync.errors import DatabaseError, InvalidOrder
from catalog_sync.models import OrderPlacementResult
from catalog_sync.tasks.order_tasks import process_order_task

ORDER = {"id": 1001, "admin_graphql_api_id": "gid://shopify/Order/1001", "line_items": [{"sku": "BJ-555"}]}


def _ctx(result=None, error=None):
    reconciler = Mock()
    reconciler.place_source_orders = AsyncMock(return_value=result, side_effect=error)
    return {"order_reconciler": reconciler}


@pytest.mark.asyncio
async def test_success():
    ctx = _ctx(OrderPlacementResult(succeeded=True, source_order_ids=["777"]))

    result = await process_order_task(ctx, ORDER)

    assert result["status"] == "success"
    assert result["source_order_ids"] == ["777"]
    ctx["order_reconciler"].place_source_orders.assert_awaited_once_with(ORDER)


@pytest.mark.asyncio
async def test_failed_placement():
    result = await process_order_task(_ctx(OrderPlacementResult(succeeded=False)), ORDER)
    assert result["status"] == "failed"


@pytest.mark.asyncio
async def test_duplicate():
    ctx = _ctx(OrderPlacementResult(succeeded=True, source_order_ids=["777"], already_processed=True))
    result = await process_order_task(ctx, ORDER)
    assert result["status"] == "duplicate"


@pytest.mark.asyncio
async def test_invalid_order_is_not_retried():
    result = await process_order_task(_ctx(error=InvalidOrder("missing id")), {"line_items": []})
    assert result["status"] == "error"
    assert result["order_id"] is None


@pytest.mark.asyncio
async def test_ledger_failure_propagates():
    with pytest.raises(DatabaseError):
        await process_order_task(_ctx(error=DatabaseError("db down")), ORDER)
