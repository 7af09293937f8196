"""Integration tests for OrderLedger against PostgreSQL."""
import asyncio

import pytest

from catalog_sync.db.models import OrderClaimStatus
from catalog_sync.services.order_ledger import OrderLedger

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_first_claim_wins(session_maker):
    ledger = OrderLedger(session_maker)

    first = await ledger.claim("1001", "gid://shopify/Order/1001")
    second = await ledger.claim("1001", "gid://shopify/Order/1001")

    assert first.claimed is True
    assert second.claimed is False
    assert second.status == OrderClaimStatus.PROCESSING


@pytest.mark.asyncio
async def test_concurrent_claims_single_winner(session_maker):
    ledger = OrderLedger(session_maker)

    claims = await asyncio.gather(*(ledger.claim("2002") for _ in range(5)))

    assert sum(c.claimed for c in claims) == 1


@pytest.mark.asyncio
async def test_completed_order_is_never_reclaimed(session_maker):
    ledger = OrderLedger(session_maker)
    await ledger.claim("3003")
    await ledger.complete("3003", True, ["777"])

    claim = await ledger.claim("3003")

    assert claim.claimed is False
    assert claim.status == OrderClaimStatus.COMPLETED
    assert claim.source_order_ids == ["777"]


@pytest.mark.asyncio
async def test_failed_order_can_be_reclaimed(session_maker):
    ledger = OrderLedger(session_maker)
    await ledger.claim("4004")
    await ledger.complete("4004", False, [], "product not found")

    assert (await ledger.claim("4004")).claimed is True


@pytest.mark.asyncio
async def test_stale_processing_claim_is_taken_over(session_maker):
    ledger = OrderLedger(session_maker, stale_after_seconds=0)
    await ledger.claim("5005")
    await asyncio.sleep(0.01)

    assert (await ledger.claim("5005")).claimed is True
