"""Integration tests for SyncStateStore against PostgreSQL."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from catalog_sync.db.models import SyncStatus
from catalog_sync.services.sync_state import SyncOutcome, SyncStateStore, should_skip_unchanged

pytestmark = pytest.mark.integration

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_first_attempt_creates_pending_row(session_maker, make_record):
    store = SyncStateStore(session_maker)

    state = await store.upsert_attempt(make_record("123"))

    assert state.sync_status == SyncStatus.PENDING
    assert state.attempt_count == 1
    assert state.source_updated_at is None
    assert (await store.get("123")).external_id == "123"


@pytest.mark.asyncio
async def test_attempt_does_not_move_source_timestamp(session_maker, make_record):
    store = SyncStateStore(session_maker)
    await store.upsert_attempt(make_record("123", updated_at=T0))
    await store.record_outcome(
        "123",
        SyncOutcome(status=SyncStatus.SYNCED, source_updated_at=T0, destination_product_id="gid://p/1",
                    listed_price=Decimal("11.00")),
    )

    newer = make_record("123", updated_at=T0 + timedelta(hours=1))
    state = await store.upsert_attempt(newer)

    assert state.source_updated_at == T0
    assert not should_skip_unchanged(state, newer)


@pytest.mark.asyncio
async def test_error_then_synced(session_maker, make_record):
    store = SyncStateStore(session_maker)
    await store.upsert_attempt(make_record("123"))
    await store.record_outcome(
        "123",
        SyncOutcome(status=SyncStatus.ERROR, source_updated_at=T0, error_message="x" * 5000, error_stack="trace"),
    )
    await store.upsert_attempt(make_record("123"))

    errored = await store.get("123")
    assert errored.sync_status == SyncStatus.ERROR
    assert errored.attempt_count == 2
    assert len(errored.last_error_message) == 1000

    await store.record_outcome(
        "123",
        SyncOutcome(status=SyncStatus.SYNCED, source_updated_at=T0, destination_product_id="gid://p/1",
                    destination_handle="camera", listed_price=Decimal("11.00")),
    )

    synced = await store.get("123")
    assert synced.sync_status == SyncStatus.SYNCED
    assert synced.attempt_count == 0
    assert synced.success_count == 1
    assert synced.last_error_message is None
    assert synced.destination_product_id == "gid://p/1"
    assert synced.listed_price == Decimal("11.00")


@pytest.mark.asyncio
async def test_get_unknown(session_maker):
    assert await SyncStateStore(session_maker).get("nope") is None
