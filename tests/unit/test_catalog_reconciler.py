"""Unit tests for CatalogReconciler with an in-memory sync state store."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Optional
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
import respx

from catalog_sync.db.models import SyncStatus
from catalog_sync.errors import ConfigurationError, DatabaseError, FatalApiError, UpstreamUnavailable
from catalog_sync.models import RecordStatus
from catalog_sync.services.catalog_reconciler import CatalogReconciler
from catalog_sync.services.exchange_rate import ExchangeRateProvider
from catalog_sync.services.product_transformer import ProductTransformer
from catalog_sync.services.sync_state import SyncOutcome, SyncState

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
PRODUCT_GID = "gid://shopify/Product/1"
RATES_URL = "https://rates.test/latest"


class InMemorySyncStateStore:
    """Mirrors SyncStateStore semantics without a database."""

    def __init__(self):
        self.rows: Dict[str, dict] = {}
        self.outcomes = []
        self.fail_on: Optional[str] = None

    async def get(self, external_id: str) -> Optional[SyncState]:
        row = self.rows.get(external_id)
        return SyncState(**row) if row else None

    async def upsert_attempt(self, record) -> SyncState:
        if self.fail_on == record.external_id:
            raise DatabaseError(f"write failed for {record.external_id}")
        row = self.rows.setdefault(
            record.external_id,
            {"external_id": record.external_id, "sync_status": SyncStatus.PENDING},
        )
        row["attempt_count"] = row.get("attempt_count", 0) + 1
        return SyncState(**row)

    async def record_outcome(self, external_id: str, outcome: SyncOutcome) -> None:
        self.outcomes.append((external_id, outcome))
        row = self.rows[external_id]
        row["sync_status"] = outcome.status
        row["source_updated_at"] = outcome.source_updated_at
        if outcome.status == SyncStatus.SYNCED:
            row["attempt_count"] = 0
            row["success_count"] = row.get("success_count", 0) + 1
            row["last_error_message"] = None
            row["listed_price"] = outcome.listed_price
            if outcome.destination_product_id:
                row["destination_product_id"] = outcome.destination_product_id
        elif outcome.status == SyncStatus.ERROR:
            row["last_error_message"] = outcome.error_message


def _storefront() -> Mock:
    storefront = Mock()
    storefront.find_product_by_external_id_tag = AsyncMock(return_value=None)
    storefront.create_product = AsyncMock(return_value={"id": PRODUCT_GID, "handle": "camera"})
    storefront.update_product = AsyncMock(return_value={"id": PRODUCT_GID, "handle": "camera"})
    storefront.get_first_variant = AsyncMock(
        return_value={"id": "gid://shopify/ProductVariant/11", "inventoryItem": {"id": "gid://shopify/InventoryItem/111"}}
    )
    storefront.update_variant = AsyncMock(return_value={"id": "gid://shopify/ProductVariant/11"})
    storefront.set_inventory_level = AsyncMock(return_value=None)
    storefront.attach_media = AsyncMock(return_value={"media": [{"id": "m"}], "userErrors": []})
    return storefront


def _remote_calls(storefront: Mock) -> int:
    return sum(
        getattr(storefront, name).await_count
        for name in (
            "find_product_by_external_id_tag",
            "create_product",
            "update_product",
            "get_first_variant",
            "update_variant",
            "set_inventory_level",
            "attach_media",
        )
    )


@pytest.fixture
def store():
    return InMemorySyncStateStore()


@pytest.fixture
def storefront():
    return _storefront()


@pytest.fixture
def rate_provider():
    provider = Mock()
    provider.get_rate = AsyncMock(return_value=Decimal("0.00075"))
    return provider


@pytest.fixture
def reconciler(store, storefront, rate_provider, marketplace_settings, storefront_settings, pricing_settings):
    transformer = ProductTransformer(
        marketplace_settings.model_copy(update={"blocked_keywords": ["replica"]}),
        storefront_settings,
    )
    return CatalogReconciler(
        store=store,
        storefront=storefront,
        rate_provider=rate_provider,
        transformer=transformer,
        pricing=pricing_settings,
        import_collection_id="gid://shopify/Collection/9",
    )


class TestSyncRecord:
    """Tests for reconciling a single record."""

    @pytest.mark.asyncio
    async def test_new_record_is_created_with_computed_price(self, reconciler, store, storefront, make_record):
        result = await reconciler.sync_record(make_record("123", updated_at=T0))

        assert result.status == RecordStatus.SUCCESS
        assert result.operation == "create"
        assert result.destination_product_id == PRODUCT_GID
        product_input, collection_id, variant = storefront.create_product.await_args.args
        assert variant.price == "11.00"
        assert variant.sku == "BJ-123"
        assert collection_id == "gid://shopify/Collection/9"
        row = store.rows["123"]
        assert row["sync_status"] == SyncStatus.SYNCED
        assert row["destination_product_id"] == PRODUCT_GID
        assert row["listed_price"] == Decimal("11.00")
        assert row["source_updated_at"] == T0
        storefront.attach_media.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_second_run_with_same_timestamp_makes_no_remote_calls(
        self, reconciler, storefront, make_record
    ):
        record = make_record("123", updated_at=T0)
        await reconciler.sync_record(record)
        calls_after_first = _remote_calls(storefront)

        result = await reconciler.sync_record(record)

        assert result.status == RecordStatus.SKIPPED_UNCHANGED
        assert _remote_calls(storefront) == calls_after_first

    @pytest.mark.asyncio
    async def test_newer_record_updates_known_product(self, reconciler, store, storefront, make_record):
        await reconciler.sync_record(make_record("123", updated_at=T0))

        result = await reconciler.sync_record(make_record("123", updated_at=T0 + timedelta(hours=1), quantity=4))

        assert result.operation == "update"
        assert storefront.create_product.await_count == 1
        update_input = storefront.update_product.await_args.args[0]
        assert update_input["id"] == PRODUCT_GID
        storefront.update_variant.assert_awaited_once()
        storefront.set_inventory_level.assert_awaited_once_with(
            "gid://shopify/InventoryItem/111", "gid://shopify/Location/1", 4
        )
        assert store.rows["123"]["source_updated_at"] == T0 + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_existing_product_found_by_tag_is_updated(self, reconciler, storefront, make_record):
        storefront.find_product_by_external_id_tag.return_value = {"id": "gid://shopify/Product/77"}
        storefront.update_product.return_value = {"id": "gid://shopify/Product/77"}

        result = await reconciler.sync_record(make_record("123"))

        assert result.operation == "update"
        assert result.destination_product_id == "gid://shopify/Product/77"
        storefront.create_product.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tag_lookup_failure_is_treated_as_not_found(self, reconciler, storefront, make_record):
        storefront.find_product_by_external_id_tag.side_effect = UpstreamUnavailable("down")

        result = await reconciler.sync_record(make_record("123"))

        assert result.status == RecordStatus.SUCCESS
        assert result.operation == "create"

    @pytest.mark.asyncio
    async def test_error_then_success_does_not_duplicate(self, reconciler, store, storefront, make_record):
        storefront.create_product.side_effect = [
            FatalApiError("productCreate failed", service="storefront"),
            {"id": PRODUCT_GID, "handle": "camera"},
        ]
        record = make_record("123", updated_at=T0)

        first = await reconciler.sync_record(record)
        assert first.status == RecordStatus.ERROR
        assert store.rows["123"]["sync_status"] == SyncStatus.ERROR
        assert "productCreate failed" in store.rows["123"]["last_error_message"]
        error_outcome = store.outcomes[-1][1]
        assert error_outcome.error_stack

        second = await reconciler.sync_record(record)
        assert second.status == RecordStatus.SUCCESS
        assert storefront.create_product.await_count == 2
        assert store.rows["123"]["sync_status"] == SyncStatus.SYNCED
        assert store.rows["123"]["attempt_count"] == 0

        # Now synced: the third run is skipped, no third create
        third = await reconciler.sync_record(record)
        assert third.status == RecordStatus.SKIPPED_UNCHANGED
        assert storefront.create_product.await_count == 2

    @pytest.mark.asyncio
    async def test_media_failure_does_not_fail_record(self, reconciler, store, storefront, make_record):
        storefront.attach_media.side_effect = UpstreamUnavailable("media down")

        result = await reconciler.sync_record(make_record("123"))

        assert result.status == RecordStatus.SUCCESS
        assert store.rows["123"]["sync_status"] == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_variant_update_failure_does_not_fail_update(self, reconciler, store, storefront, make_record):
        store.rows["123"] = {
            "external_id": "123",
            "sync_status": SyncStatus.ERROR,
            "destination_product_id": PRODUCT_GID,
        }
        storefront.update_variant.side_effect = FatalApiError("bad price", service="storefront")

        result = await reconciler.sync_record(make_record("123"))

        assert result.status == RecordStatus.SUCCESS
        storefront.find_product_by_external_id_tag.assert_not_awaited()
        storefront.set_inventory_level.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blocked_record_is_skipped_by_filter(self, reconciler, store, storefront, make_record):
        result = await reconciler.sync_record(make_record("123", name="Replica bag"))

        assert result.status == RecordStatus.SKIPPED_FILTER
        assert store.rows["123"]["sync_status"] == SyncStatus.SKIPPED_FILTER
        storefront.create_product.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_rate_records_error(self, reconciler, store, rate_provider, storefront, make_record):
        rate_provider.get_rate.side_effect = ConfigurationError("no rate")

        result = await reconciler.sync_record(make_record("123"))

        assert result.status == RecordStatus.ERROR
        assert store.rows["123"]["sync_status"] == SyncStatus.ERROR
        storefront.create_product.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_price_failure_records_error(
        self, reconciler, store, rate_provider, storefront, make_record
    ):
        rate_provider.get_rate.side_effect = AttributeError("'NoneType' object has no attribute 'get'")

        result = await reconciler.sync_record(make_record("123"))

        assert result.status == RecordStatus.ERROR
        assert store.rows["123"]["sync_status"] == SyncStatus.ERROR
        assert store.rows["123"]["last_error_message"].startswith("Price calculation failed")
        storefront.create_product.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payload_build_failure_records_error(self, reconciler, store, storefront, make_record):
        reconciler.transformer = Mock()
        reconciler.transformer.build_product_payload.side_effect = TypeError("bad payload")

        result = await reconciler.sync_record(make_record("123"))

        assert result.status == RecordStatus.ERROR
        assert store.rows["123"]["sync_status"] == SyncStatus.ERROR
        storefront.create_product.assert_not_awaited()

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_rate_response_uses_static_rate(
        self, store, storefront, marketplace_settings, storefront_settings, pricing_settings, make_record
    ):
        respx.get(RATES_URL).mock(return_value=httpx.Response(200, json={"rates": None}))
        pricing = pricing_settings.model_copy(update={"exchange_rate_url": RATES_URL})
        reconciler = CatalogReconciler(
            store=store,
            storefront=storefront,
            rate_provider=ExchangeRateProvider(pricing),
            transformer=ProductTransformer(marketplace_settings, storefront_settings),
            pricing=pricing,
        )

        summary = await reconciler.sync_batch([make_record("123")])

        assert summary.succeeded == 1
        assert summary.errored == 0
        assert store.rows["123"]["sync_status"] == SyncStatus.SYNCED
        assert store.rows["123"]["listed_price"] == Decimal("11.00")

    @pytest.mark.asyncio
    async def test_missing_product_id_records_error(self, reconciler, store, storefront, make_record):
        storefront.create_product.return_value = {}

        result = await reconciler.sync_record(make_record("123"))

        assert result.status == RecordStatus.ERROR
        assert store.rows["123"]["sync_status"] == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, reconciler, store, make_record):
        store.fail_on = "123"
        with pytest.raises(DatabaseError):
            await reconciler.sync_record(make_record("123"))

    @pytest.mark.asyncio
    async def test_force_resync_ignores_timestamps(self, reconciler, storefront, make_record):
        record = make_record("123", updated_at=T0)
        await reconciler.sync_record(record)
        reconciler.force_resync = True

        result = await reconciler.sync_record(record)

        assert result.status == RecordStatus.SUCCESS
        assert result.operation == "update"


class TestSyncBatch:
    """Tests for batch reconciliation."""

    @pytest.mark.asyncio
    async def test_summary_counts(self, reconciler, storefront, make_record):
        storefront.create_product.side_effect = [
            {"id": "gid://shopify/Product/1"},
            FatalApiError("rejected", service="storefront"),
        ]
        records = [
            make_record("1"),
            make_record("2"),
            make_record("3", name="Replica"),
        ]

        summary = await reconciler.sync_batch(records)

        assert summary.total == 3
        assert summary.succeeded == 1
        assert summary.errored == 1
        assert summary.skipped_filter == 1
        assert summary.skipped_unchanged == 0

    @pytest.mark.asyncio
    async def test_empty_batch(self, reconciler):
        summary = await reconciler.sync_batch([])
        assert summary.total == 0

    @pytest.mark.asyncio
    async def test_concurrency_bounds_in_flight_records(self, reconciler, storefront, make_record):
        in_flight = 0
        peak = 0

        async def create(*args, **kwargs):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return {"id": PRODUCT_GID}

        storefront.create_product.side_effect = create
        reconciler.concurrency = 2

        summary = await reconciler.sync_batch([make_record(str(i)) for i in range(5)])

        assert summary.succeeded == 5
        assert peak == 2

    @pytest.mark.asyncio
    async def test_store_failure_aborts_after_group_settles(self, reconciler, store, storefront, make_record):
        store.fail_on = "2"
        reconciler.concurrency = 2

        with pytest.raises(DatabaseError):
            await reconciler.sync_batch([make_record(str(i)) for i in range(1, 6)])

        # Record 1 shared a group with record 2 and completed; later groups never ran
        assert store.rows["1"]["sync_status"] == SyncStatus.SYNCED
        assert "3" not in store.rows

    def test_concurrency_must_be_positive(self, store, storefront, rate_provider, pricing_settings):
        with pytest.raises(ValueError):
            CatalogReconciler(store, storefront, rate_provider, Mock(), pricing_settings, concurrency=0)
