"""Reconciliation of catalog records against the storefront.

Per record: record the attempt, skip if unchanged, resolve the storefront
product, price it, create or update it, attach media, record the outcome.
A failing record is recorded as ERROR and never aborts the batch; only sync
state store failures propagate.
"""
import asyncio
import traceback
from decimal import Decimal
from typing import List, Optional, Sequence

import structlog

from catalog_sync.config import PricingSettings
from catalog_sync.db.models import SyncStatus
from catalog_sync.errors import (
    DatabaseError,
    DataIntegrityError,
)
from catalog_sync.models import CatalogRecord, RecordResult, RecordStatus, SyncSummary
from catalog_sync.services.exchange_rate import ExchangeRateProvider
from catalog_sync.services.pricing import to_destination_price
from catalog_sync.services.product_transformer import ProductPayload, ProductTransformer
from catalog_sync.services.storefront_client import StorefrontClient
from catalog_sync.services.sync_state import (
    MAX_ERROR_MESSAGE_LENGTH,
    MAX_ERROR_STACK_LENGTH,
    SyncOutcome,
    SyncStateStore,
    should_skip_unchanged,
)

logger = structlog.get_logger(__name__)


class CatalogReconciler:
    """Applies catalog records to the storefront in bounded-concurrency groups.

    Args:
        store: Sync state store
        storefront: Storefront client (retries are applied inside the client)
        rate_provider: Exchange rate source
        transformer: Builds product, variant and media inputs
        pricing: Markup and handling fee
        concurrency: Records reconciled concurrently per group (>= 1)
        import_collection_id: Collection every imported product joins
        force_resync: Ignore stored timestamps and always re-send
    """

    def __init__(
        self,
        store: SyncStateStore,
        storefront: StorefrontClient,
        rate_provider: ExchangeRateProvider,
        transformer: ProductTransformer,
        pricing: PricingSettings,
        concurrency: int = 1,
        import_collection_id: Optional[str] = None,
        force_resync: bool = False,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.store = store
        self.storefront = storefront
        self.rate_provider = rate_provider
        self.transformer = transformer
        self.pricing = pricing
        self.concurrency = concurrency
        self.import_collection_id = import_collection_id
        self.force_resync = force_resync

    async def _resolve_destination_id(self, stored_id: Optional[str], external_id: str, log) -> Optional[str]:
        if stored_id:
            return stored_id
        try:
            product = await self.storefront.find_product_by_external_id_tag(external_id)
        except Exception as e:
            # Lookup is a fallback only; treat failure as not found
            log.warning("destination_lookup_failed", error=str(e))
            return None
        if product and product.get("id"):
            log.info("destination_found_by_tag", product_id=product["id"])
            return product["id"]
        return None

    async def _compute_price(self, record: CatalogRecord) -> str:
        rate = await self.rate_provider.get_rate()
        return to_destination_price(
            record.price,
            rate,
            self.pricing.markup_percentage,
            self.pricing.handling_fee,
        )

    async def _update_existing(self, product_id: str, payload: ProductPayload, log) -> dict:
        variant = None
        try:
            variant = await self.storefront.get_first_variant(product_id)
            if variant is None:
                log.warning("destination_variant_missing", product_id=product_id)
        except Exception as e:
            log.error("destination_variant_query_failed", product_id=product_id, error=str(e))

        product = await self.storefront.update_product(
            {**payload.product_input, "id": product_id},
            join_collection=self.import_collection_id,
        )

        if variant is not None:
            info = payload.variant
            try:
                await self.storefront.update_variant(
                    variant["id"],
                    price=info.price,
                    inventory_policy=info.inventory_policy,
                    sku=info.sku,
                    product_id=product_id,
                )
                inventory_item_id = (variant.get("inventoryItem") or {}).get("id")
                if inventory_item_id and info.location_id:
                    await self.storefront.set_inventory_level(
                        inventory_item_id, info.location_id, info.quantity
                    )
            except Exception as e:
                log.error("destination_variant_update_failed", product_id=product_id, error=str(e))
        return product

    async def _attach_media(self, product_id: str, record: CatalogRecord, log) -> None:
        media = self.transformer.build_media_inputs(record.images, record.name)
        if not media:
            return
        try:
            result = await self.storefront.attach_media(product_id, media)
            log.info(
                "media_attached",
                product_id=product_id,
                requested=len(media),
                failed=len(result.get("userErrors") or []),
            )
        except Exception as e:
            log.error("media_attach_failed", product_id=product_id, error=str(e))

    async def _record_error(self, record: CatalogRecord, message: str, stack: Optional[str] = None) -> None:
        await self.store.record_outcome(
            record.external_id,
            SyncOutcome(
                status=SyncStatus.ERROR,
                source_updated_at=record.updated_at,
                error_message=message[:MAX_ERROR_MESSAGE_LENGTH],
                error_stack=stack[:MAX_ERROR_STACK_LENGTH] if stack else None,
            ),
        )

    async def sync_record(self, record: CatalogRecord) -> RecordResult:
        """Reconcile one record.

        Raises:
            DatabaseError: If the sync state store fails; every other failure
                is recorded and returned as an ERROR result
        """
        external_id = record.external_id
        log = logger.bind(external_id=external_id)

        state = await self.store.upsert_attempt(record)
        if should_skip_unchanged(state, record, self.force_resync):
            log.debug("record_skipped_unchanged")
            return RecordResult(external_id=external_id, status=RecordStatus.SKIPPED_UNCHANGED)

        destination_id = await self._resolve_destination_id(
            state.destination_product_id, external_id, log
        )

        try:
            price = await self._compute_price(record)
            payload = self.transformer.build_product_payload(record, price)
        except DatabaseError:
            raise
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            log.error("record_price_failed", error=message, error_type=type(e).__name__)
            await self._record_error(
                record, f"Price calculation failed: {message}", traceback.format_exc()
            )
            return RecordResult(external_id=external_id, status=RecordStatus.ERROR, message=message)

        if payload is None:
            await self.store.record_outcome(
                external_id,
                SyncOutcome(status=SyncStatus.SKIPPED_FILTER, source_updated_at=record.updated_at),
            )
            return RecordResult(external_id=external_id, status=RecordStatus.SKIPPED_FILTER)

        operation = "update" if destination_id else "create"
        try:
            if destination_id:
                product = await self._update_existing(destination_id, payload, log)
            else:
                product = await self.storefront.create_product(
                    payload.product_input,
                    self.import_collection_id,
                    payload.variant,
                )
            product_id = (product or {}).get("id")
            if not product_id:
                raise DataIntegrityError(f"Storefront returned no product ID after {operation}")

            await self._attach_media(product_id, record, log)

            await self.store.record_outcome(
                external_id,
                SyncOutcome(
                    status=SyncStatus.SYNCED,
                    source_updated_at=record.updated_at,
                    destination_product_id=product_id,
                    destination_handle=product.get("handle"),
                    listed_price=Decimal(price),
                ),
            )
        except DatabaseError:
            raise
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            log.error("record_sync_failed", operation=operation, error=message)
            await self._record_error(record, message, traceback.format_exc())
            return RecordResult(
                external_id=external_id,
                status=RecordStatus.ERROR,
                operation=operation,
                destination_product_id=destination_id,
                message=message,
            )

        log.info("record_synced", operation=operation, product_id=product_id, price=price)
        return RecordResult(
            external_id=external_id,
            status=RecordStatus.SUCCESS,
            operation=operation,
            destination_product_id=product_id,
        )

    async def sync_batch(self, records: Sequence[CatalogRecord]) -> SyncSummary:
        """Reconcile records in groups of `concurrency`, each group fully awaited.

        Raises:
            DatabaseError: After the current group settles, if any record hit
                a sync state store failure
        """
        summary = SyncSummary()
        if not records:
            logger.info("sync_batch_empty")
            return summary

        for start in range(0, len(records), self.concurrency):
            group: List[CatalogRecord] = list(records[start:start + self.concurrency])
            results = await asyncio.gather(
                *(self.sync_record(record) for record in group),
                return_exceptions=True,
            )
            fatal: Optional[BaseException] = None
            for record, result in zip(group, results):
                if isinstance(result, RecordResult):
                    summary.add(result.status)
                    continue
                if isinstance(result, DatabaseError) or not isinstance(result, Exception):
                    fatal = fatal or result
                    continue
                logger.error(
                    "record_sync_unexpected_error",
                    external_id=record.external_id,
                    error=str(result),
                )
                summary.add(RecordStatus.ERROR)
            if fatal is not None:
                logger.error("sync_batch_aborted", processed=summary.total, error=str(fatal))
                raise fatal

        logger.info("sync_batch_completed", **summary.model_dump())
        return summary
