"""Pydantic validation models."""
from catalog_sync.models.catalog_record import CatalogRecord, AVAILABLE_SALE_STATUS
from catalog_sync.models.order_event import DestinationOrderEvent, OrderLineItem
from catalog_sync.models.sync_results import (
    RecordStatus,
    RecordResult,
    SyncSummary,
    CatalogSyncReport,
    OrderPlacementResult,
    CostBreakdown,
)

__all__ = [
    "CatalogRecord",
    "AVAILABLE_SALE_STATUS",
    "DestinationOrderEvent",
    "OrderLineItem",
    "RecordStatus",
    "RecordResult",
    "SyncSummary",
    "CatalogSyncReport",
    "OrderPlacementResult",
    "CostBreakdown",
]
