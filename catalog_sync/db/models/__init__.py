"""Database models for catalog and order reconciliation."""
from catalog_sync.db.models.synced_product import SyncedProduct, SyncStatus
from catalog_sync.db.models.processed_order import ProcessedOrder, OrderClaimStatus

__all__ = [
    "SyncedProduct",
    "SyncStatus",
    "ProcessedOrder",
    "OrderClaimStatus",
]
