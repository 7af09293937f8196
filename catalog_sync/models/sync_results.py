"""Result models returned by the reconciliation pipelines."""
from pydantic import BaseModel, Field
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional


class RecordStatus(str, Enum):
    """Per-record outcome of a catalog reconciliation."""
    SUCCESS = "success"
    SKIPPED_FILTER = "skipped_filter"
    SKIPPED_UNCHANGED = "skipped_unchanged"
    ERROR = "error"


class RecordResult(BaseModel):
    """Outcome of reconciling a single catalog record."""
    external_id: str
    status: RecordStatus
    operation: Optional[Literal["create", "update"]] = None
    destination_product_id: Optional[str] = None
    message: Optional[str] = None


class SyncSummary(BaseModel):
    """Counts for one syncBatch call."""
    total: int = 0
    succeeded: int = 0
    errored: int = 0
    skipped_filter: int = 0
    skipped_unchanged: int = 0

    def add(self, status: RecordStatus) -> None:
        """Count one record outcome."""
        self.total += 1
        if status == RecordStatus.SUCCESS:
            self.succeeded += 1
        elif status == RecordStatus.SKIPPED_FILTER:
            self.skipped_filter += 1
        elif status == RecordStatus.SKIPPED_UNCHANGED:
            self.skipped_unchanged += 1
        else:
            self.errored += 1


class CatalogSyncReport(SyncSummary):
    """Summary of a full fetch/parse/reconcile run."""
    catalog_type: str
    filename: str
    total_rows: int = 0
    valid_records: int = 0


class OrderPlacementResult(BaseModel):
    """Outcome of placing marketplace orders for one storefront order."""
    succeeded: bool
    source_order_ids: List[str] = Field(default_factory=list)
    already_processed: bool = False
    message: Optional[str] = None


class CostBreakdown(BaseModel):
    """Advisory internal cost of fulfilling an item, in both currencies."""
    item_price_source: Decimal
    shipping_fee_source: Decimal
    handling_fee_source: Decimal
    exchange_rate: Decimal
    item_price_destination: Decimal
    shipping_fee_destination: Decimal
    handling_fee_destination: Decimal
    total_source: Decimal
    total_destination: Decimal
