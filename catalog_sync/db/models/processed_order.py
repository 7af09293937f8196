"""ProcessedOrder ORM model: idempotency ledger for inbound storefront orders."""
from sqlalchemy import String, Text, DateTime, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, TimestampMixin
from enum import Enum as PyEnum
from datetime import datetime
from typing import List


class OrderClaimStatus(PyEnum):
    """Processing state of an inbound order."""
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ProcessedOrder(Base, TimestampMixin):
    """One row per inbound storefront order ID.

    A COMPLETED row means at least one marketplace order was placed and the
    event must not be processed again.
    """

    __tablename__ = "processed_orders"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_gid: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[OrderClaimStatus] = mapped_column(
        SQLEnum(
            OrderClaimStatus,
            name="order_claim_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=False,
        index=True
    )
    source_order_ids: Mapped[List[str]] = mapped_column(
        JSONB,
        nullable=False,
        server_default="[]",
    )
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ProcessedOrder(order_id='{self.order_id}', status='{self.status.value}')>"
