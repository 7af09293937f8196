"""SyncedProduct ORM model: one row of reconciliation state per external product ID."""
from sqlalchemy import String, Text, Integer, Numeric, DateTime, Enum as SQLEnum, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db.base import Base, UUIDMixin, TimestampMixin
from enum import Enum as PyEnum
from decimal import Decimal
from datetime import datetime


class SyncStatus(PyEnum):
    """Outcome of the most recent reconciliation attempt.

    PENDING -> SYNCED | SKIPPED_FILTER | ERROR; SYNCED -> SYNCED | ERROR;
    ERROR -> SYNCED; SKIPPED_FILTER -> SYNCED. No state is terminal.
    """
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    SKIPPED_FILTER = "SKIPPED_FILTER"
    ERROR = "ERROR"


class SyncedProduct(Base, UUIDMixin, TimestampMixin):
    """Persistent reconciliation record for a marketplace product.

    Attributes:
        external_id: Marketplace product ID (unique, upsert key)
        destination_product_id: Storefront product GID, null until first create
        destination_handle: Storefront product handle
        listed_price: Last price written to the storefront
        source_name / source_price / source_shipping_fee: Snapshot of the last feed row
        source_updated_at: Feed timestamp of the last completed attempt
        sync_status: See SyncStatus
        last_error_message / last_error_stack: Truncated failure details
        attempt_count: Attempts since the last success
        success_count: Total successful syncs
    """

    __tablename__ = "synced_products"
    __table_args__ = (
        CheckConstraint('attempt_count >= 0', name='check_attempt_count_non_negative'),
        CheckConstraint('success_count >= 0', name='check_success_count_non_negative'),
    )

    external_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True
    )
    destination_product_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    destination_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    listed_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    source_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    source_shipping_fee: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    source_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # values_callable keeps the stored values identical to the enum values
    sync_status: Mapped[SyncStatus] = mapped_column(
        SQLEnum(
            SyncStatus,
            name="sync_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=False,
        server_default=SyncStatus.PENDING.value,
        index=True
    )
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)

    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<SyncedProduct(external_id='{self.external_id}', status='{self.sync_status.value}')>"
