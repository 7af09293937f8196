"""Persistent per-product reconciliation state.

Every attempt is recorded before any remote call is made, and its outcome
after; the stored feed timestamp drives the skip-unchanged decision.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.db.models import SyncedProduct, SyncStatus
from catalog_sync.errors import DatabaseError
from catalog_sync.models import CatalogRecord

logger = structlog.get_logger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 1000
MAX_ERROR_STACK_LENGTH = 1000


class SyncState(BaseModel):
    """Detached view of a SyncedProduct row."""
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    destination_product_id: Optional[str] = None
    destination_handle: Optional[str] = None
    listed_price: Optional[Decimal] = None
    source_updated_at: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.PENDING
    attempt_count: int = 0
    success_count: int = 0
    last_error_message: Optional[str] = None


class SyncOutcome(BaseModel):
    """Result of one attempt, as written by record_outcome()."""
    status: SyncStatus
    source_updated_at: Optional[datetime] = None
    destination_product_id: Optional[str] = None
    destination_handle: Optional[str] = None
    listed_price: Optional[Decimal] = None
    error_message: Optional[str] = None
    error_stack: Optional[str] = None


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value if len(value) <= limit else value[:limit]


def should_skip_unchanged(
    state: Optional[SyncState],
    record: CatalogRecord,
    force_resync: bool = False,
) -> bool:
    """True iff the product is SYNCED and no newer feed data has arrived."""
    if force_resync or state is None:
        return False
    if state.sync_status != SyncStatus.SYNCED or state.source_updated_at is None:
        return False
    return state.source_updated_at >= record.updated_at


_STATE_COLUMNS = (
    SyncedProduct.external_id,
    SyncedProduct.destination_product_id,
    SyncedProduct.destination_handle,
    SyncedProduct.listed_price,
    SyncedProduct.source_updated_at,
    SyncedProduct.sync_status,
    SyncedProduct.attempt_count,
    SyncedProduct.success_count,
    SyncedProduct.last_error_message,
)


class SyncStateStore:
    """PostgreSQL-backed store of SyncedProduct rows, keyed by external ID."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, external_id: str) -> Optional[SyncState]:
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(*_STATE_COLUMNS).where(SyncedProduct.external_id == external_id)
                )
                row = result.one_or_none()
        except SQLAlchemyError as e:
            logger.error("sync_state_read_failed", external_id=external_id, error=str(e))
            raise DatabaseError(f"Failed to read sync state for {external_id}: {e}") from e
        return SyncState.model_validate(row._asdict()) if row else None

    async def upsert_attempt(self, record: CatalogRecord) -> SyncState:
        """Record an attempt for record.external_id and return the current state.

        Creates the row as PENDING if absent, refreshes the source snapshot
        and increments attempt_count. The stored source_updated_at is left
        alone; it only moves when an outcome is recorded.
        """
        now = datetime.now(timezone.utc)
        stmt = pg_insert(SyncedProduct).values(
            external_id=record.external_id,
            source_name=record.name[:500],
            source_price=record.price,
            source_shipping_fee=record.shipping_fee,
            sync_status=SyncStatus.PENDING,
            attempt_count=1,
            last_attempt_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SyncedProduct.external_id],
            set_={
                "source_name": stmt.excluded.source_name,
                "source_price": stmt.excluded.source_price,
                "source_shipping_fee": stmt.excluded.source_shipping_fee,
                "attempt_count": SyncedProduct.attempt_count + 1,
                "last_attempt_at": stmt.excluded.last_attempt_at,
                "updated_at": func.now(),
            },
        ).returning(*_STATE_COLUMNS)

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    row = result.one()
        except SQLAlchemyError as e:
            logger.error("sync_attempt_record_failed", external_id=record.external_id, error=str(e))
            raise DatabaseError(
                f"Failed to record sync attempt for {record.external_id}: {e}"
            ) from e

        return SyncState.model_validate(row._asdict())

    async def record_outcome(self, external_id: str, outcome: SyncOutcome) -> None:
        """Write the outcome of the current attempt.

        SYNCED clears error fields, resets attempt_count and bumps
        success_count; ERROR stores the truncated message and stack;
        SKIPPED_FILTER only moves the status and timestamp.
        """
        now = datetime.now(timezone.utc)
        values = {
            "sync_status": outcome.status,
            "source_updated_at": outcome.source_updated_at,
            "updated_at": func.now(),
        }
        if outcome.status == SyncStatus.SYNCED:
            values.update(
                last_error_message=None,
                last_error_stack=None,
                attempt_count=0,
                success_count=SyncedProduct.success_count + 1,
                last_success_at=now,
                listed_price=outcome.listed_price,
            )
            if outcome.destination_product_id:
                values["destination_product_id"] = outcome.destination_product_id
            if outcome.destination_handle:
                values["destination_handle"] = outcome.destination_handle
        elif outcome.status == SyncStatus.ERROR:
            values.update(
                last_error_message=_truncate(outcome.error_message, MAX_ERROR_MESSAGE_LENGTH),
                last_error_stack=_truncate(outcome.error_stack, MAX_ERROR_STACK_LENGTH),
            )
            if outcome.destination_product_id:
                values["destination_product_id"] = outcome.destination_product_id

        stmt = (
            update(SyncedProduct)
            .where(SyncedProduct.external_id == external_id)
            .values(**values)
        )
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("sync_outcome_record_failed", external_id=external_id, error=str(e))
            raise DatabaseError(f"Failed to record sync outcome for {external_id}: {e}") from e

        logger.debug("sync_outcome_recorded", external_id=external_id, status=outcome.status.value)
