"""Idempotency ledger for inbound storefront orders."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import and_, or_, select, update, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.db.models import OrderClaimStatus, ProcessedOrder
from catalog_sync.errors import DatabaseError

logger = structlog.get_logger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 900


class OrderClaim(BaseModel):
    """Result of trying to claim an order for processing."""
    order_id: str
    claimed: bool
    status: OrderClaimStatus
    source_order_ids: List[str] = Field(default_factory=list)


class OrderLedger:
    """Claims inbound order IDs so each is placed at most once.

    claim() inserts a PROCESSING row atomically. An existing row can be taken
    over only when it is FAILED, or PROCESSING with a claim older than
    stale_after_seconds (a crashed worker). COMPLETED rows are never
    re-claimed.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        stale_after_seconds: int = DEFAULT_STALE_AFTER_SECONDS,
    ):
        self._session_maker = session_maker
        self.stale_after = timedelta(seconds=stale_after_seconds)

    async def claim(self, order_id: str, order_gid: Optional[str] = None) -> OrderClaim:
        now = datetime.now(timezone.utc)
        stale_cutoff = now - self.stale_after
        stmt = pg_insert(ProcessedOrder).values(
            order_id=order_id,
            order_gid=order_gid,
            status=OrderClaimStatus.PROCESSING,
            source_order_ids=[],
            claimed_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ProcessedOrder.order_id],
            set_={
                "status": OrderClaimStatus.PROCESSING,
                "claimed_at": now,
                "last_error_message": None,
                "updated_at": func.now(),
            },
            where=or_(
                ProcessedOrder.status == OrderClaimStatus.FAILED,
                and_(
                    ProcessedOrder.status == OrderClaimStatus.PROCESSING,
                    ProcessedOrder.claimed_at < stale_cutoff,
                ),
            ),
        ).returning(ProcessedOrder.order_id)

        log = logger.bind(order_id=order_id)
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    claimed_id = (await session.execute(stmt)).scalar_one_or_none()
                    if claimed_id is not None:
                        log.info("order_claimed")
                        return OrderClaim(
                            order_id=order_id,
                            claimed=True,
                            status=OrderClaimStatus.PROCESSING,
                        )
                    existing = (
                        await session.execute(
                            select(ProcessedOrder.status, ProcessedOrder.source_order_ids)
                            .where(ProcessedOrder.order_id == order_id)
                        )
                    ).one()
        except SQLAlchemyError as e:
            log.error("order_claim_failed", error=str(e))
            raise DatabaseError(f"Failed to claim order {order_id}: {e}") from e

        log.info("order_claim_denied", status=existing.status.value)
        return OrderClaim(
            order_id=order_id,
            claimed=False,
            status=existing.status,
            source_order_ids=list(existing.source_order_ids or []),
        )

    async def complete(
        self,
        order_id: str,
        succeeded: bool,
        source_order_ids: List[str],
        error_message: Optional[str] = None,
    ) -> None:
        """Store the processing result; a failed order stays re-claimable."""
        status = OrderClaimStatus.COMPLETED if succeeded else OrderClaimStatus.FAILED
        stmt = (
            update(ProcessedOrder)
            .where(ProcessedOrder.order_id == order_id)
            .values(
                status=status,
                source_order_ids=list(source_order_ids),
                last_error_message=error_message[:1000] if error_message else None,
                completed_at=datetime.now(timezone.utc),
                updated_at=func.now(),
            )
        )
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("order_complete_failed", order_id=order_id, error=str(e))
            raise DatabaseError(f"Failed to complete order {order_id}: {e}") from e

        logger.info("order_ledger_updated", order_id=order_id, status=status.value)
