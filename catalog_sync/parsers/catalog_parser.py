"""Marketplace catalog CSV parser.

Rows are read in chunks with pandas (every column as a string) and pushed
through normalize(), which either returns a CatalogRecord or drops the row.
Only the current chunk and the accepted records are held in memory.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd
import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from catalog_sync.errors import ParserError
from catalog_sync.models import AVAILABLE_SALE_STATUS, CatalogRecord

logger = structlog.get_logger(__name__)

# Upper bound of the NUMERIC(14, 2) source amount columns
MAX_SOURCE_AMOUNT = Decimal("999999999999.99")


class ParsedCatalog(BaseModel):
    """Accepted records plus the number of data rows seen."""
    records: List[CatalogRecord] = Field(default_factory=list)
    total_rows: int = 0

    @property
    def valid_records(self) -> int:
        return len(self.records)


def _text(row: Dict[str, Any], *keys: str) -> str:
    """First non-empty value among keys, stripped."""
    for key in keys:
        value = row.get(key)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return ""


def _parse_decimal(value: str) -> Optional[Decimal]:
    if not value:
        return None
    try:
        result = Decimal(value.replace(",", ""))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def _parse_quantity(value: str) -> Optional[int]:
    amount = _parse_decimal(value)
    if amount is None:
        return None
    # Floor keeps fractional negatives such as -0.5 below zero
    return int(amount.to_integral_value(rounding=ROUND_FLOOR))


def _parse_timestamp(value: str) -> Optional[datetime]:
    """Parse a feed timestamp; naive values are taken as UTC.

    Raises:
        ValueError: If the value is present but not a valid timestamp
    """
    if not value:
        return None
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ValueError(f"Invalid timestamp {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize(timezone.utc)
    return ts.to_pydatetime()


class CatalogParser:
    """Streaming normalizer and filter for catalog feed rows.

    A row is dropped when:
    - saleStatus is not SELLING (checked first)
    - pid, name, a numeric price or a valid updatedAt is missing
    - price, quantity or shipping fee is negative
    - price or shipping fee exceeds MAX_SOURCE_AMOUNT
    - a category allow-list is configured and the row's category is not in it
    """

    def __init__(
        self,
        allowed_category_ids: Optional[Iterable[str]] = None,
        chunk_size: int = 5000,
    ):
        self.allowed_category_ids = frozenset(
            str(c).strip() for c in (allowed_category_ids or []) if str(c).strip()
        )
        self.chunk_size = chunk_size

    def normalize(self, raw_row: Dict[str, Any], row_number: int) -> Optional[CatalogRecord]:
        """Coerce one raw CSV row into a CatalogRecord, or None to drop it."""
        pid = _text(raw_row, "pid")
        sale_status = _text(raw_row, "saleStatus").upper()
        if sale_status != AVAILABLE_SALE_STATUS:
            logger.debug("row_skipped_status", row=row_number, pid=pid, sale_status=sale_status)
            return None

        name = _text(raw_row, "name")
        price = _parse_decimal(_text(raw_row, "price"))

        updated_at: Optional[datetime] = None
        created_at: Optional[datetime] = None
        updated_raw = _text(raw_row, "updatedAt")
        created_raw = _text(raw_row, "createdAt")
        try:
            updated_at = _parse_timestamp(updated_raw)
            created_at = _parse_timestamp(created_raw)
        except (ValueError, TypeError, OverflowError):
            logger.warning(
                "row_invalid_dates",
                row=row_number,
                pid=pid,
                updated_at=updated_raw,
                created_at=created_raw,
            )
            updated_at = None
            created_at = None

        if not pid or not name or price is None or updated_at is None:
            logger.warning("row_skipped_missing_fields", row=row_number, pid=pid)
            return None

        quantity_raw = _text(raw_row, "quantity")
        quantity = _parse_quantity(quantity_raw)
        if quantity is None:
            quantity = 0
        # The misspelled column appears in some feed exports
        shipping_fee = _parse_decimal(_text(raw_row, "shippingFee", "shipppingFee"))
        if shipping_fee is None:
            shipping_fee = Decimal("0")

        if price < 0 or quantity < 0 or shipping_fee < 0:
            logger.warning(
                "row_skipped_negative_values",
                row=row_number,
                pid=pid,
                price=str(price),
                quantity=quantity,
                shipping_fee=str(shipping_fee),
            )
            return None

        if price > MAX_SOURCE_AMOUNT or shipping_fee > MAX_SOURCE_AMOUNT:
            logger.warning(
                "row_skipped_amount_out_of_range",
                row=row_number,
                pid=pid,
                price=str(price),
                shipping_fee=str(shipping_fee),
            )
            return None

        category_id = _text(raw_row, "categoryId")
        if self.allowed_category_ids and category_id not in self.allowed_category_ids:
            logger.debug("row_skipped_category", row=row_number, pid=pid, category_id=category_id)
            return None

        keywords_raw = _text(raw_row, "keywords")
        keywords = [k.strip() for k in keywords_raw.split(",") if k.strip()]

        try:
            return CatalogRecord(
                external_id=pid,
                name=name,
                description=_text(raw_row, "description"),
                quantity=quantity,
                price=price,
                shipping_fee=shipping_fee,
                condition=(_text(raw_row, "condition") or "USED").upper(),
                sale_status=sale_status,
                keywords=keywords,
                images=_text(raw_row, "images") or None,
                category_id=category_id,
                category_name=_text(raw_row, "category_name", "categoryName"),
                brand_id=_text(raw_row, "brandId"),
                options_raw=_text(raw_row, "options") or None,
                seller_uid=_text(raw_row, "uid"),
                updated_at=updated_at,
                created_at=created_at,
            )
        except PydanticValidationError as e:
            logger.warning("row_skipped_invalid", row=row_number, pid=pid, error=str(e))
            return None

    def parse_file(self, file_path: Union[str, Path]) -> ParsedCatalog:
        """Read and normalize every row of a feed CSV.

        Raises:
            ParserError: If the file is missing or is not readable as CSV
        """
        path = Path(file_path)
        log = logger.bind(file_path=str(path))
        if not path.exists():
            raise ParserError(f"Catalog file not found: {path}")

        result = ParsedCatalog()
        row_number = 0
        try:
            reader = pd.read_csv(
                path,
                dtype=str,
                keep_default_na=False,
                chunksize=self.chunk_size,
                encoding="utf-8",
            )
            with reader:
                for chunk in reader:
                    for raw_row in chunk.to_dict(orient="records"):
                        row_number += 1
                        record = self.normalize(raw_row, row_number)
                        if record is not None:
                            result.records.append(record)
        except pd.errors.EmptyDataError:
            log.warning("catalog_file_empty")
        except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
            log.error("catalog_parse_failed", row=row_number, error=str(e))
            raise ParserError(f"Failed to parse catalog file {path}: {e}") from e

        result.total_rows = row_number
        log.info(
            "catalog_file_parsed",
            total_rows=result.total_rows,
            valid_records=result.valid_records,
        )
        return result

    async def parse(self, file_path: Union[str, Path]) -> ParsedCatalog:
        """parse_file() off the event loop."""
        return await asyncio.to_thread(self.parse_file, file_path)
