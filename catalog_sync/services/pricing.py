"""Listing price calculation.

Amounts are handled as Decimal end to end; the listing price is returned as a
fixed-point string with exactly two decimal places.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

import structlog

from catalog_sync.errors import InvalidInput
from catalog_sync.models import CostBreakdown

logger = structlog.get_logger(__name__)

Number = Union[Decimal, int, float, str]

CENTS = Decimal("0.01")


def _to_decimal(value: Number, field: str) -> Decimal:
    """Coerce a numeric input to a finite Decimal or raise InvalidInput."""
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"{field} must be numeric, got {value!r}")
    try:
        result = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError) as e:
        raise InvalidInput(f"{field} must be numeric, got {value!r}") from e
    if not result.is_finite():
        raise InvalidInput(f"{field} must be finite, got {value!r}")
    return result


def to_destination_price(
    source_amount: Number,
    rate: Number,
    markup_percent: Number,
    handling_fee: Number,
) -> str:
    """Convert a source-currency amount to a destination listing price.

    price = source_amount * rate * (1 + markup_percent / 100) + handling_fee,
    rounded half-up to cents.

    Args:
        source_amount: Amount in source currency (>= 0)
        rate: Source -> destination exchange rate (> 0)
        markup_percent: Percentage markup (>= 0)
        handling_fee: Flat fee in destination currency (>= 0)

    Returns:
        Fixed-point decimal string, e.g. "11.00"

    Raises:
        InvalidInput: If any input is non-numeric, NaN or out of bounds
    """
    amount = _to_decimal(source_amount, "source_amount")
    fx = _to_decimal(rate, "rate")
    markup = _to_decimal(markup_percent, "markup_percent")
    fee = _to_decimal(handling_fee, "handling_fee")

    if amount < 0:
        raise InvalidInput(f"source_amount must be >= 0, got {amount}")
    if fx <= 0:
        raise InvalidInput(f"rate must be > 0, got {fx}")
    if markup < 0:
        raise InvalidInput(f"markup_percent must be >= 0, got {markup}")
    if fee < 0:
        raise InvalidInput(f"handling_fee must be >= 0, got {fee}")

    price = amount * fx * (Decimal(1) + markup / Decimal(100)) + fee
    return str(price.quantize(CENTS, rounding=ROUND_HALF_UP))


def internal_total_cost(
    item_price: Number,
    shipping_fee: Number,
    rate: Optional[Number],
    handling_fee: Number,
) -> Optional[CostBreakdown]:
    """Compute the advisory cost of fulfilling one item.

    The handling fee is given in destination currency; item price and shipping
    fee in source currency. Returns None instead of raising on any invalid
    input or missing rate.
    """
    try:
        if rate is None:
            return None
        item = _to_decimal(item_price, "item_price")
        shipping = _to_decimal(shipping_fee, "shipping_fee")
        fx = _to_decimal(rate, "rate")
        fee = _to_decimal(handling_fee, "handling_fee")
        if fx <= 0 or item < 0 or shipping < 0 or fee < 0:
            return None

        fee_source = (fee / fx).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        item_dest = (item * fx).quantize(CENTS, rounding=ROUND_HALF_UP)
        shipping_dest = (shipping * fx).quantize(CENTS, rounding=ROUND_HALF_UP)
        fee_dest = fee.quantize(CENTS, rounding=ROUND_HALF_UP)

        return CostBreakdown(
            item_price_source=item,
            shipping_fee_source=shipping,
            handling_fee_source=fee_source,
            exchange_rate=fx,
            item_price_destination=item_dest,
            shipping_fee_destination=shipping_dest,
            handling_fee_destination=fee_dest,
            total_source=item + shipping + fee_source,
            total_destination=item_dest + shipping_dest + fee_dest,
        )
    except InvalidInput as e:
        logger.debug("internal_cost_unavailable", error=e.message)
        return None
