"""Placement of marketplace orders for storefront orders.

Each storefront line item whose SKU is a linked SKU is ordered from the
marketplace independently. Outcomes are written back to the storefront order
as tags and metafields; a failing item never stops the remaining ones.
"""
import json
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from catalog_sync.config import PricingSettings
from catalog_sync.db.models import OrderClaimStatus
from catalog_sync.errors import (
    CatalogSyncError,
    DataIntegrityError,
    InvalidOrder,
    ValidationError,
)
from catalog_sync.models import DestinationOrderEvent, OrderPlacementResult
from catalog_sync.services.exchange_rate import ExchangeRateProvider
from catalog_sync.services.linked_sku import DEFAULT_PREFIX, try_decode_linked_sku
from catalog_sync.services.marketplace_client import MarketplaceClient
from catalog_sync.services.order_ledger import OrderLedger
from catalog_sync.services.pricing import internal_total_cost
from catalog_sync.services.storefront_client import StorefrontClient

logger = structlog.get_logger(__name__)

METAFIELD_NAMESPACE = "marketplace"
ORDER_PLACED_TAG = "MarketplaceOrderPlaced"
DEFAULT_ORDER_IDENTIFIER_PREFIX = "MarketplaceOrder-"


def _non_negative_int(value: Any, field: str, source_id: str) -> int:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Product {source_id} has an invalid {field}: {value!r}") from e
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"Product {source_id} has an invalid {field}: {value!r}")
    return int(amount)


def build_order_payload(source_id: str, details: Dict[str, Any]) -> Tuple[Dict[str, Any], int]:
    """Build the marketplace order payload for one product.

    The delivery price is always sent as 0; shipping is invoiced separately.

    Returns:
        (payload, actual_shipping_fee)

    Raises:
        ValidationError: If price or shipping fee is missing or invalid
    """
    if details.get("price") is None or details.get("shippingFee") is None:
        raise ValidationError(f"Product {source_id} details lack price or shipping fee")
    price = _non_negative_int(details["price"], "price", source_id)
    shipping_fee = _non_negative_int(details["shippingFee"], "shipping fee", source_id)
    payload = {
        "product": {"id": int(source_id), "price": price},
        "deliveryPrice": 0,
    }
    return payload, shipping_fee


def _metafield(key: str, value: Any, type_: str = "single_line_text_field") -> Dict[str, str]:
    return {"namespace": METAFIELD_NAMESPACE, "key": key, "value": str(value), "type": type_}


class OrderReconciler:
    """Places marketplace orders for the linked items of a storefront order.

    Usage:
        reconciler = OrderReconciler(marketplace, storefront, ledger=ledger)
        result = await reconciler.place_source_orders(webhook_payload)
    """

    def __init__(
        self,
        marketplace: MarketplaceClient,
        storefront: StorefrontClient,
        ledger: Optional[OrderLedger] = None,
        rate_provider: Optional[ExchangeRateProvider] = None,
        pricing: Optional[PricingSettings] = None,
        linked_sku_prefix: str = DEFAULT_PREFIX,
        order_identifier_prefix: str = DEFAULT_ORDER_IDENTIFIER_PREFIX,
    ):
        self.marketplace = marketplace
        self.storefront = storefront
        self.ledger = ledger
        self.rate_provider = rate_provider
        self.pricing = pricing
        self.linked_sku_prefix = linked_sku_prefix
        self.order_identifier_prefix = order_identifier_prefix

    @staticmethod
    def validate_order(order: Union[DestinationOrderEvent, Dict[str, Any]]) -> DestinationOrderEvent:
        if isinstance(order, DestinationOrderEvent):
            return order
        if not isinstance(order, dict):
            raise InvalidOrder("Order event must be an object")
        try:
            return DestinationOrderEvent.model_validate(order)
        except PydanticValidationError as e:
            raise InvalidOrder(f"Invalid order event: {e.errors()[0].get('msg', str(e))}") from e

    async def _internal_cost(self, price: int, shipping_fee: int) -> Optional[Dict[str, Any]]:
        """Advisory cost breakdown; None when no rate is available."""
        if self.rate_provider is None or self.pricing is None:
            return None
        try:
            rate = await self.rate_provider.get_rate()
        except CatalogSyncError as e:
            logger.debug("order_cost_rate_unavailable", error=e.message)
            return None
        breakdown = internal_total_cost(price, shipping_fee, rate, self.pricing.handling_fee)
        return breakdown.model_dump(mode="json") if breakdown else None

    async def _write_tags(self, order_gid: str, tags: List[str], new_tags: List[str], log) -> None:
        """Add new_tags to the running tag list and push it; failures are logged only."""
        for tag in new_tags:
            if tag not in tags:
                tags.append(tag)
        try:
            await self.storefront.update_order(order_gid, tags=list(tags))
        except Exception as e:
            log.error("order_tag_update_failed", tags=new_tags, error=str(e))

    async def _place_item(
        self,
        event: DestinationOrderEvent,
        source_id: str,
        tags: List[str],
        identifier: str,
    ) -> Optional[str]:
        """Place one linked item; return the marketplace order ID or None."""
        log = logger.bind(order_id=event.id, source_id=source_id)
        error_tag = f"{identifier}_Error"
        try:
            details = await self.marketplace.get_product_details(source_id)
            if details is None:
                log.warning("order_item_product_not_found")
                await self._write_tags(
                    event.admin_graphql_api_id, tags, [error_tag, f"PID-{source_id}-NotFound"], log
                )
                return None

            payload, actual_shipping_fee = build_order_payload(source_id, details)
            log.info(
                "order_item_placing",
                price=payload["product"]["price"],
                actual_shipping_fee=actual_shipping_fee,
            )
            created = await self.marketplace.create_order(payload)
        except ValidationError as e:
            log.error("order_item_payload_invalid", error=e.message)
            await self._write_tags(
                event.admin_graphql_api_id, tags, [error_tag, f"PID-{source_id}-MapFail"], log
            )
            return None
        except DataIntegrityError as e:
            log.error("order_item_response_invalid", error=e.message)
            await self._write_tags(
                event.admin_graphql_api_id, tags, [error_tag, f"PID-{source_id}-CreateRespFail"], log
            )
            return None
        except Exception as e:
            log.error("order_item_failed", error=str(e), error_type=type(e).__name__)
            await self._write_tags(
                event.admin_graphql_api_id, tags, [error_tag, f"PID-{source_id}-Exception"], log
            )
            return None

        source_order_id = str(created["id"])
        log.info("order_item_placed", source_order_id=source_order_id)

        metafields = [
            _metafield("order_id", source_order_id),
            _metafield("ordered_pid", source_id),
            _metafield("ordered_item_price", payload["product"]["price"], "number_integer"),
            _metafield("api_sent_shipping_fee", payload["deliveryPrice"], "number_integer"),
            _metafield("actual_shipping_fee", actual_shipping_fee, "number_integer"),
        ]
        cost = await self._internal_cost(payload["product"]["price"], actual_shipping_fee)
        if cost is not None:
            metafields.append(
                {
                    "namespace": METAFIELD_NAMESPACE,
                    "key": f"internal_cost_{source_id}",
                    "value": json.dumps(cost, separators=(",", ":")),
                    "type": "json",
                }
            )

        for tag in (ORDER_PLACED_TAG, identifier, f"MarketplaceOrderID-{source_order_id}"):
            if tag not in tags:
                tags.append(tag)
        try:
            await self.storefront.update_order(
                event.admin_graphql_api_id, tags=list(tags), metafields=metafields
            )
        except Exception as e:
            # The marketplace order exists; only the write-back failed
            log.error("order_writeback_failed", source_order_id=source_order_id, error=str(e))
        return source_order_id

    async def _place_all(self, event: DestinationOrderEvent) -> OrderPlacementResult:
        identifier = f"{self.order_identifier_prefix}{event.id}"
        tags = [t.strip() for t in (event.tags or "").split(",") if t.strip()]

        linked = []
        for item in event.line_items:
            source_id = try_decode_linked_sku(item.sku, self.linked_sku_prefix)
            if source_id is None:
                logger.debug("order_item_not_linked", order_id=event.id, sku=item.sku)
                continue
            linked.append(source_id)

        if not linked:
            logger.info("order_has_no_linked_items", order_id=event.id)
            return OrderPlacementResult(succeeded=False, message="No linked line items")

        source_order_ids: List[str] = []
        for source_id in linked:
            source_order_id = await self._place_item(event, source_id, tags, identifier)
            if source_order_id is not None:
                source_order_ids.append(source_order_id)

        succeeded = bool(source_order_ids)
        if succeeded:
            logger.info("order_placement_completed", order_id=event.id, source_order_ids=source_order_ids)
            message = f"Placed marketplace orders: {', '.join(source_order_ids)}"
        else:
            logger.warning("order_placement_failed", order_id=event.id, linked_items=len(linked))
            message = "No marketplace order could be placed for the linked line items"
        return OrderPlacementResult(
            succeeded=succeeded,
            source_order_ids=source_order_ids,
            message=message,
        )

    async def place_source_orders(
        self,
        order: Union[DestinationOrderEvent, Dict[str, Any]],
    ) -> OrderPlacementResult:
        """Place marketplace orders for every linked item of a storefront order.

        Succeeds iff at least one marketplace order was placed.

        Raises:
            InvalidOrder: If the event lacks an ID, global ID or line items
            DatabaseError: If the idempotency ledger cannot be read or written
        """
        event = self.validate_order(order)
        log = logger.bind(order_id=event.id)

        if self.ledger is not None:
            claim = await self.ledger.claim(event.id, event.admin_graphql_api_id)
            if not claim.claimed:
                log.info("order_already_processed", status=claim.status.value)
                return OrderPlacementResult(
                    succeeded=claim.status == OrderClaimStatus.COMPLETED,
                    source_order_ids=claim.source_order_ids,
                    already_processed=True,
                    message=f"Order already {claim.status.value.lower()}",
                )

        try:
            result = await self._place_all(event)
        except Exception as e:
            if self.ledger is not None:
                await self.ledger.complete(event.id, False, [], str(e))
            raise

        if self.ledger is not None:
            await self.ledger.complete(
                event.id,
                result.succeeded,
                result.source_order_ids,
                None if result.succeeded else result.message,
            )
        return result
