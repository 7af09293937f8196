"""Pydantic models for inbound storefront order events."""
from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import List, Optional


class OrderLineItem(BaseModel):
    """A line item of a storefront order."""

    sku: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"))
    quantity: int = 1
    title: Optional[str] = None

    model_config = {"extra": "ignore"}


class DestinationOrderEvent(BaseModel):
    """Order-created webhook payload, as forwarded by the webhook layer.

    Attributes:
        id: Storefront numeric order ID (idempotency key)
        admin_graphql_api_id: Storefront global ID used for order updates
        line_items: Non-empty list of purchased items
    """

    id: str = Field(..., min_length=1)
    admin_graphql_api_id: str = Field(..., min_length=1)
    line_items: List[OrderLineItem] = Field(..., min_length=1)
    tags: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Webhooks deliver the numeric ID as an integer."""
        return str(v) if v is not None else v

    model_config = {"extra": "ignore"}
