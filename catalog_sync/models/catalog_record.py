"""Pydantic model for a validated catalog feed row."""
from pydantic import BaseModel, Field
from decimal import Decimal
from datetime import datetime
from typing import List, Optional

AVAILABLE_SALE_STATUS = "SELLING"


class CatalogRecord(BaseModel):
    """One accepted row of the marketplace catalog feed.

    Produced by the row normalizer; every field has already been coerced from
    the raw CSV string. Rows that cannot be coerced never become a record.
    """

    external_id: str = Field(..., min_length=1, max_length=64, description="Marketplace product ID")
    name: str = Field(..., min_length=1)
    description: str = ""
    quantity: int = Field(default=0, ge=0)
    price: Decimal = Field(..., ge=0, description="Price in source currency")
    shipping_fee: Decimal = Field(default=Decimal("0"), ge=0)
    condition: str = "USED"
    sale_status: str = AVAILABLE_SALE_STATUS
    keywords: List[str] = Field(default_factory=list)
    images: Optional[str] = Field(
        default=None,
        description="One URL or a comma-separated list; may contain a {res} placeholder"
    )
    category_id: str = ""
    category_name: str = ""
    brand_id: str = ""
    options_raw: Optional[str] = None
    seller_uid: str = ""
    updated_at: datetime
    created_at: Optional[datetime] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "external_id": "123",
                "name": "Vintage film camera",
                "quantity": 1,
                "price": "10000",
                "shipping_fee": "3000",
                "sale_status": "SELLING",
                "updated_at": "2024-01-01T00:00:00Z",
            }
        }
    }
