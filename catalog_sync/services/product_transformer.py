"""Mapping of catalog records to storefront product and media inputs."""
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import urlsplit

import structlog
from pydantic import BaseModel, Field

from catalog_sync.config import MarketplaceSettings, StorefrontSettings
from catalog_sync.models import CatalogRecord
from catalog_sync.services.linked_sku import encode_linked_sku

logger = structlog.get_logger(__name__)

IMPORT_TAG = "marketplace_import"
PID_TAG_PREFIX = "marketplace_pid:"
KPOP_TAG = "K-Pop"
KIDULT_TAG = "Kidult"

MAX_ALT_LENGTH = 250
MAX_MEDIA_ITEMS = 250
IMAGE_EXTENSIONS = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp)$", re.IGNORECASE)
KNOWN_IMAGE_CDNS = ("cloudinary.com", "imgix.net", "amazonaws.com", "googleusercontent.com")
RESOLUTION_PLACEHOLDER = "{res}"


def pid_tag(external_id: str) -> str:
    """Tag identifying the storefront product of a marketplace product."""
    return f"{PID_TAG_PREFIX}{external_id}"


class VariantInfo(BaseModel):
    """Variant and inventory fields applied after the product itself."""
    price: str
    sku: str
    inventory_policy: str = Field(pattern="^(DENY|CONTINUE)$")
    quantity: int = Field(ge=0)
    location_id: Optional[str] = None


class ProductPayload(BaseModel):
    """Everything needed to create or update one storefront product."""
    product_input: Dict[str, Any]
    variant: VariantInfo


class ProductTransformer:
    """Builds storefront inputs from catalog records."""

    def __init__(
        self,
        marketplace_settings: MarketplaceSettings,
        storefront_settings: StorefrontSettings,
    ):
        self.marketplace = marketplace_settings
        self.storefront = storefront_settings

    @staticmethod
    def _matches_any(keywords: Iterable[str], *texts: str) -> bool:
        haystacks = [t.lower() for t in texts if t]
        for keyword in keywords:
            needle = keyword.strip().lower()
            if needle and any(needle in h for h in haystacks):
                return True
        return False

    def is_blocked(self, record: CatalogRecord) -> bool:
        return self._matches_any(self.marketplace.blocked_keywords, record.name, record.description)

    def inventory_policy(self, quantity: int) -> str:
        """DENY unless backorders are enabled and the item is in stock."""
        if self.storefront.allow_backorder and quantity > 0:
            return "CONTINUE"
        return "DENY"

    def build_product_payload(self, record: CatalogRecord, price: str) -> Optional[ProductPayload]:
        """Build the product input and variant info for record listed at price.

        Returns None when the record matches a blocked keyword.
        """
        log = logger.bind(external_id=record.external_id)
        if self.is_blocked(record):
            log.info("product_blocked_by_keyword")
            return None

        tags = [IMPORT_TAG, pid_tag(record.external_id)]
        themed = (record.name, record.description, record.category_name)
        if self._matches_any(self.marketplace.kpop_keywords, *themed):
            tags.append(KPOP_TAG)
        if self._matches_any(self.marketplace.kidult_keywords, *themed):
            tags.append(KIDULT_TAG)

        if record.options_raw:
            try:
                options = json.loads(record.options_raw)
                if isinstance(options, list) and options:
                    log.info("product_has_options", options=options)
            except (json.JSONDecodeError, TypeError) as e:
                log.warning("product_options_unparsable", options_raw=record.options_raw, error=str(e))

        product_input = {
            "title": record.name,
            "descriptionHtml": record.description
            or f"Imported from marketplace. Product ID: {record.external_id}",
            "vendor": self.marketplace.default_vendor,
            "productType": record.category_name or self.marketplace.default_product_type,
            "tags": list(dict.fromkeys(tags)),
            "status": "ACTIVE",
            "publishedAt": datetime.now(timezone.utc).isoformat(),
        }
        variant = VariantInfo(
            price=price,
            sku=encode_linked_sku(record.external_id, self.marketplace.linked_sku_prefix),
            inventory_policy=self.inventory_policy(record.quantity),
            quantity=record.quantity,
            location_id=self.storefront.default_location_id,
        )
        return ProductPayload(product_input=product_input, variant=variant)

    def _normalize_image_url(self, url: str) -> Optional[str]:
        url = url.strip()
        if not url:
            return None
        if url.startswith("http://"):
            url = "https://" + url[len("http://"):]
        url = url.replace(RESOLUTION_PLACEHOLDER, self.marketplace.image_resolution)
        if not url.startswith("https://"):
            return None

        try:
            parts = urlsplit(url)
        except ValueError:
            return None
        host = (parts.hostname or "").lower()
        if not host:
            return None
        if any(h.lower() in host for h in self.marketplace.image_hosts):
            return url
        if IMAGE_EXTENSIONS.search(parts.path):
            return url
        if any(cdn in host for cdn in KNOWN_IMAGE_CDNS):
            return url
        return None

    def build_media_inputs(
        self,
        raw_images: Union[str, List[str], None],
        alt: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        """Turn the feed's image reference into storefront media inputs."""
        if not raw_images:
            return []
        candidates = raw_images.split(",") if isinstance(raw_images, str) else list(raw_images)
        alt_text = (alt or "Product image")[:MAX_ALT_LENGTH]

        media: List[Dict[str, str]] = []
        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            url = self._normalize_image_url(candidate)
            if url is None:
                logger.debug("image_url_rejected", url=candidate)
                continue
            media.append({"originalSource": url, "mediaContentType": "IMAGE", "alt": alt_text})
            if len(media) >= MAX_MEDIA_ITEMS:
                break
        return media
