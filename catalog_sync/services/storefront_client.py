"""Storefront Admin GraphQL client.

Every request goes through the retry layer: HTTP 429/5xx, network failures
and THROTTLED GraphQL errors are retried, while other HTTP errors, GraphQL
errors and mutation userErrors are fatal.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from catalog_sync.config import StorefrontSettings
from catalog_sync.errors import (
    ConfigurationError,
    DataIntegrityError,
    FatalApiError,
    TransientApiError,
)
from catalog_sync.services.product_transformer import VariantInfo, pid_tag
from catalog_sync.services.retry import (
    THROTTLED_CODE,
    RetryPolicy,
    is_retryable_status,
    parse_retry_after,
    with_retry,
)

logger = structlog.get_logger(__name__)

SERVICE_NAME = "storefront"
ONLINE_STORE_CHANNEL_NAMES = ("online store",)

PRODUCT_FIELDS = """
    id
    title
    handle
    status
    variants(first: 5) {
      edges {
        node {
          id
          sku
          price
          inventoryItem { id }
        }
      }
    }
"""

PRODUCT_CREATE = """
mutation productCreate($input: ProductInput!) {
  productCreate(input: $input) {
    product { %s }
    userErrors { field message }
  }
}
""" % PRODUCT_FIELDS

PRODUCT_UPDATE = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { %s }
    userErrors { field message }
  }
}
""" % PRODUCT_FIELDS

PRODUCT_FIRST_VARIANT = """
query productFirstVariant($id: ID!) {
  product(id: $id) {
    variants(first: 1) {
      edges { node { id inventoryItem { id } } }
    }
  }
}
"""

VARIANT_PRODUCT = """
query variantProduct($id: ID!) {
  productVariant(id: $id) { product { id } }
}
"""

VARIANTS_BULK_UPDATE = """
mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants { id price inventoryPolicy }
    userErrors { field message }
  }
}
"""

INVENTORY_SET_ON_HAND = """
mutation inventorySetOnHandQuantities($input: InventorySetOnHandQuantitiesInput!) {
  inventorySetOnHandQuantities(input: $input) {
    inventoryAdjustmentGroup { createdAt reason }
    userErrors { field message code }
  }
}
"""

PRODUCT_CREATE_MEDIA = """
mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {
  productCreateMedia(productId: $productId, media: $media) {
    media { id status alt mediaContentType }
    mediaUserErrors { field message code }
  }
}
"""

PRODUCTS_BY_TAG = """
query productsByTag($query: String!) {
  products(first: 1, query: $query) {
    edges { node { id title handle } }
  }
}
"""

PUBLICATIONS = """
query publications {
  publications(first: 20) {
    edges { node { id name } }
  }
}
"""

PUBLISHABLE_PUBLISH = """
mutation publishablePublish($id: ID!, $input: [PublicationInput!]!) {
  publishablePublish(id: $id, input: $input) {
    userErrors { field message }
  }
}
"""

ORDER_UPDATE = """
mutation orderUpdate($input: OrderInput!) {
  orderUpdate(input: $input) {
    order { id tags }
    userErrors { field message }
  }
}
"""


def _format_user_errors(user_errors: List[Dict[str, Any]]) -> str:
    parts = []
    for error in user_errors:
        field = error.get("field")
        field_text = ",".join(field) if isinstance(field, list) else (field or "N/A")
        parts.append(f"Field: {field_text}, Msg: {error.get('message')}")
    return "; ".join(parts)


def _first_variant(product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    edges = ((product or {}).get("variants") or {}).get("edges") or []
    if edges and edges[0].get("node", {}).get("id"):
        return edges[0]["node"]
    return None


class StorefrontClient:
    """
    Async client for the storefront Admin GraphQL API.

    Usage:
        async with StorefrontClient(settings) as client:
            product = await client.create_product(product_input, collection_id, variant)
    """

    def __init__(
        self,
        settings: StorefrontSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep
        self._client = http_client
        self._owns_client = http_client is None
        self._log = logger.bind(service=SERVICE_NAME, shop_domain=settings.shop_domain)

    @property
    def endpoint(self) -> str:
        if not self.settings.shop_domain:
            raise ConfigurationError("STOREFRONT_SHOP_DOMAIN is not configured")
        domain = self.settings.shop_domain.rstrip("/")
        if not domain.startswith(("http://", "https://")):
            domain = f"https://{domain}"
        return f"{domain}/admin/api/{self.settings.api_version}/graphql.json"

    def _headers(self) -> Dict[str, str]:
        if not self.settings.admin_access_token:
            raise ConfigurationError("STOREFRONT_ADMIN_ACCESS_TOKEN is not configured")
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.settings.admin_access_token,
        }

    async def __aenter__(self) -> "StorefrontClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.settings.api_timeout,
                    write=10.0,
                    pool=10.0,
                ),
            )
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ConfigurationError(
                "StorefrontClient not initialized. Use 'async with StorefrontClient(...) as client:'"
            )
        return self._client

    async def _execute_once(
        self,
        query: str,
        variables: Dict[str, Any],
        operation: str,
    ) -> Dict[str, Any]:
        """Send one GraphQL request and classify the response."""
        response = await self.client.post(
            self.endpoint,
            json={"query": query, "variables": variables},
            headers=self._headers(),
        )
        status = response.status_code
        if is_retryable_status(status):
            raise TransientApiError(
                f"{operation} returned HTTP {status}",
                service=SERVICE_NAME,
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                throttled=status == 429,
            )
        if status >= 400:
            raise FatalApiError(
                f"{operation} returned HTTP {status}: {response.text[:200]}",
                service=SERVICE_NAME,
                status_code=status,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise FatalApiError(
                f"{operation} returned a non-JSON body",
                service=SERVICE_NAME,
                status_code=status,
            ) from e
        errors = body.get("errors") or []
        if errors:
            codes = {(e.get("extensions") or {}).get("code") for e in errors}
            message = "; ".join(str(e.get("message")) for e in errors)
            if THROTTLED_CODE in codes or "throttled" in message.lower():
                raise TransientApiError(
                    f"{operation} throttled: {message}",
                    service=SERVICE_NAME,
                    status_code=status,
                    retry_after=parse_retry_after(response.headers.get("retry-after")),
                    throttled=True,
                )
            raise FatalApiError(
                f"{operation} failed: {message}",
                service=SERVICE_NAME,
                status_code=status,
                details={"errors": errors},
            )

        data = body.get("data")
        if data is None:
            raise DataIntegrityError(f"{operation} returned no data")
        return data

    async def request(self, query: str, variables: Optional[Dict[str, Any]] = None, operation: str = "graphql") -> Dict[str, Any]:
        """Execute a GraphQL operation through the retry layer and return its data."""
        variables = variables or {}
        return await with_retry(
            lambda: self._execute_once(query, variables, operation),
            self.retry_policy,
            operation_name=f"{SERVICE_NAME}.{operation}",
            sleep=self._sleep,
        )

    @staticmethod
    def _raise_user_errors(operation: str, user_errors: Optional[List[Dict[str, Any]]]) -> None:
        if user_errors:
            raise FatalApiError(
                f"{operation} failed: {_format_user_errors(user_errors)}",
                service=SERVICE_NAME,
                user_errors=user_errors,
            )

    async def create_product(
        self,
        product_input: Dict[str, Any],
        collection_id: Optional[str] = None,
        variant_info: Optional[VariantInfo] = None,
    ) -> Dict[str, Any]:
        """Create a product, then best-effort apply variant details and publish it.

        Raises:
            FatalApiError: On userErrors
            DataIntegrityError: If the response carries no product ID
        """
        payload = {k: v for k, v in product_input.items() if k != "media"}
        payload["status"] = "ACTIVE"
        payload.setdefault("publishedAt", datetime.now(timezone.utc).isoformat())
        if collection_id:
            payload["collectionsToJoin"] = [collection_id]

        self._log.info("product_create_started", title=payload.get("title"), collection_id=collection_id)
        data = await self.request(PRODUCT_CREATE, {"input": payload}, "productCreate")
        result = data.get("productCreate") or {}
        self._raise_user_errors("productCreate", result.get("userErrors"))
        product = result.get("product")
        if not product or not product.get("id"):
            raise DataIntegrityError("productCreate returned no product ID")
        self._log.info("product_created", product_id=product["id"], handle=product.get("handle"))

        variant = _first_variant(product)
        if variant_info is not None and variant is not None:
            try:
                await self.update_variant(
                    variant["id"],
                    price=variant_info.price,
                    inventory_policy=variant_info.inventory_policy,
                    sku=variant_info.sku,
                    product_id=product["id"],
                )
                inventory_item_id = (variant.get("inventoryItem") or {}).get("id")
                if inventory_item_id and variant_info.location_id:
                    await self.set_inventory_level(
                        inventory_item_id, variant_info.location_id, variant_info.quantity
                    )
            except Exception as e:
                # The product exists at this point; variant details are best effort
                self._log.error("product_variant_setup_failed", product_id=product["id"], error=str(e))

        try:
            await self.publish_product(product["id"])
        except Exception as e:
            self._log.error("product_publish_failed", product_id=product["id"], error=str(e))

        return product

    async def update_product(
        self,
        product_input: Dict[str, Any],
        join_collection: Optional[str] = None,
        leave_collection: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update an existing product; product_input must carry its id."""
        if not product_input.get("id"):
            raise FatalApiError("productUpdate requires a product id", service=SERVICE_NAME)
        payload = {k: v for k, v in product_input.items() if k != "media"}
        if join_collection:
            payload["collectionsToJoin"] = [join_collection]
        if leave_collection:
            payload["collectionsToLeave"] = [leave_collection]

        self._log.info("product_update_started", product_id=payload["id"])
        data = await self.request(PRODUCT_UPDATE, {"input": payload}, "productUpdate")
        result = data.get("productUpdate") or {}
        self._raise_user_errors("productUpdate", result.get("userErrors"))
        product = result.get("product")
        if not product or not product.get("id"):
            raise DataIntegrityError("productUpdate returned no product ID")
        self._log.info("product_updated", product_id=product["id"])
        return product

    async def get_first_variant(self, product_id: str) -> Optional[Dict[str, Any]]:
        data = await self.request(PRODUCT_FIRST_VARIANT, {"id": product_id}, "productFirstVariant")
        return _first_variant(data.get("product") or {})

    async def update_variant(
        self,
        variant_id: str,
        price: str,
        inventory_policy: str,
        sku: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Set price, inventory policy and optionally SKU on a variant."""
        if product_id is None:
            data = await self.request(VARIANT_PRODUCT, {"id": variant_id}, "variantProduct")
            product_id = (((data.get("productVariant") or {}).get("product")) or {}).get("id")
            if not product_id:
                raise DataIntegrityError(f"No product found for variant {variant_id}")

        variant_input: Dict[str, Any] = {
            "id": variant_id,
            "price": price,
            "inventoryPolicy": inventory_policy,
        }
        if sku:
            variant_input["inventoryItem"] = {"sku": sku}

        data = await self.request(
            VARIANTS_BULK_UPDATE,
            {"productId": product_id, "variants": [variant_input]},
            "productVariantsBulkUpdate",
        )
        result = data.get("productVariantsBulkUpdate") or {}
        self._raise_user_errors("productVariantsBulkUpdate", result.get("userErrors"))
        variants = result.get("productVariants") or []
        return variants[0] if variants else None

    async def set_inventory_level(self, inventory_item_id: str, location_id: str, quantity: int) -> None:
        data = await self.request(
            INVENTORY_SET_ON_HAND,
            {
                "input": {
                    "reason": "correction",
                    "setQuantities": [
                        {
                            "inventoryItemId": inventory_item_id,
                            "locationId": location_id,
                            "quantity": quantity,
                        }
                    ],
                }
            },
            "inventorySetOnHandQuantities",
        )
        result = data.get("inventorySetOnHandQuantities") or {}
        self._raise_user_errors("inventorySetOnHandQuantities", result.get("userErrors"))
        self._log.debug("inventory_level_set", inventory_item_id=inventory_item_id, quantity=quantity)

    async def attach_media(self, product_id: str, media: List[Dict[str, str]]) -> Dict[str, Any]:
        """Attach media to a product.

        Returns:
            {"media": [...], "userErrors": [...]}; per-image validation
            failures are reported, not raised
        """
        if not media:
            return {"media": [], "userErrors": []}
        data = await self.request(
            PRODUCT_CREATE_MEDIA,
            {"productId": product_id, "media": media},
            "productCreateMedia",
        )
        result = data.get("productCreateMedia") or {}
        user_errors = result.get("mediaUserErrors") or []
        if user_errors:
            self._log.warning(
                "media_user_errors",
                product_id=product_id,
                failed=len(user_errors),
                errors=_format_user_errors(user_errors),
            )
        return {"media": result.get("media") or [], "userErrors": user_errors}

    async def find_product_by_external_id_tag(self, external_id: str) -> Optional[Dict[str, Any]]:
        search = f"tag:'{pid_tag(str(external_id).strip())}'"
        data = await self.request(PRODUCTS_BY_TAG, {"query": search}, "productsByTag")
        edges = ((data.get("products") or {}).get("edges")) or []
        if edges:
            return edges[0].get("node")
        return None

    async def publish_product(self, product_id: str) -> int:
        """Publish a product to the online-store sales channels; return the channel count."""
        data = await self.request(PUBLICATIONS, {}, "publications")
        edges = ((data.get("publications") or {}).get("edges")) or []
        channels = [
            edge["node"]["id"]
            for edge in edges
            if any(name in (edge.get("node", {}).get("name") or "").lower() for name in ONLINE_STORE_CHANNEL_NAMES)
        ]
        if not channels:
            self._log.warning("publication_channel_not_found", product_id=product_id)
            return 0

        data = await self.request(
            PUBLISHABLE_PUBLISH,
            {"id": product_id, "input": [{"publicationId": c} for c in channels]},
            "publishablePublish",
        )
        result = data.get("publishablePublish") or {}
        self._raise_user_errors("publishablePublish", result.get("userErrors"))
        self._log.info("product_published", product_id=product_id, channels=len(channels))
        return len(channels)

    async def update_order(
        self,
        order_id: str,
        tags: Optional[List[str]] = None,
        metafields: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """Update tags and/or metafields of an order in a single call.

        The storefront replaces the tag list, so callers pass the full list.
        """
        order_input: Dict[str, Any] = {"id": order_id}
        if tags is not None:
            order_input["tags"] = tags
        if metafields:
            order_input["metafields"] = metafields

        data = await self.request(ORDER_UPDATE, {"input": order_input}, "orderUpdate")
        result = data.get("orderUpdate") or {}
        self._raise_user_errors("orderUpdate", result.get("userErrors"))
        order = result.get("order")
        if not order:
            raise DataIntegrityError(f"orderUpdate returned no order for {order_id}")
        self._log.info("order_updated", order_id=order_id, tags=tags)
        return order
