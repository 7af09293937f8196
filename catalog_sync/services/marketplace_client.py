"""Marketplace product lookup and order API client."""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog

from catalog_sync.config import MarketplaceSettings
from catalog_sync.errors import (
    ConfigurationError,
    DataIntegrityError,
    FatalApiError,
    TransientApiError,
)
from catalog_sync.services.auth import MarketplaceAuth
from catalog_sync.services.retry import (
    RetryPolicy,
    is_retryable_status,
    parse_retry_after,
    with_retry,
)

logger = structlog.get_logger(__name__)

SERVICE_NAME = "marketplace"


def _error_code(response: httpx.Response) -> Optional[str]:
    """errorCode from an error body, if the body is JSON."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("errorCode") if isinstance(body, dict) else None


class MarketplaceClient:
    """
    Async client for the marketplace general API.

    Usage:
        async with MarketplaceClient(settings) as client:
            details = await client.get_product_details("555")
            order = await client.create_order({"product": {"id": 555, "price": 10000}, "deliveryPrice": 0})
    """

    def __init__(
        self,
        settings: MarketplaceSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        auth: Optional[MarketplaceAuth] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_retry_delay,
        )
        self._auth = auth
        self._sleep = sleep
        self._client = http_client
        self._owns_client = http_client is None
        self._log = logger.bind(service=SERVICE_NAME)

    @property
    def auth(self) -> MarketplaceAuth:
        if self._auth is None:
            self._auth = MarketplaceAuth(self.settings.access_key, self.settings.secret_key)
        return self._auth

    @property
    def base_url(self) -> str:
        if not self.settings.general_api_url:
            raise ConfigurationError("MARKETPLACE_GENERAL_API_URL is not configured")
        return self.settings.general_api_url.rstrip("/")

    async def __aenter__(self) -> "MarketplaceClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.settings.api_timeout,
                    write=10.0,
                    pool=10.0,
                ),
                headers={"Content-Type": "application/json"},
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
                "MarketplaceClient not initialized. Use 'async with MarketplaceClient(...) as client:'"
            )
        return self._client

    async def _send_once(
        self,
        method: str,
        path: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """Send one signed request; return the decoded body or None for an allowed 404."""
        response = await self.client.request(
            method,
            f"{self.base_url}{path}",
            json=json,
            headers=self.auth.headers(),
        )
        status = response.status_code
        if status == 404 and allow_not_found:
            return None
        if is_retryable_status(status):
            raise TransientApiError(
                f"{operation} returned HTTP {status}",
                service=SERVICE_NAME,
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                throttled=status == 429,
            )
        if status >= 400:
            error_code = _error_code(response)
            self._log.warning(
                "marketplace_request_rejected",
                operation=operation,
                status_code=status,
                error_code=error_code,
                body=response.text[:500],
            )
            raise FatalApiError(
                f"{operation} returned HTTP {status}",
                service=SERVICE_NAME,
                status_code=status,
                details={"error_code": error_code} if error_code else None,
            )
        try:
            return response.json()
        except ValueError as e:
            raise FatalApiError(
                f"{operation} returned a non-JSON body",
                service=SERVICE_NAME,
                status_code=status,
            ) from e

    async def _send(self, method: str, path: str, operation: str, **kwargs) -> Optional[Dict[str, Any]]:
        return await with_retry(
            lambda: self._send_once(method, path, operation, **kwargs),
            self.retry_policy,
            operation_name=f"{SERVICE_NAME}.{operation}",
            sleep=self._sleep,
        )

    async def get_product_details(self, source_id: str) -> Optional[Dict[str, Any]]:
        """Fetch live product details.

        Returns:
            The product's data object (price, shippingFee, ...), or None if the
            product does not exist or the response carries no data
        """
        body = await self._send(
            "GET",
            f"/api/v1/products/{source_id}",
            "getProductDetails",
            allow_not_found=True,
        )
        if body is None:
            self._log.info("marketplace_product_not_found", source_id=source_id)
            return None
        data = body.get("data") if isinstance(body, dict) else None
        if not data:
            self._log.warning("marketplace_product_empty", source_id=source_id)
            return None
        return data

    async def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Place an order.

        Raises:
            DataIntegrityError: If the response carries no order ID
        """
        product_id = (payload.get("product") or {}).get("id")
        self._log.info("marketplace_order_create_started", product_id=product_id)
        body = await self._send("POST", "/api/v2/orders", "createOrder", json=payload)
        data = (body or {}).get("data") or {}
        order_id = data.get("id")
        if order_id in (None, ""):
            raise DataIntegrityError(
                f"Order creation for product {product_id} returned no order ID"
            )
        self._log.info("marketplace_order_created", product_id=product_id, order_id=order_id)
        return {**data, "id": str(order_id)}
