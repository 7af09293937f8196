"""Reconciliation services: clients, stores, pricing and orchestrators."""
from catalog_sync.services.pricing import to_destination_price, internal_total_cost
from catalog_sync.services.exchange_rate import ExchangeRateProvider
from catalog_sync.services.auth import MarketplaceAuth
from catalog_sync.services.retry import RetryPolicy, BackoffWait, with_retry, is_retryable_error
from catalog_sync.services.linked_sku import encode_linked_sku, try_decode_linked_sku
from catalog_sync.services.feed_fetcher import FeedFetcher, feed_filename
from catalog_sync.services.sync_state import (
    SyncState,
    SyncOutcome,
    SyncStateStore,
    should_skip_unchanged,
)
from catalog_sync.services.order_ledger import OrderLedger, OrderClaim
from catalog_sync.services.product_transformer import ProductTransformer, ProductPayload, VariantInfo
from catalog_sync.services.storefront_client import StorefrontClient
from catalog_sync.services.marketplace_client import MarketplaceClient
from catalog_sync.services.catalog_reconciler import CatalogReconciler
from catalog_sync.services.order_reconciler import OrderReconciler, build_order_payload

__all__ = [
    "to_destination_price",
    "internal_total_cost",
    "ExchangeRateProvider",
    "MarketplaceAuth",
    "RetryPolicy",
    "BackoffWait",
    "with_retry",
    "is_retryable_error",
    "encode_linked_sku",
    "try_decode_linked_sku",
    "FeedFetcher",
    "feed_filename",
    "SyncState",
    "SyncOutcome",
    "SyncStateStore",
    "should_skip_unchanged",
    "OrderLedger",
    "OrderClaim",
    "ProductTransformer",
    "ProductPayload",
    "VariantInfo",
    "StorefrontClient",
    "MarketplaceClient",
    "CatalogReconciler",
    "OrderReconciler",
    "build_order_payload",
]
