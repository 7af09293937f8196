"""Error handling module."""
from catalog_sync.errors.exceptions import (
    CatalogSyncError,
    ValidationError,
    InvalidInput,
    InvalidCatalogType,
    InvalidOrder,
    ConfigurationError,
    ParserError,
    DatabaseError,
    DataIntegrityError,
    FeedFetchError,
    EmptyFeed,
    UpstreamError,
    TransientApiError,
    FatalApiError,
    UpstreamUnavailable,
)

__all__ = [
    "CatalogSyncError",
    "ValidationError",
    "InvalidInput",
    "InvalidCatalogType",
    "InvalidOrder",
    "ConfigurationError",
    "ParserError",
    "DatabaseError",
    "DataIntegrityError",
    "FeedFetchError",
    "EmptyFeed",
    "UpstreamError",
    "TransientApiError",
    "FatalApiError",
    "UpstreamUnavailable",
]
