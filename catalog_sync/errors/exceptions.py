"""Custom exception hierarchy for catalog and order reconciliation errors."""
from typing import Any, Dict, List, Optional


class CatalogSyncError(Exception):
    """Base exception for all catalog sync errors."""

    def __init__(self, message: str, *args, **kwargs):
        """Initialize error with message."""
        self.message = message
        super().__init__(message, *args, **kwargs)


class ValidationError(CatalogSyncError):
    """Raised when input data is malformed. Never retried."""
    pass


class InvalidInput(ValidationError):
    """Raised when a price calculation receives out-of-bounds input."""
    pass


class InvalidCatalogType(ValidationError):
    """Raised for a catalog type other than 'full' or 'segment'."""
    pass


class InvalidOrder(ValidationError):
    """Raised when an inbound order event is missing required data."""
    pass


class ConfigurationError(CatalogSyncError):
    """Raised when credentials or URLs are missing."""
    pass


class ParserError(CatalogSyncError):
    """Raised when the feed file cannot be read as CSV."""
    pass


class DatabaseError(CatalogSyncError):
    """Raised when database operations fail."""
    pass


class DataIntegrityError(CatalogSyncError):
    """Raised when an upstream reports success but omits an expected field."""
    pass


class FeedFetchError(CatalogSyncError):
    """Raised when downloading or decompressing a catalog feed fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class EmptyFeed(FeedFetchError):
    """Raised when the downloaded feed file has zero bytes."""
    pass


class UpstreamError(CatalogSyncError):
    """Base for errors reported by a remote API."""

    def __init__(
        self,
        message: str,
        service: str = "upstream",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.details = details or {}


class TransientApiError(UpstreamError):
    """Rate-limited, throttled or 5xx response. Safe to retry."""

    def __init__(
        self,
        message: str,
        service: str = "upstream",
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        throttled: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, service=service, status_code=status_code, details=details)
        self.retry_after = retry_after
        self.throttled = throttled


class FatalApiError(UpstreamError):
    """Non-retryable 4xx or validation failure from an upstream."""

    def __init__(
        self,
        message: str,
        service: str = "upstream",
        status_code: Optional[int] = None,
        user_errors: Optional[List[Dict[str, Any]]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, service=service, status_code=status_code, details=details)
        self.user_errors = user_errors or []


class UpstreamUnavailable(CatalogSyncError):
    """Raised when retries against an upstream are exhausted."""

    def __init__(self, message: str, last_cause: Optional[BaseException] = None, attempts: int = 0):
        super().__init__(message)
        self.last_cause = last_cause
        self.attempts = attempts
