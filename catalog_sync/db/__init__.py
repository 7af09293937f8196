"""Database module."""
from catalog_sync.db.base import (
    Base,
    UUIDMixin,
    TimestampMixin,
    create_engine,
    create_session_maker,
)

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "create_engine",
    "create_session_maker",
]
