"""Encoding of marketplace product IDs into storefront SKUs.

A linked SKU is the configured prefix followed by the numeric marketplace
product ID, e.g. "BJ-555". Only SKUs of exactly that shape link an order line
back to the marketplace.
"""
from typing import Optional

DEFAULT_PREFIX = "BJ-"


def encode_linked_sku(source_id: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Build the storefront SKU for a marketplace product ID."""
    source_id = str(source_id).strip()
    if not source_id:
        raise ValueError("source_id must not be empty")
    return f"{prefix}{source_id}"


def try_decode_linked_sku(sku: Optional[str], prefix: str = DEFAULT_PREFIX) -> Optional[str]:
    """Extract the marketplace product ID from a linked SKU.

    Returns None for missing SKUs, SKUs without the prefix, and SKUs whose
    remainder is not a run of digits.
    """
    if not sku:
        return None
    sku = sku.strip()
    if not sku.startswith(prefix):
        return None
    source_id = sku[len(prefix):]
    if not (source_id.isascii() and source_id.isdigit()):
        return None
    return source_id
