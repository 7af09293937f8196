"""Catalog and order reconciliation between a source marketplace and a destination storefront."""

__version__ = "0.1.0"
