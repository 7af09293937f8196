"""Feed parsers."""
from catalog_sync.parsers.catalog_parser import CatalogParser, ParsedCatalog

__all__ = ["CatalogParser", "ParsedCatalog"]
