"""
==============================================================================
Catalog Package - Product Lookup
==============================================================================

JSON product catalog serving exact barcode lookup and enumeration.

Classes:
--------
- Product: Pydantic model for products
- ProductCatalog: Catalog loaded from a JSON file

==============================================================================
"""

from .models import Product, ProductResponse
from .catalog import ProductCatalog, get_catalog, init_catalog

__all__ = [
    "Product",
    "ProductResponse",
    "ProductCatalog",
    "get_catalog",
    "init_catalog",
]
