"""
==============================================================================
Product Catalog Module
==============================================================================

JSON-backed product catalog used as the scanner's barcode lookup source.

Features:
---------
- Flat or category-nested JSON product files
- Exact barcode index for constant-time lookup
- Enumeration access for the resolver's fuzzy passes

JSON Structure:
--------------
Either a flat list:

[
  {"name": "Parle-G 100g", "barcode": "8901063010017", "price": 10},
  ...
]

or nested categories:

{
  "grocery": {
    "Biscuits": [
      {"name": "Parle-G 100g", "barcode": "8901063010017"},
      ...
    ]
  }
}

A legacy "upc" key is accepted in place of "barcode".

==============================================================================
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .models import Product


# Module logger
logger = logging.getLogger(__name__)


class ProductCatalog:
    """
    Barcode-indexed products read from a JSON file.

    The first product wins when two entries share a barcode; later ones are
    logged and never resolved.

    Example:
        >>> catalog = ProductCatalog(Path("data/products.json"))
        >>> catalog.get_by_barcode("8901030875071").name
        'Lifebuoy Total 10 125g'
    """

    def __init__(self, products_file: Path) -> None:
        self._path = Path(products_file)
        self._loaded = 0
        self._by_barcode: Dict[str, Product] = {}

        self._read(self._open())
        logger.info(f"✅ Loaded {self._loaded} products from {self._path}")

    def _open(self) -> Any:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            logger.error(f"Catalog file missing: {self._path}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Catalog {self._path} is not valid JSON: {e}")
            raise

    def _read(self, data: Any) -> None:
        if isinstance(data, list):
            self._add(data)
            return
        if not isinstance(data, dict):
            raise ValueError(f"Unsupported catalog layout in {self._path}")

        for category, groups in data.items():
            if not isinstance(groups, dict):
                logger.warning(f"Category {category!r} is not an object, skipped")
                continue
            for group, items in groups.items():
                if isinstance(items, list):
                    self._add(items, category, group)

    def _add(
        self,
        items: List[Any],
        category: Optional[str] = None,
        group: Optional[str] = None,
    ) -> None:
        """Validate raw entries and index them; malformed entries are skipped."""
        for item in items:
            product = self._to_product(item, category, group)
            if product is None:
                continue
            self._loaded += 1
            if product.barcode in self._by_barcode:
                logger.warning(f"Duplicate barcode {product.barcode}, keeping the first entry")
            else:
                self._by_barcode[product.barcode] = product

    @staticmethod
    def _to_product(item: Any, category: Optional[str], group: Optional[str]) -> Optional[Product]:
        if not isinstance(item, dict) or "name" not in item:
            return None
        barcode = item.get("barcode", item.get("upc"))
        if barcode is None:
            return None

        fields = {k: v for k, v in item.items() if k != "upc"}
        fields["barcode"] = barcode
        fields.setdefault("main_category", category)
        fields.setdefault("subcategory", group)
        try:
            return Product(**fields)
        except ValidationError as e:
            logger.warning(f"Skipping invalid product {item.get('name')!r}: {e}")
            return None

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get_by_barcode(self, code: str) -> Optional[Product]:
        return self._by_barcode.get(code)

    def all_products(self) -> List[Product]:
        """Products with unique barcodes, in file order."""
        return list(self._by_barcode.values())


# =============================================================================
# PROCESS-WIDE CATALOG
# =============================================================================

_catalog_instance: Optional[ProductCatalog] = None


def get_catalog() -> Optional[ProductCatalog]:
    """The catalog loaded at startup, or None if loading failed."""
    return _catalog_instance


def init_catalog(products_file: Path) -> ProductCatalog:
    """Load ``products_file`` and make it the process-wide catalog."""
    global _catalog_instance
    _catalog_instance = ProductCatalog(products_file)
    return _catalog_instance
