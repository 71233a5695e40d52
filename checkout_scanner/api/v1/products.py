"""
==============================================================================
Product Lookup Endpoints
==============================================================================

Resolve barcodes typed or pasted by an operator through the same
normalize -> resolve path the live scanner uses.

==============================================================================
"""

from typing import Optional

from fastapi import APIRouter, Query

from checkout_scanner.catalog import ProductResponse, get_catalog
from checkout_scanner.config import get_settings
from checkout_scanner.core import exceptions
from checkout_scanner.scanner import ProductResolver, normalize_with_strategy


router = APIRouter(prefix="/products", tags=["Products"])


class ProductController:
    """Barcode lookups against the loaded catalog."""

    def __init__(self):
        self._catalog = get_catalog()
        if not self._catalog:
            raise exceptions.catalog_not_loaded()

    def lookup(self, raw: str, threshold: Optional[float]) -> dict:
        """Normalize a raw barcode string and resolve it against the catalog."""
        code, strategy = normalize_with_strategy(raw)
        if code is None:
            raise exceptions.extraction_failure(raw)

        resolver = ProductResolver(
            self._catalog,
            threshold if threshold is not None else get_settings().fuzzy_match_threshold,
        )
        match = resolver.resolve(code, raw_text=raw)
        if match is None:
            raise exceptions.product_not_found(code)

        return {
            "success": True,
            "barcode": code,
            "strategy": strategy,
            "matched_barcode": match.barcode,
            "match_kind": match.match_kind.value,
            "confidence": round(match.confidence, 3),
            "product": ProductResponse.from_product(match.product).model_dump(),
        }


@router.get("/lookup/{code}")
async def lookup_product(
    code: str,
    threshold: Optional[float] = Query(None, gt=0, lt=1),
):
    """Resolve a barcode (exact first, then partial / fuzzy)."""
    controller = ProductController()
    return controller.lookup(code, threshold)

