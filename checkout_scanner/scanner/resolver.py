"""
==============================================================================
Product Resolver Module
==============================================================================

Resolves a normalized barcode against the product catalog.

Lookup order (first hit wins):
------------------------------
1. Exact match on the normalized code, then on the raw decoded text
2. Containment (code length >= 4): catalog barcode starts with, ends with,
   or contains the code
3. Positional overlap (code length > 6): slide the code across each catalog
   barcode and accept the first window whose per-position match ratio
   exceeds the threshold

The resolver never deduplicates across calls. Merging repeated scans into
one cart line is left to the cart sink.

==============================================================================
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Tuple

from .contracts import CatalogSource
from .models import MatchKind, ProductMatch


# Module logger
logger = logging.getLogger(__name__)


DEFAULT_OVERLAP_THRESHOLD = 0.8
MIN_CONTAINMENT_LENGTH = 4
MIN_OVERLAP_LENGTH = 7


def overlap_ratio(code: str, window: str) -> float:
    """Fraction of positions where two equal-length strings agree."""
    if not code or len(code) != len(window):
        return 0.0
    matches = sum(1 for a, b in zip(code, window) if a == b)
    return matches / len(code)


def best_window(code: str, barcode: str, threshold: float) -> Optional[float]:
    """
    Slide ``code`` across ``barcode`` looking for an overlapping window.

    Args:
        code: Scanned code
        barcode: Catalog barcode, at least as long as the code
        threshold: Ratio a window must strictly exceed

    Returns:
        Ratio of the first accepted window, or None
    """
    width = len(code)
    for start in range(len(barcode) - width + 1):
        ratio = overlap_ratio(code, barcode[start:start + width])
        if ratio > threshold:
            return ratio
    return None


class ProductResolver:
    """
    Catalog lookup with bounded fuzzy fallback.

    Attributes:
        catalog: Catalog source used for exact lookup and enumeration
        threshold: Overlap ratio a fuzzy match must exceed

    Example:
        >>> resolver = ProductResolver(catalog)
        >>> match = resolver.resolve("890103087507")
        >>> match.match_kind
        <MatchKind.PREFIX: 'prefix'>
    """

    def __init__(
        self,
        catalog: CatalogSource,
        threshold: float = DEFAULT_OVERLAP_THRESHOLD
    ) -> None:
        if not 0.0 < threshold < 1.0:
            raise ValueError(f"Overlap threshold must be in (0, 1), got {threshold}")
        self._catalog = catalog
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def resolve(self, code: str, raw_text: Optional[str] = None) -> Optional[ProductMatch]:
        """
        Resolve a normalized code to a catalog product.

        Args:
            code: Normalized barcode
            raw_text: Original decoded text, tried exactly if the code misses

        Returns:
            ProductMatch, or None when every strategy fails
        """
        if not code:
            return None

        match = self._exact(code)
        if match is None and raw_text and raw_text != code:
            match = self._exact(raw_text)

        if match is None and len(code) >= MIN_CONTAINMENT_LENGTH:
            match = self._containment(code)

        if match is None and len(code) >= MIN_OVERLAP_LENGTH:
            match = self._overlap(code)

        if match is None:
            logger.info(f"No product for barcode {code}")
        elif match.match_kind is not MatchKind.EXACT:
            logger.info(
                f"Matched {code} -> {match.barcode} "
                f"({match.match_kind.value}, {match.confidence:.2f})"
            )

        return match

    # =========================================================================
    # STRATEGIES
    # =========================================================================

    def _exact(self, code: str) -> Optional[ProductMatch]:
        product = self._catalog.get_by_barcode(code)
        if product is None:
            return None
        return ProductMatch(
            barcode=code,
            product=product,
            match_kind=MatchKind.EXACT,
            confidence=1.0,
        )

    def _containment(self, code: str) -> Optional[ProductMatch]:
        for product, barcode in self._barcodes():
            if barcode == code or code not in barcode:
                continue

            if barcode.startswith(code):
                kind = MatchKind.PREFIX
            elif barcode.endswith(code):
                kind = MatchKind.SUFFIX
            else:
                kind = MatchKind.SUBSTRING

            return ProductMatch(
                barcode=barcode,
                product=product,
                match_kind=kind,
                confidence=len(code) / len(barcode),
            )
        return None

    def _overlap(self, code: str) -> Optional[ProductMatch]:
        for product, barcode in self._barcodes():
            if len(barcode) < len(code):
                continue

            ratio = best_window(code, barcode, self._threshold)
            if ratio is not None:
                return ProductMatch(
                    barcode=barcode,
                    product=product,
                    match_kind=MatchKind.FUZZY,
                    confidence=ratio,
                )
        return None

    def _barcodes(self) -> Iterable[Tuple[Any, str]]:
        for product in self._catalog.all_products():
            barcode = getattr(product, "barcode", None)
            if barcode:
                yield product, str(barcode)
