"""
==============================================================================
Product Models Module
==============================================================================

Pydantic models for product catalog items.

==============================================================================
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Product(BaseModel):
    """
    Product model for catalog items.

    Attributes:
        name: Product display name
        barcode: Barcode digits as printed on the package
        price: Unit price, if the catalog carries one
        main_category: Top-level category (e.g., "grocery")
        subcategory: Sub-category (e.g., "Biscuits")
    """

    model_config = ConfigDict(
        from_attributes=True,
        extra="allow",
        frozen=True,
    )

    name: str = Field(..., min_length=1, description="Product name")
    barcode: str = Field(..., min_length=1, description="Product barcode")
    price: Optional[float] = Field(default=None, ge=0, description="Unit price")
    main_category: Optional[str] = Field(default=None, description="Main category")
    subcategory: Optional[str] = Field(default=None, description="Subcategory")

    @field_validator("barcode", mode="before")
    @classmethod
    def coerce_barcode(cls, value) -> str:
        """Catalog files often store barcodes as JSON numbers."""
        return str(value).strip()


class ProductResponse(BaseModel):
    """Product response schema for API endpoints."""

    name: str
    barcode: str
    price: Optional[float] = None
    main_category: Optional[str] = None
    subcategory: Optional[str] = None

    @classmethod
    def from_product(cls, product: Product) -> "ProductResponse":
        """Create response from Product model."""
        return cls(
            name=product.name,
            barcode=product.barcode,
            price=product.price,
            main_category=product.main_category,
            subcategory=product.subcategory,
        )
