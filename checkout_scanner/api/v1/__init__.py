"""
==============================================================================
API v1 Endpoints
==============================================================================

Routers:
--------
- health: Health check endpoints
- products: Catalog lookup through the scanner's resolver

==============================================================================
"""

from . import health, products

__all__ = ["health", "products"]
