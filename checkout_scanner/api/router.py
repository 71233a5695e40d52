"""
==============================================================================
Main API Router
==============================================================================

Combines all v1 API routes under /api/v1 prefix.

==============================================================================
"""

from fastapi import APIRouter

from checkout_scanner.api.v1 import health, products


class MainAPIRouter:
    """
    REST routes under /api/v1. The scanner WebSocket is mounted separately.
    """

    def __init__(self):
        self._router = APIRouter(prefix="/api/v1")
        self._include_routers()

    def _include_routers(self) -> None:
        self._router.include_router(health.router)
        self._router.include_router(products.router)

    @property
    def router(self):
        return self._router


api_router = MainAPIRouter().router
