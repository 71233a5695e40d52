"""
==============================================================================
Health Check Endpoints
==============================================================================

Catalog and camera status for load balancers and the checkout UI.

==============================================================================
"""

from fastapi import APIRouter, Request

from checkout_scanner.catalog import get_catalog


router = APIRouter(prefix="/health", tags=["Health"])


class HealthController:
    """Collects component status for the health endpoints."""

    def __init__(self, request: Request):
        self._state = request.app.state

    def check_catalog(self) -> dict:
        catalog = get_catalog()
        if catalog:
            return {"status": "healthy", "products": len(catalog.all_products())}
        return {"status": "not_loaded", "products": 0}

    def check_scanner(self) -> dict:
        """Report whether a scan session currently holds the camera."""
        guard = getattr(self._state, "session_guard", None)
        busy = guard.busy if guard is not None else False
        return {"status": "busy" if busy else "available"}

    def get_health(self) -> dict:
        catalog_info = self.check_catalog()
        scanner_info = self.check_scanner()

        overall = "healthy" if catalog_info["status"] == "healthy" else "degraded"

        return {
            "status": overall,
            "components": {
                "api": "healthy",
                "catalog": catalog_info["status"],
                "scanner": scanner_info["status"],
            },
            "details": {
                "products_loaded": catalog_info["products"]
            }
        }


@router.get("")
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns system status including API, catalog and scanner.
    """
    controller = HealthController(request)
    return controller.get_health()


@router.get("/ready")
async def readiness_check():
    """Ready once a catalog is loaded; scans cannot resolve products before that."""
    return {"ready": get_catalog() is not None}


@router.get("/live")
async def liveness_check():
    """The process is up."""
    return {"alive": True}
