"""
==============================================================================
Checkout Scanner - Application Entry Point
==============================================================================

FastAPI application with:
- Product lookup REST endpoints
- WebSocket scan sessions driving the local camera
- Health probes

Usage:
------
    # Development
    uvicorn checkout_scanner.main:app --reload

    # Production
    uvicorn checkout_scanner.main:app --host 0.0.0.0 --port 8000

==============================================================================
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from checkout_scanner import __version__
from checkout_scanner.api.router import api_router
from checkout_scanner.catalog import init_catalog
from checkout_scanner.config import Settings, get_settings
from checkout_scanner.core.exceptions import register_exception_handlers
from checkout_scanner.scanner.opencv_engine import OpenCVDecodingEngine
from checkout_scanner.websockets import SessionGuard, scanner_router


# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

logger = logging.getLogger(__name__)


def create_decoding_engine(settings: Settings) -> OpenCVDecodingEngine:
    """Build the decoding engine for one scan session."""
    return OpenCVDecodingEngine(
        camera_index=settings.camera_index,
        probe_limit=settings.camera_probe_limit,
    )


# ============================================================================
# APPLICATION
# ============================================================================

class Application:
    """
    Builds the checkout scanner app.

    Owns the process-wide session guard and the engine factory that
    WebSocket handlers use to open the camera, and loads the product
    catalog when the server starts.
    """

    def __init__(self):
        self._settings = get_settings()
        self._app = self._build()

    def _build(self) -> FastAPI:
        app = FastAPI(
            title=self._settings.app_name,
            version=__version__,
            description="Camera barcode scanning for checkout",
            lifespan=self._lifespan,
            docs_url="/docs",
            redoc_url="/redoc",
        )

        # One camera per process
        app.state.session_guard = SessionGuard()
        app.state.engine_factory = create_decoding_engine

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        register_exception_handlers(app)
        app.include_router(api_router)
        app.include_router(scanner_router)

        return app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        s = self._settings
        logger.info(f"🚀 {s.app_name} v{__version__} ({s.app_env})")
        self._load_catalog()
        logger.info(
            f"📷 Camera {s.camera_index}, preferred tier {s.preferred_resolution_tier}, "
            f"cooldown {s.cooldown_window_ms}ms"
        )
        logger.info(f"🔌 Scan sessions on ws://{s.host}:{s.port}/ws/scan")

        yield

        if app.state.session_guard.busy:
            logger.warning("⚠️ Stopping with a scan session still attached")
        logger.info("🛑 Scanner service stopped")

    def _load_catalog(self) -> None:
        """Load the product catalog; the service still starts without one."""
        path = self._settings.products_path
        if not path.exists():
            logger.warning(f"⚠️ No catalog at {path}, lookups will fail until one is loaded")
            return

        try:
            catalog = init_catalog(path)
        except (OSError, ValueError) as e:
            logger.error(f"❌ Catalog {path} could not be loaded: {e}")
            return
        logger.info(f"📦 Catalog: {len(catalog.all_products())} products from {path}")

    @property
    def app(self) -> FastAPI:
        return self._app


# ============================================================================
# APPLICATION INSTANCE
# ============================================================================

application = Application()
app = application.app


# ============================================================================
# ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "checkout_scanner.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
