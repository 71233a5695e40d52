"""
==============================================================================
WebSocket Package
==============================================================================

Real-time WebSocket handlers for barcode scanning.

Handlers:
---------
- scanner: Drives a scan session and streams UI events and cart items

==============================================================================
"""

from .scanner import SessionGuard, router as scanner_router

__all__ = ["SessionGuard", "scanner_router"]
