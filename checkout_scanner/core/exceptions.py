"""
Scanner Exception Handling

Single ScannerException class for all pipeline errors with FastAPI integration.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# Error codes that end the current scan session
SESSION_STOPPING_CODES = frozenset({
    "PERMISSION_DENIED",
    "LIBRARY_LOAD_TIMEOUT",
    "CONFIG_UNSUPPORTED",
})

# Error codes the UI may offer an explicit retry action for
RETRYABLE_CODES = frozenset({
    "PERMISSION_DENIED",
    "LIBRARY_LOAD_TIMEOUT",
})


class ScannerException(Exception):
    """
    Unified exception for every scanner pipeline error.

    Usage:
        raise ScannerException("Camera access denied", "PERMISSION_DENIED", 403)
        raise ScannerException("Only one camera", "DEVICE_UNAVAILABLE", 409, {"cameras": 1})

    Error Codes:
        Session stopping:
            - PERMISSION_DENIED (403)
            - LIBRARY_LOAD_TIMEOUT (503)
            - CONFIG_UNSUPPORTED (422)

        Session continues:
            - DEVICE_UNAVAILABLE (409)
            - EXTRACTION_FAILURE (422)
            - PRODUCT_NOT_FOUND (404)

        General:
            - INVALID_TRANSITION (409)
            - CATALOG_NOT_LOADED (500)
            - INVALID_COMMAND (400)
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize scanner exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code (e.g., "PERMISSION_DENIED")
            status_code: HTTP status code (default: 400)
            details: Additional error context (optional)
        """
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

    @property
    def stops_session(self) -> bool:
        """Whether this error ends the active scan session."""
        return self.code in SESSION_STOPPING_CODES

    @property
    def retryable(self) -> bool:
        """Whether the UI should expose a retry action."""
        return self.code in RETRYABLE_CODES

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        error_dict = {
            "success": False,
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict


async def scanner_exception_handler(request: Request, exc: ScannerException) -> JSONResponse:
    """Convert ScannerException to a consistent JSON error response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(ScannerException, scanner_exception_handler)


# ============================================
# CONVENIENCE FACTORY FUNCTIONS
# ============================================

def permission_denied(reason: Optional[str] = None) -> ScannerException:
    """Create camera permission denied exception."""
    details = {"reason": reason} if reason else {}
    return ScannerException(
        "Camera access denied. Enable camera access and try again",
        "PERMISSION_DENIED",
        403,
        details
    )


def device_unavailable(message: str = "No camera available", **details: Any) -> ScannerException:
    """Create device unavailable exception."""
    return ScannerException(message, "DEVICE_UNAVAILABLE", 409, details)


def library_load_timeout(timeout_ms: int, reason: Optional[str] = None) -> ScannerException:
    """Create decoding engine load timeout exception."""
    details: Dict[str, Any] = {"timeout_ms": timeout_ms, "suggestion": "reload"}
    if reason:
        details["reason"] = reason
    return ScannerException(
        "Scanner is taking too long to load. Reload and try again",
        "LIBRARY_LOAD_TIMEOUT",
        503,
        details
    )


def config_unsupported(rejected_tiers: list) -> ScannerException:
    """Create exception for a device that rejected every resolution tier."""
    return ScannerException(
        "Camera rejected every supported configuration",
        "CONFIG_UNSUPPORTED",
        422,
        {"rejected_tiers": rejected_tiers}
    )


def extraction_failure(raw_text: str) -> ScannerException:
    """Create exception for decoded text without a usable barcode."""
    return ScannerException(
        "No usable barcode digits found",
        "EXTRACTION_FAILURE",
        422,
        {"raw_text": raw_text}
    )


def product_not_found(code: str) -> ScannerException:
    """Create product not found exception."""
    return ScannerException(
        f"No product found for barcode {code}",
        "PRODUCT_NOT_FOUND",
        404,
        {"barcode": code}
    )


def invalid_transition(state: str, event: str) -> ScannerException:
    """Create invalid session transition exception."""
    return ScannerException(
        f"Cannot apply '{event}' while session is '{state}'",
        "INVALID_TRANSITION",
        409,
        {"state": state, "event": event}
    )


def catalog_not_loaded() -> ScannerException:
    """Create catalog not loaded exception."""
    return ScannerException(
        "Product catalog not loaded",
        "CATALOG_NOT_LOADED",
        500
    )


def invalid_command(command: Optional[str]) -> ScannerException:
    """Create unknown client command exception."""
    return ScannerException(
        f"Unknown command: {command}",
        "INVALID_COMMAND",
        400,
        {"command": command}
    )
