"""
==============================================================================
Core Package
==============================================================================

Core infrastructure for the application.

Modules:
--------
- exceptions: ScannerException class and error factory functions

Usage:
------
    from checkout_scanner.core import ScannerException
    from checkout_scanner.core import exceptions

    raise exceptions.permission_denied()

==============================================================================
"""

from .exceptions import (
    ScannerException,
    register_exception_handlers,
)

__all__ = [
    "ScannerException",
    "register_exception_handlers",
]
