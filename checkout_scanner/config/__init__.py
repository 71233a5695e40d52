"""
==============================================================================
Configuration Package
==============================================================================

Centralized configuration management using Pydantic Settings.

This package provides:
- Environment-based configuration loading
- Type-safe settings with validation
- Cached accessor for global access

Usage:
------
    from checkout_scanner.config import get_settings, Settings

    settings = get_settings()
    print(settings.cooldown_window_ms)
    print(settings.preferred_resolution_tier)

==============================================================================
"""

from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
