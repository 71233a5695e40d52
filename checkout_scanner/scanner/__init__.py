"""
==============================================================================
Scanner Package - Barcode Scanning Pipeline
==============================================================================

Camera session lifecycle, decode filtering, barcode normalization and
product resolution.

Classes:
--------
- SessionController: Scan session state machine
- CapabilityBootstrap: Engine warm-up and platform detection
- FrameDecodeAdapter: Engine callback boundary with cooldown
- ProductResolver: Exact and fuzzy catalog lookup
- ViewportTransformController: Digital zoom and pan
- OpenCVDecodingEngine: Local camera engine (OpenCV + pyzbar)

==============================================================================
"""

from .adapter import FrameDecodeAdapter, ScanCooldown
from .bootstrap import CapabilityBootstrap, PlatformTraits, detect_platform
from .contracts import CartSink, CatalogSource, DecodingEngine, EngineError
from .feedback import ScannerRenderer, UIEvent
from .models import (
    CameraCapabilities,
    CameraDescriptor,
    DecodeEvent,
    MatchKind,
    ProductMatch,
    ScanMode,
    ScanSession,
)
from .normalizer import normalize, normalize_with_strategy
from .resolver import ProductResolver
from .session import SessionController
from .state import SessionEvent, SessionState
from .tiers import ResolutionTier, get_tier, tier_chain
from .viewport import ViewportTransformController, ZoomState

__all__ = [
    "CameraCapabilities",
    "CameraDescriptor",
    "CapabilityBootstrap",
    "CartSink",
    "CatalogSource",
    "DecodeEvent",
    "DecodingEngine",
    "EngineError",
    "FrameDecodeAdapter",
    "MatchKind",
    "PlatformTraits",
    "ProductMatch",
    "ProductResolver",
    "ResolutionTier",
    "ScanCooldown",
    "ScanMode",
    "ScanSession",
    "ScannerRenderer",
    "SessionController",
    "SessionEvent",
    "SessionState",
    "UIEvent",
    "ViewportTransformController",
    "ZoomState",
    "detect_platform",
    "get_tier",
    "normalize",
    "normalize_with_strategy",
    "tier_chain",
]
