"""
==============================================================================
Scanner Models Module
==============================================================================

Pydantic models shared across the scanning pipeline.

==============================================================================
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


FACING_ENVIRONMENT = "environment"
FACING_USER = "user"


class MatchKind(str, enum.Enum):
    """How a scanned code was matched to a catalog barcode."""

    EXACT = "exact"
    PREFIX = "prefix"
    SUFFIX = "suffix"
    SUBSTRING = "substring"
    FUZZY = "fuzzy"


class ScanMode(str, enum.Enum):
    """
    What a decoded barcode is used for.

    CART resolves products and adds them to the cart sink. CAPTURE hands the
    raw barcode to a capture callback (e.g. a product entry form) and ends
    the session.
    """

    CART = "cart"
    CAPTURE = "capture"


class CameraCapabilities(BaseModel):
    """Advisory device capabilities; any field may be unknown."""

    resolutions: List[Tuple[int, int]] = Field(default_factory=list)
    zoom_range: Optional[Tuple[float, float]] = None
    torch: Optional[bool] = None


class CameraDescriptor(BaseModel):
    """
    Camera selector passed to the decoding engine.

    Attributes:
        id: Device identifier, or the facing-mode sentinel
            "environment" / "user"
        label: Human-readable device name
        capabilities: Advisory capabilities, when the engine reports them
    """

    model_config = ConfigDict(frozen=True)

    id: str
    label: Optional[str] = None
    capabilities: Optional[CameraCapabilities] = None

    @property
    def is_facing_mode(self) -> bool:
        return self.id in (FACING_ENVIRONMENT, FACING_USER)

    @classmethod
    def environment(cls) -> "CameraDescriptor":
        return cls(id=FACING_ENVIRONMENT, label="Rear camera")

    @classmethod
    def user(cls) -> "CameraDescriptor":
        return cls(id=FACING_USER, label="Front camera")


class DecodeEvent(BaseModel):
    """A single decoded text reported by the engine. Never persisted."""

    raw_text: str
    timestamp: float
    session_id: Optional[str] = None


class ProductMatch(BaseModel):
    """
    Result of resolving a normalized barcode against the catalog.

    Attributes:
        barcode: Catalog barcode that matched
        product: Catalog product reference
        match_kind: Strategy that produced the match
        confidence: 1.0 for exact matches, overlap or length ratio otherwise
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    barcode: str
    product: Any
    match_kind: MatchKind
    confidence: float = Field(ge=0.0, le=1.0)


class ScanSession(BaseModel):
    """
    The single active scan session owned by a SessionController.

    Created on a start request, survives camera switches, discarded on stop.
    """

    session_id: str
    camera: Optional[CameraDescriptor] = None
    resolution_tier: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    retry_count: int = 0
    rejected_tiers: List[str] = Field(default_factory=list)
