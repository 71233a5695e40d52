"""
==============================================================================
Resolution Tiers Module
==============================================================================

Named camera configuration bundles tried in a fixed fallback order.

    HD   1920x1080 @ 15 fps  - best detection range
    VGA   640x480  @ 10 fps
    QVGA  320x240  @ 10 fps  - minimal constraints, flip disabled

Each later tier trades detection range for startup reliability.

==============================================================================
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from .models import CameraDescriptor


DEFAULT_SYMBOLOGIES = ("EAN_13", "EAN_8", "UPC_A", "UPC_E", "CODE_128")
# Decodable on request; not part of the default set
KNOWN_SYMBOLOGIES = DEFAULT_SYMBOLOGIES + ("CODE_39",)


class ResolutionTier(BaseModel):
    """
    One camera configuration bundle.

    Attributes:
        name: Tier identifier ("hd", "vga", "qvga")
        width: Ideal frame width
        height: Ideal frame height
        fps: Decode attempts per second
        min_width: Minimum acceptable width, None for no lower bound
        min_height: Minimum acceptable height, None for no lower bound
        disable_flip: Skip mirrored decode attempts
    """

    model_config = ConfigDict(frozen=True)

    name: str
    width: int
    height: int
    fps: int
    min_width: Optional[int] = None
    min_height: Optional[int] = None
    disable_flip: bool = False

    def video_constraints(self, camera: Optional[CameraDescriptor] = None) -> Dict[str, Any]:
        """Resolution constraints, with the camera selector when given."""
        width: Dict[str, int] = {"ideal": self.width}
        height: Dict[str, int] = {"ideal": self.height}
        if self.min_width is not None:
            width["min"] = self.min_width
        if self.min_height is not None:
            height["min"] = self.min_height

        constraints: Dict[str, Any] = {"width": width, "height": height}
        if camera is not None:
            if camera.is_facing_mode:
                constraints["facing_mode"] = camera.id
            else:
                constraints["device_id"] = camera.id
        return constraints

    def engine_config(
        self,
        camera: CameraDescriptor,
        symbologies: Sequence[str] = DEFAULT_SYMBOLOGIES,
        square_aspect: bool = False,
    ) -> Dict[str, Any]:
        """
        Build the configuration passed to ``DecodingEngine.start``.

        Args:
            camera: Camera being started
            symbologies: Barcode formats the engine should look for
            square_aspect: Force a 1:1 preview (some browsers distort otherwise)

        Returns:
            Engine configuration dictionary
        """
        return {
            "tier": self.name,
            "fps": self.fps,
            "scan_region": {"width": 250, "height": 100},
            "aspect_ratio": 1.0 if square_aspect else round(self.width / self.height, 2),
            "disable_flip": self.disable_flip,
            "formats": list(symbologies),
            "video_constraints": self.video_constraints(camera),
        }


HD = ResolutionTier(
    name="hd", width=1920, height=1080, fps=15, min_width=1280, min_height=720
)
VGA = ResolutionTier(
    name="vga", width=640, height=480, fps=10, min_width=640, min_height=480
)
QVGA = ResolutionTier(
    name="qvga", width=320, height=240, fps=10, disable_flip=True
)

TIER_ORDER: List[ResolutionTier] = [HD, VGA, QVGA]
TIERS_BY_NAME: Dict[str, ResolutionTier] = {tier.name: tier for tier in TIER_ORDER}


def get_tier(name: str) -> ResolutionTier:
    """Look up a tier by name (case-insensitive)."""
    try:
        return TIERS_BY_NAME[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown resolution tier: {name}") from None


def tier_chain(preferred: str = "hd", rejected: Iterable[str] = ()) -> List[ResolutionTier]:
    """
    Tiers to try, starting at the preferred one, skipping rejected ones.

    The preference is advisory: lower tiers still follow it as fallbacks.

    Example:
        >>> [t.name for t in tier_chain("vga")]
        ['vga', 'qvga']
        >>> [t.name for t in tier_chain("hd", rejected=["hd"])]
        ['vga', 'qvga']
    """
    start = TIER_ORDER.index(get_tier(preferred))
    skipped = set(rejected)
    return [tier for tier in TIER_ORDER[start:] if tier.name not in skipped]
