"""
==============================================================================
Scanner Contracts Module
==============================================================================

Interfaces the pipeline consumes or produces to.

- DecodingEngine: external video decoding engine (consumed)
- CatalogSource: barcode -> product lookup plus enumeration (consumed)
- CartSink: accepts resolved products (produced-to)

==============================================================================
"""

from __future__ import annotations

import abc
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .models import CameraDescriptor


DecodedCallback = Callable[[str], None]
FrameErrorCallback = Callable[[str], None]


# Substrings that mark an engine or frame error as a camera permission problem
PERMISSION_MARKERS = (
    "Permission denied",
    "Permission dismissed",
    "NotAllowedError",
)


def is_permission_error(message: Optional[str]) -> bool:
    """Check whether an engine message reports a camera permission failure."""
    if not message:
        return False
    return any(marker in message for marker in PERMISSION_MARKERS)


class EngineError(Exception):
    """Raised by decoding engines when a camera operation fails."""


@runtime_checkable
class CatalogSource(Protocol):
    """Product catalog as seen by the resolver."""

    def get_by_barcode(self, code: str) -> Optional[Any]:
        ...

    def all_products(self) -> Iterable[Any]:
        ...


@runtime_checkable
class CartSink(Protocol):
    """Receives resolved products. Merging repeated scans is its concern."""

    def add_item(self, product: Any, quantity: int) -> None:
        ...


class DecodingEngine(abc.ABC):
    """
    Boundary to the external barcode decoding engine.

    Engines own the camera stream and call ``on_decoded`` for each decoded
    text and ``on_frame_error`` for frames without a readable code. Both
    callbacks are invoked on the event loop that called ``start``.
    """

    async def initialize(self) -> None:
        """Load or warm up the decoder. Default engines need no warm-up."""

    @abc.abstractmethod
    async def start(
        self,
        camera: CameraDescriptor,
        config: Dict[str, Any],
        on_decoded: DecodedCallback,
        on_frame_error: FrameErrorCallback,
    ) -> None:
        """Acquire the camera stream and begin decoding."""

    @abc.abstractmethod
    async def stop(self) -> None:
        """Stop decoding and release the camera stream."""

    @abc.abstractmethod
    def pause(self, pause_video: bool) -> None:
        """Stop delivering decode callbacks without releasing the stream."""

    @abc.abstractmethod
    def resume(self) -> None:
        """Resume delivering decode callbacks."""

    @abc.abstractmethod
    async def apply_video_constraints(self, constraints: Dict[str, Any]) -> None:
        """Apply constraints (resolution, zoom, torch) to the live stream."""

    @abc.abstractmethod
    async def get_cameras(self) -> List[CameraDescriptor]:
        """Enumerate available cameras in device-list order."""
