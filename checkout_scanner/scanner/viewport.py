"""
==============================================================================
Viewport Transform Module
==============================================================================

Digital zoom and pan for the live preview.

Purely an alignment aid for small or damaged codes; it never changes what
the decoding engine sees. Panning is bounded by ``(factor - 1) * pan_unit``
on each axis so the preview never scrolls out of frame, and decoding is
paused while a drag is in progress.

==============================================================================
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, Field


# Module logger
logger = logging.getLogger(__name__)


MIN_ZOOM = 1.0


class PanOffset(BaseModel):
    x: float = 0.0
    y: float = 0.0


class ZoomState(BaseModel):
    """Current digital zoom factor and pan offset."""

    factor: float = Field(default=MIN_ZOOM, ge=MIN_ZOOM)
    pan: PanOffset = Field(default_factory=PanOffset)

    def transform(self) -> str:
        """CSS-style transform applying the zoom then the pan."""
        if self.factor == MIN_ZOOM:
            return "scale(1)"
        return (
            f"scale({self.factor:g}) "
            f"translate({self.pan.x / self.factor:g}px, {self.pan.y / self.factor:g}px)"
        )


ZoomListener = Callable[[ZoomState], None]


class ViewportTransformController:
    """
    Maintains ZoomState in response to user actions.

    Args:
        pause: Called when a drag starts
        resume: Called when a drag ends
        step: Zoom increment per action
        max_zoom: Upper zoom bound
        pan_unit: Pan bound per unit of zoom above 1.0
    """

    def __init__(
        self,
        pause: Callable[[], object],
        resume: Callable[[], object],
        step: float = 0.25,
        max_zoom: float = 3.0,
        pan_unit: float = 100.0,
    ) -> None:
        self._pause = pause
        self._resume = resume
        self._step = step
        self._max_zoom = max_zoom
        self._pan_unit = pan_unit
        self._state = ZoomState()
        self._drag_origin: Optional[Tuple[float, float]] = None
        self._listeners: List[ZoomListener] = []

    @property
    def state(self) -> ZoomState:
        return self._state.model_copy(deep=True)

    @property
    def dragging(self) -> bool:
        return self._drag_origin is not None

    @property
    def pan_limit(self) -> float:
        return (self._state.factor - MIN_ZOOM) * self._pan_unit

    def subscribe(self, listener: ZoomListener) -> None:
        self._listeners.append(listener)

    # =========================================================================
    # ZOOM
    # =========================================================================

    def zoom_in(self) -> ZoomState:
        return self.set_zoom(self._state.factor + self._step)

    def zoom_out(self) -> ZoomState:
        return self.set_zoom(self._state.factor - self._step)

    def set_zoom(self, factor: float) -> ZoomState:
        """Set the zoom factor, clamped to [1.0, max_zoom]; re-clamps the pan."""
        factor = round(min(max(factor, MIN_ZOOM), self._max_zoom), 4)
        if factor == self._state.factor:
            return self.state

        self._state.factor = factor
        self._clamp_pan()
        if factor == MIN_ZOOM and self.dragging:
            self.end_drag()

        logger.debug(f"Zoom set to {factor:g}x")
        self._notify()
        return self.state

    # =========================================================================
    # PAN
    # =========================================================================

    def begin_drag(self, x: float, y: float) -> bool:
        """
        Start a pointer drag at screen position (x, y).

        Returns:
            False when not zoomed in, since there is nothing to pan
        """
        if self._state.factor <= MIN_ZOOM:
            return False
        if self.dragging:
            return True

        self._drag_origin = (x - self._state.pan.x, y - self._state.pan.y)
        self._pause()
        return True

    def drag_to(self, x: float, y: float) -> ZoomState:
        """Move the active drag to screen position (x, y)."""
        if not self.dragging or self._state.factor <= MIN_ZOOM:
            return self.state

        origin_x, origin_y = self._drag_origin
        self._state.pan.x = x - origin_x
        self._state.pan.y = y - origin_y
        self._clamp_pan()
        self._notify()
        return self.state

    def end_drag(self) -> None:
        if not self.dragging:
            return
        self._drag_origin = None
        self._resume()

    def reset(self) -> None:
        """Return to 1.0x with no pan, ending any drag without resuming."""
        self._drag_origin = None
        changed = self._state.factor != MIN_ZOOM or self._state.pan != PanOffset()
        self._state = ZoomState()
        if changed:
            self._notify()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _clamp_pan(self) -> None:
        limit = self.pan_limit
        pan = self._state.pan
        pan.x = max(-limit, min(pan.x, limit))
        pan.y = max(-limit, min(pan.y, limit))

    def _notify(self) -> None:
        snapshot = self.state
        for listener in self._listeners:
            listener(snapshot)
