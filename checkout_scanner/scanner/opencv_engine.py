"""
==============================================================================
OpenCV Decoding Engine Module
==============================================================================

DecodingEngine backed by an OpenCV capture device and ZBar.

Features:
---------
- cv2.VideoCapture stream with resolution / fps constraints
- pyzbar decoding restricted to the configured symbologies
- Mirrored-frame retry unless the tier disables flipping
- Hardware zoom through CAP_PROP_ZOOM where the driver supports it

All blocking OpenCV and ZBar calls run in worker threads; decode callbacks
are delivered on the event loop.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import cv2
import numpy as np
from pyzbar.pyzbar import ZBarSymbol, decode

from .contracts import DecodedCallback, DecodingEngine, EngineError, FrameErrorCallback
from .models import FACING_USER, CameraCapabilities, CameraDescriptor


# Module logger
logger = logging.getLogger(__name__)


NO_CODE_MESSAGE = "No barcode or QR code detected."


def symbols_for(formats: Sequence[str]) -> List[ZBarSymbol]:
    """
    Map format names ("EAN_13", "UPC_A", "CODE_128") to ZBar symbols.

    Unknown names are skipped with a warning.
    """
    symbols = []
    for name in formats:
        symbol = getattr(ZBarSymbol, name.replace("_", "").upper(), None)
        if symbol is None:
            logger.warning(f"Unsupported barcode format: {name}")
            continue
        symbols.append(symbol)
    return symbols


def decode_frame(frame: np.ndarray, symbols: Sequence[ZBarSymbol], flip: bool = True) -> List[str]:
    """
    Decode every barcode in a frame.

    Args:
        frame: BGR or grayscale image
        symbols: ZBar symbologies to look for (all when empty)
        flip: Retry on the mirrored frame when nothing is found

    Returns:
        Decoded texts, in ZBar's order
    """
    if frame is None or frame.size == 0:
        return []

    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
    wanted = list(symbols) or None

    barcodes = decode(gray, symbols=wanted)
    if not barcodes and flip:
        barcodes = decode(cv2.flip(gray, 1), symbols=wanted)

    texts = []
    for barcode in barcodes:
        try:
            texts.append(barcode.data.decode("utf-8"))
        except UnicodeDecodeError as e:
            logger.debug(f"Skipping undecodable {barcode.type} payload: {e}")
    return texts


class OpenCVDecodingEngine(DecodingEngine):
    """
    Local camera decoding engine.

    Camera ids are OpenCV device indices as strings. The facing-mode
    sentinels map to the configured index ("environment") and the next
    one ("user").

    Example:
        >>> engine = OpenCVDecodingEngine(camera_index=0)
        >>> await engine.initialize()
        >>> await engine.start(CameraDescriptor(id="0"), config, on_decoded, on_error)
    """

    def __init__(self, camera_index: int = 0, probe_limit: int = 4) -> None:
        self._camera_index = camera_index
        self._probe_limit = probe_limit
        self._cap: Optional[cv2.VideoCapture] = None
        self._active_index: Optional[int] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._io_lock = asyncio.Lock()
        self._running = False
        self._paused = False

        logger.debug(f"OpenCV engine created (camera {camera_index})")

    @property
    def streaming(self) -> bool:
        return self._cap is not None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Load the ZBar library by decoding a blank frame."""
        await asyncio.to_thread(decode, np.zeros((8, 8), dtype=np.uint8))

    async def start(
        self,
        camera: CameraDescriptor,
        config: Dict[str, Any],
        on_decoded: DecodedCallback,
        on_frame_error: FrameErrorCallback,
    ) -> None:
        if self._cap is not None:
            raise EngineError("InvalidStateError: camera already started")

        index = self._resolve_index(camera)
        async with self._io_lock:
            opening = asyncio.ensure_future(asyncio.to_thread(self._open_capture, index, config))
            try:
                cap = await asyncio.shield(opening)
            except asyncio.CancelledError:
                opening.add_done_callback(_release_abandoned)
                raise

        self._cap = cap
        self._active_index = index
        self._running = True
        self._paused = False
        self._loop_task = asyncio.get_running_loop().create_task(
            self._capture_loop(cap, config, on_decoded, on_frame_error)
        )
        logger.info(f"📷 Camera {index} streaming ({config.get('tier', 'custom')})")

    async def stop(self) -> None:
        self._running = False
        task, self._loop_task = self._loop_task, None
        cap, self._cap = self._cap, None
        self._active_index = None

        try:
            if task is not None:
                await task
        except Exception as e:
            logger.error(f"Capture loop ended with error: {e}")
        finally:
            if cap is not None:
                async with self._io_lock:
                    await asyncio.to_thread(cap.release)
                logger.info("Camera released")

    def pause(self, pause_video: bool) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    # =========================================================================
    # CONSTRAINTS AND DEVICES
    # =========================================================================

    async def apply_video_constraints(self, constraints: Dict[str, Any]) -> None:
        cap = self._cap
        if cap is None:
            raise EngineError("InvalidStateError: camera not started")

        flat = {key: value for key, value in constraints.items() if key != "advanced"}
        for entry in constraints.get("advanced", []):
            flat.update(entry)

        if "torch" in flat:
            raise EngineError("NotSupportedError: torch is not exposed by OpenCV capture devices")

        async with self._io_lock:
            await asyncio.to_thread(self._apply_to_capture, cap, flat)

    async def get_cameras(self) -> List[CameraDescriptor]:
        return await asyncio.to_thread(self._probe_cameras)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _resolve_index(self, camera: CameraDescriptor) -> int:
        if camera.is_facing_mode:
            return self._camera_index + (1 if camera.id == FACING_USER else 0)
        try:
            return int(camera.id)
        except ValueError:
            raise EngineError(f"NotFoundError: unknown camera {camera.id!r}") from None

    def _open_capture(self, index: int, config: Dict[str, Any]) -> cv2.VideoCapture:
        device = Path(f"/dev/video{index}")
        if device.exists() and not os.access(device, os.R_OK | os.W_OK):
            raise EngineError(f"NotAllowedError: Permission denied for {device}")

        cap = cv2.VideoCapture(index)
        if not cap.isOpened():
            cap.release()
            raise EngineError(f"NotReadableError: Cannot open camera {index}")

        try:
            self._apply_to_capture(cap, config.get("video_constraints", {}))
            cap.set(cv2.CAP_PROP_FPS, config.get("fps", 10))
            ok, _ = cap.read()
            if not ok:
                raise EngineError(f"NotReadableError: Camera {index} returned no frames")
        except Exception:
            cap.release()
            raise
        return cap

    @staticmethod
    def _apply_to_capture(cap: cv2.VideoCapture, constraints: Dict[str, Any]) -> None:
        if "zoom" in constraints:
            if not cap.set(cv2.CAP_PROP_ZOOM, float(constraints["zoom"])):
                raise EngineError("NotSupportedError: zoom is not supported by this camera")

        width = constraints.get("width")
        height = constraints.get("height")
        if width is None and height is None:
            return

        if width is not None:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, _ideal(width))
        if height is not None:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, _ideal(height))

        actual_width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        min_width = width.get("min") if isinstance(width, dict) else None
        min_height = height.get("min") if isinstance(height, dict) else None

        if (min_width and actual_width < min_width) or (min_height and actual_height < min_height):
            raise EngineError(
                f"OverconstrainedError: camera delivers {actual_width}x{actual_height}, "
                f"need at least {min_width or 0}x{min_height or 0}"
            )

    def _probe_cameras(self) -> List[CameraDescriptor]:
        cameras = []
        for index in range(self._probe_limit):
            if index == self._active_index:
                cameras.append(self._describe(index, self._cap))
                continue

            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    cameras.append(self._describe(index, cap))
            finally:
                cap.release()
        return cameras

    @staticmethod
    def _describe(index: int, cap: cv2.VideoCapture) -> CameraDescriptor:
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        return CameraDescriptor(
            id=str(index),
            label=f"Camera {index}",
            capabilities=CameraCapabilities(
                resolutions=[(width, height)] if width and height else [],
                torch=False,
            ),
        )

    async def _capture_loop(
        self,
        cap: cv2.VideoCapture,
        config: Dict[str, Any],
        on_decoded: DecodedCallback,
        on_frame_error: FrameErrorCallback,
    ) -> None:
        interval = 1.0 / max(int(config.get("fps", 10)), 1)
        flip = not config.get("disable_flip", False)
        symbols = symbols_for(config.get("formats", []))

        failures = 0

        while self._running:
            if self._paused:
                await asyncio.sleep(interval)
                continue

            try:
                async with self._io_lock:
                    ok, frame = await asyncio.to_thread(cap.read)
                texts = await asyncio.to_thread(decode_frame, frame, symbols, flip) if ok else []
            except Exception as e:
                failures += 1
                # Log the first failure of a run; the rest are repeats
                if failures == 1:
                    logger.error(f"❌ Frame capture failed: {e}")
                else:
                    logger.debug(f"Frame capture failed ({failures} in a row): {e}")
                on_frame_error(f"NotReadableError: {e}")
                await asyncio.sleep(interval)
                continue

            if not ok:
                on_frame_error("NotReadableError: failed to read frame")
                await asyncio.sleep(interval)
                continue

            if failures:
                logger.info(f"Frame capture recovered after {failures} failure(s)")
                failures = 0
            if not self._running or self._paused:
                continue

            if not texts:
                on_frame_error(NO_CODE_MESSAGE)
            for text in texts:
                on_decoded(text)

            await asyncio.sleep(interval)


def _release_abandoned(opening: asyncio.Future) -> None:
    """Release a capture whose opener was cancelled before it was handed over."""
    if opening.cancelled() or opening.exception() is not None:
        return
    opening.result().release()
    logger.info("Released camera opened after cancellation")


def _ideal(value: Any) -> float:
    if isinstance(value, dict):
        return float(value.get("ideal", value.get("min", 0)))
    return float(value)
