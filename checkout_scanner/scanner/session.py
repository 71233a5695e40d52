"""
==============================================================================
Session Controller Module
==============================================================================

Owns the camera lifecycle for one scanner.

Responsibilities:
----------------
- Start / stop / retry of the single ScanSession
- Resolution tier fallback (HD -> VGA -> QVGA)
- Automatic pause after each successful decode
- Camera switching as an internal stop-then-start
- Routing decoded codes through normalizer and resolver to the cart sink
- Driving the viewport transform and hardware zoom / torch

Concurrency:
-----------
Everything runs on one asyncio event loop. Concurrent ``start`` calls
collapse onto the in-flight initialization. ``stop`` cancels that
initialization through a CancellationToken and waits for it, so a camera
stream that materializes after the stop is released before ``stop``
returns.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from checkout_scanner.config import Settings, get_settings
from checkout_scanner.core import exceptions
from checkout_scanner.core.exceptions import ScannerException

from .adapter import FrameDecodeAdapter, ScanCooldown, monotonic_ms
from .bootstrap import CapabilityBootstrap
from .contracts import CartSink, CatalogSource, DecodingEngine, is_permission_error
from .feedback import ScannerRenderer
from .models import (
    FACING_USER,
    CameraCapabilities,
    CameraDescriptor,
    DecodeEvent,
    ProductMatch,
    ScanMode,
    ScanSession,
)
from .resolver import ProductResolver
from .state import (
    STARTABLE_STATES,
    STREAMING_STATES,
    SessionEvent,
    SessionState,
    can_transition,
    transition,
)
from .tiers import ResolutionTier, get_tier, tier_chain
from .viewport import ViewportTransformController, ZoomState


# Module logger
logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag for one camera acquisition."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class SessionController:
    """
    State machine owning the scanner's camera lifecycle.

    The catalog and cart sink are injected; the controller keeps no global
    state, and at most one session exists per controller.

    Attributes:
        state: Current SessionState
        session: Active ScanSession, or None when stopped
        last_error: Error that moved the session to ERROR
        viewport: Digital zoom / pan controller for the preview

    Example:
        >>> controller = SessionController(engine, catalog, cart)
        >>> await controller.start()
        <SessionState.SCANNING: 'scanning'>
        >>> await controller.switch_camera()
        >>> await controller.stop()
    """

    def __init__(
        self,
        engine: DecodingEngine,
        catalog: CatalogSource,
        cart: CartSink,
        bootstrap: Optional[CapabilityBootstrap] = None,
        renderer: Optional[ScannerRenderer] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        """
        Initialize the controller.

        Args:
            engine: Decoding engine owning the camera stream
            catalog: Product catalog for resolution
            cart: Sink receiving resolved products
            bootstrap: Shared warm-up state (a non-probing one is created if None)
            renderer: Host UI render commands (headless if None)
            settings: Configuration (global settings if None)
            clock: Millisecond clock used to timestamp decode events
        """
        self._settings = settings or get_settings()
        self._engine = engine
        self._cart = cart
        self._renderer = renderer or ScannerRenderer()
        self._bootstrap = bootstrap or CapabilityBootstrap(engine, probe_permission=False)
        self._resolver = ProductResolver(catalog, self._settings.fuzzy_match_threshold)
        self._cooldown = ScanCooldown(self._settings.cooldown_window_ms)

        self._adapter = FrameDecodeAdapter(
            self._cooldown,
            on_code=self._handle_code,
            on_permission_lost=self._handle_permission_lost,
            on_unreadable=self._handle_unreadable,
            is_active=lambda: self._state is SessionState.SCANNING,
            session_id=lambda: self._session.session_id if self._session else None,
            clock=clock,
        )

        self._viewport = ViewportTransformController(
            pause=lambda: self.pause("drag"),
            resume=lambda: self.resume("drag"),
            step=self._settings.zoom_step,
            max_zoom=self._settings.max_zoom,
            pan_unit=self._settings.pan_unit_px,
        )
        self._viewport.subscribe(self._on_zoom_changed)

        self._state = SessionState.IDLE
        self._session: Optional[ScanSession] = None
        self._last_error: Optional[ScannerException] = None
        self._camera = CameraDescriptor.environment()
        self._cameras: List[CameraDescriptor] = []
        self._preferred_tier = self._settings.preferred_resolution_tier
        self._mode = ScanMode.CART
        self._capture_callback: Optional[Callable[[str], Any]] = None

        self._init_task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self._stream_active = False
        self._pause_holds: Set[str] = set()
        self._resume_handle: Optional[asyncio.TimerHandle] = None
        self._torch_on = False
        self._hardware_zoom: Optional[float] = None
        self._background: Set[asyncio.Task] = set()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[ScanSession]:
        return self._session

    @property
    def last_error(self) -> Optional[ScannerException]:
        return self._last_error

    @property
    def camera(self) -> CameraDescriptor:
        return self._camera

    @property
    def mode(self) -> ScanMode:
        return self._mode

    @property
    def viewport(self) -> ViewportTransformController:
        return self._viewport

    @property
    def adapter(self) -> FrameDecodeAdapter:
        return self._adapter

    @property
    def cooldown(self) -> ScanCooldown:
        return self._cooldown

    @property
    def bootstrap(self) -> CapabilityBootstrap:
        return self._bootstrap

    @property
    def torch_on(self) -> bool:
        return self._torch_on

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> SessionState:
        """
        Start scanning.

        No-op while a start is in flight or the session is already
        scanning; concurrent callers wait for the in-flight attempt.

        Returns:
            State after the attempt (SCANNING, or ERROR with last_error set)
        """
        task = self._init_task
        if task is not None and not task.done():
            await asyncio.shield(task)
            return self._state

        if self._state not in STARTABLE_STATES:
            logger.debug(f"Start ignored while {self._state.value}")
            return self._state

        self._begin_session()
        self._apply(SessionEvent.START)
        await asyncio.shield(self._launch_initialize())
        return self._state

    async def retry(self) -> SessionState:
        """Retry action exposed to the UI after a recoverable error."""
        if self._state is not SessionState.ERROR:
            return self._state
        logger.info("🔄 Retrying scan session")
        return await self.start()

    async def stop(self) -> None:
        """
        Stop scanning and release the camera.

        Valid from any state except IDLE. Cancels an in-flight camera
        acquisition and waits for it, so the stream is always released
        before this returns. Resets the cooldown and the zoom state.
        """
        if self._state is SessionState.IDLE:
            return

        if self._token is not None:
            self._token.cancel()
        self._cancel_resume()
        self._pause_holds.clear()

        if self._state is not SessionState.STOPPED:
            self._apply(SessionEvent.STOP)

        task = self._init_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            try:
                await asyncio.shield(task)
            except Exception as e:
                logger.error(f"Camera initialization ended with error during stop: {e}")

        await self._release_stream()

        self._cooldown.reset()
        self._viewport.reset()
        self._session = None
        self._torch_on = False
        self._hardware_zoom = None
        logger.info("🛑 Scan session stopped")

    async def close(self) -> None:
        """Stop the session and cancel warm-up and background work."""
        await self.stop()
        await self._bootstrap.close()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def pause(self, reason: str = "manual") -> bool:
        """
        Pause decoding without releasing the stream.

        Pauses are held per reason; decoding resumes only after every
        holder has called ``resume``.

        Returns:
            True if the session is paused on return
        """
        if self._state is SessionState.SCANNING:
            self._engine.pause(True)
            self._apply(SessionEvent.PAUSE)
        elif self._state is not SessionState.PAUSED:
            return False

        self._pause_holds.add(reason)
        return True

    def resume(self, reason: str = "manual") -> bool:
        """
        Release a pause hold.

        Returns:
            True if decoding resumed
        """
        if self._state is not SessionState.PAUSED:
            return False

        self._pause_holds.discard(reason)
        if self._pause_holds:
            return False

        self._engine.resume()
        self._apply(SessionEvent.RESUME)
        return True

    # =========================================================================
    # CAMERA CONTROL
    # =========================================================================

    async def switch_camera(self) -> CameraDescriptor:
        """
        Advance to the next camera in device-list order.

        Raises:
            ScannerException: DEVICE_UNAVAILABLE when fewer than two cameras
                exist (state unchanged), INVALID_TRANSITION when not scanning

        Returns:
            The camera now in use
        """
        if self._state not in (SessionState.SCANNING, SessionState.PAUSED):
            raise exceptions.invalid_transition(self._state.value, SessionEvent.SWITCH.value)

        # Rejected switches leave the state and pause holds untouched
        next_camera = await self._next_camera()

        if self._state is SessionState.PAUSED:
            self._cancel_resume()
            self._pause_holds.clear()
            self.resume()

        if self._state is not SessionState.SCANNING:
            raise exceptions.invalid_transition(self._state.value, SessionEvent.SWITCH.value)

        logger.info(f"📷 Switching camera {self._camera.id} -> {next_camera.id}")
        self._apply(SessionEvent.SWITCH)
        await self._release_stream()

        if self._state is not SessionState.SWITCHING_CAMERA:
            return self._camera

        self._camera = next_camera
        self._torch_on = False
        self._hardware_zoom = None
        self._viewport.reset()
        if self._session is not None:
            self._session.rejected_tiers.clear()

        self._apply(SessionEvent.REINITIALIZE)
        await asyncio.shield(self._launch_initialize())
        return self._camera

    async def toggle_torch(self) -> bool:
        """
        Turn the torch on or off.

        Raises:
            ScannerException: DEVICE_UNAVAILABLE when the camera has no torch
        """
        if self._state not in STREAMING_STATES:
            raise exceptions.invalid_transition(self._state.value, "toggle_torch")

        desired = not self._torch_on
        try:
            await self._engine.apply_video_constraints({"advanced": [{"torch": desired}]})
        except Exception as e:
            logger.info(f"Torch not supported on camera {self._camera.id}: {e}")
            raise exceptions.device_unavailable(
                "Torch is not supported on this camera", camera=self._camera.id
            ) from e

        self._torch_on = desired
        self._renderer.notify("torch_changed", on=desired)
        return desired

    async def change_tier(self, name: str) -> SessionState:
        """
        Change the preferred resolution tier.

        While streaming the tier's constraints are applied live; if the
        device refuses them the session restarts at that tier.
        """
        tier = get_tier(name)
        self._preferred_tier = tier.name

        if self._state not in STREAMING_STATES:
            return self._state

        paused = self.pause("tier")
        try:
            await self._engine.apply_video_constraints(tier.video_constraints())
        except Exception as e:
            logger.warning(f"Live switch to {tier.name.upper()} failed, restarting: {e}")
            await self.stop()
            return await self.start()
        finally:
            if paused:
                self.resume("tier")

        if self._session is not None:
            self._session.resolution_tier = tier.name
        self._renderer.notify("tier_changed", tier=tier.name)
        return self._state

    def set_mode(
        self,
        mode: ScanMode,
        capture_callback: Optional[Callable[[str], Any]] = None
    ) -> None:
        """
        Choose what decoded barcodes are used for.

        Args:
            mode: CART to add products, CAPTURE to hand back the raw barcode
            capture_callback: Receives the raw barcode in CAPTURE mode
        """
        self._mode = ScanMode(mode)
        self._capture_callback = capture_callback
        logger.info(f"Scan mode: {self._mode.value}")

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def _begin_session(self) -> None:
        error = self._last_error
        if (
            self._state is SessionState.ERROR
            and self._session is not None
            and error is not None
            and error.retryable
        ):
            self._session.retry_count += 1
        else:
            self._session = ScanSession(session_id=uuid.uuid4().hex, camera=self._camera)
        self._last_error = None

    def _launch_initialize(self) -> asyncio.Task:
        token = CancellationToken()
        self._token = token
        self._init_task = asyncio.get_running_loop().create_task(self._initialize(token))
        return self._init_task

    async def _initialize(self, token: CancellationToken) -> None:
        try:
            await self._bootstrap.wait_until_ready(
                self._settings.library_load_timeout_seconds
            )
            if token.cancelled:
                return

            await self._bootstrap.cancel_probe()
            async with self._bootstrap.engine_lock:
                tier = await self._acquire(token)

            if tier is None or token.cancelled:
                return

            self._apply(SessionEvent.STREAM_READY)
        except ScannerException as error:
            if not token.cancelled:
                await self._fail(error)
            return

        logger.info(f"✅ Scanning with camera {self._camera.id} at {tier.name.upper()}")
        self._renderer.show_guide()
        await self._announce_cameras()

    async def _acquire(self, token: CancellationToken) -> Optional[ResolutionTier]:
        """
        Try each remaining tier until the engine accepts one.

        Returns:
            The accepted tier, or None if cancelled

        Raises:
            ScannerException: PERMISSION_DENIED or CONFIG_UNSUPPORTED
        """
        session = self._session
        traits = self._bootstrap.traits

        for tier in tier_chain(self._preferred_tier, session.rejected_tiers):
            if token.cancelled:
                return None

            config = tier.engine_config(
                self._camera,
                self._bootstrap.symbologies,
                square_aspect=traits.is_firefox,
            )
            logger.info(f"📷 Starting camera {self._camera.id} at {tier.name.upper()}")

            try:
                await self._engine.start(
                    self._camera,
                    config,
                    self._adapter.on_decoded,
                    self._adapter.on_frame_error,
                )
            except Exception as e:
                if token.cancelled:
                    return None
                if is_permission_error(str(e)):
                    raise exceptions.permission_denied(str(e)) from e
                logger.warning(f"Tier {tier.name.upper()} rejected: {e}")
                session.rejected_tiers.append(tier.name)
                continue

            self._stream_active = True
            if token.cancelled:
                logger.info("Stream arrived after stop, releasing it")
                await self._release_stream()
                return None

            session.resolution_tier = tier.name
            session.camera = self._camera
            return tier

        raise exceptions.config_unsupported(list(session.rejected_tiers))

    async def _announce_cameras(self) -> None:
        try:
            self._cameras = await self._engine.get_cameras()
        except Exception as e:
            logger.info(f"Camera enumeration unavailable: {e}")
            self._cameras = []

        self._renderer.notify(
            "camera_switch_available",
            available=len(self._cameras) > 1,
            cameras=[camera.id for camera in self._cameras],
        )

    async def _next_camera(self) -> CameraDescriptor:
        try:
            cameras = await self._engine.get_cameras()
        except Exception as e:
            logger.warning(f"Camera enumeration failed, toggling facing mode: {e}")
            if self._camera.id == FACING_USER:
                return CameraDescriptor.environment()
            return CameraDescriptor.user()

        if len(cameras) < 2:
            logger.warning(f"Camera switch rejected: {len(cameras)} camera(s) available")
            raise exceptions.device_unavailable(
                "Only one camera is available on this device" if cameras
                else "No cameras available on this device",
                cameras=len(cameras),
            )

        self._cameras = cameras
        ids = [camera.id for camera in cameras]
        # A facing-mode sentinel is treated as the first listed device
        index = ids.index(self._camera.id) if self._camera.id in ids else 0
        return cameras[(index + 1) % len(cameras)]

    # =========================================================================
    # FAILURE AND TEARDOWN
    # =========================================================================

    async def _fail(self, error: ScannerException) -> None:
        """Move to ERROR, release the stream and surface the error."""
        logger.error(f"❌ Scan session failed [{error.code}]: {error.message}")
        self._last_error = error
        self._cancel_resume()
        self._pause_holds.clear()

        if can_transition(self._state, SessionEvent.FAIL):
            self._apply(SessionEvent.FAIL)

        await self._release_stream()

        self._renderer.show_error(error)
        self._renderer.play_feedback("error")
        self._renderer.notify("error", **error.to_dict()["error"])

        if error.retryable:
            self._renderer.show_retry(self.retry)
            self._renderer.notify("retry_available", code=error.code)

    async def _release_stream(self) -> None:
        if not self._stream_active:
            return
        self._stream_active = False
        try:
            await self._engine.stop()
        except Exception as e:
            logger.warning(f"Error releasing camera stream: {e}")

    def _cancel_resume(self) -> None:
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None

    # =========================================================================
    # DECODE HANDLING
    # =========================================================================

    def _handle_code(self, event: DecodeEvent, code: str) -> None:
        if self._mode is ScanMode.CAPTURE:
            self._handle_capture(event, code)
            return

        match = self._resolver.resolve(code, raw_text=event.raw_text)
        if match is None:
            self._renderer.play_feedback("error")
            self._renderer.notify(
                "scan_result",
                status="not_found",
                barcode=code,
                raw_text=event.raw_text,
                message=exceptions.product_not_found(code).message,
            )
            return

        try:
            self._cart.add_item(match.product, 1)
        except Exception as e:
            logger.error(f"Cart rejected product {match.barcode}: {e}")
            self._renderer.play_feedback("error")
            self._renderer.notify("scan_result", status="error", barcode=code, message=str(e))
            return

        self._renderer.play_feedback("success")
        self._renderer.notify("scan_result", status="success", **self._describe(match, event, code))
        self._hold_after_decode()

    def _handle_capture(self, event: DecodeEvent, code: str) -> None:
        logger.info(f"Captured barcode {event.raw_text!r}")
        self._renderer.play_feedback("success")
        self._renderer.notify(
            "scan_result", status="captured", barcode=event.raw_text, normalized=code
        )
        if self._capture_callback is not None:
            self._capture_callback(event.raw_text)
        self.pause("capture")
        self._spawn(self.stop())

    def _handle_unreadable(self, event: DecodeEvent) -> None:
        self._renderer.notify(
            "scan_result",
            status="extraction_failure",
            raw_text=event.raw_text,
            message=exceptions.extraction_failure(event.raw_text).message,
        )

    def _handle_permission_lost(self, message: str) -> None:
        if self._state not in STREAMING_STATES:
            return
        self._spawn(self._fail(exceptions.permission_denied(message)))

    def _hold_after_decode(self) -> None:
        if not self.pause("decode"):
            return
        self._cancel_resume()
        self._resume_handle = asyncio.get_running_loop().call_later(
            self._settings.resume_delay_seconds, self._resume_after_decode
        )

    def _resume_after_decode(self) -> None:
        self._resume_handle = None
        self.resume("decode")

    @staticmethod
    def _describe(match: ProductMatch, event: DecodeEvent, code: str) -> Dict[str, Any]:
        product = match.product
        if hasattr(product, "model_dump"):
            product = product.model_dump()
        return {
            "barcode": code,
            "raw_text": event.raw_text,
            "matched_barcode": match.barcode,
            "match_kind": match.match_kind.value,
            "confidence": round(match.confidence, 3),
            "product": product,
        }

    # =========================================================================
    # ZOOM
    # =========================================================================

    def _on_zoom_changed(self, zoom: ZoomState) -> None:
        self._renderer.notify(
            "zoom_changed",
            factor=zoom.factor,
            pan={"x": zoom.pan.x, "y": zoom.pan.y},
            transform=zoom.transform(),
        )

        capabilities = self._current_capabilities()
        if not self._stream_active or capabilities is None or capabilities.zoom_range is None:
            return

        low, high = capabilities.zoom_range
        value = min(max(zoom.factor, low), high)
        if value == self._hardware_zoom:
            return
        self._hardware_zoom = value
        self._spawn(self._apply_hardware_zoom(value))

    async def _apply_hardware_zoom(self, value: float) -> None:
        try:
            await self._engine.apply_video_constraints({"advanced": [{"zoom": value}]})
        except Exception as e:
            logger.info(f"Hardware zoom not supported, using digital zoom: {e}")

    def _current_capabilities(self) -> Optional[CameraCapabilities]:
        if self._camera.capabilities is not None:
            return self._camera.capabilities
        for camera in self._cameras:
            if camera.id == self._camera.id:
                return camera.capabilities
        return None

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _apply(self, event: SessionEvent) -> None:
        previous = self._state
        self._state = transition(previous, event)
        logger.debug(f"Session {previous.value} -> {self._state.value} ({event.value})")
        self._renderer.notify(
            "state_changed",
            state=self._state.value,
            previous=previous.value,
            session_id=self._session.session_id if self._session else None,
        )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
