"""
==============================================================================
Scanner WebSocket Module
==============================================================================

Bridges a browser checkout UI to a SessionController.

Protocol:
---------
1. Client connects; server answers with a "ready" message carrying the
   platform traits and resolution tiers
2. Client sends commands: {"command": "start"}, {"command": "zoom_in"}, ...
3. Server pushes UI events (state_changed, scan_result, zoom_changed, ...)
   and cart_item messages for every product added to the cart
4. Client sends {"command": "close"} or disconnects; the camera is released

Only one scan session may hold the camera per process.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from checkout_scanner.catalog import Product, ProductResponse, get_catalog
from checkout_scanner.config import Settings, get_settings
from checkout_scanner.core import exceptions
from checkout_scanner.core.exceptions import ScannerException
from checkout_scanner.scanner import (
    CapabilityBootstrap,
    DecodingEngine,
    ScanMode,
    ScannerRenderer,
    SessionController,
    UIEvent,
)
from checkout_scanner.scanner.feedback import RetryAction
from checkout_scanner.scanner.tiers import TIER_ORDER


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter()

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")

# Commands that can wait on the camera; they run beside the receive loop so
# a later "stop" is handled while they are in flight
BACKGROUND_COMMANDS = frozenset({"start", "retry", "switch_camera", "set_tier"})


class SessionGuard:
    """Allows one scan session to own the camera at a time."""

    def __init__(self) -> None:
        self._owner: Optional[object] = None

    @property
    def busy(self) -> bool:
        return self._owner is not None

    def acquire(self, owner: object) -> bool:
        if self._owner is not None and self._owner is not owner:
            return False
        self._owner = owner
        return True

    def release(self, owner: object) -> None:
        if self._owner is owner:
            self._owner = None


class WebSocketRenderer(ScannerRenderer):
    """Queues render commands as JSON messages for the socket sender."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()
        self.retry_action: Optional[RetryAction] = None

    def show_guide(self) -> None:
        self.send({"type": "guide", "visible": True})

    def show_retry(self, action: RetryAction) -> None:
        self.retry_action = action

    def play_feedback(self, kind: str) -> None:
        self.send({"type": "feedback", "kind": kind})

    def emit(self, event: UIEvent) -> None:
        self.send(event.to_message())

    def send(self, message: Dict[str, Any]) -> None:
        self.queue.put_nowait(message)


class WebSocketCartSink:
    """
    Cart sink that merges repeated products and reports the running quantity.
    """

    def __init__(self, renderer: WebSocketRenderer) -> None:
        self._renderer = renderer
        self.quantities: Dict[str, int] = {}

    def add_item(self, product: Product, quantity: int) -> None:
        total = self.quantities.get(product.barcode, 0) + quantity
        self.quantities[product.barcode] = total
        logger.info(f"🛒 {product.name} x{total}")
        self._renderer.send({
            "type": "cart_item",
            "product": ProductResponse.from_product(product).model_dump(),
            "quantity": total,
        })


class ScannerWebSocketHandler:
    """
    Handler for scanner WebSocket connections.

    Manages the lifecycle of one scan session including:
    - Single-session guard
    - Engine warm-up and platform detection
    - Command dispatch
    - Ordered delivery of UI events
    """

    def __init__(
        self,
        websocket: WebSocket,
        guard: SessionGuard,
        engine_factory: Callable[[Settings], DecodingEngine],
        settings: Optional[Settings] = None,
    ):
        self._websocket = websocket
        self._guard = guard
        self._engine_factory = engine_factory
        self._settings = settings or get_settings()
        self._renderer = WebSocketRenderer()
        self._cart = WebSocketCartSink(self._renderer)
        self._controller: Optional[SessionController] = None
        self._sender: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

        self._commands: Dict[str, Callable[[dict], Awaitable[Any]]] = {
            "start": self._start,
            "stop": self._stop,
            "retry": self._retry,
            "pause": self._pause,
            "resume": self._resume,
            "switch_camera": self._switch_camera,
            "zoom_in": self._zoom_in,
            "zoom_out": self._zoom_out,
            "drag_start": self._drag_start,
            "drag_move": self._drag_move,
            "drag_end": self._drag_end,
            "toggle_torch": self._toggle_torch,
            "set_tier": self._set_tier,
            "set_mode": self._set_mode,
        }

    # =========================================================================
    # CONNECTION
    # =========================================================================

    @property
    def secure_context(self) -> bool:
        url = self._websocket.url
        return url.scheme == "wss" or url.hostname in LOCAL_HOSTS

    async def send_error(self, error: ScannerException) -> None:
        """Send error message to client."""
        await self._websocket.send_json({"type": "error", **error.to_dict()["error"]})

    def _build_controller(self, catalog) -> SessionController:
        engine = self._engine_factory(self._settings)
        bootstrap = CapabilityBootstrap(
            engine,
            user_agent=self._websocket.headers.get("user-agent"),
            probe_permission=self._settings.early_permission_probe,
            secure_context=self.secure_context,
        )
        return SessionController(
            engine,
            catalog,
            self._cart,
            bootstrap=bootstrap,
            renderer=self._renderer,
            settings=self._settings,
        )

    async def _send_loop(self) -> None:
        while True:
            message = await self._renderer.queue.get()
            await self._websocket.send_json(message)

    async def run(self) -> None:
        """Main handler loop."""
        await self._websocket.accept()
        logger.info("📱 Scanner WebSocket connected")

        catalog = get_catalog()
        if catalog is None:
            await self.send_error(exceptions.catalog_not_loaded())
            await self._websocket.close()
            return

        if not self._guard.acquire(self):
            logger.warning("Rejected scanner connection: camera already in use")
            await self.send_error(
                exceptions.device_unavailable("Another scan session is using the camera")
            )
            await self._websocket.close()
            return

        self._controller = self._build_controller(catalog)
        self._sender = asyncio.create_task(self._send_loop())

        try:
            bootstrap = self._controller.bootstrap
            bootstrap.warm_up()
            self._renderer.send({
                "type": "ready",
                "platform": bootstrap.traits.model_dump(exclude={"user_agent"}),
                "tiers": [tier.name for tier in TIER_ORDER],
                "symbologies": bootstrap.symbologies,
                "mode": self._controller.mode.value,
            })

            while True:
                try:
                    data = await self._websocket.receive_json()
                except (ValueError, TypeError, KeyError) as e:
                    self._reject(None, f"Malformed command message: {e}")
                    continue

                if not isinstance(data, dict):
                    data = {}
                command = data.get("command") or data.get("type")
                if command == "close":
                    logger.info("🛑 Client closed the scanner")
                    break
                if command in BACKGROUND_COMMANDS:
                    self._run_in_background(command, data)
                    # Let it take its first step before the next command is read
                    await asyncio.sleep(0)
                else:
                    await self.dispatch(command, data)

        except WebSocketDisconnect:
            logger.info("📱 Client disconnected")
        finally:
            await self._shutdown()
            logger.info("✅ Scanner WebSocket closed")

    async def _shutdown(self) -> None:
        try:
            await self._controller.close()
        finally:
            self._guard.release(self)
            for task in list(self._pending):
                task.cancel()
            if self._pending:
                await asyncio.gather(*self._pending, return_exceptions=True)
            if self._sender is not None:
                self._sender.cancel()
                try:
                    await self._sender
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug(f"Sender stopped: {e}")

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def dispatch(self, command: Optional[str], data: dict) -> None:
        """Run one client command, reporting failures as error messages."""
        handler = self._commands.get(command)
        try:
            if handler is None:
                raise exceptions.invalid_command(command)
            result = await handler(data)
        except ScannerException as e:
            logger.info(f"Command {command} failed [{e.code}]: {e.message}")
            self._renderer.notify("error", command=command, **e.to_dict()["error"])
            return
        except (ValueError, TypeError) as e:
            self._reject(command, str(e))
            return

        self._renderer.notify(
            "ack",
            command=command,
            state=self._controller.state.value,
            result=result,
        )

    def _reject(self, command: Optional[str], reason: str) -> None:
        logger.info(f"Command {command} rejected: {reason}")
        error = ScannerException(reason, "INVALID_COMMAND", 400, {"command": command})
        self._renderer.notify("error", command=command, **error.to_dict()["error"])

    def _run_in_background(self, command: str, data: dict) -> None:
        task = asyncio.create_task(self.dispatch(command, data))
        self._pending.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background command failed: {task.exception()!r}")

    async def _start(self, data: dict):
        return (await self._controller.start()).value

    async def _stop(self, data: dict):
        await self._controller.stop()

    async def _retry(self, data: dict):
        action = self._renderer.retry_action
        self._renderer.retry_action = None
        if action is not None:
            return (await action()).value
        return (await self._controller.retry()).value

    async def _pause(self, data: dict):
        return self._controller.pause()

    async def _resume(self, data: dict):
        return self._controller.resume()

    async def _switch_camera(self, data: dict):
        camera = await self._controller.switch_camera()
        return camera.id

    async def _zoom_in(self, data: dict):
        return self._controller.viewport.zoom_in().factor

    async def _zoom_out(self, data: dict):
        return self._controller.viewport.zoom_out().factor

    async def _drag_start(self, data: dict):
        return self._controller.viewport.begin_drag(
            float(data.get("x", 0)), float(data.get("y", 0))
        )

    async def _drag_move(self, data: dict):
        pan = self._controller.viewport.drag_to(
            float(data.get("x", 0)), float(data.get("y", 0))
        ).pan
        return {"x": pan.x, "y": pan.y}

    async def _drag_end(self, data: dict):
        self._controller.viewport.end_drag()

    async def _toggle_torch(self, data: dict):
        return await self._controller.toggle_torch()

    async def _set_tier(self, data: dict):
        return (await self._controller.change_tier(str(data.get("tier", "")))).value

    async def _set_mode(self, data: dict):
        mode = ScanMode(data.get("mode", ScanMode.CART.value))
        callback = self._on_capture if mode is ScanMode.CAPTURE else None
        self._controller.set_mode(mode, callback)
        return mode.value

    def _on_capture(self, barcode: str) -> None:
        self._renderer.send({"type": "captured", "barcode": barcode})


@router.websocket("/ws/scan")
async def websocket_scan(websocket: WebSocket):
    """Real-time barcode scanning via WebSocket."""
    state = websocket.app.state
    handler = ScannerWebSocketHandler(
        websocket,
        guard=state.session_guard,
        engine_factory=state.engine_factory,
    )
    await handler.run()
