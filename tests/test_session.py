"""
==============================================================================
Session Controller Tests
==============================================================================

Lifecycle, tier fallback, decode routing and camera control against the
scripted FakeEngine.

==============================================================================
"""

import asyncio

import pytest

from checkout_scanner.config import Settings
from checkout_scanner.core.exceptions import ScannerException
from checkout_scanner.scanner import (
    CameraCapabilities,
    CameraDescriptor,
    CapabilityBootstrap,
    EngineError,
    ScanMode,
    SessionController,
    SessionState,
)


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestStart:
    """Starting a session."""

    async def test_start_reaches_scanning(self, controller, engine, renderer):
        assert await controller.start() is SessionState.SCANNING

        assert engine.active is True
        assert engine.tiers_tried == ["hd"]
        assert controller.session.resolution_tier == "hd"
        assert renderer.guides == 1

        states = [event.payload["state"] for event in renderer.of_type("state_changed")]
        assert states == ["initializing", "scanning"]
        assert renderer.of_type("camera_switch_available")[-1].payload["available"] is True

    async def test_start_while_scanning_is_noop(self, controller, engine):
        await controller.start()
        session_id = controller.session.session_id

        assert await controller.start() is SessionState.SCANNING
        assert len(engine.start_calls) == 1
        assert controller.session.session_id == session_id

    async def test_concurrent_starts_collapse(self, controller, engine):
        engine.start_gate = asyncio.Event()
        first = asyncio.create_task(controller.start())
        second = asyncio.create_task(controller.start())

        await engine.start_entered.wait()
        engine.start_gate.set()

        assert await asyncio.gather(first, second) == [SessionState.SCANNING] * 2
        assert len(engine.start_calls) == 1

    async def test_firefox_gets_square_preview(self, engine, catalog, cart, settings):
        bootstrap = CapabilityBootstrap(
            engine,
            user_agent="Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
            probe_permission=False,
        )
        controller = SessionController(engine, catalog, cart, bootstrap=bootstrap, settings=settings)
        await controller.start()
        assert engine.start_calls[0][1]["aspect_ratio"] == 1.0
        await controller.close()

    async def test_slow_permission_check_does_not_delay_start(self, engine, catalog, cart, settings):
        engine.start_gate = asyncio.Event()
        bootstrap = CapabilityBootstrap(engine, probe_permission=True)
        bootstrap.warm_up()
        await engine.start_entered.wait()

        # The warm-up request stays parked on its prompt; later starts go straight through
        engine.start_gate = None
        controller = SessionController(engine, catalog, cart, bootstrap=bootstrap, settings=settings)

        assert await asyncio.wait_for(controller.start(), 1.0) is SessionState.SCANNING
        assert bootstrap.permission_granted is None
        assert engine.cameras_started == ["environment", "environment"]
        assert engine.active is True
        await controller.close()


class TestTierFallback:
    """HD -> VGA -> QVGA."""

    async def test_falls_back_to_next_tier(self, controller, engine):
        engine.failing_tiers = {"hd"}
        assert await controller.start() is SessionState.SCANNING
        assert engine.tiers_tried == ["hd", "vga"]
        assert controller.session.rejected_tiers == ["hd"]

    async def test_all_tiers_rejected(self, controller, engine, renderer):
        engine.failing_tiers = {"hd", "vga", "qvga"}
        assert await controller.start() is SessionState.ERROR

        assert engine.tiers_tried == ["hd", "vga", "qvga"]
        assert controller.last_error.code == "CONFIG_UNSUPPORTED"
        assert controller.last_error.details["rejected_tiers"] == ["hd", "vga", "qvga"]
        assert renderer.retry_actions == []

    async def test_rejected_tier_not_retried_in_same_session(self, controller, engine):
        engine.failing_tiers = {"hd"}
        await controller.start()

        engine.on_frame_error("NotAllowedError: Permission denied")
        await settle()
        assert controller.state is SessionState.ERROR

        assert await controller.retry() is SessionState.SCANNING
        assert engine.tiers_tried == ["hd", "vga", "vga"]

    async def test_preferred_tier_from_settings(self, engine, catalog, cart):
        settings = Settings(_env_file=None, debug=False, preferred_resolution_tier="vga")
        controller = SessionController(engine, catalog, cart, settings=settings)
        await controller.start()
        assert engine.tiers_tried == ["vga"]
        await controller.close()


class TestPermission:
    """Permission failures and the retry action."""

    async def test_denied_then_retry_reaches_scanning(self, controller, engine, renderer):
        engine.deny_permission = True
        assert await controller.start() is SessionState.ERROR

        assert controller.last_error.code == "PERMISSION_DENIED"
        assert engine.tiers_tried == ["hd"]
        assert len(renderer.retry_actions) == 1
        assert renderer.errors[-1].code == "PERMISSION_DENIED"

        engine.deny_permission = False
        assert await renderer.retry_actions[-1]() is SessionState.SCANNING
        assert controller.session.retry_count == 1
        assert controller.last_error is None

    async def test_permission_revoked_mid_session(self, controller, engine, renderer):
        await controller.start()

        for _ in range(10):
            engine.on_frame_error("No barcode or QR code detected.")
        assert controller.state is SessionState.SCANNING

        engine.on_frame_error("NotAllowedError: Permission denied")
        await settle()

        assert controller.state is SessionState.ERROR
        assert controller.last_error.code == "PERMISSION_DENIED"
        assert engine.active is False
        assert len(renderer.retry_actions) == 1

    async def test_retry_outside_error_is_noop(self, controller, engine):
        assert await controller.retry() is SessionState.IDLE
        assert engine.start_calls == []


class TestLibraryLoad:
    """Bounded wait for the decoding engine."""

    async def test_slow_engine_fails_with_timeout(self, make_engine, catalog, cart, renderer):
        engine = make_engine(init_delay=5.0)
        settings = Settings(_env_file=None, debug=False, library_load_timeout_ms=100)
        controller = SessionController(engine, catalog, cart, renderer=renderer, settings=settings)

        assert await controller.start() is SessionState.ERROR
        assert controller.last_error.code == "LIBRARY_LOAD_TIMEOUT"
        assert engine.start_calls == []
        assert len(renderer.retry_actions) == 1
        await controller.close()


class TestStop:
    """Teardown."""

    async def test_stop_releases_stream(self, controller, engine):
        await controller.start()
        await controller.stop()

        assert controller.state is SessionState.STOPPED
        assert controller.session is None
        assert engine.active is False
        assert engine.stop_calls == 1

    async def test_stop_in_idle_is_noop(self, controller, engine):
        await controller.stop()
        assert controller.state is SessionState.IDLE
        assert engine.stop_calls == 0

    async def test_stop_mid_initializing_releases_late_stream(self, controller, engine):
        engine.start_gate = asyncio.Event()
        start_task = asyncio.create_task(controller.start())
        await engine.start_entered.wait()

        stop_task = asyncio.create_task(controller.stop())
        await asyncio.sleep(0)
        assert controller.state is SessionState.STOPPED

        engine.start_gate.set()
        await stop_task

        assert await start_task is SessionState.STOPPED
        assert engine.active is False
        assert engine.stop_calls == 1

    async def test_stop_resets_cooldown_and_zoom(self, controller, engine, cart):
        await controller.start()
        controller.viewport.zoom_in()
        engine.emit("8901030875071")
        await controller.stop()

        assert controller.viewport.state.factor == 1.0
        assert controller.cooldown.last_normalized_code is None

        await controller.start()
        engine.emit("8901030875071")
        assert cart.barcodes == ["8901030875071", "8901030875071"]

    async def test_restart_after_stop(self, controller, engine):
        await controller.start()
        first = controller.session.session_id
        await controller.stop()

        assert await controller.start() is SessionState.SCANNING
        assert controller.session.session_id != first


class TestDecodeRouting:
    """Decoded text through normalizer, resolver and cart."""

    async def test_exact_hit_added_to_cart(self, controller, engine, cart, renderer):
        await controller.start()
        engine.emit("8901030875071")

        assert cart.items[0][0].name == "Lifebuoy Total 10 125g"
        assert cart.items[0][1] == 1
        assert renderer.scan_statuses() == ["success"]
        assert renderer.feedback == ["success"]

        result = renderer.of_type("scan_result")[0].payload
        assert result["match_kind"] == "exact"
        assert result["product"]["barcode"] == "8901030875071"

    async def test_pause_after_decode_then_resume(self, controller, engine):
        await controller.start()
        engine.emit("8901030875071")

        assert controller.state is SessionState.PAUSED
        assert engine.paused is True

        await asyncio.sleep(0.1)
        assert controller.state is SessionState.SCANNING
        assert engine.paused is False

    async def test_repeat_inside_cooldown_ignored(self, controller, engine, cart):
        await controller.start()
        engine.emit("8901030875071")
        await asyncio.sleep(0.1)
        engine.emit("8901030875071")
        assert len(cart.items) == 1

    async def test_grouped_code_resolves_by_prefix(self, controller, engine, cart, renderer):
        await controller.start()
        engine.emit("89-0103-087507")

        assert cart.barcodes == ["8901030875071"]
        result = renderer.of_type("scan_result")[0].payload
        assert result["barcode"] == "890103087507"
        assert result["match_kind"] == "prefix"

    async def test_not_found(self, controller, engine, cart, renderer):
        await controller.start()
        engine.emit("0000000000000")

        assert cart.items == []
        assert renderer.scan_statuses() == ["not_found"]
        assert renderer.feedback == ["error"]
        assert controller.state is SessionState.SCANNING

    async def test_unreadable_text(self, controller, engine, cart, renderer):
        await controller.start()
        engine.emit("https://example.com")

        assert cart.items == []
        assert renderer.scan_statuses() == ["extraction_failure"]
        assert controller.state is SessionState.SCANNING

    async def test_capture_mode_returns_raw_code_and_stops(self, controller, engine, cart):
        captured = []
        controller.set_mode(ScanMode.CAPTURE, captured.append)
        await controller.start()
        engine.emit("89-0103-087507")
        await settle()

        assert captured == ["89-0103-087507"]
        assert cart.items == []
        assert controller.state is SessionState.STOPPED
        assert engine.active is False


class TestCameraSwitch:
    """Cycling through cameras."""

    async def test_single_camera_rejected_without_state_change(self, controller, engine):
        engine.cameras = [CameraDescriptor(id="cam-only")]
        await controller.start()

        with pytest.raises(ScannerException) as exc_info:
            await controller.switch_camera()

        assert exc_info.value.code == "DEVICE_UNAVAILABLE"
        assert controller.state is SessionState.SCANNING
        assert engine.active is True
        assert engine.stop_calls == 0

    async def test_switch_cycles_and_wraps(self, controller, engine, renderer):
        await controller.start()

        assert (await controller.switch_camera()).id == "cam-front"
        assert controller.state is SessionState.SCANNING
        assert (await controller.switch_camera()).id == "cam-back"

        assert engine.cameras_started == ["environment", "cam-front", "cam-back"]
        assert engine.stop_calls == 2
        assert "switching_camera" in [e.payload["state"] for e in renderer.of_type("state_changed")]

    async def test_switch_from_paused(self, controller, engine):
        await controller.start()
        controller.pause()
        await controller.switch_camera()
        assert controller.state is SessionState.SCANNING

    async def test_single_camera_rejected_while_paused(self, controller, engine):
        engine.cameras = [CameraDescriptor(id="cam-only")]
        await controller.start()
        controller.viewport.zoom_in()
        controller.viewport.begin_drag(0, 0)

        with pytest.raises(ScannerException) as exc_info:
            await controller.switch_camera()

        assert exc_info.value.code == "DEVICE_UNAVAILABLE"
        assert controller.state is SessionState.PAUSED
        controller.viewport.end_drag()
        assert controller.state is SessionState.SCANNING

    async def test_switch_when_idle_rejected(self, controller):
        with pytest.raises(ScannerException) as exc_info:
            await controller.switch_camera()
        assert exc_info.value.code == "INVALID_TRANSITION"

    async def test_enumeration_failure_toggles_facing_mode(self, controller, engine):
        await controller.start()
        engine.enumeration_error = EngineError("enumerateDevices unavailable")

        assert (await controller.switch_camera()).id == "user"
        assert (await controller.switch_camera()).id == "environment"


class TestCameraControls:
    """Pause holds, torch, tiers and zoom."""

    async def test_drag_pauses_decoding(self, controller, engine):
        await controller.start()
        controller.viewport.zoom_in()

        controller.viewport.begin_drag(0, 0)
        assert controller.state is SessionState.PAUSED
        assert engine.paused is True

        controller.viewport.end_drag()
        assert controller.state is SessionState.SCANNING

    async def test_pause_holds_stack(self, controller):
        await controller.start()
        controller.pause("manual")
        controller.pause("drag")

        assert controller.resume("manual") is False
        assert controller.state is SessionState.PAUSED
        assert controller.resume("drag") is True
        assert controller.state is SessionState.SCANNING

    async def test_torch_unsupported(self, controller):
        await controller.start()
        with pytest.raises(ScannerException) as exc_info:
            await controller.toggle_torch()
        assert exc_info.value.code == "DEVICE_UNAVAILABLE"
        assert controller.torch_on is False

    async def test_torch_toggle(self, controller, engine, renderer):
        engine.torch_supported = True
        await controller.start()

        assert await controller.toggle_torch() is True
        assert await controller.toggle_torch() is False
        assert engine.constraints[0] == {"advanced": [{"torch": True}]}
        assert len(renderer.of_type("torch_changed")) == 2

    async def test_live_tier_change(self, controller, engine):
        await controller.start()
        assert await controller.change_tier("vga") is SessionState.SCANNING

        assert engine.constraints[-1]["width"] == {"ideal": 640, "min": 640}
        assert controller.session.resolution_tier == "vga"
        assert len(engine.start_calls) == 1

    async def test_tier_change_falls_back_to_restart(self, controller, engine):
        await controller.start()
        engine.constraint_error = EngineError("OverconstrainedError")

        assert await controller.change_tier("qvga") is SessionState.SCANNING
        assert engine.tiers_tried == ["hd", "qvga"]

    async def test_unknown_tier(self, controller):
        with pytest.raises(ValueError):
            await controller.change_tier("8k")

    async def test_hardware_zoom_forwarded_when_supported(self, controller, engine, renderer):
        engine.cameras = [
            CameraDescriptor(id="cam-back"),
            CameraDescriptor(
                id="cam-zoom",
                capabilities=CameraCapabilities(zoom_range=(1.0, 4.0)),
            ),
        ]
        await controller.start()
        await controller.switch_camera()

        controller.viewport.zoom_in()
        await settle()

        assert {"advanced": [{"zoom": 1.25}]} in engine.constraints
        assert renderer.of_type("zoom_changed")[-1].payload["factor"] == 1.25

    async def test_digital_zoom_only_without_capability(self, controller, engine):
        await controller.start()
        controller.viewport.zoom_in()
        await settle()
        assert engine.constraints == []
