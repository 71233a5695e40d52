"""
==============================================================================
Frame Decode Adapter Tests
==============================================================================
"""

import pytest

from checkout_scanner.scanner import FrameDecodeAdapter, ScanCooldown


class Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def received():
    return {"codes": [], "unreadable": [], "permission": []}


@pytest.fixture
def adapter(clock, received) -> FrameDecodeAdapter:
    return FrameDecodeAdapter(
        ScanCooldown(800),
        on_code=lambda event, code: received["codes"].append((event.raw_text, code)),
        on_permission_lost=received["permission"].append,
        on_unreadable=lambda event: received["unreadable"].append(event.raw_text),
        session_id=lambda: "session-1",
        clock=clock,
    )


class TestScanCooldown:
    """Suppression window."""

    def test_repeat_within_window_suppressed(self):
        cooldown = ScanCooldown(800)
        assert cooldown.accept("8901030875071", 0) is True
        assert cooldown.accept("8901030875071", 500) is False

    def test_repeat_after_window_forwarded(self):
        cooldown = ScanCooldown(800)
        assert cooldown.accept("8901030875071", 0) is True
        assert cooldown.accept("8901030875071", 900) is True

    def test_suppressed_events_do_not_extend_window(self):
        cooldown = ScanCooldown(800)
        cooldown.accept("123456", 0)
        assert cooldown.accept("123456", 500) is False
        assert cooldown.accept("123456", 850) is True

    def test_different_code_always_forwarded(self):
        cooldown = ScanCooldown(800)
        cooldown.accept("123456", 0)
        assert cooldown.accept("654321", 10) is True

    def test_reset(self):
        cooldown = ScanCooldown(800)
        cooldown.accept("123456", 0)
        cooldown.reset()
        assert cooldown.accept("123456", 1) is True

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            ScanCooldown(-1)


class TestFrameDecodeAdapter:
    """Engine callbacks."""

    def test_forwards_normalized_code_with_raw_text(self, adapter, received):
        adapter.on_decoded("89-0103-087507")
        assert received["codes"] == [("89-0103-087507", "890103087507")]

    def test_cooldown_keyed_on_normalized_code(self, adapter, clock, received):
        adapter.on_decoded("8901030875071")
        clock.now += 500
        adapter.on_decoded(" 8901030875071 ")
        clock.now += 400
        adapter.on_decoded("8901030875071")
        assert len(received["codes"]) == 2

    def test_unreadable_text_reported(self, adapter, received):
        adapter.on_decoded("hello")
        assert received["codes"] == []
        assert received["unreadable"] == ["hello"]

    def test_inactive_adapter_drops_events(self, received):
        adapter = FrameDecodeAdapter(
            ScanCooldown(),
            on_code=lambda event, code: received["codes"].append(code),
            is_active=lambda: False,
        )
        adapter.on_decoded("8901030875071")
        assert received["codes"] == []

    def test_no_barcode_frames_are_ignored(self, adapter, received):
        for _ in range(50):
            adapter.on_frame_error("No barcode or QR code detected.")
        assert received["permission"] == []

    @pytest.mark.parametrize("message", [
        "NotAllowedError: Permission denied",
        "Permission dismissed",
    ])
    def test_permission_errors_escalated(self, adapter, received, message):
        adapter.on_frame_error(message)
        assert received["permission"] == [message]
