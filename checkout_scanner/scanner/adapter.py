"""
==============================================================================
Frame Decode Adapter Module
==============================================================================

Boundary to the decoding engine's per-frame callbacks.

- on_decoded: normalize the text, drop repeats inside the cooldown window,
  forward surviving codes to the session controller
- on_frame_error: ignore the steady "no barcode in this frame" noise and
  escalate only permission failures (covers revocation mid-session)

==============================================================================
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .contracts import is_permission_error
from .models import DecodeEvent
from .normalizer import normalize


# Module logger
logger = logging.getLogger(__name__)


DEFAULT_COOLDOWN_MS = 800


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class ScanCooldown:
    """
    Suppresses repeated reads of the same physical barcode.

    An event whose normalized code equals the last accepted code and arrives
    less than ``window_ms`` after it is suppressed. Suppressed events do not
    extend the window.
    """

    def __init__(self, window_ms: float = DEFAULT_COOLDOWN_MS) -> None:
        if window_ms < 0:
            raise ValueError("Cooldown window must not be negative")
        self.window_ms = window_ms
        self.last_normalized_code: Optional[str] = None
        self.last_timestamp: Optional[float] = None

    def should_suppress(self, code: str, timestamp: float) -> bool:
        """Check a code against the window without recording it."""
        if self.last_normalized_code != code or self.last_timestamp is None:
            return False
        return timestamp - self.last_timestamp < self.window_ms

    def accept(self, code: str, timestamp: float) -> bool:
        """
        Record the code unless it falls inside the window.

        Returns:
            True if the event should be forwarded
        """
        if self.should_suppress(code, timestamp):
            return False
        self.last_normalized_code = code
        self.last_timestamp = timestamp
        return True

    def reset(self) -> None:
        self.last_normalized_code = None
        self.last_timestamp = None


class FrameDecodeAdapter:
    """
    Wraps the engine callbacks for one controller.

    Attributes:
        cooldown: Shared ScanCooldown, reset by the controller on stop

    Example:
        >>> adapter = FrameDecodeAdapter(ScanCooldown(), on_code=handle)
        >>> adapter.on_decoded("8901030875071")   # forwarded
        >>> adapter.on_decoded("8901030875071")   # suppressed
    """

    def __init__(
        self,
        cooldown: ScanCooldown,
        on_code: Callable[[DecodeEvent, str], None],
        on_permission_lost: Optional[Callable[[str], None]] = None,
        on_unreadable: Optional[Callable[[DecodeEvent], None]] = None,
        is_active: Callable[[], bool] = lambda: True,
        session_id: Callable[[], Optional[str]] = lambda: None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self.cooldown = cooldown
        self._on_code = on_code
        self._on_permission_lost = on_permission_lost
        self._on_unreadable = on_unreadable
        self._is_active = is_active
        self._session_id = session_id
        self._clock = clock

    def on_decoded(self, text: str) -> None:
        """Engine callback for a decoded barcode text."""
        if not self._is_active():
            return

        event = DecodeEvent(
            raw_text=text,
            timestamp=self._clock(),
            session_id=self._session_id(),
        )

        code = normalize(text)
        if code is None:
            logger.debug(f"Extraction failure for {text!r}")
            if self._on_unreadable is not None:
                self._on_unreadable(event)
            return

        if not self.cooldown.accept(code, event.timestamp):
            return

        self._on_code(event, code)

    def on_frame_error(self, message: str) -> None:
        """Engine callback for frames that could not be decoded."""
        if not is_permission_error(message):
            return

        logger.error(f"Camera permission lost: {message}")
        if self._on_permission_lost is not None:
            self._on_permission_lost(message)
