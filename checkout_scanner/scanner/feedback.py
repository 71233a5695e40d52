"""
==============================================================================
Scanner Feedback Module
==============================================================================

Render commands and UI events produced by the pipeline.

The pipeline never touches presentation. Host UIs subclass ScannerRenderer
and turn commands into whatever they draw (WebSocket messages, widgets,
terminal output).

Event types:
-----------
- state_changed: session state transitions
- scan_result: success / not_found / extraction_failure / captured
- retry_available: a retry action is exposed after a recoverable error
- camera_switch_available: whether more than one camera was enumerated
- zoom_changed: digital zoom factor and transform
- error: a ScannerException surfaced to the user

==============================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict

from pydantic import BaseModel, Field

from checkout_scanner.core.exceptions import ScannerException


# Module logger
logger = logging.getLogger(__name__)


RetryAction = Callable[[], Awaitable[Any]]


class UIEvent(BaseModel):
    """One event sent to the host UI."""

    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp, **self.payload}


class ScannerRenderer:
    """
    Render command interface implemented by the host UI.

    The base class only logs, so a controller works headless.
    """

    def show_guide(self) -> None:
        """Display the scan-area guide over the preview."""

    def show_error(self, error: ScannerException) -> None:
        """Display an error the user should see."""
        logger.warning(f"Scanner error [{error.code}]: {error.message}")

    def show_retry(self, action: RetryAction) -> None:
        """Offer a retry button that invokes ``action``."""

    def play_feedback(self, kind: str) -> None:
        """Play audible feedback: "success" or "error"."""

    def emit(self, event: UIEvent) -> None:
        """Deliver a UI event."""
        logger.debug(f"UI event {event.type}: {event.payload}")

    # -------------------------------------------------------------------------

    def notify(self, event_type: str, **payload: Any) -> None:
        self.emit(UIEvent(type=event_type, payload=payload))

