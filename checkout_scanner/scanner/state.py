"""
==============================================================================
Session State Machine
==============================================================================

States and transitions of a scan session.

    IDLE / STOPPED / ERROR  ──start────────► INITIALIZING
    INITIALIZING            ──stream_ready─► SCANNING
    SCANNING                ──pause────────► PAUSED ──resume──► SCANNING
    SCANNING                ──switch───────► SWITCHING_CAMERA
    SWITCHING_CAMERA        ──reinitialize─► INITIALIZING
    any active state        ──fail─────────► ERROR
    any non-IDLE state      ──stop─────────► STOPPED

``transition`` is a pure function of (state, event); the SessionController
applies it and performs the side effects.

==============================================================================
"""

from __future__ import annotations

import enum
from typing import Dict, Tuple

from checkout_scanner.core import exceptions


class SessionState(str, enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    PAUSED = "paused"
    SWITCHING_CAMERA = "switching_camera"
    ERROR = "error"
    STOPPED = "stopped"


class SessionEvent(str, enum.Enum):
    START = "start"
    STREAM_READY = "stream_ready"
    PAUSE = "pause"
    RESUME = "resume"
    SWITCH = "switch"
    REINITIALIZE = "reinitialize"
    FAIL = "fail"
    STOP = "stop"


_S = SessionState
_E = SessionEvent

TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], SessionState] = {
    (_S.IDLE, _E.START): _S.INITIALIZING,
    (_S.STOPPED, _E.START): _S.INITIALIZING,
    (_S.ERROR, _E.START): _S.INITIALIZING,

    (_S.INITIALIZING, _E.STREAM_READY): _S.SCANNING,
    (_S.INITIALIZING, _E.FAIL): _S.ERROR,
    (_S.INITIALIZING, _E.STOP): _S.STOPPED,

    (_S.SCANNING, _E.PAUSE): _S.PAUSED,
    (_S.SCANNING, _E.SWITCH): _S.SWITCHING_CAMERA,
    (_S.SCANNING, _E.FAIL): _S.ERROR,
    (_S.SCANNING, _E.STOP): _S.STOPPED,

    (_S.PAUSED, _E.RESUME): _S.SCANNING,
    (_S.PAUSED, _E.FAIL): _S.ERROR,
    (_S.PAUSED, _E.STOP): _S.STOPPED,

    (_S.SWITCHING_CAMERA, _E.REINITIALIZE): _S.INITIALIZING,
    (_S.SWITCHING_CAMERA, _E.FAIL): _S.ERROR,
    (_S.SWITCHING_CAMERA, _E.STOP): _S.STOPPED,

    (_S.ERROR, _E.STOP): _S.STOPPED,
}

# States a start request may leave from
STARTABLE_STATES = frozenset({_S.IDLE, _S.STOPPED, _S.ERROR})

# States in which the camera stream may be held
STREAMING_STATES = frozenset({_S.SCANNING, _S.PAUSED})


def can_transition(state: SessionState, event: SessionEvent) -> bool:
    """Check whether an edge exists for the event in the given state."""
    return (state, event) in TRANSITIONS


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """
    Compute the next session state.

    Args:
        state: Current state
        event: Event being applied

    Returns:
        Next state

    Raises:
        ScannerException: INVALID_TRANSITION when no edge exists
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise exceptions.invalid_transition(state.value, event.value) from None
