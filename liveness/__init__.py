"""Liveness verification: timed blink, mouth-open and head-turn challenge."""

from liveness.config import SessionConfig
from liveness.errors import ConfigError, InitializationError, LivenessError
from liveness.events import (
    Completed,
    NarrationRequested,
    ProgressChanged,
    SessionObserver,
    StatusChanged,
)
from liveness.gestures import GestureFlags, SessionState, process_tick
from liveness.session import Session, SessionHandle, start_session
from liveness.signals import GestureSignals, LandmarkSet, extract

__all__ = [
    "Completed",
    "ConfigError",
    "GestureFlags",
    "GestureSignals",
    "InitializationError",
    "LandmarkSet",
    "LivenessError",
    "NarrationRequested",
    "ProgressChanged",
    "Session",
    "SessionConfig",
    "SessionHandle",
    "SessionObserver",
    "SessionState",
    "StatusChanged",
    "extract",
    "process_tick",
    "start_session",
]
