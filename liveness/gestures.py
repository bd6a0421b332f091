"""
Sequential gesture unlock: blink -> mouth open -> head turn.

Only the gesture the current state is waiting for can advance it. A signal
that crosses some other gesture's threshold is ignored (logged at DEBUG) so a
user cannot skip ahead.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from liveness.config import SessionConfig
from liveness.events import REASON_INITIALIZATION_FAILED, REASON_TIMEOUT, StatusChanged
from liveness.signals import GestureSignals

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "IDLE"
    AWAITING_BLINK = "AWAITING_BLINK"
    AWAITING_MOUTH_OPEN = "AWAITING_MOUTH_OPEN"
    AWAITING_HEAD_TURN = "AWAITING_HEAD_TURN"
    VERIFIED = "VERIFIED"
    PASSED = "PASSED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.PASSED, SessionState.FAILED)


@dataclass(frozen=True)
class GestureFlags:
    blinked: bool = False
    mouth_opened: bool = False
    head_turned: bool = False


@dataclass(frozen=True)
class TickResult:
    state: SessionState
    flags: GestureFlags
    events: Tuple[StatusChanged, ...] = ()


STATUS_SEARCHING = "searching for face"
STATUS_BLINK = "blink detected"
STATUS_MOUTH_OPEN = "mouth-open detected"
STATUS_HEAD_TURN = "head-turn detected"

PROMPTS = {
    SessionState.AWAITING_BLINK: "please blink",
    SessionState.AWAITING_MOUTH_OPEN: "now open your mouth",
    SessionState.AWAITING_HEAD_TURN: "now turn your head",
    SessionState.VERIFIED: "verification complete",
}

FAILURE_PROMPTS = {
    REASON_TIMEOUT: "verification failed, time ran out. please try again",
    REASON_INITIALIZATION_FAILED: "face detection could not start. please try again",
}


def start_state() -> SessionState:
    """IDLE is left as soon as a session starts."""
    return SessionState.AWAITING_BLINK


def prompt_for(state: SessionState) -> Optional[str]:
    return PROMPTS.get(state)


def _log_out_of_order(signals: GestureSignals, state: SessionState, config: SessionConfig):
    if not logger.isEnabledFor(logging.DEBUG):
        return
    if state != SessionState.AWAITING_BLINK and signals.ear_avg < config.ear_threshold:
        logger.debug("blink-level EAR %.3f ignored in %s", signals.ear_avg, state.value)
    if (state != SessionState.AWAITING_MOUTH_OPEN
            and signals.mouth_open_ratio > config.mouth_open_ratio_threshold):
        logger.debug("mouth ratio %.3f ignored in %s", signals.mouth_open_ratio, state.value)
    if (state != SessionState.AWAITING_HEAD_TURN
            and abs(signals.head_turn_ratio) > config.head_turn_ratio_threshold):
        logger.debug("head-turn ratio %.3f ignored in %s", signals.head_turn_ratio, state.value)


def process_tick(
    signals: Optional[GestureSignals],
    flags: GestureFlags,
    state: SessionState,
    config: SessionConfig,
) -> TickResult:
    """Evaluate one tick against the gesture the state is waiting for."""
    if state not in (
        SessionState.AWAITING_BLINK,
        SessionState.AWAITING_MOUTH_OPEN,
        SessionState.AWAITING_HEAD_TURN,
    ):
        return TickResult(state, flags)

    if signals is None:
        return TickResult(state, flags, (StatusChanged(STATUS_SEARCHING),))

    _log_out_of_order(signals, state, config)

    if state == SessionState.AWAITING_BLINK:
        if signals.ear_avg < config.ear_threshold:
            return TickResult(
                SessionState.AWAITING_MOUTH_OPEN,
                replace(flags, blinked=True),
                (StatusChanged(STATUS_BLINK),),
            )

    elif state == SessionState.AWAITING_MOUTH_OPEN:
        if signals.mouth_open_ratio > config.mouth_open_ratio_threshold:
            return TickResult(
                SessionState.AWAITING_HEAD_TURN,
                replace(flags, mouth_opened=True),
                (StatusChanged(STATUS_MOUTH_OPEN),),
            )

    elif state == SessionState.AWAITING_HEAD_TURN:
        if abs(signals.head_turn_ratio) > config.head_turn_ratio_threshold:
            return TickResult(
                SessionState.VERIFIED,
                replace(flags, head_turned=True),
                (StatusChanged(STATUS_HEAD_TURN),),
            )

    return TickResult(state, flags)
