"""
Session controller: one liveness-verification attempt.

A session owns three timers (poller, overall deadline, settle delay) plus a
cosmetic warm-up progress timer, an in-flight flag for the detector call,
and the collaborators handed to it by the caller. All mutation happens on the
scheduler's event loop.

Lifecycle:
  start()  -> AWAITING_BLINK, deadline + warm-up running, detector loading
  loaded   -> progress 100, "please blink", poller running
  tick     -> detect -> extract -> process_tick -> apply
  VERIFIED -> poller and deadline cancelled, settle timer started
  settle   -> PASSED, on_complete(success=True)
  deadline -> FAILED, on_complete(success=False, reason="timeout")
  cancel() -> timers released, on_complete never called
"""

import logging
from typing import Callable, Optional

from liveness.config import SessionConfig
from liveness.errors import InitializationError
from liveness.events import (
    REASON_INITIALIZATION_FAILED,
    REASON_TIMEOUT,
    Completed,
    LoggingObserver,
    NarrationRequested,
    ProgressChanged,
    SessionObserver,
    StatusChanged,
)
from liveness.gestures import (
    FAILURE_PROMPTS,
    GestureFlags,
    SessionState,
    prompt_for,
    process_tick,
    start_state,
)
from liveness.scheduler import AsyncioScheduler
from liveness.signals import extract

logger = logging.getLogger(__name__)

STATUS_LOADING = "loading face detection models"
STATUS_READY = "face detection ready"
STATUS_DETECTION_ERROR = "detection error, retrying"


class Session:
    def __init__(
        self,
        detector,
        frame_source,
        on_complete: Optional[Callable[[Completed], None]] = None,
        observer=None,
        config: Optional[SessionConfig] = None,
        scheduler=None,
        name: str = "session",
    ):
        self.config = config or SessionConfig()
        self.name = name
        self.state = SessionState.IDLE
        self.flags = GestureFlags()
        self.outcome: Optional[Completed] = None

        self._detector = detector
        self._frame_source = frame_source
        self._on_complete = on_complete
        self._observer = observer or LoggingObserver()
        self._scheduler = scheduler or AsyncioScheduler()

        self._poller = None
        self._deadline = None
        self._settle = None
        self._warmup = None
        self._warmup_percent = 0

        self._in_flight = False
        self._started = False
        self._closed = False
        self.cancelled = False

        self.ticks = 0
        self.skipped_ticks = 0

    # --------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._started and not self._closed

    def start(self) -> "Session":
        if self._started:
            raise RuntimeError(f"{self.name} already started")
        self.config.validate()
        self._started = True

        self.state = start_state()
        logger.info("%s started (timeout %d ms)", self.name, self.config.overall_timeout_ms)

        self._deadline = self._scheduler.call_later(self.config.overall_timeout_ms, self._on_deadline)
        self._warmup = self._scheduler.call_every(self.config.warmup_step_ms, self._on_warmup)
        self._publish(ProgressChanged(0, STATUS_LOADING))
        self._scheduler.spawn(self._load_detector())
        return self

    def cancel(self) -> None:
        """Tear down without reporting an outcome. Safe to call repeatedly."""
        if self._closed:
            return
        self.cancelled = True
        self._close()
        logger.info("%s cancelled in %s", self.name, self.state.value)

    # --------------------------------------------------
    # detector

    async def _load_detector(self):
        try:
            await self._detector.load()
        except Exception as e:
            if self._closed:
                return
            logger.error("%s: detector failed to initialize: %s", self.name, e)
            self._fail(REASON_INITIALIZATION_FAILED)
            return

        if self._closed:
            return

        self._stop_warmup()
        self._publish(ProgressChanged(100, STATUS_READY))
        self._announce(self.state)
        self._poller = self._scheduler.call_every(self.config.poll_interval_ms, self._on_poll)

    def _on_poll(self):
        if self._closed:
            return
        if self._in_flight:
            # detector slower than the poll interval: drop the tick, never queue
            self.skipped_ticks += 1
            logger.debug("%s: tick skipped, detector call still pending", self.name)
            return
        self._in_flight = True
        self.ticks += 1
        self._scheduler.spawn(self._detect_once())

    async def _detect_once(self):
        try:
            landmarks = await self._detector.detect(self._frame_source)
        except InitializationError as e:
            if not self._closed:
                logger.error("%s: detector lost its model: %s", self.name, e)
                self._fail(REASON_INITIALIZATION_FAILED)
            return
        except Exception as e:
            if not self._closed:
                logger.warning("%s: detection failed, skipping tick: %s", self.name, e)
                self._publish(StatusChanged(STATUS_DETECTION_ERROR))
            return
        finally:
            self._in_flight = False

        # cancelled or finished while the call was pending
        if self._closed:
            return

        signals = extract(landmarks) if landmarks is not None else None
        self._apply(signals)

    # --------------------------------------------------
    # state

    def _apply(self, signals):
        previous = self.state
        result = process_tick(signals, self.flags, self.state, self.config)
        self.state = result.state
        self.flags = result.flags

        for event in result.events:
            self._publish(event)

        if self.state == previous:
            return

        logger.info("%s: %s -> %s", self.name, previous.value, self.state.value)
        self._announce(self.state)
        if self.state == SessionState.VERIFIED:
            self._on_verified()

    def _on_verified(self):
        # a deadline firing during the settle delay must not fail a verified session
        self._cancel_timer("_poller")
        self._cancel_timer("_deadline")
        self._settle = self._scheduler.call_later(self.config.settle_delay_ms, self._on_settled)

    def _on_settled(self):
        if self._closed:
            return
        self._settle = None
        self.state = SessionState.PASSED
        logger.info("%s passed", self.name)
        self._finish(Completed(success=True))

    def _on_deadline(self):
        self._deadline = None
        if self._closed or self.state in (SessionState.VERIFIED, SessionState.PASSED):
            return
        logger.info("%s timed out in %s", self.name, self.state.value)
        self._fail(REASON_TIMEOUT)

    def _fail(self, reason: str):
        self.state = SessionState.FAILED
        self._publish(NarrationRequested(FAILURE_PROMPTS[reason]))
        self._finish(Completed(success=False, reason=reason))

    def _finish(self, outcome: Completed):
        if self._closed:
            return
        self.outcome = outcome
        on_complete = self._on_complete
        self._publish(outcome)
        self._close()
        if on_complete is not None:
            try:
                on_complete(outcome)
            except Exception:
                logger.exception("%s: completion callback raised", self.name)

    def _close(self):
        self._closed = True
        for attr in ("_poller", "_deadline", "_settle", "_warmup"):
            self._cancel_timer(attr)
        self._detector = None
        self._frame_source = None
        self._on_complete = None
        self._observer = SessionObserver()

    # --------------------------------------------------
    # warm-up progress

    def _on_warmup(self):
        if self._closed:
            return
        percent = min(self._warmup_percent + self.config.warmup_step_percent,
                      self.config.warmup_cap_percent)
        if percent == self._warmup_percent:
            return
        self._warmup_percent = percent
        self._publish(ProgressChanged(percent, STATUS_LOADING))

    def _stop_warmup(self):
        self._cancel_timer("_warmup")

    # --------------------------------------------------

    def _cancel_timer(self, attr):
        timer = getattr(self, attr)
        if timer is not None:
            timer.cancel()
            setattr(self, attr, None)

    def _announce(self, state):
        prompt = prompt_for(state)
        if prompt:
            self._publish(NarrationRequested(prompt))
            if state != SessionState.VERIFIED:
                self._publish(StatusChanged(prompt))

    def _publish(self, event):
        try:
            self._observer.on_event(event)
        except Exception:
            logger.exception("%s: observer failed on %r", self.name, event)


class SessionHandle:
    """What the caller keeps: a view on the session plus cancel()."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def flags(self) -> GestureFlags:
        return self._session.flags

    @property
    def outcome(self) -> Optional[Completed]:
        return self._session.outcome

    @property
    def is_active(self) -> bool:
        return self._session.is_active

    def cancel(self) -> None:
        self._session.cancel()


def start_session(detector, frame_source, on_complete=None, observer=None, config=None,
                  scheduler=None, name="session") -> SessionHandle:
    """Validate config, start a session and hand back its cancellation handle."""
    session = Session(
        detector,
        frame_source,
        on_complete=on_complete,
        observer=observer,
        config=config,
        scheduler=scheduler,
        name=name,
    )
    session.start()
    return SessionHandle(session)
