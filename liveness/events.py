"""
Events a session publishes to its observer.

A single observer receives every status, progress, narration and completion
update for one session.
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

REASON_TIMEOUT = "timeout"
REASON_INITIALIZATION_FAILED = "initialization-failed"


@dataclass(frozen=True)
class StatusChanged:
    text: str


@dataclass(frozen=True)
class ProgressChanged:
    percent: int
    status: str


@dataclass(frozen=True)
class NarrationRequested:
    prompt: str


@dataclass(frozen=True)
class Completed:
    success: bool
    reason: Optional[str] = None

    def as_dict(self) -> dict:
        out = {"success": self.success}
        if self.reason is not None:
            out["reason"] = self.reason
        return out


class SessionObserver:
    """Receives session events. Override on_event, or the per-kind hooks."""

    def on_event(self, event) -> None:
        if isinstance(event, StatusChanged):
            self.on_status(event.text)
        elif isinstance(event, ProgressChanged):
            self.on_progress(event.percent, event.status)
        elif isinstance(event, NarrationRequested):
            self.on_narration(event.prompt)
        elif isinstance(event, Completed):
            self.on_completed(event)

    def on_status(self, text: str) -> None:
        pass

    def on_progress(self, percent: int, status: str) -> None:
        pass

    def on_narration(self, prompt: str) -> None:
        pass

    def on_completed(self, outcome: Completed) -> None:
        pass


class LoggingObserver(SessionObserver):
    """Default observer when the caller does not supply one."""

    def on_status(self, text):
        logger.debug("status: %s", text)

    def on_progress(self, percent, status):
        logger.debug("progress: %d%% %s", percent, status)

    def on_narration(self, prompt):
        logger.info("narration: %s", prompt)
