"""
Configuration for the liveness server and its verification sessions.

Values come from environment variables; anything unset falls back to a safe
default. The gesture thresholds are empirical and meant to be tuned per
camera setup, so they live here rather than in the state machine.
"""

import logging
import os
from dataclasses import dataclass

from liveness.errors import ConfigError

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number, using %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# SERVER
# ============================================================================
FLASK_HOST: str = os.getenv("FLASK_HOST", "127.0.0.1")
PORT: int = _env_int("FLASK_PORT", 5002)
SECRET_KEY: str = os.getenv("SECRET_KEY", "dev")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# ============================================================================
# DETECTOR
# ============================================================================
MIN_DETECTION_CONFIDENCE: float = _env_float("LIVENESS_MIN_DETECTION_CONFIDENCE", 0.6)
MIN_TRACKING_CONFIDENCE: float = _env_float("LIVENESS_MIN_TRACKING_CONFIDENCE", 0.5)
# selfie cameras send a mirrored view
MIRROR_FRAMES: bool = _env_bool("LIVENESS_MIRROR", True)

# ============================================================================
# SESSION
# ============================================================================
POLL_INTERVAL_MS: int = _env_int("LIVENESS_POLL_INTERVAL_MS", 500)
OVERALL_TIMEOUT_MS: int = _env_int("LIVENESS_TIMEOUT_MS", 60000)
EAR_THRESHOLD: float = _env_float("LIVENESS_EAR_THRESHOLD", 0.25)
MOUTH_OPEN_RATIO_THRESHOLD: float = _env_float("LIVENESS_MOUTH_OPEN_THRESHOLD", 0.35)
HEAD_TURN_RATIO_THRESHOLD: float = _env_float("LIVENESS_HEAD_TURN_THRESHOLD", 0.35)
SETTLE_DELAY_MS: int = _env_int("LIVENESS_SETTLE_DELAY_MS", 3000)


@dataclass(frozen=True)
class SessionConfig:
    poll_interval_ms: int = 500
    overall_timeout_ms: int = 60000
    ear_threshold: float = 0.25
    mouth_open_ratio_threshold: float = 0.35
    head_turn_ratio_threshold: float = 0.35
    settle_delay_ms: int = 3000

    # cosmetic progress while detector assets load
    warmup_step_ms: int = 200
    warmup_step_percent: int = 10
    warmup_cap_percent: int = 90

    def validate(self) -> "SessionConfig":
        if self.poll_interval_ms <= 0:
            raise ConfigError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.overall_timeout_ms <= 0:
            raise ConfigError(f"overall_timeout_ms must be positive, got {self.overall_timeout_ms}")
        if self.settle_delay_ms < 0:
            raise ConfigError(f"settle_delay_ms must not be negative, got {self.settle_delay_ms}")
        for name in ("ear_threshold", "mouth_open_ratio_threshold", "head_turn_ratio_threshold"):
            if not getattr(self, name) > 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.warmup_step_ms <= 0 or self.warmup_step_percent <= 0:
            raise ConfigError("warm-up step interval and increment must be positive")
        if not 0 <= self.warmup_cap_percent < 100:
            raise ConfigError(f"warmup_cap_percent must be in [0, 100), got {self.warmup_cap_percent}")
        return self


def session_config_from_env() -> SessionConfig:
    """SessionConfig built from the LIVENESS_* settings above."""
    return SessionConfig(
        poll_interval_ms=POLL_INTERVAL_MS,
        overall_timeout_ms=OVERALL_TIMEOUT_MS,
        ear_threshold=EAR_THRESHOLD,
        mouth_open_ratio_threshold=MOUTH_OPEN_RATIO_THRESHOLD,
        head_turn_ratio_threshold=HEAD_TURN_RATIO_THRESHOLD,
        settle_delay_ms=SETTLE_DELAY_MS,
    )
