class LivenessError(Exception):
    """Base class for liveness engine errors."""


class ConfigError(LivenessError, ValueError):
    """Raised when a SessionConfig holds values a session cannot run with."""


class InitializationError(LivenessError):
    """Landmark detector could not load its model assets.

    Fatal for the session that hit it: no retry, the session fails with
    reason "initialization-failed".
    """
