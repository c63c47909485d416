"""Domain errors surfaced to callers (and mapped to HTTP codes by the API)."""


class TriageError(Exception):
    pass


class ThreadNotFound(TriageError):
    pass


class InvalidStateTransition(TriageError):
    """Raised when a signal arrives that the thread's current state can't accept,
    e.g. exiting an observation that isn't active. Usually means an upstream
    signal-detection bug, so it is never swallowed."""


class InvalidPendingAction(TriageError, ValueError):
    pass


class InvalidResolution(TriageError, ValueError):
    pass
