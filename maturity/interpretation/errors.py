# FILE: maturity/interpretation/errors.py
from typing import Any, Optional


class InterpretationError(Exception):
    """Base class for interpretation pipeline errors."""


class CollaboratorError(InterpretationError):
    """A generator/critic call failed. Recoverable once, fatal after retries."""


class CollaboratorTimeout(CollaboratorError):
    pass


class MalformedResponseError(CollaboratorError):
    """Collaborator output had nothing usable even after fallback."""


class CallBudgetExceeded(CollaboratorError):
    """Session hit its ceiling on collaborator calls."""


class SessionNotFoundError(InterpretationError):
    pass


class SessionConflictError(InterpretationError):
    """Request does not match the session's canonical state.

    `snapshot` carries that state so callers can resync instead of retrying blind.
    """

    def __init__(self, message: str, snapshot: Optional[Any] = None):
        super().__init__(message)
        self.snapshot = snapshot


class StaleSessionError(SessionConflictError):
    """Another request advanced the session between our read and our write."""


class InvalidAnswersError(InterpretationError):
    pass


class InvalidTransitionError(InterpretationError):
    pass
