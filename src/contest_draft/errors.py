"""Error types raised by admission, matchmaking and the draft scheduler."""

from typing import Optional


class DraftError(Exception):
    """Base class for errors surfaced to callers.

    ``reason`` is a short machine-readable code (``"full"``,
    ``"not_your_turn"``...) and ``retryable`` tells the caller whether the
    same request may succeed if sent again.
    """

    reason = "error"
    retryable = False

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class ValidationError(DraftError):
    """Raised when a pick or request violates draft rules."""

    reason = "invalid"


class NotFoundError(DraftError):
    """Raised when a contest, user, entry or draft does not exist."""

    reason = "not_found"


class ConflictError(DraftError):
    """Raised when the request conflicts with current state."""

    reason = "conflict"


class ResourceExhaustedError(DraftError):
    """Raised when a balance, budget or per-user allowance is used up."""

    reason = "resource_exhausted"


class ConcurrencyBusyError(DraftError):
    """Raised when a lease is already held by another request."""

    reason = "lock_busy"
    retryable = True


class CorruptedStateError(DraftError):
    """Raised when stored draft state cannot be decoded or repaired."""

    reason = "corrupted_state"
