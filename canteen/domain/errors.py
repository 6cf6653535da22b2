"""Error kinds reported by the queue, booking, analytics and alerting services.

Every error is a local, recoverable condition. Services raise them before
committing anything, so a failed call leaves persisted state untouched.
"""

from __future__ import annotations


class QueueServiceError(Exception):
    """Base class; ``status_code`` is the HTTP status the API layer reports."""

    status_code = 500


class ValidationError(QueueServiceError):
    """Raised when registry input (slot times, capacity, prices) is malformed."""

    status_code = 400


class NotFoundError(QueueServiceError):
    status_code = 404


class EmptyQueueError(QueueServiceError):
    """Raised by call-next when no pending token is waiting in the slot."""

    status_code = 404


class CapacityExceededError(QueueServiceError):
    status_code = 409


class InvalidTransitionError(QueueServiceError):
    """Raised when a booking status change is not allowed by the state machine."""

    status_code = 409


class DuplicateBookingError(QueueServiceError):
    status_code = 409


class AlreadyResolvedError(QueueServiceError):
    status_code = 409


class InvalidItemError(QueueServiceError):
    status_code = 400


class DuplicateStaffError(QueueServiceError):
    """Raised when a staff member with the same email is already registered."""

    status_code = 409
