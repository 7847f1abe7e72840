"""Error taxonomy raised by the feedback core."""

from __future__ import annotations


class FeedbackError(Exception):
    """Base class for every error the feedback core raises on purpose."""


class InvalidInput(FeedbackError, ValueError):
    """Raised for malformed or out-of-range caller data."""


class NotFound(FeedbackError, LookupError):
    """Raised when a class session or topic does not exist."""


class PersistenceError(FeedbackError, RuntimeError):
    """Raised when a durable-store operation fails; the transaction is rolled back."""


class InternalInvariantViolation(FeedbackError, RuntimeError):
    """Raised when in-memory bookkeeping reaches an impossible state."""
