"""
Error taxonomy for the back-office core.

Callers (the HTTP layer) map these to responses:
- ValidationError / NotFoundError: deterministic, safe to show verbatim (422 / 404)
- StateError: document is in a terminal or incompatible state (409, not retryable)
- ConflictError: concurrency budget exhausted, caller may resubmit (409, retryable)
- PersistenceError: store failure, opaque to the caller (500)

Validation and state failures are raised before any mutation; anything raised
inside a unit of work rolls the whole unit back.
"""

from __future__ import annotations


class BackofficeError(Exception):
    """Base class for all core failures."""

    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(BackofficeError):
    """Referential, tenant, activity or sufficiency check failed."""


class NotFoundError(ValidationError):
    """Referenced entity does not exist within the tenant."""


class StateError(BackofficeError):
    """Operation not allowed in the document's current state."""


class ConflictError(BackofficeError):
    """Optimistic concurrency retries exhausted."""

    retryable = True


class PersistenceError(BackofficeError):
    """Underlying store failed mid-transaction. Message never carries storage internals."""
