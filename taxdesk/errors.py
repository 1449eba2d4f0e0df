"""
taxdesk.errors
==============

Typed failures raised by the filing lifecycle engine and its stores.

Each subclass carries a stable ``kind`` string so callers (the HTTP layer,
the CLI) can branch on the failure without parsing messages.
"""

from __future__ import annotations

__all__ = [
    "FilingError",
    "ValidationError",
    "NotFound",
    "Conflict",
    "InvalidTransition",
    "InvalidAssignee",
    "NoAssignment",
    "IllegalState",
    "Unavailable",
]


class FilingError(Exception):
    """Base class for every expected engine failure."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message}


class ValidationError(FilingError, ValueError):
    """Malformed or missing caller input."""
    kind = "validation_error"


class NotFound(FilingError, LookupError):
    """Referenced filing, client or professional does not exist."""
    kind = "not_found"


class Conflict(FilingError):
    """Duplicate filing key, or a lost optimistic‑concurrency race."""
    kind = "conflict"


class InvalidTransition(FilingError):
    kind = "invalid_transition"


class InvalidAssignee(FilingError):
    kind = "invalid_assignee"


class NoAssignment(FilingError):
    kind = "no_assignment"


class IllegalState(FilingError):
    kind = "illegal_state"


class Unavailable(FilingError):
    """The backing store failed or timed out; safe to retry."""
    kind = "unavailable"
