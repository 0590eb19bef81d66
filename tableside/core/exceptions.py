"""Typed errors raised by the client core.

Backend exceptions never leave the core unwrapped; callers (the UI layer)
decide how each kind is presented:

- ValidationError: bad input, raised before any write
- ConflictError: a precondition was violated concurrently (table already reserved)
- NotFoundError: the referenced entity or session is absent
- AuthError: credentials were rejected
- TransientError: backend or network failure, the caller may retry
"""
from typing import Any, Dict, Optional


class TablesideError(Exception):
    """Base class for every error the core raises."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(TablesideError):
    """Input rejected before anything was written."""


class ConflictError(TablesideError):
    """A write lost a race against another writer."""


class NotFoundError(TablesideError):
    """The referenced record does not exist (or is no longer active)."""


class AuthError(TablesideError):
    """Credential exchange failed."""


class TransientError(TablesideError):
    """The backend could not be reached or failed; safe for the caller to retry."""
