"""
Exception taxonomy for the publication registry.

Every error raised by the core derives from :class:`RegistryError`, so the
HTTP adapter can map the whole family in one place.
"""

from typing import Optional


class RegistryError(Exception):
    """Base class for all registry errors."""


class DuplicateError(RegistryError):
    """Creation blocked because an equivalent publication already exists."""

    def __init__(self, existing_id: int, reason: str = "duplicate publication"):
        super().__init__(f"{reason} (existing pub_id={existing_id})")
        self.existing_id = existing_id
        self.reason = reason


class NotFoundError(RegistryError):
    """The operation targets an id that does not exist."""

    def __init__(self, what: str, ident: Optional[int] = None):
        message = f"{what} not found" if ident is None else f"{what} {ident} not found"
        super().__init__(message)
        self.ident = ident


class ForbiddenError(RegistryError):
    """Role, ownership or state does not allow the operation."""


class ValidationError(RegistryError):
    """A required field is malformed."""


class InvalidTransitionError(RegistryError):
    """Raised for a transition outside the workflow table when strict mode is on."""

    def __init__(self, current: str, target: str):
        super().__init__(f"transition {current} -> {target} is not allowed")
        self.current = current
        self.target = target


class StoreError(RegistryError):
    """An underlying storage round-trip failed. Never retried by the core."""
