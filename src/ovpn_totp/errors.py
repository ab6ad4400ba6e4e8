"""Exceptions raised by the TOTP core.

A wrong code is not an error: verification returns False for it.
"""

from __future__ import annotations


class TotpError(Exception):
    """Base class for all TOTP core failures."""


class StorageError(TotpError):
    """The secret store is unreachable, failed I/O, or rejected a write."""


class GenerationError(TotpError):
    """A new secret could not be generated."""


class RenderError(TotpError):
    """The enrollment QR image could not be produced."""


class NotEnrolledError(TotpError):
    """Verification was requested for a user with no TOTP record."""

    def __init__(self, username: str) -> None:
        super().__init__(f"TOTP is not configured for user {username!r}")
        self.username = username
