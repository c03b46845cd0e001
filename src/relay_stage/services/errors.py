"""Error taxonomy shared by the messaging core.

Session and permission failures are raised before any state is mutated.
``PersistenceFailureError`` is the only failure raised after a send has
started; everything downstream of persistence is reported on the receipt.
"""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base class for all errors raised by the messaging core."""


class ForbiddenError(RelayError):
    """Raised when a permission rule rejects the requested action."""


class BlockedError(ForbiddenError):
    """Raised when the acting user is blocked; surfaces as ``Forbidden``."""

    def __init__(self, message: str = "Account is blocked", reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class NotFoundError(RelayError):
    """Raised when a user or group is absent or soft-deleted."""


class InvalidSessionError(RelayError):
    """Raised when a token, device fingerprint or session state does not match."""


class ValidationFailedError(RelayError):
    """Raised when a message body or request payload is malformed."""


class PersistenceFailureError(RelayError):
    """Raised when the durable message store cannot accept a write."""
