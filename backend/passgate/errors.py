"""Error taxonomy for the ceremony core.

Only the HTTP layer decides what the caller sees; the messages carried here
are for logs.
"""

GENERIC_AUTH_MESSAGE = "Authentication failed"


class PassgateError(Exception):
    """Base class for every error raised by passgate."""


class ValidationError(PassgateError):
    """Malformed input (username, payload shape)."""


class ConflictError(PassgateError):
    """Duplicate unique key at insert."""


class AuthError(PassgateError):
    """Any ceremony failure. Externally always the generic message."""

    def __init__(self, reason: str = "authentication failed"):
        super().__init__(reason)
        self.reason = reason


class UnauthorizedError(PassgateError):
    """Missing, invalid or expired session on a protected operation."""


class InternalError(PassgateError):
    """Store or capability failure."""
