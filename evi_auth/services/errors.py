"""Error taxonomy for the session/token lifecycle.

Every failure the session core can produce is one of the classes below.
``reason`` is the internal classification recorded in telemetry;
``public_message`` is what a client may see. Several internal reasons share
one public message on purpose so responses do not reveal whether a username
exists or why a refresh token was refused.
"""

from typing import Any


class SessionError(Exception):
    """Base class for all session core failures."""

    public_message = "Internal server error"

    def __init__(self, message: str, reason: str = "unknown"):
        super().__init__(message)
        self.reason = reason
        # Events collected by SessionService up to the point of failure.
        # Routes publish them before responding.
        self.events: list[Any] = []


class ValidationError(SessionError):
    """Malformed input. Rejected immediately, never retried."""

    public_message = "Invalid request"


class AuthenticationError(SessionError):
    """Unknown user, wrong password or inactive account."""

    public_message = "Invalid credentials"

    def __init__(self, reason: str, user_id: Any | None = None):
        super().__init__(f"Authentication failed: {reason}", reason=reason)
        self.user_id = user_id


class RateLimitError(SessionError):
    """Brute-force threshold exceeded for a client IP."""

    public_message = "Too many failed login attempts. Please try again later."

    def __init__(self, retry_after: int):
        super().__init__(
            f"Login blocked for {retry_after}s after repeated failures",
            reason="ip_blocked",
        )
        self.retry_after = retry_after


class TokenError(SessionError):
    """Refresh token not found, expired, revoked or otherwise unusable."""

    public_message = "Invalid or expired refresh token"

    def __init__(self, reason: str, user_id: Any | None = None):
        super().__init__(f"Refresh token rejected: {reason}", reason=reason)
        self.user_id = user_id


class FingerprintMismatchError(TokenError):
    """Presented device fingerprint does not match the one bound at issuance."""

    def __init__(self, user_id: Any | None = None):
        super().__init__("fingerprint_mismatch", user_id=user_id)


class ConfigurationError(SessionError):
    """Missing or invalid security configuration. Always fails closed."""

    def __init__(self, message: str):
        super().__init__(message, reason="configuration")


class StorageError(SessionError):
    """Database unreachable or query failure."""

    retryable = False

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message, reason="storage")
        self.operation = operation


class StorageTimeoutError(StorageError):
    """A storage call exceeded its time budget. Safe for the client to retry."""

    public_message = "Service temporarily unavailable"
    retryable = True
