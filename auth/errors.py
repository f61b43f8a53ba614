"""
auth/errors.py -- Exception taxonomy for the token lifecycle.

Every business-rule failure in auth/ is one of these. They are expected
outcomes, not faults: the route layer maps each family to a single client
facing 4xx response and never logs them at ERROR level.

Families and their external collapse:
  AccessTokenError             -> 401 "unauthorized" (sub-case never revealed)
  RefreshTokenError (store)    -> internal detail for audit logging only
  InvalidOrExpiredRefreshToken -> 401 "invalid_refresh_token"
  InvalidCredentials           -> 401 "invalid_credentials"
  EmailAlreadyRegistered       -> 409 "email_taken"

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every expected authentication failure."""


# ---------------------------------------------------------------------------
# Login / registration
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    """Wrong password or unknown email. Deliberately one case, one message."""

    def __init__(self) -> None:
        super().__init__("Invalid email or password.")


class EmailAlreadyRegistered(AuthError):
    def __init__(self, email: str) -> None:
        super().__init__("An account with that email already exists.")
        self.email = email


# ---------------------------------------------------------------------------
# Access token verification (Token Codec)
# ---------------------------------------------------------------------------


class AccessTokenError(AuthError):
    """Access token rejected. Subclasses say why; callers outside auth/ should not."""


class TokenMalformed(AccessTokenError):
    pass


class TokenExpired(AccessTokenError):
    pass


class TokenSignatureInvalid(AccessTokenError):
    pass


# ---------------------------------------------------------------------------
# Refresh credential lookup (Credential Store)
# ---------------------------------------------------------------------------


class RefreshTokenError(AuthError):
    """A refresh credential could not be used."""


class RefreshTokenNotFound(RefreshTokenError):
    pass


class RefreshTokenExpired(RefreshTokenError):
    pass


class RefreshTokenRevoked(RefreshTokenError):
    pass


class RefreshTokenAlreadyRotated(RefreshTokenRevoked):
    """The value was already exchanged for a successor -- a replay signal."""


# ---------------------------------------------------------------------------
# Refresh (Session Manager)
# ---------------------------------------------------------------------------


class InvalidOrExpiredRefreshToken(AuthError):
    """Refresh failed. `reason` keeps the store-level cause for audit logs."""

    def __init__(self, reason: RefreshTokenError | None = None) -> None:
        super().__init__("Refresh token is invalid or expired.")
        self.reason = reason


class AlreadyRotated(InvalidOrExpiredRefreshToken):
    """A refresh value was presented again after it had been rotated."""
