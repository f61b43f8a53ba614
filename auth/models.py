"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). Stores and the session manager do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An identity that can hold sessions.

    id is an opaque UUID hex string assigned by UserStore.create_user().
    email is always stored normalized (stripped, lower-cased) so lookups are
    case-insensitive without a functional index.

    hashed_password is a bcrypt hash. The plaintext never leaves the request
    that carried it.
    """

    email: str
    hashed_password: str
    first_name: str
    last_name: str
    id: str | None = None
    created_at: str | None = None


@dataclass
class RefreshToken:
    """One persisted refresh credential, i.e. one active (or former) session.

    The raw token value is never stored -- token_hash is HMAC-SHA256 of it,
    exactly like long-lived API keys. The raw value exists only in the
    response that issued it and in the client.

    Status is derived, not stored:
      revoked_at set, replaced_by set  -> superseded by rotation
      revoked_at set, replaced_by None -> revoked by logout / logout-all
      expires_at in the past           -> expired (lazy, checked at lookup)
    """

    user_id: str
    token_hash: str
    issued_at: str
    expires_at: str
    id: str | None = None
    revoked_at: str | None = None
    replaced_by: str | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_rotated(self) -> bool:
        return self.replaced_by is not None
