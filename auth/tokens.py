"""
auth/tokens.py -- Token codec, password hashing, and refresh-token utilities.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and
       carry only {sub, iat, exp, typ}. Verification is stateless -- no store
       round-trip -- which is why an access token cannot be revoked before its
       natural expiry. The short TTL (ACCESS_TOKEN_EXPIRE_SECONDS) bounds that
       window.

       verify_access_token() raises one of TokenMalformed / TokenSignatureInvalid
       / TokenExpired so the auth layer can tell them apart in logs. The HTTP
       layer collapses all three into the same 401.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in SessionManager.login() so response time
       does not reveal whether an email is registered [C1].

  Refresh tokens: secrets.token_urlsafe(48) gives 384 bits of entropy, so
       collisions between concurrently issued values are cryptographically
       negligible. We persist HMAC-SHA256(SECRET_KEY, raw_value) so lookup is
       O(1) and a leaked DB cannot be replayed without SECRET_KEY.

  SECRET_KEY: sourced from core.config.get_settings() once at import. It is
       process-wide and read-only afterwards [M6].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import TokenExpired, TokenMalformed, TokenSignatureInvalid
from core.config import get_settings

logger = logging.getLogger("sessionguard.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_TOKEN_TYPE = "access"
_REFRESH_TOKEN_PREFIX = "rt_"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt refuses input longer than 72 bytes. The request models reject such
    passwords with a 400 before they reach this function.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in the DB -- treat as a mismatch.
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
DUMMY_HASH: str = hash_password("sessionguard_timing_dummy")


# ---------------------------------------------------------------------------
# Access tokens (JWT encode / verify)
# ---------------------------------------------------------------------------


def issue_access_token(user_id: str, ttl_seconds: int = 0, now: datetime | None = None) -> str:
    """Encode a signed access token for user_id.

    Args:
        user_id:     Opaque identity reference, stored as the `sub` claim.
        ttl_seconds: Lifetime in seconds. 0 (default) uses
                     Settings.access_token_expire_seconds.
        now:         Issue time. Defaults to the current UTC time; the expiry
                     is always the absolute instant now + ttl.
    """
    duration = ttl_seconds if ttl_seconds > 0 else _settings.access_token_expire_seconds
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=duration),
        "typ": _ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_access_token(token: str) -> str:
    """Verify signature and expiry; return the embedded user id.

    Order of checks matters: the structure is inspected first (Malformed),
    then the signature (SignatureInvalid), then the claims (Expired). A
    tampered token is therefore never reported as merely expired.

    Raises:
        TokenMalformed:        not a JWT, unexpected algorithm, or bad claims.
        TokenSignatureInvalid: the signature does not match SECRET_KEY.
        TokenExpired:          the signature is valid but `exp` has passed.
    """
    try:
        header = jwt.get_unverified_header(token)
        jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise TokenMalformed(str(exc)) from exc
    if header.get("alg") != _ALGORITHM:
        raise TokenMalformed(f"unexpected algorithm {header.get('alg')!r}")

    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired(str(exc)) from exc
    except JWTClaimsError as exc:
        raise TokenMalformed(str(exc)) from exc
    except JWTError as exc:
        raise TokenSignatureInvalid(str(exc)) from exc

    if payload.get("typ") != _ACCESS_TOKEN_TYPE:
        raise TokenMalformed("not an access token")
    if "exp" not in payload:
        raise TokenMalformed("missing exp claim")
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise TokenMalformed("missing sub claim")
    return user_id


# ---------------------------------------------------------------------------
# Refresh token generation and hashing
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Generate a new opaque refresh token: rt_<64 url-safe chars>."""
    return f"{_REFRESH_TOKEN_PREFIX}{secrets.token_urlsafe(48)}"


def hash_refresh_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic so the store can look a token up by hash via its UNIQUE
    index. bcrypt is unnecessary -- the input already has 384 bits of entropy.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()
