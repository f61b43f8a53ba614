"""Unit tests for auth/tokens.py -- the access token codec and hashing helpers.

Covers:
- issue/verify round-trip returns the original identity reference
- Expired, SignatureInvalid and Malformed are reported distinctly
- Tampered tokens are never reported as merely expired
- Refresh token values are high-entropy and hashed deterministically
- bcrypt password helpers
"""

import base64
import json
import time
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from jose import jwt

from auth.errors import AccessTokenError, TokenExpired, TokenMalformed, TokenSignatureInvalid
from auth.tokens import (
    generate_refresh_token,
    hash_password,
    hash_refresh_token,
    issue_access_token,
    verify_access_token,
    verify_password,
)
from core.config import get_settings

_SECRET = get_settings().secret_key


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


# ---------------------------------------------------------------------------
# Round-trip
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("user_id", [uuid4().hex, "42", "user-with-dashes", "ü-unicode"])
def test_verify_returns_issued_identity(user_id):
    token = issue_access_token(user_id)
    assert verify_access_token(token) == user_id


def test_token_carries_absolute_expiry():
    issued = datetime(2030, 1, 1, tzinfo=timezone.utc)
    token = issue_access_token("u1", ttl_seconds=300, now=issued)
    claims = jwt.get_unverified_claims(token)
    assert claims["iat"] == int(issued.timestamp())
    assert claims["exp"] == int((issued + timedelta(seconds=300)).timestamp())
    assert claims["typ"] == "access"


def test_default_ttl_comes_from_settings():
    issued = datetime.now(timezone.utc)
    claims = jwt.get_unverified_claims(issue_access_token("u1", now=issued))
    assert claims["exp"] - claims["iat"] == get_settings().access_token_expire_seconds


# ---------------------------------------------------------------------------
# Failure cases
# ---------------------------------------------------------------------------


def test_token_that_verified_fails_with_expired_after_its_expiry():
    """A token that verified while fresh fails with TokenExpired once its expiry has passed."""
    token = issue_access_token("u1", ttl_seconds=2, now=datetime.now(timezone.utc))
    assert verify_access_token(token) == "u1"

    time.sleep(3.1)
    with pytest.raises(TokenExpired):
        verify_access_token(token)


def test_token_issued_in_the_past_fails_with_expired():
    issued = datetime.now(timezone.utc) - timedelta(hours=1)
    token = issue_access_token("u1", ttl_seconds=60, now=issued)
    with pytest.raises(TokenExpired):
        verify_access_token(token)


def test_wrong_secret_fails_with_signature_invalid():
    token = jwt.encode(
        {"sub": "u1", "exp": datetime.now(timezone.utc) + timedelta(minutes=5), "typ": "access"},
        "x" * 40,
        algorithm="HS256",
    )
    with pytest.raises(TokenSignatureInvalid):
        verify_access_token(token)


def test_tampered_payload_fails_with_signature_invalid():
    header, _payload, signature = issue_access_token("victim").split(".")
    forged_payload = _b64({"sub": "attacker", "exp": 4102444800, "typ": "access"})
    with pytest.raises(TokenSignatureInvalid):
        verify_access_token(f"{header}.{forged_payload}.{signature}")


def test_tampered_expired_token_is_not_reported_as_expired():
    token = jwt.encode(
        {"sub": "u1", "exp": datetime.now(timezone.utc) - timedelta(hours=1), "typ": "access"},
        "y" * 40,
        algorithm="HS256",
    )
    with pytest.raises(TokenSignatureInvalid):
        verify_access_token(token)


@pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b", "a.b.c", "....."])
def test_garbage_fails_with_malformed(garbage):
    with pytest.raises(TokenMalformed):
        verify_access_token(garbage)


def test_alg_none_is_malformed():
    token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64({'sub': 'u1', 'exp': 4102444800, 'typ': 'access'})}."
    with pytest.raises(TokenMalformed):
        verify_access_token(token)


def test_non_access_token_type_is_malformed():
    token = jwt.encode(
        {"sub": "u1", "exp": datetime.now(timezone.utc) + timedelta(minutes=5), "typ": "refresh"},
        _SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenMalformed):
        verify_access_token(token)


def test_missing_subject_is_malformed():
    token = jwt.encode(
        {"exp": datetime.now(timezone.utc) + timedelta(minutes=5), "typ": "access"},
        _SECRET,
        algorithm="HS256",
    )
    with pytest.raises(TokenMalformed):
        verify_access_token(token)


def test_missing_expiry_is_malformed():
    token = jwt.encode({"sub": "u1", "typ": "access"}, _SECRET, algorithm="HS256")
    with pytest.raises(TokenMalformed):
        verify_access_token(token)


def test_all_failures_share_a_base_class():
    for exc in (TokenExpired, TokenMalformed, TokenSignatureInvalid):
        assert issubclass(exc, AccessTokenError)


# ---------------------------------------------------------------------------
# Refresh token values
# ---------------------------------------------------------------------------


def test_refresh_tokens_are_unique_and_prefixed():
    values = {generate_refresh_token() for _ in range(1000)}
    assert len(values) == 1000
    assert all(v.startswith("rt_") and len(v) == 67 for v in values)


def test_refresh_token_hash_is_deterministic_and_hides_value():
    raw = generate_refresh_token()
    assert hash_refresh_token(raw) == hash_refresh_token(raw)
    assert hash_refresh_token(raw) != hash_refresh_token(generate_refresh_token())
    assert raw not in hash_refresh_token(raw)
    assert len(hash_refresh_token(raw)) == 64


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def test_password_hash_round_trip():
    hashed = hash_password("Secret1!")
    assert hashed != "Secret1!"
    assert verify_password("Secret1!", hashed)
    assert not verify_password("secret1!", hashed)


def test_verify_password_rejects_corrupt_hash():
    assert verify_password("Secret1!", "not-a-bcrypt-hash") is False
