"""
API request and response models for SessionGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field names on the wire are camelCase (firstName, accessToken, ...). The
Python attributes stay snake_case; the alias generator bridges them, and
populate_by_name lets tests and internal callers use either form.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import RefreshToken, User
from auth.sessions import AuthSession, TokenPair

# bcrypt rejects input longer than 72 bytes; the byte cap is enforced by
# _check_password_bytes since one character can take up to four bytes.
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72
PASSWORD_MAX_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded.")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /auth/register.

    Passwords are taken verbatim -- no whitespace stripping -- so the value
    hashed here is exactly the value later presented to /auth/login.
    """

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


class LoginRequest(_CamelModel):
    """Request body for POST /auth/login.

    No format validation on email here: a malformed address simply fails
    authentication like any other unknown address.
    """

    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


class RefreshTokenRequest(_CamelModel):
    """Request body for POST /auth/refresh and POST /auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=512)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """Public identity attributes. Never includes the password hash."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    email: str
    first_name: str
    last_name: str
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at or "",
        )


class AuthResponse(_CamelModel):
    """Response for POST /auth/register and POST /auth/login."""

    access_token: str
    refresh_token: str
    user: UserResponse

    @classmethod
    def from_session(cls, session: AuthSession) -> "AuthResponse":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            user=UserResponse.from_user(session.user),
        )


class TokenPairResponse(_CamelModel):
    """Response for POST /auth/refresh."""

    access_token: str
    refresh_token: str

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(access_token=pair.access_token, refresh_token=pair.refresh_token)


class MeResponse(_CamelModel):
    """Response for GET /auth/me."""

    user: UserResponse


class SessionInfo(_CamelModel):
    """One active session. The token value itself is never exposed."""

    id: str
    issued_at: str
    expires_at: str

    @classmethod
    def from_record(cls, record: RefreshToken) -> "SessionInfo":
        return cls(id=record.id, issued_at=record.issued_at, expires_at=record.expires_at)


class SessionListResponse(_CamelModel):
    """Response for GET /auth/sessions."""

    sessions: list[SessionInfo]


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
