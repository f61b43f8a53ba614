"""
auth/sessions.py -- Session lifecycle orchestration.

SessionManager combines the token codec (auth/tokens.py) with the two stores
(auth/store.py). A session moves through:

    ANONYMOUS --register/login--> AUTHENTICATED --refresh--> ROTATED --refresh--> ...
                                        |                       |
                                        +---logout/logout-all---+--> REVOKED
                                        +---time passes---------+--> EXPIRED

Expiry is never an explicit transition: the credential store treats a
past-expiry row as invalid at lookup time.

Accepted trade-off: logout and logout-all revoke refresh credentials only.
Access tokens already handed out stay valid until their own (short) expiry,
because verifying them never touches a store.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import (
    AlreadyRotated,
    InvalidCredentials,
    InvalidOrExpiredRefreshToken,
    RefreshTokenAlreadyRotated,
    RefreshTokenError,
)
from auth.models import RefreshToken, User
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import DUMMY_HASH, hash_password, issue_access_token, verify_password
from core.config import Settings

logger = logging.getLogger("sessionguard.auth.sessions")


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthSession:
    """Result of register/login: both tokens plus the public identity."""

    access_token: str
    refresh_token: str
    user: User


class SessionManager:
    """Issues, rotates and revokes sessions.

    Usage:
        sessions = SessionManager(UserStore(engine), RefreshTokenStore(engine), get_settings())
        session = sessions.login("a@x.com", "Secret1!")
        pair = sessions.refresh(session.refresh_token)
    """

    def __init__(self, users: UserStore, tokens: RefreshTokenStore, settings: Settings) -> None:
        self.users = users
        self.tokens = tokens
        self.settings = settings

    # ------------------------------------------------------------------
    # ANONYMOUS -> AUTHENTICATED
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, first_name: str, last_name: str) -> AuthSession:
        """Create an identity and open its first session.

        Raises EmailAlreadyRegistered if the normalized email is taken.
        """
        user_id = self.users.create_user(
            User(
                email=email,
                hashed_password=hash_password(password),
                first_name=first_name,
                last_name=last_name,
            )
        )
        user = self.users.get_by_id(user_id)
        logger.info("Registered user %s", user_id)
        return self._open_session(user)

    def login(self, email: str, password: str) -> AuthSession:
        """Authenticate with email and password and open a new session.

        bcrypt always runs -- against DUMMY_HASH when the email is unknown --
        so neither the exception nor the response time reveals whether the
        account exists [C1].
        """
        user = self.users.get_by_email(email)
        if user is None:
            verify_password(password, DUMMY_HASH)
            logger.info("Login failed: unknown email")
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            logger.info("Login failed: wrong password for user %s", user.id)
            raise InvalidCredentials()
        return self._open_session(user)

    # ------------------------------------------------------------------
    # AUTHENTICATED -> ROTATED
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a live refresh token for a new access token and a new refresh token.

        The presented value is superseded atomically; presenting it again
        raises AlreadyRotated, which is logged as a possible token theft.
        Every other lookup failure raises InvalidOrExpiredRefreshToken.
        """
        try:
            old, new_refresh, _ = self.tokens.rotate(refresh_token, self.settings.refresh_token_expire_seconds)
        except RefreshTokenAlreadyRotated as exc:
            logger.warning("Refresh token reuse detected -- possible replay of a rotated token")
            raise AlreadyRotated(exc) from exc
        except RefreshTokenError as exc:
            logger.info("Refresh rejected: %s", type(exc).__name__)
            raise InvalidOrExpiredRefreshToken(exc) from exc

        access_token = issue_access_token(old.user_id, self.settings.access_token_expire_seconds)
        return TokenPair(access_token=access_token, refresh_token=new_refresh)

    # ------------------------------------------------------------------
    # -> REVOKED
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str) -> None:
        """Revoke exactly the presented refresh token.

        Raises RefreshTokenNotFound for unknown, expired or already revoked values.
        """
        self.tokens.revoke(refresh_token)
        logger.info("Session logged out")

    def logout_all(self, user_id: str) -> int:
        """Revoke every refresh token owned by user_id. Returns the number revoked.

        Callers must have authenticated user_id with a valid access token first.
        """
        count = self.tokens.revoke_all(user_id)
        logger.info("Logged out %d session(s) for user %s", count, user_id)
        return count

    def active_sessions(self, user_id: str) -> list[RefreshToken]:
        return self.tokens.list_active(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open_session(self, user: User) -> AuthSession:
        access_token = issue_access_token(user.id, self.settings.access_token_expire_seconds)
        refresh_token, record = self.tokens.create(user.id, self.settings.refresh_token_expire_seconds)
        logger.info("Session %s opened for user %s", record.id, user.id)
        return AuthSession(access_token=access_token, refresh_token=refresh_token, user=user)
