"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access guard accepts exactly one credential: an access token in the
`Authorization: Bearer <token>` header. Refresh tokens are never accepted
here -- they travel in request bodies to the /auth/refresh and /auth/logout
endpoints only.

require_access_token() verifies the token with auth.tokens alone. It never
reads the refresh credential store: stateless verification is the whole
point of a short-lived access token.

get_current_user() layers an identity lookup on top for routes that need
the user's profile (GET /auth/me).

Every failure produces the same 401 body, whatever the underlying reason
(missing header, malformed, bad signature, expired). The reason is logged at
INFO for auditing and never returned to the caller.

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.errors import AccessTokenError
from auth.models import User
from auth.tokens import verify_access_token

logger = logging.getLogger("sessionguard.auth.guard")

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=_UNAUTHORIZED,
        headers={"WWW-Authenticate": "Bearer"},
    )


def bearer_token(request: Request) -> str | None:
    """Return the token from an `Authorization: Bearer` header, or None."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_access_token(request: Request) -> str:
    """Require a valid access token. Returns the authenticated user id.

    On success the id is also attached to request.state.user_id so
    middleware and handlers further down the chain can read it.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(user_id: str = Depends(require_access_token)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise _unauthorized()
    try:
        user_id = verify_access_token(token)
    except AccessTokenError as exc:
        logger.info("Access token rejected on %s: %s", request.url.path, type(exc).__name__)
        raise _unauthorized() from exc
    request.state.user_id = user_id
    return user_id


def get_current_user(request: Request) -> User:
    """Require authentication and load the identity record.

    A valid token whose user no longer exists is treated as unauthenticated.
    """
    user_id = require_access_token(request)
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise _unauthorized()
    return user
