"""
api/routes/auth.py -- Session lifecycle REST endpoints.

Routes:
  POST /auth/register    -- create identity, open first session; 201
  POST /auth/login       -- password login, open a session; 200
  POST /auth/refresh     -- rotate refresh token, new access token; 200
  POST /auth/logout      -- revoke the presented refresh token; 204
  POST /auth/logout-all  -- revoke every refresh token of the caller; 204 (requires auth)
  GET  /auth/me          -- current identity (requires auth)
  GET  /auth/sessions    -- caller's active sessions (requires auth)

Security:
  [H2] register / login / refresh are rate-limited per client IP.
  [C1] Unknown email and wrong password produce the same 401 body.
  [M5] Cache-Control: no-store on every response that carries a token.
  Refresh failures collapse to one 401 body whatever the cause; the cause is
  logged by SessionManager for auditing.
  Logout of an unknown, expired or already revoked token is a uniform 404.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RefreshTokenRequest,
    RegisterRequest,
    SessionInfo,
    SessionListResponse,
    TokenPairResponse,
    UserResponse,
)
from auth.dependencies import get_current_user, require_access_token
from auth.errors import EmailAlreadyRegistered, InvalidCredentials, InvalidOrExpiredRefreshToken, RefreshTokenNotFound
from auth.models import User
from auth.sessions import SessionManager
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/register:    public
# - POST /auth/login:       public
# - POST /auth/refresh:     public -- the refresh token in the body is the credential
# - POST /auth/logout:      public -- the refresh token in the body is the credential
# - POST /auth/logout-all:  requires access token (require_access_token)
# - GET  /auth/me:          requires access token (get_current_user)
# - GET  /auth/sessions:    requires access token (require_access_token)
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store"}  # [M5]


def _token_response(status_code: int, body: AuthResponse | TokenPairResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True), headers=_NO_STORE)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


# @router must be outermost so FastAPI registers the rate-limited wrapper.
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)  # [H2]
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and return its first access/refresh token pair."""
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    sessions: SessionManager = request.app.state.sessions
    try:
        session = sessions.register(body.email, body.password, body.first_name, body.last_name)
    except EmailAlreadyRegistered as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": str(exc)},
        ) from exc
    return _token_response(201, AuthResponse.from_session(session))


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a new token pair.

    Wrong password and unknown email are indistinguishable to the caller [C1].
    """
    sessions: SessionManager = request.app.state.sessions
    try:
        session = sessions.login(body.email, body.password)
    except InvalidCredentials as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_credentials", "message": str(exc)},
            headers=_NO_STORE,
        ) from exc
    return _token_response(200, AuthResponse.from_session(session))


@router.post("/auth/refresh", response_model=TokenPairResponse)
@limiter.limit(_settings.refresh_rate_limit)  # [H2]
def refresh(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    """Rotate a refresh token. The presented value stops working immediately."""
    sessions: SessionManager = request.app.state.sessions
    try:
        pair = sessions.refresh(body.refresh_token)
    except InvalidOrExpiredRefreshToken as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": "invalid_refresh_token", "message": "Refresh token is invalid or expired."},
            headers=_NO_STORE,
        ) from exc
    return _token_response(200, TokenPairResponse.from_pair(pair))


@router.post("/auth/logout", status_code=204)
def logout(request: Request, body: RefreshTokenRequest) -> Response:
    """Revoke one session.

    Access tokens already issued for this session remain valid until they
    expire on their own -- they are never checked against the store.
    """
    sessions: SessionManager = request.app.state.sessions
    try:
        sessions.logout(body.refresh_token)
    except RefreshTokenNotFound as exc:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Refresh token not found."},
        ) from exc
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", status_code=204)
def logout_all(request: Request, user_id: str = Depends(require_access_token)) -> Response:
    """Revoke every session of the caller, on every device.

    Outstanding access tokens are not invalidated (same caveat as /logout).
    """
    sessions: SessionManager = request.app.state.sessions
    sessions.logout_all(user_id)
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse, response_model_by_alias=True)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the public profile of the authenticated identity."""
    return MeResponse(user=UserResponse.from_user(current_user))


@router.get("/auth/sessions", response_model=SessionListResponse, response_model_by_alias=True)
def list_sessions(request: Request, user_id: str = Depends(require_access_token)) -> SessionListResponse:
    """List the caller's active sessions. Token values are never returned."""
    sessions: SessionManager = request.app.state.sessions
    return SessionListResponse(sessions=[SessionInfo.from_record(r) for r in sessions.active_sessions(user_id)])
