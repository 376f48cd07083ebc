"""
api/routes/auth.py -- Authentication and account REST endpoints.

Routes:
  GET  /api/oauth/url              -- GitHub authorize URL with fresh state (public)
  POST /api/oauth/login            -- exchange GitHub code for a token pair (public)
  POST /api/auth/login             -- password login (public, 10/minute per IP)
  POST /api/auth/refresh           -- rotate a refresh token (public)
  POST /api/auth/change-password   -- change password, revoke tokens (bearer)
  GET  /api/post_key               -- current user's post key (bearer)

OAuth state: the server does not store it. The frontend keeps the state from
/api/oauth/url and echoes it in the X-Oauth-State header; GitHub's redirect
gives it back as the ?state= query param. Both must be present and equal
(compared in constant time) before the code is exchanged.

Errors: handlers let ServiceError propagate; the exception handler in
api/main.py maps its code to the HTTP status.

Security:
  POST /auth/login is rate-limited to 10 requests/minute per IP.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthLoginRequest,
    OAuthURLResponse,
    PostKeyResponse,
    RefreshRequest,
    UserInfo,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.service import AuthService
from auth.tokens import TokenPair

router = APIRouter()


def _auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _token_response(user: User, pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        content=LoginResponse(
            user=UserInfo(
                id=user.id,
                username=user.username,
                github_id=user.github_id,
                created_at=user.created_at or "",
            ),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _bad_state() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "validation", "message": "Missing or mismatched OAuth state."},
    )


# ---------------------------------------------------------------------------
# GitHub OAuth
# ---------------------------------------------------------------------------


@router.get("/oauth/url", response_model=OAuthURLResponse)
def oauth_url(service: AuthService = Depends(_auth_service)) -> OAuthURLResponse:
    """Return the GitHub authorization URL. The state is embedded in it."""
    return OAuthURLResponse(url=service.generate_github_auth_url())


@router.post("/oauth/login", response_model=LoginResponse)
def oauth_login(
    body: OAuthLoginRequest,
    state: str | None = Query(default=None),
    x_oauth_state: str | None = Header(default=None),
    service: AuthService = Depends(_auth_service),
) -> JSONResponse:
    """Log in with a GitHub authorization code after checking the state echo."""
    if not state or not x_oauth_state:
        raise _bad_state()
    if not hmac.compare_digest(state.encode("utf-8"), x_oauth_state.encode("utf-8")):
        raise _bad_state()
    user, pair = service.login_with_github(body.code)
    return _token_response(user, pair)


# ---------------------------------------------------------------------------
# Password auth
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Wrong username and wrong password produce the same 401 invalid_credentials
    so username existence is not revealed.
    """
    user, pair = _auth_service(request).login_with_password(body.username, body.password)
    return _token_response(user, pair)


@router.post("/auth/refresh", response_model=LoginResponse)
def refresh(body: RefreshRequest, service: AuthService = Depends(_auth_service)) -> JSONResponse:
    """Exchange a refresh token for a new token pair."""
    user, pair = service.refresh_token(body.refresh_token)
    return _token_response(user, pair)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(_auth_service),
) -> MessageResponse:
    """Change the caller's password. Every previously issued token stops working."""
    service.change_password(current_user.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed. Please log in again.")


@router.get("/post_key", response_model=PostKeyResponse)
def post_key(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(_auth_service),
) -> PostKeyResponse:
    key, created_at = service.query_post_key(current_user.id)
    return PostKeyResponse(post_key=key, created_at=created_at)
