"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two gates, one per credential type:
  get_current_user()  -- Authorization: Bearer <access token>. Used by the
                         /api/... account routes. Refresh tokens are rejected
                         here, as are tokens whose "ver" claim predates the
                         user's last password change.
  require_post_key()  -- the {post_key} path segment of POST /{post_key}.
                         Resolves the owning user; unknown keys get 403.

Both converge on a User object. The components they need (token service,
user store) are read from request.app.state, where the lifespan put them.

Layer rule: no imports from web/ or posts/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import ACCESS
from core.errors import ServiceError


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Authentication required."},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(request: Request) -> User:
    """Require a valid bearer access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized()

    try:
        claims = request.app.state.token_service.validate_token(token.strip(), kind=ACCESS)
    except ServiceError:
        raise _unauthorized() from None

    user = request.app.state.user_store.get_by_id(claims.user_id)
    if user is None or user.token_version != claims.version:
        raise _unauthorized()
    return user


def require_post_key(post_key: str, request: Request) -> User:
    """Resolve the user owning post_key. Raises HTTP 403 for an unknown key."""
    user = request.app.state.user_store.get_by_post_key(post_key)
    if user is None:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Invalid post key."},
        )
    return user
