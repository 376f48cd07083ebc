"""
API request and response models for the Markpost REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
posts/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# bcrypt only looks at the first 72 bytes of a password.
_PASSWORD_MAX = 72

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    message: str = "markpost is running"


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------


class PostCreate(BaseModel):
    """Request body for POST /{post_key}.

    Byte-size limits are configurable, so they are enforced by PostService,
    not here.
    """

    title: str = Field(min_length=1)
    body: str = Field(min_length=1)


class PostCreatedResponse(BaseModel):
    id: str


class PostSummary(BaseModel):
    id: str
    title: str
    created_at: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PostListResponse(BaseModel):
    """Response for GET /api/posts."""

    posts: list[PostSummary]
    pagination: Pagination


class PostKeyResponse(BaseModel):
    post_key: str
    created_at: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class OAuthLoginRequest(BaseModel):
    code: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=6, max_length=_PASSWORD_MAX)


class UserInfo(BaseModel):
    """Public view of a user. Never includes the password hash or post key."""

    id: int
    username: str
    github_id: Optional[int] = None
    created_at: str


class LoginResponse(BaseModel):
    """Response for every endpoint that issues a token pair."""

    user: UserInfo
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class OAuthURLResponse(BaseModel):
    url: str


class MessageResponse(BaseModel):
    message: str
