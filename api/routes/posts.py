"""
api/routes/posts.py -- Post creation and listing endpoints.

Routes:
  POST /{post_key}   -- create a post; the post key is the credential
  GET  /api/posts    -- paginated list of the caller's posts (bearer)

POST /{post_key} dependency order matters: enforce_write_limits runs first,
then require_post_key. Unknown keys are therefore rate limited like known ones.

GET /{post_id} (the rendered HTML page) lives in web/routes.py.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import enforce_write_limits
from api.models import Pagination, PostCreate, PostCreatedResponse, PostListResponse, PostSummary
from auth.dependencies import get_current_user, require_post_key
from auth.models import User
from posts.service import PostService

api_router = APIRouter()
write_router = APIRouter()


def _post_service(request: Request) -> PostService:
    return request.app.state.post_service


@write_router.post(
    "/{post_key}",
    response_model=PostCreatedResponse,
    dependencies=[Depends(enforce_write_limits)],
)
def create_post(
    body: PostCreate,
    owner: User = Depends(require_post_key),
    service: PostService = Depends(_post_service),
) -> PostCreatedResponse:
    """Create a post owned by the holder of post_key and return its id."""
    return PostCreatedResponse(id=service.create_post(owner, body.title, body.body))


@api_router.get("/posts", response_model=PostListResponse)
def list_posts(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(_post_service),
) -> PostListResponse:
    """List the caller's posts, newest first."""
    items, total = service.list_user_posts(current_user.id, page, limit)
    return PostListResponse(
        posts=[PostSummary(id=p.id, title=p.title, created_at=p.created_at or "") for p in items],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )
