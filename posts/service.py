"""
posts/service.py -- PostService: create, render, and list posts.

Size limits are measured in UTF-8 bytes, matching what is actually stored.
A limit of 0 disables that check.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from auth.models import User
from core.errors import ErrorCode, ServiceError
from posts.models import Post, RenderedPost
from posts.render import ConversionError, render_markdown
from posts.store import InvalidOwnerError, PostRepository, new_post_id

logger = logging.getLogger("markpost.posts")


class PostService:
    def __init__(
        self,
        posts: PostRepository,
        title_max_size: int = 1000,
        body_max_size: int = 10 * 1024 * 1024,
        renderer: Callable[[str], str] = render_markdown,
    ) -> None:
        self.posts = posts
        self.title_max_size = title_max_size
        self.body_max_size = body_max_size
        self.renderer = renderer

    def create_post(self, user: User, title: str, body: str) -> str:
        """Store a new post owned by user and return its id."""
        if not title.strip():
            raise ServiceError(ErrorCode.VALIDATION, "title is required")
        if not body.strip():
            raise ServiceError(ErrorCode.VALIDATION, "body is required")
        if self.title_max_size and len(title.encode("utf-8")) > self.title_max_size:
            raise ServiceError(ErrorCode.VALIDATION, f"title exceeds {self.title_max_size} bytes")
        if self.body_max_size and len(body.encode("utf-8")) > self.body_max_size:
            raise ServiceError(ErrorCode.VALIDATION, f"body exceeds {self.body_max_size} bytes")

        post = Post(id=new_post_id(), title=title, body=body, user_id=user.id)
        try:
            self.posts.create_post(post)
        except InvalidOwnerError as exc:
            raise ServiceError(ErrorCode.CONFLICT, "post owner does not exist") from exc
        except SQLAlchemyError as exc:
            logger.error("Failed to store post for user_id=%s: %s", user.id, exc)
            raise ServiceError(ErrorCode.INTERNAL, "failed to store post") from exc
        logger.info("Post %s created by user_id=%s", post.id, user.id)
        return post.id

    def render_post(self, post_id: str) -> RenderedPost:
        post = self.posts.get_by_id(post_id)
        if post is None:
            raise ServiceError(ErrorCode.NOT_FOUND, "post not found")
        try:
            html = self.renderer(post.body)
        except ConversionError as exc:
            logger.error("Markdown conversion failed for post %s: %s", post_id, exc)
            raise ServiceError(ErrorCode.CONVERSION_FAILED, "markdown conversion failed") from exc
        return RenderedPost(id=post.id, title=post.title, html=html, created_at=post.created_at)

    def list_user_posts(self, user_id: int, page: int, limit: int) -> tuple[list[Post], int]:
        """Return (posts on this page, total post count), newest first."""
        if page < 1 or limit < 1:
            raise ServiceError(ErrorCode.VALIDATION, "page and limit must be positive")
        total = self.posts.count_by_user(user_id)
        items = self.posts.list_by_user(user_id, offset=(page - 1) * limit, limit=limit)
        return items, total
