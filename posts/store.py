"""
posts/store.py -- SQLAlchemy Core persistence layer for posts.

Pattern: Repository + Data Mapper, same shape as auth/store.py.
PostStore is the repository; _row_to_post is the mapper. PostRepository is the
structural interface PostService and RetentionSweeper depend on.

Referential integrity: posts.user_id is a FOREIGN KEY to users.id. SQLite only
enforces it with PRAGMA foreign_keys=ON, which core/database.py sets on every
connection. A violation surfaces as InvalidOwnerError.

Retention queries take the cutoff as an ISO-8601 string. created_at is always
written with microsecond precision in UTC, so lexicographic comparison is
chronological comparison.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.store import users  # noqa: F401 -- registers the FK target table
from core.database import init_schema, metadata
from posts.models import Post

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

posts = Table(
    "posts",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("title", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("created_at", String(40), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Index("ix_posts_created_at", "created_at"),
    Index("ix_posts_user_id", "user_id"),
)


class InvalidOwnerError(Exception):
    """Raised when a post references a user id that does not exist."""


class PostRepository(Protocol):
    def create_post(self, post: Post) -> Post: ...

    def get_by_id(self, post_id: str) -> Post | None: ...

    def list_by_user(self, user_id: int, offset: int, limit: int) -> list[Post]: ...

    def count_by_user(self, user_id: int) -> int: ...

    def count_created_before(self, cutoff: str) -> int: ...

    def list_created_before(self, cutoff: str, limit: int) -> list[Post]: ...

    def select_ids_created_before(self, cutoff: str, limit: int) -> list[str]: ...

    def delete_by_ids(self, post_ids: list[str]) -> int: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def new_post_id() -> str:
    """128-bit random, URL-safe post id."""
    return secrets.token_urlsafe(16)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as the fixed-width UTC string stored in created_at."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    # SQLite: "FOREIGN KEY constraint failed"; PostgreSQL: "violates foreign key constraint"
    return "foreign key" in str(exc.orig).lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PostStore:
    """Repository for Post entities.

    Usage:
        store = PostStore(engine)
        post = store.create_post(Post(id=new_post_id(), title="Hi", body="## Hi", user_id=1))
        store.get_by_id(post.id)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        init_schema(self.engine)

    def create_post(self, post: Post) -> Post:
        """Insert a post. created_at is assigned here unless already set.

        Raises InvalidOwnerError if post.user_id does not reference a user.
        Other IntegrityErrors (e.g. a duplicate id) propagate unchanged.
        """
        created_at = post.created_at or _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    posts.insert().values(
                        id=post.id,
                        title=post.title,
                        body=post.body,
                        created_at=created_at,
                        user_id=post.user_id,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            if _is_foreign_key_violation(exc):
                raise InvalidOwnerError(f"user {post.user_id} does not exist") from exc
            raise
        post.created_at = created_at
        return post

    def get_by_id(self, post_id: str) -> Post | None:
        with self.engine.connect() as conn:
            row = conn.execute(posts.select().where(posts.c.id == post_id)).fetchone()
        return _row_to_post(row) if row is not None else None

    def list_by_user(self, user_id: int, offset: int, limit: int) -> list[Post]:
        """Return one page of a user's posts, newest first."""
        stmt = (
            posts.select()
            .where(posts.c.user_id == user_id)
            .order_by(posts.c.created_at.desc(), posts.c.id)
            .offset(offset)
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_post(r) for r in rows]

    def count_by_user(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(posts).where(posts.c.user_id == user_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def count_created_before(self, cutoff: str) -> int:
        stmt = select(func.count()).select_from(posts).where(posts.c.created_at < cutoff)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def list_created_before(self, cutoff: str, limit: int) -> list[Post]:
        """Return up to limit expired posts, oldest first."""
        stmt = posts.select().where(posts.c.created_at < cutoff).order_by(posts.c.created_at.asc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_post(r) for r in rows]

    def select_ids_created_before(self, cutoff: str, limit: int) -> list[str]:
        stmt = select(posts.c.id).where(posts.c.created_at < cutoff).limit(limit)
        with self.engine.connect() as conn:
            return [row.id for row in conn.execute(stmt)]

    def delete_by_ids(self, post_ids: list[str]) -> int:
        """Delete exactly the given posts and return the number of rows removed."""
        if not post_ids:
            return 0
        with self.engine.connect() as conn:
            result = conn.execute(posts.delete().where(posts.c.id.in_(post_ids)))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        title=row.title,
        body=row.body,
        user_id=row.user_id,
        created_at=row.created_at,
    )
