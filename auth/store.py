"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Services and
dependencies never touch SQL directly. UserRepository is the structural
interface AuthService depends on, so tests can hand it an in-memory fake.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The "at least one credential" invariant (hashed_password or github_id) is
  enforced here, before the INSERT, rather than as a CHECK constraint, so the
  caller gets a ValueError instead of an opaque IntegrityError.

Uniqueness: username, post_key and github_id are UNIQUE. A violation on insert
surfaces as DuplicateUserError so callers do not need to import sqlalchemy.

Layer rule: no imports from api/, web/, or posts/. core/ is allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import BigInteger, Column, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from core.database import init_schema, metadata

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for GitHub-only users
    Column("post_key", String(64), nullable=False, unique=True),
    Column("github_id", BigInteger, unique=True),  # NULL for password-only users
    Column("created_at", String(40), nullable=False),
    Column("token_version", Integer, nullable=False, server_default="0"),
)


class DuplicateUserError(Exception):
    """Raised when a username, post key, or GitHub ID is already taken."""


class UserRepository(Protocol):
    """The persistence operations AuthService and the auth gates rely on."""

    def create_user(self, user: User) -> User: ...

    def get_by_id(self, user_id: int) -> User | None: ...

    def get_by_username(self, username: str) -> User | None: ...

    def get_by_github_id(self, github_id: int) -> User | None: ...

    def get_by_post_key(self, post_key: str) -> User | None: ...

    def update_password(self, user_id: int, hashed_password: str) -> bool: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_db_engine("sqlite:///markpost.db")
        store = UserStore(engine)
        user = store.create_user(User(username="alice", post_key=generate_post_key(),
                                      hashed_password=hash_password("secret")))
        store.get_by_post_key(user.post_key)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        init_schema(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and created_at assigned.

        Raises:
            ValueError: neither hashed_password nor github_id is set.
            DuplicateUserError: username, post_key or github_id already exists.
        """
        if user.hashed_password is None and user.github_id is None:
            raise ValueError("user must have a password or a GitHub identity")
        created_at = user.created_at or _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    users.insert().values(
                        username=user.username,
                        hashed_password=user.hashed_password,
                        post_key=user.post_key,
                        github_id=user.github_id,
                        created_at=created_at,
                        token_version=user.token_version,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateUserError(f"user {user.username!r} conflicts with an existing record") from exc
        user.id = result.inserted_primary_key[0]
        user.created_at = created_at
        return user

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Store a new password hash and bump token_version in one statement.

        Bumping the version revokes every token issued before the change.
        Returns True if a row was updated, False if user_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(hashed_password=hashed_password, token_version=users.c.token_version + 1)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lookups (None means not found)
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        return self._get_one(users.c.id == user_id)

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        return self._get_one(users.c.username == username)

    def get_by_github_id(self, github_id: int) -> User | None:
        return self._get_one(users.c.github_id == github_id)

    def get_by_post_key(self, post_key: str) -> User | None:
        return self._get_one(users.c.post_key == post_key)

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(users)).scalar() or 0

    def _get_one(self, clause) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        post_key=row.post_key,
        github_id=row.github_id,
        created_at=row.created_at,
        token_version=row.token_version,
    )
