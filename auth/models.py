"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores and services do the work.

Layer rule: no imports from api/, web/, or posts/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """Represents a Markpost account.

    hashed_password is None for GitHub-only users (they have no local password).
    github_id is None for password-only users. The store refuses a record with
    neither -- an account must be reachable by at least one credential.

    post_key is the per-account write key: whoever holds it can create posts
    as this user via POST /{post_key}. It is generated once at account creation.

    token_version is embedded in every issued token as the "ver" claim and is
    bumped on password change, which invalidates all outstanding tokens.
    """

    username: str
    post_key: str
    id: int | None = None
    hashed_password: str | None = None  # None = GitHub-only user
    github_id: int | None = None  # GitHub numeric user ID
    created_at: str | None = None
    token_version: int = 0


@dataclass
class GitHubIdentity:
    """The subset of a GitHub /user response that Markpost relies on."""

    id: int
    login: str
    name: str | None = None
    email: str | None = None

    def is_valid(self) -> bool:
        return self.id > 0 and bool(self.login)
