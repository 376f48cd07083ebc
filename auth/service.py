"""
auth/service.py -- AuthService: the login / refresh / password-change surface.

AuthService is the only component that touches both the user repository and
the token service. Every failure leaves this module as a ServiceError with a
stable ErrorCode; lower-level exceptions (sqlalchemy, authlib, requests, jose)
are chained as the cause and logged, never shown to clients.

Collaborators are injected, so tests hand in an in-memory repository and a
fake GitHub client:

    service = AuthService(users=UserStore(engine),
                          tokens=TokenService(...),
                          github=GitHubOAuthClient(...))

Layer rule: no imports from api/, web/, or posts/.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests
from authlib.integrations.base_client import OAuthError

from auth.models import GitHubIdentity, User
from auth.store import DuplicateUserError, UserRepository
from auth.tokens import (
    REFRESH,
    TokenPair,
    TokenService,
    generate_post_key,
    generate_state,
    hash_password,
    verify_dummy,
    verify_password,
)
from core.errors import ErrorCode, ServiceError

logger = logging.getLogger("markpost.auth")


class GitHubClient(Protocol):
    def authorization_url(self, state: str) -> str: ...

    def exchange_code(self, code: str) -> GitHubIdentity: ...


class AuthService:
    def __init__(self, users: UserRepository, tokens: TokenService, github: GitHubClient | None = None) -> None:
        self.users = users
        self.tokens = tokens
        self.github = github

    # ------------------------------------------------------------------
    # GitHub OAuth
    # ------------------------------------------------------------------

    def generate_github_auth_url(self) -> str:
        """Return a GitHub authorize URL with a fresh 256-bit state.

        The state is not stored here. The caller hands the URL to the client,
        which must echo the state back on login.
        """
        if self.github is None:
            raise ServiceError(ErrorCode.INTERNAL, "GitHub OAuth is not configured")
        return self.github.authorization_url(generate_state())

    def login_with_github(self, code: str) -> tuple[User, TokenPair]:
        """Exchange a GitHub code, resolve or create the user, issue tokens."""
        if self.github is None:
            raise ServiceError(ErrorCode.INTERNAL, "GitHub OAuth is not configured")
        try:
            identity = self.github.exchange_code(code)
        except OAuthError as exc:
            logger.warning("GitHub rejected authorization code: %s", exc)
            raise ServiceError(ErrorCode.UNAUTHORIZED, "authorization code rejected") from exc
        except (requests.RequestException, ValueError) as exc:
            logger.error("GitHub code exchange failed: %s", exc)
            raise ServiceError(ErrorCode.INTERNAL, "GitHub exchange failed") from exc

        if not identity.is_valid():
            logger.warning("GitHub returned an invalid identity (id=%s, login=%r)", identity.id, identity.login)
            raise ServiceError(ErrorCode.UNAUTHORIZED, "invalid GitHub identity")

        user = self.users.get_by_github_id(identity.id)
        if user is None:
            user = self._create_user(
                User(username=identity.login, post_key=generate_post_key(), github_id=identity.id)
            )
            logger.info("Created user %r (id=%s) from GitHub login", user.username, user.id)
        return user, self._issue(user)

    # ------------------------------------------------------------------
    # Password auth
    # ------------------------------------------------------------------

    def register_with_password(self, username: str, password: str) -> User:
        """Create a password account with a fresh post key."""
        username = username.strip()
        if not username or not password:
            raise ServiceError(ErrorCode.VALIDATION, "username and password are required")
        user = self._create_user(
            User(username=username, post_key=generate_post_key(), hashed_password=hash_password(password))
        )
        logger.info("Registered user %r (id=%s)", user.username, user.id)
        return user

    def login_with_password(self, username: str, password: str) -> tuple[User, TokenPair]:
        """Verify a username/password pair with timing equalization.

        Unknown user, user without a password, and wrong password all fail
        with INVALID_CREDENTIALS, and all three run exactly one bcrypt check.
        """
        user = self.users.get_by_username(username)
        if user is None or user.hashed_password is None:
            verify_dummy(password)
            raise ServiceError(ErrorCode.INVALID_CREDENTIALS, "invalid credentials")
        if not verify_password(password, user.hashed_password):
            raise ServiceError(ErrorCode.INVALID_CREDENTIALS, "invalid credentials")
        return user, self._issue(user)

    def refresh_token(self, refresh_token: str) -> tuple[User, TokenPair]:
        """Rotate a refresh token into a new token pair.

        The old pair stays valid until it expires unless the user's
        token_version has moved on since it was issued.
        """
        claims = self.tokens.validate_token(refresh_token, kind=REFRESH)
        user = self.users.get_by_id(claims.user_id)
        if user is None:
            raise ServiceError(ErrorCode.UNAUTHORIZED, "user no longer exists")
        if claims.version != user.token_version:
            raise ServiceError(ErrorCode.UNAUTHORIZED, "token has been revoked")
        return user, self._issue(user)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace the user's password and revoke all outstanding tokens.

        Check order: user exists, current password correct, new != current.
        A wrong current password therefore wins over new == current.
        """
        user = self.users.get_by_id(user_id)
        if user is None:
            raise ServiceError(ErrorCode.NOT_FOUND, "user not found")
        if user.hashed_password is None:
            verify_dummy(current_password)
            raise ServiceError(ErrorCode.INVALID_CURRENT_PASSWORD, "account has no password")
        if not verify_password(current_password, user.hashed_password):
            raise ServiceError(ErrorCode.INVALID_CURRENT_PASSWORD, "current password is incorrect")
        if new_password == current_password:
            raise ServiceError(ErrorCode.SAME_PASSWORD, "new password equals current password")

        if not self.users.update_password(user_id, hash_password(new_password)):
            raise ServiceError(ErrorCode.NOT_FOUND, "user not found")
        logger.info("Password changed for user_id=%s; outstanding tokens revoked", user_id)

    def query_post_key(self, user_id: int) -> tuple[str, str]:
        """Return (post_key, created_at) for the user."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise ServiceError(ErrorCode.NOT_FOUND, "user not found")
        return user.post_key, user.created_at or ""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, user: User) -> TokenPair:
        return self.tokens.issue_token_pair(user.id, version=user.token_version)

    def _create_user(self, user: User) -> User:
        try:
            return self.users.create_user(user)
        except DuplicateUserError as exc:
            raise ServiceError(ErrorCode.CONFLICT, f"user {user.username!r} already exists") from exc
        except ValueError as exc:
            raise ServiceError(ErrorCode.VALIDATION, str(exc)) from exc
