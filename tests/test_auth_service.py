"""Unit tests for auth/service.py -- AuthService.

Uses a real UserStore on an in-memory SQLite engine and a fake GitHub client,
so no network traffic happens.

Covers:
- password registration and login; unknown user and wrong password look alike
- change_password check order and token revocation through token_version
- refresh: rotation, stale version, deleted user
- GitHub login: first login creates a user, second login reuses it; provider
  rejections, transport failures and invalid identities map to error codes
- query_post_key
"""

from __future__ import annotations

from datetime import timedelta

import pytest
import requests
from authlib.integrations.base_client import OAuthError

from auth.models import GitHubIdentity
from auth.oauth import GitHubOAuthClient, _as_int
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import ACCESS, TokenService
from core.errors import ErrorCode, ServiceError

SECRET = "auth-service-secret-key-with-32-plus-chars"


class FakeGitHub:
    """Stands in for GitHubOAuthClient. `outcome` is an identity or an exception."""

    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.codes: list[str] = []

    def authorization_url(self, state: str) -> str:
        return f"https://github.com/login/oauth/authorize?client_id=x&state={state}"

    def exchange_code(self, code: str) -> GitHubIdentity:
        self.codes.append(code)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(SECRET, access_ttl=timedelta(hours=1), refresh_ttl=timedelta(days=7))


@pytest.fixture
def service(user_store: UserStore, tokens: TokenService) -> AuthService:
    return AuthService(user_store, tokens)


def _code_of(call) -> ErrorCode:
    with pytest.raises(ServiceError) as exc_info:
        call()
    return exc_info.value.code


# ---------------------------------------------------------------------------
# Password auth
# ---------------------------------------------------------------------------


class TestPasswordAuth:
    def test_register_and_login(self, service: AuthService) -> None:
        user = service.register_with_password("alice", "pw123456")
        logged_in, pair = service.login_with_password("alice", "pw123456")
        assert logged_in.id == user.id
        assert service.tokens.validate_token(pair.access_token, kind=ACCESS).user_id == user.id

    def test_register_requires_username_and_password(self, service: AuthService) -> None:
        assert _code_of(lambda: service.register_with_password("  ", "pw123456")) == ErrorCode.VALIDATION
        assert _code_of(lambda: service.register_with_password("bob", "")) == ErrorCode.VALIDATION

    def test_duplicate_registration_is_conflict(self, service: AuthService) -> None:
        service.register_with_password("alice", "pw123456")
        assert _code_of(lambda: service.register_with_password("alice", "other-pw")) == ErrorCode.CONFLICT

    def test_unknown_user_and_wrong_password_look_the_same(self, service: AuthService) -> None:
        service.register_with_password("alice", "pw123456")
        unknown = _code_of(lambda: service.login_with_password("nobody", "pw123456"))
        wrong = _code_of(lambda: service.login_with_password("alice", "wrong"))
        assert unknown == wrong == ErrorCode.INVALID_CREDENTIALS

    def test_github_only_user_cannot_password_login(self, service: AuthService, user_store: UserStore) -> None:
        service.github = FakeGitHub(GitHubIdentity(id=99, login="octocat"))
        service.login_with_github("code")
        assert _code_of(lambda: service.login_with_password("octocat", "anything")) == ErrorCode.INVALID_CREDENTIALS


# ---------------------------------------------------------------------------
# Change password
# ---------------------------------------------------------------------------


class TestChangePassword:
    def test_wrong_current_wins_over_same_password(self, service: AuthService) -> None:
        user = service.register_with_password("alice", "pw123456")
        code = _code_of(lambda: service.change_password(user.id, "wrong-pw", "wrong-pw"))
        assert code == ErrorCode.INVALID_CURRENT_PASSWORD

    def test_same_password_rejected(self, service: AuthService) -> None:
        user = service.register_with_password("alice", "pw123456")
        code = _code_of(lambda: service.change_password(user.id, "pw123456", "pw123456"))
        assert code == ErrorCode.SAME_PASSWORD

    def test_unknown_user(self, service: AuthService) -> None:
        assert _code_of(lambda: service.change_password(999, "a", "b")) == ErrorCode.NOT_FOUND

    def test_change_revokes_refresh_tokens(self, service: AuthService) -> None:
        user = service.register_with_password("alice", "pw123456")
        _, pair = service.login_with_password("alice", "pw123456")

        service.change_password(user.id, "pw123456", "newpass1")

        assert _code_of(lambda: service.refresh_token(pair.refresh_token)) == ErrorCode.UNAUTHORIZED
        assert _code_of(lambda: service.login_with_password("alice", "pw123456")) == ErrorCode.INVALID_CREDENTIALS
        _, fresh = service.login_with_password("alice", "newpass1")
        assert service.tokens.validate_token(fresh.access_token).version == 1

    def test_github_only_user_has_no_current_password(self, service: AuthService) -> None:
        service.github = FakeGitHub(GitHubIdentity(id=5, login="octocat"))
        user, _ = service.login_with_github("code")
        code = _code_of(lambda: service.change_password(user.id, "anything", "newpass1"))
        assert code == ErrorCode.INVALID_CURRENT_PASSWORD


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_issues_new_pair(self, service: AuthService) -> None:
        user = service.register_with_password("alice", "pw123456")
        _, pair = service.login_with_password("alice", "pw123456")
        refreshed_user, new_pair = service.refresh_token(pair.refresh_token)
        assert refreshed_user.id == user.id
        assert service.tokens.validate_token(new_pair.access_token).user_id == user.id

    def test_access_token_cannot_refresh(self, service: AuthService) -> None:
        service.register_with_password("alice", "pw123456")
        _, pair = service.login_with_password("alice", "pw123456")
        assert _code_of(lambda: service.refresh_token(pair.access_token)) == ErrorCode.UNAUTHORIZED

    def test_deleted_user_is_unauthorized(self, service: AuthService, tokens: TokenService) -> None:
        orphan = tokens.issue_token_pair(4242)
        assert _code_of(lambda: service.refresh_token(orphan.refresh_token)) == ErrorCode.UNAUTHORIZED


# ---------------------------------------------------------------------------
# GitHub OAuth
# ---------------------------------------------------------------------------


class TestGitHubLogin:
    def test_not_configured(self, service: AuthService) -> None:
        assert _code_of(service.generate_github_auth_url) == ErrorCode.INTERNAL
        assert _code_of(lambda: service.login_with_github("code")) == ErrorCode.INTERNAL

    def test_auth_url_carries_fresh_state(self, service: AuthService) -> None:
        service.github = FakeGitHub(GitHubIdentity(id=1, login="x"))
        first = service.generate_github_auth_url()
        second = service.generate_github_auth_url()
        assert "state=" in first
        assert first != second

    def test_first_login_creates_second_reuses(self, service: AuthService, user_store: UserStore) -> None:
        service.github = FakeGitHub(GitHubIdentity(id=583231, login="octocat", name="The Octocat"))
        first, _ = service.login_with_github("code-1")
        second, _ = service.login_with_github("code-2")
        assert first.id == second.id
        assert first.github_id == 583231
        assert user_store.count_users() == 1

    def test_provider_rejection_is_unauthorized(self, service: AuthService) -> None:
        service.github = FakeGitHub(OAuthError(error="bad_verification_code"))
        assert _code_of(lambda: service.login_with_github("expired")) == ErrorCode.UNAUTHORIZED

    def test_transport_failure_is_internal(self, service: AuthService) -> None:
        service.github = FakeGitHub(requests.ConnectionError("connection refused"))
        assert _code_of(lambda: service.login_with_github("code")) == ErrorCode.INTERNAL

    @pytest.mark.parametrize(
        "identity",
        [GitHubIdentity(id=0, login="ghost"), GitHubIdentity(id=10, login="")],
    )
    def test_invalid_identity_is_unauthorized(self, service: AuthService, identity: GitHubIdentity) -> None:
        service.github = FakeGitHub(identity)
        assert _code_of(lambda: service.login_with_github("code")) == ErrorCode.UNAUTHORIZED

    def test_login_collision_with_password_user_is_conflict(self, service: AuthService) -> None:
        service.register_with_password("octocat", "pw123456")
        service.github = FakeGitHub(GitHubIdentity(id=7, login="octocat"))
        assert _code_of(lambda: service.login_with_github("code")) == ErrorCode.CONFLICT


class TestQueryPostKey:
    def test_returns_key_and_created_at(self, service: AuthService) -> None:
        user = service.register_with_password("alice", "pw123456")
        key, created_at = service.query_post_key(user.id)
        assert key == user.post_key
        assert created_at == user.created_at

    def test_unknown_user(self, service: AuthService) -> None:
        assert _code_of(lambda: service.query_post_key(999)) == ErrorCode.NOT_FOUND


class TestGitHubOAuthClient:
    def test_authorization_url(self) -> None:
        client = GitHubOAuthClient("my-client-id", "my-secret", "https://markpost.example/callback")
        url = client.authorization_url("state-123")
        assert url.startswith("https://github.com/login/oauth/authorize?")
        assert "client_id=my-client-id" in url
        assert "state=state-123" in url
        assert "my-secret" not in url

    @pytest.mark.parametrize("value,expected", [(583231, 583231), ("583231", 0), (True, 0), (None, 0)])
    def test_id_coercion(self, value, expected: int) -> None:
        assert _as_int(value) == expected
