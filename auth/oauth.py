"""
auth/oauth.py -- GitHub OAuth client (authorization-code flow) built on authlib.

Markpost's frontend drives the flow itself:
  1. GET /api/oauth/url -- the server builds the GitHub authorize URL with a
     fresh random state and returns it. The frontend keeps the state.
  2. GitHub redirects back to the frontend with ?code=&state=.
  3. POST /api/oauth/login -- the frontend echoes its stored state in the
     X-Oauth-State header next to the returned state query param. The route
     compares the two; this module only exchanges the code.

So unlike a server-rendered OAuth flow, no session middleware holds the state:
the comparison is done on the two client-supplied copies.

Error contract for exchange_code():
  authlib OAuthError -- GitHub rejected the code (bad_verification_code etc.).
  requests.RequestException -- network fault or non-2xx from the GitHub API.
  ValueError         -- the /user response was not a JSON object.
AuthService translates these into ServiceError codes.

Layer rule: no imports from api/, web/, or posts/.
"""

from __future__ import annotations

import logging

from authlib.integrations.requests_client import OAuth2Session

from auth.models import GitHubIdentity

logger = logging.getLogger("markpost.auth.oauth")

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"  # noqa: S105 -- URL, not a password
GITHUB_USER_URL = "https://api.github.com/user"
GITHUB_SCOPE = "read:user"

_TIMEOUT_SECONDS = 10.0


class GitHubOAuthClient:
    """Thin wrapper around authlib's requests OAuth2Session for GitHub.

    A new OAuth2Session is created per exchange: authlib sessions carry the
    fetched token as instance state, and route handlers run concurrently.
    """

    def __init__(self, client_id: str, client_secret: str, redirect_url: str = "") -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url

    def _client(self) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=GITHUB_SCOPE,
            redirect_uri=self.redirect_url or None,
        )

    def authorization_url(self, state: str) -> str:
        """Return the GitHub authorize URL carrying the given state."""
        with self._client() as client:
            url, _ = client.create_authorization_url(GITHUB_AUTHORIZE_URL, state=state)
        return url

    def exchange_code(self, code: str) -> GitHubIdentity:
        """Exchange an authorization code and fetch the GitHub identity."""
        with self._client() as client:
            client.fetch_token(
                GITHUB_TOKEN_URL,
                code=code,
                headers={"Accept": "application/json"},
                timeout=_TIMEOUT_SECONDS,
            )
            resp = client.get(
                GITHUB_USER_URL,
                headers={"Accept": "application/vnd.github+json"},
                timeout=_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            profile = resp.json()

        if not isinstance(profile, dict):
            raise ValueError("GitHub /user response is not a JSON object")
        identity = GitHubIdentity(
            id=_as_int(profile.get("id")),
            login=str(profile.get("login") or ""),
            name=profile.get("name"),
            email=profile.get("email"),
        )
        logger.info("GitHub identity fetched: login=%s id=%s", identity.login, identity.id)
        return identity


def _as_int(value) -> int:
    """Coerce a GitHub numeric id; anything unusable becomes 0 (invalid)."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return 0
