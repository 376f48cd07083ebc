"""
auth/tokens.py -- JWT token service, password hashing, and random key helpers.

Security design decisions:
  JWT: python-jose, signed with HS256 using SECRET_KEY. Tokens carry the user
       id, a token kind ("access" or "refresh"), the user's token_version, and
       the iat/nbf/exp window. Validation accepts only the HMAC family, so a
       header claiming "none" or an asymmetric algorithm is rejected before the
       signature is even considered. Any validation failure is a
       ServiceError(UNAUTHORIZED) -- no partial trust.

  Token kind: access and refresh tokens are not interchangeable. validate_token
       takes the expected kind and rejects a token whose "typ" differs.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in AuthService.login_with_password() so response time does
       not reveal whether a username exists.

  Post keys and OAuth state: secrets.token_urlsafe. Both are bearer secrets,
       so both come from the OS CSPRNG.

Layer rule: no imports from api/, web/, or posts/. core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.errors import ErrorCode, ServiceError

logger = logging.getLogger("markpost.auth")

_ALGORITHM = "HS256"
# Validation accepts the whole HMAC family but nothing else.
_ACCEPTED_ALGORITHMS = ["HS256", "HS384", "HS512"]

ACCESS = "access"
REFRESH = "refresh"
_TOKEN_KINDS = (ACCESS, REFRESH)

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input past 72 bytes. The API layer caps password fields
    at 72 characters of input via the Pydantic model.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB, or input bcrypt refuses.
        return False


# Timing equalization dummy hash. Computed once at module load so the first
# login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("markpost_timing_dummy")


def verify_dummy(plain: str) -> None:
    """Burn one bcrypt verification. Used when there is no real hash to check."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Random keys
# ---------------------------------------------------------------------------


def generate_post_key() -> str:
    """Return a new post key: 16 random bytes, URL-safe base64 (128 bits)."""
    return secrets.token_urlsafe(16)


def generate_state() -> str:
    """Return a fresh OAuth state value: 32 random bytes, URL-safe base64."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


@dataclass
class TokenClaims:
    """Verified claims of a token. Only produced by TokenService.validate_token."""

    user_id: int
    kind: str
    version: int
    issued_at: datetime
    not_before: datetime
    expires_at: datetime


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "Bearer"


class TokenService:
    """Issues and validates signed, expiring JWTs bound to a user id.

    Usage:
        tokens = TokenService(settings.secret_key,
                              access_ttl=timedelta(hours=24),
                              refresh_ttl=timedelta(days=30))
        pair = tokens.issue_token_pair(user.id, version=user.token_version)
        claims = tokens.validate_token(pair.access_token, kind="access")
    """

    def __init__(self, secret_key: str, access_ttl: timedelta, refresh_ttl: timedelta) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue_token(self, user_id: int, kind: str, duration: timedelta, version: int = 0) -> str:
        """Encode a signed token valid from now until now + duration.

        Raises ServiceError(INTERNAL) if signing fails.
        """
        if kind not in _TOKEN_KINDS:
            raise ValueError(f"unknown token kind: {kind!r}")
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "typ": kind,
            "ver": version,
            "iat": now,
            "nbf": now,
            "exp": now + duration,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.error("Token signing failed for user_id=%s: %s", user_id, exc)
            raise ServiceError(ErrorCode.INTERNAL, "token signing failed") from exc

    def issue_token_pair(self, user_id: int, version: int = 0) -> TokenPair:
        """Issue a short-lived access token and a long-lived refresh token."""
        return TokenPair(
            access_token=self.issue_token(user_id, ACCESS, self.access_ttl, version),
            refresh_token=self.issue_token(user_id, REFRESH, self.refresh_ttl, version),
            expires_in=int(self.access_ttl.total_seconds()),
        )

    def validate_token(self, token: str, kind: str = ACCESS) -> TokenClaims:
        """Verify signature, algorithm, time window, and kind.

        Raises ServiceError(UNAUTHORIZED) on any failure.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=_ACCEPTED_ALGORITHMS,
                options={"require_exp": True, "require_nbf": True, "require_iat": True, "require_sub": True},
            )
        except JWTError as exc:
            raise ServiceError(ErrorCode.UNAUTHORIZED, "invalid token") from exc

        # jose only rejects exp < now; a token is already dead at its exp second.
        if payload["exp"] <= int(datetime.now(timezone.utc).timestamp()):
            raise ServiceError(ErrorCode.UNAUTHORIZED, "token expired")

        user_id = payload.get("user_id")
        version = payload.get("ver")
        if not isinstance(user_id, int) or not isinstance(version, int) or payload.get("sub") != str(user_id):
            raise ServiceError(ErrorCode.UNAUTHORIZED, "malformed token claims")
        if payload.get("typ") != kind:
            raise ServiceError(ErrorCode.UNAUTHORIZED, f"expected {kind} token")

        return TokenClaims(
            user_id=user_id,
            kind=kind,
            version=version,
            issued_at=datetime.fromtimestamp(payload["iat"], timezone.utc),
            not_before=datetime.fromtimestamp(payload["nbf"], timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], timezone.utc),
        )
