"""Unit tests for core/config.py -- Settings validation and derived values."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

SECRET = "config-test-secret-key-with-32-plus-chars"


def _settings(**overrides) -> Settings:
    values = {"debug": False, "secret_key": SECRET}
    values.update(overrides)
    return Settings(**values)


class TestSecretKey:
    def test_missing_in_production_fails(self) -> None:
        with pytest.raises(ValidationError):
            _settings(secret_key="")

    def test_missing_in_debug_is_generated(self) -> None:
        settings = _settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _settings(secret_key="short")


class TestDatabase:
    def test_defaults(self) -> None:
        settings = _settings()
        assert settings.database_type == "sqlite"
        assert settings.sqlalchemy_url == "sqlite:///markpost.db"

    def test_type_is_normalized(self) -> None:
        assert _settings(database_type=" SQLite ").database_type == "sqlite"

    def test_unsupported_type(self) -> None:
        with pytest.raises(ValidationError):
            _settings(database_type="mysql")

    def test_empty_url(self) -> None:
        with pytest.raises(ValidationError):
            _settings(database_url="   ")

    def test_sqlite_suffix_enforced(self) -> None:
        with pytest.raises(ValidationError):
            _settings(database_url="markpost.txt")

    def test_absolute_sqlite_path(self) -> None:
        # Absolute paths skip the directory check.
        assert _settings(database_url="/var/lib/markpost.db").sqlalchemy_url == "sqlite:////var/lib/markpost.db"

    def test_missing_relative_directory(self) -> None:
        with pytest.raises(ValidationError):
            _settings(database_url="no-such-dir/markpost.db")

    def test_memory(self) -> None:
        assert _settings(database_url=":memory:").sqlalchemy_url == "sqlite://"

    def test_postgres_scheme_is_rewritten(self) -> None:
        settings = _settings(database_type="postgresql", database_url="postgres://u:p@db:5432/markpost")
        assert settings.sqlalchemy_url == "postgresql://u:p@db:5432/markpost"

    @pytest.mark.parametrize("url", ["mysql://u:p@db/x", "postgresql://db/markpost"])
    def test_bad_postgres_urls(self, url: str) -> None:
        with pytest.raises(ValidationError):
            _settings(database_type="postgresql", database_url=url)


class TestLimitsAndProviders:
    def test_negative_global_limit_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _settings(api_rate_limit=-1)

    def test_github_configured_needs_id_and_secret(self) -> None:
        assert not _settings(github_client_id="id").github_configured
        assert _settings(github_client_id="id", github_client_secret="s").github_configured
