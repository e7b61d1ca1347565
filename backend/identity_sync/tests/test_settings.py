"""Tests for environment-driven settings and engine construction."""

import pytest
from sqlalchemy import text

from identity_sync.config.settings import (
    DEFAULT_DATABASE_URL,
    Settings,
    load_settings,
    normalize_database_url,
)
from identity_sync.database.session import create_engine_from_settings
from identity_sync.errors import WebhookConfigurationError


class TestLoadSettings:

    def test_minimal_environment(self):
        settings = load_settings({"CLERK_WEBHOOK_SECRET": "whsec_abc"})

        assert settings.webhook_secret == "whsec_abc"
        assert settings.database_url == DEFAULT_DATABASE_URL
        assert settings.store_timeout_seconds == 5.0
        assert settings.clerk_issuer_url is None
        assert settings.log_level == "INFO"
        assert settings.cors_origins == ["http://localhost:3000"]
        assert settings.is_sqlite

    @pytest.mark.parametrize("secret", [None, "", "   "])
    def test_missing_secret_is_fatal(self, secret):
        env = {} if secret is None else {"CLERK_WEBHOOK_SECRET": secret}

        with pytest.raises(WebhookConfigurationError, match="CLERK_WEBHOOK_SECRET"):
            load_settings(env)

    def test_full_environment(self):
        settings = load_settings({
            "CLERK_WEBHOOK_SECRET": "whsec_abc",
            "DATABASE_URL": "postgres://user:pw@db:5432/identity",
            "STORE_TIMEOUT_SECONDS": "2.5",
            "CLERK_ISSUER_URL": "https://clerk.example.com",
            "LOG_LEVEL": "debug",
            "CORS_ORIGINS": "https://app.example.com, https://admin.example.com",
        })

        assert settings.database_url == "postgresql+psycopg://user:pw@db:5432/identity"
        assert settings.store_timeout_seconds == 2.5
        assert settings.clerk_issuer_url == "https://clerk.example.com"
        assert settings.log_level == "DEBUG"
        assert settings.cors_origins == ["https://app.example.com", "https://admin.example.com"]
        assert not settings.is_sqlite

    @pytest.mark.parametrize("timeout", ["soon", "0", "-1"])
    def test_invalid_store_timeout(self, timeout):
        with pytest.raises(WebhookConfigurationError, match="STORE_TIMEOUT_SECONDS"):
            load_settings({"CLERK_WEBHOOK_SECRET": "whsec_abc", "STORE_TIMEOUT_SECONDS": timeout})


class TestNormalizeDatabaseUrl:

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgres://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
            ("postgresql://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
            ("postgresql+psycopg://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
            ("sqlite:///./identity_sync.db", "sqlite:///./identity_sync.db"),
        ],
    )
    def test_normalize(self, url, expected):
        assert normalize_database_url(url) == expected


class TestEngine:

    def test_in_memory_sqlite_enforces_foreign_keys(self):
        engine = create_engine_from_settings(
            Settings(webhook_secret="whsec_abc", database_url="sqlite:///:memory:")
        )
        try:
            with engine.connect() as connection:
                assert connection.execute(text("PRAGMA foreign_keys")).scalar() == 1
        finally:
            engine.dispose()
