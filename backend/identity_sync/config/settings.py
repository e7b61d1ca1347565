"""
Environment-driven settings for the identity sync service.

Usage:
    from identity_sync.config.settings import load_settings

    settings = load_settings()
    settings.webhook_secret
    settings.database_url

load_settings() fails fast when CLERK_WEBHOOK_SECRET is unset: the
service must refuse to start rather than accept unverifiable events.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from identity_sync.errors import WebhookConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./identity_sync.db"
DEFAULT_STORE_TIMEOUT_SECONDS = 5.0
DEFAULT_CORS_ORIGINS = "http://localhost:3000"


def normalize_database_url(database_url: str) -> str:
    """
    Normalize a database URL for SQLAlchemy.

    Handles Render/Heroku style postgres:// URLs by converting them to the
    psycopg driver URL.
    """
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+psycopg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return database_url


@dataclass(frozen=True)
class Settings:
    """Immutable service configuration."""

    webhook_secret: str
    database_url: str = DEFAULT_DATABASE_URL
    store_timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS
    clerk_issuer_url: Optional[str] = None
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: [DEFAULT_CORS_ORIGINS])

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Settings instance

    Raises:
        WebhookConfigurationError: If CLERK_WEBHOOK_SECRET is not set or
            STORE_TIMEOUT_SECONDS is not a positive number
    """
    env = os.environ if environ is None else environ

    webhook_secret = (env.get("CLERK_WEBHOOK_SECRET") or "").strip()
    if not webhook_secret:
        logger.error("CLERK_WEBHOOK_SECRET not configured")
        raise WebhookConfigurationError("CLERK_WEBHOOK_SECRET environment variable is required")

    raw_timeout = env.get("STORE_TIMEOUT_SECONDS")
    try:
        store_timeout = float(raw_timeout) if raw_timeout else DEFAULT_STORE_TIMEOUT_SECONDS
    except ValueError:
        raise WebhookConfigurationError(f"STORE_TIMEOUT_SECONDS is not a number: {raw_timeout!r}")
    if store_timeout <= 0:
        raise WebhookConfigurationError("STORE_TIMEOUT_SECONDS must be positive")

    cors_origins = [
        origin.strip()
        for origin in env.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
        if origin.strip()
    ]

    return Settings(
        webhook_secret=webhook_secret,
        database_url=normalize_database_url(env.get("DATABASE_URL") or DEFAULT_DATABASE_URL),
        store_timeout_seconds=store_timeout,
        clerk_issuer_url=env.get("CLERK_ISSUER_URL") or None,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        cors_origins=cors_origins,
    )
