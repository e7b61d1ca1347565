"""
Root test configuration and fixtures.

Every test gets a fresh in-memory SQLite database with foreign keys
enforced, so commits made by the dispatcher never leak across tests.

Shared fixtures:
- db_engine / db_session / store / dispatcher (clock pinned to fixed_now)
- isolated_dispatcher: dispatchers on separate databases for replay comparisons
- webhook_secret / sign_webhook: valid Svix headers for a raw body
- sample Clerk payloads for users, organizations and memberships
"""

import base64
import hashlib
import hmac
import os
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from identity_sync.database.session import enable_sqlite_foreign_keys
from identity_sync.db_base import Base
from identity_sync.repositories.identity_store import IdentityStore
from identity_sync.services.dispatcher import EventDispatcher

# Set test environment
os.environ.setdefault("ENV", "test")

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def _memory_engine():
    """Create a fresh in-memory SQLite engine with all identity tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    import identity_sync.models  # noqa: F401 - registers model metadata
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_engine():
    engine = _memory_engine()

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db_session) -> IdentityStore:
    return IdentityStore(db_session)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def dispatcher(store, fixed_now) -> EventDispatcher:
    """Atomic dispatcher with a pinned clock."""
    return EventDispatcher(store, clock=lambda: fixed_now)


@pytest.fixture
def isolated_dispatcher(fixed_now):
    """
    Build dispatchers that each own a separate in-memory database.

    Returns (dispatcher, session) pairs; used to replay one event stream in
    different orders and compare the resulting stores.
    """
    opened = []

    def _build():
        engine = _memory_engine()
        session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
        opened.append((engine, session))
        return EventDispatcher(IdentityStore(session), clock=lambda: fixed_now), session

    yield _build

    for engine, session in opened:
        session.close()
        engine.dispose()


@pytest.fixture
def webhook_secret() -> str:
    """Test webhook secret."""
    return "whsec_" + base64.b64encode(b"test_secret_key_12345").decode()


@pytest.fixture
def sign_webhook(webhook_secret) -> Callable[..., Dict[str, str]]:
    """
    Build Svix headers for a raw body.

    Signed content: "{svix_id}.{svix_timestamp}.{payload}", HMAC-SHA256
    keyed with the base64-decoded secret, sent as "v1,<base64>".
    """

    def _sign(payload: bytes, msg_id: str = "msg_test_123", timestamp: int = None) -> Dict[str, str]:
        ts = str(timestamp if timestamp is not None else int(time.time()))
        secret_key = base64.b64decode(webhook_secret[len("whsec_"):])
        signed_content = f"{msg_id}.{ts}.".encode() + payload
        digest = hmac.new(secret_key, signed_content, hashlib.sha256).digest()
        return {
            "svix-id": msg_id,
            "svix-timestamp": ts,
            "svix-signature": f"v1,{base64.b64encode(digest).decode()}",
        }

    return _sign


@pytest.fixture
def sample_user_data():
    """Sample Clerk user data."""
    return {
        "id": "user_9",
        "first_name": "Grace",
        "last_name": "Hopper",
        "username": "ghopper",
        "image_url": "https://example.com/grace.png",
        "email_addresses": [{"id": "email_1", "email_address": "grace@example.com"}],
    }


@pytest.fixture
def sample_org_data():
    """Sample Clerk organization data."""
    return {
        "id": "org_1",
        "name": "Acme Capital",
        "slug": None,
        "image_url": "https://example.com/acme.png",
        "created_by": "user_9",
    }


@pytest.fixture
def sample_membership_data():
    """Sample Clerk membership data for a second user."""
    return {
        "id": "orgmem_1",
        "organization": {"id": "org_1", "name": "Acme Capital"},
        "public_user_data": {"user_id": "user_2", "first_name": "Alan"},
        "role": "org:admin",
    }
