"""
Tests for Clerk session verification and the lazy-synced profile route.

Tokens are real RS256 JWTs signed with a throwaway keypair; only the JWKS
fetch is mocked.
"""

import time
from unittest.mock import MagicMock, patch

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from identity_sync.auth.clerk_verifier import ClerkJWTVerifier, Principal
from identity_sync.config.settings import Settings
from identity_sync.errors import ClerkVerificationError, StorePermanentError, StoreTransientError
from identity_sync.models import Profile
from identity_sync.services.profile_sync import ProfileSyncService
from main import create_app

ISSUER = "https://test.clerk.accounts.dev"


# =============================================================================
# Test Fixtures
# =============================================================================

def _private_pem(private_key) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="module")
def rsa_keypair():
    """Generate RSA keypair for testing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    return {
        "private_pem": _private_pem(private_key),
        "public_key": private_key.public_key(),
    }


@pytest.fixture
def create_test_token(rsa_keypair):
    """Factory to create test JWTs."""
    def _create(claims=None, expired=False, invalid_sig=False):
        now = int(time.time())
        default_claims = {
            "sub": "user_9",
            "iss": ISSUER,
            "exp": now - 3600 if expired else now + 3600,
            "iat": now,
            "sid": "sess_1",
        }
        token_claims = {**default_claims, **(claims or {})}

        key = rsa_keypair["private_pem"]
        if invalid_sig:
            key = _private_pem(rsa.generate_private_key(65537, 2048, default_backend()))

        return jwt.encode(token_claims, key, algorithm="RS256", headers={"kid": "test-key-1"})
    return _create


@pytest.fixture
def mock_jwks(rsa_keypair):
    """Serve the test public key instead of fetching Clerk's JWKS."""
    with patch("identity_sync.auth.clerk_verifier.PyJWKClient") as mock_client_cls:
        mock_client_cls.return_value.get_signing_key_from_jwt.return_value = MagicMock(
            key=rsa_keypair["public_key"]
        )
        yield mock_client_cls


@pytest.fixture
def verifier(mock_jwks):
    return ClerkJWTVerifier(issuer=ISSUER + "/")


# =============================================================================
# Verifier Tests
# =============================================================================

class TestClerkJWTVerifier:

    def test_requires_issuer(self):
        with pytest.raises(ClerkVerificationError) as exc_info:
            ClerkJWTVerifier(issuer=None)

        assert exc_info.value.error_code == "config_error"

    def test_default_jwks_url(self, verifier, mock_jwks, create_test_token):
        verifier.verify_token(create_test_token())

        assert mock_jwks.call_args[0][0] == f"{ISSUER}/.well-known/jwks.json"

    def test_valid_token_yields_principal(self, verifier, create_test_token):
        principal = verifier.verify_principal(create_test_token({"org_id": "org_1"}))

        assert principal == Principal(user_id="user_9", session_id="sess_1", org_id="org_1")

    def test_bearer_prefix_is_stripped(self, verifier, create_test_token):
        claims = verifier.verify_token(f"Bearer {create_test_token()}")

        assert claims["sub"] == "user_9"

    def test_empty_token(self, verifier):
        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token("")

        assert exc_info.value.error_code == "missing_token"

    def test_expired_token(self, verifier, create_test_token):
        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(create_test_token(expired=True))

        assert exc_info.value.error_code == "token_expired"

    def test_wrong_issuer(self, verifier, create_test_token):
        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(create_test_token({"iss": "https://evil.example.com"}))

        assert exc_info.value.error_code == "invalid_issuer"

    def test_invalid_signature(self, verifier, create_test_token):
        with pytest.raises(ClerkVerificationError) as exc_info:
            verifier.verify_token(create_test_token(invalid_sig=True))

        assert exc_info.value.error_code == "invalid_token"

    def test_invalid_token_yields_none(self, verifier, create_test_token):
        assert verifier.verify_principal(create_test_token(expired=True)) is None


# =============================================================================
# Profile Route Tests
# =============================================================================

@pytest.fixture
def client(db_engine, webhook_secret, mock_jwks):
    settings = Settings(
        webhook_secret=webhook_secret,
        database_url="sqlite:///:memory:",
        clerk_issuer_url=ISSUER,
    )
    with TestClient(create_app(settings=settings, engine=db_engine)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(create_test_token):
    return {"Authorization": f"Bearer {create_test_token({'org_id': 'org_1'})}"}


class TestProfileRoute:

    def test_missing_bearer_is_401(self, client):
        assert client.get("/api/profile/me").status_code == 401

    def test_invalid_token_is_401(self, client, create_test_token):
        headers = {"Authorization": f"Bearer {create_test_token(invalid_sig=True)}"}

        assert client.get("/api/profile/me", headers=headers).status_code == 401

    def test_auth_not_configured_is_503(self, db_engine, webhook_secret, auth_headers):
        settings = Settings(webhook_secret=webhook_secret, database_url="sqlite:///:memory:")
        with TestClient(create_app(settings=settings, engine=db_engine)) as client:
            response = client.get("/api/profile/me", headers=auth_headers)

        assert response.status_code == 503

    def test_creates_profile_lazily(self, client, db_session, auth_headers):
        response = client.get("/api/profile/me", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["clerk_user_id"] == "user_9"
        assert body["org_id"] == "org_1"
        assert body["full_name"] is None
        assert db_session.query(Profile).filter_by(clerk_user_id="user_9").count() == 1

    def test_returns_webhook_synced_profile_untouched(self, client, db_session, auth_headers):
        db_session.add(Profile(clerk_user_id="user_9", full_name="Grace Hopper", username="ghopper"))
        db_session.commit()

        response = client.get("/api/profile/me", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["full_name"] == "Grace Hopper"
        assert db_session.query(Profile).count() == 1

    @pytest.mark.parametrize(
        "error, status_code",
        [
            (StoreTransientError("timeout"), 503),
            (StorePermanentError("rejected"), 500),
        ],
    )
    def test_store_errors(self, client, auth_headers, error, status_code):
        with patch(
            "identity_sync.repositories.identity_store.IdentityStore.find_profile",
            side_effect=error,
        ):
            response = client.get("/api/profile/me", headers=auth_headers)

        assert response.status_code == status_code


class TestProfileSyncService:

    def test_creates_with_one_lookup(self, store, db_session):
        service = ProfileSyncService(store)

        with patch.object(store, "find_profile", wraps=store.find_profile) as find_profile:
            profile = service.ensure_profile(Principal(user_id="user_new"))

        assert find_profile.call_count == 1
        assert profile.clerk_user_id == "user_new"
        assert db_session.query(Profile).filter_by(clerk_user_id="user_new").count() == 1

    def test_existing_profile_returned_without_write(self, store, db_session):
        db_session.add(Profile(clerk_user_id="user_9", full_name="Grace Hopper"))
        db_session.commit()

        with patch.object(store, "upsert") as upsert:
            profile = ProfileSyncService(store).ensure_profile(Principal(user_id="user_9"))

        upsert.assert_not_called()
        assert profile.full_name == "Grace Hopper"
