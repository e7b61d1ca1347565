"""
Clerk session token verification.

Turns a bearer credential into a Principal (clerk user id, session id,
optional organization id) or nothing. Used by authenticated routes; the
webhook sync engine never calls it.

This module handles:
- Fetching and caching JWKS from Clerk
- JWT signature verification (RS256)
- Token expiration validation with clock skew leeway

Documentation: https://clerk.com/docs/backend-requests/handling/manual-jwt
"""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, Optional

import jwt
from jwt import PyJWKClient, PyJWKClientError
from jwt.exceptions import (
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidTokenError,
)

from identity_sync.errors import ClerkVerificationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller resolved from a Clerk session token."""
    user_id: str
    session_id: Optional[str] = None
    org_id: Optional[str] = None


class ClerkJWTVerifier:
    """
    Verifies Clerk-issued session JWTs using JWKS.

    Usage:
        verifier = ClerkJWTVerifier(issuer=settings.clerk_issuer_url)
        principal = verifier.verify_principal(token)
        if principal is None:
            ...  # 401
    """

    # JWKS cache duration in seconds
    JWKS_CACHE_DURATION = 3600

    # Clock skew tolerance in seconds (for exp/iat validation)
    CLOCK_SKEW_SECONDS = 60

    def __init__(
        self,
        issuer: Optional[str],
        jwks_url: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        """
        Initialize the Clerk JWT verifier.

        Args:
            issuer: Expected issuer claim (Clerk frontend API URL)
            jwks_url: JWKS URL; defaults to {issuer}/.well-known/jwks.json
            audience: Expected audience claim (optional)

        Raises:
            ClerkVerificationError: If no issuer is configured
        """
        if not issuer:
            raise ClerkVerificationError(
                "CLERK_ISSUER_URL environment variable is required",
                error_code="config_error",
            )

        self._issuer = issuer.rstrip("/")
        self._jwks_url = jwks_url or f"{self._issuer}/.well-known/jwks.json"
        self._audience = audience

        self._jwks_client: Optional[PyJWKClient] = None
        self._jwks_client_lock = Lock()
        self._jwks_last_refresh: float = 0

        logger.info(
            "Initialized ClerkJWTVerifier",
            extra={"issuer": self._issuer, "jwks_url": self._jwks_url},
        )

    def _get_jwks_client(self) -> PyJWKClient:
        with self._jwks_client_lock:
            now = time.time()
            if (
                self._jwks_client is None
                or now - self._jwks_last_refresh > self.JWKS_CACHE_DURATION
            ):
                self._jwks_client = PyJWKClient(
                    self._jwks_url,
                    cache_keys=True,
                    lifespan=self.JWKS_CACHE_DURATION,
                )
                self._jwks_last_refresh = now
                logger.debug("Refreshed JWKS client", extra={"jwks_url": self._jwks_url})
            return self._jwks_client

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify a Clerk JWT and return its claims.

        Args:
            token: The JWT to verify, with or without a "Bearer " prefix

        Returns:
            Dict containing the verified JWT claims

        Raises:
            ClerkVerificationError: If verification fails
        """
        if token and token.startswith("Bearer "):
            token = token[7:]
        if not token or not token.strip():
            raise ClerkVerificationError("Token is required", error_code="missing_token")

        try:
            signing_key = self._get_jwks_client().get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                issuer=self._issuer,
                audience=self._audience,
                options={
                    "verify_aud": self._audience is not None,
                    "require": ["sub", "iss", "exp", "iat"],
                },
                leeway=self.CLOCK_SKEW_SECONDS,
            )

        except ExpiredSignatureError:
            logger.warning("Token has expired")
            raise ClerkVerificationError("Token has expired", error_code="token_expired")

        except InvalidIssuerError:
            logger.warning("Invalid token issuer")
            raise ClerkVerificationError("Invalid token issuer", error_code="invalid_issuer")

        except InvalidAudienceError:
            logger.warning("Invalid token audience")
            raise ClerkVerificationError("Invalid token audience", error_code="invalid_audience")

        except PyJWKClientError as e:
            logger.error(f"JWKS client error: {e}")
            raise ClerkVerificationError(
                f"Failed to fetch signing key: {e}",
                error_code="jwks_error",
            )

        except InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            raise ClerkVerificationError(f"Invalid token: {e}", error_code="invalid_token")

    def verify_principal(self, token: str) -> Optional[Principal]:
        """
        Verify a bearer credential and return the caller, or None.

        Invalid, expired or unverifiable tokens yield None; the reason is
        logged by verify_token.
        """
        try:
            claims = self.verify_token(token)
        except ClerkVerificationError as e:
            logger.info(
                "Session token rejected",
                extra={"error_code": e.error_code},
            )
            return None

        return Principal(
            user_id=claims["sub"],
            session_id=claims.get("sid"),
            org_id=claims.get("org_id"),
        )
