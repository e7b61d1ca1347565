"""
Clerk webhook signature verification.

SECURITY: All webhooks MUST be verified before processing.
Clerk uses Svix for webhook delivery and signature verification:
- svix-id: Unique message identifier
- svix-timestamp: Unix timestamp of the message (5 minute tolerance)
- svix-signature: Space separated "v1,<base64 HMAC-SHA256>" entries
- Signed content: "{svix_id}.{svix_timestamp}.{raw body}"

The signature is always checked against the exact raw bytes received.
Re-serializing the parsed JSON can change key order or whitespace and
would invalidate an authentic signature.

Documentation: https://docs.svix.com/receiving/verifying-payloads/how-manual
"""

import enum
import json
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from svix.webhooks import Webhook, WebhookVerificationError

from identity_sync.errors import WebhookConfigurationError

logger = logging.getLogger(__name__)

SVIX_ID_HEADER = "svix-id"
SVIX_TIMESTAMP_HEADER = "svix-timestamp"
SVIX_SIGNATURE_HEADER = "svix-signature"

REQUIRED_HEADERS = (SVIX_ID_HEADER, SVIX_TIMESTAMP_HEADER, SVIX_SIGNATURE_HEADER)

SECRET_PREFIX = "whsec_"


class RejectionReason(str, enum.Enum):
    MISSING_HEADERS = "missing-headers"
    BAD_SIGNATURE = "bad-signature"
    NOT_CONFIGURED = "not-configured"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one inbound webhook delivery."""
    accepted: bool
    payload: Optional[bytes] = None
    message_id: Optional[str] = None
    reason: Optional[RejectionReason] = None
    detail: Optional[str] = None

    @classmethod
    def accept(cls, payload: bytes, message_id: str) -> "VerificationResult":
        return cls(accepted=True, payload=payload, message_id=message_id)

    @classmethod
    def reject(
        cls,
        reason: RejectionReason,
        detail: str,
        message_id: Optional[str] = None,
    ) -> "VerificationResult":
        return cls(accepted=False, reason=reason, detail=detail, message_id=message_id)


class ClerkWebhookVerifier:
    """
    Verifies Svix-signed Clerk webhook deliveries.

    Construction fails with WebhookConfigurationError when the secret is
    missing or malformed, so a misconfigured service never starts.
    verify() itself has no side effects.

    Usage:
        verifier = ClerkWebhookVerifier(settings.webhook_secret)
        result = verifier.verify(body, request.headers)
        if not result.accepted:
            ...
    """

    def __init__(self, webhook_secret: Optional[str]):
        if not _secret_key_material(webhook_secret):
            raise WebhookConfigurationError("Clerk webhook secret is not configured")
        try:
            self._webhook = Webhook(webhook_secret)
        except (ValueError, TypeError) as e:
            raise WebhookConfigurationError(f"Clerk webhook secret is malformed: {e}") from e

    def verify(self, payload: bytes, headers: Mapping[str, str]) -> VerificationResult:
        """
        Verify a raw webhook body against its Svix headers.

        Args:
            payload: Raw request body bytes, exactly as received
            headers: Request headers (case-insensitive lookup is done here)

        Returns:
            VerificationResult, accepted or rejected with a reason
        """
        svix_headers = _extract_svix_headers(headers)
        message_id = svix_headers.get(SVIX_ID_HEADER)

        missing = [name for name in REQUIRED_HEADERS if not svix_headers.get(name)]
        if missing:
            logger.warning(
                "Missing Svix headers",
                extra={"svix_id": message_id, "missing_headers": missing},
            )
            return VerificationResult.reject(
                RejectionReason.MISSING_HEADERS,
                f"Missing headers: {', '.join(missing)}",
                message_id=message_id,
            )

        try:
            self._webhook.verify(payload, svix_headers)
        except WebhookVerificationError as e:
            return self._bad_signature(message_id, str(e))
        except json.JSONDecodeError:
            # Older svix releases parse the body only after a signature
            # matched; the body is authentic but not JSON, which the
            # classifier reports.
            pass
        except UnicodeDecodeError:
            # Svix signs text, so a body that is not UTF-8 never reaches the
            # HMAC comparison and cannot be proven authentic.
            return self._bad_signature(message_id, "Body is not valid UTF-8 and cannot be verified")
        except (ValueError, TypeError) as e:
            # Malformed signature entries (bad base64, no version prefix)
            return self._bad_signature(message_id, f"Malformed signature header: {e}")

        logger.debug("Webhook signature verified", extra={"svix_id": message_id})
        return VerificationResult.accept(payload, message_id)

    @staticmethod
    def _bad_signature(message_id: Optional[str], detail: str) -> VerificationResult:
        logger.warning(
            "Clerk webhook signature verification failed",
            extra={"svix_id": message_id, "detail": detail},
        )
        return VerificationResult.reject(
            RejectionReason.BAD_SIGNATURE,
            detail,
            message_id=message_id,
        )


def verify_clerk_webhook(
    verifier: Optional[ClerkWebhookVerifier],
    payload: bytes,
    headers: Mapping[str, str],
) -> VerificationResult:
    """
    Verify a delivery, reporting a missing verifier as not-configured.

    The service builds its verifier at startup and refuses to start
    without a secret; a request that still finds no verifier is rejected
    rather than processed unsigned.
    """
    if verifier is None:
        logger.error("Clerk webhook verification not configured")
        return VerificationResult.reject(
            RejectionReason.NOT_CONFIGURED,
            "Clerk webhook secret is not configured",
        )
    return verifier.verify(payload, headers)


def _extract_svix_headers(headers: Mapping[str, str]) -> dict:
    lowered = {str(name).lower(): value for name, value in headers.items()}
    return {name: lowered.get(name) or "" for name in REQUIRED_HEADERS}


def _secret_key_material(webhook_secret: Optional[str]) -> str:
    secret = webhook_secret or ""
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    return secret.strip().strip("=")
