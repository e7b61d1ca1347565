"""
Tests for Clerk webhook signature verification.

Tests cover:
- Valid Svix signatures over the exact raw body
- Missing headers, tampered bodies, stale and malformed signatures
- Fail-closed configuration when the secret is absent
"""

import base64
import json
import time

import pytest

from identity_sync.errors import WebhookConfigurationError
from identity_sync.webhooks.signature import (
    ClerkWebhookVerifier,
    RejectionReason,
    verify_clerk_webhook,
)


@pytest.fixture
def verifier(webhook_secret):
    return ClerkWebhookVerifier(webhook_secret)


@pytest.fixture
def payload():
    return json.dumps({"type": "user.created", "data": {"id": "user_9"}}).encode()


class TestValidSignatures:
    """Deliveries signed with the configured secret are accepted."""

    def test_valid_signature_accepted(self, verifier, payload, sign_webhook):
        result = verifier.verify(payload, sign_webhook(payload))

        assert result.accepted is True
        assert result.reason is None
        assert result.payload == payload
        assert result.message_id == "msg_test_123"

    def test_header_names_are_case_insensitive(self, verifier, payload, sign_webhook):
        headers = {name.upper(): value for name, value in sign_webhook(payload).items()}

        assert verifier.verify(payload, headers).accepted is True

    def test_any_matching_signature_in_list_is_enough(self, verifier, payload, sign_webhook):
        headers = sign_webhook(payload)
        headers["svix-signature"] = "v1,c29tZXRoaW5nZWxzZQ== " + headers["svix-signature"]

        assert verifier.verify(payload, headers).accepted is True

    def test_raw_bytes_not_reserialized(self, verifier, sign_webhook):
        """Unusual whitespace and key order must survive verification."""
        raw = b'{ "data" : {"id":"user_9"},   "type":"user.created" }'

        assert verifier.verify(raw, sign_webhook(raw)).accepted is True

    def test_authentic_non_json_body_is_accepted(self, verifier, sign_webhook):
        """Authenticity and shape are separate checks; the classifier rejects the shape."""
        raw = b"not json at all"

        assert verifier.verify(raw, sign_webhook(raw)).accepted is True


class TestRejections:
    """Unauthentic deliveries are rejected with a structured reason."""

    @pytest.mark.parametrize("missing", ["svix-id", "svix-timestamp", "svix-signature"])
    def test_missing_header(self, verifier, payload, sign_webhook, missing):
        headers = sign_webhook(payload)
        del headers[missing]

        result = verifier.verify(payload, headers)

        assert result.accepted is False
        assert result.reason == RejectionReason.MISSING_HEADERS
        assert missing in result.detail

    def test_empty_header_counts_as_missing(self, verifier, payload, sign_webhook):
        headers = sign_webhook(payload)
        headers["svix-signature"] = ""

        result = verifier.verify(payload, headers)

        assert result.reason == RejectionReason.MISSING_HEADERS

    def test_body_differing_by_one_byte(self, verifier, payload, sign_webhook):
        headers = sign_webhook(payload)
        tampered = payload.replace(b"user_9", b"user_8")
        assert len(tampered) == len(payload)

        result = verifier.verify(tampered, headers)

        assert result.accepted is False
        assert result.reason == RejectionReason.BAD_SIGNATURE

    def test_signature_from_other_secret(self, payload, sign_webhook):
        other = ClerkWebhookVerifier("whsec_" + base64.b64encode(b"some_other_secret").decode())

        result = other.verify(payload, sign_webhook(payload))

        assert result.reason == RejectionReason.BAD_SIGNATURE

    def test_invalid_signature_value(self, verifier, payload, sign_webhook):
        headers = sign_webhook(payload)
        headers["svix-signature"] = "v1,invalid_signature"

        result = verifier.verify(payload, headers)

        assert result.reason == RejectionReason.BAD_SIGNATURE

    def test_expired_timestamp(self, verifier, payload, sign_webhook):
        old_timestamp = int(time.time()) - 400  # 6+ minutes old

        result = verifier.verify(payload, sign_webhook(payload, timestamp=old_timestamp))

        assert result.reason == RejectionReason.BAD_SIGNATURE

    def test_future_timestamp(self, verifier, payload, sign_webhook):
        future_timestamp = int(time.time()) + 400  # 6+ minutes in future

        result = verifier.verify(payload, sign_webhook(payload, timestamp=future_timestamp))

        assert result.reason == RejectionReason.BAD_SIGNATURE

    def test_non_numeric_timestamp(self, verifier, payload, sign_webhook):
        headers = sign_webhook(payload)
        headers["svix-timestamp"] = "yesterday"

        assert verifier.verify(payload, headers).reason == RejectionReason.BAD_SIGNATURE

    def test_signed_body_that_is_not_utf8(self, verifier, sign_webhook):
        """Svix signs text; raw bytes that do not decode cannot be checked."""
        raw = b'\xff\xfe{"type": "user.created"}'

        result = verifier.verify(raw, sign_webhook(raw))

        assert result.accepted is False
        assert result.reason == RejectionReason.BAD_SIGNATURE
        assert "UTF-8" in result.detail
        assert "Malformed signature header" not in result.detail


class TestConfiguration:
    """An unset secret must stop the service, never accept unsigned events."""

    @pytest.mark.parametrize("secret", [None, "", "whsec_"])
    def test_verifier_refuses_missing_secret(self, secret):
        with pytest.raises(WebhookConfigurationError):
            ClerkWebhookVerifier(secret)

    def test_missing_verifier_reports_not_configured(self, payload, sign_webhook):
        result = verify_clerk_webhook(None, payload, sign_webhook(payload))

        assert result.accepted is False
        assert result.reason == RejectionReason.NOT_CONFIGURED

    def test_configured_verifier_accepts_valid_delivery(self, verifier, payload, sign_webhook):
        result = verify_clerk_webhook(verifier, payload, sign_webhook(payload))

        assert result.accepted is True
