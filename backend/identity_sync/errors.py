"""
Exception hierarchy for the identity sync service.

Configuration errors are fatal at startup. Classification errors are
permanent per-event failures. Store errors are split into transient
(retry by redelivery) and permanent (give up and alert).
"""

from typing import Optional


class IdentitySyncError(Exception):
    """Base class for all identity sync errors."""
    pass


class WebhookConfigurationError(IdentitySyncError):
    """Raised when the webhook signing secret is missing or unusable."""
    pass


class EventClassificationError(IdentitySyncError):
    """
    Raised when a recognised event kind carries malformed or missing fields.

    Carries enough context (event type, external id when extractable)
    for manual remediation.
    """

    def __init__(
        self,
        message: str,
        event_type: Optional[str] = None,
        external_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.event_type = event_type
        self.external_id = external_id


class MissingReferenceError(IdentitySyncError):
    """
    A record referenced by an event is not present locally yet.

    Events arrive unordered, so this is retryable: redelivery succeeds once
    the prerequisite event has been applied.
    """

    def __init__(self, message: str, table: Optional[str] = None, key: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.table = table
        self.key = key or {}


class StoreError(IdentitySyncError):
    """Base class for Local Identity Store failures."""
    pass


class StoreTransientError(StoreError):
    """Timeout or connection failure; the event should be redelivered."""
    pass


class StorePermanentError(StoreError):
    """The store rejected a write for a non-transient reason."""
    pass


class ClerkVerificationError(IdentitySyncError):
    """Exception raised when Clerk session token verification fails."""

    def __init__(self, message: str, error_code: str = "verification_failed"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
