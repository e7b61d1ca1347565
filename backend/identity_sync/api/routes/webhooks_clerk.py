"""
Clerk webhook endpoint for identity synchronization.

SECURITY: All webhooks MUST verify the Svix signature before processing.
Clerk uses Svix for webhook delivery and signature verification.

Documentation: https://clerk.com/docs/webhooks

Response codes drive the sender's redelivery policy:
- 200: applied, or recognised/ignored event needing no change
- 400: missing headers, bad signature, malformed event, permanent store
  rejection (redelivering the same request cannot succeed)
- 503: referenced record not synced yet, or transient store error
  (redeliver later)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from identity_sync.database.session import get_db_session
from identity_sync.repositories.identity_store import IdentityStore
from identity_sync.services.dispatcher import EventDispatcher
from identity_sync.webhooks.events import SUPPORTED_EVENT_TYPES
from identity_sync.webhooks.signature import (
    ClerkWebhookVerifier,
    RejectionReason,
    verify_clerk_webhook,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    received: bool = True
    status: str = "applied"
    event_type: Optional[str] = None
    message: Optional[str] = None


def get_webhook_verifier(request: Request) -> Optional[ClerkWebhookVerifier]:
    return getattr(request.app.state, "webhook_verifier", None)


@router.post("/clerk", response_model=WebhookResponse)
async def handle_clerk_webhook(
    request: Request,
    verifier: Optional[ClerkWebhookVerifier] = Depends(get_webhook_verifier),
    db: Session = Depends(get_db_session),
):
    """
    Handle incoming Clerk webhooks.

    The raw body is verified byte-for-byte, then classified and dispatched.
    Does not require JWT authentication (webhooks are server-to-server).
    """
    body = await request.body()

    verification = verify_clerk_webhook(verifier, body, request.headers)
    if not verification.accepted:
        not_configured = verification.reason == RejectionReason.NOT_CONFIGURED
        raise HTTPException(
            status_code=(
                status.HTTP_503_SERVICE_UNAVAILABLE if not_configured
                else status.HTTP_400_BAD_REQUEST
            ),
            detail=f"Webhook rejected: {verification.reason.value}",
        )

    outcome = EventDispatcher(IdentityStore(db)).dispatch_payload(body)

    log_extra = {
        "svix_id": verification.message_id,
        "event_type": outcome.event_type,
        "status": outcome.status.value,
    }

    if outcome.is_retryable:
        logger.warning("Clerk webhook deferred for redelivery", extra=log_extra)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=outcome.reason or "Retry later",
        )

    if not outcome.is_success:
        logger.error("Clerk webhook failed permanently", extra=log_extra)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=outcome.reason or "Invalid webhook event",
        )

    logger.info("Processed Clerk webhook", extra=log_extra)
    return WebhookResponse(
        received=True,
        status=outcome.status.value,
        event_type=outcome.event_type,
        message=outcome.reason,
    )


@router.get("/clerk/health")
async def clerk_webhook_health(request: Request):
    """
    Health check for Clerk webhook endpoint.

    Used to verify the webhook endpoint is accessible.
    Does not require authentication.
    """
    return {
        "status": "healthy",
        "webhook_secret_configured": getattr(request.app.state, "webhook_verifier", None) is not None,
        "supported_event_types": sorted(SUPPORTED_EVENT_TYPES),
    }
