"""
Profile routes for the authenticated caller.

GET /api/profile/me returns the caller's local Profile, creating it if
the user.created webhook has not been applied yet.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from identity_sync.auth.clerk_verifier import Principal
from identity_sync.auth.dependencies import get_current_principal
from identity_sync.database.session import get_db_session
from identity_sync.errors import StoreError, StoreTransientError
from identity_sync.repositories.identity_store import IdentityStore
from identity_sync.services.profile_sync import ProfileSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])


class ProfileResponse(BaseModel):
    id: str
    clerk_user_id: str
    full_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    org_id: Optional[str] = None


@router.get("/me", response_model=ProfileResponse)
def get_my_profile(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db_session),
):
    try:
        profile = ProfileSyncService(IdentityStore(db)).ensure_profile(principal)
    except StoreError as e:
        db.rollback()
        logger.error(
            "Failed to load profile",
            extra={"clerk_user_id": principal.user_id, "error": str(e)},
        )
        raise HTTPException(
            status_code=(
                status.HTTP_503_SERVICE_UNAVAILABLE
                if isinstance(e, StoreTransientError)
                else status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
            detail="Profile store unavailable",
        )

    return ProfileResponse(
        id=profile.id,
        clerk_user_id=profile.clerk_user_id,
        full_name=profile.full_name,
        username=profile.username,
        avatar_url=profile.avatar_url,
        org_id=principal.org_id,
    )
