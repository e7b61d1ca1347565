"""
Lazy profile sync for authenticated requests.

If a user.created webhook has not landed yet when the user first calls
the API, the Profile is created on the spot from the verified principal.
An existing Profile is returned untouched: identity fields are owned by
the webhook stream.
"""

import logging

from identity_sync.auth.clerk_verifier import Principal
from identity_sync.models import Profile
from identity_sync.repositories.identity_store import IdentityStore
from identity_sync.services.mutations import Table

logger = logging.getLogger(__name__)


class ProfileSyncService:
    """Get-or-create access to the caller's Profile."""

    def __init__(self, store: IdentityStore):
        self.store = store

    def ensure_profile(self, principal: Principal) -> Profile:
        """
        Return the Profile for the principal, creating it if absent.

        Raises:
            StoreError: If the store lookup or insert fails
        """
        existing = self.store.find_profile(principal.user_id)
        if existing is not None:
            return existing

        profile = self.store.upsert(Table.PROFILES, {"clerk_user_id": principal.user_id})
        self.store.commit()

        logger.info(
            "Created profile from session (lazy sync)",
            extra={"clerk_user_id": principal.user_id, "profile_id": profile.id},
        )
        return profile
