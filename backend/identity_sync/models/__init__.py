"""
Database models for the local identity mirror.

Importing this package registers every table on Base.metadata.
"""

from identity_sync.models.base import TimestampMixin, generate_uuid
from identity_sync.models.profile import Profile
from identity_sync.models.entity import Entity, derive_handle
from identity_sync.models.entity_membership import EntityMembership, MembershipRole
from identity_sync.models.entity_children import EntitySocialLink, EntityConfiguration

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "Profile",
    "Entity",
    "derive_handle",
    "EntityMembership",
    "MembershipRole",
    "EntitySocialLink",
    "EntityConfiguration",
]
