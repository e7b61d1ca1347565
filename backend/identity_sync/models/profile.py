"""
Profile model: local mirror of one Clerk user.

CRITICAL:
- clerk_user_id is the unique identifier from Clerk (source of truth)
- id is the internal UUID for database relationships
- A Profile is only ever deleted in response to user.deleted for the
  exact same clerk_user_id
"""

from sqlalchemy import Column, String

from identity_sync.db_base import Base
from identity_sync.models.base import TimestampMixin, generate_uuid


class Profile(Base, TimestampMixin):
    """
    Local user record synced from Clerk.

    Sync mechanisms:
    - Clerk webhooks: user.created, user.updated, user.deleted
    - Lazy sync: created on first authenticated request if the webhook
      has not landed yet
    """

    __tablename__ = "profiles"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    clerk_user_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Clerk user ID - source of truth for identity"
    )

    full_name = Column(
        String(255),
        nullable=True,
        comment="First and last name joined (from Clerk)"
    )

    # Not guaranteed unique by the sync engine
    username = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Username (from Clerk)"
    )

    avatar_url = Column(
        String(1024),
        nullable=True,
        comment="Profile image URL (from Clerk)"
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, clerk_user_id={self.clerk_user_id})>"
