"""
EntityMembership model: join record between Profile and Entity.

Two sources of membership records:
1. Clerk webhooks: organization.created (owner), organizationMembership.*
2. The entity API when a user creates an entity directly

SECURITY:
- Unique (entity_id, profile_id): one row per pair, role overwritten in place
- CASCADE delete on entity_id and profile_id at the database level
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Index

from identity_sync.db_base import Base
from identity_sync.models.base import TimestampMixin, generate_uuid


class MembershipRole(str, enum.Enum):
    """Closed set of local membership roles."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class EntityMembership(Base, TimestampMixin):
    """Profile-in-entity membership carrying a role."""

    __tablename__ = "entity_members"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    entity_id = Column(
        String(255),
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Entity ID (FK to entities.id)"
    )

    profile_id = Column(
        String(255),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Profile ID (FK to profiles.id)"
    )

    role = Column(
        String(50),
        nullable=False,
        default=MembershipRole.MEMBER.value,
        comment="owner, admin or member"
    )

    joined_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="Set once at first creation, never refreshed"
    )

    __table_args__ = (
        UniqueConstraint("entity_id", "profile_id", name="uq_entity_members_entity_profile"),
        Index("ix_entity_members_profile_entity", "profile_id", "entity_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<EntityMembership(entity_id={self.entity_id}, "
            f"profile_id={self.profile_id}, role={self.role})>"
        )
