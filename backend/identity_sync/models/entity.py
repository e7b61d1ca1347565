"""
Entity model: local mirror of one Clerk organization.

An Entity owns three child collections, all removed when the Entity is:
- EntitySocialLink (written by the entity API, not by webhooks)
- EntityConfiguration (written by the entity API, not by webhooks)
- EntityMembership (written by organizationMembership webhooks)

created_by is set once at creation and never mutated by the sync engine.
"""

import re
from typing import Optional

from sqlalchemy import Column, String, Text, Index

from identity_sync.db_base import Base
from identity_sync.models.base import TimestampMixin, generate_uuid

_WHITESPACE = re.compile(r"\s+")


def derive_handle(name: str, slug: Optional[str] = None) -> str:
    """
    Derive the URL-safe handle for an entity.

    Uses the Clerk slug when supplied, otherwise lowercases the name and
    replaces each run of whitespace with a hyphen.
    """
    if slug:
        return slug
    return _WHITESPACE.sub("-", name.lower())


class Entity(Base, TimestampMixin):
    """Organization record synced from Clerk."""

    __tablename__ = "entities"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    clerk_organization_id = Column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
        comment="Clerk Organization ID"
    )

    name = Column(
        String(255),
        nullable=False,
        comment="Display name of the organization"
    )

    handle = Column(
        String(255),
        nullable=False,
        index=True,
        comment="URL-friendly identifier (e.g., 'acme-capital')"
    )

    brief = Column(
        Text,
        nullable=False,
        default="",
        comment="Free-text description, empty at creation"
    )

    avatar_url = Column(
        String(1024),
        nullable=True,
        comment="Organization image URL (from Clerk)"
    )

    # Plain column rather than a foreign key so that user.deleted for the
    # creator is never blocked by the entity it created.
    created_by = Column(
        String(255),
        nullable=False,
        index=True,
        comment="profiles.id of the creating user"
    )

    __table_args__ = (
        Index("ix_entities_name", "name"),
    )

    def __repr__(self) -> str:
        return f"<Entity(id={self.id}, clerk_organization_id={self.clerk_organization_id}, handle={self.handle})>"
