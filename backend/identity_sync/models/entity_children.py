"""
Entity-scoped child records.

Both are created by direct API calls and are not addressable by the
sync engine; they only appear on its write path as cascade-delete
targets when the owning Entity is removed.
"""

from sqlalchemy import Column, String, Boolean, ForeignKey, JSON

from identity_sync.db_base import Base
from identity_sync.models.base import TimestampMixin, generate_uuid


class EntitySocialLink(Base, TimestampMixin):
    """Social link (x, linkedin, website, ...) attached to an entity."""

    __tablename__ = "entity_social_links"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    entity_id = Column(
        String(255),
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Entity ID (FK to entities.id)"
    )

    type = Column(String(50), nullable=False, comment="Lowercased link type")

    url = Column(String(1024), nullable=False)

    def __repr__(self) -> str:
        return f"<EntitySocialLink(entity_id={self.entity_id}, type={self.type})>"


class EntityConfiguration(Base, TimestampMixin):
    """Configuration blob for one onboarding step of an entity."""

    __tablename__ = "entity_configurations"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    entity_id = Column(
        String(255),
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Entity ID (FK to entities.id)"
    )

    config_type = Column(String(100), nullable=False)

    config_data = Column(JSON, nullable=True)

    is_completed = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<EntityConfiguration(entity_id={self.entity_id}, config_type={self.config_type})>"
